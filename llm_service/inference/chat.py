"""
Chat sessions.

A session binds one conversation to a generation context built from a loaded
chat model. Sessions live in a process wide table owned by
``ChatSessionManager``, are reused across requests carrying the same session
key, and expire after a period without successful prompts.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
import weakref
from collections.abc import AsyncIterator, Callable, Iterable
from contextlib import aclosing
from dataclasses import dataclass, field

from opentelemetry import trace

from ..configs import LoadedModel, ModelIdentity
from ..enums import SessionState
from ..exceptions import GenerationError, ServiceError, SessionExpiredError
from ..utils import iterate_in_thread
from .backend import GenerationContext, InferenceBackend

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

DEFAULT_SESSION_TTL = 30 * 60


@dataclass
class ChatTurn:
    role: str  # "system", "user" or "assistant"
    content: str


@dataclass
class GenerationOptions:
    temperature: float = 0.7
    max_tokens: int | None = None


@dataclass
class ChatChunk:
    """A batch of generated text. The last chunk of a stream has ``finish_reason``."""

    content: str
    finish_reason: str | None = None


@dataclass
class ChatTemplate:
    """Plain-text conversational template with System / Human / Assistant markers."""

    system: str = "System: {message}\n"
    user: str = "Human: {message}\n"
    assistant: str = "Assistant: {message}\n"
    completion_prefix: str = "Assistant: "
    stop: tuple[str, ...] = ("\nHuman:",)

    def render(self, system_prompt: str, history: Iterable[ChatTurn], prompt: str) -> str:
        parts = []
        if system_prompt:
            parts.append(self.system.format(message=system_prompt))
        parts.append("\n")
        for turn in history:
            if turn.role == "assistant":
                parts.append(self.assistant.format(message=turn.content))
            elif turn.role == "system":
                parts.append(self.system.format(message=turn.content))
            else:
                parts.append(self.user.format(message=turn.content))
        parts.append(self.user.format(message=prompt))
        parts.append(self.completion_prefix)
        return "".join(parts)


@dataclass(eq=False)
class ChatSession:
    """One active conversation.

    The session owns its generation context and only weakly references the
    loaded model it was built from.
    """

    session_id: str
    identity: ModelIdentity
    system_prompt: str
    context: GenerationContext
    model_ref: weakref.ref[LoadedModel]
    created_at: float
    last_used_at: float
    history: list[ChatTurn] = field(default_factory=list)
    state: SessionState = SessionState.ACTIVE
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    timer: asyncio.TimerHandle | None = None

    @property
    def model(self) -> LoadedModel | None:
        return self.model_ref()

    @property
    def is_active(self) -> bool:
        """Active and still bound to a live model."""
        model = self.model
        return self.state is SessionState.ACTIVE and model is not None and model.is_ready


class ChatSessionManager:
    """Process wide table of chat sessions.

    Sessions expire ``ttl`` seconds after their last successful prompt. Each
    session has one cancellable timer which is reinstalled on every touch and
    cancelled when the session ends for any other reason.
    """

    def __init__(
        self,
        backend: InferenceBackend,
        template: ChatTemplate | None = None,
        ttl: float = DEFAULT_SESSION_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.backend = backend
        self.template = template or ChatTemplate()
        self.ttl = ttl
        self._clock = clock
        self._sessions: dict[str, ChatSession] = {}

    @staticmethod
    def new_session_id() -> str:
        """Random, collision free session key."""
        return f"chatcmpl-{uuid.uuid4().hex}"

    def get(self, session_id: str) -> ChatSession | None:
        session = self._sessions.get(session_id)
        return session if session is not None and session.is_active else None

    def __len__(self) -> int:
        return sum(1 for session in self._sessions.values() if session.is_active)

    async def get_or_create(
        self,
        session_id: str,
        loaded: LoadedModel,
        system_prompt: str = "",
        history: Iterable[ChatTurn] = (),
    ) -> ChatSession:
        """
        Return the active session for ``session_id`` or build a new one.
        Args:
            session_id: Session key.
            loaded: Ready chat model the session generates with.
            system_prompt: System prompt of a new session.
            history: Prior turns seeding a new session.
        Returns:
            The session. An existing session bound to another (or an
            unloaded) model is replaced.
        """
        existing = self._sessions.get(session_id)
        if existing is not None:
            if existing.is_active and existing.model is loaded:
                return existing
            self._expire(existing, "stale")

        handle = loaded.require_handle()
        context = await asyncio.to_thread(self.backend.create_generation_context, handle)

        # Another request may have created the session while the context was built.
        existing = self._sessions.get(session_id)
        if existing is not None and existing.is_active and existing.model is loaded:
            context.close()
            return existing

        now = self._clock()
        session = ChatSession(
            session_id=session_id,
            identity=loaded.identity,
            system_prompt=system_prompt,
            context=context,
            model_ref=weakref.ref(loaded),
            created_at=now,
            last_used_at=now,
            history=list(history),
        )
        self._sessions[session_id] = session
        self._schedule_expiry(session)
        logger.info("Created chat session %s for %s", session_id, loaded.identity)
        return session

    async def prompt(
        self, session: ChatSession, text: str, options: GenerationOptions | None = None
    ) -> str:
        """Run one turn and return the whole completion."""
        with tracer.start_as_current_span("chat.prompt") as span:
            span.set_attribute("chat.session_id", session.session_id)
            async with aclosing(self._generate(session, text, options)) as tokens:
                return "".join([token async for token in tokens])

    async def prompt_stream(
        self, session: ChatSession, text: str, options: GenerationOptions | None = None
    ) -> AsyncIterator[ChatChunk]:
        """
        Run one turn, yielding text as it is generated.

        Tokens are buffered and flushed whenever the buffer holds a space or
        a newline, so chunks end on word boundaries. The final chunk carries
        the remaining text (possibly empty) and ``finish_reason="stop"``.
        """
        buffer = ""
        async with aclosing(self._generate(session, text, options)) as tokens:
            async for token in tokens:
                buffer += token
                if " " in buffer or "\n" in buffer:
                    yield ChatChunk(content=buffer)
                    buffer = ""
        yield ChatChunk(content=buffer, finish_reason="stop")

    async def _generate(
        self, session: ChatSession, text: str, options: GenerationOptions | None
    ) -> AsyncIterator[str]:
        options = options or GenerationOptions()
        async with session.lock:
            if not session.is_active:
                raise SessionExpiredError(session.session_id)

            prompt = self.template.render(session.system_prompt, session.history, text)
            pieces: list[str] = []
            try:
                async with aclosing(
                    iterate_in_thread(
                        lambda: session.context.generate(
                            prompt,
                            temperature=options.temperature,
                            max_tokens=options.max_tokens,
                            stop=self.template.stop,
                        )
                    )
                ) as tokens:
                    async for token in tokens:
                        pieces.append(token)
                        yield token
            except ServiceError:
                raise
            except Exception as e:
                logger.error("Generation failed in session %s: %s", session.session_id, e)
                raise GenerationError(str(e)) from e

            session.history.append(ChatTurn(role="user", content=text))
            session.history.append(ChatTurn(role="assistant", content="".join(pieces)))
            self.touch(session)

    # ── Expiry ───────────────────────────────────────────────────

    def touch(self, session: ChatSession) -> None:
        """Record a use and push the expiry back by ``ttl``."""
        if session.state is not SessionState.ACTIVE:
            return
        session.last_used_at = self._clock()
        self._schedule_expiry(session)

    def _schedule_expiry(self, session: ChatSession) -> None:
        if session.timer is not None:
            session.timer.cancel()
        loop = asyncio.get_running_loop()
        session.timer = loop.call_later(self.ttl, self._on_timer, session)

    def _on_timer(self, session: ChatSession) -> None:
        session.timer = None
        if session.state is not SessionState.ACTIVE:
            return
        if session.lock.locked():
            # Mid-generation; try again once it has had time to finish.
            self._schedule_expiry(session)
            return
        self._expire(session, "inactive")

    def _expire(self, session: ChatSession, reason: str) -> None:
        if session.timer is not None:
            session.timer.cancel()
            session.timer = None
        if self._sessions.get(session.session_id) is session:
            del self._sessions[session.session_id]
        if session.state is SessionState.EXPIRED:
            return
        session.state = SessionState.EXPIRED
        try:
            session.context.close()
        except Exception:
            logger.exception("Error closing generation context of %s", session.session_id)
        logger.info("Chat session %s expired (%s)", session.session_id, reason)

    def on_model_evicted(self, loaded: LoadedModel) -> None:
        """Eviction listener: end every session bound to ``loaded``."""
        for session in list(self._sessions.values()):
            if session.identity == loaded.identity and session.model in (loaded, None):
                self._expire(session, "model unloaded")

    def close_all(self) -> None:
        for session in list(self._sessions.values()):
            self._expire(session, "shutdown")
