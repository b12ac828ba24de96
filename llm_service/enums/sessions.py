from enum import Enum


class SessionState(str, Enum):
    """Lifecycle state of a chat session."""

    ACTIVE = "active"
    EXPIRED = "expired"
