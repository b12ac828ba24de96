import asyncio

import pytest

from llm_service.enums import LoadState, ModelCategory
from llm_service.exceptions import ModelLoadError, ModelNotFoundError, WrongCategoryError


@pytest.mark.anyio
async def test_acquire_loads_once_and_caches(registry, fake_backend):
    first = await registry.acquire("nomic-embed", ModelCategory.EMBEDDING)
    second = await registry.acquire("nomic-embed.gguf", ModelCategory.EMBEDDING)

    assert first is second
    assert first.is_ready
    assert len(fake_backend.load_calls) == 1
    assert len(registry) == 1


@pytest.mark.anyio
async def test_concurrent_acquires_share_one_load(registry, fake_backend):
    fake_backend.load_delay = 0.05

    results = await asyncio.gather(
        *(registry.acquire("nomic-embed", ModelCategory.EMBEDDING) for _ in range(8))
    )

    assert len(fake_backend.load_calls) == 1
    assert all(result is results[0] for result in results)


@pytest.mark.anyio
async def test_same_file_in_different_categories_are_distinct(registry, models_dir, fake_backend):
    (models_dir / "chat" / "nomic-embed.gguf").write_bytes(b"GGUF")

    embedding = await registry.acquire("nomic-embed", ModelCategory.EMBEDDING)
    chat = await registry.acquire("nomic-embed", ModelCategory.CHAT)

    assert embedding is not chat
    assert len(fake_backend.load_calls) == 2


@pytest.mark.anyio
async def test_missing_artifact_raises_not_found_with_path(registry, models_dir):
    with pytest.raises(ModelNotFoundError) as exc_info:
        await registry.acquire("missing", ModelCategory.EMBEDDING)

    expected = str(models_dir / "embedding" / "missing.gguf")
    assert exc_info.value.path == expected
    assert expected in exc_info.value.message
    assert len(registry) == 0


@pytest.mark.anyio
async def test_failed_load_is_not_cached(registry, fake_backend):
    fake_backend.failures["nomic-embed.gguf"] = RuntimeError("corrupt weights")

    with pytest.raises(ModelLoadError, match="corrupt weights"):
        await registry.acquire("nomic-embed", ModelCategory.EMBEDDING)
    assert registry.list() == []

    del fake_backend.failures["nomic-embed.gguf"]
    loaded = await registry.acquire("nomic-embed", ModelCategory.EMBEDDING)

    assert loaded.is_ready
    assert len(fake_backend.load_calls) == 2


@pytest.mark.anyio
async def test_concurrent_waiters_share_the_failure(registry, fake_backend):
    fake_backend.load_delay = 0.05
    fake_backend.failures["nomic-embed.gguf"] = RuntimeError("out of memory")

    results = await asyncio.gather(
        *(registry.acquire("nomic-embed", ModelCategory.EMBEDDING) for _ in range(4)),
        return_exceptions=True,
    )

    assert all(isinstance(result, ModelLoadError) for result in results)
    assert len(fake_backend.load_calls) == 1
    assert len(registry) == 0


@pytest.mark.anyio
async def test_chat_model_has_no_category_context(registry):
    loaded = await registry.acquire("tiny-chat", ModelCategory.CHAT)

    assert loaded.context is None
    assert loaded.require_handle() is loaded.handle
    with pytest.raises(WrongCategoryError, match="Model is not suitable for embeddings"):
        loaded.embedding_context()
    with pytest.raises(WrongCategoryError, match="Model is not suitable for reranking"):
        loaded.ranking_context()


@pytest.mark.anyio
async def test_unload_disposes_and_next_acquire_reloads(registry, fake_backend):
    first = await registry.acquire("nomic-embed", ModelCategory.EMBEDDING)

    assert await registry.unload("nomic-embed") is True
    assert first.state is LoadState.CLOSED
    assert fake_backend.handles[0].closed
    assert await registry.unload("nomic-embed") is False

    second = await registry.acquire("nomic-embed", ModelCategory.EMBEDDING)
    assert second is not first
    assert len(fake_backend.load_calls) == 2


@pytest.mark.anyio
async def test_unload_of_unknown_model_returns_false(registry):
    assert await registry.unload("never-loaded") is False


@pytest.mark.anyio
async def test_sweep_keeps_models_used_within_threshold(registry, fake_clock):
    loaded = await registry.acquire("nomic-embed", ModelCategory.EMBEDDING)

    fake_clock.advance(100)
    assert await registry.sweep(max_idle=100) == []
    assert registry.is_live(loaded)

    fake_clock.advance(1)
    assert await registry.sweep(max_idle=100) == [loaded.identity]
    assert not registry.is_live(loaded)
    assert loaded.state is LoadState.CLOSED


@pytest.mark.anyio
async def test_acquire_and_release_refresh_idle_time(registry, fake_clock):
    loaded = await registry.acquire("nomic-embed", ModelCategory.EMBEDDING)

    fake_clock.advance(80)
    await registry.acquire("nomic-embed", ModelCategory.EMBEDDING)
    fake_clock.advance(80)
    registry.release(loaded.identity)
    fake_clock.advance(80)

    assert await registry.sweep(max_idle=100) == []
    assert loaded.last_used_at == fake_clock.now - 80


@pytest.mark.anyio
async def test_eviction_listeners_receive_destroyed_records(registry, fake_clock):
    evicted = []
    registry.add_eviction_listener(evicted.append)
    embedding = await registry.acquire("nomic-embed", ModelCategory.EMBEDDING)
    reranker = await registry.acquire("bge-reranker", ModelCategory.RERANKER)

    await registry.unload("nomic-embed")
    fake_clock.advance(10)
    await registry.sweep(max_idle=5)

    assert evicted == [embedding, reranker]


@pytest.mark.anyio
async def test_failing_listener_does_not_block_eviction(registry):
    def broken(_):
        raise RuntimeError("listener bug")

    registry.add_eviction_listener(broken)
    await registry.acquire("nomic-embed", ModelCategory.EMBEDDING)

    assert await registry.unload("nomic-embed") is True
    assert len(registry) == 0


@pytest.mark.anyio
async def test_list_reports_cache_membership(registry, models_dir):
    await registry.acquire("bge-reranker", ModelCategory.RERANKER)

    assert registry.list() == [
        {
            "path": str(models_dir / "reranker" / "bge-reranker.gguf"),
            "category": "reranker",
            "ready": True,
        }
    ]
    assert registry.loaded_paths() == {models_dir / "reranker" / "bge-reranker.gguf"}


@pytest.mark.anyio
async def test_stop_releases_every_model(registry, fake_backend):
    await registry.acquire("nomic-embed", ModelCategory.EMBEDDING)
    await registry.acquire("tiny-chat", ModelCategory.CHAT)

    await registry.stop()

    assert len(registry) == 0
    assert all(handle.closed for handle in fake_backend.handles)


@pytest.mark.anyio
async def test_load_interrupted_by_stop_is_released(registry, fake_backend):
    fake_backend.load_delay = 0.1
    pending = asyncio.ensure_future(registry.acquire("nomic-embed", ModelCategory.EMBEDDING))
    await asyncio.sleep(0.02)

    await registry.stop()

    with pytest.raises(ModelLoadError, match="unloaded while loading"):
        await pending
    assert fake_backend.handles[0].closed
    assert len(registry) == 0


@pytest.mark.anyio
async def test_background_sweep_evicts_idle_models(registry, fake_clock):
    await registry.acquire("nomic-embed", ModelCategory.EMBEDDING)
    fake_clock.advance(60)

    registry.start(interval=0.01, max_idle=30)
    try:
        for _ in range(100):
            if len(registry) == 0:
                break
            await asyncio.sleep(0.01)
    finally:
        await registry.stop()

    assert len(registry) == 0


@pytest.mark.anyio
async def test_acquire_reloads_entry_evicted_before_waiter_resumes(
    registry, fake_backend, monkeypatch
):
    shared_do = registry._flight.do

    async def do_then_unload(key, fn):
        result = await shared_do(key, fn)
        if len(fake_backend.load_calls) == 1:
            await registry.unload("nomic-embed")
        return result

    monkeypatch.setattr(registry._flight, "do", do_then_unload)

    loaded = await registry.acquire("nomic-embed", ModelCategory.EMBEDDING)

    assert len(fake_backend.load_calls) == 2
    assert registry.is_live(loaded)
    assert fake_backend.handles[0].closed
    assert loaded.handle is fake_backend.handles[1]
