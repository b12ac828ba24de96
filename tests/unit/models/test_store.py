from pathlib import Path

from llm_service.enums import ModelCategory
from llm_service.models import ModelStore


def test_resolve_appends_missing_extension(model_store, models_dir):
    expected = models_dir / "chat" / "tiny-chat.gguf"

    assert model_store.resolve("tiny-chat", ModelCategory.CHAT) == expected
    assert model_store.resolve("tiny-chat.gguf", ModelCategory.CHAT) == expected


def test_identity_is_keyed_by_category_and_path(model_store):
    chat = model_store.identity("shared", ModelCategory.CHAT)
    embedding = model_store.identity("shared", ModelCategory.EMBEDDING)

    assert chat != embedding
    assert chat == model_store.identity("shared.gguf", ModelCategory.CHAT)
    assert chat.name == "shared"
    assert str(chat).startswith("chat:")


def test_list_reports_loaded_flag_and_skips_other_files(model_store, models_dir):
    chat_dir = models_dir / "chat"
    (chat_dir / "another.gguf").write_bytes(b"GGUF")
    (chat_dir / "notes.txt").write_text("not a model")
    (chat_dir / "nested.gguf").mkdir()

    models = model_store.list(ModelCategory.CHAT, loaded={chat_dir / "tiny-chat.gguf"})

    assert models == [
        {"name": "another", "type": "chat", "loaded": False},
        {"name": "tiny-chat", "type": "chat", "loaded": True},
    ]


def test_list_all_follows_category_order(model_store):
    assert [m["type"] for m in model_store.list_all()] == ["embedding", "reranker", "chat"]


def test_unreadable_category_lists_as_empty(tmp_path):
    store = ModelStore.from_root(tmp_path / "absent")

    assert store.list(ModelCategory.EMBEDDING) == []
    assert store.list_all() == []


def test_ensure_dirs_creates_category_directories(tmp_path):
    store = ModelStore.from_root(tmp_path / "models")

    store.ensure_dirs()

    for category in ModelCategory:
        assert Path(tmp_path / "models" / category.value).is_dir()


def test_custom_extension(tmp_path):
    store = ModelStore.from_root(tmp_path, extension=".bin")

    assert store.resolve("weights", ModelCategory.EMBEDDING).name == "weights.bin"


def test_multi_dot_extension_is_listed_and_resolved(tmp_path):
    store = ModelStore.from_root(tmp_path, extension=".q4.gguf")
    directory = tmp_path / "embedding"
    directory.mkdir()
    (directory / "mini.q4.gguf").write_bytes(b"GGUF")
    (directory / "other.gguf").write_bytes(b"GGUF")

    assert store.list(ModelCategory.EMBEDDING) == [
        {"name": "mini", "type": "embedding", "loaded": False}
    ]
    assert store.resolve("mini", ModelCategory.EMBEDDING) == directory / "mini.q4.gguf"
    assert store.model_name("mini.q4.gguf") == "mini"
