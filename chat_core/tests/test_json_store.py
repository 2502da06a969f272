import json

import pytest

from chat_core.domain.exceptions import StoreError
from chat_core.domain.models import ChatMessage, Session, TextCompletion
from chat_core.infrastructure.storage.json_store import JsonSessionStore


def test_save_then_load(tmp_path):
    store = JsonSessionStore(tmp_path / "chats.json")
    chats = {"chat_1": Session(messages=[ChatMessage(role="user", content="你好")])}
    completes = {"complete_1": TextCompletion(prompt="Once")}

    store.save(chats, completes)
    loaded_chats, loaded_completes = store.load()

    assert loaded_chats == chats
    assert loaded_completes == completes
    raw = json.loads((tmp_path / "chats.json").read_text(encoding="utf-8"))
    assert set(raw) == {"chat", "complete"}
    # 没有遗留临时文件
    assert [p.name for p in tmp_path.iterdir()] == ["chats.json"]


def test_load_missing_file(tmp_path):
    store = JsonSessionStore(tmp_path / "missing.json")
    assert not store.exists()
    with pytest.raises(StoreError) as exc_info:
        store.load()
    assert exc_info.value.code == "STORE_READ_ERROR"


def test_load_rejects_wrong_shape(tmp_path):
    path = tmp_path / "chats.json"
    path.write_text(json.dumps({"sessions": []}), encoding="utf-8")
    with pytest.raises(StoreError):
        JsonSessionStore(path).load()


def test_load_rejects_bad_message_role(tmp_path):
    path = tmp_path / "chats.json"
    path.write_text(
        json.dumps({"chat": {"a": {"messages": [{"role": "robot", "content": "x"}]}}, "complete": {}}),
        encoding="utf-8",
    )
    with pytest.raises(StoreError):
        JsonSessionStore(path).load()
