import json

import pytest

from voicebot.memory.store import MAX_TURNS_PER_USER, HistoryStore


def test_append_and_read_back(tmp_path):
    store = HistoryStore(str(tmp_path / "memory.json"))
    store.append_turn("u1", "user", "hello")
    store.append_turn("u1", "assistant", "hi there")

    turns = store.get_history("u1")
    assert [(t.role, t.content) for t in turns] == [("user", "hello"), ("assistant", "hi there")]
    assert all(t.ts > 0 for t in turns)
    assert store.get_history("someone-else") == []


def test_rolling_cap_drops_oldest(tmp_path):
    store = HistoryStore(str(tmp_path / "memory.json"))
    for i in range(MAX_TURNS_PER_USER + 5):
        store.append_turn("u1", "user", f"msg {i}")

    turns = store.get_history("u1", limit=None)
    assert len(turns) == MAX_TURNS_PER_USER
    assert turns[0].content == "msg 5"
    assert turns[-1].content == f"msg {MAX_TURNS_PER_USER + 4}"


def test_limit_returns_most_recent(tmp_path):
    store = HistoryStore(str(tmp_path / "memory.json"))
    for i in range(30):
        store.append_turn("u1", "user", str(i))
    assert [t.content for t in store.get_history("u1", 3)] == ["27", "28", "29"]


def test_persists_across_instances(tmp_path):
    path = tmp_path / "memory.json"
    HistoryStore(str(path)).append_turn("u1", "user", "remember me")

    raw = json.loads(path.read_text(encoding="utf-8"))
    assert raw["u1"][0]["role"] == "user"
    assert set(raw["u1"][0]) == {"role", "content", "ts"}

    assert HistoryStore(str(path)).get_history("u1")[0].content == "remember me"


def test_clear_is_idempotent(tmp_path):
    store = HistoryStore(str(tmp_path / "memory.json"))
    store.append_turn("u1", "user", "hello")
    store.append_turn("u2", "user", "other")

    store.clear_user("u1")
    store.clear_user("u1")

    assert store.get_history("u1") == []
    assert len(store.get_history("u2")) == 1


def test_invalid_role_rejected(tmp_path):
    store = HistoryStore(str(tmp_path / "memory.json"))
    with pytest.raises(ValueError):
        store.append_turn("u1", "system", "nope")


def test_corrupt_file_starts_empty(tmp_path):
    path = tmp_path / "memory.json"
    path.write_text("{not json", encoding="utf-8")
    store = HistoryStore(str(path))
    assert store.get_history("u1") == []
    store.append_turn("u1", "user", "fresh start")
    assert json.loads(path.read_text(encoding="utf-8"))["u1"][0]["content"] == "fresh start"


def test_legacy_file_is_migrated(tmp_path):
    legacy = tmp_path / "old.json"
    legacy.write_text(json.dumps({"u1": [{"role": "user", "content": "old", "ts": 1}]}), encoding="utf-8")
    path = tmp_path / "data" / "memory.json"

    store = HistoryStore(str(path), legacy_path=str(legacy))

    assert store.get_history("u1")[0].content == "old"
    assert path.exists()
