import pytest

from conftest import make_snapshot

from mockprep.core.errors import PersistenceError
from mockprep.core.models import EndReason
from mockprep.services.progress_store import (
    InMemoryProgressStore,
    JsonFileProgressStore,
    progress_key,
)


@pytest.fixture(params=["file", "memory"])
def any_store(request, tmp_path):
    if request.param == "file":
        return JsonFileProgressStore(tmp_path / "progress")
    return InMemoryProgressStore()


def test_key_format():
    assert progress_key("abc") == "interview-progress-abc"


def test_get_missing_returns_none(any_store):
    assert any_store.get("nope") is None


def test_put_then_get(any_store):
    snap = make_snapshot(saved_at=123.0)
    snap.end_reason = EndReason.TIMEOUT
    any_store.put("iv-1", snap)

    loaded = any_store.get("iv-1")
    assert loaded is not None
    assert [e.content for e in loaded.transcript] == ["line 0", "line 1", "line 2"]
    assert loaded.end_reason == EndReason.TIMEOUT
    assert loaded.saved_at == 123.0


def test_writing_same_snapshot_twice_equals_one_write(any_store):
    snap = make_snapshot(saved_at=5.0)
    any_store.put("iv-1", snap)
    once = any_store.get("iv-1").to_dict()
    any_store.put("iv-1", snap)
    assert any_store.get("iv-1").to_dict() == once


def test_put_overwrites_whole_snapshot(any_store):
    any_store.put("iv-1", make_snapshot(entries=5))
    any_store.put("iv-1", make_snapshot(entries=1))
    assert len(any_store.get("iv-1").transcript) == 1


def test_delete_is_idempotent(any_store):
    any_store.put("iv-1", make_snapshot())
    any_store.delete("iv-1")
    any_store.delete("iv-1")
    assert any_store.get("iv-1") is None


def test_keys_are_isolated(any_store):
    any_store.put("a", make_snapshot(session_id="a"))
    any_store.put("b", make_snapshot(session_id="b", entries=1))
    any_store.delete("a")
    assert any_store.get("a") is None
    assert any_store.get("b").session_id == "b"


def test_file_store_layout(tmp_path):
    store = JsonFileProgressStore(tmp_path)
    store.put("iv-1", make_snapshot(session_id="iv-1"))
    store.put("iv/1", make_snapshot(session_id="iv/1", entries=1))
    store.put("iv_1", make_snapshot(session_id="iv_1", entries=2))

    files = sorted(p.name for p in tmp_path.iterdir())
    assert files == [
        "interview-progress-iv%2F1.json",
        "interview-progress-iv-1.json",
        "interview-progress-iv_1.json",
    ]
    assert len(store.get("iv/1").transcript) == 1
    assert len(store.get("iv_1").transcript) == 2


def test_file_store_corrupt_document(tmp_path):
    store = JsonFileProgressStore(tmp_path)
    (tmp_path / "interview-progress-iv-1.json").write_text("{not json", encoding="utf-8")
    with pytest.raises(PersistenceError):
        store.get("iv-1")


def test_memory_store_is_not_aliased():
    store = InMemoryProgressStore()
    snap = make_snapshot()
    store.put("iv-1", snap)
    snap.transcript.clear()
    assert len(store.get("iv-1").transcript) == 3
    assert "iv-1" in store
    assert len(store) == 1
