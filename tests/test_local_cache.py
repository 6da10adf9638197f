"""Tests for the JSON-file local cache."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from copydesk.services.errors import QuotaExceeded
from copydesk.services.local_cache import LocalCacheStore
from copydesk.services.records import DOCUMENTS, PROGRESS, PersistedRecord


def _record(**payload: object) -> PersistedRecord:
    return PersistedRecord(payload=dict(payload))


def test_put_get_survives_reload(cache_dir: Path) -> None:
    store = LocalCacheStore.in_directory(cache_dir)
    record = _record(id="doc-1", content="Hello")

    store.put(DOCUMENTS, "doc-1", record)
    reloaded = LocalCacheStore.in_directory(cache_dir)

    assert reloaded.get(DOCUMENTS, "doc-1") == record
    assert reloaded.keys(DOCUMENTS) == ["doc-1"]
    assert reloaded.get(PROGRESS, "doc-1") is None


def test_put_replaces_whole_record(cache_dir: Path) -> None:
    store = LocalCacheStore.in_directory(cache_dir)
    store.put(DOCUMENTS, "doc-1", _record(id="doc-1", title="Old", extra=True))

    store.put(DOCUMENTS, "doc-1", _record(id="doc-1", title="New"))

    assert store.get(DOCUMENTS, "doc-1").payload == {"id": "doc-1", "title": "New"}


def test_unknown_collection_is_rejected(cache_dir: Path) -> None:
    store = LocalCacheStore.in_directory(cache_dir)

    with pytest.raises(KeyError):
        store.put("session-ui", "x", _record())


def test_corrupt_file_hydrates_empty_with_error(cache_dir: Path) -> None:
    cache_dir.mkdir(parents=True)
    (cache_dir / "workspace_cache.json").write_text("{not json", encoding="utf-8")

    snapshot = LocalCacheStore.in_directory(cache_dir).load_snapshot()

    assert snapshot.documents == {}
    assert snapshot.session == {}
    assert snapshot.error is not None
    assert snapshot.error.error_code == "hydration_failure"


def test_corrupt_record_is_skipped(cache_dir: Path) -> None:
    store = LocalCacheStore.in_directory(cache_dir)
    store.put(DOCUMENTS, "good", _record(id="good"))
    raw = json.loads(store.path.read_text(encoding="utf-8"))
    raw[DOCUMENTS]["entries"]["bad"] = {"schemaVersion": 1}
    store.path.write_text(json.dumps(raw), encoding="utf-8")

    snapshot = LocalCacheStore.in_directory(cache_dir).load_snapshot()

    assert list(snapshot.documents) == ["good"]
    assert snapshot.error is not None
    assert snapshot.error.details["corrupt"] == ["documents:bad"]


def test_version_one_cache_is_migrated(cache_dir: Path) -> None:
    cache_dir.mkdir(parents=True)
    path = cache_dir / "workspace_cache.json"
    path.write_text(
        json.dumps(
            {
                "version": 1,
                "documents": {"doc-1": {"id": "doc-1", "content": "Legacy"}},
                "session": {"active_document_id": "doc-1", "theme": "dark"},
            }
        ),
        encoding="utf-8",
    )

    store = LocalCacheStore(path)
    snapshot = store.load_snapshot()

    assert snapshot.documents["doc-1"].payload["content"] == "Legacy"
    assert snapshot.session == {"active_document_id": "doc-1"}
    persisted = json.loads(path.read_text(encoding="utf-8"))
    assert persisted["version"] == 2
    assert persisted[DOCUMENTS]["entries"]["doc-1"]["payload"]["id"] == "doc-1"


def test_quota_exceeded_rolls_back(cache_dir: Path) -> None:
    store = LocalCacheStore.in_directory(cache_dir, capacity_bytes=400)
    store.put(DOCUMENTS, "small", _record(content="tiny"))

    with pytest.raises(QuotaExceeded) as excinfo:
        store.put(DOCUMENTS, "big", _record(content="x" * 1000))

    assert excinfo.value.capacity_bytes == 400
    assert excinfo.value.required_bytes > 400
    assert store.get(DOCUMENTS, "big") is None
    assert LocalCacheStore.in_directory(cache_dir).keys(DOCUMENTS) == ["small"]


def test_session_prefs_are_whitelisted(cache_dir: Path) -> None:
    store = LocalCacheStore.in_directory(cache_dir)

    store.save_session_prefs({"left_sidebar_open": False, "active_tool_id": "expand", "bogus": 1})

    assert LocalCacheStore.in_directory(cache_dir).session_prefs() == {
        "left_sidebar_open": False,
        "active_tool_id": "expand",
    }


def test_pending_markers_round_trip_and_clear_on_remove(cache_dir: Path) -> None:
    store = LocalCacheStore.in_directory(cache_dir)
    store.put(DOCUMENTS, "doc-1", _record(id="doc-1"))
    store.mark_pending(DOCUMENTS, "doc-1")
    store.mark_pending(PROGRESS, "doc-1")

    assert LocalCacheStore.in_directory(cache_dir).pending_sync() == {"documents:doc-1", "progress:doc-1"}

    store.remove(DOCUMENTS, "doc-1")
    store.clear_pending(PROGRESS, "doc-1")

    assert store.pending_sync() == set()


def test_persisted_record_rejects_newer_schema() -> None:
    with pytest.raises(ValueError):
        PersistedRecord.from_dict({"schemaVersion": 99, "payload": {}})
    with pytest.raises(ValueError):
        PersistedRecord.from_dict({"payload": "not a mapping"})
