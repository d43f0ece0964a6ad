from __future__ import annotations

import json

from contentos.models import (
    ArchiveEntry,
    SessionBundle,
    Topic,
    archive_entries_from,
)
from contentos.persistence import keys
from contentos.persistence.cells import create_cell, model_list_codec
from contentos.services.archive import ArchiveSyncGuard, ArchiveSynchronizer


def _archive(store, clock, ids) -> ArchiveSynchronizer:
    cell = create_cell(store, keys.ARCHIVE_KEY, list, model_list_codec(archive_entries_from))
    return ArchiveSynchronizer(cell, clock=clock, id_factory=ids)


def _bundle(name: str = "Launch lift", **overrides) -> SessionBundle:
    return SessionBundle(topics=[Topic(id="t1", name=name)], **overrides)


def test_topicless_session_is_not_archived(store, clock, ids) -> None:
    archive = _archive(store, clock, ids)
    assert archive.upsert(SessionBundle(), session_id="s1") is None
    assert archive.upsert(_bundle(name="   "), session_id="s1") is None
    assert archive.upsert(_bundle(), session_id="") is None
    assert archive.entries() == []


def test_upsert_creates_then_is_idempotent(store, clock, ids) -> None:
    archive = _archive(store, clock, ids)
    created = archive.upsert(_bundle(), session_id="s1", started_at="2024-05-01T08:00:00.000Z")
    assert created.title == "Launch lift"
    assert created.session_id == "s1"
    store.writes.clear()

    again = archive.upsert(_bundle(), session_id="s1")
    assert again.saved_at == created.saved_at
    assert len(archive.entries()) == 1
    assert store.writes == []


def test_upsert_updates_in_place_keeping_identity(store, clock, ids) -> None:
    archive = _archive(store, clock, ids)
    created = archive.upsert(_bundle(), session_id="s1", started_at="start")
    updated = archive.upsert(_bundle(name="Launch lift v2"), session_id="s1", started_at="other")

    assert updated.id == created.id
    assert updated.started_at == "start"
    assert updated.saved_at != created.saved_at
    assert [e.title for e in archive.entries()] == ["Launch lift v2"]


def test_new_entries_are_prepended(store, clock, ids) -> None:
    archive = _archive(store, clock, ids)
    archive.upsert(_bundle(name="First"), session_id="s1")
    archive.upsert(_bundle(name="Second"), session_id="s2")
    assert [e.title for e in archive.entries()] == ["Second", "First"]


def test_explicit_entry_id_targets_that_entry(store, clock, ids) -> None:
    archive = _archive(store, clock, ids)
    archive.upsert(_bundle(), session_id="s1", entry_id="entry-a")
    archive.upsert(_bundle(name="Edited"), session_id="s1", entry_id="entry-a")

    assert [(e.id, e.title) for e in archive.entries()] == [("entry-a", "Edited")]


def test_restore_and_delete(store, clock, ids) -> None:
    archive = _archive(store, clock, ids)
    entry = archive.upsert(_bundle(), session_id="s1", started_at="start")

    restored = archive.restore(entry.id)
    assert restored.session.id == "s1"
    assert restored.session.started_at == "start"
    assert restored.bundle.topics[0].name == "Launch lift"

    assert archive.restore("missing") is None
    assert archive.delete("missing") is False
    assert archive.delete(entry.id) is True
    assert archive.entries() == []


def test_entries_survive_reload_with_normalized_snapshots(store, clock, ids) -> None:
    store.write(
        keys.ARCHIVE_KEY,
        json.dumps(
            [
                {
                    "id": "e1",
                    "sessionId": "s1",
                    "title": "Old",
                    "data": {
                        "topics": [{"id": "t", "name": "Old"}],
                        "snapshot": {"generatedHtml": "legacy"},
                    },
                },
                {"title": "no id"},
            ]
        ),
    )
    entries = _archive(store, clock, ids).entries()
    assert [e.id for e in entries] == ["e1"]
    snapshot = entries[0].data.snapshot
    assert len(snapshot.sections) == 6
    assert snapshot.ai_draft == "<p>legacy</p>"


def test_guard_skips_bundles_it_already_pushed(store, clock, ids) -> None:
    archive = _archive(store, clock, ids)
    entry = archive.upsert(_bundle(), session_id="s1")
    restored = archive.restore(entry.id)

    guard = ArchiveSyncGuard(archive)
    guard.seed(restored.bundle)
    store.writes.clear()

    assert guard.sync(restored.bundle, entry_id=entry.id, session=restored.session) is False
    assert store.writes == []

    changed = _bundle(name="Changed")
    assert guard.sync(changed, entry_id=entry.id, session=restored.session) is True
    assert archive.find(entry.id).title == "Changed"
    assert guard.sync(changed, entry_id=entry.id, session=restored.session) is False

    guard.clear()
    assert not guard.armed


def test_archive_entry_from_dict_is_lenient() -> None:
    assert ArchiveEntry.from_dict(None) is None
    entry = ArchiveEntry.from_dict({"id": "e1", "data": "nope"})
    assert entry.data.topics == []
    assert entry.data.archive_title() is None
