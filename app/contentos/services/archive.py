"""
Purpose: The archive of past sessions (most recent first) and its synchronization.
Why: Starting a new session must not lose the old one, and a restored session keeps
saving into its own entry while the user works on it.

Key rules:
- upsert is idempotent: identical {data, title} leaves the entry (and savedAt) alone.
- one implicit entry per session id; restores target their entry by id.
- a session without any named topic is never archived.
- ArchiveSyncGuard skips upserts for bundles it has already pushed, so a state
  change and its own persisted echo cannot feed each other.
"""

from __future__ import annotations
import logging
import uuid
from typing import Callable, Optional

from ..models import ArchiveEntry, RestoredSession, Session, SessionBundle, iso_timestamp
from ..persistence.cells import PersistedCell
from ..utils.payload_json import canonical_dumps

logger = logging.getLogger("ContentOS.Archive")


def _fingerprint(data: SessionBundle, title: str) -> str:
    return canonical_dumps({"data": data.to_dict(), "title": title})


class ArchiveSynchronizer:
    def __init__(
        self,
        cell: PersistedCell[list[ArchiveEntry]],
        *,
        clock: Optional[Callable[[], str]] = None,
        id_factory: Optional[Callable[[], str]] = None,
    ) -> None:
        self.cell = cell
        self.clock = clock or iso_timestamp
        self.id_factory = id_factory or (lambda: str(uuid.uuid4()))

    def entries(self) -> list[ArchiveEntry]:
        return list(self.cell.get())

    def find(self, entry_id: str) -> Optional[ArchiveEntry]:
        return next((e for e in self.cell.get() if e.id == entry_id), None)

    def exists(self, entry_id: Optional[str]) -> bool:
        return bool(entry_id) and self.find(entry_id) is not None

    def upsert(
        self,
        bundle: SessionBundle,
        *,
        session_id: str,
        started_at: str = "",
        entry_id: Optional[str] = None,
    ) -> Optional[ArchiveEntry]:
        if not session_id:
            return None
        title = bundle.archive_title()
        if title is None:
            logger.debug("Session %s has no named topic, not archived", session_id)
            return None

        entries = list(self.cell.get())
        index = next(
            (
                i
                for i, e in enumerate(entries)
                if (e.id == entry_id if entry_id else e.session_id == session_id)
            ),
            -1,
        )

        if index >= 0:
            existing = entries[index]
            if _fingerprint(existing.data, existing.title) == _fingerprint(bundle, title):
                return existing
            updated = ArchiveEntry(
                id=existing.id,
                session_id=existing.session_id,
                started_at=existing.started_at,
                saved_at=self.clock(),
                title=title,
                data=bundle,
            )
            entries[index] = updated
            self.cell.set(entries)
            logger.debug("Archive entry %s updated", updated.id)
            return updated

        created = ArchiveEntry(
            id=entry_id or self.id_factory(),
            session_id=session_id,
            started_at=started_at,
            saved_at=self.clock(),
            title=title,
            data=bundle,
        )
        self.cell.set([created] + entries)
        logger.info("Archived session %s as %r", session_id, title)
        return created

    def restore(self, entry_id: str) -> Optional[RestoredSession]:
        entry = self.find(entry_id)
        if entry is None:
            return None
        return RestoredSession(
            session=Session(id=entry.session_id, started_at=entry.started_at),
            bundle=entry.data,
        )

    def delete(self, entry_id: str) -> bool:
        entries = self.cell.get()
        remaining = [e for e in entries if e.id != entry_id]
        if len(remaining) == len(entries):
            return False
        self.cell.set(remaining)
        return True


class ArchiveSyncGuard:
    """Remembers the last bundle pushed to the active entry."""

    def __init__(self, archive: ArchiveSynchronizer) -> None:
        self.archive = archive
        self._held: Optional[str] = None

    @property
    def armed(self) -> bool:
        return self._held is not None

    def seed(self, bundle: SessionBundle) -> None:
        self._held = canonical_dumps(bundle.to_dict())

    def clear(self) -> None:
        self._held = None

    def sync(self, bundle: SessionBundle, *, entry_id: str, session: Session) -> bool:
        """Push bundle to entry_id unless it equals the last push. True if upsert ran."""
        serialized = canonical_dumps(bundle.to_dict())
        if serialized == self._held:
            return False
        self.archive.upsert(
            bundle,
            session_id=session.id,
            started_at=session.started_at,
            entry_id=entry_id,
        )
        # Re-armed after the write, whichever branch upsert took.
        self._held = serialized
        return True
