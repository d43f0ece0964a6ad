"""
Purpose: Drop stale session data when a new build ships.
Why: A schema change must never leave old session documents half-applied to new UI,
while brand voice and content preferences survive upgrades.

Runs once at boot, before any session-scoped cell is created.
"""

from __future__ import annotations
import logging
from enum import Enum
from typing import Callable, Optional

from ..interfaces import KeyValueStore
from .keys import SESSION_SCOPED_KEYS, VERSION_KEY

logger = logging.getLogger("ContentOS.Version")


class GuardOutcome(str, Enum):
    UNCHANGED = "unchanged"
    FIRST_RUN = "first_run"
    UPGRADED = "upgraded"


class VersionGuard:
    def __init__(
        self,
        store: KeyValueStore,
        current_version: str,
        *,
        reload: Optional[Callable[[], None]] = None,
        session_keys: tuple[str, ...] = SESSION_SCOPED_KEYS,
    ) -> None:
        self.store = store
        self.current_version = current_version
        self.reload = reload
        self.session_keys = session_keys

    def run(self) -> GuardOutcome:
        stored = self.store.read(VERSION_KEY)
        if stored == self.current_version:
            return GuardOutcome.UNCHANGED

        for key in self.session_keys:
            self.store.remove(key)
        self.store.write(VERSION_KEY, self.current_version)

        if not stored:
            logger.info("First run of build %s, session storage initialized", self.current_version)
            return GuardOutcome.FIRST_RUN

        logger.info(
            "Build changed %s -> %s, cleared %d session keys",
            stored,
            self.current_version,
            len(self.session_keys),
        )
        # Deletion and the marker write are complete before anything re-reads the store.
        if self.reload is not None:
            self.reload()
        return GuardOutcome.UPGRADED
