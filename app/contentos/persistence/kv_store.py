"""
Purpose: Durable key/value storage for workflow state (in-memory or a JSON file).
Why: Survive page reloads and restarts; every other layer treats persistence as
best-effort, so no store operation may raise to its caller.

What is inside:
BestEffortStore: read/write/remove/list_keys wrappers that log and swallow failures.
InMemoryStore: dict-backed, for tests and as a fallback.
JsonFileStore: one JSON object file, rewritten atomically on every change.

Testing:
In-memory: simple state tests; failing subclasses for the swallow contract.
File: tmp_path fixture; corrupt-file and unwritable-path tests.
"""

from __future__ import annotations
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

logger = logging.getLogger("ContentOS.Store")


class BestEffortStore:
    """Subclasses implement the _raw_* hooks; failures there never reach callers."""

    def _raw_read(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def _raw_write(self, key: str, value: str) -> None:
        raise NotImplementedError

    def _raw_remove(self, key: str) -> None:
        raise NotImplementedError

    def _raw_keys(self) -> list[str]:
        raise NotImplementedError

    def read(self, key: str) -> Optional[str]:
        try:
            value = self._raw_read(key)
        except Exception as e:
            logger.warning("Store read of %s skipped: %s", key, e)
            return None
        return value if isinstance(value, str) else None

    def write(self, key: str, value: str) -> None:
        try:
            self._raw_write(key, value)
        except Exception as e:
            logger.warning("Store write of %s dropped: %s", key, e)

    def remove(self, key: str) -> None:
        try:
            self._raw_remove(key)
        except Exception as e:
            logger.warning("Store remove of %s dropped: %s", key, e)

    def list_keys(self, prefix: str = "") -> list[str]:
        try:
            keys = self._raw_keys()
        except Exception as e:
            logger.warning("Store key listing skipped: %s", e)
            return []
        return sorted(k for k in keys if k.startswith(prefix))


class InMemoryStore(BestEffortStore):
    def __init__(self, initial: Optional[dict[str, str]] = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def _raw_read(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def _raw_write(self, key: str, value: str) -> None:
        self._data[key] = value

    def _raw_remove(self, key: str) -> None:
        self._data.pop(key, None)

    def _raw_keys(self) -> list[str]:
        return list(self._data)


class JsonFileStore(BestEffortStore):
    """
    All keys live in one JSON object file. The file is re-read on every access so
    two app processes sharing a path see each other's writes (last writer wins).
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning("Store file %s is unreadable, treating as empty: %s", self.path, e)
            return {}
        if not isinstance(data, dict):
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)}

    def _dump(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            try:
                os.remove(tmp_path)
            except OSError:
                pass
            raise

    def _raw_read(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def _raw_write(self, key: str, value: str) -> None:
        data = self._load()
        if data.get(key) == value:
            return
        data[key] = value
        self._dump(data)

    def _raw_remove(self, key: str) -> None:
        data = self._load()
        if key not in data:
            return
        del data[key]
        self._dump(data)

    def _raw_keys(self) -> list[str]:
        return list(self._load())
