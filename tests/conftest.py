from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Optional

import pytest

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from contentos.persistence.kv_store import InMemoryStore  # noqa: E402


class CountingStore(InMemoryStore):
    """InMemoryStore that records every write and remove."""

    def __init__(self, initial: Optional[dict[str, str]] = None) -> None:
        super().__init__(initial)
        self.writes: list[str] = []
        self.removes: list[str] = []

    def _raw_write(self, key: str, value: str) -> None:
        self.writes.append(key)
        super()._raw_write(key, value)

    def _raw_remove(self, key: str) -> None:
        self.removes.append(key)
        super()._raw_remove(key)


class FakeNotifier:
    def __init__(self, ok: bool = True, error: Optional[Exception] = None) -> None:
        self.ok = ok
        self.error = error
        self.calls: list[tuple[str, str]] = []

    def session_started(self, session_id: str, started_at: str) -> bool:
        self.calls.append((session_id, started_at))
        if self.error is not None:
            raise self.error
        return self.ok


class FakePoster:
    """Records posts; replies come from the ok/text/body attributes."""

    def __init__(self, ok: bool = True, text: str = "", body: Any = None) -> None:
        self.ok = ok
        self.text = text
        self.body = body
        self.calls: list[tuple[str, str, dict]] = []

    def post(self, url: str, event_type: str, data: dict) -> bool:
        self.calls.append((url, event_type, data))
        return self.ok

    def post_json(self, url: str, event_type: str, data: dict) -> tuple[bool, Optional[Any]]:
        self.calls.append((url, event_type, data))
        return self.ok, self.body if self.ok else None

    def post_text(self, url: str, event_type: str, data: dict) -> tuple[bool, str]:
        self.calls.append((url, event_type, data))
        return self.ok, self.text if self.ok else ""

    def events(self) -> list[str]:
        return [event for _url, event, _data in self.calls]


class SequentialIds:
    def __init__(self, prefix: str = "id") -> None:
        self.prefix = prefix
        self.count = 0

    def __call__(self) -> str:
        self.count += 1
        return f"{self.prefix}-{self.count}"


class TickingClock:
    """Each call returns the next second of a fixed day."""

    def __init__(self) -> None:
        self.ticks = 0

    def __call__(self) -> str:
        self.ticks += 1
        return f"2024-05-01T09:00:{self.ticks:02d}.000Z"


@pytest.fixture
def store() -> CountingStore:
    return CountingStore()


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def ids() -> SequentialIds:
    return SequentialIds()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def poster() -> FakePoster:
    return FakePoster()
