"""
Abstractions for pluggable collaborators. Inversion of control: the engine depends
on these protocols, not on a concrete store or HTTP client, so tests can pass fakes.

Protocols:
- KeyValueStore.read/write/remove/list_keys: best-effort string storage, never raises.
- SessionNotifier.session_started(...): fire-and-forget "a session began" signal.
- WebhookPoster.post/post_json/post_text: JSON POST to the automation service.

Testing: InMemoryStore plus small fake notifier/poster classes cover the controller
without network or disk.
"""

from __future__ import annotations
from typing import Any, Optional, Protocol


class KeyValueStore(Protocol):
    def read(self, key: str) -> Optional[str]: ...

    def write(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...

    def list_keys(self, prefix: str = "") -> list[str]: ...


class SessionNotifier(Protocol):
    def session_started(self, session_id: str, started_at: str) -> bool: ...


class WebhookPoster(Protocol):
    def post(self, url: str, event_type: str, data: dict) -> bool: ...

    def post_json(
        self, url: str, event_type: str, data: dict
    ) -> tuple[bool, Optional[Any]]: ...

    def post_text(self, url: str, event_type: str, data: dict) -> tuple[bool, str]: ...
