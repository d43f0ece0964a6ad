"""
Purpose: Thin client for the automation service (n8n webhooks).
One place for the envelope ({type, timestamp, ...data}), timeouts and error mapping.

Network failures never raise from here: post() returns False, post_json/post_text
return ok=False, and the caller decides whether that matters.

Testing: Pass a fake requests.Session (or monkeypatch .post); assert envelopes and
failure mapping.
"""

from __future__ import annotations
import logging
from typing import Any, Callable, Optional

import requests

from ..config import DEFAULT_REQUEST_TIMEOUT, WebhookEndpoints
from ..models import iso_timestamp

logger = logging.getLogger("ContentOS.Webhooks")


class WebhookError(RuntimeError):
    """A collaborator call the caller cannot ignore did not succeed."""


class WebhookClient:
    def __init__(
        self,
        endpoints: Optional[WebhookEndpoints] = None,
        *,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        session: Optional[requests.Session] = None,
        clock: Optional[Callable[[], str]] = None,
    ) -> None:
        self.endpoints = endpoints or WebhookEndpoints()
        self.timeout = timeout
        self.session = session or requests.Session()
        self.clock = clock or iso_timestamp

    def envelope(self, event_type: str, data: dict) -> dict:
        return {"type": event_type, "timestamp": self.clock(), **data}

    def _send(self, url: str, event_type: str, data: dict) -> Optional[requests.Response]:
        if not (url or "").strip():
            logger.warning("Webhook %s skipped: no URL configured", event_type)
            return None
        try:
            return self.session.post(
                url,
                json=self.envelope(event_type, data),
                headers={"content-type": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error("Webhook %s failed: %s", event_type, e)
            return None

    def post(self, url: str, event_type: str, data: dict) -> bool:
        resp = self._send(url, event_type, data)
        return resp is not None and resp.ok

    def post_json(
        self, url: str, event_type: str, data: dict
    ) -> tuple[bool, Optional[Any]]:
        resp = self._send(url, event_type, data)
        if resp is None:
            return False, None
        try:
            body = resp.json()
        except ValueError:
            body = None
        return resp.ok, body

    def post_text(self, url: str, event_type: str, data: dict) -> tuple[bool, str]:
        resp = self._send(url, event_type, data)
        if resp is None:
            return False, ""
        return resp.ok, resp.text or ""

    def session_started(self, session_id: str, started_at: str) -> bool:
        ok = self.post(
            self.endpoints.start_session,
            "session_start",
            {"sessionId": session_id, "startedAt": started_at},
        )
        if not ok:
            logger.error("Session start webhook did not succeed for %s", session_id)
        return ok
