"""
Purpose: Runtime configuration for the ContentOS engine and UI.
Why: The build version and the webhook table used to be module globals; they are
now carried in an explicit AppConfig so tests can pass fixtures.

Sources (in order): explicit arguments > environment (.env via python-dotenv) > defaults.
"""

from __future__ import annotations
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

APP_VERSION = "1.9.8"
ENV_PREFIX = "CONTENTOS_"
DEFAULT_STORE_PATH = Path.home() / ".contentos" / "store.json"
DEFAULT_REQUEST_TIMEOUT = 15.0

_N8N_BASE = "http://localhost:5678/webhook-test"


@dataclass(frozen=True)
class WebhookEndpoints:
    start_session: str = f"{_N8N_BASE}/3c135f0d-ffad-4324-b30e-eaed69086ae7"
    brand_profile: str = f"{_N8N_BASE}/8787372f-aa37-4295-af51-f18c0b7d6a65"
    topics_continue: str = f"{_N8N_BASE}/afcecf7d-65e8-48c8-8205-7eec66e72f15"
    snapshot_generate: str = f"{_N8N_BASE}/8792d1e2-8c5b-457f-96b0-63bca95e9ab4"
    article_generate: str = f"{_N8N_BASE}/b30e07dc-0218-493a-a99f-3e0ad96429fc"
    snapshot_change: str = f"{_N8N_BASE}/259d665c-7975-47ba-b3e1-6d7055a40a9e"

    @classmethod
    def from_env(cls, env: Mapping[str, str]) -> "WebhookEndpoints":
        """CONTENTOS_WEBHOOK_START_SESSION=... overrides start_session, etc."""
        overrides = {}
        for f in fields(cls):
            value = (env.get(f"{ENV_PREFIX}WEBHOOK_{f.name.upper()}") or "").strip()
            if value:
                overrides[f.name] = value
        return cls(**overrides)


@dataclass(frozen=True)
class AppConfig:
    app_version: str = APP_VERSION
    store_path: Path = DEFAULT_STORE_PATH
    webhooks: WebhookEndpoints = field(default_factory=WebhookEndpoints)
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    sanitize_html: bool = True
    log_level: str = "INFO"

    @property
    def display_version(self) -> str:
        if not self.app_version or self.app_version == "dev":
            return "dev"
        return self.app_version


def _env_flag(value: Optional[str], default: bool) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() not in {"0", "false", "no", "off"}


def _env_float(value: Optional[str], default: float) -> float:
    try:
        parsed = float(value) if value else default
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def load_config(env: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Build an AppConfig from the environment (loads a local .env first)."""
    if env is None:
        load_dotenv()
        env = os.environ

    store_path = (env.get(f"{ENV_PREFIX}STORE_PATH") or "").strip()
    return AppConfig(
        app_version=(env.get(f"{ENV_PREFIX}APP_VERSION") or "").strip() or APP_VERSION,
        store_path=Path(store_path).expanduser() if store_path else DEFAULT_STORE_PATH,
        webhooks=WebhookEndpoints.from_env(env),
        request_timeout=_env_float(
            env.get(f"{ENV_PREFIX}REQUEST_TIMEOUT"), DEFAULT_REQUEST_TIMEOUT
        ),
        sanitize_html=_env_flag(env.get(f"{ENV_PREFIX}SANITIZE_HTML"), True),
        log_level=(env.get(f"{ENV_PREFIX}LOG_LEVEL") or "INFO").strip().upper(),
    )


def configure_logging(level: str = "INFO") -> None:
    """Install a stream handler on the ContentOS logger tree (idempotent)."""
    root = logging.getLogger("ContentOS")
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    if root.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    )
    root.addHandler(handler)
