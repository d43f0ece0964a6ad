from __future__ import annotations

import logging
from pathlib import Path

from contentos.config import (
    APP_VERSION,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_STORE_PATH,
    AppConfig,
    WebhookEndpoints,
    configure_logging,
    load_config,
)


def test_defaults_from_empty_environment() -> None:
    config = load_config({})
    assert config.app_version == APP_VERSION
    assert config.store_path == DEFAULT_STORE_PATH
    assert config.request_timeout == DEFAULT_REQUEST_TIMEOUT
    assert config.sanitize_html is True
    assert config.log_level == "INFO"
    assert config.webhooks == WebhookEndpoints()


def test_environment_overrides(tmp_path) -> None:
    env = {
        "CONTENTOS_APP_VERSION": "2.0.0",
        "CONTENTOS_STORE_PATH": str(tmp_path / "s.json"),
        "CONTENTOS_REQUEST_TIMEOUT": "4.5",
        "CONTENTOS_SANITIZE_HTML": "0",
        "CONTENTOS_LOG_LEVEL": "debug",
        "CONTENTOS_WEBHOOK_BRAND_PROFILE": "https://n8n.example/brand",
    }
    config = load_config(env)
    assert config.app_version == "2.0.0"
    assert config.store_path == Path(tmp_path / "s.json")
    assert config.request_timeout == 4.5
    assert config.sanitize_html is False
    assert config.log_level == "DEBUG"
    assert config.webhooks.brand_profile == "https://n8n.example/brand"
    assert config.webhooks.start_session == WebhookEndpoints().start_session


def test_bad_timeout_falls_back() -> None:
    assert load_config({"CONTENTOS_REQUEST_TIMEOUT": "soon"}).request_timeout == DEFAULT_REQUEST_TIMEOUT
    assert load_config({"CONTENTOS_REQUEST_TIMEOUT": "-1"}).request_timeout == DEFAULT_REQUEST_TIMEOUT


def test_display_version() -> None:
    assert AppConfig(app_version="").display_version == "dev"
    assert AppConfig(app_version="1.9.8").display_version == "1.9.8"


def test_configure_logging_installs_one_handler() -> None:
    logger = logging.getLogger("ContentOS")
    saved = list(logger.handlers)
    logger.handlers.clear()
    try:
        configure_logging("DEBUG")
        configure_logging("DEBUG")
        assert len(logger.handlers) == 1
        assert logger.level == logging.DEBUG
    finally:
        logger.handlers[:] = saved
