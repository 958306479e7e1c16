"""Settings loading and logging setup."""

import logging

import pytest
from pydantic import ValidationError

from nova_webhooks.core.logging_config import setup_logging
from nova_webhooks.core.settings import Settings


def test_environment_aliases(monkeypatch):
    monkeypatch.setenv("WEBHOOK_MAX_RETRIES", "5")
    monkeypatch.setenv("WEBHOOK_RETRY_DELAY_SECONDS", "0.5")
    monkeypatch.setenv("FACTORY_CONTRACT_ID", "CFACTORY")

    loaded = Settings()

    assert loaded.webhook_max_attempts == 5
    assert loaded.webhook_retry_base_delay_seconds == 0.5
    assert loaded.chain_events_path == "/contracts/CFACTORY/events"


def test_request_timeout_must_fit_in_sequence_timeout(monkeypatch):
    monkeypatch.setenv("WEBHOOK_TIMEOUT_SECONDS", "90")

    with pytest.raises(ValidationError):
        Settings()


def test_testing_database_override(monkeypatch):
    monkeypatch.setenv("USE_TEST_DATABASE", "true")
    monkeypatch.setenv("TEST_DATABASE_URL", "sqlite:///./test.db")

    assert Settings().effective_database_url == "sqlite:///./test.db"


def test_setup_logging_replaces_root_handlers():
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        setup_logging("debug")
        setup_logging("warning")

        assert len(root.handlers) == 1
        assert root.level == logging.WARNING
        assert logging.getLogger("httpx").level == logging.WARNING
    finally:
        for handler in root.handlers[:]:
            root.removeHandler(handler)
        for handler in saved_handlers:
            root.addHandler(handler)
        root.setLevel(saved_level)
