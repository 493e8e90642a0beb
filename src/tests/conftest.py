"""Shared test fixtures for dev-sandbox tests."""

import os

import pytest

from devsandbox.config import get_config

SANDBOX_ENV_VARS = (
    "INSTANCE_ID",
    "STATE_DIR",
    "ALLOCATED_PORT",
    "PGHOST",
    "PGPORT",
    "PGUSER",
    "PGPASSWORD",
    "PGDATA",
    "PGDATABASE",
    "XDG_CACHE_HOME",
)


@pytest.fixture(autouse=True)
def setup_test_env(monkeypatch: pytest.MonkeyPatch):
    """Isolate tests from the caller's sandbox and configuration."""
    for key in SANDBOX_ENV_VARS:
        monkeypatch.delenv(key, raising=False)
    for key in list(os.environ):
        if key.startswith("SANDBOX_"):
            monkeypatch.delenv(key, raising=False)

    get_config.cache_clear()
    yield
    get_config.cache_clear()
