"""Root conftest: test environment and structlog routing for every suite."""

import os
from pathlib import Path

import pytest
import structlog
from dotenv import load_dotenv

from shared.logging import setup_logging

# .env.tests wins over the developer's shell so the ticket secret matches the test helpers.
load_dotenv(Path(__file__).resolve().parent.parent / ".env.tests", override=True)

# Route structlog through stdlib logging so caplog sees room and connection events.
setup_logging()


@pytest.fixture(autouse=True)
def _isolate_server_env(monkeypatch):
    """Ignore BINGO_* overrides from the shell; tests set their own."""
    for name in list(os.environ):
        if name.startswith("BINGO_") and name != "BINGO_LOG_DIR":
            monkeypatch.delenv(name)


@pytest.fixture(autouse=True)
def _clear_log_context():
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()
