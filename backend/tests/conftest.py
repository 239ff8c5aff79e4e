import os

# Must be in place before finbot modules build their settings-derived globals.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "finbot-unit-test-signing-secret-0123456789")
os.environ.setdefault("AI_PROVIDER", "mock")
os.environ.setdefault("ACCOUNTING_SYNC_ENABLED", "false")

import pytest

from finbot.core.config import get_settings
from finbot.services.ai.common.availability import get_availability
from finbot.services.memory import reset_memory_store


@pytest.fixture(autouse=True)
def _reset_process_state():
    # Settings, memory and the AI breaker are process-wide; never leak them across tests.
    get_settings.cache_clear()
    reset_memory_store()
    get_availability().reset()
    yield
    get_settings.cache_clear()
    reset_memory_store()
    get_availability().reset()
