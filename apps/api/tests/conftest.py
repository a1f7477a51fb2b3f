import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("BOT_TOKEN", "123456:TEST-BOT-TOKEN")
os.environ.setdefault("FREEPIK_API_KEY", "test-freepik-key")
os.environ.setdefault("REDIS_URL", "redis://127.0.0.1:1")

import pytest  # noqa: E402

from main import app  # noqa: E402
from routers import rate_limit  # noqa: E402


@pytest.fixture(autouse=True)
def reset_local_rate_limit_counters():
    """Keep in-memory rate-limit state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit._local_counters.clear()
    yield
    rate_limit._local_counters.clear()
    app.state.disable_rate_limits = previous
