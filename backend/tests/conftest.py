import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

# Point the application's default store at a throwaway database before
# `termbook.config` is imported by any test module.
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite:///{os.path.join(tempfile.mkdtemp(prefix='termbook-tests-'), 'termbook.db')}",
)

from termbook.database import create_store  # noqa: E402


class FakeClock:
    """Deterministic clock that moves forward one minute per reading."""

    def __init__(self, start: datetime, step: timedelta = timedelta(minutes=1)):
        self.current = start
        self.step = step

    def __call__(self) -> datetime:
        value = self.current
        self.current = self.current + self.step
        return value

    def set(self, value: datetime) -> None:
        self.current = value


@pytest.fixture
def store(tmp_path):
    """Provide a fresh SQLite-backed document store for each test."""
    return create_store(f"sqlite:///{tmp_path / 'store.db'}")


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 11, 2, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def client(store):
    """TestClient whose requests all hit the per-test store."""
    from fastapi.testclient import TestClient
    from termbook.database import get_store
    from termbook.main import app

    app.dependency_overrides[get_store] = lambda: store
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
