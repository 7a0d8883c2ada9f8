from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from reelqueue.config import DatabaseConfig
from reelqueue.db.base import build_engine, init_db
from reelqueue.services.uploads import UploadRepository


class FakeClock:
    """Settable clock so due-selection and grace windows are deterministic."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeResponse:
    def __init__(self, status_code: int = 200, payload=None):
        self.status_code = status_code
        self.ok = 200 <= status_code < 400
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def session_factory():
    engine = build_engine(DatabaseConfig(url="sqlite://"), poolclass=StaticPool)
    init_db(engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def repo(session_factory, clock):
    return UploadRepository(session_factory, clock=clock)


@pytest.fixture
def make_upload(repo, clock):
    """Create an upload scheduled ``offset`` from the fake clock's now."""

    def _make(offset=timedelta(seconds=-1), caption="Sunset reel", name="clip"):
        return repo.create(
            media_url=f"https://cdn.example.com/instagram/{name}.mp4",
            media_path=f"instagram/{name}.mp4",
            caption=caption,
            scheduled_for=clock() + offset,
        )

    return _make


@pytest.fixture
def fake_response():
    return FakeResponse
