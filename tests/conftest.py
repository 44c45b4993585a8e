import pytest

from rss_subscriptions import db


class RecordingQueue:
    """Job queue double that records enqueued jobs without running them."""

    def __init__(self):
        self.calls = []

    def enqueue(self, job, *args, **kwargs):
        self.calls.append((job, args, kwargs))
        return None

    def shutdown(self, wait=True):
        pass


@pytest.fixture
def session_factory(tmp_path):
    """File-backed SQLite database shared by every session of a test."""
    engine = db.init_engine(f"sqlite:///{tmp_path / 'subscriptions.db'}")
    yield db.get_session_factory(engine)
    engine.dispose()


@pytest.fixture
def session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def queue():
    return RecordingQueue()
