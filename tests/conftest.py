from zoneinfo import ZoneInfo

import pytest

import store
from db_init import init_db
from models import TimeInterval
from WorkLog import app as flask_app

ZURICH = ZoneInfo('Europe/Zurich')


@pytest.fixture
def tz():
    return ZURICH


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / 'worklog.db'
    init_db(path)
    return path


@pytest.fixture
def conn(db_path):
    c = store.connect(db_path)
    yield c
    c.close()


@pytest.fixture
def make_interval():
    """Build an unsaved completed interval; duration follows start/end."""
    def _make(start, end=None, project='PRJ-001', owner='alice', description='',
              tags=(), corrected=None):
        return TimeInterval(
            id=store.new_id(),
            owner=owner,
            project=project,
            description=description,
            start_time=start,
            end_time=end,
            duration=int((end - start).total_seconds()) if end else None,
            corrected_duration=corrected,
            tags=set(tags),
        )
    return _make


@pytest.fixture
def client(db_path):
    flask_app.config.update(TESTING=True, DATABASE=str(db_path))
    with flask_app.test_client() as c:
        yield c
