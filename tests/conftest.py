"""
Shared pytest fixtures and entity builders.
"""

import logging
from datetime import datetime
from datetime import timedelta
from datetime import timezone

import pytest

from academic_calendar_sync.db import StateDatabase
from academic_calendar_sync.models import SyncOptions
from academic_calendar_sync.models import SyncReport
from academic_calendar_sync.models import SyncRun
from academic_calendar_sync.models import SyncSettings
from academic_calendar_sync.rate_limit import RateLimiter

USER_ID = "user-1"
# A Wednesday.
NOW = datetime(2025, 5, 7, 12, 0, tzinfo=timezone.utc)


def make_settings(user_id: str = USER_ID, **overrides) -> SyncSettings:
    """Connected settings with a token that is nowhere near expiry."""
    values = {
        "user_id": user_id,
        "connected": True,
        "access_token": "access-1",
        "refresh_token": "refresh-1",
        "token_expires_at": NOW + timedelta(hours=1),
        "email": "student@example.edu",
    }
    values.update(overrides)
    return SyncSettings(**values)


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "test_state.db"


@pytest.fixture
def state_db(db_path):
    with StateDatabase(db_path) as db:
        yield db


@pytest.fixture
def settings(state_db):
    settings = make_settings()
    state_db.save_settings(settings)
    return settings


@pytest.fixture
def sync_run():
    return SyncRun(
        user_id=USER_ID,
        import_calendar_id="primary",
        export_calendar_id="primary",
        options=SyncOptions(),
        now=NOW,
    )


@pytest.fixture
def sync_report():
    return SyncReport()


@pytest.fixture
def sync_logger():
    return logging.getLogger("test_sync")


@pytest.fixture
def rate_limiter():
    return RateLimiter(interval=0)


@pytest.fixture
def clock():
    return lambda: NOW
