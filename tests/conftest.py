"""共通フィクスチャ"""

from datetime import datetime, timedelta
from typing import Optional

import pytest

from efficiency_cockpit.database.db_manager import DatabaseManager
from efficiency_cockpit.models import ForegroundEvent


class FakeClock:
    """テスト用の手動で進める時計"""

    def __init__(self, start: datetime):
        self.start = start
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now

    def set(self, value: datetime) -> datetime:
        self.now = value
        return self.now


@pytest.fixture
def t0():
    return datetime(2025, 1, 15, 10, 0, 0)


@pytest.fixture
def clock(t0):
    return FakeClock(t0)


@pytest.fixture
def db_manager(tmp_path):
    """一時ファイル上のDBマネージャー"""
    manager = DatabaseManager(str(tmp_path / "cockpit.db"))
    yield manager
    manager.close()


def make_event(
    bundle_id: str,
    timestamp: datetime,
    window_title: Optional[str] = None,
    app_name: Optional[str] = None,
) -> ForegroundEvent:
    return ForegroundEvent(
        bundle_id=bundle_id,
        app_name=app_name or bundle_id.rsplit(".", 1)[-1],
        window_title=window_title,
        timestamp=timestamp,
    )
