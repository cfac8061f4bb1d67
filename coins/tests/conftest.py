from datetime import datetime, timedelta, timezone

import pytest

from coins.config import Settings
from coins.service import CoinService
from coins.signature import generate_signature


APP_KEY = "CS001"
APP_SECRET = "test-secret-0123456789abcdef"
NOW = datetime(2025, 3, 14, 9, 30, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)

    def millis(self) -> int:
        return int(self.now.timestamp() * 1000)


def make_settings(**overrides) -> Settings:
    values = dict(app_secrets={APP_KEY: APP_SECRET}, checkin_timezone="UTC")
    values.update(overrides)
    return Settings(**values)


def signed_callback(clock: FixedClock, order_id: str, user_id="55", coins: int = 10, **overrides) -> dict:
    """Build a callback payload signed the way the partner signs it."""
    timestamp = overrides.pop("timestamp", clock.millis())
    payload = {
        "appKey": APP_KEY,
        "userId": user_id,
        "taskId": "14",
        "orderId": order_id,
        "coins": coins,
        "totalCount": 2,
        "completedCount": 1,
        "timestamp": timestamp,
        "timezone": "Asia/Shanghai",
        "sign": generate_signature(APP_SECRET, coins, timestamp, user_id),
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def service(clock) -> CoinService:
    return CoinService(settings=make_settings(), clock=clock)


@pytest.fixture
def file_service(tmp_path, clock) -> CoinService:
    """Service over a SQLite file so separate threads get separate connections."""
    settings = make_settings(database_url=f"sqlite:///{tmp_path / 'coins.sqlite3'}", sqlite_busy_timeout=30.0)
    return CoinService.from_settings(settings, clock=clock)
