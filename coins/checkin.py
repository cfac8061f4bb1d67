import logging
from datetime import date, datetime, timedelta
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from .errors import AlreadyCheckedInTodayError
from .models import ChangeType, CheckinResult, CheckinStatus
from .store import LedgerStore, Posting
from .tables import UserCoins, utcnow

logger = logging.getLogger(__name__)

# Reward by streak day; day 6 and beyond stay at the cap
CHECKIN_REWARDS = {1: 20, 2: 20, 3: 30, 4: 40, 5: 50}
CHECKIN_REWARD_CAP = 60


def reward_for_streak(streak: int) -> int:
    if streak < 1:
        raise ValueError("streak starts at 1")
    return CHECKIN_REWARDS.get(streak, CHECKIN_REWARD_CAP)


def next_streak(last_checkin_date: Optional[date], continuous_days: int, today: date) -> int:
    if last_checkin_date == today - timedelta(days=1):
        return (continuous_days or 0) + 1
    return 1


def checkin_key(user_key: int, day: date) -> str:
    return f"checkin:{user_key}|{day.isoformat()}"


class CheckinEngine:
    def __init__(self, store: LedgerStore, clock: Callable[[], datetime] = utcnow, timezone: str = "UTC"):
        self.store = store
        self.clock = clock
        self.tz = ZoneInfo(timezone)

    def today(self) -> date:
        return self.clock().astimezone(self.tz).date()

    def status(self, user_key: int, today: Optional[date] = None) -> CheckinStatus:
        today = today or self.today()
        balance = self.store.get_balance(user_key)
        if balance is None:
            return CheckinStatus(checked=False, last_checkin_date=None, continuous_days=0)
        return CheckinStatus(
            checked=balance.last_checkin_date == today,
            last_checkin_date=balance.last_checkin_date,
            continuous_days=balance.continuous_days,
        )

    def checkin(self, user_key: int, today: Optional[date] = None) -> CheckinResult:
        today = today or self.today()
        planned: list[Posting] = []

        def plan(row: UserCoins) -> Posting:
            if row.last_checkin_date == today:
                raise AlreadyCheckedInTodayError(f"User {user_key} already checked in on {today}")
            streak = next_streak(row.last_checkin_date, row.continuous_days, today)
            posting = Posting(
                delta=reward_for_streak(streak),
                reason=f"Day {streak} check-in reward",
                checkin_date=today,
                continuous_days=streak,
            )
            planned.append(posting)
            return posting

        result = self.store.apply_posting(user_key, checkin_key(user_key, today), ChangeType.CHECKIN, plan)
        if result.duplicate:
            raise AlreadyCheckedInTodayError(f"User {user_key} already checked in on {today}")

        streak = planned[-1].continuous_days
        logger.info("Check-in user_key=%s day=%s streak=%s reward=%s", user_key, today, streak, result.coin_change)
        return CheckinResult(
            user_key=user_key,
            coin_balance=result.new_balance,
            reward_coins=result.coin_change,
            continuous_days=streak,
            message=f"Checked in! Earned {result.coin_change} coins",
        )
