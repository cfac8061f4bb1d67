from datetime import date

from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from .models import CoinStatistics
from .tables import UserCoins


class StatisticsReader:
    """Read-only totals over user_coins. Plain SELECTs, no locks taken."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def snapshot(self, today: date) -> CoinStatistics:
        with self.session_factory() as session:
            total_earned, user_count, total_balance = session.execute(
                select(
                    func.coalesce(func.sum(UserCoins.total_earned), 0),
                    func.count(UserCoins.id),
                    func.coalesce(func.sum(UserCoins.coin_balance), 0),
                )
            ).one()
            today_checkin = session.execute(
                select(func.count(UserCoins.id)).where(UserCoins.last_checkin_date == today)
            ).scalar_one()

        return CoinStatistics(
            total_earned=int(total_earned),
            user_count=int(user_count),
            total_balance=int(total_balance),
            today_checkin=int(today_checkin),
        )
