"""
Unit Tests for coin statistics
"""

from datetime import date

from coins.models import ChangeType


class TestStatistics:
    """Tests for the admin totals snapshot."""

    def test_empty_ledger(self, service):
        stats = service.statistics()

        assert stats.total_earned == 0
        assert stats.user_count == 0
        assert stats.total_balance == 0
        assert stats.today_checkin == 0

    def test_totals_across_users(self, service):
        """Test sums over balances, lifetime earnings and today's check-ins."""
        service.store.credit_idempotent(1, "order-1", 100, ChangeType.REWARD, "Task reward")
        service.store.credit_idempotent(1, "spend-1", -30, ChangeType.CONSUME, "Redeem")
        service.store.credit_idempotent(2, "order-2", 50, ChangeType.REWARD, "Task reward")
        service.checkin(3)
        service.checkins.checkin(2, today=date(2025, 3, 13))

        stats = service.statistics()

        assert stats.user_count == 3
        assert stats.total_earned == 100 + 50 + 20 + 20
        assert stats.total_balance == 70 + 50 + 20 + 20
        assert stats.today_checkin == 1

    def test_serialized_in_camel_case(self, service):
        body = service.statistics().model_dump(by_alias=True)

        assert set(body) == {"totalEarned", "userCount", "totalBalance", "todayCheckin"}
