"""
API Tests for the coin service routes

Tests cover:
1. Partner callback responses and status codes
2. Check-in endpoints and user identity resolution
3. Balance and record reads
4. Admin adjustments, paged records and statistics
"""

import pytest
from fastapi.testclient import TestClient

from coins.api import create_app

from .conftest import signed_callback


@pytest.fixture
def client(service):
    return TestClient(create_app(service=service))


class TestHealth:
    def test_health_check(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestTaskCallback:
    """Tests for POST /api/task/callback."""

    def test_callback_success(self, client, clock):
        response = client.post("/api/task/callback", json=signed_callback(clock, "ORD-API-1", coins=10))

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"] == {
            "userId": 55,
            "orderId": "ORD-API-1",
            "coins": 10,
            "newBalance": 10,
            "duplicate": False,
        }

    def test_callback_duplicate_is_success(self, client, clock):
        """Test that a repeated order is acknowledged without crediting again."""
        payload = signed_callback(clock, "ORD-API-2", coins=10)
        client.post("/api/task/callback", json=payload)

        response = client.post("/api/task/callback", json=payload)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["duplicate"] is True
        assert body["data"]["newBalance"] == 10

    def test_callback_bad_signature(self, client, clock):
        payload = signed_callback(clock, "ORD-API-3")
        payload["sign"] = "f" * 32

        response = client.post("/api/task/callback", json=payload)

        assert response.status_code == 401
        assert response.json()["success"] is False
        assert response.json()["data"] is None

    def test_callback_expired(self, client, clock):
        payload = signed_callback(clock, "ORD-API-4", timestamp=clock.millis() - 10 * 60 * 1000)

        response = client.post("/api/task/callback", json=payload)

        assert response.status_code == 401
        assert "expired" in response.json()["message"]

    def test_callback_channel_alias(self, client, clock):
        payload = signed_callback(clock, "ORD-API-5")
        payload["channel"] = payload.pop("appKey")

        response = client.post("/api/task/callback", json=payload)

        assert response.status_code == 200
        assert response.json()["success"] is True

    def test_callback_validation_error(self, client, clock):
        """Test that a non-positive coin amount is rejected by request validation."""
        payload = signed_callback(clock, "ORD-API-6", coins=0)

        response = client.post("/api/task/callback", json=payload)

        assert response.status_code == 422


class TestCheckinRoutes:
    """Tests for the check-in endpoints."""

    def test_checkin_via_header(self, client):
        response = client.post("/api/userCheckin", headers={"X-User-Id": "55"})

        assert response.status_code == 200
        body = response.json()
        assert body["rewardCoins"] == 20
        assert body["continuousDays"] == 1
        assert body["coinBalance"] == 20
        assert body["duplicate"] is False

    def test_checkin_twice_same_day(self, client):
        """Test that the second check-in of the day is reported, not credited."""
        client.post("/api/userCheckin", headers={"X-User-Id": "55"})

        response = client.post("/api/userCheckin", headers={"X-User-Id": "55"})

        assert response.status_code == 200
        body = response.json()
        assert body["duplicate"] is True
        assert body["rewardCoins"] == 0
        assert body["coinBalance"] == 20

    def test_checkin_via_cookie(self, client):
        client.cookies.set("user_id", "test_user_008")

        response = client.post("/api/userCheckin")

        assert response.status_code == 200
        assert response.json()["userKey"] == 8

    def test_status_routes(self, client):
        before = client.get("/api/checkTodayCheckin", params={"userId": "55"})
        client.post("/api/userCheckin", params={"userId": "55"})
        after = client.get("/api/checkTodayCheckin", params={"userId": "55"})
        status = client.get("/api/checkSigninStatus", params={"userId": "55"})

        assert before.json() == {"checked": False}
        assert after.json() == {"checked": True}
        assert status.json()["checked"] is True
        assert status.json()["continuousDays"] == 1
        assert status.json()["lastCheckinDate"] == "2025-03-14"

    def test_missing_identity(self, client):
        response = client.post("/api/userCheckin")

        assert response.status_code == 401

    def test_invalid_identity(self, client):
        response = client.get("/api/checkSigninStatus", params={"userId": " "})

        assert response.status_code == 400


class TestBalanceRoutes:
    """Tests for balance and record reads."""

    def test_get_user_coins_creates_empty_balance(self, client):
        response = client.get("/api/getUserCoins", headers={"X-User-Id": "99"})

        assert response.status_code == 200
        body = response.json()
        assert body["userKey"] == 99
        assert body["coinBalance"] == 0
        assert body["totalEarned"] == 0

    def test_get_user_coin_records(self, client, clock):
        client.post("/api/task/callback", json=signed_callback(clock, "ORD-REC-1", coins=10))
        clock.advance(seconds=1)
        client.post("/api/task/callback", json=signed_callback(clock, "ORD-REC-2", coins=15))

        response = client.get("/api/getUserCoinRecords", headers={"X-User-Id": "55"})

        assert response.status_code == 200
        records = response.json()
        assert [r["idempotencyKey"] for r in records] == ["order:ORD-REC-2", "order:ORD-REC-1"]
        assert records[0]["balanceAfter"] == 25
        assert records[0]["changeType"] == "reward"


class TestAdminRoutes:
    """Tests for the admin endpoints."""

    def test_adjust_credit_and_debit(self, client):
        credit = client.post("/api/admin/updateUserCoins", json={"userId": "55", "coinChange": 100})
        debit = client.post(
            "/api/admin/updateUserCoins",
            json={"userId": "55", "coinChange": -30, "changeReason": "Manual correction"},
        )

        assert credit.status_code == 200
        assert credit.json()["newBalance"] == 100
        assert debit.status_code == 200
        assert debit.json()["newBalance"] == 70
        assert debit.json()["record"]["changeType"] == "consume"
        assert debit.json()["record"]["changeReason"] == "Manual correction"

    def test_adjust_insufficient_balance(self, client):
        response = client.post("/api/admin/updateUserCoins", json={"userId": "55", "coinChange": -1})

        assert response.status_code == 400
        assert "Insufficient" in response.json()["detail"]

    def test_adjust_zero_rejected(self, client):
        response = client.post("/api/admin/updateUserCoins", json={"userId": "55", "coinChange": 0})

        assert response.status_code == 400

    def test_adjust_with_idempotency_key(self, client):
        """Test that an admin retry with the same key applies once."""
        payload = {"userId": "55", "coinChange": 40, "idempotencyKey": "ticket-881"}
        client.post("/api/admin/updateUserCoins", json=payload)

        response = client.post("/api/admin/updateUserCoins", json=payload)

        assert response.json()["duplicate"] is True
        assert response.json()["newBalance"] == 40

    def test_paged_records(self, client, clock):
        for i in range(5):
            clock.advance(seconds=1)
            client.post("/api/admin/updateUserCoins", json={"userId": "55", "coinChange": i + 1})

        response = client.get(
            "/api/admin/getUserCoinRecords", params={"userId": "55", "currentPage": 2, "pageSize": 2},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 5
        assert body["currentPage"] == 2
        assert body["pageSize"] == 2
        assert [r["coinChange"] for r in body["records"]] == [3, 2]

    def test_current_page_user_coins(self, client):
        """Test the paged balance list ordered by user key."""
        for user_id, coins in [("30", 5), ("10", 15), ("20", 25)]:
            client.post("/api/admin/updateUserCoins", json={"userId": user_id, "coinChange": coins})
        client.post("/api/userCheckin", headers={"X-User-Id": "20"})

        first = client.get("/api/admin/getCurrentPageUserCoins", params={"currentPage": 1, "pageSize": 2})
        second = client.get("/api/admin/getCurrentPageUserCoins", params={"currentPage": 2, "pageSize": 2})

        assert first.status_code == 200
        body = first.json()
        assert body["total"] == 3
        assert body["currentPage"] == 1
        assert [u["userKey"] for u in body["users"]] == [10, 20]
        assert body["users"][1]["coinBalance"] == 45
        assert body["users"][1]["totalEarned"] == 45
        assert body["users"][1]["continuousDays"] == 1
        assert body["users"][1]["lastCheckinDate"] == "2025-03-14"
        assert [u["userKey"] for u in second.json()["users"]] == [30]

    def test_statistics(self, client, clock):
        client.post("/api/task/callback", json=signed_callback(clock, "ORD-STAT", coins=10))
        client.post("/api/userCheckin", headers={"X-User-Id": "56"})

        response = client.get("/api/admin/getCoinStatistics")

        assert response.status_code == 200
        assert response.json() == {
            "totalEarned": 30,
            "userCount": 2,
            "totalBalance": 30,
            "todayCheckin": 1,
        }
