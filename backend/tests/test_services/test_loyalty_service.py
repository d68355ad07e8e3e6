"""
Tests for LoyaltyService and BatchLoyaltyService

Author: TM3
Date: 2026-02-20
"""
from datetime import datetime
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from marketplace.core.exceptions import ApiError
from marketplace.domain.loyalty import BatchOperation, PointsType
from marketplace.services.batch_loyalty_service import BatchLoyaltyService, chunked
from marketplace.services.loyalty_service import LoyaltyService, calculate_tier, find_reward


class FakeLedgerCursor:
    """Just enough of a cursor to keep one user's balance and history in memory"""

    def __init__(self, balance=0):
        self.balance = balance
        self.history = []
        self.redemptions = []
        self._row = None

    def execute(self, query, params=None):
        sql = " ".join(query.split())
        if sql.startswith("UPDATE users SET loyalty_points = loyalty_points +"):
            self.balance += params[0]
            self._row = {"loyalty_points": self.balance}
        elif sql.startswith("UPDATE users SET loyalty_points = loyalty_points -"):
            self.balance -= params[0]
            self._row = {"loyalty_points": self.balance}
        elif sql.startswith("SELECT id, loyalty_points FROM users"):
            self._row = {"id": params[0], "loyalty_points": self.balance}
        elif sql.startswith("INSERT INTO loyalty_history"):
            self.history.append({"user_id": params[0], "points": params[1], "type": params[2]})
            self._row = {"id": len(self.history), "created_at": datetime(2026, 2, 20)}
        elif sql.startswith("INSERT INTO loyalty_redemptions"):
            self.redemptions.append((sql, params))
            self._row = {"id": 1, "user_id": params[0], "reward_id": params[1], "points_spent": params[2],
                         "code": params[3], "status": params[4], "expires_at": datetime(2026, 3, 22),
                         "created_at": datetime(2026, 2, 20)}
        else:
            self._row = None

    def fetchone(self):
        return self._row

    def close(self):
        pass


@pytest.fixture
def ledger():
    cursor = FakeLedgerCursor(balance=250)
    conn = MagicMock()
    conn.cursor.return_value = cursor
    with patch("marketplace.core.database.get_db_connection_dict_with_retry", return_value=conn):
        yield cursor


@pytest.fixture
def notifications():
    with patch("marketplace.services.loyalty_service.NotificationService") as service:
        yield service


class TestCalculateTier:

    def test_zero_points_is_bronze(self):
        tier = calculate_tier(0)

        assert tier["name"] == "Bronze"
        assert tier["next_tier"] == "Silver"
        assert tier["points_for_next"] == 1000

    def test_boundary_reaches_next_tier(self):
        assert calculate_tier(999)["name"] == "Bronze"
        assert calculate_tier(1000)["name"] == "Silver"
        assert calculate_tier(5000)["name"] == "Gold"

    def test_top_tier_has_nothing_next(self):
        tier = calculate_tier(12000)

        assert tier["name"] == "Platinum"
        assert tier["next_tier"] is None
        assert tier["points_for_next"] == 0


class TestLedger:

    def test_award_then_redeem_restores_balance(self, ledger, user_id):
        # Arrange
        start = ledger.balance

        # Act
        added = LoyaltyService.add_loyalty_points(user_id, 120, "Promo")
        redeemed = LoyaltyService.redeem_loyalty_points(user_id, 120)

        # Assert
        assert added["new_balance"] == start + 120
        assert redeemed["new_balance"] == start
        assert [h["points"] for h in ledger.history] == [120, -120]
        assert [h["type"] for h in ledger.history] == [PointsType.MANUAL.value, PointsType.REDEMPTION.value]

    def test_redeem_more_than_balance_is_rejected(self, mock_db, user_id):
        # Arrange
        conn, cursor = mock_db
        cursor.fetchone.return_value = {"id": user_id, "loyalty_points": 50}

        # Act
        with pytest.raises(ApiError) as exc:
            LoyaltyService.redeem_loyalty_points(user_id, 100)

        # Assert
        assert exc.value.status_code == 400
        assert "Insufficient points" in exc.value.message
        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()

    def test_non_positive_points_rejected(self, user_id):
        with pytest.raises(ApiError) as exc:
            LoyaltyService.add_loyalty_points(user_id, 0, "Nothing")
        assert exc.value.status_code == 400

    def test_unknown_user_is_404(self, mock_db, user_id):
        conn, cursor = mock_db
        cursor.fetchone.return_value = None

        with pytest.raises(ApiError) as exc:
            LoyaltyService.add_loyalty_points(user_id, 10, "Promo")

        assert exc.value.status_code == 404

    def test_award_invalidates_user_cache(self, ledger, user_id, mock_cache):
        LoyaltyService.add_loyalty_points(user_id, 10, "Promo")

        mock_cache.delete_cache.assert_called_with(f"loyalty:program:{user_id}", f"loyalty:rewards:{user_id}")
        mock_cache.delete_cache_pattern.assert_called_with(f"loyalty:stats:{user_id}:*")

    def test_negative_adjustment_debits(self, ledger, user_id):
        result = LoyaltyService.adjust_customer_points(user_id, -50, "Correction")

        assert result["new_balance"] == 200
        assert ledger.history[-1]["points"] == -50


class TestOrderPoints:

    def test_awards_floor_of_total(self, mock_db, user_id, notifications):
        # Arrange
        conn, cursor = mock_db
        cursor.fetchone.side_effect = [
            {"id": "o1", "user_id": user_id, "order_number": "ORD-1", "total_amount": Decimal("123.75")},
            None,
            {"loyalty_points": 123},
            {"id": 1, "created_at": datetime(2026, 2, 20)},
        ]

        # Act
        points = LoyaltyService.process_order_points("o1")

        # Assert
        assert points == 123
        notifications.send_loyalty_notification.assert_called_once()

    def test_already_awarded_order_is_not_credited_again(self, mock_db, user_id, notifications):
        conn, cursor = mock_db
        cursor.fetchone.side_effect = [
            {"id": "o1", "user_id": user_id, "order_number": "ORD-1", "total_amount": Decimal("80")},
            {"points": 80},
        ]

        points = LoyaltyService.process_order_points("o1")

        assert points == 80
        assert cursor.execute.call_count == 2
        notifications.send_loyalty_notification.assert_not_called()

    def test_guest_order_earns_nothing(self, mock_db, notifications):
        conn, cursor = mock_db
        cursor.fetchone.return_value = {"id": "o1", "user_id": None, "order_number": "ORD-1",
                                        "total_amount": Decimal("80")}

        assert LoyaltyService.process_order_points("o1") == 0

    def test_small_order_earns_at_least_one_point(self, mock_db, user_id, notifications):
        conn, cursor = mock_db
        cursor.fetchone.side_effect = [
            {"id": "o1", "user_id": user_id, "order_number": "ORD-1", "total_amount": Decimal("0.40")},
            None,
            {"loyalty_points": 1},
            {"id": 1, "created_at": datetime(2026, 2, 20)},
        ]

        assert LoyaltyService.process_order_points("o1") == 1


class TestReferrals:

    def test_own_code_is_rejected(self, mock_db, user_id):
        conn, cursor = mock_db
        cursor.fetchone.return_value = {"id": 7, "referrer_id": user_id, "is_used": False}

        with pytest.raises(ApiError) as exc:
            LoyaltyService.process_referral_points("abc123", user_id)

        assert exc.value.status_code == 400

    def test_used_code_is_rejected(self, mock_db, user_id):
        conn, cursor = mock_db
        cursor.fetchone.return_value = {"id": 7, "referrer_id": "someone-else", "is_used": True}

        with pytest.raises(ApiError):
            LoyaltyService.process_referral_points("ABC123", user_id)


class TestRewards:

    def test_unknown_reward_is_404(self, user_id):
        with pytest.raises(ApiError) as exc:
            LoyaltyService.redeem_reward(user_id, "does-not-exist")
        assert exc.value.status_code == 404

    def test_find_reward(self):
        assert find_reward("discount-5").points_cost == 100
        assert find_reward("nope") is None

    def test_availability_follows_balance(self, mock_db, user_id):
        conn, cursor = mock_db
        cursor.fetchone.return_value = {"loyalty_points": 150}

        rewards = {r["id"]: r for r in LoyaltyService.get_available_rewards(user_id)}

        assert rewards["discount-5"]["available"] is True
        assert rewards["free-shipping"]["available"] is True
        assert rewards["discount-10"]["available"] is False
        assert rewards["discount-10"]["points_needed"] == 50

    def test_expired_code_cannot_be_used(self, mock_db, user_id):
        conn, cursor = mock_db
        cursor.fetchone.return_value = {
            "id": 1, "user_id": user_id, "reward_id": "discount-5", "status": "PENDING",
            "expires_at": datetime(2026, 1, 1), "expired": True,
        }

        with pytest.raises(ApiError) as exc:
            LoyaltyService.use_redemption_code("abc")

        assert exc.value.message == "Redemption code has expired"

    def test_expiry_compared_in_database(self, mock_db, user_id):
        conn, cursor = mock_db
        cursor.fetchone.side_effect = [
            {"id": 1, "user_id": user_id, "reward_id": "discount-5", "status": "PENDING",
             "expires_at": datetime(2026, 3, 22), "expired": False},
            {"id": 1, "user_id": user_id, "reward_id": "discount-5", "code": "ABC", "status": "USED",
             "used_at": datetime(2026, 2, 21)},
        ]

        used = LoyaltyService.use_redemption_code("abc")

        select_sql = cursor.execute.call_args_list[0][0][0]
        assert "expires_at < NOW() AS expired" in select_sql
        assert cursor.execute.call_args_list[0][0][1] == ("ABC",)
        assert used["status"] == "USED"

    def test_redemption_expiry_set_by_database(self, ledger, user_id, notifications):
        # Arrange
        ledger.balance = 250

        # Act
        result = LoyaltyService.redeem_reward(user_id, "discount-5")

        # Assert
        sql, params = ledger.redemptions[0]
        assert "NOW() + make_interval(days => %s)" in sql
        assert params[-1] == 30
        assert result["new_balance"] == 150
        payload = notifications.send_loyalty_notification.call_args[0][2]
        assert payload["expires_at"] == "2026-03-22"


class TestStatistics:

    def test_invalid_period(self, user_id):
        with pytest.raises(ApiError) as exc:
            LoyaltyService.get_loyalty_statistics(user_id, "decade")
        assert exc.value.status_code == 400

    def test_totals_split_by_sign(self, mock_db, user_id):
        conn, cursor = mock_db
        cursor.fetchall.side_effect = [
            [{"type": "ORDER", "total": 300, "count": 3}, {"type": "REDEMPTION", "total": -100, "count": 1}],
            [],
        ]

        stats = LoyaltyService.get_loyalty_statistics(user_id, "year")

        assert stats["total_earned"] == 300
        assert stats["total_redeemed"] == 100
        assert stats["net_points"] == 200

    def test_window_uses_database_clock(self, mock_db, user_id):
        conn, cursor = mock_db
        cursor.fetchall.side_effect = [[], [], [], []]

        LoyaltyService.get_loyalty_statistics(user_id, "week")
        LoyaltyService.get_loyalty_statistics(user_id, "all")

        week_sql, week_params = cursor.execute.call_args_list[0][0]
        all_sql, all_params = cursor.execute.call_args_list[2][0]
        assert "created_at >= NOW() - %s::interval" in week_sql
        assert week_params == (user_id, "1 week")
        assert "NOW()" not in all_sql
        assert all_params == (user_id,)


class TestBatchLoyalty:

    def test_chunked(self):
        assert chunked([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]

    def test_failures_do_not_stop_the_batch(self):
        # Arrange
        operations = [
            BatchOperation(user_id="u1", points=10, description="Promo"),
            BatchOperation(user_id="u2", points=10, description="Promo"),
        ]

        def add(user_id, *args, **kwargs):
            if user_id == "u2":
                raise ApiError("User not found", 404)
            return {"new_balance": 10}

        # Act
        with patch("marketplace.services.batch_loyalty_service.LoyaltyService.add_loyalty_points",
                   side_effect=add):
            result = BatchLoyaltyService.process_batch_loyalty_points(operations)

        # Assert
        assert result.processed == 2
        assert result.succeeded == 1
        assert result.failed == 1
        assert result.success is False
        failed = [r for r in result.results if not r.success][0]
        assert failed.user_id == "u2"
        assert failed.error == "User not found"

    def test_expirable_points_capped_at_balance(self, mock_db):
        conn, cursor = mock_db
        cursor.fetchall.return_value = [
            {"user_id": "u1", "loyalty_points": 40, "earned_before_cutoff": 100, "total_debited": 20},
            {"user_id": "u2", "loyalty_points": 500, "earned_before_cutoff": 100, "total_debited": 20},
        ]

        candidates = BatchLoyaltyService.find_expirable_points(365, 100)

        assert candidates == [{"user_id": "u1", "points": 40}, {"user_id": "u2", "points": 80}]

    def test_expiry_cutoff_computed_in_database(self, mock_db):
        conn, cursor = mock_db
        cursor.fetchall.return_value = []

        BatchLoyaltyService.find_expirable_points(90, 50, 10)

        sql, params = cursor.execute.call_args[0]
        assert "h.created_at < NOW() - make_interval(days => %s)" in sql
        assert params == (90, 50, 10)
