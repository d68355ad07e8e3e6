"""
Loyalty Service - points ledger, tiers, referrals and rewards

Every balance change is an UPDATE on users.loyalty_points plus one
loyalty_history row, executed in the same transaction. Debits lock the user
row first so the balance can never go below zero.

Author: TM3
Date: 2026-02-14
"""
import math
import time
import hashlib
import logging
from typing import Dict, List, Optional, Any

from marketplace.core import cache
from marketplace.core.database import get_cursor
from marketplace.core.exceptions import ApiError
from marketplace.core.logging import get_request_logger
from marketplace.domain.loyalty import (
    PointsType, RedemptionStatus, EARNING_TYPES, TIERS, REWARDS, Reward,
)
from marketplace.domain.notification import LoyaltyNotificationType
from marketplace.services.notification_service import NotificationService

logger = logging.getLogger(__name__)


PROGRAM_CACHE_TTL = 3600
REWARDS_CACHE_TTL = 1800
STATS_CACHE_TTL = 1800

REFERRER_BONUS = 500
REFERRED_BONUS = 100
REDEMPTION_VALID_DAYS = 30

# Windows are measured against the database clock, like created_at
PERIODS = {
    "week": "1 week",
    "month": "1 month",
    "year": "1 year",
    "all": None,
}


# ============================================================================
# Pure helpers
# ============================================================================

def calculate_tier(lifetime_points: int) -> Dict[str, Any]:
    """
    Resolve the tier for a lifetime points total

    Returns:
        Dict with name, benefits, next_tier and points_for_next
        (points_for_next is 0 at the top tier)
    """
    current = TIERS[0]
    for tier in TIERS:
        if lifetime_points >= tier.min_points:
            current = tier

    index = TIERS.index(current)
    next_tier = TIERS[index + 1] if index + 1 < len(TIERS) else None

    return {
        "name": current.name,
        "benefits": current.benefits,
        "next_tier": next_tier.name if next_tier else None,
        "points_for_next": next_tier.min_points - lifetime_points if next_tier else 0,
    }


def generate_code(seed: str, length: int) -> str:
    """Uppercase hex code from sha256(seed + current time)"""
    digest = hashlib.sha256(f"{seed}{time.time()}".encode()).hexdigest()
    return digest[:length].upper()


def find_reward(reward_id: str) -> Optional[Reward]:
    for reward in REWARDS:
        if reward.id == reward_id:
            return reward
    return None


def invalidate_user_cache(user_id: str) -> None:
    cache.delete_cache(f"loyalty:program:{user_id}", f"loyalty:rewards:{user_id}")
    cache.delete_cache_pattern(f"loyalty:stats:{user_id}:*")


# ============================================================================
# Ledger primitives (run inside a caller's transaction)
# ============================================================================

def _credit(cursor, user_id: str, points: int, points_type: PointsType,
            description: str, reference_id: Optional[str] = None) -> Dict:
    cursor.execute("""
        UPDATE users
        SET loyalty_points = loyalty_points + %s, updated_at = NOW()
        WHERE id = %s
        RETURNING loyalty_points
    """, (points, user_id))
    user = cursor.fetchone()
    if not user:
        raise ApiError("User not found", 404)

    cursor.execute("""
        INSERT INTO loyalty_history (user_id, points, type, description, reference_id)
        VALUES (%s, %s, %s, %s, %s)
        RETURNING id, created_at
    """, (user_id, points, points_type.value, description, reference_id))
    history = cursor.fetchone()

    return {"new_balance": user["loyalty_points"], "history_id": history["id"]}


def _debit(cursor, user_id: str, points: int, points_type: PointsType,
           description: str, reference_id: Optional[str] = None) -> Dict:
    cursor.execute("SELECT id, loyalty_points FROM users WHERE id = %s FOR UPDATE", (user_id,))
    user = cursor.fetchone()
    if not user:
        raise ApiError("User not found", 404)

    current = user["loyalty_points"]
    if current < points:
        raise ApiError(f"Insufficient points. Current: {current}, Required: {points}", 400)

    cursor.execute("""
        UPDATE users
        SET loyalty_points = loyalty_points - %s, updated_at = NOW()
        WHERE id = %s
        RETURNING loyalty_points
    """, (points, user_id))
    updated = cursor.fetchone()

    cursor.execute("""
        INSERT INTO loyalty_history (user_id, points, type, description, reference_id)
        VALUES (%s, %s, %s, %s, %s)
        RETURNING id, created_at
    """, (user_id, -points, points_type.value, description, reference_id))
    history = cursor.fetchone()

    return {"new_balance": updated["loyalty_points"], "history_id": history["id"]}


# ============================================================================
# Loyalty Service
# ============================================================================

class LoyaltyService:
    """Points ledger, tiers, referrals and reward redemption"""

    @staticmethod
    def get_customer_loyalty_program(user_id: str) -> Dict:
        """
        Loyalty overview for a customer

        Generates a referral code on first access. Cached for one hour.
        """
        cache_key = f"loyalty:program:{user_id}"
        cached = cache.get_cache(cache_key)
        if cached:
            return cached

        with get_cursor(commit=True) as cursor:
            cursor.execute("""
                SELECT id, email, first_name, last_name, loyalty_points, created_at
                FROM users WHERE id = %s
            """, (user_id,))
            user = cursor.fetchone()
            if not user:
                raise ApiError("User not found", 404)

            cursor.execute("""
                SELECT COALESCE(SUM(points), 0) AS lifetime_points
                FROM loyalty_history
                WHERE user_id = %s AND type = ANY(%s)
            """, (user_id, [t.value for t in EARNING_TYPES]))
            lifetime_points = int(cursor.fetchone()["lifetime_points"])

            cursor.execute("""
                SELECT code FROM loyalty_referrals
                WHERE referrer_id = %s AND is_used = FALSE
                ORDER BY created_at DESC
                LIMIT 1
            """, (user_id,))
            referral = cursor.fetchone()
            if referral:
                referral_code = referral["code"]
            else:
                referral_code = generate_code(user_id, 8)
                cursor.execute("""
                    INSERT INTO loyalty_referrals (referrer_id, code) VALUES (%s, %s)
                """, (user_id, referral_code))

            cursor.execute("""
                SELECT COUNT(*) AS count FROM loyalty_referrals
                WHERE referrer_id = %s AND is_used = TRUE
            """, (user_id,))
            referral_count = cursor.fetchone()["count"]

            cursor.execute("""
                SELECT id, points, type, description, reference_id, created_at
                FROM loyalty_history
                WHERE user_id = %s
                ORDER BY created_at DESC
                LIMIT 10
            """, (user_id,))
            history = cursor.fetchall()

        program = {
            "user_id": user_id,
            "points": user["loyalty_points"],
            "lifetime_points": lifetime_points,
            "tier": calculate_tier(lifetime_points),
            "referral_code": referral_code,
            "referral_count": referral_count,
            "recent_history": [dict(h) for h in history],
            "member_since": user["created_at"],
        }

        cache.set_cache(cache_key, program, PROGRAM_CACHE_TTL)
        return program

    @staticmethod
    def add_loyalty_points(user_id: str, points: int, description: str,
                           reference_id: Optional[str] = None,
                           points_type: PointsType = PointsType.MANUAL,
                           request_id: Optional[str] = None) -> Dict:
        """Credit points and record the history row in one transaction"""
        log = get_request_logger(__name__, request_id)
        if points <= 0:
            raise ApiError("Points must be a positive number", 400)

        with get_cursor(commit=True) as cursor:
            result = _credit(cursor, user_id, points, points_type, description, reference_id)

        invalidate_user_cache(user_id)
        log.info(f"Added {points} {points_type.value} points to user {user_id}, balance {result['new_balance']}")

        return {"user_id": user_id, "points_added": points, **result}

    @staticmethod
    def redeem_loyalty_points(user_id: str, points: int, description: str = "Points redeemed",
                              request_id: Optional[str] = None) -> Dict:
        """
        Debit points from a user's balance

        Raises:
            ApiError 404: unknown user
            ApiError 400: balance lower than points
        """
        log = get_request_logger(__name__, request_id)
        if points <= 0:
            raise ApiError("Points must be a positive number", 400)

        with get_cursor(commit=True) as cursor:
            result = _debit(cursor, user_id, points, PointsType.REDEMPTION, description)

        invalidate_user_cache(user_id)
        log.info(f"Redeemed {points} points from user {user_id}, balance {result['new_balance']}")

        return {"user_id": user_id, "points_redeemed": points, **result}

    @staticmethod
    def process_order_points(order_id: str, request_id: Optional[str] = None) -> int:
        """
        Award one point per currency unit of the order total (minimum 1)

        Idempotent: an order that already earned points returns the points it
        earned without crediting again. Guest orders earn nothing.
        """
        log = get_request_logger(__name__, request_id)

        with get_cursor(commit=True) as cursor:
            cursor.execute("""
                SELECT id, user_id, order_number, total_amount
                FROM orders WHERE id = %s
            """, (order_id,))
            order = cursor.fetchone()
            if not order:
                raise ApiError("Order not found", 404)

            user_id = order["user_id"]
            if not user_id:
                return 0

            cursor.execute("""
                SELECT points FROM loyalty_history
                WHERE user_id = %s AND type = %s AND reference_id = %s
                LIMIT 1
            """, (user_id, PointsType.ORDER.value, str(order_id)))
            existing = cursor.fetchone()
            if existing:
                log.info(f"Order {order_id} already awarded {existing['points']} points")
                return existing["points"]

            points = max(1, math.floor(float(order["total_amount"])))
            result = _credit(cursor, user_id, points, PointsType.ORDER,
                             f"Points earned from order {order['order_number']}", str(order_id))

        invalidate_user_cache(user_id)
        log.info(f"Awarded {points} points for order {order_id}")

        NotificationService.send_loyalty_notification(
            user_id,
            LoyaltyNotificationType.POINTS_EARNED,
            {"points": points, "order_number": order["order_number"], "balance": result["new_balance"]},
        )
        return points

    @staticmethod
    def process_referral_points(code: str, new_user_id: str, request_id: Optional[str] = None) -> Dict:
        """Credit the referrer and the new customer, then mark the code used"""
        log = get_request_logger(__name__, request_id)

        with get_cursor(commit=True) as cursor:
            cursor.execute("""
                SELECT id, referrer_id, is_used FROM loyalty_referrals
                WHERE code = %s
                FOR UPDATE
            """, (code.upper(),))
            referral = cursor.fetchone()
            if not referral or referral["is_used"]:
                raise ApiError("Invalid or already used referral code", 400)

            referrer_id = str(referral["referrer_id"])
            if referrer_id == str(new_user_id):
                raise ApiError("You cannot use your own referral code", 400)

            _credit(cursor, referrer_id, REFERRER_BONUS, PointsType.REFERRAL,
                    "Referral bonus", str(new_user_id))
            _credit(cursor, new_user_id, REFERRED_BONUS, PointsType.REFERRAL,
                    "Welcome bonus for joining with a referral", str(referral["id"]))

            cursor.execute("""
                UPDATE loyalty_referrals
                SET is_used = TRUE, referred_user_id = %s, used_at = NOW()
                WHERE id = %s
            """, (new_user_id, referral["id"]))

        invalidate_user_cache(referrer_id)
        invalidate_user_cache(new_user_id)
        log.info(f"Referral {code} used by {new_user_id}")

        return {
            "referrer_id": referrer_id,
            "referrer_points": REFERRER_BONUS,
            "new_user_id": new_user_id,
            "new_user_points": REFERRED_BONUS,
        }

    @staticmethod
    def get_loyalty_statistics(user_id: str, period: str = "month") -> Dict:
        """Earned/redeemed totals, points by type and a daily chart for a period"""
        if period not in PERIODS:
            raise ApiError(f"Invalid period: {period}", 400)

        cache_key = f"loyalty:stats:{user_id}:{period}"
        cached = cache.get_cache(cache_key)
        if cached:
            return cached

        span = PERIODS[period]
        window = "AND created_at >= NOW() - %s::interval" if span else ""
        params = (user_id, span) if span else (user_id,)

        with get_cursor() as cursor:
            cursor.execute(f"""
                SELECT type, COALESCE(SUM(points), 0) AS total, COUNT(*) AS count
                FROM loyalty_history
                WHERE user_id = %s {window}
                GROUP BY type
            """, params)
            by_type = cursor.fetchall()

            cursor.execute(f"""
                SELECT DATE(created_at) AS day,
                       COALESCE(SUM(points) FILTER (WHERE points > 0), 0) AS earned,
                       COALESCE(-SUM(points) FILTER (WHERE points < 0), 0) AS redeemed
                FROM loyalty_history
                WHERE user_id = %s {window}
                GROUP BY DATE(created_at)
                ORDER BY day
            """, params)
            chart = cursor.fetchall()

        total_earned = sum(int(r["total"]) for r in by_type if int(r["total"]) > 0)
        total_redeemed = sum(-int(r["total"]) for r in by_type if int(r["total"]) < 0)

        stats = {
            "period": period,
            "total_earned": total_earned,
            "total_redeemed": total_redeemed,
            "net_points": total_earned - total_redeemed,
            "points_by_type": {r["type"]: {"total": int(r["total"]), "count": r["count"]} for r in by_type},
            "chart_data": [
                {"date": str(r["day"]), "earned": int(r["earned"]), "redeemed": int(r["redeemed"])}
                for r in chart
            ],
        }

        cache.set_cache(cache_key, stats, STATS_CACHE_TTL)
        return stats

    # ------------------------------------------------------------------
    # Rewards
    # ------------------------------------------------------------------

    @staticmethod
    def get_available_rewards(user_id: str) -> List[Dict]:
        cache_key = f"loyalty:rewards:{user_id}"
        cached = cache.get_cache(cache_key)
        if cached:
            return cached

        with get_cursor() as cursor:
            cursor.execute("SELECT loyalty_points FROM users WHERE id = %s", (user_id,))
            user = cursor.fetchone()
        if not user:
            raise ApiError("User not found", 404)

        balance = user["loyalty_points"]
        rewards = [
            {
                **reward.model_dump(),
                "available": balance >= reward.points_cost,
                "points_needed": max(0, reward.points_cost - balance),
            }
            for reward in REWARDS
        ]

        cache.set_cache(cache_key, rewards, REWARDS_CACHE_TTL)
        return rewards

    @staticmethod
    def redeem_reward(user_id: str, reward_id: str, request_id: Optional[str] = None) -> Dict:
        """Spend points on a reward and issue a redemption code valid for 30 days"""
        log = get_request_logger(__name__, request_id)

        reward = find_reward(reward_id)
        if not reward:
            raise ApiError("Reward not found", 404)

        code = generate_code(f"{user_id}{reward_id}", 12)

        with get_cursor(commit=True) as cursor:
            result = _debit(cursor, user_id, reward.points_cost, PointsType.REDEMPTION,
                            f"Redeemed reward: {reward.name}", reward.id)
            cursor.execute("""
                INSERT INTO loyalty_redemptions (user_id, reward_id, points_spent, code, status, expires_at)
                VALUES (%s, %s, %s, %s, %s, NOW() + make_interval(days => %s))
                RETURNING id, user_id, reward_id, points_spent, code, status, expires_at, created_at
            """, (user_id, reward.id, reward.points_cost, code, RedemptionStatus.PENDING.value,
                  REDEMPTION_VALID_DAYS))
            redemption = cursor.fetchone()

        invalidate_user_cache(user_id)
        log.info(f"User {user_id} redeemed {reward.id} with code {code}")

        NotificationService.send_loyalty_notification(
            user_id,
            LoyaltyNotificationType.REWARD_REDEEMED,
            {"reward_name": reward.name, "code": code, "points": reward.points_cost,
             "expires_at": redemption["expires_at"].strftime("%Y-%m-%d")},
        )

        return {
            "redemption": dict(redemption),
            "reward": reward.model_dump(),
            "new_balance": result["new_balance"],
        }

    @staticmethod
    def get_user_redemptions(user_id: str, status: Optional[RedemptionStatus] = None) -> List[Dict]:
        query = """
            SELECT id, reward_id, points_spent, code, status, expires_at, used_at, created_at
            FROM loyalty_redemptions
            WHERE user_id = %s
        """
        params: List[Any] = [user_id]
        if status:
            query += " AND status = %s"
            params.append(status.value)
        query += " ORDER BY created_at DESC"

        with get_cursor() as cursor:
            cursor.execute(query, params)
            rows = cursor.fetchall()

        redemptions = []
        for row in rows:
            item = dict(row)
            reward = find_reward(row["reward_id"])
            item["reward"] = reward.model_dump() if reward else None
            redemptions.append(item)
        return redemptions

    @staticmethod
    def use_redemption_code(code: str) -> Dict:
        """Mark a PENDING, unexpired redemption code as USED"""
        with get_cursor(commit=True) as cursor:
            cursor.execute("""
                SELECT id, user_id, reward_id, status, expires_at, expires_at < NOW() AS expired
                FROM loyalty_redemptions WHERE code = %s
                FOR UPDATE
            """, (code.upper(),))
            redemption = cursor.fetchone()
            if not redemption:
                raise ApiError("Redemption code not found", 404)
            if redemption["status"] != RedemptionStatus.PENDING.value:
                raise ApiError("Redemption code is no longer valid", 400)
            if redemption["expired"]:
                raise ApiError("Redemption code has expired", 400)

            cursor.execute("""
                UPDATE loyalty_redemptions
                SET status = %s, used_at = NOW()
                WHERE id = %s
                RETURNING id, user_id, reward_id, code, status, used_at
            """, (RedemptionStatus.USED.value, redemption["id"]))
            used = cursor.fetchone()

        return dict(used)

    @staticmethod
    def adjust_customer_points(user_id: str, points: int, reason: str,
                               request_id: Optional[str] = None) -> Dict:
        """Admin adjustment: positive values credit, negative values debit"""
        log = get_request_logger(__name__, request_id)
        if points == 0:
            raise ApiError("Adjustment must not be zero", 400)

        with get_cursor(commit=True) as cursor:
            if points > 0:
                result = _credit(cursor, user_id, points, PointsType.OTHER, f"Adjustment: {reason}")
            else:
                result = _debit(cursor, user_id, -points, PointsType.EXPIRE, f"Adjustment: {reason}")

        invalidate_user_cache(user_id)
        log.info(f"Adjusted user {user_id} by {points} points ({reason})")
        return {"user_id": user_id, "adjustment": points, **result}

    @staticmethod
    def expire_points(user_id: str, points: int, expiry_days: int) -> Dict:
        """Remove points that aged past expiry_days"""
        with get_cursor(commit=True) as cursor:
            result = _debit(cursor, user_id, points, PointsType.EXPIRE,
                            f"Points expired after {expiry_days} days")

        invalidate_user_cache(user_id)
        NotificationService.send_loyalty_notification(
            user_id, LoyaltyNotificationType.POINTS_EXPIRED,
            {"points": points, "balance": result["new_balance"]},
        )
        return {"user_id": user_id, "points_expired": points, **result}

    @staticmethod
    def expire_old_redemptions() -> int:
        """Flip PENDING redemptions past their expiry date to EXPIRED"""
        with get_cursor(commit=True) as cursor:
            cursor.execute("""
                UPDATE loyalty_redemptions
                SET status = %s
                WHERE status = %s AND expires_at < NOW()
            """, (RedemptionStatus.EXPIRED.value, RedemptionStatus.PENDING.value))
            expired = cursor.rowcount

        if expired:
            logger.info(f"Expired {expired} loyalty redemptions")
        return expired
