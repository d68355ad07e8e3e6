"""
Notification Service - loyalty emails and in-app notifications

Loyalty emails are best-effort: send_loyalty_notification() returns False
instead of raising, so a mail problem never fails the ledger operation that
triggered it.

Author: TM3
Date: 2026-02-15
"""
import logging
from typing import Dict, List, Optional, Any

from marketplace.core.database import get_cursor
from marketplace.core.exceptions import ApiError
from marketplace.core.pagination import page_offset, pagination
from marketplace.domain.notification import (
    EmailMessage, LoyaltyNotificationType, NotificationCreate, NotificationType,
)
from marketplace.services.email_service import EmailService

logger = logging.getLogger(__name__)


LOYALTY_SUBJECTS = {
    LoyaltyNotificationType.POINTS_EARNED: "You earned {points} loyalty points!",
    LoyaltyNotificationType.POINTS_EXPIRED: "{points} of your loyalty points expired",
    LoyaltyNotificationType.TIER_UPGRADE: "Congratulations! You reached {tier}",
    LoyaltyNotificationType.REWARD_REDEEMED: "Your reward: {reward_name}",
    LoyaltyNotificationType.REWARD_APPROVED: "Your reward {reward_name} was approved",
    LoyaltyNotificationType.REWARD_REJECTED: "Your reward {reward_name} was not approved",
}


def build_subject(notification_type: LoyaltyNotificationType, data: Dict[str, Any]) -> str:
    template = LOYALTY_SUBJECTS[notification_type]
    try:
        return template.format(**data)
    except KeyError:
        return template.split("{")[0].strip() or "Loyalty update"


class NotificationService:
    """In-app notifications and loyalty emails"""

    @staticmethod
    def send_loyalty_notification(user_id: str, notification_type: LoyaltyNotificationType,
                                  data: Optional[Dict[str, Any]] = None) -> bool:
        """
        Queue a loyalty email for a user

        Returns:
            True when queued, False when the user has no email or anything failed
        """
        data = data or {}
        try:
            with get_cursor() as cursor:
                cursor.execute("SELECT id, email, first_name, last_name FROM users WHERE id = %s", (user_id,))
                user = cursor.fetchone()

            if not user or not user.get("email"):
                logger.warning(f"No email for user {user_id}, skipping {notification_type.value} notification")
                return False

            html = EmailService.render_template(f"loyalty_{notification_type.value}.html", user=user, **data)
            EmailService.queue_email(
                EmailMessage(to=[user["email"]], subject=build_subject(notification_type, data), html=html),
                priority=4,
            )
            return True

        except Exception as e:
            logger.error(f"Failed to send {notification_type.value} notification to {user_id}: {e}")
            return False

    @staticmethod
    def send_batch_loyalty_notifications(notifications: List[Dict[str, Any]]) -> Dict[str, int]:
        """Each entry: {"user_id", "type", "data"}"""
        sent = 0
        for entry in notifications:
            if NotificationService.send_loyalty_notification(
                entry["user_id"], LoyaltyNotificationType(entry["type"]), entry.get("data")
            ):
                sent += 1
        return {"sent": sent, "failed": len(notifications) - sent}

    @staticmethod
    def send_order_notification(order_id: str, status: str, tracking_number: Optional[str] = None) -> bool:
        """In-app notification plus email for order status changes"""
        with get_cursor() as cursor:
            cursor.execute("""
                SELECT o.id, o.order_number, o.total_amount, o.currency, o.user_id,
                       u.email, u.first_name
                FROM orders o
                JOIN users u ON u.id = o.user_id
                WHERE o.id = %s
            """, (order_id,))
            order = cursor.fetchone()

        if not order:
            logger.warning(f"Order {order_id} has no customer to notify")
            return False

        user = {"email": order["email"], "first_name": order["first_name"]}
        status = status.upper()

        if status == "SHIPPED":
            EmailService.send_order_shipped(order, user, tracking_number)
        elif status == "DELIVERED":
            EmailService.send_order_delivered(order, user)
        elif status == "CONFIRMED":
            EmailService.send_order_confirmation(order, user)

        NotificationService.create_in_app_notification(NotificationCreate(
            user_id=str(order["user_id"]),
            title=f"Order #{order['order_number']} {status.lower()}",
            message=f"Your order #{order['order_number']} is now {status.lower()}.",
            type=NotificationType.INFO,
            link=f"/orders/{order['id']}",
        ))
        return True

    # ------------------------------------------------------------------
    # In-app notifications
    # ------------------------------------------------------------------

    @staticmethod
    def create_in_app_notification(notification: NotificationCreate) -> Dict:
        with get_cursor(commit=True) as cursor:
            cursor.execute("""
                INSERT INTO notifications (user_id, title, message, type, link)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING id, user_id, title, message, type, link, is_read, created_at
            """, (notification.user_id, notification.title, notification.message,
                  notification.type.value, notification.link))
            return dict(cursor.fetchone())

    @staticmethod
    def get_user_notifications(user_id: str, page: int = 1, limit: int = 20,
                               unread_only: bool = False) -> Dict:
        where = "user_id = %s"
        params: List[Any] = [user_id]
        if unread_only:
            where += " AND is_read = FALSE"

        with get_cursor() as cursor:
            cursor.execute(f"SELECT COUNT(*) AS total FROM notifications WHERE {where}", params)
            total = cursor.fetchone()["total"]

            cursor.execute(f"""
                SELECT id, title, message, type, link, is_read, read_at, created_at
                FROM notifications
                WHERE {where}
                ORDER BY created_at DESC
                LIMIT %s OFFSET %s
            """, params + [limit, page_offset(page, limit)])
            rows = cursor.fetchall()

            cursor.execute("""
                SELECT COUNT(*) AS unread FROM notifications WHERE user_id = %s AND is_read = FALSE
            """, (user_id,))
            unread = cursor.fetchone()["unread"]

        return {
            "notifications": [dict(r) for r in rows],
            "pagination": pagination(page, limit, total),
            "unread_count": unread,
        }

    @staticmethod
    def mark_notification_as_read(notification_id: str, user_id: str) -> Dict:
        with get_cursor(commit=True) as cursor:
            cursor.execute("""
                UPDATE notifications
                SET is_read = TRUE, read_at = NOW()
                WHERE id = %s AND user_id = %s
                RETURNING id, is_read, read_at
            """, (notification_id, user_id))
            row = cursor.fetchone()

        if not row:
            raise ApiError("Notification not found", 404)
        return dict(row)

    @staticmethod
    def mark_all_notifications_as_read(user_id: str) -> int:
        with get_cursor(commit=True) as cursor:
            cursor.execute("""
                UPDATE notifications
                SET is_read = TRUE, read_at = NOW()
                WHERE user_id = %s AND is_read = FALSE
            """, (user_id,))
            return cursor.rowcount

    @staticmethod
    def delete_notification(notification_id: str, user_id: str) -> None:
        with get_cursor(commit=True) as cursor:
            cursor.execute("DELETE FROM notifications WHERE id = %s AND user_id = %s",
                           (notification_id, user_id))
            deleted = cursor.rowcount

        if not deleted:
            raise ApiError("Notification not found", 404)

    @staticmethod
    def get_unread_notification_count(user_id: str) -> int:
        with get_cursor() as cursor:
            cursor.execute("""
                SELECT COUNT(*) AS unread FROM notifications WHERE user_id = %s AND is_read = FALSE
            """, (user_id,))
            return cursor.fetchone()["unread"]
