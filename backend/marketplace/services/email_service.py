"""
Email Service - SMTP delivery and a Redis-backed outgoing queue

Two Redis lists hold queued emails: "email:queue:high" for priority < 5 and
"email:queue" for the rest. process_email_queue() drains the high priority
list first. A message that fails is pushed back with attempts + 1 and dropped
once it reaches EMAIL_MAX_ATTEMPTS. Payloads that do not parse are parked on
"email:queue:dead" and the run carries on.

Author: TM3
Date: 2026-02-15
"""
import uuid
import smtplib
import logging
from pathlib import Path
from typing import Dict, Optional, Any
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid, formatdate

from jinja2 import Environment, FileSystemLoader, select_autoescape
from pydantic import ValidationError
from redis.exceptions import RedisError

from marketplace.core import cache
from marketplace.core.config import settings
from marketplace.core.exceptions import ApiError
from marketplace.domain.notification import EmailMessage, QueuedEmail

logger = logging.getLogger(__name__)

QUEUE_KEY = "email:queue"
HIGH_PRIORITY_QUEUE_KEY = "email:queue:high"
DEAD_LETTER_KEY = "email:queue:dead"
HIGH_PRIORITY_THRESHOLD = 5

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates" / "email"

_template_env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html"]),
)


def _as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _dead_letter(source_key: str, raw: Any, error: Exception) -> None:
    logger.error(f"Malformed email payload in {source_key} moved to {DEAD_LETTER_KEY}: {error}")
    try:
        cache.push_queue(DEAD_LETTER_KEY, raw)
    except RedisError as e:
        logger.error(f"Cannot park malformed email payload, discarding it: {e}")


def queue_key_for(priority: int) -> str:
    return HIGH_PRIORITY_QUEUE_KEY if priority < HIGH_PRIORITY_THRESHOLD else QUEUE_KEY


class EmailService:
    """Sends email over SMTP and manages the outgoing queue"""

    @staticmethod
    def render_template(template_name: str, **context: Any) -> str:
        context.setdefault("store_name", settings.STORE_NAME)
        context.setdefault("frontend_url", settings.FRONTEND_URL)
        return _template_env.get_template(template_name).render(**context)

    @staticmethod
    def send_email(message: EmailMessage) -> Dict:
        """
        Deliver a message through the configured SMTP server

        Raises:
            ApiError 500: SMTP or network failure
        """
        msg = MIMEMultipart("alternative")
        msg["Subject"] = message.subject
        msg["From"] = message.from_address or settings.EMAIL_FROM
        msg["To"] = ", ".join(message.to)
        if message.cc:
            msg["Cc"] = ", ".join(message.cc)
        msg["Date"] = formatdate(localtime=False)
        msg["Message-ID"] = make_msgid()
        msg.attach(MIMEText(message.html, "html", "utf-8"))

        recipients = list(message.to) + list(message.cc) + list(message.bcc)

        try:
            with smtplib.SMTP(settings.EMAIL_HOST, settings.EMAIL_PORT, timeout=settings.HTTP_TIMEOUT) as server:
                if settings.EMAIL_USE_TLS:
                    server.starttls()
                if settings.EMAIL_USER:
                    server.login(settings.EMAIL_USER, settings.EMAIL_PASSWORD)
                server.send_message(msg, to_addrs=recipients)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email '{message.subject}' to {message.to}: {e}")
            raise ApiError(f"Failed to send email: {e}", 500)

        logger.info(f"Email sent: '{message.subject}' to {len(recipients)} recipient(s)")
        return {"message_id": msg["Message-ID"], "recipients": len(recipients)}

    @staticmethod
    def queue_email(message: EmailMessage, priority: int = 5,
                    scheduled_for: Optional[datetime] = None) -> str:
        """Queue a message for the background sender, returns the queue item id"""
        item = QueuedEmail(
            id=uuid.uuid4().hex,
            message=message,
            priority=priority,
            created_at=datetime.now(timezone.utc),
            scheduled_for=_as_naive_utc(scheduled_for),
        )

        try:
            cache.push_queue(queue_key_for(priority), item.model_dump(mode="json"))
        except RedisError as e:
            logger.error(f"Failed to queue email '{message.subject}': {e}")
            raise ApiError(f"Failed to queue email: {e}", 500)

        logger.debug(f"Queued email {item.id} with priority {priority}")
        return item.id

    @staticmethod
    def process_email_queue(limit: int = 50) -> Dict[str, int]:
        """
        Send up to `limit` queued emails, high priority first

        Each queue is drained at most once per call: items requeued during this
        run (scheduled for later or failed) wait for the next run.
        """
        stats = {"processed": 0, "sent": 0, "retried": 0, "dropped": 0, "deferred": 0, "invalid": 0}
        now = _as_naive_utc(datetime.now(timezone.utc))

        for key in (HIGH_PRIORITY_QUEUE_KEY, QUEUE_KEY):
            try:
                pending = cache.queue_length(key)
            except RedisError as e:
                logger.error(f"Cannot read email queue {key}: {e}")
                continue

            for _ in range(pending):
                if stats["processed"] >= limit:
                    return stats

                try:
                    raw = cache.pop_queue(key)
                except RedisError as e:
                    logger.error(f"Cannot pop from email queue {key}: {e}")
                    break
                if raw is None:
                    break

                try:
                    item = QueuedEmail.model_validate(raw)
                except ValidationError as e:
                    _dead_letter(key, raw, e)
                    stats["invalid"] += 1
                    continue
                stats["processed"] += 1

                if item.scheduled_for and _as_naive_utc(item.scheduled_for) > now:
                    cache.push_queue(key, raw)
                    stats["deferred"] += 1
                    continue

                try:
                    EmailService.send_email(item.message)
                    stats["sent"] += 1
                except ApiError as e:
                    item.attempts += 1
                    item.last_error = e.message
                    if item.attempts >= settings.EMAIL_MAX_ATTEMPTS:
                        logger.error(f"Dropping email {item.id} after {item.attempts} attempts: {e.message}")
                        stats["dropped"] += 1
                    else:
                        cache.push_queue(key, item.model_dump(mode="json"))
                        stats["retried"] += 1

        if stats["processed"] or stats["invalid"]:
            logger.info(f"Email queue run: {stats}")
        return stats

    @staticmethod
    def get_email_queue_length() -> Dict[str, int]:
        high = cache.queue_length(HIGH_PRIORITY_QUEUE_KEY)
        normal = cache.queue_length(QUEUE_KEY)
        dead = cache.queue_length(DEAD_LETTER_KEY)
        return {"high_priority": high, "normal": normal, "total": high + normal, "dead_letter": dead}

    @staticmethod
    def clear_email_queue() -> None:
        cache.clear_queue(HIGH_PRIORITY_QUEUE_KEY, QUEUE_KEY)
        logger.warning("Email queue cleared")

    # ------------------------------------------------------------------
    # Templated emails
    # ------------------------------------------------------------------

    @staticmethod
    def send_templated_email(to: str, subject: str, template_name: str,
                             context: Dict[str, Any], priority: int = 5) -> str:
        html = EmailService.render_template(template_name, **context)
        return EmailService.queue_email(EmailMessage(to=[to], subject=subject, html=html), priority=priority)

    @staticmethod
    def send_welcome_email(user: Dict) -> str:
        return EmailService.send_templated_email(
            user["email"], f"Welcome to {settings.STORE_NAME}!", "welcome.html", {"user": user})

    @staticmethod
    def send_order_confirmation(order: Dict, user: Dict) -> str:
        return EmailService.send_templated_email(
            user["email"], f"Order confirmation #{order['order_number']}",
            "order_confirmation.html", {"user": user, "order": order}, priority=3)

    @staticmethod
    def send_order_shipped(order: Dict, user: Dict, tracking_number: Optional[str] = None) -> str:
        return EmailService.send_templated_email(
            user["email"], f"Your order #{order['order_number']} has shipped",
            "order_shipped.html", {"user": user, "order": order, "tracking_number": tracking_number})

    @staticmethod
    def send_order_delivered(order: Dict, user: Dict) -> str:
        return EmailService.send_templated_email(
            user["email"], f"Your order #{order['order_number']} was delivered",
            "order_delivered.html", {"user": user, "order": order})

    @staticmethod
    def send_password_reset(email: str, token: str) -> str:
        reset_url = f"{settings.FRONTEND_URL}/reset-password?token={token}"
        return EmailService.send_templated_email(
            email, "Reset your password", "password_reset.html", {"reset_url": reset_url}, priority=1)
