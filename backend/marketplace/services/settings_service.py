"""
Settings Service - key/value application settings stored as JSONB

Keys are dotted ("loyalty.pointsExpiryDays") and belong to a group. Public
settings are exposed to the storefront without authentication.

Author: TM3
Date: 2026-02-21
"""
import re
import json
import logging
from typing import Dict, List, Optional, Any
from datetime import datetime

import psycopg2
from psycopg2.extras import Json

from marketplace.core import cache
from marketplace.core.database import get_cursor
from marketplace.core.exceptions import ApiError

logger = logging.getLogger(__name__)

SETTING_CACHE_TTL = 3600
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

SETTING_GROUPS = {
    "general": "General site configuration",
    "loyalty": "Loyalty program rules",
    "email": "Outgoing email configuration",
    "payment": "Payment and tax defaults",
    "shipping": "Shipping rates",
    "security": "Security policies",
    "features": "Feature flags",
    "analytics": "Analytics tracking",
    "maintenance": "Maintenance mode",
}

DEFAULT_SETTINGS: List[Dict[str, Any]] = [
    {"key": "site.name", "value": "Marketplace", "group": "general", "is_public": True,
     "description": "Site name displayed in header and emails"},
    {"key": "site.description", "value": "Online marketplace", "group": "general", "is_public": True,
     "description": "Site description for SEO"},
    {"key": "site.timezone", "value": "UTC", "group": "general", "is_public": False,
     "description": "Default timezone for the application"},
    {"key": "loyalty.enabled", "value": True, "group": "loyalty", "is_public": True,
     "description": "Enable loyalty program"},
    {"key": "loyalty.pointsPerCurrency", "value": 1, "group": "loyalty", "is_public": True,
     "description": "Loyalty points awarded per currency unit spent"},
    {"key": "loyalty.pointsExpiryDays", "value": 365, "group": "loyalty", "is_public": False,
     "description": "Days after which loyalty points expire"},
    {"key": "loyalty.referralBonus.referrer", "value": 500, "group": "loyalty", "is_public": False,
     "description": "Bonus points awarded to the referrer"},
    {"key": "loyalty.referralBonus.referee", "value": 100, "group": "loyalty", "is_public": False,
     "description": "Bonus points awarded to the referred customer"},
    {"key": "loyalty.reviewBonus", "value": 50, "group": "loyalty", "is_public": False,
     "description": "Bonus points awarded for writing a review"},
    {"key": "email.fromName", "value": "Marketplace", "group": "email", "is_public": False,
     "description": "Default sender name for emails"},
    {"key": "email.fromAddress", "value": "noreply@example.com", "group": "email", "is_public": False,
     "description": "Default sender email address"},
    {"key": "email.replyTo", "value": "support@example.com", "group": "email", "is_public": False,
     "description": "Reply-to email address"},
    {"key": "payment.currency", "value": "USD", "group": "payment", "is_public": True,
     "description": "Default currency for payments"},
    {"key": "payment.taxRate", "value": 0.08, "group": "payment", "is_public": True,
     "description": "Default tax rate (as decimal)"},
    {"key": "payment.freeShippingThreshold", "value": 50, "group": "payment", "is_public": True,
     "description": "Minimum order amount for free shipping"},
    {"key": "shipping.defaultRate", "value": 5.99, "group": "shipping", "is_public": True,
     "description": "Default shipping rate"},
    {"key": "shipping.expeditedRate", "value": 12.99, "group": "shipping", "is_public": True,
     "description": "Expedited shipping rate"},
    {"key": "security.passwordMinLength", "value": 8, "group": "security", "is_public": True,
     "description": "Minimum password length"},
    {"key": "security.sessionTimeout", "value": 3600, "group": "security", "is_public": False,
     "description": "Session timeout in seconds"},
    {"key": "security.maxLoginAttempts", "value": 5, "group": "security", "is_public": False,
     "description": "Maximum login attempts before lockout"},
    {"key": "features.reviews", "value": True, "group": "features", "is_public": True,
     "description": "Enable product reviews"},
    {"key": "features.recommendations", "value": True, "group": "features", "is_public": True,
     "description": "Enable product recommendations"},
    {"key": "features.abTesting", "value": False, "group": "features", "is_public": False,
     "description": "Enable A/B testing"},
    {"key": "analytics.enabled", "value": True, "group": "analytics", "is_public": False,
     "description": "Enable analytics tracking"},
    {"key": "analytics.retentionDays", "value": 730, "group": "analytics", "is_public": False,
     "description": "Days to retain analytics data"},
    {"key": "maintenance.mode", "value": False, "group": "maintenance", "is_public": True,
     "description": "Enable maintenance mode"},
]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_setting(key: str, value: Any) -> bool:
    """Key-specific validation; any other key only needs a non-null value"""
    if key == "loyalty.pointsPerCurrency":
        return _is_number(value) and value >= 0
    if key == "loyalty.pointsExpiryDays":
        return _is_number(value) and value > 0
    if key == "payment.taxRate":
        return _is_number(value) and 0 <= value <= 1
    if key == "security.passwordMinLength":
        return _is_number(value) and 4 <= value <= 128
    if key == "email.fromAddress":
        return isinstance(value, str) and bool(EMAIL_PATTERN.match(value))
    return value is not None


def invalidate_settings_cache(key: Optional[str] = None, group: Optional[str] = None) -> None:
    keys = ["settings:all", "settings:all:private", "settings:public"]
    if key:
        keys.append(f"setting:{key}")
    if group:
        keys.append(f"settings:group:{group}")
    cache.delete_cache(*keys)


class SettingsService:

    @staticmethod
    def get_setting(key: str, default: Any = None) -> Any:
        """
        Value of a setting, or `default` when it is missing

        Database errors also fall back to the default so a settings outage
        never breaks the caller.
        """
        cache_key = f"setting:{key}"
        cached = cache.get_cache(cache_key)
        if cached is not None:
            return cached["value"]

        try:
            with get_cursor() as cursor:
                cursor.execute("SELECT value FROM settings WHERE key = %s", (key,))
                row = cursor.fetchone()
        except (psycopg2.Error, RuntimeError) as e:
            logger.error(f"Error reading setting {key}, using default: {e}")
            return default

        if not row:
            return default

        cache.set_cache(cache_key, {"value": row["value"]}, SETTING_CACHE_TTL)
        return row["value"]

    @staticmethod
    def set_setting(key: str, value: Any, description: Optional[str] = None,
                    group: Optional[str] = None, is_public: Optional[bool] = None) -> Dict:
        """Insert or update a setting after validating it"""
        if not validate_setting(key, value):
            raise ApiError(f"Invalid value for setting {key}", 400)

        with get_cursor(commit=True) as cursor:
            cursor.execute("SELECT group_name FROM settings WHERE key = %s", (key,))
            existing = cursor.fetchone()

            cursor.execute("""
                INSERT INTO settings (key, value, group_name, description, is_public, updated_at)
                VALUES (%s, %s, %s, %s, %s, NOW())
                ON CONFLICT (key) DO UPDATE SET
                    value = EXCLUDED.value,
                    group_name = COALESCE(%s, settings.group_name),
                    description = COALESCE(%s, settings.description),
                    is_public = COALESCE(%s, settings.is_public),
                    updated_at = NOW()
                RETURNING key, value, group_name, description, is_public, updated_at
            """, (key, Json(value), group or "general", description, bool(is_public),
                  group, description, is_public))
            setting = dict(cursor.fetchone())

        invalidate_settings_cache(key, setting["group_name"])
        if existing and existing["group_name"] != setting["group_name"]:
            invalidate_settings_cache(group=existing["group_name"])
        return setting

    @staticmethod
    def get_settings_by_group(group: str) -> List[Dict]:
        cache_key = f"settings:group:{group}"
        cached = cache.get_cache(cache_key)
        if cached is not None:
            return cached

        with get_cursor() as cursor:
            cursor.execute("""
                SELECT key, value, group_name, description, is_public, updated_at
                FROM settings WHERE group_name = %s
                ORDER BY key
            """, (group,))
            settings_list = [dict(r) for r in cursor.fetchall()]

        cache.set_cache(cache_key, settings_list, SETTING_CACHE_TTL)
        return settings_list

    @staticmethod
    def get_all_settings(include_private: bool = True) -> Dict[str, Any]:
        """All settings as {key: value}"""
        cache_key = "settings:all:private" if include_private else "settings:all"
        cached = cache.get_cache(cache_key)
        if cached is not None:
            return cached

        query = "SELECT key, value FROM settings"
        if not include_private:
            query += " WHERE is_public = TRUE"
        query += " ORDER BY group_name, key"

        with get_cursor() as cursor:
            cursor.execute(query)
            result = {row["key"]: row["value"] for row in cursor.fetchall()}

        cache.set_cache(cache_key, result, SETTING_CACHE_TTL)
        return result

    @staticmethod
    def get_public_settings() -> Dict[str, Any]:
        cached = cache.get_cache("settings:public")
        if cached is not None:
            return cached

        with get_cursor() as cursor:
            cursor.execute("SELECT key, value FROM settings WHERE is_public = TRUE ORDER BY key")
            result = {row["key"]: row["value"] for row in cursor.fetchall()}

        cache.set_cache("settings:public", result, SETTING_CACHE_TTL)
        return result

    @staticmethod
    def delete_setting(key: str) -> Dict:
        with get_cursor(commit=True) as cursor:
            cursor.execute("""
                DELETE FROM settings WHERE key = %s
                RETURNING key, value, group_name
            """, (key,))
            deleted = cursor.fetchone()

        if not deleted:
            raise ApiError(f"Setting {key} not found", 404)

        invalidate_settings_cache(key, deleted["group_name"])
        return dict(deleted)

    @staticmethod
    def bulk_update_settings(values: Dict[str, Any]) -> List[Dict]:
        """Update several settings in one transaction; any invalid value aborts all"""
        invalid = [key for key, value in values.items() if not validate_setting(key, value)]
        if invalid:
            raise ApiError(f"Invalid values for settings: {', '.join(invalid)}", 400)

        with get_cursor(commit=True) as cursor:
            updated = []
            for key, value in values.items():
                cursor.execute("""
                    INSERT INTO settings (key, value, updated_at)
                    VALUES (%s, %s, NOW())
                    ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value, updated_at = NOW()
                    RETURNING key, value, group_name
                """, (key, Json(value)))
                updated.append(dict(cursor.fetchone()))

        for row in updated:
            invalidate_settings_cache(row["key"], row["group_name"])
        return updated

    @staticmethod
    def get_settings_by_keys(keys: List[str]) -> Dict[str, Any]:
        if not keys:
            return {}
        with get_cursor() as cursor:
            cursor.execute("SELECT key, value FROM settings WHERE key = ANY(%s)", (keys,))
            return {row["key"]: row["value"] for row in cursor.fetchall()}

    @staticmethod
    def initialize_default_settings() -> int:
        """Insert default settings that do not exist yet, returns how many were created"""
        created = 0
        with get_cursor(commit=True) as cursor:
            for setting in DEFAULT_SETTINGS:
                cursor.execute("""
                    INSERT INTO settings (key, value, group_name, description, is_public)
                    VALUES (%s, %s, %s, %s, %s)
                    ON CONFLICT (key) DO NOTHING
                """, (setting["key"], Json(setting["value"]), setting["group"],
                      setting["description"], setting["is_public"]))
                created += cursor.rowcount

        invalidate_settings_cache()
        for group in SETTING_GROUPS:
            cache.delete_cache(f"settings:group:{group}")
        logger.info(f"Initialized {created} default settings")
        return created

    @staticmethod
    def export_settings(include_private: bool = False) -> str:
        """JSON document with every (public) setting and its metadata"""
        query = "SELECT key, value, group_name, description, is_public FROM settings"
        if not include_private:
            query += " WHERE is_public = TRUE"
        query += " ORDER BY group_name, key"

        with get_cursor() as cursor:
            cursor.execute(query)
            rows = cursor.fetchall()

        return json.dumps({
            "exportedAt": datetime.utcnow().isoformat(),
            "includePrivate": include_private,
            "settings": [
                {"key": r["key"], "value": r["value"], "group": r["group_name"],
                 "description": r["description"], "isPublic": r["is_public"]}
                for r in rows
            ],
        }, indent=2, default=str)

    @staticmethod
    def import_settings(data: str, overwrite: bool = False) -> Dict:
        """
        Import settings from an export document

        Existing keys are skipped unless overwrite is set. Invalid entries are
        counted as errors and do not stop the import.
        """
        try:
            payload = json.loads(data)
        except json.JSONDecodeError:
            raise ApiError("Invalid settings import format", 400)

        entries = payload.get("settings") if isinstance(payload, dict) else None
        if not isinstance(entries, list):
            raise ApiError("Invalid settings import format", 400)

        result = {"imported": 0, "skipped": 0, "errors": 0, "details": []}

        for entry in entries:
            key = entry.get("key") if isinstance(entry, dict) else None
            if not key:
                result["errors"] += 1
                result["details"].append({"key": None, "error": "Missing key"})
                continue

            if not overwrite and SettingsService.get_settings_by_keys([key]):
                result["skipped"] += 1
                continue

            try:
                SettingsService.set_setting(key, entry.get("value"), entry.get("description"),
                                            entry.get("group"), entry.get("isPublic"))
                result["imported"] += 1
            except ApiError as e:
                result["errors"] += 1
                result["details"].append({"key": key, "error": e.message})

        logger.info(f"Settings import: {result['imported']} imported, {result['skipped']} skipped, "
                    f"{result['errors']} errors")
        return result

    @staticmethod
    def get_setting_groups() -> List[Dict]:
        with get_cursor() as cursor:
            cursor.execute("SELECT group_name, COUNT(*) AS count FROM settings GROUP BY group_name")
            counts = {row["group_name"]: row["count"] for row in cursor.fetchall()}

        groups = set(SETTING_GROUPS) | set(counts)
        return [
            {"name": group, "description": SETTING_GROUPS.get(group, ""), "count": counts.get(group, 0)}
            for group in sorted(groups)
        ]
