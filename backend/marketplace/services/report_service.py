"""
Report Service - loyalty program reports

Reports are written to REPORTS_DIR in any export format and swept by the
daily cleanup job.

Author: TM3
Date: 2026-02-25
"""
import os
import time
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from marketplace.core.config import settings
from marketplace.core.database import get_cursor
from marketplace.core.exceptions import ApiError
from marketplace.core.logging import get_request_logger
from marketplace.services.export_service import ExportDataType, export_to_file, parse_format
from marketplace.services.loyalty_service import calculate_tier, find_reward

logger = logging.getLogger(__name__)

REPORT_TYPES = ("points", "redemptions", "tiers", "referrals")
DEFAULT_REPORT_DAYS = 30

POINTS_FIELDS = ["id", "user_email", "user_name", "points", "type", "description", "reference_id", "created_at"]
REDEMPTION_FIELDS = ["id", "user_email", "reward_id", "reward_name", "points_spent", "code", "status",
                     "expires_at", "used_at", "created_at"]
TIER_FIELDS = ["user_id", "email", "name", "current_points", "lifetime_points", "tier",
               "next_tier", "points_for_next"]
REFERRAL_FIELDS = ["code", "referrer_email", "referred_email", "is_used", "used_at", "created_at"]

REPORT_LAYOUTS = {
    "points": (POINTS_FIELDS, ExportDataType.LOYALTY_POINTS),
    "redemptions": (REDEMPTION_FIELDS, ExportDataType.LOYALTY_REDEMPTIONS),
    "tiers": (TIER_FIELDS, ExportDataType.LOYALTY_TIERS),
    "referrals": (REFERRAL_FIELDS, ExportDataType.LOYALTY_REFERRALS),
}


def _date_range(start_date: Optional[datetime], end_date: Optional[datetime]):
    end = end_date or datetime.utcnow()
    start = start_date or end - timedelta(days=DEFAULT_REPORT_DAYS)
    if start > end:
        raise ApiError("start_date must be before end_date", 400)
    return start, end


def _where(conditions: List[str]) -> str:
    return " AND ".join(conditions) if conditions else "1=1"


# ============================================================================
# Report data
# ============================================================================

def points_report_rows(cursor, start: datetime, end: datetime, filters: Dict[str, Any]) -> List[Dict]:
    conditions = ["h.created_at >= %s", "h.created_at <= %s"]
    params: List[Any] = [start, end]
    if filters.get("user_id"):
        conditions.append("h.user_id = %s")
        params.append(filters["user_id"])
    if filters.get("type"):
        conditions.append("h.type = %s")
        params.append(filters["type"])

    cursor.execute(f"""
        SELECT h.id, u.email AS user_email,
               TRIM(CONCAT(u.first_name, ' ', u.last_name)) AS user_name,
               h.points, h.type, h.description, h.reference_id, h.created_at
        FROM loyalty_history h
        JOIN users u ON u.id = h.user_id
        WHERE {_where(conditions)}
        ORDER BY h.created_at DESC
    """, params)
    return [dict(r) for r in cursor.fetchall()]


def redemptions_report_rows(cursor, start: datetime, end: datetime, filters: Dict[str, Any]) -> List[Dict]:
    conditions = ["r.created_at >= %s", "r.created_at <= %s"]
    params: List[Any] = [start, end]
    if filters.get("status"):
        conditions.append("r.status = %s")
        params.append(filters["status"])

    cursor.execute(f"""
        SELECT r.id, u.email AS user_email, r.reward_id, r.points_spent, r.code, r.status,
               r.expires_at, r.used_at, r.created_at
        FROM loyalty_redemptions r
        JOIN users u ON u.id = r.user_id
        WHERE {_where(conditions)}
        ORDER BY r.created_at DESC
    """, params)
    rows = []
    for r in cursor.fetchall():
        row = dict(r)
        reward = find_reward(row["reward_id"])
        row["reward_name"] = reward.name if reward else row["reward_id"]
        rows.append(row)
    return rows


def tiers_report_rows(cursor, filters: Dict[str, Any]) -> List[Dict]:
    cursor.execute("""
        SELECT u.id AS user_id, u.email,
               TRIM(CONCAT(u.first_name, ' ', u.last_name)) AS name,
               u.loyalty_points AS current_points,
               COALESCE(SUM(h.points) FILTER (WHERE h.points > 0), 0) AS lifetime_points
        FROM users u
        LEFT JOIN loyalty_history h ON h.user_id = u.id
        WHERE u.role = 'CUSTOMER'
        GROUP BY u.id
        ORDER BY lifetime_points DESC
    """)
    rows = []
    for r in cursor.fetchall():
        row = dict(r)
        tier = calculate_tier(int(row["lifetime_points"]))
        if filters.get("tier") and tier["name"] != filters["tier"]:
            continue
        row.update({"tier": tier["name"], "next_tier": tier["next_tier"],
                    "points_for_next": tier["points_for_next"]})
        rows.append(row)
    return rows


def referrals_report_rows(cursor, start: datetime, end: datetime, filters: Dict[str, Any]) -> List[Dict]:
    conditions = ["ref.created_at >= %s", "ref.created_at <= %s"]
    params: List[Any] = [start, end]
    if filters.get("is_used") is not None:
        conditions.append("ref.is_used = %s")
        params.append(filters["is_used"])

    cursor.execute(f"""
        SELECT ref.code, referrer.email AS referrer_email, referred.email AS referred_email,
               ref.is_used, ref.used_at, ref.created_at
        FROM loyalty_referrals ref
        JOIN users referrer ON referrer.id = ref.referrer_id
        LEFT JOIN users referred ON referred.id = ref.referred_user_id
        WHERE {_where(conditions)}
        ORDER BY ref.created_at DESC
    """, params)
    return [dict(r) for r in cursor.fetchall()]


# ============================================================================
# Service
# ============================================================================

class ReportService:

    @staticmethod
    def generate_loyalty_report(report_type: str, fmt: str = "csv", start_date: Optional[datetime] = None,
                                end_date: Optional[datetime] = None, filters: Optional[Dict[str, Any]] = None,
                                request_id: Optional[str] = None) -> Dict:
        """
        Build a loyalty report and write it to REPORTS_DIR

        Args:
            report_type: points, redemptions, tiers or referrals
            fmt: csv, xlsx, pdf or json
            start_date / end_date: Period, last 30 days by default (ignored for tiers)
            filters: user_id/type (points), status (redemptions), tier (tiers),
                     is_used (referrals)

        Returns:
            Dict with type, format, file_path, file_name and record_count
        """
        log = get_request_logger(__name__, request_id)
        if report_type not in REPORT_TYPES:
            raise ApiError(f"Invalid report type: {report_type}", 400)
        export_format = parse_format(fmt)
        start, end = _date_range(start_date, end_date)
        filters = filters or {}

        log.info(f"Generating loyalty {report_type} report as {export_format.value}")
        with get_cursor() as cursor:
            if report_type == "points":
                rows = points_report_rows(cursor, start, end, filters)
            elif report_type == "redemptions":
                rows = redemptions_report_rows(cursor, start, end, filters)
            elif report_type == "tiers":
                rows = tiers_report_rows(cursor, filters)
            else:
                rows = referrals_report_rows(cursor, start, end, filters)
        fields, data_type = REPORT_LAYOUTS[report_type]

        if not rows:
            raise ApiError(f"No data found for the {report_type} report", 404)

        path = export_to_file(export_format, rows, fields, data_type.value,
                              directory=settings.REPORTS_DIR, request_id=request_id)
        return {
            "type": report_type,
            "format": export_format.value,
            "file_path": path,
            "file_name": os.path.basename(path),
            "record_count": len(rows),
        }

    @staticmethod
    def get_report_statistics(request_id: Optional[str] = None) -> Dict:
        log = get_request_logger(__name__, request_id)
        try:
            with get_cursor() as cursor:
                cursor.execute("""
                    SELECT
                        (SELECT COUNT(*) FROM users WHERE role = 'CUSTOMER') AS total_users,
                        (SELECT COALESCE(SUM(points), 0) FROM loyalty_history WHERE points > 0) AS total_points_awarded,
                        (SELECT COALESCE(-SUM(points), 0) FROM loyalty_history WHERE points < 0) AS total_points_redeemed,
                        (SELECT COUNT(*) FROM loyalty_redemptions) AS total_redemptions,
                        (SELECT COUNT(*) FROM loyalty_referrals WHERE is_used) AS total_referrals
                """)
                row = cursor.fetchone()
        except Exception as e:
            log.error(f"Error getting report statistics: {e}")
            raise ApiError(f"Failed to get report statistics: {e}", 500)

        return {key: int(value or 0) for key, value in dict(row).items()}

    @staticmethod
    def cleanup_old_reports(days_old: int = 7) -> int:
        """Delete report files older than days_old; returns how many were removed"""
        reports_dir = settings.REPORTS_DIR
        if not os.path.isdir(reports_dir):
            return 0

        cutoff = time.time() - days_old * 86400
        deleted = 0
        for entry in os.scandir(reports_dir):
            if not entry.is_file():
                continue
            try:
                if entry.stat().st_mtime < cutoff:
                    os.remove(entry.path)
                    deleted += 1
            except OSError as e:
                logger.warning(f"Could not remove old report {entry.path}: {e}")

        logger.info(f"Cleaned up {deleted} reports older than {days_old} days")
        return deleted
