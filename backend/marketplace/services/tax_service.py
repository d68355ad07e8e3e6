"""
Tax Service - tax rates by location and category

Rate lookup narrows from the most specific match to the least:
country + state + postal code + category, then without postal code, then
without state, then without category, then the default rate, and finally a
zero "No Tax" rate. Within a level the highest priority wins.

Author: TM3
Date: 2026-02-22
"""
import logging
from typing import Dict, List, Optional, Any
from decimal import Decimal, ROUND_HALF_UP

from marketplace.core import cache
from marketplace.core.database import get_cursor
from marketplace.core.exceptions import ApiError
from marketplace.domain.pricing import TaxRateCreate, TaxRateUpdate, TaxCalculation

logger = logging.getLogger(__name__)

TAX_CACHE_TTL = 3600

TAX_COLUMNS = """
    id, name, rate, country, state, postal_code, category_id, priority,
    is_default, is_active, created_at, updated_at
"""

NO_TAX = {"id": None, "name": "No Tax", "rate": 0, "country": None, "state": None,
          "postal_code": None, "category_id": None, "priority": 0, "is_default": False}


def round_tax(amount: Decimal) -> Decimal:
    return amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def compute_tax(amount: float, rate: float) -> float:
    """amount * rate / 100, rounded half-up to 2 decimals"""
    return float(round_tax(Decimal(str(amount)) * Decimal(str(rate)) / Decimal("100")))


def lookup_levels(country: str, state: Optional[str], postal_code: Optional[str],
                  category_id: Optional[str]) -> List[Dict[str, Optional[str]]]:
    """Match criteria from most to least specific, without duplicates"""
    candidates = [
        {"state": state, "postal_code": postal_code, "category_id": category_id},
        {"state": state, "postal_code": None, "category_id": category_id},
        {"state": None, "postal_code": None, "category_id": category_id},
        {"state": None, "postal_code": None, "category_id": None},
    ]
    levels = []
    for level in candidates:
        if level not in levels:
            levels.append(level)
    return levels


def invalidate_tax_cache() -> None:
    cache.delete_cache_pattern("tax:*")


class TaxService:

    @staticmethod
    def create_tax_rate(data: TaxRateCreate) -> Dict:
        with get_cursor(commit=True) as cursor:
            if data.is_default:
                cursor.execute("UPDATE tax_rates SET is_default = FALSE WHERE country = %s AND is_default",
                               (data.country,))
            cursor.execute(f"""
                INSERT INTO tax_rates (name, rate, country, state, postal_code, category_id,
                                       priority, is_default, is_active)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING {TAX_COLUMNS}
            """, (data.name, data.rate, data.country, data.state, data.postal_code, data.category_id,
                  data.priority, data.is_default, data.is_active))
            rate = dict(cursor.fetchone())

        invalidate_tax_cache()
        logger.info(f"Created tax rate {rate['id']} ({data.name} {data.rate}%)")
        return rate

    @staticmethod
    def get_tax_rate_by_id(tax_rate_id: str) -> Dict:
        cache_key = f"tax:rate:{tax_rate_id}"
        cached = cache.get_cache(cache_key)
        if cached:
            return cached

        with get_cursor() as cursor:
            cursor.execute(f"SELECT {TAX_COLUMNS} FROM tax_rates WHERE id = %s", (tax_rate_id,))
            rate = cursor.fetchone()
        if not rate:
            raise ApiError("Tax rate not found", 404)

        rate = dict(rate)
        cache.set_cache(cache_key, rate, TAX_CACHE_TTL)
        return rate

    @staticmethod
    def get_tax_rates(country: Optional[str] = None, is_active: Optional[bool] = None) -> List[Dict]:
        conditions = []
        params: List[Any] = []
        if country:
            conditions.append("country = %s")
            params.append(country.upper())
        if is_active is not None:
            conditions.append("is_active = %s")
            params.append(is_active)
        where = " AND ".join(conditions) if conditions else "1=1"

        with get_cursor() as cursor:
            cursor.execute(f"""
                SELECT {TAX_COLUMNS} FROM tax_rates
                WHERE {where}
                ORDER BY country, state NULLS FIRST, priority DESC
            """, params)
            return [dict(r) for r in cursor.fetchall()]

    @staticmethod
    def update_tax_rate(tax_rate_id: str, data: TaxRateUpdate) -> Dict:
        changes = data.model_dump(exclude_unset=True)
        if not changes:
            raise ApiError("No fields to update", 400)
        for field in ("country", "state"):
            if changes.get(field):
                changes[field] = changes[field].upper()

        sets = [f"{field} = %s" for field in changes] + ["updated_at = NOW()"]

        with get_cursor(commit=True) as cursor:
            cursor.execute(f"""
                UPDATE tax_rates SET {', '.join(sets)}
                WHERE id = %s
                RETURNING {TAX_COLUMNS}
            """, list(changes.values()) + [tax_rate_id])
            rate = cursor.fetchone()
            if not rate:
                raise ApiError("Tax rate not found", 404)

            if changes.get("is_default"):
                cursor.execute("""
                    UPDATE tax_rates SET is_default = FALSE
                    WHERE country = %s AND is_default AND id <> %s
                """, (rate["country"], tax_rate_id))

        invalidate_tax_cache()
        return dict(rate)

    @staticmethod
    def delete_tax_rate(tax_rate_id: str) -> None:
        with get_cursor(commit=True) as cursor:
            cursor.execute("DELETE FROM tax_rates WHERE id = %s", (tax_rate_id,))
            deleted = cursor.rowcount
        if not deleted:
            raise ApiError("Tax rate not found", 404)
        invalidate_tax_cache()

    @staticmethod
    def get_applicable_tax_rate(country: str, state: Optional[str] = None,
                                postal_code: Optional[str] = None,
                                category_id: Optional[str] = None) -> Dict:
        country = country.upper()
        state = state.upper() if state else None
        cache_key = f"tax:applicable:{country}:{state or ''}:{postal_code or ''}:{category_id or ''}"
        cached = cache.get_cache(cache_key)
        if cached:
            return cached

        rate = None
        with get_cursor() as cursor:
            for level in lookup_levels(country, state, postal_code, category_id):
                cursor.execute(f"""
                    SELECT {TAX_COLUMNS} FROM tax_rates
                    WHERE is_active = TRUE
                      AND country = %s
                      AND state IS NOT DISTINCT FROM %s
                      AND postal_code IS NOT DISTINCT FROM %s
                      AND category_id IS NOT DISTINCT FROM %s
                    ORDER BY priority DESC
                    LIMIT 1
                """, (country, level["state"], level["postal_code"], level["category_id"]))
                rate = cursor.fetchone()
                if rate:
                    break

            if not rate:
                cursor.execute(f"""
                    SELECT {TAX_COLUMNS} FROM tax_rates
                    WHERE is_active = TRUE AND is_default = TRUE
                    ORDER BY (country = %s) DESC, priority DESC
                    LIMIT 1
                """, (country,))
                rate = cursor.fetchone()

        result = dict(rate) if rate else dict(NO_TAX)
        cache.set_cache(cache_key, result, TAX_CACHE_TTL)
        return result

    @staticmethod
    def calculate_tax(amount: float, country: str, state: Optional[str] = None,
                      postal_code: Optional[str] = None, category_id: Optional[str] = None) -> TaxCalculation:
        if amount < 0:
            raise ApiError("Amount must not be negative", 400)

        rate = TaxService.get_applicable_tax_rate(country, state, postal_code, category_id)
        rate_value = float(rate["rate"])

        return TaxCalculation(
            tax_amount=compute_tax(amount, rate_value),
            tax_rate=rate_value,
            tax_name=rate["name"],
            tax_rate_id=str(rate["id"]) if rate["id"] else None,
        )
