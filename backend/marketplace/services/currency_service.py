"""
Currency Service - currencies, exchange rates and conversion

Every rate is expressed against the single base currency (rate 1).
Conversion goes through the base: amount / source_rate * target_rate,
rounded to the target currency's decimal places.

Author: TM3
Date: 2026-02-22
"""
import logging
from typing import Dict, List, Optional
from decimal import Decimal, ROUND_HALF_UP

import httpx

from marketplace.core import cache
from marketplace.core.config import settings
from marketplace.core.database import get_cursor, transaction
from marketplace.core.exceptions import ApiError
from marketplace.domain.pricing import CurrencyCreate, CurrencyUpdate

logger = logging.getLogger(__name__)

CURRENCY_CACHE_TTL = 3600
ALL_CURRENCIES_KEY = "currencies:all"
BASE_CURRENCY_KEY = "currency:base"

CURRENCY_COLUMNS = "code, name, symbol, exchange_rate, decimal_places, is_base, is_active, updated_at"


def convert_amount(amount: float, from_rate: float, to_rate: float, decimal_places: int = 2) -> float:
    """Convert via the base currency and round half-up to decimal_places"""
    if from_rate <= 0 or to_rate <= 0:
        raise ApiError("Exchange rates must be positive", 400)
    value = Decimal(str(amount)) / Decimal(str(from_rate)) * Decimal(str(to_rate))
    quantum = Decimal(1).scaleb(-decimal_places)
    return float(value.quantize(quantum, rounding=ROUND_HALF_UP))


def format_amount(amount: float, symbol: str, decimal_places: int = 2) -> str:
    return f"{symbol}{amount:,.{decimal_places}f}"


def invalidate_currency_cache(code: Optional[str] = None) -> None:
    keys = [ALL_CURRENCIES_KEY, BASE_CURRENCY_KEY]
    if code:
        keys.append(f"currency:{code}")
    cache.delete_cache(*keys)


class CurrencyService:

    @staticmethod
    def get_currencies(active_only: bool = False) -> List[Dict]:
        cached = cache.get_cache(ALL_CURRENCIES_KEY)
        if cached is None:
            with get_cursor() as cursor:
                cursor.execute(f"SELECT {CURRENCY_COLUMNS} FROM currencies ORDER BY is_base DESC, code")
                cached = [dict(r) for r in cursor.fetchall()]
            cache.set_cache(ALL_CURRENCIES_KEY, cached, CURRENCY_CACHE_TTL)

        if active_only:
            return [c for c in cached if c["is_active"]]
        return cached

    @staticmethod
    def get_currency(code: str) -> Dict:
        code = code.upper()
        cache_key = f"currency:{code}"
        cached = cache.get_cache(cache_key)
        if cached:
            return cached

        with get_cursor() as cursor:
            cursor.execute(f"SELECT {CURRENCY_COLUMNS} FROM currencies WHERE code = %s", (code,))
            currency = cursor.fetchone()
        if not currency:
            raise ApiError(f"Currency {code} not found", 404)

        currency = dict(currency)
        cache.set_cache(cache_key, currency, CURRENCY_CACHE_TTL)
        return currency

    @staticmethod
    def get_base_currency() -> Dict:
        cached = cache.get_cache(BASE_CURRENCY_KEY)
        if cached:
            return cached

        with get_cursor() as cursor:
            cursor.execute(f"SELECT {CURRENCY_COLUMNS} FROM currencies WHERE is_base = TRUE")
            base = cursor.fetchone()
        if not base:
            raise ApiError("No base currency configured", 404)

        base = dict(base)
        cache.set_cache(BASE_CURRENCY_KEY, base, CURRENCY_CACHE_TTL)
        return base

    @staticmethod
    def create_currency(data: CurrencyCreate) -> Dict:
        """The first currency created becomes the base currency"""
        with get_cursor(commit=True) as cursor:
            cursor.execute("SELECT code FROM currencies WHERE code = %s", (data.code,))
            if cursor.fetchone():
                raise ApiError(f"Currency {data.code} already exists", 400)

            cursor.execute("SELECT COUNT(*) AS count FROM currencies")
            is_first = cursor.fetchone()["count"] == 0

            cursor.execute(f"""
                INSERT INTO currencies (code, name, symbol, exchange_rate, decimal_places, is_base, is_active)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                RETURNING {CURRENCY_COLUMNS}
            """, (data.code, data.name, data.symbol, 1 if is_first else data.exchange_rate,
                  data.decimal_places, is_first, data.is_active))
            currency = dict(cursor.fetchone())

        invalidate_currency_cache(data.code)
        return currency

    @staticmethod
    def update_currency(code: str, data: CurrencyUpdate) -> Dict:
        code = code.upper()
        changes = data.model_dump(exclude_unset=True)
        if not changes:
            raise ApiError("No fields to update", 400)

        with get_cursor(commit=True) as cursor:
            cursor.execute("SELECT code, is_base FROM currencies WHERE code = %s FOR UPDATE", (code,))
            currency = cursor.fetchone()
            if not currency:
                raise ApiError(f"Currency {code} not found", 404)
            if currency["is_base"] and "exchange_rate" in changes and float(changes["exchange_rate"]) != 1:
                raise ApiError("Cannot change the exchange rate of the base currency", 400)
            if currency["is_base"] and changes.get("is_active") is False:
                raise ApiError("Cannot deactivate the base currency", 400)

            sets = [f"{field} = %s" for field in changes] + ["updated_at = NOW()"]
            cursor.execute(f"""
                UPDATE currencies SET {', '.join(sets)}
                WHERE code = %s
                RETURNING {CURRENCY_COLUMNS}
            """, list(changes.values()) + [code])
            updated = dict(cursor.fetchone())

        invalidate_currency_cache(code)
        return updated

    @staticmethod
    def delete_currency(code: str) -> None:
        code = code.upper()
        with get_cursor(commit=True) as cursor:
            cursor.execute("SELECT code, is_base FROM currencies WHERE code = %s", (code,))
            currency = cursor.fetchone()
            if not currency:
                raise ApiError(f"Currency {code} not found", 404)
            if currency["is_base"]:
                raise ApiError("Cannot delete the base currency", 400)

            cursor.execute("SELECT COUNT(*) AS count FROM countries WHERE currency_code = %s", (code,))
            if cursor.fetchone()["count"] > 0:
                raise ApiError(f"Cannot delete currency {code}: it is used by countries", 400)

            cursor.execute("DELETE FROM currencies WHERE code = %s", (code,))

        invalidate_currency_cache(code)

    @staticmethod
    def set_base_currency(code: str) -> Dict:
        """
        Make `code` the base currency and rebase every other rate

        The old base gets 1 / new_rate, every other currency rate / new_rate.
        """
        code = code.upper()
        with transaction() as cursor:
            cursor.execute("SELECT code, exchange_rate, is_base FROM currencies WHERE code = %s FOR UPDATE", (code,))
            new_base = cursor.fetchone()
            if not new_base:
                raise ApiError(f"Currency {code} not found", 404)
            if new_base["is_base"]:
                raise ApiError(f"{code} is already the base currency", 400)

            new_rate = Decimal(str(new_base["exchange_rate"]))
            cursor.execute("UPDATE currencies SET is_base = FALSE WHERE is_base = TRUE")
            cursor.execute("""
                UPDATE currencies SET exchange_rate = exchange_rate / %s, updated_at = NOW()
                WHERE code <> %s
            """, (new_rate, code))
            cursor.execute(f"""
                UPDATE currencies SET exchange_rate = 1, is_base = TRUE, is_active = TRUE, updated_at = NOW()
                WHERE code = %s
                RETURNING {CURRENCY_COLUMNS}
            """, (code,))
            base = dict(cursor.fetchone())

        cache.delete_cache_pattern("currency:*")
        cache.delete_cache(ALL_CURRENCIES_KEY)
        logger.info(f"Base currency changed to {code}")
        return base

    @staticmethod
    def update_exchange_rates() -> Dict:
        """Refresh all non-base rates from the exchange rate API"""
        base = CurrencyService.get_base_currency()
        url = f"{settings.EXCHANGE_RATE_API_URL.rstrip('/')}/{base['code']}"

        try:
            response = httpx.get(url, timeout=settings.HTTP_TIMEOUT)
            response.raise_for_status()
            rates = response.json().get("rates") or {}
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to fetch exchange rates from {url}: {e}")
            raise ApiError(f"Failed to fetch exchange rates: {e}", 502)

        updated, missing = [], []
        with get_cursor(commit=True) as cursor:
            cursor.execute("SELECT code FROM currencies WHERE is_base = FALSE")
            for row in cursor.fetchall():
                rate = rates.get(row["code"])
                if rate:
                    cursor.execute("""
                        UPDATE currencies SET exchange_rate = %s, updated_at = NOW() WHERE code = %s
                    """, (rate, row["code"]))
                    updated.append(row["code"])
                else:
                    missing.append(row["code"])

        cache.delete_cache_pattern("currency:*")
        cache.delete_cache(ALL_CURRENCIES_KEY)
        if missing:
            logger.warning(f"No rate returned for: {', '.join(missing)}")
        logger.info(f"Updated {len(updated)} exchange rates against {base['code']}")
        return {"base": base["code"], "updated": updated, "missing": missing}

    @staticmethod
    def convert_currency(amount: float, from_code: str, to_code: str) -> Dict:
        from_code, to_code = from_code.upper(), to_code.upper()
        target = CurrencyService.get_currency(to_code)

        if from_code == to_code:
            converted = amount
            rate = 1.0
        else:
            source = CurrencyService.get_currency(from_code)
            if not source["is_active"] or not target["is_active"]:
                raise ApiError("Currency is not active", 400)
            converted = convert_amount(amount, float(source["exchange_rate"]),
                                       float(target["exchange_rate"]), target["decimal_places"])
            rate = float(target["exchange_rate"]) / float(source["exchange_rate"])

        return {
            "amount": amount,
            "from": from_code,
            "to": to_code,
            "rate": rate,
            "converted_amount": converted,
            "formatted": format_amount(converted, target["symbol"], target["decimal_places"]),
        }

    @staticmethod
    def format_currency(amount: float, code: str) -> str:
        currency = CurrencyService.get_currency(code)
        return format_amount(amount, currency["symbol"], currency["decimal_places"])
