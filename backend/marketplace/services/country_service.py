"""
Country Service - countries, their regions and states/provinces

States live in a JSONB array on the country row: [{"code": "CA", "name": "California"}].
Country and state codes are stored uppercase. Reads are cached for a day
and every write drops the country's keys plus the list.

Author: TM3
Date: 2026-02-24
"""
import logging
from typing import Dict, List, Optional

from psycopg2.extras import Json

from marketplace.core import cache
from marketplace.core.database import get_cursor
from marketplace.core.exceptions import ApiError
from marketplace.core.logging import get_request_logger
from marketplace.domain.country import CountryCreate, CountryState, CountryUpdate

logger = logging.getLogger(__name__)

COUNTRY_CACHE_TTL = 86400
ALL_COUNTRIES_KEY = "countries:all"

COUNTRY_COLUMNS = "code, name, currency_code, region, states, is_active, created_at, updated_at"


def invalidate_country_cache(*codes: str) -> None:
    keys = [ALL_COUNTRIES_KEY]
    for code in codes:
        keys.extend([f"country:{code}", f"country:{code}:states"])
    cache.delete_cache(*keys)


def _fetch_country(cursor, code: str, lock: bool = False) -> Dict:
    cursor.execute(f"SELECT {COUNTRY_COLUMNS} FROM countries WHERE code = %s{' FOR UPDATE' if lock else ''}",
                   (code,))
    country = cursor.fetchone()
    if not country:
        raise ApiError(f"Country with code {code} not found", 404)
    return dict(country)


def _find_state(states: List[Dict], state_code: str) -> Optional[Dict]:
    return next((s for s in states if s["code"].upper() == state_code), None)


class CountryService:

    @staticmethod
    def get_all_countries() -> List[Dict]:
        """Active countries ordered by name"""
        cached = cache.get_cache(ALL_COUNTRIES_KEY)
        if cached is not None:
            return cached

        with get_cursor() as cursor:
            cursor.execute(f"SELECT {COUNTRY_COLUMNS} FROM countries WHERE is_active = TRUE ORDER BY name")
            countries = [dict(r) for r in cursor.fetchall()]

        cache.set_cache(ALL_COUNTRIES_KEY, countries, COUNTRY_CACHE_TTL)
        return countries

    @staticmethod
    def get_country(code: str) -> Dict:
        code = code.upper()
        cache_key = f"country:{code}"
        cached = cache.get_cache(cache_key)
        if cached:
            return cached

        with get_cursor() as cursor:
            country = _fetch_country(cursor, code)

        cache.set_cache(cache_key, country, COUNTRY_CACHE_TTL)
        return country

    @staticmethod
    def create_country(data: CountryCreate, request_id: Optional[str] = None) -> Dict:
        log = get_request_logger(__name__, request_id)

        with get_cursor(commit=True) as cursor:
            cursor.execute("SELECT code FROM countries WHERE code = %s", (data.code,))
            if cursor.fetchone():
                raise ApiError(f"Country with code {data.code} already exists", 400)

            cursor.execute(f"""
                INSERT INTO countries (code, name, currency_code, region, states, is_active)
                VALUES (%s, %s, %s, %s, %s, %s)
                RETURNING {COUNTRY_COLUMNS}
            """, (data.code, data.name, data.currency_code, data.region,
                  Json([s.model_dump() for s in data.states]), data.is_active))
            country = dict(cursor.fetchone())

        invalidate_country_cache(data.code)
        log.info(f"Created country {data.code}")
        return country

    @staticmethod
    def update_country(code: str, data: CountryUpdate, request_id: Optional[str] = None) -> Dict:
        """
        Update a country, including its code

        Raises:
            ApiError 404: unknown country
            ApiError 400: nothing to update, or the new code is taken
        """
        log = get_request_logger(__name__, request_id)
        code = code.upper()
        changes = data.model_dump(exclude_unset=True)
        if not changes:
            raise ApiError("No fields to update", 400)
        if "states" in changes:
            changes["states"] = Json(changes["states"] or [])

        with get_cursor(commit=True) as cursor:
            _fetch_country(cursor, code, lock=True)

            new_code = changes.get("code")
            if new_code and new_code != code:
                cursor.execute("SELECT code FROM countries WHERE code = %s", (new_code,))
                if cursor.fetchone():
                    raise ApiError(f"Country with code {new_code} already exists", 400)

            sets = [f"{field} = %s" for field in changes] + ["updated_at = NOW()"]
            cursor.execute(f"""
                UPDATE countries SET {', '.join(sets)}
                WHERE code = %s
                RETURNING {COUNTRY_COLUMNS}
            """, list(changes.values()) + [code])
            country = dict(cursor.fetchone())

        invalidate_country_cache(code, country["code"])
        log.info(f"Updated country {code}")
        return country

    @staticmethod
    def delete_country(code: str, request_id: Optional[str] = None) -> None:
        log = get_request_logger(__name__, request_id)
        code = code.upper()

        with get_cursor(commit=True) as cursor:
            _fetch_country(cursor, code)

            cursor.execute("SELECT COUNT(*) AS count FROM users WHERE country = %s", (code,))
            users = cursor.fetchone()["count"]
            if users > 0:
                raise ApiError(f"Cannot delete country {code} as it is being used by {users} users", 400)

            cursor.execute("DELETE FROM countries WHERE code = %s", (code,))

        invalidate_country_cache(code)
        log.info(f"Deleted country {code}")

    # ------------------------------------------------------------------
    # States
    # ------------------------------------------------------------------

    @staticmethod
    def get_states(code: str) -> List[Dict]:
        code = code.upper()
        cache_key = f"country:{code}:states"
        cached = cache.get_cache(cache_key)
        if cached is not None:
            return cached

        with get_cursor() as cursor:
            states = _fetch_country(cursor, code)["states"] or []

        cache.set_cache(cache_key, states, COUNTRY_CACHE_TTL)
        return states

    @staticmethod
    def add_state(code: str, state: CountryState) -> Dict:
        code = code.upper()
        with get_cursor(commit=True) as cursor:
            states = _fetch_country(cursor, code, lock=True)["states"] or []
            if _find_state(states, state.code):
                raise ApiError(f"State with code {state.code} already exists in country {code}", 400)

            states.append(state.model_dump())
            cursor.execute(f"""
                UPDATE countries SET states = %s, updated_at = NOW()
                WHERE code = %s
                RETURNING {COUNTRY_COLUMNS}
            """, (Json(states), code))
            country = dict(cursor.fetchone())

        invalidate_country_cache(code)
        return country

    @staticmethod
    def remove_state(code: str, state_code: str) -> Dict:
        code, state_code = code.upper(), state_code.upper()
        with get_cursor(commit=True) as cursor:
            states = _fetch_country(cursor, code, lock=True)["states"] or []
            if not _find_state(states, state_code):
                raise ApiError(f"State with code {state_code} not found in country {code}", 404)

            remaining = [s for s in states if s["code"].upper() != state_code]
            cursor.execute(f"""
                UPDATE countries SET states = %s, updated_at = NOW()
                WHERE code = %s
                RETURNING {COUNTRY_COLUMNS}
            """, (Json(remaining), code))
            country = dict(cursor.fetchone())

        invalidate_country_cache(code)
        return country

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    @staticmethod
    def get_countries_by_region(region: str) -> List[Dict]:
        with get_cursor() as cursor:
            cursor.execute(f"""
                SELECT {COUNTRY_COLUMNS} FROM countries
                WHERE is_active = TRUE AND LOWER(region) = LOWER(%s)
                ORDER BY name
            """, (region,))
            return [dict(r) for r in cursor.fetchall()]

    @staticmethod
    def search_countries(query: str) -> List[Dict]:
        """Active countries whose name, code or region contains the query"""
        query = query.strip()
        if not query:
            return []

        pattern = f"%{query}%"
        with get_cursor() as cursor:
            cursor.execute(f"""
                SELECT {COUNTRY_COLUMNS} FROM countries
                WHERE is_active = TRUE
                  AND (name ILIKE %s OR code ILIKE %s OR region ILIKE %s)
                ORDER BY name
            """, (pattern, pattern, pattern))
            return [dict(r) for r in cursor.fetchall()]
