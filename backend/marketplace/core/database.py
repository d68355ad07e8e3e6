"""
PostgreSQL access

All services run raw SQL through psycopg2 with RealDictCursor so rows come
back as dictionaries ready for JSON serialization.

- get_db_connection_dict_with_retry(): connection with retry on connection failures
- get_cursor(): context manager yielding a cursor; commits on success when
  commit=True, rolls back and re-raises on error, always closes
- transaction(): get_cursor(commit=True)

Author: TM3
Updated: 2026-02-11
"""
import time
import logging
from contextlib import contextmanager

import psycopg2
from psycopg2.extras import RealDictCursor

from .config import settings

logger = logging.getLogger(__name__)


def get_db_connection_dict_with_retry(max_retries=3, retry_delay=1.0):
    """
    Get a psycopg2 connection with RealDictCursor and automatic retry

    Only psycopg2.OperationalError (dropped SSL, refused connection, timeout)
    is retried, with exponential backoff. Anything else fails immediately.

    Args:
        max_retries: Maximum number of connection attempts (default: 3)
        retry_delay: Initial delay between retries in seconds (default: 1.0)

    Returns:
        psycopg2 connection with RealDictCursor

    Raises:
        RuntimeError: If DATABASE_URL is not configured
        psycopg2.OperationalError: If all retry attempts fail
    """
    database_url = settings.DATABASE_URL
    if not database_url:
        raise RuntimeError("DATABASE_URL not configured")

    last_error = None

    for attempt in range(1, max_retries + 1):
        try:
            logger.debug(f"Database connection attempt {attempt}/{max_retries}")
            conn = psycopg2.connect(
                database_url,
                cursor_factory=RealDictCursor,
                connect_timeout=settings.DB_CONNECT_TIMEOUT,
            )
            logger.debug(f"Database connection successful on attempt {attempt}")
            return conn

        except psycopg2.OperationalError as e:
            last_error = e
            logger.warning(f"Connection error on attempt {attempt}/{max_retries}: {e}")

            if attempt < max_retries:
                delay = retry_delay * (2 ** (attempt - 1))
                logger.info(f"Retrying in {delay:.2f} seconds...")
                time.sleep(delay)
            else:
                logger.error(f"All {max_retries} connection attempts failed")

    raise last_error


@contextmanager
def get_cursor(commit=False):
    """
    Yield a dict cursor bound to a fresh connection

    With commit=True the block runs as one transaction: it is committed when
    the block exits normally and rolled back when it raises.

    Example:
        with get_cursor(commit=True) as cursor:
            cursor.execute("UPDATE users SET loyalty_points = loyalty_points + %s WHERE id = %s", (10, user_id))
            cursor.execute("INSERT INTO loyalty_history ...")
    """
    conn = get_db_connection_dict_with_retry()
    cursor = conn.cursor()
    try:
        yield cursor
        if commit:
            conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        cursor.close()
        conn.close()


def check_database() -> bool:
    """Run SELECT 1, used by the health endpoint"""
    with get_cursor() as cursor:
        cursor.execute("SELECT 1 AS ok")
        row = cursor.fetchone()
        return bool(row and row["ok"] == 1)


def transaction():
    """Shorthand for get_cursor(commit=True)"""
    return get_cursor(commit=True)
