"""
Pytest fixtures shared by the service and API tests

The database and Redis are never touched: the connection factory behind
get_cursor() is patched with a MagicMock connection, and the cache helpers
are patched to behave like an empty cache.

Author: TM3
Date: 2026-02-20
"""
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest


@pytest.fixture
def mock_db():
    """
    Patch the connection factory used by get_cursor()

    Returns:
        (conn, cursor) tuple; configure cursor.fetchone / fetchall per test
    """
    conn = MagicMock()
    cursor = MagicMock()
    conn.cursor.return_value = cursor
    with patch("marketplace.core.database.get_db_connection_dict_with_retry", return_value=conn):
        yield conn, cursor


@pytest.fixture(autouse=True)
def mock_cache():
    """Every test starts with an empty, write-accepting cache"""
    with patch("marketplace.core.cache.get_cache", return_value=None) as get_cache, \
            patch("marketplace.core.cache.set_cache", return_value=True) as set_cache, \
            patch("marketplace.core.cache.delete_cache", return_value=1) as delete_cache, \
            patch("marketplace.core.cache.delete_cache_pattern", return_value=0) as delete_cache_pattern:
        yield SimpleNamespace(
            get_cache=get_cache,
            set_cache=set_cache,
            delete_cache=delete_cache,
            delete_cache_pattern=delete_cache_pattern,
        )


@pytest.fixture
def user_id():
    return "8a6e0804-2bd0-4672-b79d-d97027f9071a"
