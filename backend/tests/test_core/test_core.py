"""
Tests for the shared core helpers: database cursor, cache, pagination, logging

The autouse cache fixture patches the module attributes, so the real cache
functions are imported by name here before it runs.

Author: TM3
Date: 2026-02-27
"""
import logging
from unittest.mock import MagicMock, patch

import psycopg2
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from marketplace.core.cache import delete_cache, get_cache, pop_queue, set_cache
from marketplace.core.database import get_cursor, get_db_connection_dict_with_retry
from marketplace.core.logging import get_request_logger
from marketplace.core.pagination import page_offset, pagination


class TestGetCursor:

    def test_commit_on_success(self, mock_db):
        conn, cursor = mock_db

        with get_cursor(commit=True) as cur:
            cur.execute("UPDATE users SET loyalty_points = 0")

        conn.commit.assert_called_once()
        conn.rollback.assert_not_called()
        cursor.close.assert_called_once()
        conn.close.assert_called_once()

    def test_read_only_does_not_commit(self, mock_db):
        conn, cursor = mock_db

        with get_cursor() as cur:
            cur.execute("SELECT 1")

        conn.commit.assert_not_called()

    def test_rollback_and_reraise_on_error(self, mock_db):
        conn, cursor = mock_db

        with pytest.raises(ValueError):
            with get_cursor(commit=True):
                raise ValueError("insufficient points")

        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()
        conn.close.assert_called_once()


class TestConnectionRetry:

    def test_missing_database_url(self):
        with patch("marketplace.core.database.settings.DATABASE_URL", ""):
            with pytest.raises(RuntimeError):
                get_db_connection_dict_with_retry()

    def test_retries_operational_errors(self):
        # Arrange
        conn = MagicMock()
        connect = MagicMock(side_effect=[psycopg2.OperationalError("ssl closed"), conn])

        # Act
        with patch("marketplace.core.database.settings.DATABASE_URL", "postgresql://localhost/test"), \
                patch("marketplace.core.database.psycopg2.connect", connect), \
                patch("marketplace.core.database.time.sleep") as sleep:
            result = get_db_connection_dict_with_retry(max_retries=3, retry_delay=0.5)

        # Assert
        assert result is conn
        assert connect.call_count == 2
        sleep.assert_called_once_with(0.5)

    def test_gives_up_after_max_retries(self):
        connect = MagicMock(side_effect=psycopg2.OperationalError("refused"))

        with patch("marketplace.core.database.settings.DATABASE_URL", "postgresql://localhost/test"), \
                patch("marketplace.core.database.psycopg2.connect", connect), \
                patch("marketplace.core.database.time.sleep") as sleep:
            with pytest.raises(psycopg2.OperationalError):
                get_db_connection_dict_with_retry(max_retries=3, retry_delay=1.0)

        assert connect.call_count == 3
        assert [c[0][0] for c in sleep.call_args_list] == [1.0, 2.0]


class TestCache:

    @pytest.fixture
    def redis_client(self):
        client = MagicMock()
        with patch("marketplace.core.cache.get_redis_client", return_value=client), \
                patch("marketplace.core.cache.settings.CACHE_ENABLED", True):
            yield client

    def test_get_decodes_json(self, redis_client):
        redis_client.get.return_value = '{"name": "Tea House"}'

        assert get_cache("vendor:v1") == {"name": "Tea House"}

    def test_redis_error_is_a_miss(self, redis_client):
        redis_client.get.side_effect = RedisConnectionError("down")

        assert get_cache("vendor:v1") is None

    def test_set_encodes_with_ttl(self, redis_client):
        assert set_cache("vendor:v1", {"rate": 10}, ttl=60) is True

        redis_client.setex.assert_called_once_with("vendor:v1", 60, '{"rate": 10}')

    def test_set_failure_returns_false(self, redis_client):
        redis_client.setex.side_effect = RedisConnectionError("down")

        assert set_cache("vendor:v1", {"rate": 10}) is False

    def test_delete_without_keys(self, redis_client):
        assert delete_cache() == 0
        redis_client.delete.assert_not_called()

    def test_pop_decodes_json(self, redis_client):
        redis_client.lpop.return_value = '{"id": "e1"}'

        assert pop_queue("email:queue") == {"id": "e1"}

    def test_pop_returns_undecodable_entry_as_is(self, redis_client):
        redis_client.lpop.return_value = "not json {"

        assert pop_queue("email:queue") == "not json {"

    def test_disabled_cache(self):
        with patch("marketplace.core.cache.settings.CACHE_ENABLED", False), \
                patch("marketplace.core.cache.get_redis_client") as client:
            assert get_cache("vendor:v1") is None
            assert set_cache("vendor:v1", {}) is False

        client.assert_not_called()


class TestPagination:

    def test_page_offset(self):
        assert page_offset(1, 20) == 0
        assert page_offset(3, 20) == 40
        assert page_offset(0, 20) == 0

    def test_pages_rounded_up(self):
        assert pagination(2, 10, 42) == {"page": 2, "limit": 10, "total": 42, "pages": 5}
        assert pagination(1, 10, 0)["pages"] == 0


class TestRequestLogger:

    def test_messages_carry_request_id(self, caplog):
        log = get_request_logger("marketplace.tests", "req-42")

        with caplog.at_level(logging.INFO, logger="marketplace.tests"):
            log.info("Vendor created")

        assert caplog.records[-1].getMessage() == "[req-42] Vendor created"

    def test_placeholder_outside_requests(self, caplog):
        with caplog.at_level(logging.INFO, logger="marketplace.tests"):
            get_request_logger("marketplace.tests").info("Job finished")

        assert caplog.records[-1].getMessage() == "[-] Job finished"
