"""
Tests for SettingsService

Author: TM3
Date: 2026-02-21
"""
import json
from unittest.mock import patch

import psycopg2
import pytest

from marketplace.core.exceptions import ApiError
from marketplace.services.settings_service import DEFAULT_SETTINGS, SettingsService, validate_setting


class TestValidation:

    @pytest.mark.parametrize("key, value, valid", [
        ("loyalty.pointsPerCurrency", 2, True),
        ("loyalty.pointsPerCurrency", -1, False),
        ("loyalty.pointsExpiryDays", 0, False),
        ("payment.taxRate", 0.21, True),
        ("payment.taxRate", 21, False),
        ("security.passwordMinLength", 3, False),
        ("security.passwordMinLength", 12, True),
        ("email.fromAddress", "shop@example.com", True),
        ("email.fromAddress", "not-an-email", False),
        ("site.name", "Shop", True),
        ("site.name", None, False),
        ("loyalty.pointsExpiryDays", True, False),
    ])
    def test_validate_setting(self, key, value, valid):
        assert validate_setting(key, value) is valid


class TestGetSetting:

    def test_cached_value(self, mock_db, mock_cache):
        conn, cursor = mock_db
        mock_cache.get_cache.return_value = {"value": False}

        assert SettingsService.get_setting("maintenance.mode", True) is False
        cursor.execute.assert_not_called()

    def test_missing_key_returns_default(self, mock_db):
        conn, cursor = mock_db
        cursor.fetchone.return_value = None

        assert SettingsService.get_setting("nope", "fallback") == "fallback"

    def test_database_error_returns_default(self):
        with patch("marketplace.core.database.get_db_connection_dict_with_retry",
                   side_effect=psycopg2.OperationalError("down")):
            assert SettingsService.get_setting("site.name", "Marketplace") == "Marketplace"


class TestSetSetting:

    def test_invalid_value_rejected_before_database(self, mock_db):
        conn, cursor = mock_db

        with pytest.raises(ApiError) as exc:
            SettingsService.set_setting("payment.taxRate", 5)

        assert exc.value.status_code == 400
        cursor.execute.assert_not_called()

    def test_upsert_invalidates_group(self, mock_db, mock_cache):
        # Arrange
        conn, cursor = mock_db
        cursor.fetchone.side_effect = [
            {"group_name": "general"},
            {"key": "site.name", "value": "Shop", "group_name": "general", "description": None,
             "is_public": True, "updated_at": None},
        ]

        # Act
        setting = SettingsService.set_setting("site.name", "Shop")

        # Assert
        assert setting["value"] == "Shop"
        mock_cache.delete_cache.assert_called_with(
            "settings:all", "settings:all:private", "settings:public", "setting:site.name",
            "settings:group:general")

    def test_bulk_update_aborts_on_any_invalid_value(self, mock_db):
        conn, cursor = mock_db

        with pytest.raises(ApiError) as exc:
            SettingsService.bulk_update_settings({"site.name": "Shop", "payment.taxRate": 8})

        assert "payment.taxRate" in exc.value.message
        cursor.execute.assert_not_called()


class TestDeleteSetting:

    def test_missing_setting_is_404(self, mock_db):
        conn, cursor = mock_db
        cursor.fetchone.return_value = None

        with pytest.raises(ApiError) as exc:
            SettingsService.delete_setting("nope")

        assert exc.value.status_code == 404


class TestDefaults:

    def test_initialize_counts_inserted_rows(self, mock_db):
        conn, cursor = mock_db
        cursor.rowcount = 1

        assert SettingsService.initialize_default_settings() == len(DEFAULT_SETTINGS)
        conn.commit.assert_called_once()

    def test_default_values_pass_validation(self):
        for setting in DEFAULT_SETTINGS:
            assert validate_setting(setting["key"], setting["value"]), setting["key"]


class TestImportExport:

    def test_export_document(self, mock_db):
        conn, cursor = mock_db
        cursor.fetchall.return_value = [
            {"key": "site.name", "value": "Shop", "group_name": "general", "description": "Name",
             "is_public": True},
        ]

        document = json.loads(SettingsService.export_settings())

        assert document["includePrivate"] is False
        assert document["settings"] == [
            {"key": "site.name", "value": "Shop", "group": "general", "description": "Name", "isPublic": True},
        ]
        assert "is_public = TRUE" in cursor.execute.call_args[0][0]

    def test_malformed_import_rejected(self):
        with pytest.raises(ApiError) as exc:
            SettingsService.import_settings("{not json")
        assert exc.value.status_code == 400

        with pytest.raises(ApiError):
            SettingsService.import_settings(json.dumps({"settings": "nope"}))

    def test_import_skips_existing_and_counts_errors(self):
        # Arrange
        data = json.dumps({"settings": [
            {"key": "site.name", "value": "Shop"},
            {"key": "payment.taxRate", "value": 42},
            {"key": "site.description", "value": "New"},
            {"value": "no key"},
        ]})
        existing = {"site.name": "Old"}

        def fake_set(key, value, *args):
            if key == "payment.taxRate":
                raise ApiError(f"Invalid value for setting {key}", 400)
            return {"key": key, "value": value}

        # Act
        with patch.object(SettingsService, "get_settings_by_keys",
                          side_effect=lambda keys: {k: existing[k] for k in keys if k in existing}), \
                patch.object(SettingsService, "set_setting", side_effect=fake_set):
            result = SettingsService.import_settings(data)

        # Assert
        assert result["imported"] == 1
        assert result["skipped"] == 1
        assert result["errors"] == 2
        assert {"key": "payment.taxRate", "error": "Invalid value for setting payment.taxRate"} in result["details"]
