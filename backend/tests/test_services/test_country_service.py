"""
Tests for CountryService

Author: TM3
Date: 2026-02-24
"""
import pytest

from marketplace.core.exceptions import ApiError
from marketplace.domain.country import CountryCreate, CountryState, CountryUpdate
from marketplace.services.country_service import CountryService

US = {"code": "US", "name": "United States", "currency_code": "USD", "region": "North America",
      "states": [{"code": "CA", "name": "California"}, {"code": "NY", "name": "New York"}],
      "is_active": True}


class TestReads:

    def test_all_countries_served_from_cache(self, mock_db, mock_cache):
        conn, cursor = mock_db
        mock_cache.get_cache.return_value = [US]

        assert CountryService.get_all_countries() == [US]
        cursor.execute.assert_not_called()

    def test_all_countries_cached_for_a_day(self, mock_db, mock_cache):
        conn, cursor = mock_db
        cursor.fetchall.return_value = [US]

        CountryService.get_all_countries()

        assert "is_active = TRUE ORDER BY name" in cursor.execute.call_args[0][0]
        mock_cache.set_cache.assert_called_once_with("countries:all", [US], 86400)

    def test_unknown_country_is_404(self, mock_db):
        conn, cursor = mock_db
        cursor.fetchone.return_value = None

        with pytest.raises(ApiError) as exc:
            CountryService.get_country("zz")

        assert exc.value.status_code == 404
        assert exc.value.message == "Country with code ZZ not found"
        assert cursor.execute.call_args[0][1] == ("ZZ",)

    def test_states_of_a_country(self, mock_db, mock_cache):
        conn, cursor = mock_db
        cursor.fetchone.return_value = US

        states = CountryService.get_states("us")

        assert [s["code"] for s in states] == ["CA", "NY"]
        assert mock_cache.set_cache.call_args[0][0] == "country:US:states"

    def test_region_is_case_insensitive(self, mock_db):
        conn, cursor = mock_db
        cursor.fetchall.return_value = [US]

        CountryService.get_countries_by_region("north america")

        sql, params = cursor.execute.call_args[0]
        assert "LOWER(region) = LOWER(%s)" in sql
        assert params == ("north america",)

    def test_search_matches_name_code_and_region(self, mock_db):
        conn, cursor = mock_db
        cursor.fetchall.return_value = [US]

        result = CountryService.search_countries(" united ")

        assert result == [US]
        assert cursor.execute.call_args[0][1] == ("%united%", "%united%", "%united%")

    def test_blank_search_skips_database(self, mock_db):
        conn, cursor = mock_db

        assert CountryService.search_countries("   ") == []
        cursor.execute.assert_not_called()


class TestWrites:

    def test_create_uppercases_and_stores_states(self, mock_db, mock_cache):
        # Arrange
        conn, cursor = mock_db
        cursor.fetchone.side_effect = [None, {**US, "states": [{"code": "ON", "name": "Ontario"}]}]
        data = CountryCreate(code="ca", name="Canada", currency_code="cad", region="North America",
                             states=[CountryState(code="on", name="Ontario")])

        # Act
        CountryService.create_country(data)

        # Assert
        params = cursor.execute.call_args_list[1][0][1]
        assert params[0] == "CA"
        assert params[2] == "CAD"
        assert params[4].adapted == [{"code": "ON", "name": "Ontario"}]
        conn.commit.assert_called_once()
        mock_cache.delete_cache.assert_called_once_with("countries:all", "country:CA", "country:CA:states")

    def test_duplicate_code_rejected(self, mock_db):
        conn, cursor = mock_db
        cursor.fetchone.return_value = {"code": "US"}

        with pytest.raises(ApiError) as exc:
            CountryService.create_country(CountryCreate(code="us", name="United States"))

        assert exc.value.status_code == 400
        assert exc.value.message == "Country with code US already exists"

    def test_code_change_to_existing_code_rejected(self, mock_db):
        conn, cursor = mock_db
        cursor.fetchone.side_effect = [US, {"code": "CA"}]

        with pytest.raises(ApiError) as exc:
            CountryService.update_country("us", CountryUpdate(code="ca"))

        assert exc.value.status_code == 400
        conn.rollback.assert_called_once()

    def test_code_change_invalidates_both_codes(self, mock_db, mock_cache):
        conn, cursor = mock_db
        cursor.fetchone.side_effect = [US, None, {**US, "code": "UM"}]

        country = CountryService.update_country("US", CountryUpdate(code="um"))

        assert country["code"] == "UM"
        mock_cache.delete_cache.assert_called_once_with(
            "countries:all", "country:US", "country:US:states", "country:UM", "country:UM:states")

    def test_empty_update_rejected(self):
        with pytest.raises(ApiError) as exc:
            CountryService.update_country("US", CountryUpdate())

        assert exc.value.message == "No fields to update"

    def test_country_in_use_cannot_be_deleted(self, mock_db):
        conn, cursor = mock_db
        cursor.fetchone.side_effect = [US, {"count": 3}]

        with pytest.raises(ApiError) as exc:
            CountryService.delete_country("us")

        assert exc.value.message == "Cannot delete country US as it is being used by 3 users"
        assert all("DELETE" not in c[0][0] for c in cursor.execute.call_args_list)

    def test_delete_unused_country(self, mock_db, mock_cache):
        conn, cursor = mock_db
        cursor.fetchone.side_effect = [US, {"count": 0}]

        CountryService.delete_country("us")

        assert cursor.execute.call_args_list[-1][0] == ("DELETE FROM countries WHERE code = %s", ("US",))
        conn.commit.assert_called_once()


class TestStates:

    def test_duplicate_state_rejected_regardless_of_case(self, mock_db):
        conn, cursor = mock_db
        cursor.fetchone.return_value = {**US, "states": [{"code": "ca", "name": "California"}]}

        with pytest.raises(ApiError) as exc:
            CountryService.add_state("US", CountryState(code="CA", name="California"))

        assert exc.value.status_code == 400

    def test_add_state_appends(self, mock_db):
        # Arrange
        conn, cursor = mock_db
        cursor.fetchone.side_effect = [{**US, "states": [{"code": "CA", "name": "California"}]}, US]

        # Act
        CountryService.add_state("us", CountryState(code="tx", name="Texas"))

        # Assert
        states, code = cursor.execute.call_args[0][1]
        assert states.adapted == [{"code": "CA", "name": "California"}, {"code": "TX", "name": "Texas"}]
        assert code == "US"

    def test_remove_missing_state_is_404(self, mock_db):
        conn, cursor = mock_db
        cursor.fetchone.return_value = US

        with pytest.raises(ApiError) as exc:
            CountryService.remove_state("US", "tx")

        assert exc.value.status_code == 404

    def test_remove_state(self, mock_db, mock_cache):
        conn, cursor = mock_db
        cursor.fetchone.side_effect = [US, {**US, "states": [{"code": "NY", "name": "New York"}]}]

        country = CountryService.remove_state("us", "ca")

        assert cursor.execute.call_args[0][1][0].adapted == [{"code": "NY", "name": "New York"}]
        assert [s["code"] for s in country["states"]] == ["NY"]
        mock_cache.delete_cache.assert_called_once_with("countries:all", "country:US", "country:US:states")
