"""
Tests for SchedulerService

Each test gets its own BackgroundScheduler, shut down afterwards.

Author: TM3
Date: 2026-02-26
"""
from unittest.mock import MagicMock, patch

import pytest
from apscheduler.schedulers.background import BackgroundScheduler

from marketplace.core.exceptions import ApiError
from marketplace.services.report_service import ReportService
from marketplace.services.scheduler_service import (
    DEFAULT_JOBS, SchedulerService, cleanup_old_reports_task, task_for, validate_cron_expression,
)


@pytest.fixture
def service():
    scheduler_service = SchedulerService(BackgroundScheduler(timezone="UTC"))
    yield scheduler_service
    scheduler_service.shutdown()


class TestCronValidation:

    @pytest.mark.parametrize("expression, valid", [
        ("*/5 * * * *", True),
        ("0 2 * * *", True),
        ("0 6 * * mon-fri", True),
        ("61 * * * *", False),
        ("not a cron", False),
        ("* * *", False),
    ])
    def test_validate_cron_expression(self, expression, valid):
        assert validate_cron_expression(expression) is valid


class TestLifecycle:

    def test_default_jobs_registered_paused(self, service):
        service.init_scheduler()

        status = service.get_job_status()
        assert set(status) == set(DEFAULT_JOBS)
        assert not any(job["running"] for job in status.values())
        assert status["process_email_queue"]["cron_expression"] == "*/5 * * * *"

    def test_start_and_stop_all(self, service):
        service.init_scheduler()

        service.start_all_jobs()
        assert all(service.is_running(name) for name in DEFAULT_JOBS)
        assert service.get_job_status()["cleanup_old_reports"]["next_run"] is not None

        service.stop_all_jobs()
        assert not any(service.is_running(name) for name in DEFAULT_JOBS)

    def test_init_is_idempotent(self, service):
        service.init_scheduler()
        service.init_scheduler()

        assert len(service.get_available_jobs()) == len(DEFAULT_JOBS)

    def test_unknown_job_is_404(self, service):
        service.init_scheduler()

        with pytest.raises(ApiError) as exc:
            service.start_job("nope")

        assert exc.value.status_code == 404


class TestRunNow:

    def test_successful_run_is_recorded(self, service):
        service.init_scheduler()

        with patch.object(ReportService, "cleanup_old_reports", return_value=2) as cleanup:
            assert service.run_job_now("cleanup_old_reports") is True

        cleanup.assert_called_once_with()
        job = service.get_job_status()["cleanup_old_reports"]
        assert job["run_count"] == 1
        assert job["last_run"] is not None
        assert job["last_error"] is None

    def test_failed_run_records_error(self, service):
        service.init_scheduler()
        task = MagicMock(side_effect=RuntimeError("smtp down"))
        service.add_custom_job("flaky", "0 * * * *", task, start=False)

        assert service.run_job_now("flaky") is False

        job = service.get_job_status()["flaky"]
        assert job["last_error"] == "smtp down"
        assert job["run_count"] == 1

    def test_error_cleared_after_success(self, service):
        service.init_scheduler()
        task = MagicMock(side_effect=[RuntimeError("boom"), "ok"])
        service.add_custom_job("flaky", "0 * * * *", task, start=False)

        service.run_job_now("flaky")
        service.run_job_now("flaky")

        assert service.get_job_status()["flaky"]["last_error"] is None


class TestCustomJobs:

    def test_added_job_starts_by_default(self, service):
        service.init_scheduler()

        job = service.add_custom_job("hourly_reports", "0 * * * *", task_for("cleanup_old_reports"),
                                     "Hourly report cleanup")

        assert job["running"] is True
        assert job["custom"] is True
        assert job["description"] == "Hourly report cleanup"
        assert "hourly_reports" in service.get_available_jobs()

    def test_duplicate_name_rejected(self, service):
        service.init_scheduler()

        with pytest.raises(ApiError) as exc:
            service.add_custom_job("process_email_queue", "0 * * * *", MagicMock())

        assert "already exists" in exc.value.message

    def test_invalid_cron_rejected(self, service):
        with pytest.raises(ApiError) as exc:
            service.add_custom_job("broken", "every minute", MagicMock())

        assert exc.value.status_code == 400

    def test_remove_custom_job(self, service):
        service.init_scheduler()
        service.add_custom_job("temp", "0 * * * *", MagicMock())

        service.remove_custom_job("temp")

        assert "temp" not in service.get_available_jobs()

    def test_built_in_job_cannot_be_removed(self, service):
        service.init_scheduler()

        with pytest.raises(ApiError) as exc:
            service.remove_custom_job("expire_loyalty_points")

        assert exc.value.status_code == 400

    def test_task_for(self):
        assert task_for("cleanup_old_reports") is cleanup_old_reports_task

        with pytest.raises(ApiError):
            task_for("mine_bitcoin")
