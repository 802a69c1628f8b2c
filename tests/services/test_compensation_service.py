"""
Tests for the host-facing CompensationService facade.

The facade must never raise: every failure becomes False, None or an
empty list, with the cause logged.
"""

from decimal import Decimal

import pytest

from payroll_kernel.exceptions import DirectoryUnavailableError
from payroll_kernel.services.directory_store import SqlDirectoryStore
from payroll_services.compensation_service import CompensationService
from payroll_services.rollover_controller import RolloverStatus


class UnreachableDirectory(SqlDirectoryStore):
    def list_active_employees(self):
        raise DirectoryUnavailableError("list_active_employees", "timeout")

    def get_employee(self, employee_id):
        raise DirectoryUnavailableError("get_employee", "timeout")


@pytest.fixture
def service(db_session, directory, clock, config):
    return CompensationService(db_session, directory=directory, clock=clock, config=config)


@pytest.fixture
def coach(db_session, add_employee, add_trainee):
    add_employee("c1", present=18, absent=2)
    add_trainee("t1", "c1", "1000")
    add_trainee("t2", "c1", "1500")
    db_session.commit()


class TestRollover:
    def test_rollover_then_noop(self, service, coach):
        assert service.trigger_rollover_if_needed() is True
        assert service.last_rollover.status is RolloverStatus.COMPLETED

        assert service.trigger_rollover_if_needed() is True
        assert service.last_rollover.status is RolloverStatus.ALREADY_CURRENT

    def test_directory_outage_returns_false(self, db_session, clock, config, captured_logs):
        service = CompensationService(
            db_session, directory=UnreachableDirectory(db_session), clock=clock, config=config
        )

        assert service.trigger_rollover_if_needed() is False

        failures = [r for r in captured_logs() if r["message"] == "payroll_operation_failed"]
        assert failures[0]["operation"] == "trigger_rollover_if_needed"
        assert failures[0]["error_code"] == "DIRECTORY_UNAVAILABLE"
        assert failures[0]["exc_type"] == "DirectoryUnavailableError"

    def test_default_collaborators(self, db_session):
        service = CompensationService(db_session)

        assert service.trigger_rollover_if_needed() is True
        assert service.last_rollover.total == 0


class TestRecalculate:
    def test_recalculate(self, service, coach):
        assert service.recalculate_for_employee("c1") is True
        assert service.get_salary("c1", "January 2024").final_salary == Decimal("900")

    def test_unknown_employee(self, service):
        assert service.recalculate_for_employee("ghost") is False

    def test_directory_outage(self, db_session, clock, config):
        service = CompensationService(
            db_session, directory=UnreachableDirectory(db_session), clock=clock, config=config
        )
        assert service.recalculate_for_employee("c1") is False


class TestMarkPaid:
    def test_mark_paid(self, service, coach):
        service.trigger_rollover_if_needed()

        assert service.mark_paid("c1", "2024-01") is True
        assert service.get_salary("c1", "January 2024").is_paid

    def test_missing_record(self, service):
        assert service.mark_paid("c1", "January 2024") is False

    def test_bad_period(self, service):
        assert service.mark_paid("c1", "soon") is False


class TestMigration:
    def test_migrate(self, service, add_salary_row, later):
        add_salary_row("c1", "2024-01", trainee_share_total="500", created_at=later(0))
        add_salary_row("c1", "January 2024", trainee_share_total="700", created_at=later(1))

        assert service.is_migration_needed() is True
        assert service.migrate_period_formats() is True
        assert service.last_reconciliation.merged_groups == 1
        assert service.is_migration_needed() is False
        assert service.get_salary("c1", "January 2024").final_salary == Decimal("1200")


class TestQueries:
    def test_listings(self, service, coach, add_salary_row):
        add_salary_row("c1", "December 2023", trainee_share_total="50")
        service.trigger_rollover_if_needed()

        assert service.list_available_periods() == ["January 2024", "December 2023"]
        assert [r.employee_id for r in service.list_salaries_for_period("January 2024")] == ["c1"]
        assert len(service.list_all_salaries()) == 2

    def test_bad_period_lookups_do_not_raise(self, service, captured_logs):
        assert service.get_salary("c1", "nope") is None
        assert service.list_salaries_for_period("nope") == []

        failures = [r for r in captured_logs() if r["message"] == "payroll_operation_failed"]
        assert {f["error_code"] for f in failures} == {"INVALID_PERIOD_KEY"}

    def test_missing_salary(self, service):
        assert service.get_salary("c1", "January 2024") is None
