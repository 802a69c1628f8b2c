"""
Tests for RolloverController.

Covers:
- Stale period: one record per active employee, attendance reset by role
- Current period: second activation is a no-op
- Legacy-form records count as current
- Partial failure: SAVEPOINT isolation, FAILED marker, resumed retry
- Claims: unexpired lease elsewhere, expired lease taken over
- Directory outage marks the run FAILED and propagates
- Period derived from the trusted clock in the configured time zone
- Manual single-employee recalculation
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from payroll_kernel.domain.clock import DeterministicClock
from payroll_kernel.exceptions import DirectoryUnavailableError, LedgerUnavailableError
from payroll_kernel.models.directory import AttendanceMarkModel
from payroll_kernel.models.rollover import RolloverRunModel, RolloverRunStatus
from payroll_kernel.models.salary import SalaryRecordModel
from payroll_kernel.services.directory_store import SqlDirectoryStore
from payroll_kernel.services.salary_ledger import SalaryLedger
from payroll_services.rollover_controller import RolloverController, RolloverStatus
from tests.conftest import TEST_NOW


class FlakyLedger(SalaryLedger):
    """Ledger whose upsert fails for chosen employees."""

    def __init__(self, session, clock, failing_ids):
        super().__init__(session, clock)
        self.failing_ids = set(failing_ids)

    def upsert(self, record):
        if record.employee_id in self.failing_ids:
            raise LedgerUnavailableError("upsert", "disk full")
        return super().upsert(record)


class BrokenDirectory(SqlDirectoryStore):
    def list_active_employees(self):
        raise DirectoryUnavailableError("list_active_employees", "connection refused")


@pytest.fixture
def controller(db_session, directory, clock, config, ledger, selector):
    return RolloverController(
        db_session, directory, clock, config, ledger=ledger, selector=selector
    )


@pytest.fixture
def staff(db_session, add_employee, add_trainee):
    """
    Admin, coach and head coach with attendance; one inactive coach.

    Committed, because the controller rolls back when it has nothing to do.
    """
    add_employee("a1", role="admin", present=18)
    add_employee("c1", role="coach", present=18, absent=2)
    add_employee("h1", role="head coach", present=3)
    add_employee("c9", role="coach", status="inactive", present=5)
    add_trainee("t1", "c1", "1000")
    add_trainee("t2", "c1", "1500")
    add_trainee("t3", "h1", "500", status="academy")
    add_trainee("t4", "c1", "9999", status="frozen")
    db_session.commit()


def salary_count(db_session) -> int:
    return db_session.execute(select(func.count()).select_from(SalaryRecordModel)).scalar_one()


def add_run(db_session, status, lease_expires_at, attempt=1):
    run = RolloverRunModel(
        period_key="January 2024",
        status=status.value,
        attempt=attempt,
        started_at=TEST_NOW - timedelta(hours=1),
        lease_expires_at=lease_expires_at,
        created_at=TEST_NOW - timedelta(hours=1),
        updated_at=TEST_NOW - timedelta(hours=1),
    )
    db_session.add(run)
    db_session.commit()
    return run


class TestStalePeriod:
    def test_computes_every_active_employee(self, controller, staff, selector, db_session):
        result = controller.trigger_rollover_if_needed()

        assert result.status is RolloverStatus.COMPLETED
        assert result.is_success and result.did_compute
        assert result.period_key == "January 2024"
        assert (result.total, result.succeeded, result.failed) == (3, 3, 0)
        assert result.attempt == 1
        assert salary_count(db_session) == 3

        assert selector.find("a1", "January 2024").final_salary == Decimal("1800")
        assert selector.find("c1", "January 2024").final_salary == Decimal("900")
        head = selector.find("h1", "January 2024")
        assert head.final_salary == Decimal("200")
        assert head.trainee_count == 1
        assert selector.find("c9", "January 2024") is None

    def test_attendance_reset_for_configured_roles(self, controller, staff, directory):
        result = controller.trigger_rollover_if_needed()

        assert result.attendance_reset == 2
        assert directory.get_employee("a1").attendance == ()
        assert directory.get_employee("c1").attendance == ()
        assert len(directory.get_employee("h1").attendance) == 3
        assert len(directory.get_employee("c9").attendance) == 5

    def test_run_marked_completed(self, controller, staff, db_session):
        controller.trigger_rollover_if_needed()

        run = db_session.execute(select(RolloverRunModel)).scalar_one()
        assert run.status == RolloverRunStatus.COMPLETED.value
        assert run.succeeded == 3
        assert run.completed_at is not None

    def test_logs_lifecycle(self, controller, staff, captured_logs):
        controller.trigger_rollover_if_needed()

        messages = [r["message"] for r in captured_logs()]
        assert "rollover_claimed" in messages
        assert "rollover_started" in messages
        finished = [r for r in captured_logs() if r["message"] == "rollover_finished"]
        assert finished[0]["status"] == "completed"
        assert finished[0]["period_key"] == "January 2024"
        assert finished[0]["run_id"]

    def test_no_employees(self, controller, db_session):
        result = controller.trigger_rollover_if_needed()

        assert result.status is RolloverStatus.COMPLETED
        assert result.total == 0
        assert controller.trigger_rollover_if_needed().status is RolloverStatus.ALREADY_CURRENT


class TestCurrentPeriod:
    def test_second_activation_is_noop(self, controller, staff, db_session, captured_logs):
        controller.trigger_rollover_if_needed()

        result = controller.trigger_rollover_if_needed()

        assert result.status is RolloverStatus.ALREADY_CURRENT
        assert result.is_success and not result.did_compute
        assert salary_count(db_session) == 3
        assert any(r["message"] == "rollover_not_needed" for r in captured_logs())

    def test_legacy_records_count_as_current(self, controller, staff, add_salary_row, db_session, directory):
        add_salary_row("c1", "2024-01", trainee_share_total="700")
        db_session.commit()

        result = controller.trigger_rollover_if_needed()

        assert result.status is RolloverStatus.ALREADY_CURRENT
        assert salary_count(db_session) == 1
        assert len(directory.get_employee("c1").attendance) == 20

    def test_previous_month_records_do_not_count(self, controller, staff, add_salary_row):
        add_salary_row("c1", "December 2023")
        assert controller.trigger_rollover_if_needed().status is RolloverStatus.COMPLETED

    def test_completed_marker_without_records(self, controller, staff, db_session):
        add_run(db_session, RolloverRunStatus.COMPLETED, TEST_NOW)
        assert controller.trigger_rollover_if_needed().status is RolloverStatus.ALREADY_CURRENT
        assert salary_count(db_session) == 0


class TestPartialFailure:
    def test_failure_isolated_to_one_employee(
        self, db_session, directory, clock, config, selector, staff
    ):
        flaky = RolloverController(
            db_session, directory, clock, config,
            ledger=FlakyLedger(db_session, clock, {"c1"}),
        )

        result = flaky.trigger_rollover_if_needed()

        assert result.status is RolloverStatus.PARTIALLY_COMPLETED
        assert not result.is_success
        assert result.failed_employee_ids == ("c1",)
        assert (result.succeeded, result.failed) == (2, 1)
        assert selector.find("a1", "January 2024") is not None
        assert selector.find("c1", "January 2024") is None
        # Only the admin is both in a reset role and stored.
        assert result.attendance_reset == 1
        assert len(directory.get_employee("c1").attendance) == 20

        run = db_session.execute(select(RolloverRunModel)).scalar_one()
        assert run.status == RolloverRunStatus.FAILED.value
        assert "c1" in run.error_summary

    def test_retry_completes_remaining_employees(
        self, db_session, directory, clock, config, selector, staff, controller
    ):
        RolloverController(
            db_session, directory, clock, config,
            ledger=FlakyLedger(db_session, clock, {"c1"}),
        ).trigger_rollover_if_needed()
        admin_before = selector.find("a1", "January 2024")

        result = controller.trigger_rollover_if_needed()

        assert result.status is RolloverStatus.COMPLETED
        assert result.attempt == 2
        assert result.succeeded == 3
        assert selector.find("c1", "January 2024").final_salary == Decimal("900")
        # The admin's attendance is already gone; their record must not be recomputed.
        admin_after = selector.find("a1", "January 2024")
        assert admin_after.final_salary == admin_before.final_salary == Decimal("1800")
        assert admin_after.updated_at == admin_before.updated_at

    def test_retry_keeps_attendance_marked_since_first_attempt(
        self, db_session, directory, clock, config, staff, controller
    ):
        first = RolloverController(
            db_session, directory, clock, config,
            ledger=FlakyLedger(db_session, clock, {"c1"}),
        ).trigger_rollover_if_needed()
        assert first.attendance_reset == 1
        db_session.add(
            AttendanceMarkModel(employee_id="a1", mark_key="2024-01-16T09:00:00", present=True)
        )
        db_session.commit()

        result = controller.trigger_rollover_if_needed()

        assert result.status is RolloverStatus.COMPLETED
        assert result.attempt == 2
        # Only c1 is computed (and reset) on the retry.
        assert result.attendance_reset == 1
        assert len(directory.get_employee("a1").attendance) == 1
        assert directory.get_employee("c1").attendance == ()

    def test_all_failed(self, db_session, directory, clock, config, staff):
        controller = RolloverController(
            db_session, directory, clock, config,
            ledger=FlakyLedger(db_session, clock, {"a1", "c1", "h1"}),
        )

        result = controller.trigger_rollover_if_needed()

        assert result.status is RolloverStatus.FAILED
        assert result.attendance_reset == 0

    def test_failure_logged_with_employee(self, db_session, directory, clock, config, staff, captured_logs):
        RolloverController(
            db_session, directory, clock, config,
            ledger=FlakyLedger(db_session, clock, {"c1"}),
        ).trigger_rollover_if_needed()

        failures = [r for r in captured_logs() if r["message"] == "rollover_employee_failed"]
        assert len(failures) == 1
        assert failures[0]["employee_id"] == "c1"
        assert failures[0]["error_code"] == "LEDGER_UNAVAILABLE"


class TestClaims:
    def test_unexpired_claim_elsewhere(self, controller, staff, db_session):
        add_run(db_session, RolloverRunStatus.RUNNING, TEST_NOW + timedelta(minutes=5))

        result = controller.trigger_rollover_if_needed()

        assert result.status is RolloverStatus.CLAIMED_ELSEWHERE
        assert result.is_success
        assert salary_count(db_session) == 0

    def test_expired_claim_taken_over(self, controller, staff, db_session, captured_logs):
        add_run(db_session, RolloverRunStatus.RUNNING, TEST_NOW - timedelta(minutes=1))

        result = controller.trigger_rollover_if_needed()

        assert result.status is RolloverStatus.COMPLETED
        assert result.attempt == 2
        assert salary_count(db_session) == 3
        assert any(r["message"] == "rollover_resumed" for r in captured_logs())


class TestDirectoryOutage:
    def test_marks_run_failed_and_raises(self, db_session, clock, config, staff):
        controller = RolloverController(db_session, BrokenDirectory(db_session), clock, config)

        with pytest.raises(DirectoryUnavailableError):
            controller.trigger_rollover_if_needed()

        run = db_session.execute(select(RolloverRunModel)).scalar_one()
        assert run.status == RolloverRunStatus.FAILED.value
        assert "DIRECTORY_UNAVAILABLE" in run.error_summary

    def test_next_activation_retries(self, db_session, clock, config, staff, controller):
        with pytest.raises(DirectoryUnavailableError):
            RolloverController(
                db_session, BrokenDirectory(db_session), clock, config
            ).trigger_rollover_if_needed()

        result = controller.trigger_rollover_if_needed()

        assert result.status is RolloverStatus.COMPLETED
        assert result.attempt == 2


class TestTrustedClockPeriod:
    def test_period_follows_configured_timezone(self, db_session, directory, config, staff, selector):
        clock = DeterministicClock(datetime(2024, 1, 31, 23, 30, tzinfo=timezone.utc))
        cairo = replace(config, period_timezone="Africa/Cairo")

        result = RolloverController(db_session, directory, clock, cairo).trigger_rollover_if_needed()

        assert result.period_key == "February 2024"
        assert selector.find("c1", "February 2024") is not None

    def test_new_month_is_stale_again(self, controller, staff, clock, selector):
        controller.trigger_rollover_if_needed()
        clock.set_time(datetime(2024, 2, 1, 0, 0, 1, tzinfo=timezone.utc))

        result = controller.trigger_rollover_if_needed()

        assert result.status is RolloverStatus.COMPLETED
        assert result.period_key == "February 2024"
        # Attendance was cleared in January: no marks means no absence.
        assert selector.find("c1", "February 2024").final_salary == Decimal("1000")


class TestRecalculate:
    def test_recalculates_without_touching_attendance(self, controller, staff, selector, directory):
        assert controller.recalculate_for_employee("c1") is True

        assert selector.find("c1", "January 2024").final_salary == Decimal("900")
        assert len(directory.get_employee("c1").attendance) == 20

    def test_overwrites_existing_record(self, controller, staff, selector, add_trainee, db_session):
        controller.trigger_rollover_if_needed()
        add_trainee("t5", "c1", "500")

        assert controller.recalculate_for_employee("c1") is True

        record = selector.find("c1", "January 2024")
        assert record.trainee_count == 3
        assert salary_count(db_session) == 3

    def test_recalculate_over_legacy_record_keeps_one_row(
        self, controller, staff, selector, add_salary_row, db_session
    ):
        legacy = add_salary_row("c1", "2024-01", trainee_share_total="700")
        db_session.commit()

        assert controller.recalculate_for_employee("c1") is True

        keys = db_session.execute(
            select(SalaryRecordModel.period_key).where(SalaryRecordModel.employee_id == "c1")
        ).scalars().all()
        assert keys == ["January 2024"]
        record = selector.find("c1", "2024-01")
        assert record.id == legacy.id
        assert record.final_salary == Decimal("900")

    def test_unknown_employee(self, controller, captured_logs):
        assert controller.recalculate_for_employee("ghost") is False
        failures = [r for r in captured_logs() if r["message"] == "salary_recalculation_failed"]
        assert failures[0]["error_code"] == "EMPLOYEE_NOT_FOUND"

    def test_inactive_employee(self, controller, staff):
        assert controller.recalculate_for_employee("c9") is False
