"""
Tests for SqlDirectoryStore.

Covers:
- Active employee listing and status normalization
- Defaulting of malformed directory fields
- Trainee filtering by coach and status
- Attendance reset
"""

from datetime import datetime, timezone
from decimal import Decimal

from payroll_kernel.domain.values import EmployeeStatus, Role


class TestEmployees:
    def test_lists_active_only(self, directory, add_employee):
        add_employee("c1")
        add_employee("c2", status="Inactive")
        add_employee("a1", role="admin", status="ACTIVE")

        employees = directory.list_active_employees()

        assert [e.id for e in employees] == ["a1", "c1"]
        assert employees[0].role is Role.ADMIN

    def test_attendance_ordered(self, directory, add_employee):
        add_employee("c1", present=2, absent=1)

        employee = directory.get_employee("c1")

        assert [m.present for m in employee.attendance] == [True, True, False]
        assert employee.present_days == 2

    def test_get_missing_employee(self, directory):
        assert directory.get_employee("nobody") is None

    def test_get_inactive_employee(self, directory, add_employee):
        add_employee("c1", status="inactive")
        assert directory.get_employee("c1").status is EmployeeStatus.INACTIVE

    def test_negative_working_days_defaulted(self, directory, add_employee, captured_logs):
        add_employee("c1", total_working_days=-4)

        assert directory.get_employee("c1").total_working_days == 0
        assert any(r["message"] == "negative_working_days_defaulted" for r in captured_logs())

    def test_missing_working_days(self, directory, add_employee):
        add_employee("c1", total_working_days=None)
        assert directory.get_employee("c1").total_working_days == 0

    def test_head_coach_role_normalized(self, directory, add_employee):
        add_employee("h1", role="Head Coach")
        assert directory.get_employee("h1").role is Role.HEAD_COACH


class TestTrainees:
    def test_filter_by_coach(self, directory, add_trainee):
        add_trainee("t1", "c1", "100")
        add_trainee("t2", "c2", "100")

        assert [t.id for t in directory.list_trainees(coach_id="c1")] == ["t1"]

    def test_filter_by_status_ignores_case(self, directory, add_trainee):
        add_trainee("t1", "c1", "100", status="Academy ")
        add_trainee("t2", "c1", "100", status="frozen")
        add_trainee("t3", "c1", "100", status="ACTIVE")

        trainees = directory.list_trainees(statuses=["active", "academy"])

        assert [t.id for t in trainees] == ["t1", "t3"]
        assert trainees[0].status == "academy"

    def test_missing_and_negative_payments_defaulted(self, directory, add_trainee):
        add_trainee("t1", "c1", None)
        add_trainee("t2", "c1", "-50")

        amounts = {t.id: t.payment_amount for t in directory.list_trainees()}

        assert amounts == {"t1": Decimal("0"), "t2": Decimal("0")}

    def test_row_without_id_skipped(self, directory, add_trainee, captured_logs):
        add_trainee("", "c1", "100", name="Ghost")
        add_trainee("t1", "c1", "100")

        assert [t.id for t in directory.list_trainees()] == ["t1"]
        assert any(r["message"] == "trainee_row_skipped" for r in captured_logs())

    def test_unassigned_trainee_has_empty_coach(self, directory, add_trainee):
        paid = datetime(2024, 1, 3, tzinfo=timezone.utc)
        add_trainee("t1", None, "100", last_payment_at=paid)

        trainee = directory.list_trainees()[0]

        assert trainee.coach_id == ""
        assert trainee.last_payment_at is not None


class TestResetAttendance:
    def test_removes_marks_of_given_employees(self, directory, add_employee):
        add_employee("c1", present=3)
        add_employee("c2", present=2, absent=1)

        removed = directory.reset_attendance(["c1"])

        assert removed == 3
        assert directory.get_employee("c1").attendance == ()
        assert len(directory.get_employee("c2").attendance) == 3

    def test_empty_list_is_noop(self, directory, add_employee):
        add_employee("c1", present=1)
        assert directory.reset_attendance([]) == 0
        assert len(directory.get_employee("c1").attendance) == 1
