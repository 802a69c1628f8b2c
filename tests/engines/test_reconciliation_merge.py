"""
Tests for the reconciliation engine (pure planning and merging).

Covers:
- Grouping legacy and canonical keys of the same month
- Primary selection by creation time
- Merge arithmetic and trainee de-duplication
- Plan idempotence and unparseable keys
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from payroll_engines.reconciliation import (
    dedupe_trainee_details,
    group_records,
    merge_salary_records,
    plan_reconciliation,
    select_primary,
)
from payroll_kernel.domain.values import (
    DeductionDetail,
    Role,
    SalaryRecord,
    TraineeShareDetail,
)

T0 = datetime(2024, 1, 10, tzinfo=timezone.utc)


def make_record(period_key, share="0", *, minutes=0, employee_id="c1", **kwargs):
    created = T0 + timedelta(minutes=minutes)
    deductions = kwargs.pop("deduction_details", ())
    total_deductions = sum((d.amount for d in deductions), Decimal("0"))
    return SalaryRecord(
        id=uuid4(),
        employee_id=employee_id,
        period_key=period_key,
        role=kwargs.pop("role", Role.COACH),
        branch="Main",
        trainee_share_total=Decimal(share),
        deduction_details=deductions,
        deduction_amount=total_deductions,
        final_salary=kwargs.pop("final_salary", Decimal(share) - total_deductions),
        created_at=created,
        updated_at=created,
        **kwargs,
    )


def detail(trainee_id, amount, paid_day=None):
    return TraineeShareDetail(
        trainee_id=trainee_id,
        trainee_name=trainee_id.upper(),
        coach_share_amount=Decimal(amount),
        payment_date=datetime(2024, 1, paid_day, tzinfo=timezone.utc) if paid_day else None,
    )


class TestSelectPrimary:
    def test_latest_created_wins(self):
        old = make_record("2024-01", minutes=0)
        new = make_record("January 2024", minutes=5)
        assert select_primary([old, new]) is new

    def test_tie_broken_by_updated_at(self):
        a = make_record("2024-01")
        b = make_record("January 2024")
        b = replace(b, updated_at=T0 + timedelta(hours=1))
        assert select_primary([a, b]) is b

    def test_missing_timestamps_lose(self):
        undated = SalaryRecord(employee_id="c1", period_key="2024-01", role=Role.COACH, branch="Main")
        dated = make_record("January 2024")
        assert select_primary([undated, dated]) is dated

    def test_empty_rejected(self):
        with pytest.raises(ValueError):
            select_primary([])


class TestGrouping:
    def test_legacy_and_canonical_grouped(self):
        records = [
            make_record("2024-01"),
            make_record("January 2024"),
            make_record("February 2024"),
            make_record("January 2024", employee_id="c2"),
            make_record("not a period"),
        ]

        groups, unparseable = group_records(records)

        assert len(groups[("c1", "January 2024")]) == 2
        assert len(groups[("c1", "February 2024")]) == 1
        assert len(groups[("c2", "January 2024")]) == 1
        assert [r.period_key for r in unparseable] == ["not a period"]


class TestMerge:
    def test_shares_and_finals_summed(self):
        a = make_record("2024-01", "500", minutes=0)
        b = make_record("January 2024", "700", minutes=1)

        merged = merge_salary_records([a, b], "2024-01")

        assert merged.id == b.id
        assert merged.period_key == "January 2024"
        assert merged.trainee_share_total == Decimal("1200.00")
        assert merged.final_salary == Decimal("1200.00")

    def test_deductions_concatenated(self):
        a = make_record(
            "2024-01",
            "500",
            deduction_details=(DeductionDetail("ABSENCE", "1 absence days (5.0%)", Decimal("25")),),
        )
        b = make_record(
            "January 2024",
            "700",
            minutes=1,
            deduction_details=(DeductionDetail("PENALTY", "late", Decimal("10")),),
        )

        merged = merge_salary_records([a, b], "January 2024")

        assert [d.type for d in merged.deduction_details] == ["PENALTY", "ABSENCE"]
        assert merged.deduction_amount == Decimal("35.00")
        assert merged.final_salary == merged.relevant_base - merged.total_deductions

    def test_working_days_max_absence_summed(self):
        a = make_record("2024-01", absence_days=2, total_working_days=20)
        b = make_record("January 2024", minutes=1, absence_days=1, total_working_days=25)

        merged = merge_salary_records([a, b], "January 2024")

        assert merged.total_working_days == 25
        assert merged.absence_days == 3
        assert merged.absence_percentage == Decimal("12.0000")

    def test_paid_if_any_paid(self):
        a = make_record("2024-01", is_paid=True)
        b = make_record("January 2024", minutes=1)
        assert merge_salary_records([a, b], "January 2024").is_paid

    def test_trainee_count_summed(self):
        a = make_record("2024-01", trainee_count=2)
        b = make_record("January 2024", minutes=1, trainee_count=3)
        assert merge_salary_records([a, b], "January 2024").trainee_count == 5


class TestDedupeTraineeDetails:
    def test_latest_payment_kept(self):
        result = dedupe_trainee_details(
            [detail("t1", "100", 3), detail("t2", "50"), detail("t1", "120", 9)]
        )
        assert [(d.trainee_id, d.coach_share_amount) for d in result] == [
            ("t1", Decimal("120")),
            ("t2", Decimal("50")),
        ]

    def test_undated_loses(self):
        result = dedupe_trainee_details([detail("t1", "80"), detail("t1", "90", 1)])
        assert result[0].coach_share_amount == Decimal("90")

    def test_equal_dates_first_wins(self):
        result = dedupe_trainee_details([detail("t1", "80", 2), detail("t1", "90", 2)])
        assert result[0].coach_share_amount == Decimal("80")


class TestPlan:
    def test_plan_contents(self):
        records = [
            make_record("2024-01", "500"),
            make_record("January 2024", "700", minutes=1),
            make_record("2024-02", employee_id="c2"),
            make_record("March 2024", employee_id="c3"),
            make_record("???", employee_id="c4"),
        ]

        plan = plan_reconciliation(records)

        assert plan.records_scanned == 5
        assert len(plan.merges) == 1
        assert len(plan.rewrites) == 1
        assert plan.rewrites[0].merged.period_key == "February 2024"
        assert plan.rewrites[0].needs_rewrite
        assert [r.employee_id for r in plan.unparseable] == ["c4"]

    def test_reconciled_ledger_plans_nothing(self):
        records = [
            make_record("January 2024"),
            make_record("February 2024"),
            make_record("January 2024", employee_id="c2"),
        ]
        assert plan_reconciliation(records).is_empty

    def test_lenient_name_rewritten(self):
        plan = plan_reconciliation([make_record("jan 2024")])
        assert plan.actions[0].merged.period_key == "January 2024"
