"""
payroll_engines.reconciliation -- Period-format normalization and duplicate merge.

Responsibility:
    Given every salary record in the ledger, decide which records must be
    moved to the canonical period key and which (employee, period) groups
    hold more than one record, and produce the single merged record for
    each such group.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The reconciliation
    service applies the resulting plan through the salary ledger.

Invariants enforced:
    - After the plan is applied, at most one record exists per
      (employee_id, canonical period_key).
    - Relevant bases, deductions and final salaries are all summed, so
      ``final == base - deductions`` holds for the merged record whenever
      it held for each input.
    - Idempotence: planning over an already-reconciled ledger yields no
      actions.
    - Records whose period cannot be parsed are never touched; they are
      reported back to the caller.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal

from payroll_engines.tracer import traced_engine
from payroll_kernel.db.types import HUNDRED, ZERO, round_money, round_percentage
from payroll_kernel.domain.clock import as_utc
from payroll_kernel.domain.period import PeriodKey
from payroll_kernel.domain.values import (
    SalaryRecord,
    TraineeShareDetail,
)
from payroll_kernel.exceptions import InvalidPeriodKeyError
from payroll_kernel.logging_config import get_logger

logger = get_logger("engines.reconciliation")

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class GroupAction:
    """
    What to do with one (employee, canonical period) group.

    ``others`` are deleted, then ``merged`` is written over ``primary``.
    For a singleton group ``others`` is empty and ``merged`` is the primary
    with its period rewritten.
    """

    employee_id: str
    period_key: str
    primary: SalaryRecord
    others: tuple[SalaryRecord, ...]
    merged: SalaryRecord

    @property
    def is_merge(self) -> bool:
        return bool(self.others)

    @property
    def needs_rewrite(self) -> bool:
        return self.primary.period_key != self.period_key


@dataclass(frozen=True)
class ReconciliationPlan:
    actions: tuple[GroupAction, ...]
    unparseable: tuple[SalaryRecord, ...]
    records_scanned: int

    @property
    def merges(self) -> tuple[GroupAction, ...]:
        return tuple(a for a in self.actions if a.is_merge)

    @property
    def rewrites(self) -> tuple[GroupAction, ...]:
        return tuple(a for a in self.actions if not a.is_merge)

    @property
    def is_empty(self) -> bool:
        return not self.actions


def _primary_sort_key(record: SalaryRecord) -> tuple[datetime, datetime, str]:
    return (
        as_utc(record.created_at) or _EPOCH,
        as_utc(record.updated_at) or _EPOCH,
        str(record.id or ""),
    )


def select_primary(records: Sequence[SalaryRecord]) -> SalaryRecord:
    """
    The most recently created record; ties go to the most recently
    updated, then to the greatest id.
    """
    if not records:
        raise ValueError("select_primary requires at least one record")
    return max(records, key=_primary_sort_key)


def group_records(
    records: Iterable[SalaryRecord],
) -> tuple[dict[tuple[str, str], list[SalaryRecord]], list[SalaryRecord]]:
    """
    Group records by (employee_id, canonical period).

    Returns:
        ``(groups, unparseable)``; groups preserve input order.
    """
    groups: dict[tuple[str, str], list[SalaryRecord]] = {}
    unparseable: list[SalaryRecord] = []
    for record in records:
        try:
            canonical = PeriodKey.parse(record.period_key).canonical
        except InvalidPeriodKeyError:
            unparseable.append(record)
            continue
        groups.setdefault((record.employee_id, canonical), []).append(record)
    return groups, unparseable


def dedupe_trainee_details(
    details: Iterable[TraineeShareDetail],
) -> tuple[TraineeShareDetail, ...]:
    """
    One entry per trainee id, keeping the latest payment date.

    An entry without a payment date loses to any dated entry; among equal
    dates the first seen wins.  First-seen order is kept.
    """
    chosen: dict[str, TraineeShareDetail] = {}
    for detail in details:
        current = chosen.get(detail.trainee_id)
        if current is None:
            chosen[detail.trainee_id] = detail
            continue
        new_date = as_utc(detail.payment_date)
        old_date = as_utc(current.payment_date)
        if new_date is not None and (old_date is None or new_date > old_date):
            chosen[detail.trainee_id] = detail
    return tuple(chosen.values())


@traced_engine("reconciliation_merge", "1.0")
def merge_salary_records(
    records: Sequence[SalaryRecord],
    period_key: str,
) -> SalaryRecord:
    """
    Combine the records of one (employee, period) group.

    Sums: trainee share, base salary, trainee count, absence days, final
    salary.  Max: working days.  Deductions are concatenated and their
    amounts summed.  Identity, role, branch and name come from the
    primary; the result carries the canonical ``period_key``.
    """
    if not records:
        raise ValueError("merge_salary_records requires at least one record")

    primary = select_primary(records)
    ordered = [primary] + sorted(
        (r for r in records if r is not primary),
        key=_primary_sort_key,
        reverse=True,
    )

    total_days = max(r.total_working_days for r in ordered)
    absence_days = sum(r.absence_days for r in ordered)
    absence_pct = (
        round_percentage(Decimal(absence_days) * HUNDRED / Decimal(total_days))
        if total_days > 0
        else ZERO
    )
    deductions = tuple(d for r in ordered for d in r.deduction_details)
    calculated = [r.calculated_at for r in ordered if r.calculated_at is not None]

    return replace(
        primary,
        period_key=PeriodKey.parse(period_key).canonical,
        base_salary=round_money(sum((r.base_salary for r in ordered), ZERO)),
        trainee_share_total=round_money(sum((r.trainee_share_total for r in ordered), ZERO)),
        trainee_count=sum(r.trainee_count for r in ordered),
        trainee_details=dedupe_trainee_details(d for r in ordered for d in r.trainee_details),
        absence_days=absence_days,
        total_working_days=total_days,
        absence_percentage=absence_pct,
        deduction_amount=round_money(sum((d.amount for d in deductions), ZERO)),
        deduction_details=deductions,
        final_salary=round_money(sum((r.final_salary for r in ordered), ZERO)),
        is_paid=any(r.is_paid for r in ordered),
        calculated_at=max(calculated, key=as_utc) if calculated else None,
    )


@traced_engine("reconciliation_plan", "1.0")
def plan_reconciliation(records: Sequence[SalaryRecord]) -> ReconciliationPlan:
    """
    Decide the normalization and merge actions for a full ledger scan.

    Groups already holding a single canonical record produce no action.
    """
    groups, unparseable = group_records(records)
    actions: list[GroupAction] = []

    for (employee_id, canonical), members in groups.items():
        primary = select_primary(members)
        if len(members) == 1:
            if primary.period_key == canonical:
                continue
            merged = replace(primary, period_key=canonical)
        else:
            merged = merge_salary_records(members, canonical)

        actions.append(
            GroupAction(
                employee_id=employee_id,
                period_key=canonical,
                primary=primary,
                others=tuple(m for m in members if m is not primary),
                merged=merged,
            )
        )

    if unparseable:
        logger.warning(
            "unparseable_periods_skipped",
            extra={
                "count": len(unparseable),
                "period_keys": sorted({r.period_key for r in unparseable}),
            },
        )

    return ReconciliationPlan(
        actions=tuple(actions),
        unparseable=tuple(unparseable),
        records_scanned=len(records),
    )
