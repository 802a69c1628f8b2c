"""
payroll_engines.compensation -- Monthly salary calculation for one employee.

Responsibility:
    Turn an employee, the trainees assigned to them and the commission
    table into a ``SalaryRecord`` for one period.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Consumed by the rollover
    controller; persistence is the salary ledger's job.

Invariants enforced:
    - ``final_salary == relevant_base - sum(deduction_details.amount)``.
    - Determinism: identical inputs produce identical outputs apart from
      ``calculated_at``, which is an explicit parameter.
    - Decimal-only arithmetic; every money amount passes through
      ``round_money``.

Failure modes:
    - None for degenerate input: zero working days, missing attendance and
      unknown branches all yield a well-formed record.

Usage:
    record = compute_salary(
        employee=employee,
        assigned_trainees=trainees,
        commission_table=config.commission,
        period=PeriodKey(2024, 1),
        config=config,
    )
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from decimal import Decimal

from payroll_config.schema import CommissionTable, CompensationConfig
from payroll_engines.tracer import traced_engine
from payroll_kernel.db.types import (
    HUNDRED,
    ZERO,
    round_money,
    round_percentage,
)
from payroll_kernel.domain.period import PeriodKey
from payroll_kernel.domain.values import (
    DeductionDetail,
    DeductionType,
    Employee,
    SalaryRecord,
    Trainee,
    TraineeShareDetail,
)
from payroll_kernel.logging_config import get_logger

logger = get_logger("engines.compensation")


def working_days_for(employee: Employee, default_working_days: int) -> int:
    if employee.total_working_days > 0:
        return employee.total_working_days
    return default_working_days


def absence_days_for(employee: Employee, total_working_days: int) -> int:
    """
    Days absent in the period.

    Employees with no attendance marks at all are not penalized.  More
    present marks than working days clamps to zero.
    """
    if not employee.has_attendance:
        return 0
    return max(total_working_days - employee.present_days, 0)


def absence_percentage_for(absence_days: int, total_working_days: int) -> Decimal:
    if total_working_days <= 0:
        return ZERO
    return round_percentage(Decimal(absence_days) * HUNDRED / Decimal(total_working_days))


def eligible_trainees(
    employee: Employee,
    trainees: Iterable[Trainee],
    active_statuses: frozenset[str],
) -> list[Trainee]:
    """Trainees coached by ``employee`` whose status counts toward pay."""
    return [
        t
        for t in trainees
        if t.coach_id == employee.id and t.is_active_like(active_statuses)
    ]


def trainee_shares(
    employee: Employee,
    trainees: Iterable[Trainee],
    commission_table: CommissionTable,
) -> tuple[TraineeShareDetail, ...]:
    """Coach share per trainee, looked up by the coach's branch."""
    return tuple(
        TraineeShareDetail(
            trainee_id=t.id,
            trainee_name=t.name,
            coach_share_amount=round_money(
                commission_table.commission(employee.branch, t.payment_amount)
            ),
            payment_date=t.last_payment_at,
        )
        for t in trainees
    )


def format_absence_description(absence_days: int, absence_percentage: Decimal) -> str:
    return f"{absence_days} absence days ({absence_percentage.quantize(Decimal('0.1'))}%)"


@traced_engine("compensation", "1.0", fingerprint_fields=("employee", "period"))
def compute_salary(
    employee: Employee,
    assigned_trainees: Iterable[Trainee],
    commission_table: CommissionTable,
    period: PeriodKey,
    *,
    config: CompensationConfig,
    calculated_at: datetime | None = None,
) -> SalaryRecord:
    """
    Compute one employee's salary for ``period``.

    Admins earn ``config.admin_base_salary``.  Coaches and head coaches
    earn the sum of their commission over assigned active-like trainees.
    Absence reduces the relevant base proportionally.

    Args:
        employee: The staff member, with this period's attendance.
        assigned_trainees: Candidate trainees; those not coached by the
            employee or not active-like are ignored.
        commission_table: Branch commission rules.
        period: The payroll period being computed.
        config: Compensation configuration.
        calculated_at: Timestamp stamped on the record.

    Returns:
        An unsaved ``SalaryRecord`` (``id`` is None).
    """
    role = employee.role

    if role.earns_trainee_share:
        trainees = eligible_trainees(
            employee, assigned_trainees, config.active_trainee_statuses
        )
        details = trainee_shares(employee, trainees, commission_table)
        base_salary = ZERO
        share_total = round_money(
            sum((d.coach_share_amount for d in details), ZERO)
        )
        relevant_base = share_total
    else:
        trainees = []
        details = ()
        base_salary = round_money(config.admin_base_salary)
        share_total = ZERO
        relevant_base = base_salary

    total_days = working_days_for(employee, config.default_working_days)
    absence_days = absence_days_for(employee, total_days)
    absence_pct = absence_percentage_for(absence_days, total_days)
    deduction = round_money(relevant_base * absence_pct / HUNDRED)

    deductions: tuple[DeductionDetail, ...] = ()
    if deduction > ZERO:
        deductions = (
            DeductionDetail(
                type=DeductionType.ABSENCE.value,
                description=format_absence_description(absence_days, absence_pct),
                amount=deduction,
            ),
        )

    total_deduction = sum((d.amount for d in deductions), ZERO)
    final_salary = relevant_base - total_deduction

    logger.debug(
        "salary_computed",
        extra={
            "employee_id": employee.id,
            "period_key": period.canonical,
            "role": role.value,
            "trainee_count": len(trainees),
            "absence_days": absence_days,
            "final_salary": str(final_salary),
        },
    )

    return SalaryRecord(
        employee_id=employee.id,
        employee_name=employee.name,
        period_key=period.canonical,
        role=role,
        branch=employee.branch,
        base_salary=base_salary,
        trainee_share_total=share_total,
        trainee_count=len(trainees),
        trainee_details=details,
        absence_days=absence_days,
        total_working_days=total_days,
        absence_percentage=absence_pct,
        deduction_amount=total_deduction,
        deduction_details=deductions,
        final_salary=final_salary,
        calculated_at=calculated_at,
    )


__all__ = [
    "absence_days_for",
    "absence_percentage_for",
    "compute_salary",
    "eligible_trainees",
    "format_absence_description",
    "trainee_shares",
    "working_days_for",
]
