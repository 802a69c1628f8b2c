"""
Salary Ledger ORM Model (``payroll_kernel.models.salary``).

Responsibility:
    Persists ``SalaryRecord`` values.  Each ORM row mirrors the frozen DTO
    and provides ``to_dto()`` / ``column_values()`` conversion.  Trainee and
    deduction breakdowns are stored as JSON documents on the row so that a
    whole record is written by a single statement (the ledger's upsert is
    one ``INSERT ... ON CONFLICT DO UPDATE``).

Invariants enforced:
    - At most one row per (employee_id, period_key)
      (uq_salary_employee_period).
    - All monetary fields use Decimal (Numeric(38,9)); inside JSON documents
      amounts are stored as decimal strings, never floats.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, Boolean, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from payroll_kernel.db.base import TimestampedBase
from payroll_kernel.db.types import to_decimal
from payroll_kernel.domain.clock import as_utc
from payroll_kernel.domain.values import (
    DeductionDetail,
    Role,
    SalaryRecord,
    TraineeShareDetail,
)


def _dump_datetime(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _load_datetime(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    try:
        return as_utc(datetime.fromisoformat(str(value)))
    except ValueError:
        return None


def dump_trainee_details(details: tuple[TraineeShareDetail, ...]) -> list[dict]:
    return [
        {
            "trainee_id": d.trainee_id,
            "trainee_name": d.trainee_name,
            "coach_share_amount": str(d.coach_share_amount),
            "payment_date": _dump_datetime(d.payment_date),
        }
        for d in details
    ]


def load_trainee_details(raw: Any) -> tuple[TraineeShareDetail, ...]:
    """Tolerant reader: entries without a trainee id are dropped."""
    details = []
    for item in raw or []:
        if not isinstance(item, dict) or not item.get("trainee_id"):
            continue
        details.append(
            TraineeShareDetail(
                trainee_id=str(item["trainee_id"]),
                trainee_name=str(item.get("trainee_name") or ""),
                coach_share_amount=to_decimal(item.get("coach_share_amount")),
                payment_date=_load_datetime(item.get("payment_date")),
            )
        )
    return tuple(details)


def dump_deduction_details(details: tuple[DeductionDetail, ...]) -> list[dict]:
    return [
        {"type": d.type, "description": d.description, "amount": str(d.amount)}
        for d in details
    ]


def load_deduction_details(raw: Any) -> tuple[DeductionDetail, ...]:
    details = []
    for item in raw or []:
        if not isinstance(item, dict):
            continue
        details.append(
            DeductionDetail(
                type=str(item.get("type") or "OTHER"),
                description=str(item.get("description") or ""),
                amount=to_decimal(item.get("amount")),
            )
        )
    return tuple(details)


class SalaryRecordModel(TimestampedBase):
    """
    ORM model for one employee's salary in one payroll period.

    Contract:
        Rows are written only through ``SalaryLedger``.  ``period_key`` is
        canonical for every row the ledger writes; legacy rows may carry the
        numeric form until the reconciliation service normalizes them.

    Guarantees:
        - ``(employee_id, period_key)`` is unique.
        - ``is_paid`` is not a computed field and survives recomputes.
    """

    __tablename__ = "salary_records"

    employee_id: Mapped[str] = mapped_column(String(64), nullable=False)
    employee_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    period_key: Mapped[str] = mapped_column(String(32), nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False)
    branch: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    base_salary: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    trainee_share_total: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    trainee_count: Mapped[int] = mapped_column(nullable=False, default=0)
    trainee_details: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    absence_days: Mapped[int] = mapped_column(nullable=False, default=0)
    total_working_days: Mapped[int] = mapped_column(nullable=False, default=0)
    absence_percentage: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    deduction_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    deduction_details: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    final_salary: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    is_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    calculated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        UniqueConstraint("employee_id", "period_key", name="uq_salary_employee_period"),
        Index("idx_salary_period", "period_key"),
    )

    @staticmethod
    def column_values(record: SalaryRecord) -> dict[str, Any]:
        """Computed columns for ``record`` (no id, timestamps or is_paid)."""
        return {
            "employee_id": record.employee_id,
            "employee_name": record.employee_name,
            "period_key": record.period_key,
            "role": record.role.value,
            "branch": record.branch,
            "base_salary": record.base_salary,
            "trainee_share_total": record.trainee_share_total,
            "trainee_count": record.trainee_count,
            "trainee_details": dump_trainee_details(record.trainee_details),
            "absence_days": record.absence_days,
            "total_working_days": record.total_working_days,
            "absence_percentage": record.absence_percentage,
            "deduction_amount": record.deduction_amount,
            "deduction_details": dump_deduction_details(record.deduction_details),
            "final_salary": record.final_salary,
            "calculated_at": record.calculated_at,
        }

    def to_dto(self) -> SalaryRecord:
        return SalaryRecord(
            id=self.id,
            employee_id=self.employee_id,
            employee_name=self.employee_name or "",
            period_key=self.period_key,
            role=Role.parse(self.role),
            branch=self.branch or "",
            base_salary=to_decimal(self.base_salary),
            trainee_share_total=to_decimal(self.trainee_share_total),
            trainee_count=self.trainee_count or 0,
            trainee_details=load_trainee_details(self.trainee_details),
            absence_days=self.absence_days or 0,
            total_working_days=self.total_working_days or 0,
            absence_percentage=to_decimal(self.absence_percentage),
            deduction_amount=to_decimal(self.deduction_amount),
            deduction_details=load_deduction_details(self.deduction_details),
            final_salary=to_decimal(self.final_salary),
            is_paid=bool(self.is_paid),
            calculated_at=as_utc(self.calculated_at),
            created_at=as_utc(self.created_at),
            updated_at=as_utc(self.updated_at),
        )

    def __repr__(self) -> str:
        return (
            f"<SalaryRecordModel {self.employee_id} {self.period_key}: "
            f"{self.final_salary}>"
        )
