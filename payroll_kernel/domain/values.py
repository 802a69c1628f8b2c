"""
Payroll Domain Values (``payroll_kernel.domain.values``).

Responsibility
--------------
Frozen dataclass value objects for the nouns of coaching payroll:
employees with their attendance marks, trainees, and the monthly salary
record with its trainee-share and deduction breakdowns.

Architecture position
---------------------
**Kernel > Domain** -- pure data definitions with ZERO I/O.  Produced by the
directory store and the salary selector at the persistence boundary,
consumed by the compensation engine and the reconciliation engine.

Invariants enforced
-------------------
* All values are ``frozen=True`` (immutable after construction).
* All monetary fields use ``Decimal`` -- NEVER ``float``.
* ``SalaryRecord.period_key`` is expected to be canonical; the ledger
  normalizes it on every write.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from payroll_kernel.logging_config import get_logger

logger = get_logger("domain.values")


class Role(str, Enum):
    """Staff roles that receive a salary record."""

    ADMIN = "admin"
    COACH = "coach"
    HEAD_COACH = "head_coach"

    @classmethod
    def parse(cls, value: str | None) -> Role:
        """
        Normalize a stored role string.

        "head coach", "Head Coach" and "head_coach" all map to HEAD_COACH.
        Unknown or missing roles are computed as COACH.
        """
        text = (value or "").strip().lower().replace("-", "_").replace(" ", "_")
        for role in cls:
            if role.value == text:
                return role
        logger.warning("unknown_role_defaulted", extra={"role": value})
        return cls.COACH

    @property
    def earns_trainee_share(self) -> bool:
        return self is not Role.ADMIN


class EmployeeStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class TraineeStatus(str, Enum):
    """Base trainee statuses.  Programs may add active variants via config."""

    ACTIVE = "active"
    FROZEN = "frozen"
    COMPLETED = "completed"
    INACTIVE = "inactive"


class DeductionType(str, Enum):
    ABSENCE = "ABSENCE"
    PENALTY = "PENALTY"
    OTHER = "OTHER"


@dataclass(frozen=True)
class AttendanceMark:
    """One attendance entry, keyed by an opaque timestamp string."""

    key: str
    present: bool


@dataclass(frozen=True)
class Employee:
    """A staff member as read from the directory."""

    id: str
    name: str
    role: Role
    branch: str
    total_working_days: int = 0
    status: EmployeeStatus = EmployeeStatus.ACTIVE
    attendance: tuple[AttendanceMark, ...] = ()

    @property
    def present_days(self) -> int:
        return sum(1 for mark in self.attendance if mark.present)

    @property
    def has_attendance(self) -> bool:
        return bool(self.attendance)

    @property
    def latest_attendance(self) -> AttendanceMark | None:
        """Most recent mark (attendance is ordered by key)."""
        return self.attendance[-1] if self.attendance else None


@dataclass(frozen=True)
class Trainee:
    """A trainee whose fee may count toward a coach's share."""

    id: str
    name: str
    coach_id: str
    branch: str
    payment_amount: Decimal
    status: str = TraineeStatus.ACTIVE.value
    last_payment_at: datetime | None = None

    def is_active_like(self, active_statuses: frozenset[str]) -> bool:
        return (self.status or "").strip().lower() in active_statuses


@dataclass(frozen=True)
class TraineeShareDetail:
    """The coach's share of one trainee's fee."""

    trainee_id: str
    trainee_name: str
    coach_share_amount: Decimal
    payment_date: datetime | None = None


@dataclass(frozen=True)
class DeductionDetail:
    type: str
    description: str
    amount: Decimal


@dataclass(frozen=True)
class SalaryRecord:
    """
    One employee's computed salary for one payroll period.

    Invariant: ``final_salary == relevant_base - total_deductions``.
    """

    employee_id: str
    period_key: str
    role: Role
    branch: str
    employee_name: str = ""
    base_salary: Decimal = Decimal("0")
    trainee_share_total: Decimal = Decimal("0")
    trainee_count: int = 0
    trainee_details: tuple[TraineeShareDetail, ...] = field(default_factory=tuple)
    absence_days: int = 0
    total_working_days: int = 0
    absence_percentage: Decimal = Decimal("0")
    deduction_amount: Decimal = Decimal("0")
    deduction_details: tuple[DeductionDetail, ...] = field(default_factory=tuple)
    final_salary: Decimal = Decimal("0")
    is_paid: bool = False
    id: UUID | None = None
    calculated_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def relevant_base(self) -> Decimal:
        """The amount deductions apply to: base for admin, share otherwise."""
        if self.role.earns_trainee_share:
            return self.trainee_share_total
        return self.base_salary

    @property
    def total_deductions(self) -> Decimal:
        return sum((d.amount for d in self.deduction_details), Decimal("0"))

    def computed_fields(self) -> dict:
        """
        The fields a recompute produces, excluding identity and timestamps.

        Two records with equal ``computed_fields()`` are the same salary.
        """
        return {
            "employee_id": self.employee_id,
            "period_key": self.period_key,
            "role": self.role,
            "branch": self.branch,
            "employee_name": self.employee_name,
            "base_salary": self.base_salary,
            "trainee_share_total": self.trainee_share_total,
            "trainee_count": self.trainee_count,
            "trainee_details": self.trainee_details,
            "absence_days": self.absence_days,
            "total_working_days": self.total_working_days,
            "absence_percentage": self.absence_percentage,
            "deduction_amount": self.deduction_amount,
            "deduction_details": self.deduction_details,
            "final_salary": self.final_salary,
        }
