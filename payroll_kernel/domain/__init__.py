"""Pure domain layer: clock, period keys, and payroll value objects."""

from payroll_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from payroll_kernel.domain.period import PeriodKey, normalize_period_key
from payroll_kernel.domain.values import (
    AttendanceMark,
    DeductionDetail,
    DeductionType,
    Employee,
    EmployeeStatus,
    Role,
    SalaryRecord,
    Trainee,
    TraineeShareDetail,
    TraineeStatus,
)

__all__ = [
    "AttendanceMark",
    "Clock",
    "DeductionDetail",
    "DeductionType",
    "DeterministicClock",
    "Employee",
    "EmployeeStatus",
    "PeriodKey",
    "Role",
    "SalaryRecord",
    "SystemClock",
    "Trainee",
    "TraineeShareDetail",
    "TraineeStatus",
    "normalize_period_key",
]
