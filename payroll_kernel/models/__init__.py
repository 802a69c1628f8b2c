"""ORM models for the payroll kernel."""

from payroll_kernel.models.directory import (
    AttendanceMarkModel,
    EmployeeModel,
    TraineeModel,
)
from payroll_kernel.models.rollover import RolloverRunModel, RolloverRunStatus
from payroll_kernel.models.salary import SalaryRecordModel

__all__ = [
    "AttendanceMarkModel",
    "EmployeeModel",
    "RolloverRunModel",
    "RolloverRunStatus",
    "SalaryRecordModel",
    "TraineeModel",
    "import_all_models",
]


def import_all_models() -> None:
    """Import every model module so ``Base.metadata`` holds all tables.

    Idempotent -- repeated calls are harmless.
    """
    import payroll_kernel.models.directory  # noqa: F401
    import payroll_kernel.models.rollover  # noqa: F401
    import payroll_kernel.models.salary  # noqa: F401
