"""
DirectoryStore -- the payroll core's view of staff and trainees.

Responsibility:
    Reads employees (with attendance) and trainees owned by the host
    application and converts them into frozen domain values.  This is the
    validation boundary for directory data: loosely-typed rows are defaulted
    or rejected here so that nothing downstream sees a malformed record.
    The only write the core performs on the directory is clearing
    attendance at rollover.

Architecture position:
    Kernel > Services.  ``DirectoryStore`` is the protocol consumed by the
    rollover controller; ``SqlDirectoryStore`` implements it over the
    ``directory_*`` tables.

Failure modes:
    - DirectoryUnavailableError wraps any SQLAlchemyError.
    - Rows without an id are skipped with a warning (InvalidRecordError is
      logged, never raised out of listings).
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Protocol

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from payroll_kernel.db.types import ZERO, to_decimal
from payroll_kernel.domain.values import (
    AttendanceMark,
    Employee,
    EmployeeStatus,
    Role,
    Trainee,
)
from payroll_kernel.exceptions import DirectoryUnavailableError, InvalidRecordError
from payroll_kernel.logging_config import get_logger
from payroll_kernel.models.directory import (
    AttendanceMarkModel,
    EmployeeModel,
    TraineeModel,
)
from payroll_kernel.services.base import BaseService

logger = get_logger("services.directory")


class DirectoryStore(Protocol):
    """What the payroll core needs from the staff directory."""

    def list_active_employees(self) -> list[Employee]: ...

    def list_trainees(
        self,
        coach_id: str | None = None,
        statuses: Iterable[str] | None = None,
    ) -> list[Trainee]: ...

    def get_employee(self, employee_id: str) -> Employee | None: ...

    def reset_attendance(self, employee_ids: Sequence[str]) -> int: ...


def employee_from_model(model: EmployeeModel) -> Employee:
    """
    Convert an ORM row to an ``Employee``, defaulting malformed fields.

    Raises:
        InvalidRecordError: If the row has no id.
    """
    if not model.id:
        raise InvalidRecordError("employee", "<missing>", "empty id")

    status_text = (model.status or "").strip().lower()
    status = (
        EmployeeStatus.INACTIVE
        if status_text == EmployeeStatus.INACTIVE.value
        else EmployeeStatus.ACTIVE
    )

    working_days = model.total_working_days or 0
    if working_days < 0:
        logger.warning(
            "negative_working_days_defaulted",
            extra={"employee_id": model.id, "total_working_days": working_days},
        )
        working_days = 0

    marks = sorted(
        (
            AttendanceMark(key=m.mark_key, present=bool(m.present))
            for m in model.attendance_marks
            if m.mark_key
        ),
        key=lambda m: m.key,
    )

    return Employee(
        id=model.id,
        name=model.name or "",
        role=Role.parse(model.role),
        branch=model.branch or "",
        total_working_days=working_days,
        status=status,
        attendance=tuple(marks),
    )


def trainee_from_model(model: TraineeModel) -> Trainee:
    """
    Convert an ORM row to a ``Trainee``, defaulting malformed fields.

    Raises:
        InvalidRecordError: If the row has no id.
    """
    if not model.id:
        raise InvalidRecordError("trainee", "<missing>", "empty id")

    amount = to_decimal(model.payment_amount)
    if amount < ZERO:
        logger.warning(
            "negative_payment_defaulted",
            extra={"trainee_id": model.id, "payment_amount": str(amount)},
        )
        amount = ZERO

    return Trainee(
        id=model.id,
        name=model.name or "",
        coach_id=model.coach_id or "",
        branch=model.branch or "",
        payment_amount=amount,
        status=(model.status or "").strip().lower(),
        last_payment_at=model.last_payment_at,
    )


class SqlDirectoryStore(BaseService[EmployeeModel]):
    """
    ``DirectoryStore`` over the ``directory_*`` tables.

    Contract:
        Flush-only; the caller commits.

    Guarantees:
        - Listings never raise for a single malformed row; the row is
          skipped and logged.
        - ``reset_attendance`` removes every attendance mark of the given
          employees and returns how many marks were removed.
    """

    def __init__(self, session: Session):
        super().__init__(session)

    def list_active_employees(self) -> list[Employee]:
        try:
            models = self.session.execute(
                select(EmployeeModel)
                .where(func.lower(EmployeeModel.status) != EmployeeStatus.INACTIVE.value)
                .order_by(EmployeeModel.id)
            ).scalars().all()
        except SQLAlchemyError as exc:
            raise DirectoryUnavailableError("list_active_employees", str(exc)) from exc

        employees: list[Employee] = []
        for model in models:
            try:
                employees.append(employee_from_model(model))
            except InvalidRecordError as exc:
                logger.warning("employee_row_skipped", extra={"reason": exc.reason})
        return employees

    def list_trainees(
        self,
        coach_id: str | None = None,
        statuses: Iterable[str] | None = None,
    ) -> list[Trainee]:
        """
        Trainees, optionally filtered by coach and by status.

        ``statuses`` are compared case-insensitively.
        """
        stmt = select(TraineeModel).order_by(TraineeModel.id)
        if coach_id is not None:
            stmt = stmt.where(TraineeModel.coach_id == coach_id)
        if statuses is not None:
            wanted = sorted({s.strip().lower() for s in statuses})
            stmt = stmt.where(func.lower(func.trim(TraineeModel.status)).in_(wanted))

        try:
            models = self.session.execute(stmt).scalars().all()
        except SQLAlchemyError as exc:
            raise DirectoryUnavailableError("list_trainees", str(exc)) from exc

        trainees: list[Trainee] = []
        for model in models:
            try:
                trainees.append(trainee_from_model(model))
            except InvalidRecordError as exc:
                logger.warning("trainee_row_skipped", extra={"reason": exc.reason})
        return trainees

    def get_employee(self, employee_id: str) -> Employee | None:
        try:
            model = self.session.get(EmployeeModel, employee_id)
        except SQLAlchemyError as exc:
            raise DirectoryUnavailableError("get_employee", str(exc)) from exc
        if model is None:
            return None
        return employee_from_model(model)

    def reset_attendance(self, employee_ids: Sequence[str]) -> int:
        if not employee_ids:
            return 0
        try:
            result = self.session.execute(
                delete(AttendanceMarkModel)
                .where(AttendanceMarkModel.employee_id.in_(list(employee_ids)))
                .execution_options(synchronize_session=False)
            )
            self.session.flush()
            # Loaded employees still hold the old marks in their collections.
            self.session.expire_all()
        except SQLAlchemyError as exc:
            raise DirectoryUnavailableError("reset_attendance", str(exc)) from exc

        removed = result.rowcount or 0
        logger.info(
            "attendance_reset",
            extra={"employee_count": len(employee_ids), "marks_removed": removed},
        )
        return removed
