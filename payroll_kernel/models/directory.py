"""
Directory ORM Models (``payroll_kernel.models.directory``).

Responsibility:
    SQLAlchemy models for the staff directory the payroll core reads:
    employees, their attendance marks, and trainees.  The directory is owned
    by the host application (attendance marking and trainee CRUD happen
    there); the payroll core only reads it and clears attendance at rollover.

Architecture position:
    Kernel > Models.  Converted to frozen domain values by
    ``payroll_kernel.services.directory_store``; nothing above the store
    touches these classes.

Invariants enforced:
    - Employee and trainee ids are the host's opaque string ids.
    - One attendance mark per (employee, mark_key)
      (uq_directory_attendance_employee_key).
    - Attendance marks are loaded ordered by mark_key so the last mark is
      the most recent.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_kernel.db.base import Base

# ---------------------------------------------------------------------------
# EmployeeModel
# ---------------------------------------------------------------------------


class EmployeeModel(Base):
    """
    ORM model for a directory employee.

    Contract:
        ``role`` and ``status`` are stored as free strings because the host
        writes them; normalization to ``Role`` / ``EmployeeStatus`` happens
        in the directory store.
    """

    __tablename__ = "directory_employees"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="coach")
    branch: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active")
    total_working_days: Mapped[int | None] = mapped_column(nullable=True)

    attendance_marks: Mapped[list["AttendanceMarkModel"]] = relationship(
        back_populates="employee",
        cascade="all, delete-orphan",
        order_by="AttendanceMarkModel.mark_key",
        lazy="selectin",
    )

    __table_args__ = (
        Index("idx_directory_employee_status", "status"),
        Index("idx_directory_employee_role", "role"),
    )

    def __repr__(self) -> str:
        return f"<EmployeeModel {self.id}: {self.name} ({self.role})>"


# ---------------------------------------------------------------------------
# AttendanceMarkModel
# ---------------------------------------------------------------------------


class AttendanceMarkModel(Base):
    """One present/absent mark for an employee, keyed by an opaque timestamp."""

    __tablename__ = "directory_attendance_marks"

    employee_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("directory_employees.id", ondelete="CASCADE"),
        nullable=False,
    )
    mark_key: Mapped[str] = mapped_column(String(64), nullable=False)
    present: Mapped[bool] = mapped_column(Boolean, nullable=False)

    employee: Mapped[EmployeeModel] = relationship(back_populates="attendance_marks")

    __table_args__ = (
        UniqueConstraint(
            "employee_id", "mark_key",
            name="uq_directory_attendance_employee_key",
        ),
    )

    def __repr__(self) -> str:
        return f"<AttendanceMarkModel {self.employee_id}@{self.mark_key}: {self.present}>"


# ---------------------------------------------------------------------------
# TraineeModel
# ---------------------------------------------------------------------------


class TraineeModel(Base):
    """
    ORM model for a trainee.

    ``coach_id`` is deliberately not a foreign key: trainees outlive coach
    reassignments and removals in the host application.
    """

    __tablename__ = "directory_trainees"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    coach_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    branch: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    payment_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(String(64), nullable=False, default="active")
    last_payment_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        Index("idx_directory_trainee_coach", "coach_id"),
        Index("idx_directory_trainee_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<TraineeModel {self.id}: {self.name} coach={self.coach_id}>"
