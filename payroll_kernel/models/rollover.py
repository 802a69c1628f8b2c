"""
Rollover Run ORM Model (``payroll_kernel.models.rollover``).

Responsibility:
    One row per payroll period recording the monthly rollover batch: who
    claimed it, until when the claim is valid, and how it ended.  The unique
    ``period_key`` makes the claim the critical section between controllers
    racing at a period boundary -- only one INSERT can win.

Invariants enforced:
    - At most one run row per period (uq_rollover_run_period).
    - ``status`` stores a ``RolloverRunStatus`` value.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from payroll_kernel.db.base import TimestampedBase


class RolloverRunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class RolloverRunModel(TimestampedBase):
    """
    ORM model for a period's rollover batch.

    Contract:
        A RUNNING row whose ``lease_expires_at`` has passed belongs to an
        interrupted batch and may be taken over.  A FAILED row is retried on
        the next activation.  A COMPLETED row makes the period Current.
    """

    __tablename__ = "payroll_rollover_runs"

    period_key: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    attempt: Mapped[int] = mapped_column(nullable=False, default=1)
    started_at: Mapped[datetime] = mapped_column(nullable=False)
    lease_expires_at: Mapped[datetime] = mapped_column(nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    total_employees: Mapped[int] = mapped_column(nullable=False, default=0)
    succeeded: Mapped[int] = mapped_column(nullable=False, default=0)
    failed: Mapped[int] = mapped_column(nullable=False, default=0)
    error_summary: Mapped[str | None] = mapped_column(String(500), nullable=True)

    __table_args__ = (
        UniqueConstraint("period_key", name="uq_rollover_run_period"),
    )

    def __repr__(self) -> str:
        return f"<RolloverRunModel {self.period_key}: {self.status} (attempt {self.attempt})>"
