"""
payroll_services.rollover_controller -- Monthly salary rollover.

Responsibility:
    On every host activation, decide from the trusted clock whether the
    current payroll period still needs its salaries computed; if so,
    compute and store one salary record per active employee, then clear
    the attendance of the configured roles so the new month starts empty.
    Also provides the manual single-employee recalculation.

Architecture position:
    Services -- stateful orchestration over engines + kernel.  Composes the
    compensation engine (pure) with the directory store and salary ledger
    (kernel I/O).

Invariants enforced:
    - At most one controller computes a period at a time: the claim is an
      INSERT into ``payroll_rollover_runs`` (unique per period) committed
      before any salary is computed.
    - SAVEPOINT isolation per employee: one failure does not abort the
      batch.
    - The period is derived from the injected trusted clock in the
      configured time zone, never from local time.
    - Attendance is cleared only for employees whose salary was computed
      by this attempt, so a retry never clears marks taken since the
      earlier attempt.

Failure modes:
    - ClockUnavailableError / DirectoryUnavailableError propagate from the
      activation; a claimed run is marked FAILED first so the next
      activation retries it.
    - Per-employee failures are logged and counted, never raised.
    - A crash mid-batch leaves a RUNNING run whose lease expires after
      ``rollover_lease_seconds``; the next activation resumes it.

Transaction ownership:
    Unlike kernel services, the controller commits: once for the claim and
    once for the batch together with attendance reset and run completion.
"""

from __future__ import annotations

import time
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from payroll_config.schema import CompensationConfig
from payroll_engines.compensation import compute_salary
from payroll_kernel.domain.clock import Clock, as_utc
from payroll_kernel.domain.period import PeriodKey
from payroll_kernel.domain.values import Employee, EmployeeStatus, Trainee
from payroll_kernel.exceptions import (
    EmployeeNotFoundError,
    LedgerUnavailableError,
    PayrollKernelError,
)
from payroll_kernel.logging_config import LogContext, get_logger
from payroll_kernel.models.rollover import RolloverRunModel, RolloverRunStatus
from payroll_kernel.selectors.salary_selector import SalarySelector
from payroll_kernel.services.directory_store import DirectoryStore
from payroll_kernel.services.salary_ledger import SalaryLedger

logger = get_logger("services.rollover")


class RolloverStatus(str, Enum):
    ALREADY_CURRENT = "already_current"
    CLAIMED_ELSEWHERE = "claimed_elsewhere"
    COMPLETED = "completed"
    PARTIALLY_COMPLETED = "partially_completed"
    FAILED = "failed"


@dataclass(frozen=True)
class RolloverResult:
    """Outcome of one activation."""

    period_key: str
    status: RolloverStatus
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    attendance_reset: int = 0
    run_id: UUID | None = None
    attempt: int = 0
    failed_employee_ids: tuple[str, ...] = ()

    @property
    def is_success(self) -> bool:
        return self.status in (
            RolloverStatus.ALREADY_CURRENT,
            RolloverStatus.CLAIMED_ELSEWHERE,
            RolloverStatus.COMPLETED,
        )

    @property
    def did_compute(self) -> bool:
        return self.run_id is not None


class RolloverController:
    """
    Stale -> Current transition for the trusted-clock period.

    Contract:
        - ``trigger_rollover_if_needed()`` is safe to call on every
          activation and from several hosts at once.
        - ``recalculate_for_employee()`` recomputes one employee without
          touching attendance.
    """

    def __init__(
        self,
        session: Session,
        directory: DirectoryStore,
        clock: Clock,
        config: CompensationConfig,
        ledger: SalaryLedger | None = None,
        selector: SalarySelector | None = None,
    ):
        self._session = session
        self._directory = directory
        self._clock = clock
        self._config = config
        self._ledger = ledger or SalaryLedger(session, clock)
        self._selector = selector or SalarySelector(session)

    def current_period(self) -> PeriodKey:
        return PeriodKey.from_datetime(self._clock.now_utc(), self._config.period_timezone)

    # -------------------------------------------------------------------------
    # Rollover
    # -------------------------------------------------------------------------

    def trigger_rollover_if_needed(self) -> RolloverResult:
        """
        Compute the current period's salaries unless already done.

        Returns:
            RolloverResult.  ALREADY_CURRENT and CLAIMED_ELSEWHERE are
            no-ops; the other statuses report a batch that ran here.
        """
        now = as_utc(self._clock.now_utc())
        period = PeriodKey.from_datetime(now, self._config.period_timezone)

        with LogContext.bind(period_key=period.canonical):
            outcome, run = self._claim(period, now)
            if outcome is not None:
                logger.info(
                    "rollover_not_needed",
                    extra={"period_key": period.canonical, "outcome": outcome.value},
                )
                return RolloverResult(period_key=period.canonical, status=outcome)

            with LogContext.bind(run_id=str(run.id)):
                return self._run_batch(period, run)

    def _claim(
        self, period: PeriodKey, now: datetime
    ) -> tuple[RolloverStatus | None, RolloverRunModel | None]:
        """
        Decide staleness and, if stale, take ownership of the period.

        Returns ``(status, None)`` for a no-op, ``(None, run)`` once the
        claim is committed.
        """
        lease = timedelta(seconds=self._config.rollover_lease_seconds)
        try:
            run = self._session.execute(
                select(RolloverRunModel)
                .where(RolloverRunModel.period_key == period.canonical)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()

            if run is None:
                if self._selector.has_records_for_period(period.canonical):
                    self._session.rollback()
                    return RolloverStatus.ALREADY_CURRENT, None

                savepoint = self._session.begin_nested()
                try:
                    run = RolloverRunModel(
                        period_key=period.canonical,
                        status=RolloverRunStatus.RUNNING.value,
                        attempt=1,
                        started_at=now,
                        lease_expires_at=now + lease,
                        created_at=now,
                        updated_at=now,
                    )
                    self._session.add(run)
                    self._session.flush()
                    savepoint.commit()
                except IntegrityError:
                    # Another controller inserted the claim first.
                    savepoint.rollback()
                    self._session.rollback()
                    logger.info("rollover_claim_lost", extra={"period_key": period.canonical})
                    return RolloverStatus.CLAIMED_ELSEWHERE, None

            elif run.status == RolloverRunStatus.COMPLETED.value:
                self._session.rollback()
                return RolloverStatus.ALREADY_CURRENT, None

            elif (
                run.status == RolloverRunStatus.RUNNING.value
                and as_utc(run.lease_expires_at) > now
            ):
                self._session.rollback()
                return RolloverStatus.CLAIMED_ELSEWHERE, None

            else:
                logger.warning(
                    "rollover_resumed",
                    extra={
                        "period_key": period.canonical,
                        "previous_status": run.status,
                        "previous_attempt": run.attempt,
                    },
                )
                run.status = RolloverRunStatus.RUNNING.value
                run.attempt += 1
                run.started_at = now
                run.lease_expires_at = now + lease
                run.completed_at = None
                run.updated_at = now
                self._session.flush()

            self._session.commit()
        except SQLAlchemyError as exc:
            self._session.rollback()
            raise LedgerUnavailableError("claim_rollover", str(exc)) from exc

        logger.info(
            "rollover_claimed",
            extra={"period_key": period.canonical, "attempt": run.attempt},
        )
        return None, run

    def _run_batch(self, period: PeriodKey, run: RolloverRunModel) -> RolloverResult:
        start_time = time.monotonic()
        now = self._clock.now()
        attempt = run.attempt

        logger.info(
            "rollover_started",
            extra={"period_key": period.canonical, "attempt": attempt},
        )

        try:
            employees = self._directory.list_active_employees()
            trainees = self._directory.list_trainees(
                statuses=self._config.active_trainee_statuses
            )
        except PayrollKernelError as exc:
            self._session.rollback()
            self._fail_run(run.id, f"{exc.code}: {exc}")
            raise

        by_coach: dict[str, list[Trainee]] = defaultdict(list)
        for trainee in trainees:
            by_coach[trainee.coach_id].append(trainee)

        computed: list[Employee] = []
        kept: list[Employee] = []
        failed_ids: list[str] = []

        for employee in employees:
            # A retried run keeps what earlier attempts already stored; their
            # attendance was reset by that attempt and now belongs to the new month.
            if attempt > 1 and self._selector.find(employee.id, period.canonical):
                kept.append(employee)
                continue

            with LogContext.bind(employee_id=employee.id):
                savepoint = self._session.begin_nested()
                try:
                    self._compute_and_store(employee, by_coach[employee.id], period, now)
                    savepoint.commit()
                    computed.append(employee)
                except Exception as exc:
                    savepoint.rollback()
                    failed_ids.append(employee.id)
                    logger.error(
                        "rollover_employee_failed",
                        extra={
                            "employee_id": employee.id,
                            "error_code": getattr(exc, "code", "UNHANDLED_EXCEPTION"),
                            "error": str(exc),
                        },
                        exc_info=True,
                    )

        succeeded = len(computed) + len(kept)
        reset_ids = [
            e.id for e in computed if e.role in self._config.attendance_reset_roles
        ]
        try:
            reset_count = self._directory.reset_attendance(reset_ids)
            self._finish_run(run, len(employees), succeeded, failed_ids)
            self._session.commit()
        except (PayrollKernelError, SQLAlchemyError) as exc:
            self._session.rollback()
            self._fail_run(run.id, str(exc))
            if isinstance(exc, PayrollKernelError):
                raise
            raise LedgerUnavailableError("complete_rollover", str(exc)) from exc

        status = _batch_status(succeeded, len(failed_ids))
        duration_ms = round((time.monotonic() - start_time) * 1000, 2)
        log = logger.info if not failed_ids else logger.warning
        log(
            "rollover_finished",
            extra={
                "period_key": period.canonical,
                "status": status.value,
                "total": len(employees),
                "succeeded": succeeded,
                "kept": len(kept),
                "failed": len(failed_ids),
                "attendance_reset": len(reset_ids),
                "marks_removed": reset_count,
                "duration_ms": duration_ms,
            },
        )

        return RolloverResult(
            period_key=period.canonical,
            status=status,
            total=len(employees),
            succeeded=succeeded,
            failed=len(failed_ids),
            attendance_reset=len(reset_ids),
            run_id=run.id,
            attempt=attempt,
            failed_employee_ids=tuple(failed_ids),
        )

    def _compute_and_store(
        self,
        employee: Employee,
        trainees: list[Trainee],
        period: PeriodKey,
        now: datetime,
    ) -> None:
        record = compute_salary(
            employee=employee,
            assigned_trainees=trainees,
            commission_table=self._config.commission,
            period=period,
            config=self._config,
            calculated_at=now,
        )
        self._ledger.upsert(record)

    def _finish_run(
        self,
        run: RolloverRunModel,
        total: int,
        succeeded: int,
        failed_ids: list[str],
    ) -> None:
        now = self._clock.now()
        run.total_employees = total
        run.succeeded = succeeded
        run.failed = len(failed_ids)
        run.updated_at = now
        if failed_ids:
            # FAILED makes the next activation retry the remaining employees.
            run.status = RolloverRunStatus.FAILED.value
            run.error_summary = _summary(f"failed employees: {', '.join(failed_ids)}")
        else:
            run.status = RolloverRunStatus.COMPLETED.value
            run.completed_at = now
            run.error_summary = None
        self._session.flush()

    def _fail_run(self, run_id, reason: str) -> None:
        """Best-effort FAILED marker in a fresh transaction."""
        try:
            run = self._session.get(RolloverRunModel, run_id)
            if run is not None:
                run.status = RolloverRunStatus.FAILED.value
                run.error_summary = _summary(reason)
                run.updated_at = self._clock.now()
                self._session.commit()
        except SQLAlchemyError:
            self._session.rollback()
            logger.error("rollover_fail_mark_failed", extra={"run_id": str(run_id)}, exc_info=True)
        logger.error("rollover_failed", extra={"run_id": str(run_id), "reason": reason})

    # -------------------------------------------------------------------------
    # Manual recalculation
    # -------------------------------------------------------------------------

    def recalculate_for_employee(self, employee_id: str) -> bool:
        """
        Recompute one employee's salary for the trusted-clock period.

        Attendance is left untouched.  Returns False (logged) if the
        employee is unknown or inactive, or the recompute fails.
        """
        with LogContext.bind(employee_id=employee_id):
            try:
                period = self.current_period()
                employee = self._directory.get_employee(employee_id)
                if employee is None or employee.status is not EmployeeStatus.ACTIVE:
                    raise EmployeeNotFoundError(employee_id)

                trainees = self._directory.list_trainees(
                    coach_id=employee_id,
                    statuses=self._config.active_trainee_statuses,
                )
                self._compute_and_store(employee, trainees, period, self._clock.now())
                self._session.commit()
            except (PayrollKernelError, SQLAlchemyError) as exc:
                self._session.rollback()
                logger.error(
                    "salary_recalculation_failed",
                    extra={
                        "employee_id": employee_id,
                        "error_code": getattr(exc, "code", "DATABASE_ERROR"),
                        "error": str(exc),
                    },
                )
                return False

        logger.info(
            "salary_recalculated",
            extra={"employee_id": employee_id, "period_key": period.canonical},
        )
        return True


def _batch_status(succeeded: int, failed: int) -> RolloverStatus:
    if failed == 0:
        return RolloverStatus.COMPLETED
    if succeeded == 0:
        return RolloverStatus.FAILED
    return RolloverStatus.PARTIALLY_COMPLETED


def _summary(text: str) -> str:
    return text if len(text) <= 500 else text[:497] + "..."
