"""
payroll_services.reconciliation_service -- Period-format migration and duplicate merge.

Responsibility:
    Scans the whole salary ledger, moves records stored under legacy or
    lenient period keys ("2024-01", "jan 2024") to the canonical form
    ("January 2024"), and collapses any (employee, period) group holding
    more than one record into a single merged record.

Architecture position:
    Services -- stateful orchestration over engines + kernel.  The plan is
    computed by ``payroll_engines.reconciliation`` (pure); this service
    applies it through ``SalaryLedger``.

Invariants enforced:
    - SAVEPOINT isolation per group: a failed group is rolled back alone
      and the scan continues.
    - Within a group the extra records are deleted before the primary is
      rewritten, so the unique (employee, period) key is never violated.
    - Records with unparseable periods are left exactly as they are.
    - Re-running after success is a no-op.

Failure modes:
    - LedgerUnavailableError if the initial scan or the final commit fails;
      the session is rolled back first.
    - Per-group failures are logged and reported in the result.
"""

from __future__ import annotations

import time
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from payroll_engines.reconciliation import GroupAction, plan_reconciliation
from payroll_kernel.domain.clock import Clock, SystemClock
from payroll_kernel.exceptions import LedgerUnavailableError, PayrollKernelError
from payroll_kernel.logging_config import LogContext, get_logger
from payroll_kernel.selectors.salary_selector import SalarySelector
from payroll_kernel.services.salary_ledger import SalaryLedger

logger = get_logger("services.reconciliation")


@dataclass(frozen=True)
class ReconciliationResult:
    records_scanned: int = 0
    migrated: int = 0
    merged_groups: int = 0
    deleted: int = 0
    unparseable: tuple[str, ...] = ()
    failed_groups: tuple[str, ...] = ()

    @property
    def is_success(self) -> bool:
        return not self.failed_groups

    @property
    def changed(self) -> bool:
        return bool(self.migrated or self.merged_groups)


class ReconciliationService:
    """
    Applies the reconciliation plan to the ledger.

    Contract:
        ``migrate_period_formats()`` commits on completion;
        ``is_migration_needed()`` only reads.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        ledger: SalaryLedger | None = None,
        selector: SalarySelector | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._ledger = ledger or SalaryLedger(session, self._clock)
        self._selector = selector or SalarySelector(session)

    def is_migration_needed(self) -> bool:
        """True if any record is non-canonical or any group has duplicates."""
        return not plan_reconciliation(self._selector.list_all()).is_empty

    def migrate_period_formats(self) -> ReconciliationResult:
        start_time = time.monotonic()
        records = self._selector.list_all()
        plan = plan_reconciliation(records)

        logger.info(
            "reconciliation_started",
            extra={
                "records_scanned": plan.records_scanned,
                "merge_groups": len(plan.merges),
                "rewrites": len(plan.rewrites),
                "unparseable": len(plan.unparseable),
            },
        )

        migrated = 0
        merged_groups = 0
        deleted = 0
        failed_groups: list[str] = []

        for action in plan.actions:
            group_label = f"{action.employee_id}/{action.period_key}"
            with LogContext.bind(employee_id=action.employee_id, period_key=action.period_key):
                savepoint = self._session.begin_nested()
                try:
                    self._apply(action)
                    savepoint.commit()
                except PayrollKernelError as exc:
                    savepoint.rollback()
                    failed_groups.append(group_label)
                    logger.error(
                        "merge_group_failed",
                        extra={
                            "group": group_label,
                            "error_code": exc.code,
                            "error": str(exc),
                        },
                    )
                    continue

            if action.is_merge:
                merged_groups += 1
                deleted += len(action.others)
            else:
                migrated += 1

        try:
            self._session.commit()
        except SQLAlchemyError as exc:
            self._session.rollback()
            raise LedgerUnavailableError("commit_reconciliation", str(exc)) from exc

        result = ReconciliationResult(
            records_scanned=plan.records_scanned,
            migrated=migrated,
            merged_groups=merged_groups,
            deleted=deleted,
            unparseable=tuple(sorted({r.period_key for r in plan.unparseable})),
            failed_groups=tuple(failed_groups),
        )
        logger.info(
            "reconciliation_finished",
            extra={
                "records_scanned": result.records_scanned,
                "migrated": result.migrated,
                "merged_groups": result.merged_groups,
                "deleted": result.deleted,
                "failed_groups": len(result.failed_groups),
                "duration_ms": round((time.monotonic() - start_time) * 1000, 2),
            },
        )
        return result

    def _apply(self, action: GroupAction) -> None:
        for other in action.others:
            self._ledger.delete(other.id)

        if action.is_merge:
            self._ledger.replace(action.primary.id, action.merged)
            logger.info(
                "salary_records_merged",
                extra={
                    "primary_id": str(action.primary.id),
                    "merged_ids": [str(o.id) for o in action.others],
                    "final_salary": str(action.merged.final_salary),
                },
            )
        else:
            self._ledger.rewrite_period(action.primary.id, action.period_key)
