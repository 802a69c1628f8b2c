"""
payroll_services.compensation_service -- Host-facing payroll facade.

Responsibility:
    The single object the host application talks to.  Wires the rollover
    controller, reconciliation service, salary selector and ledger over one
    session, and converts every failure into a plain return value so that
    an activation hook or a screen can never be broken by payroll errors.

Architecture position:
    Services -- outermost layer of the payroll core.

Failure modes:
    - None escape.  Mutating operations return ``False``, lookups return
      ``None`` or an empty list; the cause is logged with ``exc_info``.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.orm import Session

from payroll_config import get_active_config
from payroll_config.schema import CompensationConfig
from payroll_kernel.domain.clock import Clock
from payroll_kernel.domain.values import SalaryRecord
from payroll_kernel.logging_config import get_logger
from payroll_kernel.selectors.salary_selector import SalarySelector
from payroll_kernel.services.directory_store import DirectoryStore, SqlDirectoryStore
from payroll_kernel.services.salary_ledger import SalaryLedger
from payroll_kernel.services.server_clock import ServerClock
from payroll_services.reconciliation_service import (
    ReconciliationResult,
    ReconciliationService,
)
from payroll_services.rollover_controller import RolloverController, RolloverResult

logger = get_logger("services.compensation")

T = TypeVar("T")


class CompensationService:
    """
    Facade over the payroll core for one host session.

    Args:
        session: Session the host owns; the facade commits on its behalf
            after successful writes and rolls back after failures.
        directory: Staff directory; defaults to the SQL directory tables.
        clock: Trusted clock; defaults to the database server clock.
        config: Compensation configuration; defaults to the active set.
    """

    def __init__(
        self,
        session: Session,
        directory: DirectoryStore | None = None,
        clock: Clock | None = None,
        config: CompensationConfig | None = None,
    ):
        self._session = session
        self._clock = clock or ServerClock(session)
        self._config = config or get_active_config()
        self._directory = directory or SqlDirectoryStore(session)
        self._ledger = SalaryLedger(session, self._clock)
        self._selector = SalarySelector(session)
        self._rollover = RolloverController(
            session,
            self._directory,
            self._clock,
            self._config,
            ledger=self._ledger,
            selector=self._selector,
        )
        self._reconciliation = ReconciliationService(
            session, self._clock, ledger=self._ledger, selector=self._selector
        )
        self.last_rollover: RolloverResult | None = None
        self.last_reconciliation: ReconciliationResult | None = None

    def _guard(self, operation: str, default: T, func: Callable[[], T]) -> T:
        try:
            return func()
        except Exception as exc:
            self._session.rollback()
            logger.error(
                "payroll_operation_failed",
                extra={
                    "operation": operation,
                    "error_code": getattr(exc, "code", "UNHANDLED_EXCEPTION"),
                    "error": str(exc),
                },
                exc_info=True,
            )
            return default

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def trigger_rollover_if_needed(self) -> bool:
        """Run the monthly rollover if the current period is stale."""

        def run() -> bool:
            self.last_rollover = self._rollover.trigger_rollover_if_needed()
            return self.last_rollover.is_success

        return self._guard("trigger_rollover_if_needed", False, run)

    def recalculate_for_employee(self, employee_id: str) -> bool:
        return self._guard(
            "recalculate_for_employee",
            False,
            lambda: self._rollover.recalculate_for_employee(employee_id),
        )

    def migrate_period_formats(self) -> bool:
        def run() -> bool:
            self.last_reconciliation = self._reconciliation.migrate_period_formats()
            return self.last_reconciliation.is_success

        return self._guard("migrate_period_formats", False, run)

    def mark_paid(self, employee_id: str, period_key: str, paid: bool = True) -> bool:
        def run() -> bool:
            self._ledger.mark_paid(employee_id, period_key, paid)
            self._session.commit()
            return True

        return self._guard("mark_paid", False, run)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def is_migration_needed(self) -> bool:
        return self._guard(
            "is_migration_needed", False, self._reconciliation.is_migration_needed
        )

    def get_salary(self, employee_id: str, period_key: str) -> SalaryRecord | None:
        return self._guard(
            "get_salary", None, lambda: self._selector.find(employee_id, period_key)
        )

    def list_salaries_for_period(self, period_key: str) -> list[SalaryRecord]:
        return self._guard(
            "list_salaries_for_period",
            [],
            lambda: self._selector.list_for_period(period_key),
        )

    def list_available_periods(self) -> list[str]:
        return self._guard(
            "list_available_periods", [], self._selector.list_available_periods
        )

    def list_all_salaries(self) -> list[SalaryRecord]:
        return self._guard("list_all_salaries", [], self._selector.list_all)
