"""
SalarySelector -- read path of the salary ledger.

Responsibility:
    Lookups and listings over ``salary_records`` for the host (history,
    monthly reports, period pickers) and for the rollover controller's
    staleness check.

Architecture position:
    Kernel > Selectors -- read-only.  Writes go through
    ``payroll_kernel.services.salary_ledger.SalaryLedger``.

Failure modes:
    - LedgerUnavailableError wraps any SQLAlchemyError.
    - InvalidPeriodKeyError if a lookup is given an unparseable period.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from payroll_kernel.domain.period import PeriodKey, period_sort_key
from payroll_kernel.domain.values import SalaryRecord
from payroll_kernel.exceptions import InvalidPeriodKeyError, LedgerUnavailableError
from payroll_kernel.logging_config import get_logger
from payroll_kernel.models.salary import SalaryRecordModel
from payroll_kernel.selectors.base import BaseSelector

logger = get_logger("selectors.salary")


class SalarySelector(BaseSelector[SalaryRecordModel]):
    """
    Read-only queries over the salary ledger.

    Guarantees:
        - Period arguments are normalized before querying, so "2024-01" and
          "January 2024" find the same rows.
        - Returned values are frozen ``SalaryRecord`` DTOs.
    """

    def find(self, employee_id: str, period_key: str) -> SalaryRecord | None:
        """
        The record for (employee, period), or None.

        Rows still stored under the legacy key are found too; if both forms
        exist (reconciliation pending) the canonical row wins.
        """
        period = PeriodKey.parse(period_key)
        try:
            models = self.session.execute(
                select(SalaryRecordModel).where(
                    SalaryRecordModel.employee_id == employee_id,
                    SalaryRecordModel.period_key.in_([period.canonical, period.legacy]),
                )
            ).scalars().all()
        except SQLAlchemyError as exc:
            raise LedgerUnavailableError("find", str(exc)) from exc
        records = _one_per_employee(models, period)
        return records[0] if records else None

    def get(self, record_id) -> SalaryRecord | None:
        try:
            model = self.session.get(SalaryRecordModel, record_id)
        except SQLAlchemyError as exc:
            raise LedgerUnavailableError("get", str(exc)) from exc
        return model.to_dto() if model is not None else None

    def list_for_period(self, period_key: str) -> list[SalaryRecord]:
        """All records of one period (either key form), ordered by employee name then id."""
        period = PeriodKey.parse(period_key)
        try:
            models = self.session.execute(
                select(SalaryRecordModel)
                .where(SalaryRecordModel.period_key.in_([period.canonical, period.legacy]))
                .order_by(SalaryRecordModel.employee_name, SalaryRecordModel.employee_id)
            ).scalars().all()
        except SQLAlchemyError as exc:
            raise LedgerUnavailableError("list_for_period", str(exc)) from exc

        records = _one_per_employee(models, period)
        logger.debug(
            "salaries_listed_for_period",
            extra={"period_key": period.canonical, "count": len(records)},
        )
        return records

    def list_all(self) -> list[SalaryRecord]:
        """Every record: newest period first, then by employee name."""
        try:
            models = self.session.execute(select(SalaryRecordModel)).scalars().all()
        except SQLAlchemyError as exc:
            raise LedgerUnavailableError("list_all", str(exc)) from exc

        records = [m.to_dto() for m in models]
        records.sort(key=lambda r: (r.employee_name, r.employee_id))
        return _sort_newest_period_first(records)

    def has_records_for_period(self, period_key: str) -> bool:
        """True if any record exists for the period, in canonical or legacy form."""
        period = PeriodKey.parse(period_key)
        try:
            found = self.session.execute(
                select(SalaryRecordModel.id)
                .where(SalaryRecordModel.period_key.in_([period.canonical, period.legacy]))
                .limit(1)
            ).first()
        except SQLAlchemyError as exc:
            raise LedgerUnavailableError("has_records_for_period", str(exc)) from exc
        return found is not None

    def list_available_periods(self) -> list[str]:
        """
        Distinct periods present in the ledger, newest first.

        Legacy keys are reported in canonical form; keys that cannot be
        parsed at all are listed last, unchanged.
        """
        try:
            raw = self.session.execute(
                select(SalaryRecordModel.period_key).distinct()
            ).scalars().all()
        except SQLAlchemyError as exc:
            raise LedgerUnavailableError("list_available_periods", str(exc)) from exc

        parsed: set[PeriodKey] = set()
        unparseable: set[str] = set()
        for value in raw:
            try:
                parsed.add(PeriodKey.parse(value))
            except InvalidPeriodKeyError:
                unparseable.add(value)

        return [p.canonical for p in sorted(parsed, reverse=True)] + sorted(unparseable)


def _sort_newest_period_first(records: list[SalaryRecord]) -> list[SalaryRecord]:
    """Stable sort: parseable periods newest first, unparseable last."""
    parseable = [r for r in records if period_sort_key(r.period_key)[0] == 0]
    rest = [r for r in records if period_sort_key(r.period_key)[0] == 1]
    parseable.sort(key=lambda r: period_sort_key(r.period_key), reverse=True)
    rest.sort(key=lambda r: r.period_key)
    return parseable + rest


def _one_per_employee(models, period: PeriodKey) -> list[SalaryRecord]:
    """Collapse canonical/legacy pairs, keeping the canonical row and input order."""
    chosen: dict[str, SalaryRecordModel] = {}
    for model in models:
        held = chosen.get(model.employee_id)
        if held is None or (
            held.period_key != period.canonical and model.period_key == period.canonical
        ):
            chosen[model.employee_id] = model
    return [m.to_dto() for m in chosen.values()]
