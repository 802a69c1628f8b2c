"""
SalaryLedger -- the sole write path for salary records.

Responsibility:
    Persists computed ``SalaryRecord`` values and applies the structural
    edits the reconciliation engine needs (replace, period rewrite, delete),
    plus toggling the payout flag.

Architecture position:
    Kernel > Services.  Reads live in
    ``payroll_kernel.selectors.salary_selector.SalarySelector``.

Invariants enforced:
    - At most one record per (employee_id, canonical period_key).  The
      unique constraint is the backstop; ``upsert`` is a single atomic
      ``INSERT ... ON CONFLICT DO UPDATE`` on PostgreSQL and SQLite so two
      concurrent recomputes for the same key can never both insert.
    - Period keys are normalized to canonical form on every write; a row
      still under the legacy key of the written period is adopted, never
      duplicated.
    - ``is_paid``, ``id`` and ``created_at`` survive a recompute.

Failure modes:
    - LedgerUnavailableError wraps SQLAlchemy errors.
    - InvalidPeriodKeyError if a record carries an unparseable period.
    - SalaryRecordNotFoundError for edits of a missing id.
    - DuplicateSalaryRecordError if an edit would collide with another row.

Audit relevance:
    Every write logs a structured event with employee and period.
"""

from __future__ import annotations

from dataclasses import replace as dc_replace
from typing import Any

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from payroll_kernel.domain.clock import Clock, SystemClock
from payroll_kernel.domain.period import PeriodKey
from payroll_kernel.domain.values import SalaryRecord
from payroll_kernel.exceptions import (
    DuplicateSalaryRecordError,
    LedgerUnavailableError,
    SalaryRecordNotFoundError,
)
from payroll_kernel.logging_config import get_logger
from payroll_kernel.models.salary import SalaryRecordModel
from payroll_kernel.services.base import BaseService

logger = get_logger("services.salary_ledger")

_CONFLICT_COLUMNS = ("employee_id", "period_key")

_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class SalaryLedger(BaseService[SalaryRecordModel]):
    """
    Write path of the salary ledger.

    Contract:
        Flush-only; the caller owns commit and rollback.  Callers that need
        per-item isolation wrap calls in ``session.begin_nested()``.

    Guarantees:
        - ``upsert`` returns the stored record, including its id.
        - Recomputing the same inputs twice leaves the ledger unchanged
          apart from ``updated_at``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Upsert
    # ------------------------------------------------------------------

    def upsert(self, record: SalaryRecord) -> SalaryRecord:
        """
        Insert or overwrite the record for (employee, period).

        A row still stored under the legacy key of the same period is
        adopted first: moved onto the canonical key, or dropped in favour
        of an existing canonical row (its payout flag carried over).

        Preconditions:
            ``record.period_key`` parses as a period key.

        Postconditions:
            Exactly one row exists for the employee and period, in either
            key form, carrying the computed fields of ``record``.
        """
        period = PeriodKey.parse(record.period_key)
        canonical = period.canonical
        record = dc_replace(record, period_key=canonical)
        now = self._clock.now()

        try:
            legacy_paid = self._adopt_legacy(record.employee_id, period, now)

            dialect = self.session.get_bind().dialect.name
            insert = _DIALECT_INSERTS.get(dialect)
            if insert is not None:
                record_id = self._upsert_on_conflict(insert, record, now)
            else:
                record_id = self._upsert_locked(record, now)

            model = self.session.execute(
                select(SalaryRecordModel)
                .where(SalaryRecordModel.id == record_id)
                .execution_options(populate_existing=True)
            ).scalar_one()
            if legacy_paid and not model.is_paid:
                model.is_paid = True
                self.session.flush()
        except SQLAlchemyError as exc:
            raise LedgerUnavailableError("upsert", str(exc)) from exc

        logger.info(
            "salary_upserted",
            extra={
                "employee_id": record.employee_id,
                "period_key": canonical,
                "record_id": str(model.id),
                "final_salary": str(model.final_salary),
            },
        )
        return model.to_dto()

    def _adopt_legacy(self, employee_id: str, period: PeriodKey, now) -> bool:
        """
        Fold a legacy-keyed row of ``period`` into the canonical key.

        Returns True if a paid legacy row was dropped because a canonical
        row already existed.
        """
        rows = self.session.execute(
            select(SalaryRecordModel)
            .where(
                SalaryRecordModel.employee_id == employee_id,
                SalaryRecordModel.period_key.in_([period.canonical, period.legacy]),
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()

        legacy = next((m for m in rows if m.period_key == period.legacy), None)
        if legacy is None:
            return False

        if any(m.period_key == period.canonical for m in rows):
            paid, legacy_id = legacy.is_paid, legacy.id
            self.session.delete(legacy)
            self.session.flush()
            logger.info(
                "salary_legacy_duplicate_dropped",
                extra={
                    "record_id": str(legacy_id),
                    "employee_id": employee_id,
                    "period_key": period.canonical,
                },
            )
            return paid

        legacy.period_key = period.canonical
        legacy.updated_at = now
        self.session.flush()
        logger.info(
            "salary_legacy_period_adopted",
            extra={
                "record_id": str(legacy.id),
                "employee_id": employee_id,
                "from_period": period.legacy,
                "to_period": period.canonical,
            },
        )
        return False

    def _upsert_on_conflict(self, insert, record: SalaryRecord, now) -> Any:
        values = SalaryRecordModel.column_values(record)
        updates = {k: v for k, v in values.items() if k not in _CONFLICT_COLUMNS}
        updates["updated_at"] = now

        stmt = (
            insert(SalaryRecordModel)
            .values(**values, is_paid=False, created_at=now, updated_at=now)
            .on_conflict_do_update(index_elements=list(_CONFLICT_COLUMNS), set_=updates)
            .returning(SalaryRecordModel.id)
        )
        return self.session.execute(stmt).scalar_one()

    def _upsert_locked(self, record: SalaryRecord, now) -> Any:
        """SELECT ... FOR UPDATE then insert, for dialects without ON CONFLICT."""
        model = self._lock_existing(record)
        if model is None:
            savepoint = self.session.begin_nested()
            try:
                model = SalaryRecordModel(
                    **SalaryRecordModel.column_values(record),
                    is_paid=False,
                    created_at=now,
                    updated_at=now,
                )
                self.session.add(model)
                self.session.flush()
                savepoint.commit()
                return model.id
            except IntegrityError:
                # Another writer inserted the key first.
                logger.debug(
                    "salary_upsert_race_retry",
                    extra={
                        "employee_id": record.employee_id,
                        "period_key": record.period_key,
                    },
                )
                savepoint.rollback()
                model = self._lock_existing(record)
                if model is None:
                    raise

        for key, value in SalaryRecordModel.column_values(record).items():
            setattr(model, key, value)
        model.updated_at = now
        self.session.flush()
        return model.id

    def _lock_existing(self, record: SalaryRecord) -> SalaryRecordModel | None:
        return self.session.execute(
            select(SalaryRecordModel)
            .where(
                SalaryRecordModel.employee_id == record.employee_id,
                SalaryRecordModel.period_key == record.period_key,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    # ------------------------------------------------------------------
    # Reconciliation edits
    # ------------------------------------------------------------------

    def replace(self, record_id, record: SalaryRecord) -> SalaryRecord:
        """
        Overwrite every computed field of ``record_id`` with ``record``.

        ``is_paid`` is taken from ``record``; ``created_at`` is kept.
        """
        model = self._get_model(record_id)
        canonical = PeriodKey.parse(record.period_key).canonical
        values = SalaryRecordModel.column_values(dc_replace(record, period_key=canonical))

        for key, value in values.items():
            setattr(model, key, value)
        model.is_paid = record.is_paid
        model.updated_at = self._clock.now()
        self._flush("replace", model.employee_id, canonical)

        logger.info(
            "salary_replaced",
            extra={
                "record_id": str(record_id),
                "employee_id": model.employee_id,
                "period_key": canonical,
            },
        )
        return model.to_dto()

    def rewrite_period(self, record_id, period_key: str) -> SalaryRecord:
        """Move a record to the canonical form of ``period_key``."""
        model = self._get_model(record_id)
        canonical = PeriodKey.parse(period_key).canonical
        previous = model.period_key

        model.period_key = canonical
        model.updated_at = self._clock.now()
        self._flush("rewrite_period", model.employee_id, canonical)

        logger.info(
            "salary_period_rewritten",
            extra={
                "record_id": str(record_id),
                "from_period": previous,
                "to_period": canonical,
            },
        )
        return model.to_dto()

    def delete(self, record_id) -> None:
        model = self._get_model(record_id)
        employee_id, period_key = model.employee_id, model.period_key
        try:
            self.session.delete(model)
            self.session.flush()
        except SQLAlchemyError as exc:
            raise LedgerUnavailableError("delete", str(exc)) from exc

        logger.info(
            "salary_deleted",
            extra={
                "record_id": str(record_id),
                "employee_id": employee_id,
                "period_key": period_key,
            },
        )

    # ------------------------------------------------------------------
    # Payout flag
    # ------------------------------------------------------------------

    def mark_paid(self, employee_id: str, period_key: str, paid: bool = True) -> SalaryRecord:
        period = PeriodKey.parse(period_key)
        canonical = period.canonical
        try:
            rows = self.session.execute(
                select(SalaryRecordModel).where(
                    SalaryRecordModel.employee_id == employee_id,
                    SalaryRecordModel.period_key.in_([canonical, period.legacy]),
                )
            ).scalars().all()
        except SQLAlchemyError as exc:
            raise LedgerUnavailableError("mark_paid", str(exc)) from exc
        # Canonical row first when reconciliation has not merged the pair yet.
        model = min(rows, key=lambda m: m.period_key != canonical, default=None)
        if model is None:
            raise SalaryRecordNotFoundError(f"{employee_id}/{canonical}")

        model.is_paid = paid
        model.updated_at = self._clock.now()
        self._flush("mark_paid", employee_id, canonical)

        logger.info(
            "salary_paid_flag_set",
            extra={"employee_id": employee_id, "period_key": canonical, "is_paid": paid},
        )
        return model.to_dto()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get_model(self, record_id) -> SalaryRecordModel:
        try:
            model = self.session.get(SalaryRecordModel, record_id)
        except SQLAlchemyError as exc:
            raise LedgerUnavailableError("get", str(exc)) from exc
        if model is None:
            raise SalaryRecordNotFoundError(str(record_id))
        return model

    def _flush(self, operation: str, employee_id: str, period_key: str) -> None:
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise DuplicateSalaryRecordError(employee_id, period_key, 2) from exc
        except SQLAlchemyError as exc:
            raise LedgerUnavailableError(operation, str(exc)) from exc
