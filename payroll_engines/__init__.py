"""
Module: payroll_engines
Responsibility:
    Pure calculation engines: the monthly compensation calculator and the
    reconciliation planner/merger.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May import payroll_kernel domain values and payroll_config schema.
    MUST NOT import payroll_services.

Invariants enforced:
    - Purity: engines never read a clock; timestamps are parameters.
    - Decimal-only arithmetic for money.
"""

from payroll_engines.compensation import compute_salary
from payroll_engines.reconciliation import (
    GroupAction,
    ReconciliationPlan,
    merge_salary_records,
    plan_reconciliation,
    select_primary,
)

__all__ = [
    "GroupAction",
    "ReconciliationPlan",
    "compute_salary",
    "merge_salary_records",
    "plan_reconciliation",
    "select_primary",
]
