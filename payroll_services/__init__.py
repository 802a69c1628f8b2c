"""
payroll_services -- orchestration of the payroll core.

Composes the pure engines with kernel I/O and owns transaction boundaries:
the rollover controller, the reconciliation service, and the host facade
``CompensationService``.
"""

from payroll_services.compensation_service import CompensationService
from payroll_services.reconciliation_service import (
    ReconciliationResult,
    ReconciliationService,
)
from payroll_services.rollover_controller import (
    RolloverController,
    RolloverResult,
    RolloverStatus,
)

__all__ = [
    "CompensationService",
    "ReconciliationResult",
    "ReconciliationService",
    "RolloverController",
    "RolloverResult",
    "RolloverStatus",
]
