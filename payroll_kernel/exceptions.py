"""
Typed Exception Hierarchy for the Payroll Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Batch operations (rollover, reconciliation) must decide per unit of work
whether to log-and-continue or to stop.  That decision is made by TYPE,
never by parsing messages:

    try:
        ledger.upsert(record)
    except LedgerUnavailableError as e:
        logger.error("salary_upsert_failed", extra={"code": e.code})
        # skip this employee, keep going

Every exception:
  1. Has a CODE class attribute (machine-readable, stable across releases)
  2. Carries structured DATA as attributes (employee_id, period_key, ...)
  3. Inherits from PayrollKernelError so callers can catch the family

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    PayrollKernelError (base)
    |
    +-- DataAccessError
    |   +-- DirectoryUnavailableError
    |   +-- LedgerUnavailableError
    |   +-- ClockUnavailableError
    |
    +-- ValidationError
    |   +-- InvalidPeriodKeyError
    |   +-- InvalidRecordError
    |   +-- InvalidCommissionRuleError
    |
    +-- ConcurrencyConflictError
    |   +-- DuplicateSalaryRecordError
    |   +-- RolloverAlreadyClaimedError
    |
    +-- EmployeeNotFoundError
    +-- SalaryRecordNotFoundError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                      | When Raised
-------------|---------------------------|------------------------------------------
Data access  | DIRECTORY_UNAVAILABLE     | Employee/trainee store query failed
             | LEDGER_UNAVAILABLE        | Salary ledger read/write failed
             | CLOCK_UNAVAILABLE         | Trusted clock could not be read
-------------|---------------------------|------------------------------------------
Validation   | INVALID_PERIOD_KEY        | Period string is not canonical/legacy form
             | INVALID_RECORD            | Directory/ledger row is malformed
             | INVALID_COMMISSION_RULE   | Commission config is neither % nor flat
-------------|---------------------------|------------------------------------------
Concurrency  | DUPLICATE_SALARY_RECORD   | >1 record for one (employee, period)
             | ROLLOVER_ALREADY_CLAIMED  | Another controller owns the period run
-------------|---------------------------|------------------------------------------
Lookup       | EMPLOYEE_NOT_FOUND        | Employee id not in the directory
             | SALARY_RECORD_NOT_FOUND   | Ledger record id does not exist

===============================================================================
PROPAGATION POLICY
===============================================================================

Errors are raised inside the kernel and caught at the unit-of-work
boundary by the rollover controller and reconciliation service.  The host
facade (payroll_services.compensation_service) never lets an exception
escape: it logs and returns a boolean, ``None`` or an empty list.
"""


class PayrollKernelError(Exception):
    """
    Base exception for all payroll kernel errors.

    All subclasses must have a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "PAYROLL_KERNEL_ERROR"


# Data access


class DataAccessError(PayrollKernelError):
    """A collaborator store or clock could not be reached."""

    code: str = "DATA_ACCESS_ERROR"


class DirectoryUnavailableError(DataAccessError):
    """Employee/trainee directory query failed."""

    code: str = "DIRECTORY_UNAVAILABLE"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Directory {operation} failed: {reason}")


class LedgerUnavailableError(DataAccessError):
    """Salary ledger read or write failed."""

    code: str = "LEDGER_UNAVAILABLE"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Salary ledger {operation} failed: {reason}")


class ClockUnavailableError(DataAccessError):
    """Trusted clock could not supply the current time."""

    code: str = "CLOCK_UNAVAILABLE"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Trusted clock unavailable: {reason}")


# Validation


class ValidationError(PayrollKernelError):
    """Input failed boundary validation."""

    code: str = "VALIDATION_ERROR"


class InvalidPeriodKeyError(ValidationError):
    """Period string is neither canonical ("January 2024") nor legacy ("2024-01")."""

    code: str = "INVALID_PERIOD_KEY"

    def __init__(self, value: str):
        self.value = value
        super().__init__(f"Unparseable period key: {value!r}")


class InvalidRecordError(ValidationError):
    """A directory or ledger row could not be turned into a typed record."""

    code: str = "INVALID_RECORD"

    def __init__(self, record_type: str, record_id: str, reason: str):
        self.record_type = record_type
        self.record_id = record_id
        self.reason = reason
        super().__init__(f"Invalid {record_type} {record_id}: {reason}")


class InvalidCommissionRuleError(ValidationError):
    """A commission rule must define exactly one of percentage or flat."""

    code: str = "INVALID_COMMISSION_RULE"

    def __init__(self, branch: str, reason: str):
        self.branch = branch
        self.reason = reason
        super().__init__(f"Invalid commission rule for branch {branch!r}: {reason}")


# Concurrency


class ConcurrencyConflictError(PayrollKernelError):
    """Two writers raced on the same key."""

    code: str = "CONCURRENCY_CONFLICT"


class DuplicateSalaryRecordError(ConcurrencyConflictError):
    """
    More than one salary record exists for one (employee, period).

    Raised by strict reads; resolved by the reconciliation merge.
    """

    code: str = "DUPLICATE_SALARY_RECORD"

    def __init__(self, employee_id: str, period_key: str, count: int):
        self.employee_id = employee_id
        self.period_key = period_key
        self.count = count
        super().__init__(
            f"{count} salary records for employee {employee_id} in {period_key}"
        )


class RolloverAlreadyClaimedError(ConcurrencyConflictError):
    """Another controller holds an unexpired claim on this period's rollover."""

    code: str = "ROLLOVER_ALREADY_CLAIMED"

    def __init__(self, period_key: str):
        self.period_key = period_key
        super().__init__(f"Rollover for {period_key} is already claimed")


# Lookup


class EmployeeNotFoundError(PayrollKernelError):
    """Employee id is not present in the directory."""

    code: str = "EMPLOYEE_NOT_FOUND"

    def __init__(self, employee_id: str):
        self.employee_id = employee_id
        super().__init__(f"Employee not found: {employee_id}")


class SalaryRecordNotFoundError(PayrollKernelError):
    """Ledger record id does not exist."""

    code: str = "SALARY_RECORD_NOT_FOUND"

    def __init__(self, record_id: str):
        self.record_id = record_id
        super().__init__(f"Salary record not found: {record_id}")
