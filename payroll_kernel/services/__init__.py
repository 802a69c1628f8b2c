"""Kernel services: directory access, the salary ledger, the server clock."""

from payroll_kernel.services.directory_store import DirectoryStore, SqlDirectoryStore
from payroll_kernel.services.salary_ledger import SalaryLedger
from payroll_kernel.services.server_clock import ServerClock

__all__ = [
    "DirectoryStore",
    "SalaryLedger",
    "ServerClock",
    "SqlDirectoryStore",
]
