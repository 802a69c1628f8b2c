"""
Payroll Kernel

The persistence and domain core of coaching-staff compensation:
- Typed employee, trainee and salary records
- Canonical payroll period keys
- A salary ledger holding at most one record per employee per period
- Injectable trusted clock
"""

__version__ = "0.1.0"
