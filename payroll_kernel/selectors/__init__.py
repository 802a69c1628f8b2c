"""Read-only selectors over payroll data."""

from payroll_kernel.selectors.salary_selector import SalarySelector

__all__ = ["SalarySelector"]
