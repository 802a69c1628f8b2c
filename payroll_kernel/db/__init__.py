"""Database layer - engine, base classes, and column types."""

from payroll_kernel.db.base import UUID, Base, TimestampedBase, UUIDString
from payroll_kernel.db.engine import create_tables, get_engine, get_session
from payroll_kernel.db.types import Money, Percentage, ShortCode

__all__ = [
    "get_engine",
    "get_session",
    "create_tables",
    "Base",
    "TimestampedBase",
    "UUIDString",
    "UUID",
    "Money",
    "Percentage",
    "ShortCode",
]
