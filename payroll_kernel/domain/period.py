"""
Payroll period keys.

Responsibility:
    Parses, normalizes and orders the string keys that identify one payroll
    month.  The canonical form is ``"<Month> <YYYY>"`` with the English month
    name ("January 2024").  Historical ledger rows may carry the legacy
    numeric form ``"YYYY-MM"`` ("2024-01"); both parse to the same
    ``PeriodKey`` and therefore to the same canonical string.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Invariants enforced:
    - ``PeriodKey.parse(s).canonical`` is idempotent:
      ``PeriodKey.parse(PeriodKey.parse(s).canonical) == PeriodKey.parse(s)``.
    - PeriodKey is totally ordered by calendar date (year, month).

Failure modes:
    - InvalidPeriodKeyError for anything that is not a legacy or month-name key.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from zoneinfo import ZoneInfo

from payroll_kernel.exceptions import InvalidPeriodKeyError

MONTH_NAMES: tuple[str, ...] = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)

_MONTH_LOOKUP: dict[str, int] = {}
for _number, _name in enumerate(MONTH_NAMES, start=1):
    _MONTH_LOOKUP[_name.lower()] = _number
    _MONTH_LOOKUP[_name[:3].lower()] = _number
_MONTH_LOOKUP["sept"] = 9

_LEGACY_PATTERN = re.compile(r"^(\d{4})-(\d{2})$")
_NAMED_PATTERN = re.compile(r"^([A-Za-z]+)\.?\s+(\d{4})$")


@dataclass(frozen=True, order=True)
class PeriodKey:
    """One calendar month, ordered by (year, month)."""

    year: int
    month: int

    def __post_init__(self):
        if not 1 <= self.month <= 12:
            raise InvalidPeriodKeyError(f"{self.year:04d}-{self.month:02d}")
        if not 1 <= self.year <= 9999:
            raise InvalidPeriodKeyError(f"{self.year:04d}-{self.month:02d}")

    @classmethod
    def parse(cls, value: str) -> PeriodKey:
        """
        Parse a canonical, legacy or lenient month-name key.

        Accepts "January 2024", "january 2024", "Jan 2024" and "2024-01".

        Raises:
            InvalidPeriodKeyError: If the value matches none of those forms.
        """
        if not isinstance(value, str):
            raise InvalidPeriodKeyError(repr(value))
        text = value.strip()

        legacy = _LEGACY_PATTERN.match(text)
        if legacy:
            year, month = int(legacy.group(1)), int(legacy.group(2))
            if not 1 <= month <= 12:
                raise InvalidPeriodKeyError(value)
            return cls(year, month)

        named = _NAMED_PATTERN.match(text)
        if named:
            month = _MONTH_LOOKUP.get(named.group(1).lower())
            if month is None:
                raise InvalidPeriodKeyError(value)
            return cls(int(named.group(2)), month)

        raise InvalidPeriodKeyError(value)

    @classmethod
    def from_datetime(cls, moment: datetime, tz: str = "UTC") -> PeriodKey:
        """The period containing ``moment`` as seen in timezone ``tz``."""
        local = moment.astimezone(ZoneInfo(tz)) if moment.tzinfo else moment
        return cls(local.year, local.month)

    @property
    def canonical(self) -> str:
        return f"{MONTH_NAMES[self.month - 1]} {self.year:04d}"

    @property
    def legacy(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    def next(self) -> PeriodKey:
        if self.month == 12:
            return PeriodKey(self.year + 1, 1)
        return PeriodKey(self.year, self.month + 1)

    def previous(self) -> PeriodKey:
        if self.month == 1:
            return PeriodKey(self.year - 1, 12)
        return PeriodKey(self.year, self.month - 1)

    def __str__(self) -> str:
        return self.canonical


def normalize_period_key(value: str) -> str:
    """
    Return the canonical string for ``value``.

    Raises:
        InvalidPeriodKeyError: If ``value`` cannot be parsed.
    """
    return PeriodKey.parse(value).canonical


def is_legacy_period_key(value: str) -> bool:
    """True if ``value`` uses the numeric ``YYYY-MM`` form."""
    return isinstance(value, str) and bool(_LEGACY_PATTERN.match(value.strip()))


def period_sort_key(value: str) -> tuple[int, int, int, str]:
    """
    Sort key placing parseable periods in calendar order and unparseable
    strings after them (alphabetically).
    """
    try:
        key = PeriodKey.parse(value)
    except InvalidPeriodKeyError:
        return (1, 0, 0, value)
    return (0, key.year, key.month, "")
