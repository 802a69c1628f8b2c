"""
Compensation configuration schema.

Frozen dataclasses produced by ``payroll_config.loader`` from a YAML
configuration set.  These are the only configuration types the engines
and services see.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from payroll_kernel.db.types import HUNDRED, ZERO
from payroll_kernel.domain.values import Role

# ---------------------------------------------------------------------------
# Commission
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CommissionRule:
    """
    How a coach is paid for one trainee in a branch.

    Exactly one of ``percentage`` (of the trainee's fee) or ``flat`` (fixed
    amount per trainee) is set; the loader rejects anything else.
    """

    percentage: Decimal | None = None
    flat: Decimal | None = None

    @property
    def is_flat(self) -> bool:
        return self.flat is not None

    def commission(self, fee: Decimal) -> Decimal:
        """Unrounded coach share of ``fee``."""
        if self.flat is not None:
            return self.flat
        return fee * (self.percentage or ZERO) / HUNDRED


@dataclass(frozen=True)
class CommissionTable:
    """
    Branch -> commission rule, with a default percentage for unknown branches.

    Branch names are matched after trimming and case-folding.
    """

    default_percentage: Decimal = Decimal("40")
    branches: tuple[tuple[str, CommissionRule], ...] = ()

    def rule_for(self, branch: str | None) -> CommissionRule:
        wanted = (branch or "").strip().casefold()
        for name, rule in self.branches:
            if name.strip().casefold() == wanted:
                return rule
        return CommissionRule(percentage=self.default_percentage)

    def commission(self, branch: str | None, fee: Decimal) -> Decimal:
        return self.rule_for(branch).commission(fee)


# ---------------------------------------------------------------------------
# Compensation configuration set
# ---------------------------------------------------------------------------


# "academy and preparatonal" is the spelling stored by existing host data.
DEFAULT_ACTIVE_TRAINEE_STATUSES = frozenset(
    {"active", "academy", "team", "academy and preparatory", "academy and preparatonal"}
)


@dataclass(frozen=True)
class CompensationConfig:
    """
    One loaded configuration set.

    ``checksum`` is the SHA-256 of the canonical source document and
    identifies the exact configuration that governed a rollover.
    """

    config_id: str = "default"
    version: int = 1
    admin_base_salary: Decimal = Decimal("2000")
    default_working_days: int = 30
    period_timezone: str = "UTC"
    rollover_lease_seconds: int = 600
    active_trainee_statuses: frozenset[str] = DEFAULT_ACTIVE_TRAINEE_STATUSES
    attendance_reset_roles: frozenset[Role] = frozenset({Role.ADMIN, Role.COACH})
    commission: CommissionTable = field(default_factory=CommissionTable)
    checksum: str = ""
