"""
Configuration Loader (``payroll_config.loader``).

Responsibility
--------------
Loads a YAML configuration set and parses it into the frozen
``payroll_config.schema`` dataclasses.  Runtime callers go through
``payroll_config.get_active_config()``; this module is the parsing step
behind it and is also used directly by tests.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` (or ``InvalidCommissionRuleError`` for
  commission rules) with descriptive messages.
* Money values are parsed to ``Decimal`` through ``str`` so YAML floats
  never leak binary rounding into salaries.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the source
  document.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from payroll_config.schema import (
    DEFAULT_ACTIVE_TRAINEE_STATUSES,
    CommissionRule,
    CommissionTable,
    CompensationConfig,
)
from payroll_kernel.domain.values import Role
from payroll_kernel.exceptions import InvalidCommissionRuleError


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file {path} must contain a mapping")
    return data


def parse_decimal(value: Any, name: str, *, minimum: Decimal | None = None) -> Decimal:
    """Parse a YAML scalar into a Decimal, optionally bounded below."""
    if isinstance(value, bool):
        raise ValueError(f"{name} must be a number, got {value!r}")
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"{name} must be a number, got {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"{name} must be finite, got {value!r}")
    if minimum is not None and result < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {result}")
    return result


def parse_positive_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f"{name} must be a positive integer, got {value!r}")
    return value


def parse_commission_rule(branch: str, data: Any) -> CommissionRule:
    """
    Parse ``{percentage: N}`` or ``{flat: N}``.

    Raises:
        InvalidCommissionRuleError: if neither or both keys are present, or
            the value is negative.
    """
    if not isinstance(data, dict):
        raise InvalidCommissionRuleError(branch, "rule must be a mapping")
    has_pct = "percentage" in data
    has_flat = "flat" in data
    if has_pct == has_flat:
        raise InvalidCommissionRuleError(branch, "exactly one of percentage or flat is required")

    key = "percentage" if has_pct else "flat"
    try:
        amount = parse_decimal(data[key], f"commission.branches.{branch}.{key}", minimum=Decimal("0"))
    except ValueError as exc:
        raise InvalidCommissionRuleError(branch, str(exc)) from exc

    if has_pct:
        return CommissionRule(percentage=amount)
    return CommissionRule(flat=amount)


def parse_commission_table(data: Any) -> CommissionTable:
    if data is None:
        return CommissionTable()
    if not isinstance(data, dict):
        raise ValueError("commission must be a mapping")

    default = parse_decimal(
        data.get("default", CommissionTable.default_percentage),
        "commission.default",
        minimum=Decimal("0"),
    )
    branches = data.get("branches") or {}
    if not isinstance(branches, dict):
        raise ValueError("commission.branches must be a mapping")

    return CommissionTable(
        default_percentage=default,
        branches=tuple(
            (str(name), parse_commission_rule(str(name), rule))
            for name, rule in sorted(branches.items(), key=lambda item: str(item[0]))
        ),
    )


def parse_roles(values: Any) -> frozenset[Role]:
    if not isinstance(values, list):
        raise ValueError("attendance_reset_roles must be a list")
    roles = set()
    for value in values:
        text = str(value).strip().lower().replace("-", "_").replace(" ", "_")
        try:
            roles.add(Role(text))
        except ValueError as exc:
            raise ValueError(f"Unknown role in attendance_reset_roles: {value!r}") from exc
    return frozenset(roles)


def parse_statuses(values: Any) -> frozenset[str]:
    if not isinstance(values, list) or not values:
        raise ValueError("active_trainee_statuses must be a non-empty list")
    return frozenset(str(v).strip().lower() for v in values)


def parse_timezone(value: Any) -> str:
    name = str(value)
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown period_timezone: {value!r}") from exc
    return name


def parse_config(data: dict[str, Any], config_id: str = "default") -> CompensationConfig:
    """
    Parse a configuration document into a ``CompensationConfig``.

    Missing keys take the schema defaults; present keys are validated.
    """
    defaults = CompensationConfig()
    statuses = data.get("active_trainee_statuses")
    roles = data.get("attendance_reset_roles")

    return CompensationConfig(
        config_id=str(data.get("config_id", config_id)),
        version=int(data.get("version", defaults.version)),
        admin_base_salary=parse_decimal(
            data.get("admin_base_salary", defaults.admin_base_salary),
            "admin_base_salary",
            minimum=Decimal("0"),
        ),
        default_working_days=parse_positive_int(
            data.get("default_working_days", defaults.default_working_days),
            "default_working_days",
        ),
        period_timezone=parse_timezone(data.get("period_timezone", defaults.period_timezone)),
        rollover_lease_seconds=parse_positive_int(
            data.get("rollover_lease_seconds", defaults.rollover_lease_seconds),
            "rollover_lease_seconds",
        ),
        active_trainee_statuses=(
            parse_statuses(statuses) if statuses is not None else DEFAULT_ACTIVE_TRAINEE_STATUSES
        ),
        attendance_reset_roles=(
            parse_roles(roles) if roles is not None else defaults.attendance_reset_roles
        ),
        commission=parse_commission_table(data.get("commission")),
        checksum=compute_checksum(data),
    )


def load_config_file(path: Path) -> CompensationConfig:
    return parse_config(load_yaml_file(path), config_id=path.stem)


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
