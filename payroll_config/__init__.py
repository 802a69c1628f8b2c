"""
payroll_config -- single public entrypoint for compensation configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Engines and services receive the returned
    ``CompensationConfig`` through their constructors; nothing else reads
    configuration files.

Architecture position:
    Configuration -- sits above ``payroll_kernel`` and below
    ``payroll_engines`` / ``payroll_services``.  The kernel MUST NEVER
    import from ``payroll_config``.

Failure modes:
    - ``FileNotFoundError`` -- no configuration set with the requested name.
    - ``ValueError`` / ``InvalidCommissionRuleError`` -- validation failures.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``PAYROLL_CONFIG_TRACE`` log entry with the config id, version and
    checksum, tying each rollover to the configuration that priced it.
"""

from __future__ import annotations

import logging
from pathlib import Path

from payroll_config.loader import load_config_file
from payroll_config.schema import CommissionRule, CommissionTable, CompensationConfig

_logger = logging.getLogger("payroll_kernel.config")

# Default configuration sets directory
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"


def get_active_config(
    set_name: str = "default",
    config_dir: Path | None = None,
) -> CompensationConfig:
    """The ONLY public configuration entrypoint.

    Args:
        set_name: Name of the configuration set (``<set_name>.yaml``).
        config_dir: Override path to configuration sets directory.
            Defaults to payroll_config/sets/.

    Raises:
        FileNotFoundError: If no configuration set with that name exists.
        ValueError: If configuration validation fails.
    """
    sets_dir = Path(config_dir) if config_dir is not None else _DEFAULT_CONFIG_DIR
    path = sets_dir / f"{set_name}.yaml"
    if not path.is_file():
        raise FileNotFoundError(f"Configuration set not found: {path}")

    config = load_config_file(path)

    _logger.info(
        "PAYROLL_CONFIG_TRACE",
        extra={
            "trace_type": "PAYROLL_CONFIG_TRACE",
            "config_set_id": config.config_id,
            "config_set_version": config.version,
            "checksum": config.checksum,
            "branch_rule_count": len(config.commission.branches),
        },
    )
    return config


__all__ = [
    "CommissionRule",
    "CommissionTable",
    "CompensationConfig",
    "get_active_config",
]
