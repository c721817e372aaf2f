"""
docflow_config -- single public entrypoint for workflow configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files
    directly; services receive plain values (thresholds, currency, infix)
    through their constructors.

Architecture position:
    Configuration -- sits above ``docflow_kernel`` and below
    ``docflow_services``.  The kernel never imports from ``docflow_config``.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - A configuration must pass ``validate_configuration`` before it is
      returned (heartbeat cadence below the stale threshold, positive
      limits, non-empty correction infix).
    - Same YAML always produces the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- the requested configuration file is missing.
    - ``ValueError`` -- unknown keys or validation failures.

Every successful ``get_active_config()`` call emits a ``DOCFLOW_CONFIG_TRACE``
log entry with the config id, version and checksum.
"""

from __future__ import annotations

from pathlib import Path

from docflow_config.loader import load_config_file
from docflow_config.schema import (
    CorrectionSettings,
    DatabaseSettings,
    LeaseSettings,
    LedgerSettings,
    ReviewQueueSettings,
    WorkflowConfig,
)
from docflow_config.validator import ConfigValidationResult, validate_configuration
from docflow_kernel.logging_config import get_logger

_logger = get_logger("config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(config_path: Path | str | None = None) -> WorkflowConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: Override path to a configuration set.  Defaults to
            docflow_config/sets/default.yaml.

    Returns:
        A validated, frozen WorkflowConfig.

    Raises:
        FileNotFoundError: If the configuration file does not exist.
        ValueError: If parsing or validation fails.
    """
    path = Path(config_path) if config_path is not None else _DEFAULT_CONFIG_PATH
    if not path.is_file():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    config = load_config_file(path)

    validation = validate_configuration(config)
    if not validation.is_valid:
        raise ValueError(
            "Configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in validation.errors)
        )
    for warning in validation.warnings:
        _logger.warning("config_warning", extra={"config_id": config.config_id, "warning": warning})

    _logger.info(
        "DOCFLOW_CONFIG_TRACE",
        extra={
            "trace_type": "DOCFLOW_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "stale_threshold_seconds": config.lease.stale_threshold_seconds,
            "heartbeat_interval_seconds": config.lease.heartbeat_interval_seconds,
            "currency": config.ledger.currency,
        },
    )
    return config


__all__ = [
    "ConfigValidationResult",
    "CorrectionSettings",
    "DatabaseSettings",
    "LeaseSettings",
    "LedgerSettings",
    "ReviewQueueSettings",
    "WorkflowConfig",
    "get_active_config",
    "validate_configuration",
]
