"""
Configuration validator (``docflow_config.validator``).

Checks the cross-field rules a parsed WorkflowConfig must satisfy before
it is handed out.  Collects every problem instead of stopping at the first,
so one run reports all of them.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from docflow_config.schema import WorkflowConfig


@dataclass
class ConfigValidationResult:
    """
    Result of configuration validation.

    ``is_valid`` is True only when ``errors`` is empty.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def validate_configuration(config: WorkflowConfig) -> ConfigValidationResult:
    result = ConfigValidationResult()
    _validate_lease(config, result)
    _validate_ledger(config, result)
    _validate_corrections(config, result)
    _validate_review_queue(config, result)
    if not config.database.url:
        result.add_error("database.url must not be empty")
    return result


def _validate_lease(config: WorkflowConfig, result: ConfigValidationResult) -> None:
    lease = config.lease
    if lease.stale_threshold_seconds <= 0:
        result.add_error("lease.stale_threshold_seconds must be positive")
    if lease.heartbeat_interval_seconds <= 0:
        result.add_error("lease.heartbeat_interval_seconds must be positive")
    if lease.heartbeat_interval_seconds >= lease.stale_threshold_seconds:
        result.add_error(
            "lease.heartbeat_interval_seconds must be below "
            "lease.stale_threshold_seconds"
        )
    elif lease.heartbeat_interval_seconds * 2 > lease.stale_threshold_seconds:
        # One lost heartbeat is then enough to lose the lease.
        result.add_warning(
            "lease.heartbeat_interval_seconds is more than half the stale threshold"
        )


def _validate_ledger(config: WorkflowConfig, result: ConfigValidationResult) -> None:
    ledger = config.ledger
    if len(ledger.currency) != 3 or not ledger.currency.isalpha():
        result.add_error(f"ledger.currency must be an ISO 4217 code, got {ledger.currency!r}")
    if not 0 <= ledger.decimal_places <= 2:
        result.add_error("ledger.decimal_places must be between 0 and 2")
    if ledger.min_note_length < 1:
        result.add_error("ledger.min_note_length must be at least 1")


def _validate_corrections(config: WorkflowConfig, result: ConfigValidationResult) -> None:
    if not config.corrections.number_infix.strip():
        result.add_error("corrections.number_infix must not be empty")


def _validate_review_queue(config: WorkflowConfig, result: ConfigValidationResult) -> None:
    queue = config.review_queue
    if queue.default_limit < 1:
        result.add_error("review_queue.default_limit must be positive")
    if queue.max_limit < 1:
        result.add_error("review_queue.max_limit must be positive")
    if queue.default_limit > queue.max_limit:
        result.add_error("review_queue.default_limit must not exceed max_limit")
