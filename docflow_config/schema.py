"""
WorkflowConfig schema.

The typed form of a configuration set: YAML sections are parsed into these
frozen dataclasses by the loader, checked by the validator, and handed out
by ``get_active_config()``.  Services take plain values from here through
their constructors; nothing below this package reads configuration.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class LeaseSettings:
    """Review lease timing."""

    stale_threshold_seconds: float = 5.0
    heartbeat_interval_seconds: float = 0.8


@dataclass(frozen=True)
class LedgerSettings:
    """Balance ledger currency and precision."""

    currency: str = "PLN"
    decimal_places: int = 2
    min_note_length: int = 5


@dataclass(frozen=True)
class CorrectionSettings:
    """Correction document numbering: ``<original>-<infix>-<n>``."""

    number_infix: str = "KOREKTA"


@dataclass(frozen=True)
class ReviewQueueSettings:
    """Pagination of the review queue."""

    default_limit: int = 50
    max_limit: int = 100


@dataclass(frozen=True)
class DatabaseSettings:
    url: str = "sqlite:///docflow.db"
    echo: bool = False


@dataclass(frozen=True)
class WorkflowConfig:
    """
    A complete, validated configuration set.

    ``checksum`` is the SHA-256 of the canonical JSON of the source data and
    identifies the configuration in logs.
    """

    config_id: str
    version: int
    lease: LeaseSettings = field(default_factory=LeaseSettings)
    ledger: LedgerSettings = field(default_factory=LedgerSettings)
    corrections: CorrectionSettings = field(default_factory=CorrectionSettings)
    review_queue: ReviewQueueSettings = field(default_factory=ReviewQueueSettings)
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    checksum: str = ""
