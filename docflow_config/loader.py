"""
Configuration Loader (``docflow_config.loader``).

Responsibility
--------------
Loads a YAML configuration set and parses it into the typed
``docflow_config.schema`` dataclasses.  This is internal tooling: the
single public entry point for runtime config is
``docflow_config.get_active_config()``.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* Unknown keys in a section raise ``ValueError``; missing optional keys
  fall back to the dataclass defaults.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing ``config_id`` / ``version``  -> ``KeyError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from pathlib import Path
from typing import Any, TypeVar

import yaml

from docflow_config.schema import (
    CorrectionSettings,
    DatabaseSettings,
    LeaseSettings,
    LedgerSettings,
    ReviewQueueSettings,
    WorkflowConfig,
)

T = TypeVar("T")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _parse_section(cls: type[T], name: str, data: dict[str, Any] | None) -> T:
    data = data or {}
    if not isinstance(data, dict):
        raise ValueError(f"Section '{name}' must be a mapping, got {type(data).__name__}")
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown keys in section '{name}': {', '.join(unknown)}")
    return cls(**data)


def parse_lease(data: dict[str, Any] | None) -> LeaseSettings:
    settings = _parse_section(LeaseSettings, "lease", data)
    return LeaseSettings(
        stale_threshold_seconds=float(settings.stale_threshold_seconds),
        heartbeat_interval_seconds=float(settings.heartbeat_interval_seconds),
    )


def parse_ledger(data: dict[str, Any] | None) -> LedgerSettings:
    settings = _parse_section(LedgerSettings, "ledger", data)
    return LedgerSettings(
        currency=str(settings.currency),
        decimal_places=int(settings.decimal_places),
        min_note_length=int(settings.min_note_length),
    )


def parse_corrections(data: dict[str, Any] | None) -> CorrectionSettings:
    settings = _parse_section(CorrectionSettings, "corrections", data)
    return CorrectionSettings(number_infix=str(settings.number_infix))


def parse_review_queue(data: dict[str, Any] | None) -> ReviewQueueSettings:
    settings = _parse_section(ReviewQueueSettings, "review_queue", data)
    return ReviewQueueSettings(
        default_limit=int(settings.default_limit),
        max_limit=int(settings.max_limit),
    )


def parse_database(data: dict[str, Any] | None) -> DatabaseSettings:
    settings = _parse_section(DatabaseSettings, "database", data)
    return DatabaseSettings(url=str(settings.url), echo=bool(settings.echo))


def parse_config(data: dict[str, Any]) -> WorkflowConfig:
    """
    Parse a whole configuration set.

    Preconditions:
        - ``data`` carries ``config_id`` and ``version``.
    Postconditions:
        - ``checksum`` is the checksum of ``data`` as loaded.
    """
    return WorkflowConfig(
        config_id=data["config_id"],
        version=int(data["version"]),
        lease=parse_lease(data.get("lease")),
        ledger=parse_ledger(data.get("ledger")),
        corrections=parse_corrections(data.get("corrections")),
        review_queue=parse_review_queue(data.get("review_queue")),
        database=parse_database(data.get("database")),
        checksum=compute_checksum(data),
    )


def load_config_file(path: Path) -> WorkflowConfig:
    return parse_config(load_yaml_file(path))


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
