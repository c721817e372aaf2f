"""
Ledger domain types (``docflow_kernel.domain.ledger``).

Pure value objects for the per-account balance ledger: transaction kinds,
the immutable transaction snapshot, balances and chain verification results.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class TransactionKind(str, Enum):
    """Why money moved."""

    ADJUSTMENT = "adjustment"
    DOCUMENT_CHARGE = "document_charge"
    DOCUMENT_REFUND = "document_refund"
    CORRECTION_CREDIT = "correction_credit"
    CORRECTION_REVERSAL = "correction_reversal"
    INSTRUMENT_CREDIT = "instrument_credit"


@dataclass(frozen=True)
class LedgerTransaction:
    """Immutable ledger row: one applied balance change."""

    id: UUID
    account_id: UUID
    sequence: int
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    kind: TransactionKind
    reference_id: UUID | None
    note: str
    actor_id: UUID
    created_at: datetime


@dataclass(frozen=True)
class AccountBalance:
    """Cached running balance of one account."""

    account_id: UUID
    owner_id: UUID
    currency: str
    balance: Decimal
    entry_count: int
    version: int
    updated_at: datetime


@dataclass(frozen=True)
class ChainVerification:
    """Result of walking an account's transactions in sequence order."""

    account_id: UUID
    entry_count: int
    cached_balance: Decimal
    last_balance_after: Decimal
    is_intact: bool
    broken_at_sequence: int | None = None
    detail: str | None = None
