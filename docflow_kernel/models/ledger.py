"""
Module: docflow_kernel.models.ledger
Responsibility: ORM persistence for ledger transactions.  Append-only.

Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - UNIQUE(account_id, sequence): the per-account order in which balance
      updates succeeded.
    - balance_after = balance_before + amount, written by LedgerService.adjust
      from the same snapshot that updated the account.
    - Rows are immutable once created (ORM before_update/before_delete
      listeners).  Refunds are new rows.

Failure modes:
    - ImmutabilityViolationError on UPDATE/DELETE.
    - IntegrityError on a duplicate (account_id, sequence).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column

from docflow_kernel.db.base import Base, UUIDString
from docflow_kernel.db.types import LongText, Money, ensure_utc
from docflow_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from docflow_kernel.domain.ledger import LedgerTransaction


class LedgerTransactionModel(Base):
    """One applied balance change with its before/after snapshot."""

    __tablename__ = "ledger_transactions"

    __table_args__ = (
        UniqueConstraint("account_id", "sequence", name="uq_ledger_transactions_sequence"),
        CheckConstraint("amount <> 0", name="ck_ledger_transactions_nonzero"),
        CheckConstraint(
            "kind IN ('adjustment', 'document_charge', 'document_refund', "
            "'correction_credit', 'correction_reversal', 'instrument_credit')",
            name="ck_ledger_transactions_kind",
        ),
        Index("ix_ledger_transactions_reference", "reference_id"),
    )

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("accounts.id"), nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Money] = mapped_column(nullable=False)
    balance_before: Mapped[Money] = mapped_column(nullable=False)
    balance_after: Mapped[Money] = mapped_column(nullable=False)
    kind: Mapped[str] = mapped_column(String(50), nullable=False)
    reference_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    note: Mapped[LongText] = mapped_column(nullable=False, default="")
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<LedgerTransaction {self.account_id}#{self.sequence} "
            f"{self.kind} {self.amount}>"
        )

    def to_dto(self) -> LedgerTransaction:
        """Convert ORM model to frozen domain DTO."""
        from docflow_kernel.domain.ledger import LedgerTransaction, TransactionKind

        return LedgerTransaction(
            id=self.id,
            account_id=self.account_id,
            sequence=self.sequence,
            amount=Decimal(self.amount),
            balance_before=Decimal(self.balance_before),
            balance_after=Decimal(self.balance_after),
            kind=TransactionKind(self.kind),
            reference_id=self.reference_id,
            note=self.note,
            actor_id=self.actor_id,
            created_at=ensure_utc(self.created_at),
        )


# =============================================================================
# ORM-Level Immutability (Append-Only)
# =============================================================================


@event.listens_for(LedgerTransactionModel, "before_update")
def prevent_transaction_update(mapper, connection, target):
    """Prevent updates to ledger transactions."""
    raise ImmutabilityViolationError(
        entity_type="LedgerTransaction",
        entity_id=str(target.id),
        reason="Ledger transactions are immutable -- post a new transaction instead",
    )


@event.listens_for(LedgerTransactionModel, "before_delete")
def prevent_transaction_delete(mapper, connection, target):
    """Prevent deletion of ledger transactions."""
    raise ImmutabilityViolationError(
        entity_type="LedgerTransaction",
        entity_id=str(target.id),
        reason="Ledger transactions are immutable -- cannot delete",
    )
