"""
Module: docflow_kernel.models.instrument
Responsibility: ORM persistence for financial instruments (advances and
    budget requests).

Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - kind/status limited to the closed sets (CHECK constraints); the
      per-kind transition rules live in domain/instrument.py.
    - amount > 0.
    - Every UPDATE is version-guarded (version_id_col).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from docflow_kernel.db.base import Base, UUIDString
from docflow_kernel.db.types import Money, ensure_utc

if TYPE_CHECKING:
    from docflow_kernel.domain.instrument import Instrument


class InstrumentModel(Base):
    """Persistent advance or budget request."""

    __tablename__ = "financial_instruments"

    __table_args__ = (
        CheckConstraint(
            "kind IN ('advance', 'budget_request')",
            name="ck_financial_instruments_kind",
        ),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'transferred', 'settled')",
            name="ck_financial_instruments_status",
        ),
        CheckConstraint("amount > 0", name="ck_financial_instruments_amount"),
        Index("ix_financial_instruments_owner", "owner_id", "kind"),
    )

    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    owner_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    account_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("accounts.id"), nullable=False,
    )
    amount: Mapped[Money] = mapped_column(nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    decided_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    transferred_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    settled_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    settled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Instrument {self.id} {self.kind} status={self.status}>"

    def to_dto(self) -> Instrument:
        """Convert ORM model to frozen domain DTO."""
        from docflow_kernel.domain.instrument import (
            Instrument,
            InstrumentKind,
            InstrumentStatus,
        )

        return Instrument(
            id=self.id,
            kind=InstrumentKind(self.kind),
            status=InstrumentStatus(self.status),
            owner_id=self.owner_id,
            account_id=self.account_id,
            amount=Decimal(self.amount),
            description=self.description,
            created_by_id=self.created_by_id,
            created_at=ensure_utc(self.created_at),
            decided_by_id=self.decided_by_id,
            decided_at=ensure_utc(self.decided_at),
            rejection_reason=self.rejection_reason,
            transferred_at=ensure_utc(self.transferred_at),
            settled_by_id=self.settled_by_id,
            settled_at=ensure_utc(self.settled_at),
            version=self.version,
            updated_at=ensure_utc(self.updated_at),
        )
