"""
Module: docflow_kernel.models.account
Responsibility: ORM persistence for balance accounts (one per owner).

Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - balance always equals the balance_after of the account's newest
      ledger transaction; entry_count equals the number of transactions.
      Both are only written by LedgerService.adjust, in the same flush that
      appends the transaction row.
    - Every UPDATE is version-guarded (version_id_col), so two writers that
      read the same balance cannot both apply their change.
    - One account per owner (UNIQUE owner_id).

Failure modes:
    - StaleDataError on a concurrent balance change (translated to
      LedgerConflictError by the ledger service).
    - IntegrityError on a second account for the same owner.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from docflow_kernel.db.base import Base, UUIDString
from docflow_kernel.db.types import Money, ensure_utc

if TYPE_CHECKING:
    from docflow_kernel.domain.ledger import AccountBalance


class AccountModel(Base):
    """Per-owner running balance with its own version marker."""

    __tablename__ = "accounts"

    __table_args__ = (
        CheckConstraint("entry_count >= 0", name="ck_accounts_entry_count"),
    )

    owner_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False, unique=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="PLN")
    balance: Mapped[Money] = mapped_column(nullable=False, default=Decimal("0"))
    entry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Account {self.id} owner={self.owner_id} balance={self.balance}>"

    def to_dto(self) -> AccountBalance:
        """Convert ORM model to frozen domain DTO."""
        from docflow_kernel.domain.ledger import AccountBalance

        return AccountBalance(
            account_id=self.id,
            owner_id=self.owner_id,
            currency=self.currency,
            balance=Decimal(self.balance),
            entry_count=self.entry_count,
            version=self.version,
            updated_at=ensure_utc(self.updated_at),
        )
