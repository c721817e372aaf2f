"""
docflow_kernel.services.ledger_service -- Balance ledger.

Responsibility:
    Owns every money-moving write: opening accounts and applying signed
    adjustments.  Each adjustment updates the cached account balance and
    appends one immutable transaction row carrying the same before/after
    snapshot.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    - The account UPDATE is version-guarded.  If another writer changed the
      balance since it was read, the flush matches zero rows, no transaction
      row is written, and LedgerConflictError is raised.  No lock is held
      across read-compute-write and the ledger never retries on its own.
    - transaction.sequence = account.entry_count after the update, so the
      per-account order is the order in which conditional updates succeeded
      and tx[i].balance_after == tx[i+1].balance_before.
    - Amounts are quantized with round_money(); zero amounts are rejected.

Failure modes:
    - AccountNotFoundError if the account does not exist.
    - InvalidAmountError on a zero or non-numeric amount.
    - LedgerConflictError on a concurrent balance change.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from docflow_kernel.db.types import MONEY_DECIMAL_PLACES, round_money
from docflow_kernel.domain.clock import Clock
from docflow_kernel.domain.ledger import AccountBalance, LedgerTransaction, TransactionKind
from docflow_kernel.exceptions import (
    AccountNotFoundError,
    InvalidAmountError,
    LedgerConflictError,
)
from docflow_kernel.logging_config import get_logger
from docflow_kernel.models.account import AccountModel
from docflow_kernel.models.ledger import LedgerTransactionModel
from docflow_kernel.services.base import BaseService
from docflow_kernel.services.posting import PlannedPosting

logger = get_logger("services.ledger")


class LedgerService(BaseService[AccountModel]):
    """Applies signed adjustments to per-owner balance accounts."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        *,
        currency: str = "PLN",
        decimal_places: int = MONEY_DECIMAL_PLACES,
    ) -> None:
        super().__init__(session, clock)
        self._currency = currency
        self._decimal_places = decimal_places

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def ensure_account(self, owner_id: UUID) -> AccountBalance:
        """Return the owner's account, opening an empty one on first use."""
        account = self.session.execute(
            select(AccountModel).where(AccountModel.owner_id == owner_id)
        ).scalar_one_or_none()
        if account is not None:
            return account.to_dto()

        now = self._now()
        account = AccountModel(
            owner_id=owner_id,
            currency=self._currency,
            balance=Decimal("0"),
            entry_count=0,
            created_at=now,
            updated_at=now,
        )
        self.session.add(account)
        self.session.flush()
        logger.info(
            "account_opened",
            extra={"account_id": str(account.id), "owner_id": str(owner_id)},
        )
        return account.to_dto()

    def _load_account(self, account_id: UUID) -> AccountModel:
        account = self.session.get(AccountModel, account_id)
        if account is None:
            raise AccountNotFoundError(str(account_id))
        return account

    # ------------------------------------------------------------------
    # Adjustments
    # ------------------------------------------------------------------

    def quantize(self, amount: Decimal | int | str) -> Decimal:
        try:
            return round_money(Decimal(amount), self._decimal_places)
        except (InvalidOperation, ValueError, TypeError) as exc:
            raise InvalidAmountError(str(amount), "not a decimal number") from exc

    def adjust(
        self,
        account_id: UUID,
        amount: Decimal,
        kind: TransactionKind,
        *,
        actor_id: UUID,
        note: str = "",
        reference_id: UUID | None = None,
    ) -> LedgerTransaction:
        """
        Apply ``amount`` (signed) to the account and append a transaction.

        Preconditions:
            - amount != 0 after quantization.
        Postconditions:
            - account.balance == returned.balance_after.
            - returned.sequence == account.entry_count.

        Raises:
            AccountNotFoundError, InvalidAmountError, LedgerConflictError.
        """
        amount = self.quantize(amount)
        if amount == 0:
            raise InvalidAmountError(str(amount), "ledger adjustments must be non-zero")

        account = self._load_account(account_id)
        now = self._now()
        balance_before = Decimal(account.balance)
        balance_after = balance_before + amount

        account.balance = balance_after
        account.entry_count = account.entry_count + 1
        account.updated_at = now
        try:
            self.session.flush()
        except StaleDataError as exc:
            logger.warning(
                "ledger_conflict",
                extra={
                    "account_id": str(account_id),
                    "amount": str(amount),
                    "kind": kind.value,
                },
            )
            raise LedgerConflictError(str(account_id)) from exc

        transaction = LedgerTransactionModel(
            account_id=account.id,
            sequence=account.entry_count,
            amount=amount,
            balance_before=balance_before,
            balance_after=balance_after,
            kind=kind.value,
            reference_id=reference_id,
            note=note,
            actor_id=actor_id,
            created_at=now,
        )
        self.session.add(transaction)
        self.session.flush()

        logger.info(
            "ledger_adjusted",
            extra={
                "account_id": str(account_id),
                "sequence": transaction.sequence,
                "amount": str(amount),
                "balance_before": str(balance_before),
                "balance_after": str(balance_after),
                "kind": kind.value,
                "reference_id": str(reference_id) if reference_id else None,
            },
        )
        return transaction.to_dto()

    def apply(self, posting: PlannedPosting | None, actor_id: UUID) -> LedgerTransaction | None:
        """Apply a posting planned by docflow_kernel.services.posting (no-op for None)."""
        if posting is None:
            return None
        return self.adjust(
            posting.account_id,
            posting.amount,
            posting.kind,
            actor_id=actor_id,
            note=posting.note,
            reference_id=posting.reference_id,
        )
