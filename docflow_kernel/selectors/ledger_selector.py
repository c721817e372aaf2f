"""
Module: docflow_kernel.selectors.ledger_selector
Responsibility: Read-only balance and ledger queries, and verification of
    the per-account transaction chain against the cached balance.
Architecture position: Kernel > Selectors.

Invariants checked (verify_chain):
    - sequences run 1..entry_count without gaps.
    - tx[i].balance_after == tx[i+1].balance_before.
    - tx.balance_after == tx.balance_before + tx.amount.
    - account.balance == balance_after of the last transaction (0 if none).

verify_chain reports; assert_chain_intact raises LedgerChainBrokenError.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from docflow_kernel.domain.ledger import AccountBalance, ChainVerification, LedgerTransaction
from docflow_kernel.exceptions import AccountNotFoundError, LedgerChainBrokenError
from docflow_kernel.models.account import AccountModel
from docflow_kernel.models.ledger import LedgerTransactionModel
from docflow_kernel.selectors.base import BaseSelector

DEFAULT_PAGE_SIZE = 50


class LedgerSelector(BaseSelector[LedgerTransactionModel]):
    """
    Selector for balances and ledger history.

    Contract:
        The cached account balance is what callers see; the transaction
        chain is what it must agree with.  Amounts are returned as Decimal.
    """

    def balance(self, account_id: UUID) -> AccountBalance:
        account = self.session.get(AccountModel, account_id)
        if account is None:
            raise AccountNotFoundError(str(account_id))
        return account.to_dto()

    def account_for_owner(self, owner_id: UUID) -> AccountBalance | None:
        account = self.session.execute(
            select(AccountModel).where(AccountModel.owner_id == owner_id)
        ).scalar_one_or_none()
        return account.to_dto() if account is not None else None

    def history(
        self,
        account_id: UUID,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> list[LedgerTransaction]:
        """Transactions of one account, newest first."""
        rows = self.session.execute(
            select(LedgerTransactionModel)
            .where(LedgerTransactionModel.account_id == account_id)
            .order_by(LedgerTransactionModel.sequence.desc())
            .limit(limit)
            .offset(offset)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def transactions_for(self, reference_id: UUID) -> list[LedgerTransaction]:
        """Every transaction triggered by one document or instrument."""
        rows = self.session.execute(
            select(LedgerTransactionModel)
            .where(LedgerTransactionModel.reference_id == reference_id)
            .order_by(LedgerTransactionModel.created_at, LedgerTransactionModel.sequence)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def verify_chain(self, account_id: UUID) -> ChainVerification:
        """Walk the account's transactions in sequence order."""
        account = self.session.get(AccountModel, account_id)
        if account is None:
            raise AccountNotFoundError(str(account_id))
        cached = Decimal(account.balance)

        rows = self.session.execute(
            select(LedgerTransactionModel)
            .where(LedgerTransactionModel.account_id == account_id)
            .order_by(LedgerTransactionModel.sequence)
        ).scalars().all()

        running = Decimal("0")
        for expected_sequence, row in enumerate(rows, start=1):
            tx = row.to_dto()
            problem = None
            if tx.sequence != expected_sequence:
                problem = f"expected sequence {expected_sequence}, found {tx.sequence}"
            elif tx.balance_before != running:
                problem = f"balance_before {tx.balance_before} != previous balance_after {running}"
            elif tx.balance_before + tx.amount != tx.balance_after:
                problem = (
                    f"{tx.balance_before} + {tx.amount} != balance_after {tx.balance_after}"
                )
            if problem is not None:
                return ChainVerification(
                    account_id=account_id,
                    entry_count=account.entry_count,
                    cached_balance=cached,
                    last_balance_after=running,
                    is_intact=False,
                    broken_at_sequence=tx.sequence,
                    detail=problem,
                )
            running = tx.balance_after

        if len(rows) != account.entry_count:
            return ChainVerification(
                account_id=account_id,
                entry_count=account.entry_count,
                cached_balance=cached,
                last_balance_after=running,
                is_intact=False,
                broken_at_sequence=len(rows),
                detail=f"entry_count {account.entry_count} != {len(rows)} transactions",
            )
        if running != cached:
            return ChainVerification(
                account_id=account_id,
                entry_count=account.entry_count,
                cached_balance=cached,
                last_balance_after=running,
                is_intact=False,
                broken_at_sequence=len(rows),
                detail=f"cached balance {cached} drifted from chain {running}",
            )
        return ChainVerification(
            account_id=account_id,
            entry_count=account.entry_count,
            cached_balance=cached,
            last_balance_after=running,
            is_intact=True,
        )

    def assert_chain_intact(self, account_id: UUID) -> ChainVerification:
        result = self.verify_chain(account_id)
        if not result.is_intact:
            raise LedgerChainBrokenError(
                str(account_id), result.broken_at_sequence or 0, result.detail or "",
            )
        return result
