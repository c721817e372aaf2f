"""
docflow_kernel.services.posting -- Balance effect of documents.

Responsibility:
    Decide which ledger posting a document mutation needs and keep the
    document's ``amount_posted`` flag in step with it.  Planning happens
    before the document is flushed; the caller applies the returned
    PlannedPosting through LedgerService after the document flush succeeded,
    inside the same unit of work.

    * standard/receipt documents charge ``-amount`` to the owner while the
      charge is in force, and refund ``+amount`` when it is lifted;
    * corrections credit ``+correction_amount`` and reverse it with a
      negative posting.

Architecture position:
    Kernel > Services.  Pure planning over a loaded DocumentModel, no I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from docflow_kernel.domain.document import DocumentKind, DocumentStatus, ReviewDecision
from docflow_kernel.domain.ledger import TransactionKind
from docflow_kernel.models.document import DocumentModel


@dataclass(frozen=True)
class PlannedPosting:
    """A ledger adjustment waiting to be applied."""

    account_id: UUID
    amount: Decimal
    kind: TransactionKind
    reference_id: UUID
    note: str


def signed_effect(document: DocumentModel) -> Decimal | None:
    """Balance change while the document's charge (or credit) is in force."""
    if document.kind == DocumentKind.CORRECTION.value:
        return Decimal(document.correction_amount)
    if document.amount is None:
        return None
    return -Decimal(document.amount)


def _is_correction(document: DocumentModel) -> bool:
    return document.kind == DocumentKind.CORRECTION.value


def plan_charge(document: DocumentModel, note: str) -> PlannedPosting | None:
    """Put the document's effect in force.  No-op if already posted or amountless."""
    effect = signed_effect(document)
    if effect is None or document.amount_posted:
        return None
    document.amount_posted = True
    return PlannedPosting(
        account_id=document.account_id,
        amount=effect,
        kind=(
            TransactionKind.CORRECTION_CREDIT
            if _is_correction(document)
            else TransactionKind.DOCUMENT_CHARGE
        ),
        reference_id=document.id,
        note=note,
    )


def plan_refund(document: DocumentModel, note: str) -> PlannedPosting | None:
    """Lift the document's effect with an equal-and-opposite posting."""
    effect = signed_effect(document)
    if effect is None or not document.amount_posted:
        return None
    document.amount_posted = False
    return PlannedPosting(
        account_id=document.account_id,
        amount=-effect,
        kind=(
            TransactionKind.CORRECTION_REVERSAL
            if _is_correction(document)
            else TransactionKind.DOCUMENT_REFUND
        ),
        reference_id=document.id,
        note=note,
    )


def plan_for_status(
    document: DocumentModel, target: DocumentStatus
) -> PlannedPosting | None:
    """
    Posting needed when ``document`` moves to ``target``.

    Must be called before the document's decision fields are overwritten:
    rejecting refunds only when the previous decision was an acceptance,
    and moving back to pending/accepted re-charges a refunded document.
    """
    if (
        target == DocumentStatus.REJECTED
        and document.amount_posted
        and document.last_decision == ReviewDecision.ACCEPTED.value
    ):
        return plan_refund(document, f"Refund: {document.number} rejected after acceptance")
    if target in (DocumentStatus.PENDING, DocumentStatus.ACCEPTED) and not document.amount_posted:
        return plan_charge(document, f"Charge reinstated: {document.number}")
    return None


def plan_amount_change(
    document: DocumentModel,
    previous: Decimal | None,
    new: Decimal,
) -> PlannedPosting | None:
    """Re-post the difference when a reviewer edits the amount."""
    if not document.amount_posted:
        return plan_charge(document, f"Charge: {document.number} amount set")
    difference = Decimal(new) - (Decimal(previous) if previous is not None else Decimal("0"))
    if difference == 0:
        return None
    return PlannedPosting(
        account_id=document.account_id,
        amount=-difference,
        kind=(
            TransactionKind.DOCUMENT_CHARGE
            if difference > 0
            else TransactionKind.DOCUMENT_REFUND
        ),
        reference_id=document.id,
        note=f"Amount edited on {document.number}: {previous} -> {new}",
    )
