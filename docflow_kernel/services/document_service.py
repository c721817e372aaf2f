"""
docflow_kernel.services.document_service -- Document submission, edits, deletion.

Responsibility:
    Creates documents (charging their amount to the originator's balance),
    applies reviewer changesets under the review lease, and deletes documents
    (refunding whatever balance effect is still in force).

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    - Creation and its ledger charge are one unit of work.
    - Edits require the caller to hold the lease; the changeset is validated
      as a whole, applied in one version-guarded flush, and recorded as one
      history entry with per-field deltas.  An empty or no-op changeset
      writes nothing.
    - Deletion refunds through the ledger before the row disappears;
      documents with corrections cannot be deleted.

Failure modes:
    - InvalidSubmissionError, InvalidDocumentKindError,
      InvalidInstrumentLinkError on bad submissions.
    - NotLeaseHolderError, InvalidChangesetError, OptimisticLockError on edits.
    - NotDocumentOwnerError, InvalidTransitionError,
      DocumentHasCorrectionsError on deletion.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from docflow_kernel.domain.clock import Clock
from docflow_kernel.domain.document import (
    FINAL_DOCUMENT_STATUSES,
    SUBMITTABLE_KINDS,
    Document,
    DocumentChangeset,
    DocumentDeletion,
    DocumentKind,
    DocumentStatus,
    DocumentSubmission,
    EditResult,
    FieldChange,
    HistoryAction,
)
from docflow_kernel.domain.instrument import InstrumentKind
from docflow_kernel.exceptions import (
    DocumentHasCorrectionsError,
    InvalidDocumentKindError,
    InvalidInstrumentLinkError,
    InvalidTransitionError,
    NotDocumentOwnerError,
    NotLeaseHolderError,
)
from docflow_kernel.logging_config import get_logger
from docflow_kernel.models.document import DocumentModel
from docflow_kernel.models.instrument import InstrumentModel
from docflow_kernel.services._document_ops import append_history, load_document, render
from docflow_kernel.services.base import BaseService
from docflow_kernel.services.ledger_service import LedgerService
from docflow_kernel.services.posting import plan_amount_change, plan_charge, plan_refund

logger = get_logger("services.document")


class DocumentService(BaseService[DocumentModel]):
    """Submission, reviewer edits and deletion of documents."""

    def __init__(
        self,
        session: Session,
        ledger: LedgerService,
        clock: Clock | None = None,
    ) -> None:
        super().__init__(session, clock)
        self._ledger = ledger

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(self, submission: DocumentSubmission, owner_id: UUID) -> Document:
        """
        Submit a new pending document and charge its amount to the owner.

        Preconditions:
            - kind is standard or receipt (corrections go through
              SettlementService.create_correction).
        Postconditions:
            - document is pending with no lease.
            - if it has an amount, the owner's balance dropped by it and
              ``amount_posted`` is set.
        """
        kind = DocumentKind(submission.kind)
        if kind not in SUBMITTABLE_KINDS:
            raise InvalidDocumentKindError(None, kind.value, "create")
        submission.validate()
        amount = (
            self._ledger.quantize(submission.amount)
            if submission.amount is not None else None
        )

        account = self._ledger.ensure_account(owner_id)
        self._check_instrument_link(
            submission.advance_id, InstrumentKind.ADVANCE, owner_id,
        )
        self._check_instrument_link(
            submission.budget_request_id, InstrumentKind.BUDGET_REQUEST, owner_id,
        )

        now = self._now()
        document = DocumentModel(
            id=uuid4(),
            owner_id=owner_id,
            account_id=account.account_id,
            organisation_id=submission.organisation_id,
            number=submission.number.strip(),
            kind=kind.value,
            status=DocumentStatus.PENDING.value,
            justification=submission.justification.strip(),
            description=submission.description,
            image_key=submission.image_key,
            amount=amount,
            amount_posted=False,
            advance_id=submission.advance_id,
            budget_request_id=submission.budget_request_id,
            created_at=now,
            updated_at=now,
        )
        posting = plan_charge(document, f"Charge: {document.number}")
        self.session.add(document)
        self.session.flush()
        self._ledger.apply(posting, owner_id)

        logger.info(
            "document_created",
            extra={
                "document_id": str(document.id),
                "owner_id": str(owner_id),
                "kind": kind.value,
                "amount": str(amount) if amount is not None else None,
            },
        )
        return document.to_dto()

    def _check_instrument_link(
        self,
        instrument_id: UUID | None,
        expected_kind: InstrumentKind,
        owner_id: UUID,
    ) -> None:
        if instrument_id is None:
            return
        instrument = self.session.get(InstrumentModel, instrument_id)
        if instrument is None:
            raise InvalidInstrumentLinkError(str(instrument_id), "does not exist")
        if instrument.kind != expected_kind.value:
            raise InvalidInstrumentLinkError(
                str(instrument_id), f"is a {instrument.kind}, expected {expected_kind.value}",
            )
        if instrument.owner_id != owner_id:
            raise InvalidInstrumentLinkError(
                str(instrument_id), "belongs to another owner",
            )

    # ------------------------------------------------------------------
    # Edit
    # ------------------------------------------------------------------

    def edit(
        self,
        document_id: UUID,
        reviewer_id: UUID,
        changeset: DocumentChangeset,
    ) -> EditResult:
        """
        Apply a reviewer's changeset to a document under review.

        Raises:
            DocumentNotFoundError, NotLeaseHolderError, InvalidChangesetError,
            OptimisticLockError, LedgerConflictError.
        """
        document = load_document(self.session, document_id)
        if (
            document.status != DocumentStatus.IN_REVIEW.value
            or document.current_reviewer_id != reviewer_id
        ):
            raise NotLeaseHolderError(
                str(document_id), str(reviewer_id),
                str(document.current_reviewer_id) if document.current_reviewer_id else None,
            )
        changeset.validate()

        new_values: dict[str, object] = {}
        if changeset.number is not None:
            new_values["number"] = changeset.number.strip()
        if changeset.description is not None:
            new_values["description"] = changeset.description
        if changeset.amount is not None:
            new_values["amount"] = self._ledger.quantize(changeset.amount)

        changes: list[FieldChange] = []
        for name, new in new_values.items():
            previous = getattr(document, name)
            if name == "amount" and previous is not None:
                previous = Decimal(previous)
            if previous != new:
                changes.append(FieldChange(name, render(previous), render(new)))

        if not changes:
            logger.debug("document_edit_noop", extra={"document_id": str(document_id)})
            return EditResult(document=document.to_dto(), changes=())

        now = self._now()
        posting = None
        for change in changes:
            if change.field == "amount":
                previous_amount = (
                    Decimal(document.amount) if document.amount is not None else None
                )
                document.amount = new_values["amount"]
                posting = plan_amount_change(document, previous_amount, new_values["amount"])
            else:
                setattr(document, change.field, new_values[change.field])

        document.last_edited_by_id = reviewer_id
        document.last_edited_at = now
        document.updated_at = now
        append_history(
            document,
            editor_id=reviewer_id,
            action=HistoryAction.EDITED,
            changes=changes,
            recorded_at=now,
        )
        self._flush_or_conflict("Document", document_id)
        self._ledger.apply(posting, reviewer_id)

        logger.info(
            "document_edited",
            extra={
                "document_id": str(document_id),
                "reviewer_id": str(reviewer_id),
                "fields": [c.field for c in changes],
            },
        )
        return EditResult(document=document.to_dto(), changes=tuple(changes))

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete(
        self,
        document_id: UUID,
        actor_id: UUID,
        *,
        administrative: bool = False,
    ) -> DocumentDeletion:
        """
        Delete a document and refund its balance effect.

        Owners may delete their own documents while pending.  With
        ``administrative=True`` any non-final document may be deleted.
        The stored image is NOT removed here; the caller deletes it after
        the unit of work commits.

        Raises:
            DocumentNotFoundError, NotDocumentOwnerError, InvalidTransitionError,
            DocumentHasCorrectionsError, OptimisticLockError, LedgerConflictError.
        """
        document = load_document(self.session, document_id)
        status = DocumentStatus(document.status)

        if administrative:
            if status in FINAL_DOCUMENT_STATUSES:
                raise InvalidTransitionError(str(document_id), status.value, "deleted")
        else:
            if document.owner_id != actor_id:
                raise NotDocumentOwnerError(str(document_id), str(actor_id))
            if status != DocumentStatus.PENDING:
                raise InvalidTransitionError(str(document_id), status.value, "deleted")

        correction_count = self.session.execute(
            select(func.count(DocumentModel.id)).where(
                DocumentModel.original_document_id == document_id
            )
        ).scalar_one()
        if correction_count:
            raise DocumentHasCorrectionsError(str(document_id), correction_count)

        posting = plan_refund(document, f"Refund: {document.number} deleted")
        deletion = DocumentDeletion(
            document_id=document.id,
            owner_id=document.owner_id,
            image_key=document.image_key,
            ledger_transaction_id=None,
        )
        self.session.delete(document)
        self._flush_or_conflict("Document", document_id)
        transaction = self._ledger.apply(posting, actor_id)

        logger.info(
            "document_deleted",
            extra={
                "document_id": str(document_id),
                "actor_id": str(actor_id),
                "administrative": administrative,
                "refunded": str(posting.amount) if posting else None,
            },
        )
        if transaction is None:
            return deletion
        return DocumentDeletion(
            document_id=deletion.document_id,
            owner_id=deletion.owner_id,
            image_key=deletion.image_key,
            ledger_transaction_id=transaction.id,
        )
