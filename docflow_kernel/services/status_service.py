"""
docflow_kernel.services.status_service -- Document status transitions.

Responsibility:
    Persists the review-path transitions (finalize, request re-review, mark
    transferred) and the administrative override.  Each transition keeps the
    ledger in step through the posting planner and applies the acceptance
    cascade in the same unit of work.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    - Transitions are checked against DOCUMENT_TRANSITIONS (review path) or
      is_valid_override (admin path) before any field changes.
    - Every write is a version-guarded flush: a sweep, override or second
      reviewer that got there first turns this write into a conflict.
    - An accepted document whose advance or budget request is already
      settled is settled immediately, with its own history entry.
    - Accepting a linked document version-touches its instruments, so an
      acceptance and a concurrent settle_instrument cannot both commit.
    - The document is flushed before the ledger is touched, so a conflict
      is attributed to the document and no posting is written.

Failure modes:
    - DocumentNotFoundError, AlreadyFinalizedError, InvalidTransitionError,
      NotLeaseHolderError, NotOriginalDeciderError, MissingReasonError,
      OptimisticLockError, LedgerConflictError.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session

from docflow_kernel.domain.clock import Clock
from docflow_kernel.domain.document import (
    DECIDED_STATUSES,
    FINAL_DOCUMENT_STATUSES,
    Document,
    DocumentStatus,
    FieldChange,
    HistoryAction,
    ReviewDecision,
    is_valid_override,
    is_valid_transition,
)
from docflow_kernel.domain.instrument import InstrumentStatus
from docflow_kernel.exceptions import (
    AlreadyFinalizedError,
    InvalidTransitionError,
    MissingReasonError,
    NotLeaseHolderError,
    NotOriginalDeciderError,
)
from docflow_kernel.logging_config import get_logger
from docflow_kernel.models.document import DocumentModel
from docflow_kernel.services._document_ops import (
    append_history,
    clear_lease,
    linked_instruments,
    load_document,
    render,
    settle_by_cascade,
    touch,
)
from docflow_kernel.services.base import BaseService
from docflow_kernel.services.ledger_service import LedgerService
from docflow_kernel.services.posting import plan_for_status

logger = get_logger("services.status")


class StatusService(BaseService[DocumentModel]):
    """Review-path transitions and administrative override."""

    def __init__(
        self,
        session: Session,
        ledger: LedgerService,
        clock: Clock | None = None,
    ) -> None:
        super().__init__(session, clock)
        self._ledger = ledger

    # ------------------------------------------------------------------
    # Review path
    # ------------------------------------------------------------------

    def finalize(
        self,
        document_id: UUID,
        reviewer_id: UUID,
        decision: ReviewDecision | str,
        reason: str | None = None,
    ) -> Document:
        """
        Record the lease holder's decision and release the lease.

        Preconditions:
            - status is in_review and reviewer_id holds the lease.
            - a rejection carries a non-blank reason.
        Postconditions:
            - status is the decision (or settled via the acceptance cascade),
              decided_by/at set, lease fields cleared.

        Raises:
            DocumentNotFoundError, AlreadyFinalizedError, InvalidTransitionError,
            NotLeaseHolderError, MissingReasonError, OptimisticLockError.
        """
        decision = ReviewDecision(decision)
        document = load_document(self.session, document_id)
        current = DocumentStatus(document.status)

        if current in DECIDED_STATUSES or current in FINAL_DOCUMENT_STATUSES:
            raise AlreadyFinalizedError(str(document_id), current.value)
        if current != DocumentStatus.IN_REVIEW:
            raise InvalidTransitionError(str(document_id), current.value, decision.value)
        if document.current_reviewer_id != reviewer_id:
            raise NotLeaseHolderError(
                str(document_id), str(reviewer_id),
                str(document.current_reviewer_id) if document.current_reviewer_id else None,
            )
        if decision == ReviewDecision.REJECTED and not (reason or "").strip():
            raise MissingReasonError("reason")

        now = self._now()
        instrument_settled = (
            decision == ReviewDecision.ACCEPTED
            and self._guard_linked_instruments(document, now)
        )
        posting = plan_for_status(document, decision.status)
        document.status = decision.value
        document.decided_by_id = reviewer_id
        document.decided_at = now
        document.last_decision = decision.value
        document.decision_reason = (
            reason.strip() if decision == ReviewDecision.REJECTED else None
        )
        clear_lease(document)
        document.updated_at = now

        if instrument_settled:
            settle_by_cascade(
                document, actor_id=reviewer_id, now=now,
                note="Linked instrument already settled",
            )

        self._flush_or_conflict("Document", document_id)
        self._ledger.apply(posting, reviewer_id)

        logger.info(
            "document_finalized",
            extra={
                "document_id": str(document_id),
                "reviewer_id": str(reviewer_id),
                "decision": decision.value,
                "settled_by_cascade": instrument_settled,
            },
        )
        return document.to_dto()

    def request_re_review(
        self,
        document_id: UUID,
        reviewer_id: UUID,
        reason: str,
    ) -> Document:
        """
        Reopen a decided document.  Only the reviewer who decided it may ask.

        Raises:
            DocumentNotFoundError, MissingReasonError, InvalidTransitionError,
            NotOriginalDeciderError, OptimisticLockError.
        """
        document = load_document(self.session, document_id)
        current = DocumentStatus(document.status)

        if not (reason or "").strip():
            raise MissingReasonError("reason")
        if current not in DECIDED_STATUSES:
            raise InvalidTransitionError(
                str(document_id), current.value, DocumentStatus.RE_REVIEW.value,
            )
        if document.decided_by_id != reviewer_id:
            raise NotOriginalDeciderError(
                str(document_id), str(reviewer_id),
                str(document.decided_by_id) if document.decided_by_id else None,
            )

        now = self._now()
        document.status = DocumentStatus.RE_REVIEW.value
        document.decision_reason = reason.strip()
        document.updated_at = now
        self._flush_or_conflict("Document", document_id)

        logger.info(
            "re_review_requested",
            extra={
                "document_id": str(document_id),
                "reviewer_id": str(reviewer_id),
                "from_status": current.value,
            },
        )
        return document.to_dto()

    def mark_transferred(self, document_id: UUID, actor_id: UUID) -> Document:
        """Record that payment for an accepted document was received."""
        document = load_document(self.session, document_id)
        current = DocumentStatus(document.status)
        if not is_valid_transition(current, DocumentStatus.TRANSFERRED):
            raise InvalidTransitionError(
                str(document_id), current.value, DocumentStatus.TRANSFERRED.value,
            )

        now = self._now()
        document.status = DocumentStatus.TRANSFERRED.value
        document.transferred_by_id = actor_id
        document.transferred_at = now
        document.updated_at = now
        self._flush_or_conflict("Document", document_id)

        logger.info(
            "document_transferred",
            extra={"document_id": str(document_id), "actor_id": str(actor_id)},
        )
        return document.to_dto()

    # ------------------------------------------------------------------
    # Administrative override
    # ------------------------------------------------------------------

    def admin_override(
        self,
        document_id: UUID,
        new_status: DocumentStatus | str,
        reason: str | None,
        admin_id: UUID,
    ) -> Document:
        """
        Force a document into pending, accepted or rejected.

        Bypasses lease ownership: an active lease is cleared and the
        interrupted reviewer's next write fails with a conflict.  Always
        writes a history entry flagged as an override.

        Raises:
            DocumentNotFoundError, InvalidTransitionError, MissingReasonError,
            OptimisticLockError, LedgerConflictError.
        """
        target = DocumentStatus(new_status)
        document = load_document(self.session, document_id)
        current = DocumentStatus(document.status)

        if not is_valid_override(current, target):
            raise InvalidTransitionError(str(document_id), current.value, target.value)
        if target == DocumentStatus.REJECTED and not (reason or "").strip():
            raise MissingReasonError("reason")

        now = self._now()
        instrument_settled = (
            target == DocumentStatus.ACCEPTED
            and self._guard_linked_instruments(document, now)
        )
        changes = [FieldChange("status", current.value, target.value)]
        posting = plan_for_status(document, target)

        interrupted = clear_lease(document)
        if interrupted is not None:
            changes.append(FieldChange("current_reviewer_id", render(interrupted), None))

        if target == DocumentStatus.PENDING:
            if current == DocumentStatus.RE_REVIEW and document.decision_reason is not None:
                changes.append(FieldChange("decision_reason", document.decision_reason, None))
                document.decision_reason = None
        else:
            document.decided_by_id = admin_id
            document.decided_at = now
            document.last_decision = target.value
            new_reason = reason.strip() if target == DocumentStatus.REJECTED else None
            if new_reason != document.decision_reason:
                changes.append(
                    FieldChange("decision_reason", document.decision_reason, new_reason)
                )
            document.decision_reason = new_reason

        document.status = target.value
        document.updated_at = now
        append_history(
            document,
            editor_id=admin_id,
            action=HistoryAction.STATUS_OVERRIDE,
            changes=changes,
            recorded_at=now,
            admin_override=True,
            note=(reason or "").strip() or None,
        )

        if instrument_settled:
            settle_by_cascade(
                document, actor_id=admin_id, now=now,
                note="Linked instrument already settled",
            )

        self._flush_or_conflict("Document", document_id)
        self._ledger.apply(posting, admin_id)

        logger.info(
            "status_overridden",
            extra={
                "document_id": str(document_id),
                "admin_id": str(admin_id),
                "from_status": current.value,
                "to_status": target.value,
                "interrupted_reviewer_id": str(interrupted) if interrupted else None,
                "settled_by_cascade": instrument_settled,
            },
        )
        return document.to_dto()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _guard_linked_instruments(self, document: DocumentModel, now: datetime) -> bool:
        """
        Version-touch the document's instruments; True if one is settled.

        The instrument status decides whether acceptance cascades, so it is
        read under the same optimistic guard as the document itself.
        """
        settled = False
        for instrument in linked_instruments(self.session, document):
            touch(instrument, now)
            self._flush_or_conflict("Instrument", instrument.id)
            settled = settled or instrument.status == InstrumentStatus.SETTLED.value
        return settled
