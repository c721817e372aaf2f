"""
docflow_kernel.services.settlement_service -- Corrections and instruments.

Responsibility:
    Creates correction documents against accepted originals, and runs the
    lifecycle of financial instruments (advances, budget requests) including
    the settlement cascade onto linked documents.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    - A correction is numbered ``<original number>-<infix>-<n>``; the pair
      (original, n) is unique in the database, so two concurrent corrections
      that computed the same n cannot both commit.  The loser gets
      CorrectionNumberConflictError and the caller decides whether to retry.
    - Corrections are created directly in ``accepted`` with their credit
      posted, in the same unit of work as the insert.
    - The original is version-touched in the same flush, so a concurrent
      override away from ``accepted`` turns the correction into a conflict.
    - Instrument transitions follow INSTRUMENT_TRANSITIONS and are
      version-guarded.  The crediting transition (advance transferred,
      budget request approved) posts the instrument amount to the owner.
    - Settling an instrument settles every linked accepted/transferred
      document in the same unit of work.

Failure modes:
    - DocumentNotFoundError, CorrectionNotAllowedError,
      InvalidDocumentKindError, InvalidAmountError, MissingReasonError,
      CorrectionNumberConflictError, OptimisticLockError.
    - InstrumentNotFoundError, InvalidTransitionError, OptimisticLockError,
      LedgerConflictError.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from docflow_kernel.domain.clock import Clock
from docflow_kernel.domain.document import (
    SETTLEABLE_STATUSES,
    Document,
    DocumentKind,
    DocumentStatus,
    ReviewDecision,
)
from docflow_kernel.domain.instrument import (
    CREDITING_TRANSITIONS,
    Instrument,
    InstrumentKind,
    InstrumentSettlement,
    InstrumentStatus,
    is_valid_instrument_transition,
)
from docflow_kernel.domain.ledger import TransactionKind
from docflow_kernel.exceptions import (
    CorrectionNotAllowedError,
    CorrectionNumberConflictError,
    InstrumentNotFoundError,
    InvalidAmountError,
    InvalidDocumentKindError,
    InvalidTransitionError,
    MissingReasonError,
)
from docflow_kernel.logging_config import get_logger
from docflow_kernel.models.document import DocumentModel
from docflow_kernel.models.instrument import InstrumentModel
from docflow_kernel.services._document_ops import load_document, settle_by_cascade, touch
from docflow_kernel.services.base import BaseService
from docflow_kernel.services.ledger_service import LedgerService
from docflow_kernel.services.posting import plan_charge

logger = get_logger("services.settlement")

DEFAULT_NUMBER_INFIX = "KOREKTA"


class SettlementService(BaseService[InstrumentModel]):
    """Correction documents and the financial-instrument lifecycle."""

    def __init__(
        self,
        session: Session,
        ledger: LedgerService,
        clock: Clock | None = None,
        *,
        number_infix: str = DEFAULT_NUMBER_INFIX,
    ) -> None:
        super().__init__(session, clock)
        self._ledger = ledger
        self._number_infix = number_infix

    # ------------------------------------------------------------------
    # Corrections
    # ------------------------------------------------------------------

    def create_correction(
        self,
        original_id: UUID,
        amount: Decimal,
        justification: str,
        actor_id: UUID,
        image_key: str | None = None,
        description: str | None = None,
    ) -> Document:
        """
        Create an accepted correction of ``original_id`` and credit its owner.

        Preconditions:
            - original is accepted and is not itself a correction.
            - amount > 0, justification not blank.
        Postconditions:
            - new document, kind=correction, status=accepted, no lease.
            - owner's balance increased by ``amount``.

        Raises:
            DocumentNotFoundError, InvalidDocumentKindError,
            CorrectionNotAllowedError, InvalidAmountError, MissingReasonError,
            CorrectionNumberConflictError, LedgerConflictError.
        """
        original = load_document(self.session, original_id)
        if original.kind == DocumentKind.CORRECTION.value:
            raise InvalidDocumentKindError(str(original_id), original.kind, "correct")
        if original.status != DocumentStatus.ACCEPTED.value:
            raise CorrectionNotAllowedError(
                str(original_id), f"original is {original.status}, not accepted",
            )
        credit = self._ledger.quantize(amount)
        if credit <= 0:
            raise InvalidAmountError(str(amount), "correction amount must be positive")
        if not (justification or "").strip():
            raise MissingReasonError("justification")

        sequence = self._next_correction_sequence(original_id)
        now = self._now()
        correction = DocumentModel(
            id=uuid4(),
            owner_id=original.owner_id,
            account_id=original.account_id,
            organisation_id=original.organisation_id,
            number=f"{original.number}-{self._number_infix}-{sequence}",
            kind=DocumentKind.CORRECTION.value,
            status=DocumentStatus.ACCEPTED.value,
            justification=justification.strip(),
            description=description,
            image_key=image_key,
            amount=None,
            amount_posted=False,
            original_document_id=original.id,
            correction_amount=credit,
            correction_sequence=sequence,
            decided_by_id=actor_id,
            decided_at=now,
            last_decision=ReviewDecision.ACCEPTED.value,
            created_at=now,
            updated_at=now,
        )
        posting = plan_charge(correction, f"Correction of {original.number}")
        self.session.add(correction)
        touch(original, now)
        try:
            self._flush_or_conflict("Document", original_id)
        except IntegrityError as exc:
            logger.warning(
                "correction_number_conflict",
                extra={"original_id": str(original_id), "sequence": sequence},
            )
            raise CorrectionNumberConflictError(str(original_id), sequence) from exc
        self._ledger.apply(posting, actor_id)

        logger.info(
            "correction_created",
            extra={
                "document_id": str(correction.id),
                "original_id": str(original_id),
                "number": correction.number,
                "amount": str(credit),
            },
        )
        return correction.to_dto()

    def _next_correction_sequence(self, original_id: UUID) -> int:
        highest = self.session.execute(
            select(func.max(DocumentModel.correction_sequence)).where(
                DocumentModel.original_document_id == original_id
            )
        ).scalar_one()
        return (highest or 0) + 1

    # ------------------------------------------------------------------
    # Instruments
    # ------------------------------------------------------------------

    def open_advance(
        self,
        owner_id: UUID,
        amount: Decimal,
        description: str,
        actor_id: UUID,
    ) -> Instrument:
        """Open a pending advance for ``owner_id``."""
        return self._open(InstrumentKind.ADVANCE, owner_id, amount, description, actor_id)

    def open_budget_request(
        self,
        owner_id: UUID,
        amount: Decimal,
        description: str,
        actor_id: UUID,
    ) -> Instrument:
        """Open a pending budget request for ``owner_id``."""
        return self._open(
            InstrumentKind.BUDGET_REQUEST, owner_id, amount, description, actor_id,
        )

    def _open(
        self,
        kind: InstrumentKind,
        owner_id: UUID,
        amount: Decimal,
        description: str,
        actor_id: UUID,
    ) -> Instrument:
        value = self._ledger.quantize(amount)
        if value <= 0:
            raise InvalidAmountError(str(amount), f"{kind.value} amount must be positive")
        account = self._ledger.ensure_account(owner_id)

        now = self._now()
        instrument = InstrumentModel(
            kind=kind.value,
            status=InstrumentStatus.PENDING.value,
            owner_id=owner_id,
            account_id=account.account_id,
            amount=value,
            description=description or "",
            created_by_id=actor_id,
            created_at=now,
            updated_at=now,
        )
        self.session.add(instrument)
        self.session.flush()

        logger.info(
            "instrument_opened",
            extra={
                "instrument_id": str(instrument.id),
                "instrument_kind": kind.value,
                "owner_id": str(owner_id),
                "amount": str(value),
            },
        )
        return instrument.to_dto()

    def approve_budget_request(self, instrument_id: UUID, actor_id: UUID) -> Instrument:
        """pending -> approved; credits the owner with the requested amount."""
        instrument = self._load_instrument(instrument_id)
        self._require_kind(instrument, InstrumentKind.BUDGET_REQUEST, "approve")
        now = self._now()
        return self._transition(
            instrument, InstrumentStatus.APPROVED, actor_id, now,
            decided_by_id=actor_id, decided_at=now,
        )

    def reject_budget_request(
        self,
        instrument_id: UUID,
        actor_id: UUID,
        reason: str,
    ) -> Instrument:
        """pending -> rejected.  A reason is required."""
        if not (reason or "").strip():
            raise MissingReasonError("reason")
        instrument = self._load_instrument(instrument_id)
        self._require_kind(instrument, InstrumentKind.BUDGET_REQUEST, "reject")
        now = self._now()
        return self._transition(
            instrument, InstrumentStatus.REJECTED, actor_id, now,
            decided_by_id=actor_id, decided_at=now, rejection_reason=reason.strip(),
        )

    def mark_instrument_transferred(self, instrument_id: UUID, actor_id: UUID) -> Instrument:
        """Record the payout.  For an advance this is the crediting step."""
        instrument = self._load_instrument(instrument_id)
        now = self._now()
        return self._transition(
            instrument, InstrumentStatus.TRANSFERRED, actor_id, now, transferred_at=now,
        )

    def settle_instrument(self, instrument_id: UUID, actor_id: UUID) -> InstrumentSettlement:
        """
        transferred -> settled, cascading to linked documents.

        Every document linked to the instrument that is accepted or
        transferred moves to settled with a history entry.  Documents still
        in review (or rejected) are left alone; they settle on acceptance.
        """
        instrument = self._load_instrument(instrument_id)
        current = InstrumentStatus(instrument.status)
        kind = InstrumentKind(instrument.kind)
        if not is_valid_instrument_transition(kind, current, InstrumentStatus.SETTLED):
            raise InvalidTransitionError(
                str(instrument_id), current.value, InstrumentStatus.SETTLED.value,
            )

        linked = self.session.execute(
            select(DocumentModel)
            .where(
                or_(
                    DocumentModel.advance_id == instrument_id,
                    DocumentModel.budget_request_id == instrument_id,
                ),
                DocumentModel.status.in_([s.value for s in SETTLEABLE_STATUSES]),
            )
            .order_by(DocumentModel.created_at)
        ).scalars().all()

        now = self._now()
        instrument.status = InstrumentStatus.SETTLED.value
        instrument.settled_by_id = actor_id
        instrument.settled_at = now
        instrument.updated_at = now
        self._flush_or_conflict("Instrument", instrument_id)
        for document in linked:
            settle_by_cascade(
                document, actor_id=actor_id, now=now,
                note=f"Settled with {kind.value} {instrument_id}",
            )
            self._flush_or_conflict("Document", document.id)

        settled_ids = tuple(document.id for document in linked)
        logger.info(
            "instrument_settled",
            extra={
                "instrument_id": str(instrument_id),
                "instrument_kind": kind.value,
                "settled_document_count": len(settled_ids),
            },
        )
        return InstrumentSettlement(
            instrument=instrument.to_dto(),
            settled_document_ids=settled_ids,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load_instrument(self, instrument_id: UUID) -> InstrumentModel:
        instrument = self.session.get(InstrumentModel, instrument_id)
        if instrument is None:
            raise InstrumentNotFoundError(str(instrument_id))
        return instrument

    @staticmethod
    def _require_kind(
        instrument: InstrumentModel,
        kind: InstrumentKind,
        operation: str,
    ) -> None:
        if instrument.kind != kind.value:
            raise InvalidTransitionError(
                str(instrument.id), instrument.status, f"{operation} ({instrument.kind})",
            )

    def _transition(
        self,
        instrument: InstrumentModel,
        target: InstrumentStatus,
        actor_id: UUID,
        now: datetime,
        **fields: object,
    ) -> Instrument:
        kind = InstrumentKind(instrument.kind)
        current = InstrumentStatus(instrument.status)
        if not is_valid_instrument_transition(kind, current, target):
            raise InvalidTransitionError(str(instrument.id), current.value, target.value)

        for name, value in fields.items():
            setattr(instrument, name, value)
        instrument.status = target.value
        instrument.updated_at = now
        self._flush_or_conflict("Instrument", instrument.id)

        if (kind, target) in CREDITING_TRANSITIONS:
            self._ledger.adjust(
                instrument.account_id,
                Decimal(instrument.amount),
                TransactionKind.INSTRUMENT_CREDIT,
                actor_id=actor_id,
                note=f"{kind.value} {target.value}",
                reference_id=instrument.id,
            )

        logger.info(
            "instrument_transitioned",
            extra={
                "instrument_id": str(instrument.id),
                "instrument_kind": kind.value,
                "from_status": current.value,
                "to_status": target.value,
            },
        )
        return instrument.to_dto()
