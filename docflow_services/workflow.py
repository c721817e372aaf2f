"""
docflow_services.workflow -- The document workflow operation surface.

Responsibility:
    Exposes every workflow operation to an authenticated Actor.  Each call
    checks the actor's capability, opens one unit of work, composes the
    kernel services inside it, commits, and only then talks to the outside
    world (object storage cleanup, notifications).

Architecture position:
    Services -- the top of the stack.  The only place where kernel
    services are constructed and where transactions begin and end.

Invariants enforced:
    - Capability check before any state is touched.
    - One operation = one unit of work; the document mutation and its
      ledger posting commit or roll back together.
    - Notifications are sent after commit.  A failing dispatcher is logged
      (``notification_failed``) and never undoes the committed work.
    - Creation stores the image first.  If the database half fails the
      stored object is deleted again and the original error re-raised.
    - Listing the review queue first reclaims stale leases.
    - Viewing a pending document as a reviewer claims it.  A lost claim is
      not an error for the viewer: the document is re-read and returned.

Failure modes:
    - CapabilityDeniedError / NotDocumentOwnerError before anything runs.
    - Any kernel exception propagates after the unit of work rolled back.
    - ConflictError subclasses are the only ones a caller should retry.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.orm import Session, sessionmaker

from docflow_config.schema import WorkflowConfig
from docflow_kernel.db.engine import session_scope
from docflow_kernel.domain.clock import Clock, SystemClock
from docflow_kernel.domain.document import (
    Document,
    DocumentChangeset,
    DocumentKind,
    DocumentStatus,
    DocumentSubmission,
    EditResult,
    ReviewDecision,
)
from docflow_kernel.domain.instrument import Instrument, InstrumentSettlement
from docflow_kernel.domain.ledger import (
    AccountBalance,
    ChainVerification,
    LedgerTransaction,
    TransactionKind,
)
from docflow_kernel.exceptions import ConflictError, MissingReasonError, NotDocumentOwnerError
from docflow_kernel.logging_config import LogContext, get_logger
from docflow_kernel.selectors.document_selector import DocumentSelector
from docflow_kernel.selectors.ledger_selector import LedgerSelector
from docflow_kernel.services.document_service import DocumentService
from docflow_kernel.services.lease_service import LeaseService
from docflow_kernel.services.ledger_service import LedgerService
from docflow_kernel.services.settlement_service import SettlementService
from docflow_kernel.services.status_service import StatusService
from docflow_services.notifications import (
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    NotificationKind,
)
from docflow_services.rbac_authority import Actor, Capability, has_capability, require_capability
from docflow_services.storage import InMemoryObjectStore, ObjectStore

logger = get_logger("services.workflow")


@dataclass
class _UnitServices:
    """Kernel services sharing one session and clock."""

    session: Session
    ledger: LedgerService
    leases: LeaseService
    status: StatusService
    documents: DocumentService
    settlement: SettlementService
    document_reader: DocumentSelector
    ledger_reader: LedgerSelector


class DocumentWorkflow:
    """Operation surface of the document-approval workflow.

    Contract:
        Receives a session factory, a validated WorkflowConfig and the
        storage/notification collaborators.  Every public method takes the
        calling Actor first.

    Non-goals:
        - Does NOT authenticate; the Actor is trusted as given.
        - Does NOT retry on conflict; the caller decides.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        config: WorkflowConfig,
        *,
        storage: ObjectStore | None = None,
        notifier: NotificationDispatcher | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._config = config
        self._storage = storage if storage is not None else InMemoryObjectStore()
        self._notifier = notifier if notifier is not None else LoggingNotificationDispatcher()
        self._clock = clock or SystemClock()

    @property
    def heartbeat_interval_seconds(self) -> float:
        """How often a reviewing client should call ``heartbeat``."""
        return self._config.lease.heartbeat_interval_seconds

    @property
    def stale_threshold_seconds(self) -> float:
        return self._config.lease.stale_threshold_seconds

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    @contextmanager
    def _unit(self) -> Iterator[_UnitServices]:
        with session_scope(self._session_factory) as session:
            ledger = LedgerService(
                session,
                self._clock,
                currency=self._config.ledger.currency,
                decimal_places=self._config.ledger.decimal_places,
            )
            yield _UnitServices(
                session=session,
                ledger=ledger,
                leases=LeaseService(
                    session,
                    self._clock,
                    stale_threshold_seconds=self._config.lease.stale_threshold_seconds,
                ),
                status=StatusService(session, ledger, self._clock),
                documents=DocumentService(session, ledger, self._clock),
                settlement=SettlementService(
                    session,
                    ledger,
                    self._clock,
                    number_infix=self._config.corrections.number_infix,
                ),
                document_reader=DocumentSelector(session),
                ledger_reader=LedgerSelector(session),
            )

    @staticmethod
    def _context(actor: Actor, **ids: Any):
        return LogContext.bind(
            correlation_id=str(uuid4()),
            actor_id=str(actor.actor_id),
            **ids,
        )

    def _notify(
        self,
        recipient_id: UUID,
        kind: NotificationKind,
        payload: dict[str, Any],
    ) -> None:
        try:
            self._notifier.notify(recipient_id, kind, payload)
        except Exception:
            logger.warning(
                "notification_failed",
                extra={"recipient_id": str(recipient_id), "event_kind": kind.value},
                exc_info=True,
            )

    def _notify_status(self, document: Document) -> None:
        kind = {
            DocumentStatus.ACCEPTED: NotificationKind.DOCUMENT_ACCEPTED,
            DocumentStatus.REJECTED: NotificationKind.DOCUMENT_REJECTED,
            DocumentStatus.SETTLED: NotificationKind.DOCUMENT_SETTLED,
            DocumentStatus.RE_REVIEW: NotificationKind.RE_REVIEW_REQUESTED,
        }.get(document.status)
        if kind is not None:
            self._notify(
                document.owner_id,
                kind,
                {"document_id": str(document.id), "number": document.number},
            )

    def _discard_stored(self, key: str, event: str) -> None:
        try:
            self._storage.delete(key)
        except Exception:
            logger.error(event, extra={"key": key}, exc_info=True)

    def _queue_limit(self, limit: int | None) -> int:
        settings = self._config.review_queue
        if limit is None:
            return settings.default_limit
        return max(1, min(limit, settings.max_limit))

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def create_document(
        self,
        actor: Actor,
        submission: DocumentSubmission,
        image: bytes | None = None,
    ) -> Document:
        """Submit a document as ``actor``; the image (if any) is stored first."""
        require_capability(actor, Capability.SUBMIT_DOCUMENT)
        with self._context(actor):
            stored_key = None
            if image is not None:
                stored_key = self._storage.put(image)
                submission = replace(submission, image_key=stored_key)
            try:
                with self._unit() as unit:
                    document = unit.documents.create(submission, actor.actor_id)
            except Exception:
                if stored_key is not None:
                    self._discard_stored(stored_key, "storage_compensation_failed")
                raise

        self._notify(
            document.owner_id,
            NotificationKind.DOCUMENT_CREATED,
            {"document_id": str(document.id), "number": document.number},
        )
        return document

    def view_document(
        self,
        actor: Actor,
        document_id: UUID,
        *,
        claim: bool = True,
    ) -> Document:
        """
        Read a document.  Reviewers viewing a pending document claim it
        unless ``claim=False``; corrections are never claimed.
        """
        require_capability(actor, Capability.VIEW_OWN_DOCUMENTS)
        may_claim = claim and has_capability(actor, Capability.REVIEW_DOCUMENTS)
        with self._context(actor, document_id=document_id):
            try:
                with self._unit() as unit:
                    document = unit.document_reader.get(document_id)
                    self._check_visible(actor, document)
                    if (
                        may_claim
                        and document.status == DocumentStatus.PENDING
                        and document.kind != DocumentKind.CORRECTION
                    ):
                        document = unit.leases.claim(document_id, actor.actor_id)
                return document
            except ConflictError as exc:
                logger.info(
                    "implicit_claim_lost",
                    extra={"document_id": str(document_id), "error_code": exc.code},
                )
            with self._unit() as unit:
                return unit.document_reader.get(document_id)

    @staticmethod
    def _check_visible(actor: Actor, document: Document) -> None:
        if has_capability(actor, Capability.VIEW_ALL_DOCUMENTS):
            return
        if document.owner_id != actor.actor_id:
            raise NotDocumentOwnerError(str(document.id), str(actor.actor_id))

    def document_image(self, actor: Actor, document_id: UUID) -> bytes | None:
        """The stored image of a document, or None if it has none."""
        require_capability(actor, Capability.VIEW_OWN_DOCUMENTS)
        with self._context(actor, document_id=document_id):
            with self._unit() as unit:
                document = unit.document_reader.get(document_id)
                self._check_visible(actor, document)
        if document.image_key is None:
            return None
        return self._storage.get(document.image_key)

    def list_review_queue(
        self,
        actor: Actor,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Document]:
        """Reclaim stale leases, then list pending and in-review documents."""
        require_capability(actor, Capability.REVIEW_DOCUMENTS)
        with self._context(actor):
            with self._unit() as unit:
                unit.leases.reclaim_stale()
                return unit.document_reader.review_queue(
                    limit=self._queue_limit(limit), offset=max(0, offset),
                )

    def list_own_documents(
        self,
        actor: Actor,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Document]:
        require_capability(actor, Capability.VIEW_OWN_DOCUMENTS)
        with self._context(actor):
            with self._unit() as unit:
                return unit.document_reader.for_owner(
                    actor.actor_id, limit=self._queue_limit(limit), offset=max(0, offset),
                )

    def corrections_of(self, actor: Actor, original_id: UUID) -> list[Document]:
        require_capability(actor, Capability.VIEW_OWN_DOCUMENTS)
        with self._context(actor, document_id=original_id):
            with self._unit() as unit:
                original = unit.document_reader.get(original_id)
                self._check_visible(actor, original)
                return unit.document_reader.corrections_of(original_id)

    def delete_document(self, actor: Actor, document_id: UUID) -> None:
        """
        Delete a document.  Holders of DELETE_ANY_DOCUMENT may delete any
        non-final document; everyone else only their own pending ones.
        The stored image is removed after commit.
        """
        administrative = has_capability(actor, Capability.DELETE_ANY_DOCUMENT)
        if not administrative:
            require_capability(actor, Capability.DELETE_OWN_PENDING)
        with self._context(actor, document_id=document_id):
            with self._unit() as unit:
                deletion = unit.documents.delete(
                    document_id, actor.actor_id, administrative=administrative,
                )
            if deletion.image_key is not None:
                self._discard_stored(deletion.image_key, "storage_cleanup_failed")

    # ------------------------------------------------------------------
    # Review lease
    # ------------------------------------------------------------------

    def claim(self, actor: Actor, document_id: UUID) -> Document:
        require_capability(actor, Capability.REVIEW_DOCUMENTS)
        with self._context(actor, document_id=document_id):
            with self._unit() as unit:
                return unit.leases.claim(document_id, actor.actor_id)

    def heartbeat(self, actor: Actor, document_id: UUID) -> bool:
        """Keep the lease alive.  False means the lease is gone: refresh."""
        require_capability(actor, Capability.REVIEW_DOCUMENTS)
        with self._context(actor, document_id=document_id):
            with self._unit() as unit:
                return unit.leases.heartbeat(document_id, actor.actor_id)

    def release(self, actor: Actor, document_id: UUID) -> bool:
        require_capability(actor, Capability.REVIEW_DOCUMENTS)
        with self._context(actor, document_id=document_id):
            with self._unit() as unit:
                return unit.leases.release(document_id, actor.actor_id)

    def reclaim_stale_leases(self) -> list[UUID]:
        """Sweep expired leases.  Safe to run from a scheduler."""
        with LogContext.bind(correlation_id=str(uuid4())):
            with self._unit() as unit:
                return unit.leases.reclaim_stale()

    # ------------------------------------------------------------------
    # Review decisions
    # ------------------------------------------------------------------

    def edit_document(
        self,
        actor: Actor,
        document_id: UUID,
        changeset: DocumentChangeset,
    ) -> EditResult:
        require_capability(actor, Capability.REVIEW_DOCUMENTS)
        with self._context(actor, document_id=document_id):
            with self._unit() as unit:
                return unit.documents.edit(document_id, actor.actor_id, changeset)

    def finalize(
        self,
        actor: Actor,
        document_id: UUID,
        decision: ReviewDecision | str,
        reason: str | None = None,
    ) -> Document:
        require_capability(actor, Capability.REVIEW_DOCUMENTS)
        with self._context(actor, document_id=document_id):
            with self._unit() as unit:
                document = unit.status.finalize(document_id, actor.actor_id, decision, reason)
        self._notify_status(document)
        return document

    def request_re_review(self, actor: Actor, document_id: UUID, reason: str) -> Document:
        require_capability(actor, Capability.REVIEW_DOCUMENTS)
        with self._context(actor, document_id=document_id):
            with self._unit() as unit:
                document = unit.status.request_re_review(document_id, actor.actor_id, reason)
        self._notify_status(document)
        return document

    def admin_override(
        self,
        actor: Actor,
        document_id: UUID,
        new_status: DocumentStatus | str,
        reason: str | None = None,
    ) -> Document:
        require_capability(actor, Capability.OVERRIDE_STATUS)
        with self._context(actor, document_id=document_id):
            with self._unit() as unit:
                document = unit.status.admin_override(
                    document_id, new_status, reason, actor.actor_id,
                )
        self._notify(
            document.owner_id,
            NotificationKind.STATUS_OVERRIDDEN,
            {"document_id": str(document.id), "status": document.status.value},
        )
        return document

    def mark_transferred(self, actor: Actor, document_id: UUID) -> Document:
        require_capability(actor, Capability.MARK_TRANSFERRED)
        with self._context(actor, document_id=document_id):
            with self._unit() as unit:
                return unit.status.mark_transferred(document_id, actor.actor_id)

    def create_correction(
        self,
        actor: Actor,
        original_id: UUID,
        amount: Decimal,
        justification: str,
        image: bytes | None = None,
        description: str | None = None,
    ) -> Document:
        require_capability(actor, Capability.CREATE_CORRECTION)
        with self._context(actor, document_id=original_id):
            stored_key = self._storage.put(image) if image is not None else None
            try:
                with self._unit() as unit:
                    correction = unit.settlement.create_correction(
                        original_id,
                        amount,
                        justification,
                        actor.actor_id,
                        image_key=stored_key,
                        description=description,
                    )
            except Exception:
                if stored_key is not None:
                    self._discard_stored(stored_key, "storage_compensation_failed")
                raise

        self._notify(
            correction.owner_id,
            NotificationKind.CORRECTION_CREATED,
            {
                "document_id": str(correction.id),
                "original_id": str(original_id),
                "number": correction.number,
                "amount": str(correction.correction_amount),
            },
        )
        return correction

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    def _require_balance_access(self, actor: Actor, owner_id: UUID) -> None:
        if owner_id == actor.actor_id:
            require_capability(actor, Capability.VIEW_OWN_BALANCE)
        else:
            require_capability(actor, Capability.VIEW_ALL_BALANCES)

    def get_balance(self, actor: Actor, owner_id: UUID | None = None) -> AccountBalance:
        owner_id = owner_id or actor.actor_id
        self._require_balance_access(actor, owner_id)
        with self._context(actor):
            with self._unit() as unit:
                return unit.ledger.ensure_account(owner_id)

    def ledger_history(
        self,
        actor: Actor,
        owner_id: UUID | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[LedgerTransaction]:
        owner_id = owner_id or actor.actor_id
        self._require_balance_access(actor, owner_id)
        with self._context(actor):
            with self._unit() as unit:
                account = unit.ledger_reader.account_for_owner(owner_id)
                if account is None:
                    return []
                return unit.ledger_reader.history(
                    account.account_id, limit=self._queue_limit(limit), offset=max(0, offset),
                )

    def verify_ledger(self, actor: Actor, owner_id: UUID) -> ChainVerification:
        require_capability(actor, Capability.VIEW_ALL_BALANCES)
        with self._context(actor):
            with self._unit() as unit:
                account = unit.ledger.ensure_account(owner_id)
                return unit.ledger_reader.verify_chain(account.account_id)

    def adjust_balance(
        self,
        actor: Actor,
        owner_id: UUID,
        amount: Decimal,
        note: str,
    ) -> LedgerTransaction:
        """Manual balance adjustment.  The note is mandatory."""
        require_capability(actor, Capability.ADJUST_BALANCE)
        min_length = self._config.ledger.min_note_length
        if len((note or "").strip()) < min_length:
            raise MissingReasonError("note", min_length)
        with self._context(actor):
            with self._unit() as unit:
                account = unit.ledger.ensure_account(owner_id)
                with LogContext.bind(account_id=account.account_id):
                    transaction = unit.ledger.adjust(
                        account.account_id,
                        amount,
                        TransactionKind.ADJUSTMENT,
                        actor_id=actor.actor_id,
                        note=note.strip(),
                    )
        self._notify(
            owner_id,
            NotificationKind.BALANCE_ADJUSTED,
            {"amount": str(transaction.amount), "balance": str(transaction.balance_after)},
        )
        return transaction

    # ------------------------------------------------------------------
    # Financial instruments
    # ------------------------------------------------------------------

    def open_advance(
        self,
        actor: Actor,
        owner_id: UUID,
        amount: Decimal,
        description: str = "",
    ) -> Instrument:
        require_capability(actor, Capability.MANAGE_INSTRUMENTS)
        with self._context(actor):
            with self._unit() as unit:
                return unit.settlement.open_advance(
                    owner_id, amount, description, actor.actor_id,
                )

    def request_budget(
        self,
        actor: Actor,
        amount: Decimal,
        description: str = "",
    ) -> Instrument:
        """Originators request budget for themselves."""
        require_capability(actor, Capability.REQUEST_BUDGET)
        with self._context(actor):
            with self._unit() as unit:
                return unit.settlement.open_budget_request(
                    actor.actor_id, amount, description, actor.actor_id,
                )

    def approve_budget_request(self, actor: Actor, instrument_id: UUID) -> Instrument:
        require_capability(actor, Capability.MANAGE_INSTRUMENTS)
        with self._context(actor, instrument_id=instrument_id):
            with self._unit() as unit:
                instrument = unit.settlement.approve_budget_request(
                    instrument_id, actor.actor_id,
                )
        self._notify_instrument(instrument)
        return instrument

    def reject_budget_request(
        self,
        actor: Actor,
        instrument_id: UUID,
        reason: str,
    ) -> Instrument:
        require_capability(actor, Capability.MANAGE_INSTRUMENTS)
        with self._context(actor, instrument_id=instrument_id):
            with self._unit() as unit:
                instrument = unit.settlement.reject_budget_request(
                    instrument_id, actor.actor_id, reason,
                )
        self._notify_instrument(instrument)
        return instrument

    def mark_instrument_transferred(self, actor: Actor, instrument_id: UUID) -> Instrument:
        require_capability(actor, Capability.MANAGE_INSTRUMENTS)
        with self._context(actor, instrument_id=instrument_id):
            with self._unit() as unit:
                instrument = unit.settlement.mark_instrument_transferred(
                    instrument_id, actor.actor_id,
                )
        self._notify_instrument(instrument)
        return instrument

    def settle_instrument(self, actor: Actor, instrument_id: UUID) -> InstrumentSettlement:
        require_capability(actor, Capability.MANAGE_INSTRUMENTS)
        with self._context(actor, instrument_id=instrument_id):
            with self._unit() as unit:
                settlement = unit.settlement.settle_instrument(instrument_id, actor.actor_id)
        self._notify_instrument(
            settlement.instrument,
            settled_document_ids=[str(i) for i in settlement.settled_document_ids],
        )
        return settlement

    def _notify_instrument(self, instrument: Instrument, **extra: Any) -> None:
        self._notify(
            instrument.owner_id,
            NotificationKind.INSTRUMENT_UPDATED,
            {
                "instrument_id": str(instrument.id),
                "kind": instrument.kind.value,
                "status": instrument.status.value,
                **extra,
            },
        )
