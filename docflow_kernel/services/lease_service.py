"""
docflow_kernel.services.lease_service -- Review lease manager.

Responsibility:
    Grants, refreshes, releases and reclaims the exclusive right to review a
    document.  The lease lives on the document row (current reviewer, lease
    start, last heartbeat); there is no server-side lock or timer.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    - status = in_review iff current_reviewer_id is set (also a CHECK
      constraint).  Every path that changes one changes the other.
    - claim is a version-guarded ORM update: of two concurrent claims on
      the same pending document exactly one flush matches its row.
    - heartbeat and release are conditional UPDATEs on (status, holder).
      A heartbeat that no longer matches returns False instead of raising.
      release is idempotent.
    - reclaim_stale forces expired leases back to pending regardless of
      version.  It bumps ``version`` so a finalize prepared against the
      expired lease fails on its version check.

Failure modes:
    - DocumentNotFoundError, InvalidDocumentKindError (corrections are never
      reviewed), LeaseHeldError (another reviewer holds the lease),
      InvalidTransitionError (document is not pending), OptimisticLockError
      (lost the claim race).
"""

from __future__ import annotations

from datetime import timedelta
from uuid import UUID

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from docflow_kernel.domain.clock import Clock
from docflow_kernel.domain.document import Document, DocumentKind, DocumentStatus
from docflow_kernel.exceptions import (
    InvalidDocumentKindError,
    InvalidTransitionError,
    LeaseHeldError,
)
from docflow_kernel.logging_config import get_logger
from docflow_kernel.models.document import DocumentModel
from docflow_kernel.services._document_ops import load_document
from docflow_kernel.services.base import BaseService

logger = get_logger("services.lease")

DEFAULT_STALE_THRESHOLD_SECONDS = 5.0


class LeaseService(BaseService[DocumentModel]):
    """Claim / heartbeat / release / stale reclaim of review leases."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        *,
        stale_threshold_seconds: float = DEFAULT_STALE_THRESHOLD_SECONDS,
    ) -> None:
        super().__init__(session, clock)
        self._stale_threshold_seconds = stale_threshold_seconds

    def claim(self, document_id: UUID, reviewer_id: UUID) -> Document:
        """
        Take the review lease on a pending document.

        Claiming a document the caller already holds refreshes the heartbeat
        and returns it unchanged.

        Raises:
            DocumentNotFoundError, InvalidDocumentKindError, LeaseHeldError,
            InvalidTransitionError, OptimisticLockError.
        """
        document = load_document(self.session, document_id)

        if document.kind == DocumentKind.CORRECTION.value:
            raise InvalidDocumentKindError(str(document_id), document.kind, "claim")

        if document.status == DocumentStatus.IN_REVIEW.value:
            if document.current_reviewer_id == reviewer_id:
                self.heartbeat(document_id, reviewer_id)
                return load_document(self.session, document_id).to_dto()
            raise LeaseHeldError(str(document_id), str(document.current_reviewer_id))

        if document.status != DocumentStatus.PENDING.value:
            raise InvalidTransitionError(
                str(document_id), document.status, DocumentStatus.IN_REVIEW.value,
            )

        now = self._now()
        document.status = DocumentStatus.IN_REVIEW.value
        document.current_reviewer_id = reviewer_id
        document.lease_started_at = now
        document.last_heartbeat_at = now
        document.updated_at = now
        self._flush_or_conflict("Document", document_id)

        logger.info(
            "document_claimed",
            extra={
                "document_id": str(document_id),
                "reviewer_id": str(reviewer_id),
                "version": document.version,
            },
        )
        return document.to_dto()

    def heartbeat(self, document_id: UUID, reviewer_id: UUID) -> bool:
        """
        Refresh the lease's last-heartbeat timestamp.

        Returns False (never raises) when the caller no longer holds the
        lease: it was released, reclaimed, overridden or never taken.
        The heartbeat is lease liveness only and does not bump ``version``.
        """
        now = self._now()
        refreshed = self.session.execute(
            update(DocumentModel)
            .where(
                DocumentModel.id == document_id,
                DocumentModel.status == DocumentStatus.IN_REVIEW.value,
                DocumentModel.current_reviewer_id == reviewer_id,
            )
            .values(last_heartbeat_at=now)
            .returning(DocumentModel.id)
            .execution_options(synchronize_session=False)
        ).scalars().all()
        self._expire_cached(refreshed)

        if not refreshed:
            logger.debug(
                "heartbeat_ignored",
                extra={"document_id": str(document_id), "reviewer_id": str(reviewer_id)},
            )
            return False
        return True

    def release(self, document_id: UUID, reviewer_id: UUID) -> bool:
        """
        Give the lease back: in_review -> pending, lease fields cleared.

        Idempotent.  Returns True if this call released the lease, False if
        there was nothing to release.
        """
        now = self._now()
        released = self.session.execute(
            update(DocumentModel)
            .where(
                DocumentModel.id == document_id,
                DocumentModel.status == DocumentStatus.IN_REVIEW.value,
                DocumentModel.current_reviewer_id == reviewer_id,
            )
            .values(
                status=DocumentStatus.PENDING.value,
                current_reviewer_id=None,
                lease_started_at=None,
                last_heartbeat_at=None,
                updated_at=now,
                version=DocumentModel.version + 1,
            )
            .returning(DocumentModel.id)
            .execution_options(synchronize_session=False)
        ).scalars().all()
        self._expire_cached(released)

        if released:
            logger.info(
                "lease_released",
                extra={"document_id": str(document_id), "reviewer_id": str(reviewer_id)},
            )
        return bool(released)

    def reclaim_stale(self, stale_threshold_seconds: float | None = None) -> list[UUID]:
        """
        Force every expired lease back to pending.

        A lease is expired when its last heartbeat is missing or older than
        the threshold.  No optimistic check: the sweep wins over the silent
        holder, whose next finalize/edit then fails with a conflict.

        Returns:
            Ids of the documents reclaimed by this sweep.
        """
        threshold = (
            stale_threshold_seconds
            if stale_threshold_seconds is not None
            else self._stale_threshold_seconds
        )
        now = self._now()
        cutoff = now - timedelta(seconds=threshold)

        reclaimed = list(self.session.execute(
            update(DocumentModel)
            .where(
                DocumentModel.status == DocumentStatus.IN_REVIEW.value,
                or_(
                    DocumentModel.last_heartbeat_at.is_(None),
                    DocumentModel.last_heartbeat_at < cutoff,
                ),
            )
            .values(
                status=DocumentStatus.PENDING.value,
                current_reviewer_id=None,
                lease_started_at=None,
                last_heartbeat_at=None,
                updated_at=now,
                version=DocumentModel.version + 1,
            )
            .returning(DocumentModel.id)
            .execution_options(synchronize_session=False)
        ).scalars().all())
        self._expire_cached(reclaimed)

        if reclaimed:
            logger.info(
                "leases_reclaimed",
                extra={
                    "reclaimed_count": len(reclaimed),
                    "document_ids": [str(i) for i in reclaimed],
                    "threshold_seconds": threshold,
                },
            )
        return reclaimed

    def _expire_cached(self, document_ids: list[UUID]) -> None:
        """Bulk updates bypass the identity map; drop cached copies of touched rows."""
        for document_id in document_ids:
            cached = self.session.identity_map.get(
                self.session.identity_key(DocumentModel, document_id)
            )
            if cached is not None:
                self.session.expire(cached)
