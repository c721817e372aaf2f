"""
Module: docflow_kernel.selectors.document_selector
Responsibility: Read-only document queries: single document, the review
    queue (pending + in_review, newest first), an owner's documents and the
    corrections of an original.
Architecture position: Kernel > Selectors.

The review queue does NOT reclaim stale leases itself.  The workflow runs
LeaseService.reclaim_stale() in the same unit of work right before listing.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select

from docflow_kernel.domain.document import REVIEW_QUEUE_STATUSES, Document
from docflow_kernel.exceptions import DocumentNotFoundError
from docflow_kernel.models.document import DocumentModel
from docflow_kernel.selectors.base import BaseSelector

DEFAULT_PAGE_SIZE = 50


class DocumentSelector(BaseSelector[DocumentModel]):
    """Read access to documents."""

    def get(self, document_id: UUID) -> Document:
        document = self.session.get(DocumentModel, document_id)
        if document is None:
            raise DocumentNotFoundError(str(document_id))
        return document.to_dto()

    def find(self, document_id: UUID) -> Document | None:
        document = self.session.get(DocumentModel, document_id)
        return document.to_dto() if document is not None else None

    def review_queue(
        self,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> list[Document]:
        """Pending and in-review documents, newest first."""
        rows = self.session.execute(
            select(DocumentModel)
            .where(DocumentModel.status.in_([s.value for s in REVIEW_QUEUE_STATUSES]))
            .order_by(DocumentModel.created_at.desc(), DocumentModel.id)
            .limit(limit)
            .offset(offset)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def for_owner(
        self,
        owner_id: UUID,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> list[Document]:
        rows = self.session.execute(
            select(DocumentModel)
            .where(DocumentModel.owner_id == owner_id)
            .order_by(DocumentModel.created_at.desc(), DocumentModel.id)
            .limit(limit)
            .offset(offset)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def corrections_of(self, original_id: UUID) -> list[Document]:
        """Corrections of ``original_id`` in numbering order."""
        rows = self.session.execute(
            select(DocumentModel)
            .where(DocumentModel.original_document_id == original_id)
            .order_by(DocumentModel.correction_sequence)
        ).scalars().all()
        return [row.to_dto() for row in rows]
