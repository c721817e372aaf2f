"""
Module: docflow_kernel.models.document
Responsibility: ORM persistence for documents and their edit history.

Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - status = 'in_review' iff current_reviewer_id IS NOT NULL (CHECK).
    - kind = 'correction' iff original_document_id and correction_amount are
      present, and correction_amount > 0 (CHECK).
    - UNIQUE(original_document_id, correction_sequence): two corrections of
      the same original can never share a number.
    - Every ORM UPDATE/DELETE is version-guarded (version_id_col).  Lease
      release and the stale sweep are bulk conditional updates that bump
      ``version`` themselves.
    - Edit history rows are append-only (before_update listener).

Failure modes:
    - StaleDataError on a versioned flush that matched zero rows.
    - IntegrityError on a duplicate correction sequence.
    - ImmutabilityViolationError on UPDATE of a history row.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from docflow_kernel.db.base import Base, UUIDString
from docflow_kernel.db.types import ensure_utc
from docflow_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from docflow_kernel.domain.document import Document, HistoryEntry


class DocumentModel(Base):
    """Persistent document with its review lease and decision fields."""

    __tablename__ = "documents"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'in_review', 'accepted', 'rejected', "
            "'re_review', 'transferred', 'settled')",
            name="ck_documents_valid_status",
        ),
        CheckConstraint(
            "kind IN ('standard', 'receipt', 'correction')",
            name="ck_documents_valid_kind",
        ),
        CheckConstraint(
            "(status = 'in_review' AND current_reviewer_id IS NOT NULL) OR "
            "(status <> 'in_review' AND current_reviewer_id IS NULL)",
            name="ck_documents_lease_matches_status",
        ),
        CheckConstraint(
            "(kind = 'correction' AND original_document_id IS NOT NULL "
            "AND correction_amount IS NOT NULL AND correction_amount > 0) OR "
            "(kind <> 'correction' AND original_document_id IS NULL "
            "AND correction_amount IS NULL)",
            name="ck_documents_correction_fields",
        ),
        CheckConstraint(
            "amount IS NULL OR amount > 0",
            name="ck_documents_positive_amount",
        ),
        UniqueConstraint(
            "original_document_id", "correction_sequence",
            name="uq_documents_correction_sequence",
        ),
        Index("ix_documents_status_created", "status", "created_at"),
        Index("ix_documents_owner", "owner_id"),
        Index("ix_documents_advance", "advance_id"),
        Index("ix_documents_budget_request", "budget_request_id"),
    )

    owner_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    account_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("accounts.id"), nullable=False,
    )
    organisation_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    number: Mapped[str] = mapped_column(String(255), nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    justification: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_key: Mapped[str | None] = mapped_column(String(255), nullable=True)

    amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    amount_posted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Review lease
    current_reviewer_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    lease_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    last_heartbeat_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    # Finalization
    decided_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    decision_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_decision: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Corrections
    original_document_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("documents.id"), nullable=True,
    )
    correction_amount: Mapped[Decimal | None] = mapped_column(
        Numeric(14, 2), nullable=True,
    )
    correction_sequence: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Financial instruments
    advance_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("financial_instruments.id"), nullable=True,
    )
    budget_request_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("financial_instruments.id"), nullable=True,
    )

    # Payment and settlement
    transferred_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    transferred_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    settled_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    settled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    last_edited_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    last_edited_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    history: Mapped[list["DocumentEditModel"]] = relationship(
        "DocumentEditModel",
        back_populates="document",
        order_by="DocumentEditModel.sequence",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Document {self.id} {self.number} status={self.status}>"

    def to_dto(self) -> Document:
        """Convert ORM model to frozen domain DTO."""
        from docflow_kernel.domain.document import (
            Document,
            DocumentKind,
            DocumentStatus,
            ReviewDecision,
        )

        return Document(
            id=self.id,
            owner_id=self.owner_id,
            account_id=self.account_id,
            organisation_id=self.organisation_id,
            number=self.number,
            kind=DocumentKind(self.kind),
            status=DocumentStatus(self.status),
            justification=self.justification,
            description=self.description,
            image_key=self.image_key,
            amount=Decimal(self.amount) if self.amount is not None else None,
            amount_posted=bool(self.amount_posted),
            current_reviewer_id=self.current_reviewer_id,
            lease_started_at=ensure_utc(self.lease_started_at),
            last_heartbeat_at=ensure_utc(self.last_heartbeat_at),
            decided_by_id=self.decided_by_id,
            decided_at=ensure_utc(self.decided_at),
            decision_reason=self.decision_reason,
            last_decision=(
                ReviewDecision(self.last_decision) if self.last_decision else None
            ),
            original_document_id=self.original_document_id,
            correction_amount=(
                Decimal(self.correction_amount)
                if self.correction_amount is not None else None
            ),
            correction_sequence=self.correction_sequence,
            advance_id=self.advance_id,
            budget_request_id=self.budget_request_id,
            transferred_by_id=self.transferred_by_id,
            transferred_at=ensure_utc(self.transferred_at),
            settled_by_id=self.settled_by_id,
            settled_at=ensure_utc(self.settled_at),
            last_edited_by_id=self.last_edited_by_id,
            last_edited_at=ensure_utc(self.last_edited_at),
            created_at=ensure_utc(self.created_at),
            updated_at=ensure_utc(self.updated_at),
            version=self.version,
            history=tuple(entry.to_dto() for entry in self.history),
        )


class DocumentEditModel(Base):
    """Append-only edit-history entry of a document.

    Entries are removed together with their document; they are never updated.
    """

    __tablename__ = "document_edits"

    __table_args__ = (
        UniqueConstraint("document_id", "sequence", name="uq_document_edits_sequence"),
    )

    document_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    editor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    action: Mapped[str] = mapped_column(String(30), nullable=False)
    changes: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    admin_override: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    document: Mapped["DocumentModel"] = relationship(
        "DocumentModel", back_populates="history",
    )

    def __repr__(self) -> str:
        return f"<DocumentEdit {self.document_id}#{self.sequence} {self.action}>"

    def to_dto(self) -> HistoryEntry:
        """Convert ORM model to frozen domain DTO."""
        from docflow_kernel.domain.document import (
            FieldChange,
            HistoryAction,
            HistoryEntry,
        )

        return HistoryEntry(
            sequence=self.sequence,
            editor_id=self.editor_id,
            action=HistoryAction(self.action),
            changes=tuple(FieldChange.from_dict(c) for c in self.changes or ()),
            recorded_at=ensure_utc(self.recorded_at),
            admin_override=bool(self.admin_override),
            note=self.note,
        )


@event.listens_for(DocumentEditModel, "before_update")
def prevent_edit_history_update(mapper, connection, target):
    """Prevent rewriting history entries."""
    raise ImmutabilityViolationError(
        entity_type="DocumentEdit",
        entity_id=str(target.id),
        reason="Edit history is append-only -- cannot modify",
    )
