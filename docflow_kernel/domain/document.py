"""
Document domain types (``docflow_kernel.domain.document``).

Responsibility
--------------
Pure value objects for the document approval workflow: the status state
machine, document kinds, review decisions, edit changesets and the frozen
DTOs handed out by services and selectors.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports from
``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* ``DOCUMENT_TRANSITIONS`` defines the only valid status transitions
  reachable through the review path.  ``settled`` has no outgoing edges.
* Administrative override may move a document out of any non-final status
  (``FINAL_DOCUMENT_STATUSES``) into one of ``OVERRIDE_TARGETS``.
* A changeset is validated once as a whole before anything is applied.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from docflow_kernel.exceptions import InvalidChangesetError, InvalidSubmissionError

# =========================================================================
# Status lifecycle
# =========================================================================


class DocumentStatus(str, Enum):
    """Document lifecycle states."""

    PENDING = "pending"
    IN_REVIEW = "in_review"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    RE_REVIEW = "re_review"
    TRANSFERRED = "transferred"
    SETTLED = "settled"


DOCUMENT_TRANSITIONS: dict[DocumentStatus, frozenset[DocumentStatus]] = {
    DocumentStatus.PENDING: frozenset({
        DocumentStatus.IN_REVIEW,
    }),
    DocumentStatus.IN_REVIEW: frozenset({
        DocumentStatus.PENDING,
        DocumentStatus.ACCEPTED,
        DocumentStatus.REJECTED,
    }),
    DocumentStatus.ACCEPTED: frozenset({
        DocumentStatus.RE_REVIEW,
        DocumentStatus.SETTLED,
        DocumentStatus.TRANSFERRED,
    }),
    DocumentStatus.REJECTED: frozenset({
        DocumentStatus.RE_REVIEW,
    }),
    DocumentStatus.RE_REVIEW: frozenset({
        DocumentStatus.PENDING,
        DocumentStatus.ACCEPTED,
        DocumentStatus.REJECTED,
    }),
    DocumentStatus.TRANSFERRED: frozenset({
        DocumentStatus.SETTLED,
    }),
    DocumentStatus.SETTLED: frozenset(),
}

FINAL_DOCUMENT_STATUSES: frozenset[DocumentStatus] = frozenset({
    DocumentStatus.SETTLED,
    DocumentStatus.TRANSFERRED,
})

DECIDED_STATUSES: frozenset[DocumentStatus] = frozenset({
    DocumentStatus.ACCEPTED,
    DocumentStatus.REJECTED,
})

OVERRIDE_TARGETS: frozenset[DocumentStatus] = frozenset({
    DocumentStatus.PENDING,
    DocumentStatus.ACCEPTED,
    DocumentStatus.REJECTED,
})

REVIEW_QUEUE_STATUSES: frozenset[DocumentStatus] = frozenset({
    DocumentStatus.PENDING,
    DocumentStatus.IN_REVIEW,
})

# Statuses a settling instrument pulls its linked documents out of.
SETTLEABLE_STATUSES: frozenset[DocumentStatus] = frozenset({
    DocumentStatus.ACCEPTED,
    DocumentStatus.TRANSFERRED,
})


def is_valid_transition(current: DocumentStatus, target: DocumentStatus) -> bool:
    """True iff ``current -> target`` is an edge of the review state machine."""
    return target in DOCUMENT_TRANSITIONS.get(current, frozenset())


def is_valid_override(current: DocumentStatus, target: DocumentStatus) -> bool:
    """True iff an administrator may force ``current -> target``."""
    return (
        current not in FINAL_DOCUMENT_STATUSES
        and target in OVERRIDE_TARGETS
        and current != target
    )


class DocumentKind(str, Enum):
    """What the scanned document is."""

    STANDARD = "standard"
    RECEIPT = "receipt"
    CORRECTION = "correction"


SUBMITTABLE_KINDS: frozenset[DocumentKind] = frozenset({
    DocumentKind.STANDARD,
    DocumentKind.RECEIPT,
})


class ReviewDecision(str, Enum):
    """Outcomes a lease holder may finalize with."""

    ACCEPTED = "accepted"
    REJECTED = "rejected"

    @property
    def status(self) -> DocumentStatus:
        return DocumentStatus(self.value)


class HistoryAction(str, Enum):
    """Kinds of edit-history entries."""

    EDITED = "edited"
    STATUS_OVERRIDE = "status_override"
    SETTLED_BY_CASCADE = "settled_by_cascade"


# =========================================================================
# Submissions and changesets
# =========================================================================

MIN_JUSTIFICATION_LENGTH = 10


@dataclass(frozen=True)
class DocumentSubmission:
    """Everything an originator supplies when submitting a document."""

    number: str
    kind: DocumentKind
    organisation_id: UUID
    justification: str
    description: str | None = None
    amount: Decimal | None = None
    image_key: str | None = None
    advance_id: UUID | None = None
    budget_request_id: UUID | None = None

    def validate(self) -> None:
        """Raise InvalidSubmissionError on the first offending field."""
        if not self.number or not self.number.strip():
            raise InvalidSubmissionError("number", "document number is required")
        if len(self.number.strip()) > 255:
            raise InvalidSubmissionError("number", "longer than 255 characters")
        if len((self.justification or "").strip()) < MIN_JUSTIFICATION_LENGTH:
            raise InvalidSubmissionError(
                "justification",
                f"at least {MIN_JUSTIFICATION_LENGTH} characters required",
            )
        if self.amount is not None and Decimal(self.amount) <= 0:
            raise InvalidSubmissionError("amount", "must be positive")


@dataclass(frozen=True)
class DocumentChangeset:
    """
    Reviewer edit of a document under review.

    Every field is optional; ``None`` means "leave unchanged".  The whole
    changeset is validated before any field is applied.
    """

    number: str | None = None
    description: str | None = None
    amount: Decimal | None = None

    EDITABLE_FIELDS = ("number", "description", "amount")

    def is_empty(self) -> bool:
        return all(getattr(self, name) is None for name in self.EDITABLE_FIELDS)

    def validate(self) -> None:
        if self.number is not None:
            if not self.number.strip():
                raise InvalidChangesetError("number", "must not be blank")
            if len(self.number.strip()) > 255:
                raise InvalidChangesetError("number", "longer than 255 characters")
        if self.description is not None and len(self.description) > 4000:
            raise InvalidChangesetError("description", "longer than 4000 characters")
        if self.amount is not None and Decimal(self.amount) <= 0:
            raise InvalidChangesetError("amount", "must be positive")


# =========================================================================
# DTOs
# =========================================================================


@dataclass(frozen=True)
class FieldChange:
    """Previous/new value of one field, rendered as strings for the history log."""

    field: str
    previous: str | None
    new: str | None

    def to_dict(self) -> dict[str, Any]:
        return {"field": self.field, "previous": self.previous, "new": self.new}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FieldChange:
        return cls(field=data["field"], previous=data.get("previous"), new=data.get("new"))


@dataclass(frozen=True)
class HistoryEntry:
    """One append-only edit-history record."""

    sequence: int
    editor_id: UUID
    action: HistoryAction
    changes: tuple[FieldChange, ...]
    recorded_at: datetime
    admin_override: bool = False
    note: str | None = None


@dataclass(frozen=True)
class Document:
    """Frozen snapshot of a document."""

    id: UUID
    owner_id: UUID
    account_id: UUID
    organisation_id: UUID
    number: str
    kind: DocumentKind
    status: DocumentStatus
    justification: str
    description: str | None
    image_key: str | None
    amount: Decimal | None
    amount_posted: bool
    current_reviewer_id: UUID | None
    lease_started_at: datetime | None
    last_heartbeat_at: datetime | None
    decided_by_id: UUID | None
    decided_at: datetime | None
    decision_reason: str | None
    last_decision: ReviewDecision | None
    original_document_id: UUID | None
    correction_amount: Decimal | None
    correction_sequence: int | None
    advance_id: UUID | None
    budget_request_id: UUID | None
    transferred_by_id: UUID | None
    transferred_at: datetime | None
    settled_by_id: UUID | None
    settled_at: datetime | None
    last_edited_by_id: UUID | None
    last_edited_at: datetime | None
    created_at: datetime
    updated_at: datetime
    version: int
    history: tuple[HistoryEntry, ...] = field(default_factory=tuple)

    @property
    def is_correction(self) -> bool:
        return self.kind == DocumentKind.CORRECTION

    @property
    def under_review(self) -> bool:
        return self.status == DocumentStatus.IN_REVIEW


@dataclass(frozen=True)
class EditResult:
    """Outcome of a reviewer edit.  ``changes`` is empty when nothing changed."""

    document: Document
    changes: tuple[FieldChange, ...]

    @property
    def no_changes(self) -> bool:
        return not self.changes


@dataclass(frozen=True)
class DocumentDeletion:
    """Outcome of a deletion: what the caller must clean up after commit."""

    document_id: UUID
    owner_id: UUID
    image_key: str | None
    ledger_transaction_id: UUID | None
