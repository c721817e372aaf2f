"""Shared helpers for services that mutate documents."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified

from docflow_kernel.domain.document import DocumentStatus, FieldChange, HistoryAction
from docflow_kernel.exceptions import DocumentNotFoundError
from docflow_kernel.models.document import DocumentEditModel, DocumentModel
from docflow_kernel.models.instrument import InstrumentModel


def load_document(session: Session, document_id: UUID) -> DocumentModel:
    document = session.get(DocumentModel, document_id)
    if document is None:
        raise DocumentNotFoundError(str(document_id))
    return document


def render(value: object) -> str | None:
    """History representation of a field value."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return f"{value:.2f}"
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def append_history(
    document: DocumentModel,
    *,
    editor_id: UUID,
    action: HistoryAction,
    changes: list[FieldChange],
    recorded_at: datetime,
    admin_override: bool = False,
    note: str | None = None,
) -> DocumentEditModel:
    entry = DocumentEditModel(
        sequence=len(document.history) + 1,
        editor_id=editor_id,
        action=action.value,
        changes=[change.to_dict() for change in changes],
        admin_override=admin_override,
        note=note,
        recorded_at=recorded_at,
    )
    document.history.append(entry)
    return entry


def clear_lease(document: DocumentModel) -> UUID | None:
    """Drop the review lease; returns the reviewer who held it."""
    holder = document.current_reviewer_id
    document.current_reviewer_id = None
    document.lease_started_at = None
    document.last_heartbeat_at = None
    return holder


def touch(row: object, now: datetime) -> None:
    """Force a version-guarded UPDATE of ``row`` in the next flush."""
    row.updated_at = now
    flag_modified(row, "updated_at")


def linked_instruments(session: Session, document: DocumentModel) -> list[InstrumentModel]:
    """The advance and/or budget request the document is linked to."""
    instrument_ids = [i for i in (document.advance_id, document.budget_request_id) if i]
    if not instrument_ids:
        return []
    return list(
        session.execute(
            select(InstrumentModel).where(InstrumentModel.id.in_(instrument_ids))
        ).scalars()
    )


def settle_by_cascade(
    document: DocumentModel,
    *,
    actor_id: UUID,
    now: datetime,
    note: str,
) -> None:
    """Move an accepted/transferred document to settled with a history entry."""
    previous = document.status
    document.status = DocumentStatus.SETTLED.value
    document.settled_by_id = actor_id
    document.settled_at = now
    document.updated_at = now
    append_history(
        document,
        editor_id=actor_id,
        action=HistoryAction.SETTLED_BY_CASCADE,
        changes=[FieldChange("status", previous, DocumentStatus.SETTLED.value)],
        recorded_at=now,
        note=note,
    )
