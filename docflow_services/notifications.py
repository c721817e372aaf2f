"""
docflow_services.notifications -- Outbound notifications.

The notification collaborator is called after the unit of work commits.
A failing dispatcher never rolls anything back; DocumentWorkflow logs the
failure as ``notification_failed`` and carries on.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from docflow_kernel.logging_config import get_logger

logger = get_logger("services.notifications")


class NotificationKind(str, Enum):
    DOCUMENT_CREATED = "document_created"
    DOCUMENT_ACCEPTED = "document_accepted"
    DOCUMENT_REJECTED = "document_rejected"
    DOCUMENT_SETTLED = "document_settled"
    RE_REVIEW_REQUESTED = "re_review_requested"
    STATUS_OVERRIDDEN = "status_overridden"
    CORRECTION_CREATED = "correction_created"
    BALANCE_ADJUSTED = "balance_adjusted"
    INSTRUMENT_UPDATED = "instrument_updated"


@runtime_checkable
class NotificationDispatcher(Protocol):
    def notify(
        self,
        recipient_id: UUID,
        event_kind: NotificationKind,
        payload: dict[str, Any],
    ) -> None: ...


class LoggingNotificationDispatcher:
    """Default dispatcher: writes each notification to the log."""

    def notify(
        self,
        recipient_id: UUID,
        event_kind: NotificationKind,
        payload: dict[str, Any],
    ) -> None:
        logger.info(
            "notification_sent",
            extra={
                "recipient_id": str(recipient_id),
                "event_kind": event_kind.value,
                "payload": payload,
            },
        )
