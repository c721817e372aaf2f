"""
Financial instrument domain types (``docflow_kernel.domain.instrument``).

Advances and budget requests put money on an originator's balance before the
documents justifying it arrive.  Documents link to them; settling an
instrument settles the documents linked to it.

Lifecycles
----------
* advance:        pending -> transferred -> settled
* budget request: pending -> approved -> transferred -> settled
                  pending -> rejected

``CREDITING_TRANSITIONS`` names the edge at which the instrument's amount is
credited to the owner's balance.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class InstrumentKind(str, Enum):
    ADVANCE = "advance"
    BUDGET_REQUEST = "budget_request"


class InstrumentStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    TRANSFERRED = "transferred"
    SETTLED = "settled"


INSTRUMENT_TRANSITIONS: dict[
    InstrumentKind, dict[InstrumentStatus, frozenset[InstrumentStatus]]
] = {
    InstrumentKind.ADVANCE: {
        InstrumentStatus.PENDING: frozenset({InstrumentStatus.TRANSFERRED}),
        InstrumentStatus.TRANSFERRED: frozenset({InstrumentStatus.SETTLED}),
        InstrumentStatus.SETTLED: frozenset(),
    },
    InstrumentKind.BUDGET_REQUEST: {
        InstrumentStatus.PENDING: frozenset({
            InstrumentStatus.APPROVED,
            InstrumentStatus.REJECTED,
        }),
        InstrumentStatus.APPROVED: frozenset({InstrumentStatus.TRANSFERRED}),
        InstrumentStatus.TRANSFERRED: frozenset({InstrumentStatus.SETTLED}),
        InstrumentStatus.REJECTED: frozenset(),
        InstrumentStatus.SETTLED: frozenset(),
    },
}

CREDITING_TRANSITIONS: frozenset[tuple[InstrumentKind, InstrumentStatus]] = frozenset({
    (InstrumentKind.ADVANCE, InstrumentStatus.TRANSFERRED),
    (InstrumentKind.BUDGET_REQUEST, InstrumentStatus.APPROVED),
})


def is_valid_instrument_transition(
    kind: InstrumentKind,
    current: InstrumentStatus,
    target: InstrumentStatus,
) -> bool:
    return target in INSTRUMENT_TRANSITIONS[kind].get(current, frozenset())


@dataclass(frozen=True)
class Instrument:
    """Frozen snapshot of an advance or budget request."""

    id: UUID
    kind: InstrumentKind
    status: InstrumentStatus
    owner_id: UUID
    account_id: UUID
    amount: Decimal
    description: str
    created_by_id: UUID
    created_at: datetime
    decided_by_id: UUID | None
    decided_at: datetime | None
    rejection_reason: str | None
    transferred_at: datetime | None
    settled_by_id: UUID | None
    settled_at: datetime | None
    version: int
    updated_at: datetime


@dataclass(frozen=True)
class InstrumentSettlement:
    """An instrument after settling, with the documents the cascade moved."""

    instrument: Instrument
    settled_document_ids: tuple[UUID, ...]
