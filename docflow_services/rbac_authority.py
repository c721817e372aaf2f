"""
docflow_services.rbac_authority -- Capability checks at the workflow boundary.

Responsibility:
    Map the closed role set (originator, reviewer, admin) to the closed
    capability set, and check that an actor may perform an operation before
    the operation touches any state.

Architecture position:
    Services layer.  Called by DocumentWorkflow at each operation boundary.

Invariants:
    - Kernel remains actor-agnostic; this module does not resolve actor
      identity (the identity collaborator supplies actor id and role).
    - Each workflow operation declares the single minimal capability it needs.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from docflow_kernel.exceptions import CapabilityDeniedError


class Role(str, Enum):
    ORIGINATOR = "originator"
    REVIEWER = "reviewer"
    ADMIN = "admin"


class Capability(str, Enum):
    SUBMIT_DOCUMENT = "document.submit"
    VIEW_OWN_DOCUMENTS = "document.view_own"
    VIEW_ALL_DOCUMENTS = "document.view_all"
    REVIEW_DOCUMENTS = "document.review"
    OVERRIDE_STATUS = "document.override_status"
    CREATE_CORRECTION = "document.create_correction"
    DELETE_OWN_PENDING = "document.delete_own_pending"
    DELETE_ANY_DOCUMENT = "document.delete_any"
    MARK_TRANSFERRED = "document.mark_transferred"
    VIEW_OWN_BALANCE = "ledger.view_own"
    VIEW_ALL_BALANCES = "ledger.view_all"
    ADJUST_BALANCE = "ledger.adjust"
    REQUEST_BUDGET = "instrument.request_budget"
    MANAGE_INSTRUMENTS = "instrument.manage"


ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.ORIGINATOR: frozenset({
        Capability.SUBMIT_DOCUMENT,
        Capability.VIEW_OWN_DOCUMENTS,
        Capability.DELETE_OWN_PENDING,
        Capability.VIEW_OWN_BALANCE,
        Capability.REQUEST_BUDGET,
    }),
    Role.REVIEWER: frozenset({
        Capability.VIEW_OWN_DOCUMENTS,
        Capability.VIEW_ALL_DOCUMENTS,
        Capability.REVIEW_DOCUMENTS,
        Capability.CREATE_CORRECTION,
        Capability.MARK_TRANSFERRED,
        Capability.VIEW_OWN_BALANCE,
        Capability.VIEW_ALL_BALANCES,
        Capability.ADJUST_BALANCE,
        Capability.MANAGE_INSTRUMENTS,
    }),
    Role.ADMIN: frozenset(Capability),
}


@dataclass(frozen=True)
class Actor:
    """Authenticated caller as supplied by the identity collaborator."""

    actor_id: UUID
    role: Role


def has_capability(actor: Actor, capability: Capability) -> bool:
    return capability in ROLE_CAPABILITIES.get(actor.role, frozenset())


def check_capability(actor: Actor, capability: Capability) -> tuple[bool, str]:
    """Check whether the actor may use a capability.

    Returns:
        (allowed, reason). reason is empty when allowed, or a short message
        when denied.
    """
    if has_capability(actor, capability):
        return (True, "")
    return (
        False,
        f"RBAC: capability '{capability.value}' not granted to role '{actor.role.value}'",
    )


def require_capability(actor: Actor, capability: Capability) -> None:
    """Raise CapabilityDeniedError unless the actor holds ``capability``."""
    allowed, _ = check_capability(actor, capability)
    if not allowed:
        raise CapabilityDeniedError(
            actor_id=str(actor.actor_id),
            role=actor.role.value,
            capability=capability.value,
        )
