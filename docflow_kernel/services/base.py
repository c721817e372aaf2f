"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for every
    service in the kernel layer.  All concrete services receive a SQLAlchemy
    ``Session`` that they use via ``session.flush()`` -- never
    ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's transaction
      and never commit or rollback themselves.  The caller (DocumentWorkflow,
      ``session_scope``, or a test) owns commit/rollback, so a document
      mutation and its ledger posting are one all-or-nothing unit.
    - Lost races surface as OptimisticLockError: a versioned flush that
      matched zero rows is translated in ``_flush_or_conflict``.

Failure modes:
    - If a subclass calls ``session.commit()`` the atomicity of multi-step
      operations (status change + ledger posting + cascade) is broken.
"""

from abc import ABC
from datetime import datetime
from typing import Generic, TypeVar

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from docflow_kernel.db.base import Base
from docflow_kernel.domain.clock import Clock, SystemClock
from docflow_kernel.exceptions import OptimisticLockError

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active transaction.
        Time comes only from the injected Clock.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide query-only methods -- those belong in selectors/.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self._clock = clock or SystemClock()

    def _now(self) -> datetime:
        return self._clock.now_utc()

    def _flush_or_conflict(self, entity_type: str, entity_id: object) -> None:
        """Flush pending changes; a version mismatch becomes OptimisticLockError."""
        try:
            self.session.flush()
        except StaleDataError as exc:
            raise OptimisticLockError(entity_type, str(entity_id)) from exc
