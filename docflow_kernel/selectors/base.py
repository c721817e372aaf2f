"""
Module: docflow_kernel.selectors.base
Responsibility: Abstract base class for all read-only query selectors.
    Selectors are the read side: list views, balance checks and ledger
    history never take part in the review lease or the ledger's optimistic
    writes, so they are never blocked by them.
Architecture position: Kernel > Selectors.  May import from db/, models/
    and domain/ DTOs.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Read-only access: selectors MUST NOT call session.add(),
      session.delete(), session.commit() or session.flush().
    - Selectors return frozen DTOs, never ORM instances.
    - The caller owns the session and its transaction scope.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from docflow_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors accept a Session from the caller, perform read-only queries,
        and return DTOs.  They MUST NOT mutate any data.
    """

    def __init__(self, session: Session):
        self.session = session
