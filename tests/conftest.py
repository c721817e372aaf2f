"""
Pytest fixtures for the docflow test suite.

Provides:
- A fresh database per test (temporary SQLite file, or DATABASE_URL)
- Kernel service fixtures sharing one session and a deterministic clock
- Document / actor factories
- A DocumentWorkflow wired to in-memory collaborators
- Captured structured logs

Environment Variables:
- DATABASE_URL: database connection URL.  When it points at PostgreSQL the
  tests marked ``postgres`` (true multi-threaded races) run as well;
  otherwise they are skipped.
"""

import json
import logging
import os
from decimal import Decimal
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy import text
from sqlalchemy.orm import Session

from docflow_config import get_active_config
from docflow_kernel.db.base import Base
from docflow_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    is_postgres,
    reset_engine,
)
from docflow_kernel.domain.clock import DeterministicClock
from docflow_kernel.domain.document import (
    DocumentKind,
    DocumentSubmission,
    ReviewDecision,
)
from docflow_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from docflow_kernel.services.document_service import DocumentService
from docflow_kernel.services.lease_service import LeaseService
from docflow_kernel.services.ledger_service import LedgerService
from docflow_kernel.services.settlement_service import SettlementService
from docflow_kernel.services.status_service import StatusService
from docflow_services.rbac_authority import Actor, Role
from docflow_services.storage import InMemoryObjectStore
from docflow_services.workflow import DocumentWorkflow

ORGANISATION_ID = uuid4()


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture docflow logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, lease_service):
            lease_service.claim(...)
            logs = captured_logs()
            assert any(r["message"] == "document_claimed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("docflow")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Markers
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for DB locks"
    )


def pytest_collection_modifyitems(config, items):
    if os.environ.get("DATABASE_URL", "").startswith("postgresql"):
        return
    skip_pg = pytest.mark.skip(reason="needs DATABASE_URL pointing at PostgreSQL")
    for item in items:
        if "postgres" in item.keywords:
            item.add_marker(skip_pg)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def database_url(tmp_path) -> str:
    """DATABASE_URL if set, otherwise a throwaway SQLite file."""
    return os.environ.get("DATABASE_URL") or f"sqlite:///{tmp_path / 'docflow_test.db'}"


def _truncate_all_tables(engine):
    table_names = [t.name for t in reversed(Base.metadata.sorted_tables)]
    with engine.connect() as conn:
        conn.execute(text("TRUNCATE " + ", ".join(table_names) + " CASCADE"))
        conn.commit()


@pytest.fixture
def db_engine(database_url):
    """Engine with a freshly created schema, torn down after the test."""
    eng = init_engine_from_url(
        database_url, echo=False, pool_size=30, max_overflow=20, pool_timeout=10,
    )
    drop_tables()
    create_tables()
    yield eng
    if is_postgres():
        _truncate_all_tables(eng)
    reset_engine()


@pytest.fixture
def session_factory(db_engine):
    return get_session_factory()


@pytest.fixture
def session(session_factory) -> Generator[Session, None, None]:
    """A session that is rolled back (not committed) at teardown."""
    sess = session_factory()
    try:
        yield sess
    finally:
        sess.rollback()
        sess.close()


# =============================================================================
# Clock and identities
# =============================================================================


@pytest.fixture
def clock():
    """Provide a deterministic clock for testing."""
    return DeterministicClock()


@pytest.fixture
def owner_id() -> UUID:
    return uuid4()


@pytest.fixture
def reviewer_id() -> UUID:
    return uuid4()


@pytest.fixture
def second_reviewer_id() -> UUID:
    return uuid4()


@pytest.fixture
def admin_id() -> UUID:
    return uuid4()


# =============================================================================
# Kernel service fixtures (one session, one clock)
# =============================================================================


@pytest.fixture
def ledger_service(session, clock) -> LedgerService:
    return LedgerService(session, clock)


@pytest.fixture
def lease_service(session, clock) -> LeaseService:
    return LeaseService(session, clock, stale_threshold_seconds=5.0)


@pytest.fixture
def status_service(session, ledger_service, clock) -> StatusService:
    return StatusService(session, ledger_service, clock)


@pytest.fixture
def document_service(session, ledger_service, clock) -> DocumentService:
    return DocumentService(session, ledger_service, clock)


@pytest.fixture
def settlement_service(session, ledger_service, clock) -> SettlementService:
    return SettlementService(session, ledger_service, clock)


# =============================================================================
# Factories
# =============================================================================


@pytest.fixture
def make_submission():
    """Build a valid DocumentSubmission, overriding any field."""
    counter = iter(range(1, 10_000))

    def _make(**overrides) -> DocumentSubmission:
        fields = dict(
            number=f"FV/2024/{next(counter):04d}",
            kind=DocumentKind.STANDARD,
            organisation_id=ORGANISATION_ID,
            justification="Conference travel for the sales team",
            description=None,
            amount=Decimal("50.00"),
        )
        fields.update(overrides)
        return DocumentSubmission(**fields)

    return _make


@pytest.fixture
def create_document(document_service, make_submission, owner_id):
    """Create a pending document through DocumentService."""

    def _create(owner: UUID | None = None, **overrides):
        return document_service.create(make_submission(**overrides), owner or owner_id)

    return _create


@pytest.fixture
def accepted_document(create_document, lease_service, status_service, reviewer_id):
    """Create, claim and accept a document."""

    def _accepted(**overrides):
        document = create_document(**overrides)
        lease_service.claim(document.id, reviewer_id)
        return status_service.finalize(document.id, reviewer_id, ReviewDecision.ACCEPTED)

    return _accepted


# =============================================================================
# Workflow
# =============================================================================


class RecordingNotifier:
    """Collects notifications; optionally fails every call."""

    def __init__(self, fail: bool = False):
        self.sent: list[tuple] = []
        self.fail = fail

    def notify(self, recipient_id, event_kind, payload):
        if self.fail:
            raise ConnectionError("notification backend unavailable")
        self.sent.append((recipient_id, event_kind, payload))

    def kinds(self) -> list:
        return [kind for _, kind, _ in self.sent]


@pytest.fixture
def workflow_config():
    return get_active_config()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def failing_notifier() -> RecordingNotifier:
    return RecordingNotifier(fail=True)


@pytest.fixture
def object_store() -> InMemoryObjectStore:
    return InMemoryObjectStore()


@pytest.fixture
def workflow(session_factory, workflow_config, object_store, notifier, clock) -> DocumentWorkflow:
    return DocumentWorkflow(
        session_factory,
        workflow_config,
        storage=object_store,
        notifier=notifier,
        clock=clock,
    )


@pytest.fixture
def originator(owner_id) -> Actor:
    return Actor(owner_id, Role.ORIGINATOR)


@pytest.fixture
def reviewer(reviewer_id) -> Actor:
    return Actor(reviewer_id, Role.REVIEWER)


@pytest.fixture
def second_reviewer(second_reviewer_id) -> Actor:
    return Actor(second_reviewer_id, Role.REVIEWER)


@pytest.fixture
def admin(admin_id) -> Actor:
    return Actor(admin_id, Role.ADMIN)
