"""
Tests for LeaseService.

Covers:
- claim: pending -> in_review, re-claim by holder, held lease, corrections
- heartbeat: refresh, silent False when the lease is gone
- release: idempotent, back to pending
- reclaim_stale: threshold boundary, missing heartbeat, version bump
- status = in_review iff a reviewer is set
"""

import pytest

from docflow_kernel.domain.document import DocumentStatus, ReviewDecision
from docflow_kernel.exceptions import (
    InvalidDocumentKindError,
    InvalidTransitionError,
    LeaseHeldError,
    OptimisticLockError,
)
from docflow_kernel.models.document import DocumentModel
from docflow_kernel.services.lease_service import LeaseService


class TestClaim:
    """Taking the review lease."""

    def test_claim_pending_document(self, create_document, lease_service, reviewer_id, clock):
        document = create_document()

        claimed = lease_service.claim(document.id, reviewer_id)

        assert claimed.status == DocumentStatus.IN_REVIEW
        assert claimed.under_review and not document.under_review
        assert claimed.current_reviewer_id == reviewer_id
        assert claimed.lease_started_at == clock.now_utc()
        assert claimed.last_heartbeat_at == clock.now_utc()
        assert claimed.version > document.version

    def test_reclaim_by_holder_refreshes_heartbeat(
        self, create_document, lease_service, reviewer_id, clock,
    ):
        document = create_document()
        lease_service.claim(document.id, reviewer_id)
        clock.advance(2)

        again = lease_service.claim(document.id, reviewer_id)

        assert again.current_reviewer_id == reviewer_id
        assert again.last_heartbeat_at == clock.now_utc()

    def test_claim_held_by_another_reviewer_conflicts(
        self, create_document, lease_service, reviewer_id, second_reviewer_id,
    ):
        document = create_document()
        lease_service.claim(document.id, reviewer_id)

        with pytest.raises(LeaseHeldError) as exc_info:
            lease_service.claim(document.id, second_reviewer_id)

        assert exc_info.value.holder_id == str(reviewer_id)

    def test_claim_decided_document_is_invalid(
        self, accepted_document, lease_service, second_reviewer_id,
    ):
        document = accepted_document()

        with pytest.raises(InvalidTransitionError):
            lease_service.claim(document.id, second_reviewer_id)

    def test_corrections_are_never_claimed(
        self, accepted_document, settlement_service, lease_service, reviewer_id,
    ):
        original = accepted_document(amount=None)
        correction = settlement_service.create_correction(
            original.id, "10.00", "partial refund", reviewer_id,
        )

        with pytest.raises(InvalidDocumentKindError):
            lease_service.claim(correction.id, reviewer_id)

    def test_claim_logs_event(self, create_document, lease_service, reviewer_id, captured_logs):
        document = create_document()

        lease_service.claim(document.id, reviewer_id)

        claimed = [r for r in captured_logs() if r["message"] == "document_claimed"]
        assert claimed and claimed[0]["reviewer_id"] == str(reviewer_id)


class TestClaimRace:
    """Two reviewers claim the same pending document."""

    def test_second_claim_on_stale_read_conflicts(
        self, session_factory, clock, make_submission, owner_id, reviewer_id,
        second_reviewer_id,
    ):
        from docflow_kernel.services.document_service import DocumentService
        from docflow_kernel.services.ledger_service import LedgerService

        with session_factory() as setup:
            document = DocumentService(setup, LedgerService(setup, clock), clock).create(
                make_submission(), owner_id,
            )
            setup.commit()

        loser = session_factory()
        loser_row = loser.get(DocumentModel, document.id)

        with session_factory() as winner:
            LeaseService(winner, clock).claim(document.id, reviewer_id)
            winner.commit()

        assert loser_row.current_reviewer_id is None
        with pytest.raises(OptimisticLockError):
            LeaseService(loser, clock).claim(document.id, second_reviewer_id)
        loser.rollback()
        loser.close()

        with session_factory() as check:
            row = check.get(DocumentModel, document.id)
            assert row.current_reviewer_id == reviewer_id
            assert row.status == DocumentStatus.IN_REVIEW.value


class TestHeartbeat:
    """Lease liveness."""

    def test_heartbeat_refreshes_timestamp(
        self, create_document, lease_service, session, reviewer_id, clock,
    ):
        document = create_document()
        lease_service.claim(document.id, reviewer_id)
        clock.advance(0.8)

        assert lease_service.heartbeat(document.id, reviewer_id) is True

        row = session.get(DocumentModel, document.id)
        assert row.to_dto().last_heartbeat_at == clock.now_utc()

    def test_heartbeat_does_not_bump_version(
        self, create_document, lease_service, session, reviewer_id,
    ):
        document = create_document()
        claimed = lease_service.claim(document.id, reviewer_id)

        lease_service.heartbeat(document.id, reviewer_id)

        assert session.get(DocumentModel, document.id).version == claimed.version

    def test_heartbeat_from_non_holder_returns_false(
        self, create_document, lease_service, reviewer_id, second_reviewer_id,
    ):
        document = create_document()
        lease_service.claim(document.id, reviewer_id)

        assert lease_service.heartbeat(document.id, second_reviewer_id) is False

    def test_heartbeat_after_reclaim_returns_false(
        self, create_document, lease_service, reviewer_id, clock,
    ):
        document = create_document()
        lease_service.claim(document.id, reviewer_id)
        clock.advance(6)
        lease_service.reclaim_stale()

        assert lease_service.heartbeat(document.id, reviewer_id) is False

    def test_heartbeat_on_pending_document_returns_false(
        self, create_document, lease_service, reviewer_id,
    ):
        document = create_document()

        assert lease_service.heartbeat(document.id, reviewer_id) is False


class TestRelease:
    """Giving the lease back."""

    def test_release_returns_to_pending(
        self, create_document, lease_service, session, reviewer_id,
    ):
        document = create_document()
        lease_service.claim(document.id, reviewer_id)

        assert lease_service.release(document.id, reviewer_id) is True

        row = session.get(DocumentModel, document.id)
        assert row.status == DocumentStatus.PENDING.value
        assert row.current_reviewer_id is None
        assert row.lease_started_at is None
        assert row.last_heartbeat_at is None

    def test_release_is_idempotent(self, create_document, lease_service, reviewer_id):
        document = create_document()
        lease_service.claim(document.id, reviewer_id)
        lease_service.release(document.id, reviewer_id)

        assert lease_service.release(document.id, reviewer_id) is False

    def test_release_by_non_holder_is_noop(
        self, create_document, lease_service, session, reviewer_id, second_reviewer_id,
    ):
        document = create_document()
        lease_service.claim(document.id, reviewer_id)

        assert lease_service.release(document.id, second_reviewer_id) is False
        assert session.get(DocumentModel, document.id).current_reviewer_id == reviewer_id

    def test_release_bumps_version(self, create_document, lease_service, session, reviewer_id):
        document = create_document()
        claimed = lease_service.claim(document.id, reviewer_id)

        lease_service.release(document.id, reviewer_id)

        assert session.get(DocumentModel, document.id).version == claimed.version + 1


class TestReclaimStale:
    """The sweep."""

    def test_lease_within_threshold_is_kept(
        self, create_document, lease_service, reviewer_id, clock,
    ):
        document = create_document()
        lease_service.claim(document.id, reviewer_id)
        clock.advance(5)

        assert lease_service.reclaim_stale() == []

    def test_lease_past_threshold_is_reclaimed(
        self, create_document, lease_service, session, reviewer_id, clock,
    ):
        document = create_document()
        lease_service.claim(document.id, reviewer_id)
        clock.advance(5.1)

        assert lease_service.reclaim_stale() == [document.id]

        row = session.get(DocumentModel, document.id)
        assert row.status == DocumentStatus.PENDING.value
        assert row.current_reviewer_id is None

    def test_heartbeats_keep_lease_alive(
        self, create_document, lease_service, reviewer_id, clock,
    ):
        document = create_document()
        lease_service.claim(document.id, reviewer_id)
        for _ in range(10):
            clock.advance(0.8)
            lease_service.heartbeat(document.id, reviewer_id)
            assert lease_service.reclaim_stale() == []

    def test_explicit_threshold_overrides_default(
        self, create_document, lease_service, reviewer_id, clock,
    ):
        document = create_document()
        lease_service.claim(document.id, reviewer_id)
        clock.advance(2)

        assert lease_service.reclaim_stale(stale_threshold_seconds=1) == [document.id]

    def test_reclaim_ignores_other_statuses(
        self, create_document, accepted_document, lease_service, clock,
    ):
        create_document()
        accepted_document()
        clock.advance(60)

        assert lease_service.reclaim_stale() == []

    def test_finalize_after_reclaim_fails(
        self, session_factory, clock, make_submission, owner_id, reviewer_id,
    ):
        from docflow_kernel.services.document_service import DocumentService
        from docflow_kernel.services.ledger_service import LedgerService
        from docflow_kernel.services.status_service import StatusService

        with session_factory() as setup:
            document = DocumentService(setup, LedgerService(setup, clock), clock).create(
                make_submission(), owner_id,
            )
            LeaseService(setup, clock).claim(document.id, reviewer_id)
            setup.commit()

        silent = session_factory()
        silent_row = silent.get(DocumentModel, document.id)

        clock.advance(6)
        with session_factory() as sweeper:
            assert LeaseService(sweeper, clock).reclaim_stale() == [document.id]
            sweeper.commit()

        assert silent_row.current_reviewer_id == reviewer_id
        with pytest.raises(OptimisticLockError):
            StatusService(silent, LedgerService(silent, clock), clock).finalize(
                document.id, reviewer_id, ReviewDecision.ACCEPTED,
            )
        silent.rollback()
        silent.close()

    def test_reclaim_logs_count(
        self, create_document, lease_service, reviewer_id, clock, captured_logs,
    ):
        first = create_document()
        second = create_document()
        lease_service.claim(first.id, reviewer_id)
        lease_service.claim(second.id, reviewer_id)
        clock.advance(10)

        reclaimed = lease_service.reclaim_stale()

        assert set(reclaimed) == {first.id, second.id}
        events = [r for r in captured_logs() if r["message"] == "leases_reclaimed"]
        assert events[0]["reclaimed_count"] == 2
