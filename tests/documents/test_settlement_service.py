"""
Tests for SettlementService.

Covers:
- Correction documents: numbering, credit, preconditions, numbering race
- Advances and budget requests: lifecycle, crediting step, rejection
- Settlement cascade onto linked documents
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from docflow_kernel.domain.document import (
    DocumentKind,
    DocumentStatus,
    HistoryAction,
    ReviewDecision,
)
from docflow_kernel.domain.instrument import InstrumentStatus
from docflow_kernel.domain.ledger import TransactionKind
from docflow_kernel.exceptions import (
    CorrectionNotAllowedError,
    CorrectionNumberConflictError,
    InstrumentNotFoundError,
    InvalidAmountError,
    InvalidDocumentKindError,
    InvalidTransitionError,
    MissingReasonError,
    OptimisticLockError,
)
from docflow_kernel.models.document import DocumentModel
from docflow_kernel.selectors.document_selector import DocumentSelector
from docflow_kernel.selectors.ledger_selector import LedgerSelector
from docflow_kernel.services.document_service import DocumentService
from docflow_kernel.services.lease_service import LeaseService
from docflow_kernel.services.ledger_service import LedgerService
from docflow_kernel.services.settlement_service import SettlementService
from docflow_kernel.services.status_service import StatusService


def _balance(session, account_id):
    return LedgerSelector(session).balance(account_id).balance


def _accept_committed(session, clock, submission, owner_id, reviewer_id):
    """Create, claim and accept a document on its own session."""
    ledger = LedgerService(session, clock)
    document = DocumentService(session, ledger, clock).create(submission, owner_id)
    LeaseService(session, clock).claim(document.id, reviewer_id)
    return StatusService(session, ledger, clock).finalize(
        document.id, reviewer_id, ReviewDecision.ACCEPTED,
    )


class TestCorrections:
    """Corrections credit the originator and are numbered per original."""

    def test_corrections_are_numbered_and_credited(
        self, accepted_document, settlement_service, session, admin_id,
    ):
        original = accepted_document(number="FV/2024/77", amount=Decimal("200.00"))

        first = settlement_service.create_correction(
            original.id, Decimal("25.00"), "Price reduced after return", admin_id,
        )
        second = settlement_service.create_correction(
            original.id, Decimal("35.00"), "Shipping refunded", admin_id,
        )

        assert first.number == "FV/2024/77-KOREKTA-1"
        assert second.number == "FV/2024/77-KOREKTA-2"
        assert first.kind == DocumentKind.CORRECTION
        assert first.is_correction and not original.is_correction
        assert first.status == DocumentStatus.ACCEPTED
        assert first.original_document_id == original.id
        assert first.correction_amount == Decimal("25.00")
        assert first.current_reviewer_id is None
        assert _balance(session, original.account_id) == Decimal("-140.00")

        credits = LedgerSelector(session).transactions_for(first.id)
        assert [t.kind for t in credits] == [TransactionKind.CORRECTION_CREDIT]

    def test_numbering_skips_deleted_corrections(
        self, accepted_document, settlement_service, document_service, session, admin_id,
    ):
        original = accepted_document(number="FV/9")
        first = settlement_service.create_correction(
            original.id, Decimal("1"), "First fix", admin_id,
        )
        settlement_service.create_correction(original.id, Decimal("1"), "Second fix", admin_id)
        document_service.delete(first.id, admin_id, administrative=True)

        third = settlement_service.create_correction(
            original.id, Decimal("1"), "Third fix", admin_id,
        )

        assert third.correction_sequence == 3
        listed = DocumentSelector(session).corrections_of(original.id)
        assert [c.correction_sequence for c in listed] == [2, 3]

    def test_custom_infix(self, accepted_document, session, ledger_service, clock, admin_id):
        original = accepted_document(number="FV/10")
        service = SettlementService(session, ledger_service, clock, number_infix="CORR")

        correction = service.create_correction(original.id, Decimal("2"), "Typo", admin_id)

        assert correction.number == "FV/10-CORR-1"

    def test_correction_of_correction_is_rejected(
        self, accepted_document, settlement_service, admin_id,
    ):
        original = accepted_document()
        correction = settlement_service.create_correction(
            original.id, Decimal("5"), "Discount", admin_id,
        )

        with pytest.raises(InvalidDocumentKindError):
            settlement_service.create_correction(correction.id, Decimal("1"), "Again", admin_id)

    def test_original_must_be_accepted(self, create_document, settlement_service, admin_id):
        original = create_document()

        with pytest.raises(CorrectionNotAllowedError):
            settlement_service.create_correction(original.id, Decimal("5"), "Early", admin_id)

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-3.00"), Decimal("0.001")])
    def test_amount_must_be_positive(
        self, accepted_document, settlement_service, admin_id, amount,
    ):
        original = accepted_document()

        with pytest.raises(InvalidAmountError):
            settlement_service.create_correction(original.id, amount, "Discount", admin_id)

    def test_justification_is_required(self, accepted_document, settlement_service, admin_id):
        original = accepted_document()

        with pytest.raises(MissingReasonError):
            settlement_service.create_correction(original.id, Decimal("5"), "  ", admin_id)

    def test_duplicate_number_is_a_conflict(
        self, accepted_document, settlement_service, admin_id, monkeypatch, captured_logs,
    ):
        original = accepted_document()
        settlement_service.create_correction(original.id, Decimal("5"), "Discount", admin_id)
        # A concurrent writer computed the same next number.
        monkeypatch.setattr(
            settlement_service, "_next_correction_sequence", lambda original_id: 1,
        )

        with pytest.raises(CorrectionNumberConflictError) as exc_info:
            settlement_service.create_correction(original.id, Decimal("7"), "Second", admin_id)

        assert exc_info.value.sequence == 1
        assert any(r["message"] == "correction_number_conflict" for r in captured_logs())


    def test_original_overridden_meanwhile_is_a_conflict(
        self, session_factory, clock, make_submission, owner_id, reviewer_id, admin_id,
    ):
        with session_factory() as setup:
            original = _accept_committed(
                setup, clock, make_submission(amount=Decimal("200.00")), owner_id, reviewer_id,
            )
            setup.commit()

        correcting = session_factory()
        held = correcting.get(DocumentModel, original.id)

        with session_factory() as admin_session:
            StatusService(
                admin_session, LedgerService(admin_session, clock), clock,
            ).admin_override(original.id, DocumentStatus.REJECTED, "Duplicate invoice", admin_id)
            admin_session.commit()
            balance_after_override = _balance(admin_session, original.account_id)

        assert held.status == DocumentStatus.ACCEPTED.value
        with pytest.raises(OptimisticLockError) as exc_info:
            SettlementService(
                correcting, LedgerService(correcting, clock), clock,
            ).create_correction(original.id, Decimal("30.00"), "Partial refund", admin_id)
        correcting.rollback()
        correcting.close()

        assert exc_info.value.entity_id == str(original.id)
        with session_factory() as check:
            documents = DocumentSelector(check)
            assert documents.corrections_of(original.id) == []
            assert documents.get(original.id).status == DocumentStatus.REJECTED
            assert _balance(check, original.account_id) == balance_after_override


class TestAdvances:
    """pending -> transferred -> settled."""

    def test_transfer_credits_owner(self, settlement_service, session, owner_id, admin_id):
        advance = settlement_service.open_advance(owner_id, Decimal("500.00"), "Trip", admin_id)
        assert advance.status == InstrumentStatus.PENDING
        assert _balance(session, advance.account_id) == Decimal("0.00")

        transferred = settlement_service.mark_instrument_transferred(advance.id, admin_id)

        assert transferred.status == InstrumentStatus.TRANSFERRED
        assert _balance(session, advance.account_id) == Decimal("500.00")
        [credit] = LedgerSelector(session).transactions_for(advance.id)
        assert credit.kind == TransactionKind.INSTRUMENT_CREDIT

    def test_pending_advance_cannot_settle(self, settlement_service, owner_id, admin_id):
        advance = settlement_service.open_advance(owner_id, Decimal("10"), "Taxi", admin_id)

        with pytest.raises(InvalidTransitionError):
            settlement_service.settle_instrument(advance.id, admin_id)

    def test_advance_cannot_be_approved(self, settlement_service, owner_id, admin_id):
        advance = settlement_service.open_advance(owner_id, Decimal("10"), "Taxi", admin_id)

        with pytest.raises(InvalidTransitionError):
            settlement_service.approve_budget_request(advance.id, admin_id)

    def test_non_positive_amount(self, settlement_service, owner_id, admin_id):
        with pytest.raises(InvalidAmountError):
            settlement_service.open_advance(owner_id, Decimal("0"), "Nothing", admin_id)

    def test_missing_instrument(self, settlement_service, admin_id):
        with pytest.raises(InstrumentNotFoundError):
            settlement_service.mark_instrument_transferred(uuid4(), admin_id)


class TestBudgetRequests:
    """pending -> approved -> transferred -> settled, or pending -> rejected."""

    def test_approval_credits_owner_once(self, settlement_service, session, owner_id, admin_id):
        request = settlement_service.open_budget_request(
            owner_id, Decimal("300.00"), "Laptop", admin_id,
        )

        approved = settlement_service.approve_budget_request(request.id, admin_id)
        settlement_service.mark_instrument_transferred(request.id, admin_id)

        assert approved.status == InstrumentStatus.APPROVED
        assert approved.decided_by_id == admin_id
        assert _balance(session, request.account_id) == Decimal("300.00")

    def test_rejection_requires_reason(self, settlement_service, owner_id, admin_id):
        request = settlement_service.open_budget_request(
            owner_id, Decimal("300.00"), "Laptop", admin_id,
        )

        with pytest.raises(MissingReasonError):
            settlement_service.reject_budget_request(request.id, admin_id, "")

    def test_rejected_request_is_terminal(self, settlement_service, session, owner_id, admin_id):
        request = settlement_service.open_budget_request(
            owner_id, Decimal("300.00"), "Laptop", admin_id,
        )

        rejected = settlement_service.reject_budget_request(request.id, admin_id, "No budget")

        assert rejected.status == InstrumentStatus.REJECTED
        assert rejected.rejection_reason == "No budget"
        assert _balance(session, request.account_id) == Decimal("0.00")
        with pytest.raises(InvalidTransitionError):
            settlement_service.approve_budget_request(request.id, admin_id)

    def test_pending_request_cannot_be_transferred(self, settlement_service, owner_id, admin_id):
        request = settlement_service.open_budget_request(
            owner_id, Decimal("300.00"), "Laptop", admin_id,
        )

        with pytest.raises(InvalidTransitionError):
            settlement_service.mark_instrument_transferred(request.id, admin_id)


class TestSettlementCascade:
    """Settling an instrument settles its accepted and transferred documents."""

    def test_cascade(
        self, settlement_service, status_service, create_document, accepted_document,
        lease_service, session, owner_id, reviewer_id, admin_id,
    ):
        advance = settlement_service.open_advance(owner_id, Decimal("500.00"), "Trip", admin_id)
        settlement_service.mark_instrument_transferred(advance.id, admin_id)
        accepted = accepted_document(advance_id=advance.id)
        transferred = accepted_document(advance_id=advance.id)
        status_service.mark_transferred(transferred.id, admin_id)
        in_review = create_document(advance_id=advance.id)
        lease_service.claim(in_review.id, reviewer_id)
        unrelated = accepted_document()

        settlement = settlement_service.settle_instrument(advance.id, admin_id)

        assert settlement.instrument.status == InstrumentStatus.SETTLED
        assert set(settlement.settled_document_ids) == {accepted.id, transferred.id}
        documents = DocumentSelector(session)
        for document_id in (accepted.id, transferred.id):
            settled = documents.get(document_id)
            assert settled.status == DocumentStatus.SETTLED
            assert settled.settled_by_id == admin_id
            assert settled.history[-1].action == HistoryAction.SETTLED_BY_CASCADE
        assert documents.get(in_review.id).status == DocumentStatus.IN_REVIEW
        assert documents.get(unrelated.id).status == DocumentStatus.ACCEPTED

    def test_settled_instrument_is_terminal(self, settlement_service, owner_id, admin_id):
        advance = settlement_service.open_advance(owner_id, Decimal("50"), "Taxi", admin_id)
        settlement_service.mark_instrument_transferred(advance.id, admin_id)
        settlement_service.settle_instrument(advance.id, admin_id)

        with pytest.raises(InvalidTransitionError):
            settlement_service.settle_instrument(advance.id, admin_id)

    def test_budget_request_cascade(
        self, settlement_service, accepted_document, session, owner_id, admin_id,
    ):
        request = settlement_service.open_budget_request(
            owner_id, Decimal("80.00"), "Monitor", admin_id,
        )
        settlement_service.approve_budget_request(request.id, admin_id)
        settlement_service.mark_instrument_transferred(request.id, admin_id)
        document = accepted_document(budget_request_id=request.id)

        settlement = settlement_service.settle_instrument(request.id, admin_id)

        assert settlement.settled_document_ids == (document.id,)
        assert DocumentSelector(session).get(document.id).status == DocumentStatus.SETTLED

    def test_document_conflict_names_the_document(
        self, session_factory, clock, make_submission, owner_id, reviewer_id, admin_id,
    ):
        with session_factory() as setup:
            settlement = SettlementService(setup, LedgerService(setup, clock), clock)
            advance = settlement.open_advance(owner_id, Decimal("500.00"), "Trip", admin_id)
            settlement.mark_instrument_transferred(advance.id, admin_id)
            document = _accept_committed(
                setup, clock, make_submission(advance_id=advance.id), owner_id, reviewer_id,
            )
            setup.commit()

        settling = session_factory()
        held = settling.get(DocumentModel, document.id)

        with session_factory() as other:
            StatusService(other, LedgerService(other, clock), clock).mark_transferred(
                document.id, admin_id,
            )
            other.commit()

        assert held.status == DocumentStatus.ACCEPTED.value
        with pytest.raises(OptimisticLockError) as exc_info:
            SettlementService(
                settling, LedgerService(settling, clock), clock,
            ).settle_instrument(advance.id, admin_id)
        settling.rollback()
        settling.close()

        assert exc_info.value.entity_type == "Document"
        assert exc_info.value.entity_id == str(document.id)
        with session_factory() as check:
            assert DocumentSelector(check).get(document.id).status == DocumentStatus.TRANSFERRED
