"""
Typed Exception Hierarchy for the Docflow Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the workflow must tell apart "try again after refreshing" from
"this request can never succeed". Parsing messages for that is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Every exception belongs to a CATEGORY that an outer surface maps to a
     response status (not_found, forbidden, conflict, bad_request)
  4. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        workflow.finalize(actor, document_id, "accepted")
    except ConflictError as e:
        # Lease lost or document changed underneath: refresh and retry
        refresh(document_id)
    except BadRequestError as e:
        show_validation_error(e.code)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    DocflowError (base)
    |
    +-- NotFoundError
    |   +-- DocumentNotFoundError
    |   +-- AccountNotFoundError
    |   +-- InstrumentNotFoundError
    |   +-- StoredObjectNotFoundError
    |
    +-- ForbiddenError
    |   +-- CapabilityDeniedError
    |   +-- NotLeaseHolderError
    |   +-- NotOriginalDeciderError
    |   +-- NotDocumentOwnerError
    |
    +-- ConflictError
    |   +-- OptimisticLockError
    |   |   +-- LedgerConflictError
    |   +-- LeaseHeldError
    |   +-- AlreadyFinalizedError
    |   +-- CorrectionNumberConflictError
    |
    +-- BadRequestError
    |   +-- MissingReasonError
    |   +-- InvalidAmountError
    |   +-- InvalidDocumentKindError
    |   +-- InvalidTransitionError
    |   +-- InvalidChangesetError
    |   +-- InvalidSubmissionError
    |   +-- InvalidInstrumentLinkError
    |   +-- CorrectionNotAllowedError
    |   +-- DocumentHasCorrectionsError
    |
    +-- ImmutabilityViolationError
    +-- LedgerChainBrokenError

===============================================================================
HANDLING PATTERNS
===============================================================================

1. ConflictError is the only category a caller should recover from: re-fetch
   the document or balance and retry the whole operation if it still makes
   sense.  The kernel never retries on its own.

2. BadRequestError and ForbiddenError are terminal for the request.  They are
   raised before any state changes.

3. ImmutabilityViolationError and LedgerChainBrokenError indicate a defect or
   tampering and should halt processing.
"""


class DocflowError(Exception):
    """
    Base exception for all docflow kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification, and inherit a `category`.
    """

    code: str = "DOCFLOW_ERROR"
    category: str = "internal"


# Not found


class NotFoundError(DocflowError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"
    category: str = "not_found"


class DocumentNotFoundError(NotFoundError):
    """Document with given ID was not found."""

    code: str = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(f"Document not found: {document_id}")


class AccountNotFoundError(NotFoundError):
    """Balance account was not found."""

    code: str = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account not found: {account_id}")


class InstrumentNotFoundError(NotFoundError):
    """Advance or budget request was not found."""

    code: str = "INSTRUMENT_NOT_FOUND"

    def __init__(self, instrument_id: str):
        self.instrument_id = instrument_id
        super().__init__(f"Financial instrument not found: {instrument_id}")


class StoredObjectNotFoundError(NotFoundError):
    """Object storage has no blob under the given key."""

    code: str = "STORED_OBJECT_NOT_FOUND"

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Stored object not found: {key}")


# Forbidden


class ForbiddenError(DocflowError):
    """Base exception for operations the caller may not perform."""

    code: str = "FORBIDDEN"
    category: str = "forbidden"


class CapabilityDeniedError(ForbiddenError):
    """Actor's role does not grant the capability an operation requires."""

    code: str = "CAPABILITY_DENIED"

    def __init__(self, actor_id: str, role: str, capability: str):
        self.actor_id = actor_id
        self.role = role
        self.capability = capability
        super().__init__(
            f"Actor {actor_id} with role {role} lacks capability {capability}"
        )


class NotLeaseHolderError(ForbiddenError):
    """Caller does not hold the review lease on the document."""

    code: str = "NOT_LEASE_HOLDER"

    def __init__(self, document_id: str, actor_id: str, holder_id: str | None):
        self.document_id = document_id
        self.actor_id = actor_id
        self.holder_id = holder_id
        super().__init__(
            f"Actor {actor_id} does not hold the review lease on document "
            f"{document_id} (holder: {holder_id})"
        )


class NotOriginalDeciderError(ForbiddenError):
    """Only the reviewer who decided a document may request re-review."""

    code: str = "NOT_ORIGINAL_DECIDER"

    def __init__(self, document_id: str, actor_id: str, decided_by_id: str | None):
        self.document_id = document_id
        self.actor_id = actor_id
        self.decided_by_id = decided_by_id
        super().__init__(
            f"Actor {actor_id} did not decide document {document_id}"
        )


class NotDocumentOwnerError(ForbiddenError):
    """Caller is not the originator of the document."""

    code: str = "NOT_DOCUMENT_OWNER"

    def __init__(self, document_id: str, actor_id: str):
        self.document_id = document_id
        self.actor_id = actor_id
        super().__init__(
            f"Actor {actor_id} is not the owner of document {document_id}"
        )


# Conflict


class ConflictError(DocflowError):
    """Base exception for lost races.  Callers refresh and may retry."""

    code: str = "CONFLICT"
    category: str = "conflict"


class OptimisticLockError(ConflictError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


class LedgerConflictError(OptimisticLockError):
    """Account balance changed between read and conditional write."""

    code: str = "LEDGER_CONFLICT"

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__("Account", account_id)


class LeaseHeldError(ConflictError):
    """Another reviewer already holds the review lease."""

    code: str = "LEASE_HELD"

    def __init__(self, document_id: str, holder_id: str | None):
        self.document_id = document_id
        self.holder_id = holder_id
        super().__init__(
            f"Document {document_id} is already under review by {holder_id}"
        )


class AlreadyFinalizedError(ConflictError):
    """Document already carries a decision."""

    code: str = "ALREADY_FINALIZED"

    def __init__(self, document_id: str, status: str):
        self.document_id = document_id
        self.status = status
        super().__init__(f"Document {document_id} is already {status}")


class CorrectionNumberConflictError(ConflictError):
    """Two corrections of the same original raced for one sequence number."""

    code: str = "CORRECTION_NUMBER_CONFLICT"

    def __init__(self, original_document_id: str, sequence: int):
        self.original_document_id = original_document_id
        self.sequence = sequence
        super().__init__(
            f"Correction number {sequence} of document {original_document_id} "
            "was taken by a concurrent request"
        )


# Bad request


class BadRequestError(DocflowError):
    """Base exception for validation failures.  Never retried."""

    code: str = "BAD_REQUEST"
    category: str = "bad_request"


class MissingReasonError(BadRequestError):
    """A required free-text reason, note or justification is missing or too short."""

    code: str = "MISSING_REASON"

    def __init__(self, field: str, min_length: int = 1):
        self.field = field
        self.min_length = min_length
        super().__init__(
            f"Field '{field}' is required (at least {min_length} characters)"
        )


class InvalidAmountError(BadRequestError):
    """Monetary amount is zero, negative where positive is required, or malformed."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, amount: str, reason: str):
        self.amount = amount
        self.reason = reason
        super().__init__(f"Invalid amount {amount}: {reason}")


class InvalidDocumentKindError(BadRequestError):
    """Operation is not available for this document kind."""

    code: str = "INVALID_DOCUMENT_KIND"

    def __init__(self, document_id: str | None, kind: str, operation: str):
        self.document_id = document_id
        self.kind = kind
        self.operation = operation
        super().__init__(
            f"Operation '{operation}' is not allowed for {kind} documents"
        )


class InvalidTransitionError(BadRequestError):
    """Requested status transition is not in the transition table."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, entity_id: str, from_status: str, to_status: str):
        self.entity_id = entity_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Cannot transition {entity_id} from {from_status} to {to_status}"
        )


class InvalidChangesetError(BadRequestError):
    """Edit changeset failed validation."""

    code: str = "INVALID_CHANGESET"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid value for '{field}': {reason}")


class InvalidSubmissionError(BadRequestError):
    """New document submission failed validation."""

    code: str = "INVALID_SUBMISSION"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid submission field '{field}': {reason}")


class InvalidInstrumentLinkError(BadRequestError):
    """Document references an instrument of the wrong kind or owner."""

    code: str = "INVALID_INSTRUMENT_LINK"

    def __init__(self, instrument_id: str, reason: str):
        self.instrument_id = instrument_id
        self.reason = reason
        super().__init__(f"Cannot link instrument {instrument_id}: {reason}")


class CorrectionNotAllowedError(BadRequestError):
    """Original document cannot be corrected in its current state."""

    code: str = "CORRECTION_NOT_ALLOWED"

    def __init__(self, original_document_id: str, reason: str):
        self.original_document_id = original_document_id
        self.reason = reason
        super().__init__(
            f"Cannot correct document {original_document_id}: {reason}"
        )


class DocumentHasCorrectionsError(BadRequestError):
    """Document with corrections cannot be deleted."""

    code: str = "DOCUMENT_HAS_CORRECTIONS"

    def __init__(self, document_id: str, correction_count: int):
        self.document_id = document_id
        self.correction_count = correction_count
        super().__init__(
            f"Document {document_id} has {correction_count} correction(s)"
        )


# Integrity


class ImmutabilityViolationError(DocflowError):
    """
    Attempted to modify or delete an immutable record.

    Ledger transactions are immutable after creation; refunds are new rows.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


class LedgerChainBrokenError(DocflowError):
    """Balance-before/after chain of an account does not link up."""

    code: str = "LEDGER_CHAIN_BROKEN"

    def __init__(self, account_id: str, sequence: int, detail: str):
        self.account_id = account_id
        self.sequence = sequence
        self.detail = detail
        super().__init__(
            f"Ledger chain broken for account {account_id} at sequence "
            f"{sequence}: {detail}"
        )
