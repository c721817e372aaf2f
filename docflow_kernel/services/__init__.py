"""Services for the docflow kernel (write side)."""

from docflow_kernel.services.document_service import DocumentService
from docflow_kernel.services.lease_service import (
    DEFAULT_STALE_THRESHOLD_SECONDS,
    LeaseService,
)
from docflow_kernel.services.ledger_service import LedgerService
from docflow_kernel.services.posting import PlannedPosting
from docflow_kernel.services.settlement_service import SettlementService
from docflow_kernel.services.status_service import StatusService

__all__ = [
    "DEFAULT_STALE_THRESHOLD_SECONDS",
    "DocumentService",
    "LeaseService",
    "LedgerService",
    "PlannedPosting",
    "SettlementService",
    "StatusService",
]
