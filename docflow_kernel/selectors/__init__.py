"""Selectors for the docflow kernel (read side)."""

from docflow_kernel.selectors.document_selector import DocumentSelector
from docflow_kernel.selectors.ledger_selector import LedgerSelector

__all__ = [
    "DocumentSelector",
    "LedgerSelector",
]
