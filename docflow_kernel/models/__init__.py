"""ORM models.  Importing this package registers every table on Base.metadata."""

from docflow_kernel.models.account import AccountModel
from docflow_kernel.models.document import DocumentEditModel, DocumentModel
from docflow_kernel.models.instrument import InstrumentModel
from docflow_kernel.models.ledger import LedgerTransactionModel

__all__ = [
    "AccountModel",
    "DocumentEditModel",
    "DocumentModel",
    "InstrumentModel",
    "LedgerTransactionModel",
]
