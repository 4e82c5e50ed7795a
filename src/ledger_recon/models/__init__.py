"""Data models for reconciliation."""

from .real_transaction import (
    RealTransaction,
    N26Transaction,
    SaltEdgeTransaction,
    GenericTransaction,
    TRANSACTION_KINDS,
)
from .recorded_transaction import (
    Amount,
    Posting,
    Quantity,
    RecordedTransaction,
)
from .responses import (
    ExistingTransactionResponse,
    GeneratedTransactionResponse,
    UnmatchedResponse,
    ReconciliationSummary,
    PeriodReport,
    IncomeStatement,
)

__all__ = [
    "RealTransaction",
    "N26Transaction",
    "SaltEdgeTransaction",
    "GenericTransaction",
    "TRANSACTION_KINDS",
    "Amount",
    "Posting",
    "Quantity",
    "RecordedTransaction",
    "ExistingTransactionResponse",
    "GeneratedTransactionResponse",
    "UnmatchedResponse",
    "ReconciliationSummary",
    "PeriodReport",
    "IncomeStatement",
]
