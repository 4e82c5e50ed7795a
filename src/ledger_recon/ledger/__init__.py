"""Supervised ledger-query processes and their transaction cache."""

from .cache import TransactionCache
from .engine import LedgerEngine, parse_multi_commodity_amount
from .process import LedgerProcess, ProcessState

__all__ = [
    "LedgerEngine",
    "LedgerProcess",
    "ProcessState",
    "TransactionCache",
    "parse_multi_commodity_amount",
]
