"""
Import account interface.
"""

from abc import ABC, abstractmethod
from decimal import Decimal

from ..models.real_transaction import RealTransaction


class ImportAccount(ABC):
    """
    A source of real transactions bound to one ledger account.

    Implementations fetch from a bank API, an export file, etc.
    """

    @property
    @abstractmethod
    def source_id(self) -> str:
        """Identifier rules refer to as their import account."""

    @property
    @abstractmethod
    def hledger_account(self) -> str:
        """Ledger account the source's transactions are booked on."""

    @abstractmethod
    def fetch_transactions(self) -> list[RealTransaction]:
        """Fetch all real transactions of the source."""

    @abstractmethod
    def fetch_balance(self) -> Decimal:
        """Current balance reported by the source."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.source_id!r} -> {self.hledger_account!r})"
