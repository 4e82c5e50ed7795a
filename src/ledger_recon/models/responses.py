"""Result records produced by the reconciliation queries."""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Optional

from .real_transaction import RealTransaction
from .recorded_transaction import RecordedTransaction

if TYPE_CHECKING:
    from ..matching.rules import Rule


@dataclass
class ExistingTransactionResponse:
    """A recorded transaction paired with the real transaction sharing its id."""

    # Correlation id the pair was matched on (None if the recorded side has none)
    id: Optional[str]
    recorded_transaction: RecordedTransaction
    real_transaction: Optional[RealTransaction]

    # Running totals before this row is subtracted, newest row first
    real_cumulative: Decimal
    recorded_cumulative: Decimal

    real_amount: Optional[Decimal] = None
    recorded_amount: Optional[Decimal] = None

    # Advisory findings, never fatal
    errors: list[str] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)


@dataclass
class GeneratedTransactionResponse:
    """A ledger transaction generated from an unrecorded real transaction."""

    real_transaction: RealTransaction
    recorded_transaction: RecordedTransaction
    rule: "Rule"


@dataclass
class UnmatchedResponse:
    """An unrecorded real transaction no rule could turn into a ledger entry."""

    real_transaction: RealTransaction

    def to_dict(self) -> dict[str, Any]:
        return self.real_transaction.fields()


@dataclass
class ReconciliationSummary:
    """Summary of one reconciliation pass for an import account."""

    source_id: str
    hledger_account: str
    reconciliation_date: datetime

    total_real_transactions: int
    total_recorded_transactions: int

    existing_count: int
    generated_count: int
    unmatched_count: int
    error_row_count: int
    duplicate_ids: set[str] = field(default_factory=set)

    real_balance: Decimal = Decimal("0")
    recorded_balance: Decimal = Decimal("0")

    period_start: Optional[date] = None
    period_end: Optional[date] = None
    config_file_used: Optional[str] = None

    @property
    def balance_difference(self) -> Decimal:
        return self.real_balance - self.recorded_balance

    @property
    def match_rate(self) -> float:
        """Percentage of real transactions already recorded."""
        if self.total_real_transactions == 0:
            return 0.0
        recorded = (
            self.total_real_transactions - self.generated_count - self.unmatched_count
        )
        return (recorded / self.total_real_transactions) * 100


@dataclass
class PeriodReport:
    """
    Monthly totals of a two-section ledger report.

    Income statements carry Revenues and Expenses sections, balance sheets
    Assets and Liabilities.
    """

    title: str
    # Last day of each month covered
    dates: list[date]
    # Section heading -> total per month
    sections: dict[str, list[Decimal]] = field(default_factory=dict)
    net: list[Decimal] = field(default_factory=list)


@dataclass
class IncomeStatement:
    """Income statement with the largest transactions of every month."""

    report: PeriodReport
    # One list per month, largest absolute amount first
    top_revenues: list[list[RecordedTransaction]] = field(default_factory=list)
    top_expenses: list[list[RecordedTransaction]] = field(default_factory=list)
