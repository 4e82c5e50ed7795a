"""
Pool of ledger-query processes.

One read process serves the aggregate journal. Writes go to one process
per year partition, chosen by the transaction date.
"""

from collections.abc import Iterable
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from io import StringIO
from typing import Optional
import logging
import re
import subprocess

import httpx
import pandas as pd

from ..config import LedgerSettings
from ..models.recorded_transaction import RecordedTransaction
from ..models.responses import IncomeStatement, PeriodReport
from ..utils.exceptions import LedgerEngineError
from .cache import TransactionCache
from .process import LedgerProcess, PopenFactory, default_popen

logger = logging.getLogger(__name__)

TOTAL_CSV_HEADING = "total"
ACCOUNT_CSV_HEADING = "Account"
NET_CSV_HEADING = "Net:"
DATE_FMT = "%Y-%m-%d"

INCOME_ACCOUNT = "Income"
EXPENSE_ACCOUNT = "Expenses"
MAX_TOP_TRANSACTIONS = 5

# "-12.50 EUR", "$100", "EUR 3"; a suffix can't continue the number, so
# comma decimal marks ("1.234,56 EUR") are rejected
AMOUNT_PATTERN = re.compile(
    r"^(?P<sign>-)?(?P<prefix>[^\d\s.,-]*)\s*(?P<quantity>-?[\d,]*\.?\d+)\s*"
    r"(?P<suffix>(?![\d.,]).*)$"
)
REPORT_PERIOD_PATTERN = re.compile(r"(\d{4}-\d{2}-\d{2})\.\.")


class LedgerEngine:
    """Supervises the read process and the per-year write processes."""

    def __init__(
        self,
        settings: LedgerSettings,
        transport: Optional[httpx.BaseTransport] = None,
        popen: PopenFactory = default_popen,
    ):
        """
        Spawn all processes.

        Args:
            settings: Ledger settings
            transport: httpx transport override, shared by all processes
            popen: Factory spawning a process from a command line
        """
        self.settings = settings
        self.cache = TransactionCache()
        self.read_process = LedgerProcess(
            settings.default_file_path(), settings.read_port, settings, transport, popen
        )
        self.write_processes: dict[int, LedgerProcess] = {
            year: LedgerProcess(path, settings.write_port(year), settings, transport, popen)
            for year, path in settings.year_file_paths().items()
        }
        logger.info(
            f"Started ledger engine with read process on {settings.read_port} and "
            f"write partitions {', '.join(str(y) for y in self.write_processes) or 'none'}"
        )

    def __enter__(self) -> "LedgerEngine":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        for process in [self.read_process, *self.write_processes.values()]:
            process.terminate()

    # Reads

    def account_names(self) -> list[str]:
        return self.read_process.account_names()

    def commodities(self) -> list[str]:
        return self.read_process.commodities()

    def all_transactions(self) -> list[RecordedTransaction]:
        return self.read_process.transactions()

    def account_transactions(self, account_names: Iterable[str]) -> list[RecordedTransaction]:
        """
        Recorded transactions with a posting on one of the given accounts.

        Args:
            account_names: Exact ledger account names

        Returns:
            Matching transactions, newest journal entry first
        """
        names = set(account_names)
        cached = self.cache.get(names)
        if cached is not None:
            return cached

        generation = self.cache.generation
        transactions = [
            t
            for t in reversed(self.all_transactions())
            if any(p.paccount in names for p in t.tpostings)
        ]
        self.cache.put(names, transactions, generation)
        return transactions

    def account_balance(self, account: str) -> dict[str, Decimal]:
        """
        Current balance of an account per commodity.

        Args:
            account: Exact ledger account name

        Returns:
            Commodity -> quantity, empty if the engine printed no total

        Raises:
            LedgerEngineError: If the balance command fails
        """
        return get_total_from_csv(self._csv_command("bal", [f"^{re.escape(account)}$"]))

    def income_statement(
        self, from_: Optional[date] = None, to: Optional[date] = None
    ) -> IncomeStatement:
        """
        Monthly revenues, expenses and net income.

        Args:
            from_: First day to include
            to: Day to stop before (hledger's end date is exclusive)

        Returns:
            Report plus the largest revenue and expense transactions per month

        Raises:
            LedgerEngineError: If the report command fails or prints garbage
        """
        args = ["--monthly", "--depth", "1", *_period_args(from_, to)]
        report = get_report_from_csv(self._csv_command("is", args))

        transactions = self.all_transactions()
        return IncomeStatement(
            report=report,
            top_revenues=get_top_transactions(INCOME_ACCOUNT, transactions, report.dates),
            top_expenses=get_top_transactions(EXPENSE_ACCOUNT, transactions, report.dates),
        )

    def net_worth(self, from_: Optional[date] = None, to: Optional[date] = None) -> PeriodReport:
        """Monthly assets, liabilities and their difference, valued at period ends."""
        args = ["-V", "--monthly", "--depth", "1", *_period_args(from_, to)]
        return get_report_from_csv(self._csv_command("bs", args))

    def _csv_command(self, command: str, args: list[str]) -> str:
        """Run an hledger report on the aggregate journal and return its CSV."""
        cmd = [
            self.settings.balance_executable,
            command,
            "--output-format",
            "csv",
            "-f",
            str(self.settings.default_file_path()),
            *args,
        ]
        logger.debug(f"Running {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.settings.read_timeout_seconds,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise LedgerEngineError(f"Couldn't run {cmd[0]}: {e}") from e
        if result.returncode != 0:
            raise LedgerEngineError(f"{cmd[0]} {command} failed: {result.stderr.strip()}")
        return result.stdout

    # Writes

    def write_single_transaction(self, transaction: RecordedTransaction) -> bool:
        return self.write_transactions([transaction])

    def write_transactions(self, transactions: Iterable[RecordedTransaction]) -> bool:
        """
        Append transactions to their year partitions.

        Transactions whose year has no partition are logged and skipped. A
        failed write restarts the partition's process and is retried once.

        Args:
            transactions: Transactions to write, in order

        Returns:
            False if a write failed after its retry
        """
        success = True
        written = 0
        try:
            for transaction in transactions:
                year = transaction.get_date().year
                process = self.write_processes.get(year)
                if process is None:
                    logger.error(
                        f"Couldn't find hledger process for year {year} in "
                        f"{', '.join(str(y) for y in self.write_processes) or 'no partitions'}"
                    )
                    continue

                if not self._write_with_retry(process, transaction):
                    success = False
                    break
                written += 1
                self.cache.invalidate()
        finally:
            if written:
                self._restart_read_process(written)
        return success

    def _write_with_retry(self, process: LedgerProcess, transaction: RecordedTransaction) -> bool:
        with process.write_lock:
            try:
                if process.append(transaction):
                    return True
                logger.warning("Couldn't write transaction. Restarting hledger...")
                process.restart()
                if process.append(transaction):
                    return True
            except LedgerEngineError as e:
                logger.error(f"hledger-web for {process.journal_file} unavailable: {e}")
        logger.error(f"Giving up writing transaction ({transaction.tdescription})")
        return False

    def _restart_read_process(self, written: int) -> None:
        logger.info(f"Wrote {written} transactions, restarting read process")
        try:
            self.read_process.restart()
        except LedgerEngineError as e:
            logger.error(f"Couldn't restart read process: {e}")


def parse_commodity_amount(value: str) -> tuple[str, Decimal]:
    """
    Parse a single amount as printed by hledger.

    Raises:
        ValueError: If the text is not an amount
    """
    match = AMOUNT_PATTERN.match(value.strip())
    if not match:
        raise ValueError(f"Not an amount: {value!r}")
    commodity = (match.group("prefix") or match.group("suffix")).strip().strip('"')
    try:
        quantity = Decimal(match.group("quantity").replace(",", ""))
    except InvalidOperation as e:
        raise ValueError(f"Not an amount: {value!r}") from e
    if match.group("sign"):
        quantity = -quantity
    return commodity, quantity


def parse_multi_commodity_amount(value: str) -> dict[str, Decimal]:
    """Parse ``"1.00 EUR, -2 USD"`` into a commodity map."""
    amounts: dict[str, Decimal] = {}
    for part in value.split(", "):
        if not part.strip():
            continue
        commodity, quantity = parse_commodity_amount(part)
        amounts[commodity] = amounts.get(commodity, Decimal("0")) + quantity
    return amounts


def get_total_from_csv(csv_text: str) -> dict[str, Decimal]:
    """Read the total row of ``hledger bal -O csv`` output."""
    if not csv_text.strip():
        return {}
    df = pd.read_csv(StringIO(csv_text), dtype=str, keep_default_na=False)
    if df.shape[1] < 2:
        return {}
    totals = df[df.iloc[:, 0] == TOTAL_CSV_HEADING]
    if totals.empty:
        return {}
    try:
        return parse_multi_commodity_amount(totals.iloc[0, 1])
    except ValueError as e:
        logger.error(f"Unreadable balance total: {e}")
        return {}


def _period_args(from_: Optional[date], to: Optional[date]) -> list[str]:
    args = []
    if from_ is not None:
        args += ["-b", from_.strftime(DATE_FMT)]
    if to is not None:
        args += ["-e", to.strftime(DATE_FMT)]
    return args


def _report_value(cell: str) -> Decimal:
    try:
        amounts = parse_multi_commodity_amount(cell)
    except ValueError as e:
        raise LedgerEngineError(f"Unreadable report amount: {e}") from e
    if len(amounts) > 1:
        logger.warning(f"Report amount {cell!r} has several commodities, using the first")
    return next(iter(amounts.values()), Decimal("0"))


def get_report_from_csv(csv_text: str) -> PeriodReport:
    """
    Read a monthly ``hledger is`` or ``hledger bs`` CSV report.

    The first row is the title carrying the report period and the ``Account``
    row lists one column per month. Every section opens with a heading row of
    empty cells and closes with its ``total`` row; ``Net:`` ends the report.

    Raises:
        LedgerEngineError: If the output isn't such a report
    """
    if not csv_text.strip():
        raise LedgerEngineError("hledger printed an empty report")
    try:
        df = pd.read_csv(StringIO(csv_text), header=None, dtype=str, keep_default_na=False)
    except ValueError as e:
        raise LedgerEngineError(f"Unreadable report: {e}") from e

    title = df.iat[0, 0]
    period = REPORT_PERIOD_PATTERN.search(title)
    if period is None:
        raise LedgerEngineError(f"No report period in {title!r}")
    start = datetime.strptime(period.group(1), DATE_FMT).date()

    account_rows = df.index[df.iloc[:, 0] == ACCOUNT_CSV_HEADING]
    if len(account_rows) == 0:
        raise LedgerEngineError(f"No {ACCOUNT_CSV_HEADING} row in report {title!r}")

    month_ends = pd.date_range(
        pd.Timestamp(start) + pd.offsets.MonthEnd(0),
        periods=df.shape[1] - 1,
        freq=pd.offsets.MonthEnd(),
    )
    report = PeriodReport(title=title, dates=[ts.date() for ts in month_ends])

    section: Optional[str] = None
    for _, row in df.iloc[account_rows[0] + 1 :].iterrows():
        heading = row.iloc[0]
        values = row.iloc[1:]
        if heading == NET_CSV_HEADING:
            report.net = [_report_value(v) for v in values]
            break
        if heading == TOTAL_CSV_HEADING:
            if section is not None:
                report.sections[section] = [_report_value(v) for v in values]
            section = None
        elif section is None and (values == "").all():
            section = heading

    logger.debug(
        f"Read report {title!r}: {len(report.dates)} months, "
        f"sections {', '.join(report.sections) or 'none'}"
    )
    return report


def get_top_transactions(
    account: str, transactions: list[RecordedTransaction], dates: list[date]
) -> list[list[RecordedTransaction]]:
    """Largest transactions on an account for every report month."""
    months = {(d.year, d.month): i for i, d in enumerate(dates)}
    top: list[list[RecordedTransaction]] = [[] for _ in dates]
    for t in transactions:
        if not t.has_account(account):
            continue
        txn_date = t.get_date(account)
        index = months.get((txn_date.year, txn_date.month))
        if index is not None:
            top[index].append(t)

    def size(t: RecordedTransaction) -> Decimal:
        amount = t.get_amount(None, account)
        return abs(amount) if amount is not None else Decimal("0")

    return [sorted(month, key=size, reverse=True)[:MAX_TOP_TRANSACTIONS] for month in top]
