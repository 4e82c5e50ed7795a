"""Shared fixtures: N26 sample transactions, rules and fake hledger-web processes."""

from __future__ import annotations

import itertools
import json
import re
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

import httpx
import pytest

from ledger_recon.accounts.base import ImportAccount
from ledger_recon.config import LedgerSettings
from ledger_recon.matching.postings import PostingRule
from ledger_recon.matching.rules import Rule
from ledger_recon.models.real_transaction import N26Transaction, RealTransaction
from ledger_recon.models.recorded_transaction import Posting, RecordedTransaction
from ledger_recon.models.responses import IncomeStatement, PeriodReport

ASSET_ACCOUNT = "Assets:Cash:N26"
EXPENSE_ACCOUNT = "Expenses:Personal:Entertainment"

AMAZON_ID = "1fc7d65c-de7c-415f-bf17-94de40c2e5d2"
SUPERMARKET_ID = "b33d6f8f-733c-4bf8-bef5-206cb3c27171"
AMAZON_USD_ID = "02946eaf-8320-4d2d-b44c-54c473771e68"

# 2020-08-13 UTC
VISIBLE_TS = 1597308032422

INCOME_STATEMENT_CSV = """\
"Income Statement 2020-07-01..2020-09-30, valued at period ends","","",""
"Account","Jul","Aug","Sep"
"Revenues","","",""
"Income","25.91 EUR","1,305.37 EUR","0"
"total","25.91 EUR","1,305.37 EUR","0"
"Expenses","","",""
"Expenses","0","498.69 EUR","1,523.51 EUR"
"total","0","498.69 EUR","1,523.51 EUR"
"Net:","25.91 EUR","806.68 EUR","-1,523.51 EUR"
"""

BALANCE_SHEET_CSV = """\
"Balance Sheet 2021-01-31..2021-03-31, valued at period ends","","",""
"Account","2021-01-31","2021-02-28","2021-03-31"
"Assets","","",""
"Assets","160,993.93 EUR","172,169.91 EUR","182,712.64 EUR"
"total","160,993.93 EUR","172,169.91 EUR","182,712.64 EUR"
"Liabilities","","",""
"Liabilities","34,766.96 EUR","35,241.86 EUR","35,783.02 EUR"
"total","34,766.96 EUR","35,241.86 EUR","35,783.02 EUR"
"Net:","126,226.97 EUR","136,928.06 EUR","146,929.62 EUR"
"""

_pids = itertools.count(1000)


def n26(txn_id: str, amount: str, currency: str, partner: str, reference: str) -> N26Transaction:
    return N26Transaction.model_validate(
        {
            "id": txn_id,
            "amount": Decimal(amount),
            "currencyCode": currency,
            "visibleTS": VISIBLE_TS,
            "partnerName": partner,
            "referenceText": reference,
        }
    )


def recorded_for(
    real: RealTransaction,
    description: str = "My Description",
    account: str = ASSET_ACCOUNT,
    amount: Optional[Decimal] = None,
    txn_id: Optional[str] = None,
) -> RecordedTransaction:
    """Recorded transaction booking ``real`` on ``account`` against an expense."""
    quantity = amount if amount is not None else real.get_amount()
    currency = real.get_currency() or "EUR"
    return (
        RecordedTransaction.new(description, real.get_date(), txn_id or real.id)
        .add_posting(Posting.new(account, currency, quantity))
        .add_posting(Posting.new(EXPENSE_ACCOUNT, currency, -quantity))
    )


@pytest.fixture()
def real_transactions() -> list[N26Transaction]:
    return [
        n26(AMAZON_ID, "-219.56", "EUR", "Amazon", "Buy item 1"),
        n26(SUPERMARKET_ID, "-123.45", "EUR", "Supermarket", "Buy item 2"),
        n26(AMAZON_USD_ID, "-3", "USD", "Amazon", "Buy item 3"),
    ]


@pytest.fixture()
def amazon_rule() -> Rule:
    return Rule(
        id=1,
        import_account="n26",
        rule_name="Amazon",
        match_field_name="partnerName",
        match_field_regex=re.compile("(?i)amazon"),
        description_template="Test {{{partnerName}}} with {{{referenceText}}}",
        postings=[
            PostingRule(
                account=ASSET_ACCOUNT,
                amount_field_name="amount",
                currency_field_name="currencyCode",
            ),
            PostingRule(
                account=EXPENSE_ACCOUNT,
                amount_field_name="amount",
                currency_field_name="currencyCode",
                negate=True,
            ),
        ],
    )


@pytest.fixture()
def recorded_transactions(real_transactions) -> list[RecordedTransaction]:
    return [recorded_for(real_transactions[0])]


# Fake hledger-web processes


class FakeProcess:
    """Stands in for subprocess.Popen; stdout is a finite list of lines."""

    def __init__(self, command: list[str], lines: list[str]) -> None:
        self.args = command
        self.pid = next(_pids)
        self.stdout = iter(lines)
        self.returncode: Optional[int] = None

    def poll(self) -> Optional[int]:
        return self.returncode

    def kill(self) -> None:
        self.returncode = -9

    def wait(self, timeout: Optional[float] = None) -> int:
        return self.returncode if self.returncode is not None else 0


class FakePopen:
    """Popen factory recording every spawned command."""

    def __init__(
        self,
        ready: bool = True,
        ready_spawns: Optional[int] = None,
        max_spawns: Optional[int] = None,
    ) -> None:
        """
        Args:
            ready: Whether processes print the ready line
            ready_spawns: Only this many first processes become ready
            max_spawns: Later spawns fail like a missing executable
        """
        self.ready = ready
        self.ready_spawns = ready_spawns
        self.max_spawns = max_spawns
        self.processes: list[FakeProcess] = []

    def __call__(self, command: list[str]) -> FakeProcess:
        spawned = len(self.processes)
        if self.max_spawns is not None and spawned >= self.max_spawns:
            raise FileNotFoundError(command[0])
        lines = ["Starting hledger-web\n"]
        if self.ready and (self.ready_spawns is None or spawned < self.ready_spawns):
            lines.append("Press ctrl-c to quit\n")
        process = FakeProcess(command, lines)
        self.processes.append(process)
        return process

    def spawned_on(self, port: int) -> list[FakeProcess]:
        return [p for p in self.processes if str(port) in p.args]


class FakeLedgerApi:
    """In-memory hledger-web JSON API, shared by all ports."""

    def __init__(self) -> None:
        self.transactions: list[dict[str, Any]] = []
        self.account_names = [ASSET_ACCOUNT, EXPENSE_ACCOUNT]
        self.commodities = ["EUR", "USD", "AUTO", "My Fund"]
        self.requests: list[tuple[str, int, str]] = []
        self.written: dict[int, list[dict[str, Any]]] = {}
        # (method, port) -> number of upcoming requests that time out
        self.timeouts: dict[tuple[str, int], int] = {}

    def add(self, transaction: RecordedTransaction) -> None:
        self.transactions.append(transaction.to_json())

    def handler(self, request: httpx.Request) -> httpx.Response:
        port = request.url.port
        path = request.url.path
        self.requests.append((request.method, port, path))

        key = (request.method, port)
        if self.timeouts.get(key):
            self.timeouts[key] -= 1
            raise httpx.ReadTimeout("timed out", request=request)

        if request.method == "GET" and path == "/accountnames":
            return httpx.Response(200, json=self.account_names)
        if request.method == "GET" and path == "/commodities":
            return httpx.Response(200, json=self.commodities)
        if request.method == "GET" and path == "/transactions":
            return httpx.Response(200, json=self.transactions)
        if request.method == "PUT" and path == "/add":
            payload = json.loads(request.content)
            self.written.setdefault(port, []).append(payload)
            self.transactions.append(payload)
            return httpx.Response(200, json=[])
        return httpx.Response(404, text="not found")

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def count(self, method: str, path: str) -> int:
        return sum(1 for m, _port, p in self.requests if m == method and p == path)


@pytest.fixture()
def ledger_settings(tmp_path: Path) -> LedgerSettings:
    return LedgerSettings(
        journal_dir=str(tmp_path),
        year_files={2020: "2020.ledger", 2021: "2021.ledger"},
        ready_timeout_seconds=5,
        poll_interval_seconds=0.05,
    )


@pytest.fixture()
def fake_popen() -> FakePopen:
    return FakePopen()


@pytest.fixture()
def ledger_api() -> FakeLedgerApi:
    return FakeLedgerApi()


# Collaborators for workflow and CLI tests


class FakeAccount(ImportAccount):
    def __init__(
        self,
        transactions: list[RealTransaction],
        balance: Decimal = Decimal("0"),
        source_id: str = "n26",
        hledger_account: str = ASSET_ACCOUNT,
    ) -> None:
        self._transactions = transactions
        self._balance = balance
        self._source_id = source_id
        self._hledger_account = hledger_account

    @property
    def source_id(self) -> str:
        return self._source_id

    @property
    def hledger_account(self) -> str:
        return self._hledger_account

    def fetch_transactions(self) -> list[RealTransaction]:
        return list(self._transactions)

    def fetch_balance(self) -> Decimal:
        return self._balance


class FakeEngine:
    """LedgerEngine stand-in keeping transactions in a list."""

    def __init__(
        self,
        transactions: Optional[list[RecordedTransaction]] = None,
        balances: Optional[dict[str, Decimal]] = None,
        write_succeeds: bool = True,
    ) -> None:
        self.transactions = list(transactions or [])
        self.balances = balances or {}
        self.write_succeeds = write_succeeds
        self.written: list[RecordedTransaction] = []
        self.closed = False
        self.statement: Optional[IncomeStatement] = None
        self.worth: Optional[PeriodReport] = None
        self.periods: list[tuple[Optional[date], Optional[date]]] = []

    def __enter__(self) -> "FakeEngine":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.closed = True

    def account_transactions(self, account_names) -> list[RecordedTransaction]:
        names = set(account_names)
        return [
            t
            for t in reversed(self.transactions)
            if any(p.paccount in names for p in t.tpostings)
        ]

    def account_balance(self, account: str) -> dict[str, Decimal]:
        return dict(self.balances)

    def write_transactions(self, transactions) -> bool:
        if not self.write_succeeds:
            return False
        for transaction in transactions:
            self.written.append(transaction)
            self.transactions.append(transaction)
        return True

    def write_single_transaction(self, transaction) -> bool:
        return self.write_transactions([transaction])

    def income_statement(self, from_=None, to=None) -> Optional[IncomeStatement]:
        self.periods.append((from_, to))
        return self.statement

    def net_worth(self, from_=None, to=None) -> Optional[PeriodReport]:
        self.periods.append((from_, to))
        return self.worth
