"""
Reconciliation workflow for one import account.

Fetches real transactions from the account and recorded ones from the
ledger engine, then runs the reconciliation queries over them.
"""

from collections.abc import Iterable
from datetime import datetime
from decimal import Decimal
from typing import Optional
import logging
import re
import time

import pandas as pd

from .accounts.base import ImportAccount
from .ledger.engine import LedgerEngine
from .matching.postings import PostingGenerator, PostingRule
from .matching.rules import Rule, RuleSet
from .matching.service import ReconciliationService
from .models.real_transaction import RealTransaction
from .models.recorded_transaction import RecordedTransaction
from .models.responses import (
    ExistingTransactionResponse,
    GeneratedTransactionResponse,
    ReconciliationSummary,
    UnmatchedResponse,
)
from .rules_store import RuleStore
from .templating import Templater
from .utils.exceptions import ReconciliationError

logger = logging.getLogger(__name__)


class ImportWorkflow:
    """Runs the reconciliation queries for one import account."""

    def __init__(
        self,
        account: ImportAccount,
        engine: LedgerEngine,
        rule_store: RuleStore,
        templater: Optional[Templater] = None,
        service: Optional[ReconciliationService] = None,
        commodity: Optional[str] = None,
    ):
        """
        Initialize the workflow.

        Args:
            account: Source of real transactions
            engine: Ledger engine holding the recorded transactions
            rule_store: Rules of all import accounts
            templater: Template renderer shared with the service
            service: Reconciliation queries
            commodity: Ledger commodity the balances are compared in
        """
        self.account = account
        self.engine = engine
        self.rule_store = rule_store
        self.templater = templater or Templater()
        self.service = service or ReconciliationService(self.templater, PostingGenerator())
        self.commodity = commodity

    @property
    def hledger_account(self) -> str:
        return self.account.hledger_account

    # Inputs

    def real_transactions(self) -> list[RealTransaction]:
        start = time.perf_counter()
        transactions = self.account.fetch_transactions()
        logger.info(
            f"Fetched {len(transactions)} real transactions for {self.account.source_id} "
            f"in {(time.perf_counter() - start) * 1000:.0f}ms"
        )
        return transactions

    def recorded_transactions(self) -> list[RecordedTransaction]:
        start = time.perf_counter()
        transactions = self.engine.account_transactions([self.hledger_account])
        logger.info(
            f"Fetched {len(transactions)} recorded transactions for {self.hledger_account} "
            f"in {(time.perf_counter() - start) * 1000:.0f}ms"
        )
        return transactions

    def rules(self) -> RuleSet:
        return self.rule_store.get_rules(self.account.source_id)

    def recorded_balance(self) -> Decimal:
        """Ledger balance of the account in the configured commodity."""
        balances = self.engine.account_balance(self.hledger_account)
        if self.commodity is not None:
            return balances.get(self.commodity, Decimal("0"))
        if len(balances) == 1:
            return next(iter(balances.values()))
        if balances:
            logger.warning(
                f"{self.hledger_account} holds {', '.join(balances)}; configure a commodity "
                f"to compare balances, assuming 0"
            )
        return Decimal("0")

    # Queries

    def existing(self) -> list[ExistingTransactionResponse]:
        return self.service.existing(
            self.hledger_account,
            self.recorded_transactions(),
            self.real_transactions(),
            real_balance=self.account.fetch_balance(),
            recorded_balance=self.recorded_balance(),
        )

    def generated(self) -> list[GeneratedTransactionResponse]:
        return self.service.generated(
            self.hledger_account,
            self.recorded_transactions(),
            self.real_transactions(),
            self.rules(),
        )

    def unmatched(self) -> list[UnmatchedResponse]:
        return self.service.unmatched(
            self.hledger_account,
            self.recorded_transactions(),
            self.real_transactions(),
            self.rules(),
        )

    def check(self) -> set[str]:
        """Correlation ids recorded more than once on the account."""
        duplicates = self.service.check_duplicates(
            self.hledger_account, self.recorded_transactions()
        )
        if duplicates:
            logger.warning(f"{self.hledger_account}: duplicate ids {', '.join(sorted(duplicates))}")
        return duplicates

    def write_generated(self) -> bool:
        """
        Write every generated transaction to the ledger, oldest first.

        Returns:
            False if the engine failed to write one of them
        """
        generated = [g.recorded_transaction for g in self.generated()]
        if not generated:
            logger.info(f"Nothing to write for {self.account.source_id}")
            return True
        generated.sort(key=lambda t: t.get_date(self.hledger_account))
        start = time.perf_counter()
        success = self.engine.write_transactions(generated)
        logger.info(
            f"Wrote {len(generated)} generated transactions for {self.account.source_id} "
            f"in {(time.perf_counter() - start) * 1000:.0f}ms (success: {success})"
        )
        return success

    def field_stats(
        self, fields: Optional[Iterable[str]] = None
    ) -> dict[str, list[tuple[str, int]]]:
        """
        Value frequencies of real transaction fields, most frequent first.

        Helps finding fields and values worth writing rules for.

        Args:
            fields: Fields to report, all fields if omitted
        """
        transactions = self.real_transactions()
        if not transactions:
            return {}
        df = pd.DataFrame([t.fields() for t in transactions]).astype(str)
        columns = list(fields) if fields is not None else list(df.columns)

        stats: dict[str, list[tuple[str, int]]] = {}
        for column in columns:
            if column not in df.columns:
                logger.warning(f"No field {column!r} in transactions of {self.account.source_id}")
                continue
            counts = df[column].value_counts(sort=True)
            stats[column] = [(str(value), int(count)) for value, count in counts.items()]
        return stats

    def generate_single(
        self,
        transaction_id: str,
        description_template: str,
        postings: list[PostingRule],
        should_write: bool = False,
    ) -> Optional[RecordedTransaction]:
        """
        Generate a ledger transaction for one real transaction with an ad hoc rule.

        Args:
            transaction_id: Id of the real transaction
            description_template: Template of the transaction description
            postings: Posting rules of the ad hoc rule
            should_write: Write the result to the ledger

        Returns:
            Generated transaction, None if it couldn't be generated

        Raises:
            ReconciliationError: If the account has no transaction with the id
        """
        real_txn = next(
            (t for t in self.real_transactions() if t.id == transaction_id), None
        )
        if real_txn is None:
            raise ReconciliationError(
                f"No transaction {transaction_id!r} in {self.account.source_id}"
            )

        rule = Rule(
            rule_name="single",
            import_account=self.account.source_id,
            match_field_name="id",
            match_field_regex=re.compile(f"^{re.escape(transaction_id)}$"),
            description_template=description_template,
            postings=postings,
        )
        generated = rule.apply(real_txn, self.hledger_account, self.templater, self.service.generator)
        if generated is not None and should_write:
            if not self.engine.write_single_transaction(generated):
                logger.error(f"Couldn't write transaction generated for {transaction_id}")
        return generated

    def summary(self, config_file_used: Optional[str] = None) -> ReconciliationSummary:
        return self.reconcile(config_file_used)[0]

    def reconcile(
        self, config_file_used: Optional[str] = None
    ) -> tuple[
        ReconciliationSummary,
        list[ExistingTransactionResponse],
        list[GeneratedTransactionResponse],
        list[UnmatchedResponse],
    ]:
        """
        Run all queries over a single fetch of the inputs.

        Returns:
            Tuple of (summary, existing rows, generated, unmatched)
        """
        real = self.real_transactions()
        recorded = self.recorded_transactions()
        rules = self.rules()
        real_balance = self.account.fetch_balance()
        recorded_balance = self.recorded_balance()

        existing = self.service.existing(
            self.hledger_account, recorded, real, real_balance, recorded_balance
        )
        generated = self.service.generated(self.hledger_account, recorded, real, rules)
        unmatched = self.service.unmatched(self.hledger_account, recorded, real, rules)
        duplicates = self.service.check_duplicates(self.hledger_account, recorded)

        dates = [t.get_date() for t in real]
        summary = ReconciliationSummary(
            source_id=self.account.source_id,
            hledger_account=self.hledger_account,
            reconciliation_date=datetime.now(),
            total_real_transactions=len(real),
            total_recorded_transactions=len(recorded),
            existing_count=len(existing),
            generated_count=len(generated),
            unmatched_count=len(unmatched),
            error_row_count=sum(1 for row in existing if row.has_errors),
            duplicate_ids=duplicates,
            real_balance=real_balance,
            recorded_balance=recorded_balance,
            period_start=min(dates) if dates else None,
            period_end=max(dates) if dates else None,
            config_file_used=config_file_used,
        )
        return summary, existing, generated, unmatched
