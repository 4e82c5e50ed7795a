"""
Reconciliation queries over real and recorded transactions.

Every query is a pure function of its inputs: the real transactions of one
import account, the recorded transactions touching its ledger account and
the account's rules.
"""

from collections import Counter
from collections.abc import Iterable, Iterator
from decimal import Decimal
from typing import Optional, Union
import logging

from ..models.real_transaction import RealTransaction
from ..models.recorded_transaction import RecordedTransaction
from ..models.responses import (
    ExistingTransactionResponse,
    GeneratedTransactionResponse,
    UnmatchedResponse,
)
from ..templating import Templater
from .postings import PostingGenerator
from .rules import Rule, RuleSet

logger = logging.getLogger(__name__)

DUPLICATE_ID = "Duplicate id"
AMOUNTS_DIFFER = "Amounts don't match"
DATES_DIFFER = "Dates don't match"
MISSING_REAL = "Recorded transaction without corresponding real transaction"

RulesInput = Union[RuleSet, Iterable[Rule]]


class ReconciliationService:
    """
    Matches real transactions to recorded ones by correlation id and
    generates ledger entries for the rest.
    """

    def __init__(
        self,
        templater: Optional[Templater] = None,
        generator: Optional[PostingGenerator] = None,
    ):
        """
        Initialize the service.

        Args:
            templater: Renders rule description templates
            generator: Builds postings from posting rules
        """
        self.templater = templater or Templater()
        self.generator = generator or PostingGenerator()

    def existing(
        self,
        account: str,
        recorded: list[RecordedTransaction],
        real: Iterable[RealTransaction],
        real_balance: Decimal = Decimal("0"),
        recorded_balance: Decimal = Decimal("0"),
    ) -> list[ExistingTransactionResponse]:
        """
        Pair recorded transactions with real transactions sharing an id.

        Recorded transactions are walked newest first. Each row carries the
        running totals before its own amounts are subtracted, so the rows
        read as a balance trail back through time.

        Args:
            account: Ledger account of the import account
            recorded: Recorded transactions touching the account
            real: Real transactions of the import account
            real_balance: Current balance reported by the source
            recorded_balance: Current balance of the account in the ledger

        Returns:
            One row per account scoped id of every recorded transaction
        """
        real_by_id = {t.id: t for t in real}
        id_counts = self.id_counts(account, recorded)

        real_cumulative = real_balance
        recorded_cumulative = recorded_balance
        rows: list[ExistingTransactionResponse] = []

        newest_first = sorted(recorded, key=lambda t: t.get_date(account), reverse=True)
        for rec in newest_first:
            ids: list[Optional[str]] = list(rec.get_all_ids(account)) or [None]
            for txn_id in ids:
                real_txn = real_by_id.get(txn_id) if txn_id is not None else None
                recorded_amount = rec.get_amount(txn_id, account)
                real_amount = real_txn.get_amount() if real_txn is not None else None

                rows.append(
                    ExistingTransactionResponse(
                        id=txn_id,
                        recorded_transaction=rec,
                        real_transaction=real_txn,
                        real_cumulative=real_cumulative,
                        recorded_cumulative=recorded_cumulative,
                        real_amount=real_amount,
                        recorded_amount=recorded_amount,
                        errors=self._detect_errors(
                            account, txn_id, rec, real_txn, recorded_amount, real_amount, id_counts
                        ),
                    )
                )

                real_cumulative -= real_amount or Decimal("0")
                recorded_cumulative -= recorded_amount or Decimal("0")

        logger.info(
            f"{account}: {len(rows)} existing rows, "
            f"{sum(1 for r in rows if r.has_errors)} with errors"
        )
        return rows

    def generated(
        self,
        account: str,
        recorded: list[RecordedTransaction],
        real: Iterable[RealTransaction],
        rules: RulesInput,
    ) -> list[GeneratedTransactionResponse]:
        """
        Generate ledger transactions for unrecorded real transactions.

        Args:
            account: Ledger account of the import account
            recorded: Recorded transactions touching the account
            real: Real transactions of the import account
            rules: Rules of the import account

        Returns:
            One response per real transaction a rule could be applied to
        """
        responses = [
            GeneratedTransactionResponse(
                real_transaction=real_txn, recorded_transaction=generated, rule=rule
            )
            for real_txn, rule, generated in self._classify(account, recorded, real, rules)
            if rule is not None and generated is not None
        ]
        logger.info(f"{account}: generated {len(responses)} transactions from rules")
        return responses

    def unmatched(
        self,
        account: str,
        recorded: list[RecordedTransaction],
        real: Iterable[RealTransaction],
        rules: RulesInput,
    ) -> list[UnmatchedResponse]:
        """
        Unrecorded real transactions for which no rule produced a transaction.

        Args:
            account: Ledger account of the import account
            recorded: Recorded transactions touching the account
            real: Real transactions of the import account
            rules: Rules of the import account

        Returns:
            Responses carrying the real transaction only
        """
        responses = [
            UnmatchedResponse(real_transaction=real_txn)
            for real_txn, _rule, generated in self._classify(account, recorded, real, rules)
            if generated is None
        ]
        logger.info(f"{account}: {len(responses)} unmatched real transactions")
        return responses

    def check_duplicates(
        self, account: str, recorded: Iterable[RecordedTransaction]
    ) -> set[str]:
        """Ids that appear more than once among the recorded transactions."""
        return {
            txn_id for txn_id, count in self.id_counts(account, recorded).items() if count > 1
        }

    @staticmethod
    def id_counts(account: str, recorded: Iterable[RecordedTransaction]) -> Counter:
        """Occurrences of every account scoped id."""
        counts: Counter = Counter()
        for rec in recorded:
            counts.update(rec.get_all_ids(account))
        return counts

    @staticmethod
    def recorded_ids(account: str, recorded: Iterable[RecordedTransaction]) -> set[str]:
        return {txn_id for rec in recorded for txn_id in rec.get_all_ids(account)}

    def _classify(
        self,
        account: str,
        recorded: list[RecordedTransaction],
        real: Iterable[RealTransaction],
        rules: RulesInput,
    ) -> Iterator[tuple[RealTransaction, Optional[Rule], Optional[RecordedTransaction]]]:
        """
        Yield (real, first matching rule, generated transaction) for every
        real transaction that has not been recorded yet.
        """
        recorded_ids = self.recorded_ids(account, recorded)
        rule_set = rules if isinstance(rules, RuleSet) else RuleSet(rules)

        for real_txn in real:
            if real_txn.id in recorded_ids:
                continue
            rule = rule_set.first_match(real_txn)
            if rule is None:
                yield real_txn, None, None
                continue
            generated = rule.apply(real_txn, account, self.templater, self.generator)
            if generated is None:
                logger.warning(
                    f"Rule {rule.display_name} matched transaction {real_txn.id} "
                    f"but could not be applied"
                )
            yield real_txn, rule, generated

    def _detect_errors(
        self,
        account: str,
        txn_id: Optional[str],
        rec: RecordedTransaction,
        real_txn: Optional[RealTransaction],
        recorded_amount: Optional[Decimal],
        real_amount: Optional[Decimal],
        id_counts: Counter,
    ) -> list[str]:
        """Advisory findings for one existing row; all checks always run."""
        errors: list[str] = []

        if txn_id is not None and id_counts[txn_id] > 1:
            errors.append(DUPLICATE_ID)

        if real_txn is None:
            errors.append(MISSING_REAL)
            return errors

        if recorded_amount != real_amount:
            errors.append(AMOUNTS_DIFFER)

        if rec.get_date(account) != real_txn.get_date():
            errors.append(DATES_DIFFER)

        return errors
