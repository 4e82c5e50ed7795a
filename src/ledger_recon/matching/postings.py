"""
Posting generation: turns posting rules into ledger postings for one
real transaction.
"""

from typing import Optional
import logging

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from ..models.real_transaction import RealTransaction
from ..models.recorded_transaction import Amount, Posting

logger = logging.getLogger(__name__)

# Generated transactions always have at least this many postings
MIN_POSTINGS = 2


class PostingRule(BaseModel):
    """How to build one posting of a generated transaction."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    account: str
    # None falls back to the source's default amount/currency field
    amount_field_name: Optional[str] = None
    currency_field_name: Optional[str] = None
    negate: bool = False
    price_amount_field_name: Optional[str] = None
    price_currency_field_name: Optional[str] = None
    comment: Optional[str] = None


class PostingGenerator:
    """Builds postings from posting rules, skipping lines it cannot resolve."""

    def create_posting(
        self, real: RealTransaction, posting_rule: PostingRule
    ) -> Optional[Posting]:
        """
        Create a single posting.

        Args:
            real: Source transaction
            posting_rule: Account, field names and sign of the posting

        Returns:
            Posting, or None if the amount or currency field is unresolvable
        """
        amount = real.get_amount(posting_rule.amount_field_name)
        if amount is None:
            logger.debug(
                f"Transaction {real.id}: no amount in field "
                f"{posting_rule.amount_field_name or real.default_amount_field!r}, "
                f"skipping posting to {posting_rule.account}"
            )
            return None

        commodity = real.get_currency(posting_rule.currency_field_name)
        if commodity is None:
            logger.debug(
                f"Transaction {real.id}: no currency in field "
                f"{posting_rule.currency_field_name or real.default_currency_field!r}, "
                f"skipping posting to {posting_rule.account}"
            )
            return None

        if posting_rule.negate:
            amount = -amount

        return Posting.new(
            posting_rule.account,
            commodity,
            amount,
            price=self._create_price(real, posting_rule),
            comment=posting_rule.comment or "",
        )

    def create_postings(
        self,
        real: RealTransaction,
        account: str,
        posting_rules: list[PostingRule],
    ) -> list[Posting]:
        """
        Create all postings for a transaction.

        A default posting on ``account`` is put first when fewer than two
        posting rules are given.

        Args:
            real: Source transaction
            account: Ledger account of the import account
            posting_rules: Posting rules of the matching rule

        Returns:
            Postings that could be resolved, in rule order
        """
        lines = list(posting_rules)
        if len(lines) < MIN_POSTINGS:
            lines.insert(0, PostingRule(account=account))

        postings: list[Posting] = []
        for line in lines:
            posting = self.create_posting(real, line)
            if posting is not None:
                postings.append(posting)
        return postings

    def _create_price(
        self, real: RealTransaction, posting_rule: PostingRule
    ) -> Optional[Amount]:
        """Unit price from the rule's price fields, None if not configured or unresolvable."""
        if not posting_rule.price_amount_field_name:
            return None
        price = real.get_amount(posting_rule.price_amount_field_name)
        commodity = (
            real.get_currency(posting_rule.price_currency_field_name)
            if posting_rule.price_currency_field_name
            else None
        )
        if price is None or commodity is None:
            logger.debug(f"Transaction {real.id}: price fields unresolvable, omitting price")
            return None
        return Amount.new(commodity, price)
