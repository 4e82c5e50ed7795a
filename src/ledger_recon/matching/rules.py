"""
Rules that turn unrecorded real transactions into ledger transactions.

Rules are tried in ascending priority order and the first rule whose
predicate matches wins.
"""

from collections.abc import Iterable, Iterator
from typing import Any, Optional
import logging
import re

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..models.real_transaction import RealTransaction
from ..models.recorded_transaction import RecordedTransaction
from ..templating import Templater
from ..utils.exceptions import TemplateRenderError
from .postings import PostingGenerator, PostingRule

logger = logging.getLogger(__name__)

# Never matches anything
NEVER_MATCH = "$^"


class Rule(BaseModel):
    """A field predicate plus templates for a generated transaction."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: int = 0
    priority: int = 0
    rule_name: str = ""
    # Source id of the import account the rule belongs to
    import_account: str = ""
    match_field_name: str = ""
    match_field_regex: re.Pattern = Field(default_factory=lambda: re.compile(NEVER_MATCH))
    description_template: str = ""
    postings: list[PostingRule] = Field(default_factory=list)

    def matches(self, real: RealTransaction) -> bool:
        """True if the match field exists and its string form matches the regex."""
        value = real.get_field(self.match_field_name)
        if value is None:
            return False
        return self.match_field_regex.search(str(value)) is not None

    def apply(
        self,
        real: RealTransaction,
        account: str,
        templater: Templater,
        generator: Optional[PostingGenerator] = None,
    ) -> Optional[RecordedTransaction]:
        """
        Generate a ledger transaction from a real transaction.

        Args:
            real: Source transaction
            account: Ledger account of the import account
            templater: Renders the description template
            generator: Posting generator, a default one if omitted

        Returns:
            New recorded transaction, or None if the rule does not match, the
            description cannot be rendered or no posting could be resolved
        """
        if not self.matches(real):
            return None

        try:
            description = templater.render(self.description_template, real)
        except TemplateRenderError as e:
            logger.warning(f"Rule {self.display_name}: {e}")
            return None

        postings = (generator or PostingGenerator()).create_postings(
            real, account, self.postings
        )
        if not postings:
            logger.warning(
                f"Rule {self.display_name}: no posting resolvable for transaction {real.id}"
            )
            return None

        transaction = RecordedTransaction.new(description, real.get_date(), real.id)
        for posting in postings:
            transaction.add_posting(posting)
        return transaction

    @property
    def display_name(self) -> str:
        return self.rule_name or f"#{self.id}"

    def to_dict(self) -> dict[str, Any]:
        """Plain representation for YAML storage."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class RuleSet:
    """Rules in evaluation order: ascending priority, then id."""

    def __init__(self, rules: Iterable[Rule]):
        self.rules = sorted(rules, key=lambda r: (r.priority, r.id))

    def __iter__(self) -> Iterator[Rule]:
        return iter(self.rules)

    def __len__(self) -> int:
        return len(self.rules)

    def first_match(self, real: RealTransaction) -> Optional[Rule]:
        """First rule whose predicate matches, None if none does."""
        return next((rule for rule in self.rules if rule.matches(real)), None)

    def for_source(self, source_id: str) -> "RuleSet":
        return RuleSet(r for r in self.rules if r.import_account == source_id)
