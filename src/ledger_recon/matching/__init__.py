"""Rules, posting generation and reconciliation queries."""

from .postings import PostingGenerator, PostingRule
from .rules import Rule, RuleSet
from .service import ReconciliationService

__all__ = [
    "PostingGenerator",
    "PostingRule",
    "Rule",
    "RuleSet",
    "ReconciliationService",
]
