"""
YAML file holding the import rules of all accounts.

File layout::

    rules:
      - id: 1
        priority: 0
        ruleName: Amazon
        importAccount: n26
        matchFieldName: partnerName
        matchFieldRegex: Amazon
        descriptionTemplate: "Buy from {{partnerName}}"
        postings:
          - account: Expenses:Fun
            negate: true
"""

from pathlib import Path
from typing import Any, Optional
import logging
import threading

import yaml
from pydantic import ValidationError

from .matching.postings import PostingRule
from .matching.rules import Rule, RuleSet
from .utils.exceptions import RuleStoreError

logger = logging.getLogger(__name__)


class RuleStore:
    """Loads and persists rules; every call reads the file afresh."""

    def __init__(self, path: Path):
        self.path = path
        self._lock = threading.Lock()

    def get_rules(self, source_id: Optional[str] = None) -> RuleSet:
        """
        Rules in evaluation order.

        Args:
            source_id: Only return rules of this import account

        Raises:
            RuleStoreError: If the file is malformed
        """
        with self._lock:
            rules = RuleSet(self._load())
        return rules.for_source(source_id) if source_id is not None else rules

    def get_rule(self, rule_id: int) -> Optional[Rule]:
        with self._lock:
            return next((r for r in self._load() if r.id == rule_id), None)

    def create_or_update(self, rule: Rule, default_account: Optional[str] = None) -> Rule:
        """
        Store a rule.

        A rule with id 0 gets the lowest id not in use. A rule with an id
        already in the file replaces the stored one.

        Args:
            rule: Rule to store
            default_account: Account of the posting added to a rule without postings

        Returns:
            The stored rule
        """
        with self._lock:
            rules = self._load()
            updates: dict[str, Any] = {}
            if rule.id == 0:
                used = {r.id for r in rules}
                updates["id"] = next(i for i in range(1, len(used) + 2) if i not in used)
            if not rule.postings and default_account:
                updates["postings"] = [PostingRule(account=default_account)]
            if updates:
                rule = rule.model_copy(update=updates)

            replaced = any(r.id == rule.id for r in rules)
            rules = [rule if r.id == rule.id else r for r in rules]
            if not replaced:
                rules.append(rule)
            self._save(rules)

        logger.info(f"{'Updated' if replaced else 'Created'} rule {rule.display_name} (id {rule.id})")
        return rule

    def delete(self, rule_id: int) -> bool:
        """Remove a rule; False if no rule has the id."""
        with self._lock:
            rules = self._load()
            remaining = [r for r in rules if r.id != rule_id]
            if len(remaining) == len(rules):
                return False
            self._save(remaining)
        logger.info(f"Deleted rule {rule_id}")
        return True

    def _load(self) -> list[Rule]:
        if not self.path.exists():
            return []
        try:
            with open(self.path, "r") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise RuleStoreError(f"Failed to read rules from {self.path}: {e}") from e

        entries = data.get("rules", []) if isinstance(data, dict) else None
        if not isinstance(entries, list):
            raise RuleStoreError(f"{self.path} must hold a 'rules' list")
        try:
            return [Rule.model_validate(entry) for entry in entries]
        except ValidationError as e:
            raise RuleStoreError(f"Invalid rule in {self.path}: {e}") from e

    def _save(self, rules: list[Rule]) -> None:
        ordered = sorted(rules, key=lambda r: r.id)
        payload = {"rules": [r.to_dict() for r in ordered]}
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with open(self.path, "w") as f:
                yaml.safe_dump(payload, f, default_flow_style=False, sort_keys=False)
        except OSError as e:
            raise RuleStoreError(f"Failed to write rules to {self.path}: {e}") from e
