"""Tests for the YAML rule store."""

import re

import pytest
import yaml

from ledger_recon.matching.postings import PostingRule
from ledger_recon.matching.rules import Rule
from ledger_recon.rules_store import RuleStore
from ledger_recon.utils.exceptions import RuleStoreError

from conftest import ASSET_ACCOUNT


@pytest.fixture()
def store(tmp_path) -> RuleStore:
    return RuleStore(tmp_path / "rules.yaml")


def _rule(**kwargs) -> Rule:
    defaults = {
        "import_account": "n26",
        "match_field_name": "partnerName",
        "match_field_regex": re.compile("Amazon"),
        "description_template": "Buy from {{partnerName}}",
        "postings": [PostingRule(account="Expenses:Fun", negate=True)],
    }
    return Rule(**{**defaults, **kwargs})


def test_empty_store(store):
    assert len(store.get_rules()) == 0
    assert store.get_rule(1) is None


def test_create_assigns_lowest_free_id(store):
    assert store.create_or_update(_rule()).id == 1
    assert store.create_or_update(_rule()).id == 2
    assert store.create_or_update(_rule()).id == 3

    assert store.delete(2)
    assert store.create_or_update(_rule()).id == 2


def test_rule_without_postings_gets_default_posting(store):
    stored = store.create_or_update(_rule(postings=[]), default_account=ASSET_ACCOUNT)

    assert [p.account for p in stored.postings] == [ASSET_ACCOUNT]
    assert store.get_rule(stored.id).postings[0].account == ASSET_ACCOUNT


def test_update_replaces_rule(store):
    stored = store.create_or_update(_rule())

    store.create_or_update(stored.model_copy(update={"description_template": "Changed"}))

    assert len(store.get_rules()) == 1
    assert store.get_rule(stored.id).description_template == "Changed"


def test_rules_filtered_and_ordered(store):
    store.create_or_update(_rule(priority=5, rule_name="late"))
    store.create_or_update(_rule(priority=1, rule_name="early"))
    store.create_or_update(_rule(import_account="other"))

    assert [r.rule_name for r in store.get_rules("n26")] == ["early", "late"]
    assert len(store.get_rules()) == 3


def test_stored_file_round_trips(store):
    stored = store.create_or_update(_rule(match_field_regex=re.compile("(?i)amazon")))

    data = yaml.safe_load(store.path.read_text())
    assert data["rules"][0]["matchFieldRegex"] == "(?i)amazon"

    loaded = store.get_rule(stored.id)
    assert loaded == stored
    assert loaded.match_field_regex.search("AMAZON EU")


def test_delete_unknown_rule(store):
    assert not store.delete(42)


def test_malformed_file_raises(store):
    store.path.write_text("rules: {not: a list}\n")
    with pytest.raises(RuleStoreError):
        store.get_rules()

    store.path.write_text("rules:\n  - matchFieldRegex: '('\n")
    with pytest.raises(RuleStoreError):
        store.get_rules()
