"""Tests for the per-account reconciliation workflow."""

from datetime import date
from decimal import Decimal

import pytest

from ledger_recon.matching.postings import PostingRule
from ledger_recon.rules_store import RuleStore
from ledger_recon.utils.exceptions import ReconciliationError
from ledger_recon.workflow import ImportWorkflow

from conftest import (
    AMAZON_ID,
    AMAZON_USD_ID,
    ASSET_ACCOUNT,
    SUPERMARKET_ID,
    FakeAccount,
    FakeEngine,
    recorded_for,
)


@pytest.fixture()
def rule_store(tmp_path, amazon_rule) -> RuleStore:
    store = RuleStore(tmp_path / "rules.yaml")
    store.create_or_update(amazon_rule)
    store.create_or_update(amazon_rule.model_copy(update={"id": 0, "import_account": "other"}))
    return store


@pytest.fixture()
def engine(recorded_transactions) -> FakeEngine:
    return FakeEngine(recorded_transactions, balances={"EUR": Decimal("780.44")})


@pytest.fixture()
def workflow(real_transactions, engine, rule_store) -> ImportWorkflow:
    account = FakeAccount(real_transactions, balance=Decimal("1000"))
    return ImportWorkflow(account, engine, rule_store, commodity="EUR")


def test_queries_use_account_rules_only(workflow):
    assert len(workflow.rules()) == 1
    assert [g.real_transaction.id for g in workflow.generated()] == [AMAZON_USD_ID]
    assert [u.real_transaction.id for u in workflow.unmatched()] == [SUPERMARKET_ID]


def test_existing_seeded_with_balances(workflow):
    rows = workflow.existing()

    assert [r.id for r in rows] == [AMAZON_ID]
    assert rows[0].real_cumulative == Decimal("1000")
    assert rows[0].recorded_cumulative == Decimal("780.44")


def test_recorded_balance_commodity_selection(workflow, engine):
    engine.balances = {"EUR": Decimal("1"), "USD": Decimal("2")}
    assert workflow.recorded_balance() == Decimal("1")

    workflow.commodity = None
    assert workflow.recorded_balance() == Decimal("0")

    engine.balances = {"USD": Decimal("2")}
    assert workflow.recorded_balance() == Decimal("2")

    workflow.commodity = "GBP"
    assert workflow.recorded_balance() == Decimal("0")


def test_check_reports_duplicates(workflow, engine, real_transactions):
    assert workflow.check() == set()

    engine.transactions.append(recorded_for(real_transactions[0], description="Again"))
    assert workflow.check() == {AMAZON_ID}


def test_write_generated_sorted_by_date(real_transactions, rule_store):
    later = real_transactions[2].model_copy(update={"visible_ts": 1600000000000})
    earlier = real_transactions[0]
    engine = FakeEngine()
    workflow = ImportWorkflow(FakeAccount([later, earlier]), engine, rule_store)

    assert workflow.write_generated()

    assert [t.id for t in engine.written] == [AMAZON_ID, AMAZON_USD_ID]
    assert engine.written[1].tdate == date(2020, 9, 13)


def test_write_generated_reports_failure(real_transactions, rule_store):
    workflow = ImportWorkflow(
        FakeAccount(real_transactions), FakeEngine(write_succeeds=False), rule_store
    )

    assert not workflow.write_generated()


def test_nothing_to_write(real_transactions, rule_store):
    engine = FakeEngine([recorded_for(t) for t in real_transactions])
    workflow = ImportWorkflow(FakeAccount(real_transactions), engine, rule_store)

    assert workflow.write_generated()
    assert engine.written == []


def test_field_stats(workflow):
    stats = workflow.field_stats()

    assert stats["partnerName"] == [("Amazon", 2), ("Supermarket", 1)]
    assert stats["currencyCode"][0] == ("EUR", 2)
    assert set(workflow.field_stats(["partnerName", "missing"])) == {"partnerName"}


def test_generate_single(workflow, engine):
    txn = workflow.generate_single(
        SUPERMARKET_ID,
        "Groceries at {{partnerName}}",
        [PostingRule(account="Expenses:Food", negate=True)],
    )

    assert txn.tdescription == "Groceries at Supermarket"
    assert [(p.paccount, p.amount) for p in txn.tpostings] == [
        (ASSET_ACCOUNT, Decimal("-123.45")),
        ("Expenses:Food", Decimal("123.45")),
    ]
    assert engine.written == []

    workflow.generate_single(SUPERMARKET_ID, "Groceries", [], should_write=True)
    assert [t.id for t in engine.written] == [SUPERMARKET_ID]


def test_generate_single_unknown_id(workflow):
    with pytest.raises(ReconciliationError):
        workflow.generate_single("nope", "x", [])


def test_reconcile_summary(workflow):
    summary, existing, generated, unmatched = workflow.reconcile("config.yaml")

    assert summary.source_id == "n26"
    assert summary.total_real_transactions == 3
    assert summary.total_recorded_transactions == 1
    assert summary.existing_count == len(existing) == 1
    assert summary.generated_count == len(generated) == 1
    assert summary.unmatched_count == len(unmatched) == 1
    assert summary.error_row_count == 0
    assert summary.balance_difference == Decimal("219.56")
    assert summary.match_rate == pytest.approx(100 / 3)
    assert summary.period_start == summary.period_end == date(2020, 8, 13)
    assert workflow.summary().config_file_used is None
