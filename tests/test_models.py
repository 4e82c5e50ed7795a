"""Tests for real and recorded transaction models."""

from datetime import date
from decimal import Decimal
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from ledger_recon.models.real_transaction import (
    GenericTransaction,
    N26Transaction,
    RealTransaction,
    SaltEdgeTransaction,
)
from ledger_recon.models.recorded_transaction import (
    Amount,
    Posting,
    Quantity,
    RecordedTransaction,
)

from conftest import AMAZON_ID, ASSET_ACCOUNT, EXPENSE_ACCOUNT, n26


# Real transactions


def test_n26_date_from_epoch_millis():
    txn = n26(AMAZON_ID, "-219.56", "EUR", "Amazon", "Buy item 1")

    assert txn.get_date() == date(2020, 8, 13)
    assert txn.get_amount() == Decimal("-219.56")
    assert txn.get_currency() == "EUR"


def test_n26_fields_keep_source_names():
    txn = n26(AMAZON_ID, "-219.56", "EUR", "Amazon", "Buy item 1")

    fields = txn.fields()
    assert fields["currencyCode"] == "EUR"
    assert fields["partnerName"] == "Amazon"
    assert txn.get_field("referenceText") == "Buy item 1"
    assert txn.get_field("missing") is None


def test_get_amount_unresolvable_values():
    txn = n26(AMAZON_ID, "-1", "EUR", "Amazon", "x")
    txn = N26Transaction.model_validate(
        {**txn.fields(), "flag": True, "text": "abc", "nan": "NaN", "spaced": " 12.50 "}
    )

    assert txn.get_amount("flag") is None
    assert txn.get_amount("text") is None
    assert txn.get_amount("nan") is None
    assert txn.get_amount("missing") is None
    assert txn.get_amount("spaced") == Decimal("12.50")


def test_get_currency_requires_non_empty_string():
    txn = N26Transaction.model_validate(
        {
            "id": "a",
            "amount": "1",
            "currencyCode": "EUR",
            "visibleTS": 0,
            "blank": "  ",
            "number": 5,
        }
    )

    assert txn.get_currency("blank") is None
    assert txn.get_currency("number") is None


def test_real_transactions_are_immutable():
    txn = n26(AMAZON_ID, "-1", "EUR", "Amazon", "x")

    with pytest.raises(ValidationError):
        txn.id = "other"


def test_field_lookups_reuse_the_field_map():
    txn = n26(AMAZON_ID, "-1", "EUR", "Amazon", "x")

    with patch.object(RealTransaction, "model_dump", side_effect=AssertionError):
        assert txn.get_field("partnerName") == "Amazon"
        assert txn.get_amount() == Decimal("-1")

    txn.fields()["partnerName"] = "changed"
    assert txn.get_field("partnerName") == "Amazon"
    assert txn == n26(AMAZON_ID, "-1", "EUR", "Amazon", "x")


def test_copy_refreshes_the_field_map():
    txn = n26(AMAZON_ID, "-1", "EUR", "Amazon", "x")

    copy = txn.model_copy(update={"amount": Decimal("-2")})

    assert copy.get_amount() == Decimal("-2")
    assert copy.get_field("amount") == Decimal("-2")
    assert txn.get_amount() == Decimal("-1")


def test_saltedge_flattens_extra():
    txn = SaltEdgeTransaction.model_validate(
        {
            "id": "se-1",
            "made_on": "2021-03-04",
            "amount": "-10.00",
            "currency_code": "EUR",
            "description": "Coffee",
            "extra": {"payee": "Cafe", "description": "ignored"},
        }
    )

    assert txn.get_date() == date(2021, 3, 4)
    assert txn.get_field("payee") == "Cafe"
    assert txn.get_field("description") == "Coffee"
    assert txn.get_currency() == "EUR"


def test_generic_transaction_uses_date_alias():
    txn = GenericTransaction.model_validate(
        {"id": "g1", "date": "2021-01-02", "amount": "5", "currency": "USD"}
    )

    assert txn.get_date() == date(2021, 1, 2)
    assert txn.get_currency() == "USD"


# Recorded transactions


def test_quantity_keeps_scale():
    quantity = Quantity.from_decimal(Decimal("-219.50"))

    assert quantity.decimal_mantissa == -21950
    assert quantity.decimal_places == 2
    assert quantity.to_decimal() == Decimal("-219.50")


def test_amount_with_unit_price():
    price = Amount.new("USD", Decimal("1.1"))
    amount = Amount.new("EUR", Decimal("10"), price)

    assert amount.aprice["tag"] == "UnitPrice"
    assert amount.price.acommodity == "USD"
    assert amount.price.quantity == Decimal("1.1")


def test_new_transaction_is_tagged_with_id():
    txn = RecordedTransaction.new("Groceries", date(2020, 1, 1), "abc")

    assert txn.id == "abc"
    assert txn.tcomment == "uuid:abc"
    assert txn.ttags == [["uuid", "abc"]]


def test_account_scoping_includes_sub_accounts():
    txn = (
        RecordedTransaction.new("x", date(2020, 1, 1), "t")
        .add_posting(Posting.new("Assets:Cash:N26", "EUR", Decimal("-1")))
        .add_posting(Posting.new(EXPENSE_ACCOUNT, "EUR", Decimal("1")))
    )

    assert txn.has_account("Assets:Cash")
    assert not txn.has_account("Income")
    assert [p.paccount for p in txn.get_postings("Assets")] == ["Assets:Cash:N26"]


def test_get_all_ids_posting_ids_first_without_repeats():
    posting = Posting.new(ASSET_ACCOUNT, "EUR", Decimal("-1"))
    posting.ptags = [["uuid", "p1"]]
    inherited = Posting.new(ASSET_ACCOUNT, "EUR", Decimal("-2"))
    inherited.ptags = [["uuid", "t"]]
    other = Posting.new(EXPENSE_ACCOUNT, "EUR", Decimal("3"))
    other.ptags = [["uuid", "p2"]]
    txn = RecordedTransaction.new("x", date(2020, 1, 1), "t")
    for p in (posting, inherited, other):
        txn.add_posting(p)

    assert txn.get_all_ids(ASSET_ACCOUNT) == ["p1", "t"]


def test_get_amount_prefers_posting_with_id():
    first = Posting.new(ASSET_ACCOUNT, "EUR", Decimal("-1"))
    tagged = Posting.new(ASSET_ACCOUNT, "EUR", Decimal("-2"))
    tagged.ptags = [["uuid", "p"]]
    txn = RecordedTransaction.new("x", date(2020, 1, 1), "t").add_posting(first).add_posting(tagged)

    assert txn.get_amount("p", ASSET_ACCOUNT) == Decimal("-2")
    assert txn.get_amount("t", ASSET_ACCOUNT) == Decimal("-1")
    assert txn.get_amount(None, "Income") is None


def test_get_date_prefers_account_posting_date():
    posting = Posting.new(ASSET_ACCOUNT, "EUR", Decimal("-1"))
    posting.pdate = date(2020, 1, 5)
    txn = RecordedTransaction.new("x", date(2020, 1, 1), "t").add_posting(posting)

    assert txn.get_date(ASSET_ACCOUNT) == date(2020, 1, 5)
    assert txn.get_date(EXPENSE_ACCOUNT) == date(2020, 1, 1)
    assert txn.get_date() == date(2020, 1, 1)


def test_parses_hledger_json_and_keeps_unknown_keys():
    payload = {
        "tcode": "",
        "tcomment": "uuid:abc\n",
        "tdate": "2020-08-13",
        "tdate2": None,
        "tdescription": "Amazon",
        "tindex": 7,
        "tpostings": [
            {
                "paccount": ASSET_ACCOUNT,
                "pamount": [
                    {
                        "acommodity": "EUR",
                        "aismultiplier": False,
                        "aprice": None,
                        "aquantity": {
                            "decimalMantissa": -21956,
                            "decimalPlaces": 2,
                            "floatingPoint": -219.56,
                        },
                        "astyle": {"ascommodityside": "R"},
                    }
                ],
                "pbalanceassertion": None,
                "pcomment": "",
                "pdate": None,
                "pdate2": None,
                "poriginal": None,
                "pstatus": "Unmarked",
                "ptags": [["uuid", "abc"]],
                "ptransaction_": "7",
                "ptype": "RegularPosting",
            }
        ],
        "tprecedingcomment": "",
        "tsourcepos": {"tag": "JournalSourcePos", "contents": ["2020.ledger", [1, 4]]},
        "tstatus": "Unmarked",
        "ttags": [["uuid", "abc"]],
    }

    txn = RecordedTransaction.model_validate(payload)

    assert txn.id == "abc"
    assert txn.get_amount("abc", ASSET_ACCOUNT) == Decimal("-219.56")
    out = txn.to_json()
    assert out["tdate"] == "2020-08-13"
    assert out["tpostings"][0]["ptransaction_"] == "7"
    assert out["tpostings"][0]["pamount"][0]["aquantity"]["decimalMantissa"] == -21956
