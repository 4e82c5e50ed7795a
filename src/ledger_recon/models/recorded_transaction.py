"""
Recorded transactions as served by the ledger engine (hledger-web JSON).

Unknown keys are kept so a transaction read from the engine can be written
back without losing data.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

ID_TAG = "uuid"


def get_id_from_tags(tags: list[list[str]]) -> Optional[str]:
    """Return the correlation id carried in a tag list, if any."""
    for tag in tags:
        if len(tag) >= 2 and tag[0] == ID_TAG:
            return tag[1]
    return None


class Quantity(BaseModel):
    """Decimal quantity stored as mantissa plus number of decimal places."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    decimal_mantissa: int = Field(alias="decimalMantissa")
    decimal_places: int = Field(alias="decimalPlaces")
    floating_point: float = Field(default=0.0, alias="floatingPoint")

    @classmethod
    def from_decimal(cls, value: Decimal) -> "Quantity":
        exponent = value.as_tuple().exponent
        places = -exponent if isinstance(exponent, int) and exponent < 0 else 0
        return cls(
            decimal_mantissa=int(value.scaleb(places)),
            decimal_places=places,
            floating_point=float(value),
        )

    def to_decimal(self) -> Decimal:
        return Decimal(self.decimal_mantissa).scaleb(-self.decimal_places)


class Amount(BaseModel):
    """A single commodity amount, optionally with a unit price."""

    model_config = ConfigDict(extra="allow")

    acommodity: str
    aquantity: Quantity
    aprice: Optional[dict[str, Any]] = None
    astyle: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def new(
        cls, commodity: str, quantity: Decimal, price: Optional["Amount"] = None
    ) -> "Amount":
        q = Quantity.from_decimal(quantity)
        return cls(
            acommodity=commodity,
            aquantity=q,
            aprice=(
                {"tag": "UnitPrice", "contents": price.model_dump(mode="json", by_alias=True)}
                if price is not None
                else None
            ),
            astyle={
                "ascommodityside": "R",
                "ascommodityspaced": True,
                "asprecision": q.decimal_places,
                "asdecimalpoint": ".",
                "asdigitgroups": None,
            },
        )

    @property
    def quantity(self) -> Decimal:
        return self.aquantity.to_decimal()

    @property
    def price(self) -> Optional["Amount"]:
        if not self.aprice or "contents" not in self.aprice:
            return None
        return Amount.model_validate(self.aprice["contents"])


class Posting(BaseModel):
    """One account line of a recorded transaction."""

    model_config = ConfigDict(extra="allow")

    paccount: str
    pamount: list[Amount] = Field(default_factory=list)
    pdate: Optional[date] = None
    pdate2: Optional[date] = None
    pstatus: str = "Unmarked"
    pcomment: str = ""
    ptype: str = "RegularPosting"
    ptags: list[list[str]] = Field(default_factory=list)
    pbalanceassertion: Optional[Any] = None

    @classmethod
    def new(
        cls,
        account: str,
        commodity: str,
        quantity: Decimal,
        price: Optional[Amount] = None,
        comment: str = "",
    ) -> "Posting":
        return cls(
            paccount=account,
            pamount=[Amount.new(commodity, quantity, price)],
            pcomment=comment,
        )

    @property
    def id(self) -> Optional[str]:
        return get_id_from_tags(self.ptags)

    @property
    def amount(self) -> Optional[Decimal]:
        """Quantity of the posting, None unless it holds exactly one amount."""
        if len(self.pamount) != 1:
            return None
        return self.pamount[0].quantity

    @property
    def commodity(self) -> Optional[str]:
        if len(self.pamount) != 1:
            return None
        return self.pamount[0].acommodity


class RecordedTransaction(BaseModel):
    """A transaction already present in the ledger."""

    model_config = ConfigDict(extra="allow")

    tdescription: str
    tdate: date
    tdate2: Optional[date] = None
    ttags: list[list[str]] = Field(default_factory=list)
    tpostings: list[Posting] = Field(default_factory=list)
    tcode: str = ""
    tcomment: str = ""
    tprecedingcomment: str = ""
    tstatus: str = "Unmarked"
    tindex: int = 1
    tsourcepos: Any = Field(
        default_factory=lambda: {"tag": "GenericSourcePos", "contents": ["", 1, 1]}
    )

    @classmethod
    def new(cls, description: str, txn_date: date, txn_id: str) -> "RecordedTransaction":
        """Create an empty transaction tagged with a correlation id."""
        return cls(
            tdescription=description,
            tdate=txn_date,
            ttags=[[ID_TAG, txn_id]],
            tcomment=f"{ID_TAG}:{txn_id}",
        )

    def add_posting(self, posting: Posting) -> "RecordedTransaction":
        self.tpostings.append(posting)
        return self

    @property
    def id(self) -> Optional[str]:
        return get_id_from_tags(self.ttags)

    def get_postings(self, account: str) -> list[Posting]:
        """Postings on ``account`` or any of its sub-accounts."""
        return [p for p in self.tpostings if account in p.paccount]

    def has_account(self, account: str) -> bool:
        return bool(self.get_postings(account))

    def get_all_ids(self, account: str) -> list[str]:
        """
        Correlation ids of this transaction scoped to an account.

        Args:
            account: Ledger account name

        Returns:
            Ids of the account's postings followed by the transaction id,
            without repeats
        """
        ids: list[str] = []
        candidates = [p.id for p in self.get_postings(account)] + [self.id]
        for txn_id in candidates:
            if txn_id is not None and txn_id not in ids:
                ids.append(txn_id)
        return ids

    def get_amount(self, txn_id: Optional[str], account: str) -> Optional[Decimal]:
        """
        Amount booked for a correlation id.

        A posting carrying the id wins; otherwise (transaction level id) the
        first amount found on the account is used.
        """
        if txn_id is not None:
            for posting in self.tpostings:
                if posting.id == txn_id and posting.amount is not None:
                    return posting.amount
        for posting in self.get_postings(account):
            if posting.amount is not None:
                return posting.amount
        return None

    def get_date(self, account: Optional[str] = None) -> date:
        """Posting date on ``account`` when one is set, else the transaction date."""
        if account is not None:
            for posting in self.get_postings(account):
                if posting.pdate is not None:
                    return posting.pdate
        return self.tdate

    def to_json(self) -> dict[str, Any]:
        """Payload in the ledger engine's native JSON schema."""
        return self.model_dump(mode="json", by_alias=True)
