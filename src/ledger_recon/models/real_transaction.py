"""
Real transactions: records reported by an external financial source.

Every source gets its own model; the reconciliation core only relies on
the ``RealTransaction`` interface (id, date and field lookup by name).
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, ClassVar, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, model_validator

DATE_FMT = "%Y-%m-%d"


class RealTransaction(BaseModel, ABC):
    """Base model for a transaction fetched from a bank or broker."""

    model_config = ConfigDict(frozen=True, extra="allow", populate_by_name=True)

    # Unique per source
    id: str

    # Field names used when a posting rule names no amount/currency field
    default_amount_field: ClassVar[str] = "amount"
    default_currency_field: ClassVar[str] = "currency"

    # Built once per instance; rules look fields up for every transaction
    _field_map: dict[str, Any] = PrivateAttr(default_factory=dict)

    def model_post_init(self, __context: Any) -> None:
        self._field_map = self.model_dump(by_alias=True)

    def model_copy(
        self, *, update: Optional[dict[str, Any]] = None, deep: bool = False
    ) -> "RealTransaction":
        copied = super().model_copy(update=update, deep=deep)
        copied.model_post_init(None)
        return copied

    @abstractmethod
    def get_date(self) -> date:
        """Date the source booked the transaction on."""

    def fields(self) -> dict[str, Any]:
        """Field map used for rule matching and template rendering."""
        return dict(self._field_map)

    def get_field(self, name: str) -> Optional[Any]:
        """Look up a field by its source name, None if absent."""
        return self._field_map.get(name)

    def get_amount(self, field_name: Optional[str] = None) -> Optional[Decimal]:
        """
        Resolve a field as a decimal amount.

        Args:
            field_name: Field to read, defaults to the source's amount field

        Returns:
            Amount with the scale of the source value, None if unresolvable
        """
        value = self.get_field(field_name or self.default_amount_field)
        if value is None or isinstance(value, bool):
            return None
        try:
            amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
        except InvalidOperation:
            return None
        return amount if amount.is_finite() else None

    def get_currency(self, field_name: Optional[str] = None) -> Optional[str]:
        """Resolve a field as a commodity name, None if unresolvable."""
        value = self.get_field(field_name or self.default_currency_field)
        if not isinstance(value, str) or not value.strip():
            return None
        return value.strip()


class N26Transaction(RealTransaction):
    """Transaction from the N26 API."""

    amount: Decimal
    currency_code: str = Field(alias="currencyCode")
    # Epoch milliseconds
    visible_ts: int = Field(alias="visibleTS")

    default_currency_field: ClassVar[str] = "currencyCode"

    def get_date(self) -> date:
        return datetime.fromtimestamp(self.visible_ts / 1000, tz=timezone.utc).date()


class SaltEdgeTransaction(RealTransaction):
    """Transaction from the Salt Edge open banking API."""

    made_on: str
    amount: Decimal
    currency_code: str
    description: str = ""
    category: str = ""

    default_currency_field: ClassVar[str] = "currency_code"

    @model_validator(mode="before")
    @classmethod
    def _flatten_extra(cls, data: Any) -> Any:
        """Salt Edge nests source specific details under ``extra``."""
        if isinstance(data, dict) and isinstance(data.get("extra"), dict):
            flattened = dict(data["extra"])
            flattened.update({k: v for k, v in data.items() if k != "extra"})
            return flattened
        return data

    def get_date(self) -> date:
        return datetime.strptime(self.made_on, DATE_FMT).date()


class GenericTransaction(RealTransaction):
    """Transaction from a plain JSON or CSV export."""

    booking_date: date = Field(alias="date")
    amount: Decimal
    currency: str

    def get_date(self) -> date:
        return self.booking_date


TRANSACTION_KINDS: dict[str, type[RealTransaction]] = {
    "n26": N26Transaction,
    "saltedge": SaltEdgeTransaction,
    "generic": GenericTransaction,
}
