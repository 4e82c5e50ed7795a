"""
Import account reading exported transactions from a JSON or CSV file.
"""

from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Optional
import json
import logging

import pandas as pd
from pydantic import ValidationError

from ..config import AccountSettings
from ..models.real_transaction import TRANSACTION_KINDS, RealTransaction
from ..utils.exceptions import AccountImportError
from .base import ImportAccount

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = ("json", "csv")


class FileImportAccount(ImportAccount):
    """
    Reads a transaction export.

    JSON files hold either an array of transactions or an object with
    ``transactions`` and an optional ``balance``. CSV files hold one
    transaction per row with the source's field names as header.
    """

    def __init__(self, settings: AccountSettings, base_dir: Optional[Path] = None):
        """
        Initialize the account.

        Args:
            settings: Account configuration
            base_dir: Directory a relative ``settings.path`` resolves against

        Raises:
            AccountImportError: If the transaction kind or file format is unknown
        """
        self.settings = settings
        path = Path(settings.path).expanduser()
        self.path = path if path.is_absolute() or base_dir is None else base_dir / path

        model = TRANSACTION_KINDS.get(settings.kind)
        if model is None:
            raise AccountImportError(
                f"Unknown transaction kind {settings.kind!r} for {settings.source_id} "
                f"(known: {', '.join(TRANSACTION_KINDS)})"
            )
        self.model = model

        self.format = (settings.format or self.path.suffix.lstrip(".")).lower()
        if self.format not in SUPPORTED_FORMATS:
            raise AccountImportError(
                f"Unsupported format {self.format!r} for {settings.source_id}, "
                f"use one of {', '.join(SUPPORTED_FORMATS)}"
            )

        self._envelope_balance: Optional[Decimal] = None

    @property
    def source_id(self) -> str:
        return self.settings.source_id

    @property
    def hledger_account(self) -> str:
        return self.settings.hledger_account

    def fetch_transactions(self) -> list[RealTransaction]:
        """
        Read and validate all transactions of the export.

        Rows that fail validation are logged and skipped.

        Raises:
            AccountImportError: If the file can't be read or parsed
        """
        logger.info(f"Reading {self.format.upper()} export for {self.source_id}: {self.path}")
        records = self._read_json() if self.format == "json" else self._read_csv()

        transactions: list[RealTransaction] = []
        for idx, record in enumerate(records):
            try:
                transactions.append(self.model.model_validate(record))
            except ValidationError as e:
                logger.warning(f"Failed to process record {idx} of {self.path.name}: {e}")
                continue

        logger.info(f"Extracted {len(transactions)} transactions for {self.source_id}")
        return transactions

    def fetch_balance(self) -> Decimal:
        """Configured balance, else the balance of a JSON envelope, else zero."""
        if self.settings.balance is not None:
            return self.settings.balance
        if self._envelope_balance is None and self.format == "json":
            self._read_json()
        if self._envelope_balance is not None:
            return self._envelope_balance
        logger.warning(f"No balance known for {self.source_id}, assuming 0")
        return Decimal("0")

    def _read_json(self) -> list[dict[str, Any]]:
        try:
            with open(self.path, "r", encoding=self.settings.encoding) as f:
                payload = json.load(f, parse_float=Decimal)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read JSON file: {e}")
            raise AccountImportError(f"Failed to read {self.path}: {e}") from e

        if isinstance(payload, dict):
            self._envelope_balance = _to_decimal(payload.get("balance"))
            payload = payload.get("transactions", [])
        if not isinstance(payload, list):
            raise AccountImportError(f"{self.path} holds no transaction list")
        return [r for r in payload if isinstance(r, dict)]

    def _read_csv(self) -> list[dict[str, Any]]:
        try:
            df = pd.read_csv(
                self.path,
                encoding=self.settings.encoding,
                delimiter=self.settings.delimiter,
                dtype=str,
                keep_default_na=False,
            )
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read CSV file: {e}")
            raise AccountImportError(f"Failed to read {self.path}: {e}") from e

        df.columns = [str(c).strip() for c in df.columns]
        return [
            {k: v for k, v in row.items() if v != ""} for row in df.to_dict(orient="records")
        ]


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        logger.warning(f"Ignoring unreadable balance {value!r}")
        return None
