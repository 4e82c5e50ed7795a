"""Configuration loader and validation for reconciliation settings."""

from decimal import Decimal
from pathlib import Path
from typing import Any, Optional
import logging
import os

import yaml
from pydantic import BaseModel, Field, ValidationError

from .utils.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

JOURNAL_PATH_ENV = "JOURNAL_PATH"
LEDGER_FILE_ENV = "LEDGER_FILE"


class LedgerSettings(BaseModel):
    """Configuration for the ledger-query processes."""

    # Directory holding the journal files, falls back to $JOURNAL_PATH or
    # the directory of $LEDGER_FILE
    journal_dir: Optional[str] = None
    default_file: str = "ledger.ledger"
    # Year partition -> journal file (relative to journal_dir) receiving writes
    year_files: dict[int, str] = Field(default_factory=dict)

    executable: str = "hledger-web"
    extra_args: list[str] = Field(default_factory=list)
    balance_executable: str = "hledger"

    host: str = "127.0.0.1"
    read_port: int = 5001
    # Write process for year Y listens on write_port_offset + Y
    write_port_offset: int = 3001

    ready_marker: str = "Press ctrl-c to quit"
    read_timeout_seconds: float = 10.0
    write_timeout_seconds: float = 2.0
    # None blocks until the process reports ready
    ready_timeout_seconds: Optional[float] = None
    poll_interval_seconds: float = 1.0

    def journal_path(self) -> Path:
        """Resolve the journal directory."""
        if self.journal_dir:
            return Path(self.journal_dir).expanduser()
        if os.environ.get(JOURNAL_PATH_ENV):
            return Path(os.environ[JOURNAL_PATH_ENV]).expanduser()
        if os.environ.get(LEDGER_FILE_ENV):
            return Path(os.environ[LEDGER_FILE_ENV]).expanduser().parent
        raise ConfigurationError(
            f"Can't determine journal path: set ledger.journal_dir, "
            f"${JOURNAL_PATH_ENV} or ${LEDGER_FILE_ENV}"
        )

    def default_file_path(self) -> Path:
        return self.journal_path() / self.default_file

    def year_file_paths(self) -> dict[int, Path]:
        root = self.journal_path()
        return {year: root / name for year, name in sorted(self.year_files.items())}

    def write_port(self, year: int) -> int:
        return self.write_port_offset + year


class AccountSettings(BaseModel):
    """Configuration for one import account."""

    source_id: str
    hledger_account: str
    # Transaction model: n26, saltedge or generic
    kind: str = "generic"
    path: str
    # json or csv, inferred from the file suffix when omitted
    format: Optional[str] = None
    encoding: str = "utf-8"
    delimiter: str = ","
    # Balance reported by the source, overrides one found in the export
    balance: Optional[Decimal] = None
    # Ledger commodity the balance is compared in
    commodity: Optional[str] = None


class RulesSettings(BaseModel):
    """Configuration for the rule store."""

    path: str = "rules.yaml"


class ExcelOutputConfig(BaseModel):
    """Configuration for Excel output."""

    filename_template: str = "reconciliation_{source_id}_{date}_{time}.xlsx"


class SheetConfig(BaseModel):
    """Configuration for a report sheet."""

    enabled: bool = True
    name: str


class SheetsConfig(BaseModel):
    """Configuration for all report sheets."""

    summary: SheetConfig = Field(default_factory=lambda: SheetConfig(name="Summary"))
    existing: SheetConfig = Field(default_factory=lambda: SheetConfig(name="Existing"))
    generated: SheetConfig = Field(default_factory=lambda: SheetConfig(name="Generated"))
    unmatched: SheetConfig = Field(default_factory=lambda: SheetConfig(name="Unmatched"))
    duplicates: SheetConfig = Field(default_factory=lambda: SheetConfig(name="Duplicates"))
    income_statement: SheetConfig = Field(
        default_factory=lambda: SheetConfig(name="Income Statement")
    )
    net_worth: SheetConfig = Field(default_factory=lambda: SheetConfig(name="Net Worth"))


class OutputConfig(BaseModel):
    """Configuration for output."""

    excel: ExcelOutputConfig = Field(default_factory=ExcelOutputConfig)
    sheets: SheetsConfig = Field(default_factory=SheetsConfig)


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[str] = None


class ReconConfig(BaseModel):
    """Main configuration model for reconciliation."""

    ledger: LedgerSettings = Field(default_factory=LedgerSettings)
    accounts: list[AccountSettings] = Field(default_factory=list)
    rules: RulesSettings = Field(default_factory=RulesSettings)
    output: OutputConfig = Field(default_factory=OutputConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    config_file_path: Optional[str] = None

    def get_account(self, source_id: Optional[str] = None) -> AccountSettings:
        """
        Look up an import account.

        Args:
            source_id: Account to select, may be omitted with a single account

        Raises:
            ConfigurationError: If no account or no unique account matches
        """
        if source_id is None:
            if len(self.accounts) != 1:
                raise ConfigurationError(
                    f"{len(self.accounts)} accounts configured, select one by source id"
                )
            return self.accounts[0]
        for account in self.accounts:
            if account.source_id == source_id:
                return account
        known = ", ".join(a.source_id for a in self.accounts) or "none"
        raise ConfigurationError(f"Unknown account {source_id!r} (configured: {known})")

    def base_dir(self) -> Path:
        """Directory relative paths in the configuration resolve against."""
        if self.config_file_path:
            return Path(self.config_file_path).parent
        return Path.cwd()


def get_default_config() -> dict[str, Any]:
    """Return the default configuration as a dictionary."""
    return {
        "ledger": {
            "journal_dir": None,
            "default_file": "ledger.ledger",
            "year_files": {},
            "executable": "hledger-web",
            "extra_args": [],
            "balance_executable": "hledger",
            "host": "127.0.0.1",
            "read_port": 5001,
            "write_port_offset": 3001,
            "ready_marker": "Press ctrl-c to quit",
            "read_timeout_seconds": 10.0,
            "write_timeout_seconds": 2.0,
            "ready_timeout_seconds": None,
            "poll_interval_seconds": 1.0,
        },
        "accounts": [],
        "rules": {"path": "rules.yaml"},
        "output": {
            "excel": {
                "filename_template": "reconciliation_{source_id}_{date}_{time}.xlsx",
            },
            "sheets": {
                "summary": {"enabled": True, "name": "Summary"},
                "existing": {"enabled": True, "name": "Existing"},
                "generated": {"enabled": True, "name": "Generated"},
                "unmatched": {"enabled": True, "name": "Unmatched"},
                "duplicates": {"enabled": True, "name": "Duplicates"},
                "income_statement": {"enabled": True, "name": "Income Statement"},
                "net_worth": {"enabled": True, "name": "Net Worth"},
            },
        },
        "logging": {
            "level": "INFO",
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            "file": None,
        },
    }


def _sample_config() -> dict[str, Any]:
    """Default configuration with example journal, partitions and account."""
    config_dict = get_default_config()
    config_dict["ledger"]["journal_dir"] = "~/journal"
    config_dict["ledger"]["year_files"] = {2023: "2023.ledger", 2024: "2024.ledger"}
    config_dict["accounts"] = [
        {
            "source_id": "n26",
            "hledger_account": "Assets:Cash:N26",
            "kind": "n26",
            "path": "exports/n26.json",
            "commodity": "EUR",
        }
    ]
    return config_dict


def load_config(config_path: Optional[Path] = None) -> ReconConfig:
    """
    Load configuration from a YAML file or use defaults.

    Args:
        config_path: Path to YAML configuration file (optional)

    Returns:
        ReconConfig object with loaded or default settings

    Raises:
        ConfigurationError: If the file is not valid YAML or fails validation
    """
    config_dict = get_default_config()

    if config_path and config_path.exists():
        logger.info(f"Loading configuration from: {config_path}")
        try:
            with open(config_path, "r") as f:
                user_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

        config_dict = _deep_merge(config_dict, user_config)
        config_dict["config_file_path"] = str(config_path)
    else:
        logger.info("Using default configuration")

    try:
        return ReconConfig(**config_dict)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def _deep_merge(base: dict, override: dict) -> dict:
    """
    Deep merge two dictionaries.

    Args:
        base: Base dictionary
        override: Dictionary to merge on top

    Returns:
        Merged dictionary
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def generate_default_config(output_path: Path) -> None:
    """
    Generate a sample configuration file.

    Args:
        output_path: Path to write the configuration file
    """
    yaml_content = """# Ledger import reconciliation configuration
# Generated configuration file - customize as needed

"""
    yaml_content += yaml.safe_dump(_sample_config(), default_flow_style=False, sort_keys=False)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        f.write(yaml_content)

    logger.info(f"Generated configuration file: {output_path}")
