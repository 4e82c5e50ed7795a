"""Import accounts: sources of real transactions."""

from typing import Optional

from ..config import ReconConfig
from .base import ImportAccount
from .file_account import FileImportAccount


def build_accounts(config: ReconConfig) -> dict[str, ImportAccount]:
    """Create one import account per configured source, keyed by source id."""
    base_dir = config.base_dir()
    return {
        settings.source_id: FileImportAccount(settings, base_dir)
        for settings in config.accounts
    }


def build_account(config: ReconConfig, source_id: Optional[str] = None) -> ImportAccount:
    """Create the import account selected by ``source_id``."""
    return FileImportAccount(config.get_account(source_id), config.base_dir())


__all__ = ["ImportAccount", "FileImportAccount", "build_accounts", "build_account"]
