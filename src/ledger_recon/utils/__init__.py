"""Utility modules."""

from .exceptions import (
    ReconciliationError,
    ConfigurationError,
    AccountImportError,
    RuleStoreError,
    TemplateRenderError,
    LedgerEngineError,
    LedgerProcessNotReady,
    ReportGenerationError,
)
from .logging_config import setup_logging

__all__ = [
    "ReconciliationError",
    "ConfigurationError",
    "AccountImportError",
    "RuleStoreError",
    "TemplateRenderError",
    "LedgerEngineError",
    "LedgerProcessNotReady",
    "ReportGenerationError",
    "setup_logging",
]
