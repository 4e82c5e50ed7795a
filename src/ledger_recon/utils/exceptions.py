"""Custom exceptions for the ledger reconciliation application."""


class ReconciliationError(Exception):
    """Base exception for reconciliation errors."""

    pass


class ConfigurationError(ReconciliationError):
    """Error in configuration."""

    pass


class AccountImportError(ReconciliationError):
    """Error reading transactions from an import account."""

    pass


class RuleStoreError(ReconciliationError):
    """Error loading or saving rules."""

    pass


class TemplateRenderError(ReconciliationError):
    """Error rendering a description template."""

    pass


class LedgerEngineError(ReconciliationError):
    """Error talking to a ledger-query process."""

    pass


class LedgerProcessNotReady(LedgerEngineError):
    """The ledger-query process did not become ready in time."""

    pass


class ReportGenerationError(ReconciliationError):
    """Error generating Excel report."""

    pass
