"""Reconcile bank and broker exports against an hledger journal."""

__version__ = "0.1.0"
