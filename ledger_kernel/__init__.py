"""Ledger Kernel - domain records, commands, errors and logging for the reconciliation core."""

__version__ = "0.1.0"
