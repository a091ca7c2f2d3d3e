"""Ledger job exports."""

from .expiration import run_ledger_expiration  # noqa: F401

__all__ = [
    "run_ledger_expiration",
]
