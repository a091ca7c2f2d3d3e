"""One-shot job entrypoints for ledger maintenance."""

__all__ = [
    "ledger",
]
