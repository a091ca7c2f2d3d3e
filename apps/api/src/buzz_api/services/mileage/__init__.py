"""Mileage ledger exports."""

from .ledger import (  # noqa: F401
    BalanceSnapshot,
    ExpirySweepResult,
    HistoryPage,
    HistorySummary,
    MileageLedgerService,
    MileagePayment,
    REFERENCE_MILEAGE_EARN,
    REFERENCE_MILEAGE_TRANSACTION,
    REFERENCE_QR_PAYMENT,
    to_amount,
)
