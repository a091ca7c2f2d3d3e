"""Settlement service exports."""

from .service import (  # noqa: F401
    OWNER_CANCEL_REASON,
    SettlementDetail,
    SettlementService,
    SettlementSummary,
    SettlementTotals,
    TimelineEvent,
    estimated_payment_date,
)
