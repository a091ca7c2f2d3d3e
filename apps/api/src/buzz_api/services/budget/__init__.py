"""Advisory budget monitoring."""

from .monitor import (  # noqa: F401
    BudgetAlert,
    BudgetMonitor,
    BudgetStatusReport,
    CategoryUsage,
    SpendBreakdown,
    TrendPoint,
    classify,
    period_bounds,
    utilization,
)
from .policy import (  # noqa: F401
    POLICY_SETTING_KEY,
    AlertThresholds,
    BudgetPolicy,
    EmergencyRestrictions,
    merge_documents,
)
