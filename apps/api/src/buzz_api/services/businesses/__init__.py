"""Business approval workflow exports."""

from .service import BusinessApprovalService  # noqa: F401
