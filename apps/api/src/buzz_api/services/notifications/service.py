"""Business-facing SMS notifications.

Sending happens after the triggering transaction has committed. A failed send
is logged and dropped; it never rolls back or fails the request.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from loguru import logger

from buzz_api.core.settings import get_settings
from buzz_api.models.business import Business, BusinessStatus
from buzz_api.models.settlement import SettlementRequest, SettlementStatus

from .backend import HttpSMSBackend, InMemorySMSBackend, LoggingSMSBackend, SMSBackend


@dataclass
class NotificationEvent:
    recipient: str
    body_text: str
    event_type: str
    metadata: dict[str, Any]
    delivered: bool


_BUSINESS_MESSAGES = {
    BusinessStatus.APPROVED: "[Buzz] {name} has been approved. You can now accept mileage and coupons.",
    BusinessStatus.REJECTED: "[Buzz] {name} registration was rejected. Reason: {reason}",
    BusinessStatus.SUSPENDED: "[Buzz] {name} has been suspended. Reason: {reason}",
}

_SETTLEMENT_MESSAGES = {
    SettlementStatus.APPROVED: "[Buzz] Settlement for {date} ({amount:,.0f}) was approved.",
    SettlementStatus.REJECTED: "[Buzz] Settlement for {date} was rejected. Reason: {reason}",
    SettlementStatus.PAID: "[Buzz] Settlement for {date} ({amount:,.0f}) has been paid.",
}


class NotificationService:
    """Coordinates SMS delivery via a pluggable backend."""

    def __init__(self, backend: Optional[SMSBackend] = None) -> None:
        self._backend = backend or self._build_default_backend()
        self._events: list[NotificationEvent] = []

    @property
    def sent_events(self) -> list[NotificationEvent]:
        return self._events

    def use_in_memory_backend(self) -> InMemorySMSBackend:
        backend = InMemorySMSBackend()
        self._backend = backend
        return backend

    async def send_business_status(self, business: Business) -> None:
        template = _BUSINESS_MESSAGES.get(business.status)
        if template is None:
            return
        body = template.format(
            name=business.business_name,
            reason=business.rejection_reason or "-",
        )
        await self._dispatch(
            _business_phone(business),
            body,
            event_type=f"business_{business.status.value}",
            metadata={"business_id": str(business.id)},
        )

    async def send_settlement_status(self, settlement: SettlementRequest, business: Business) -> None:
        template = _SETTLEMENT_MESSAGES.get(settlement.status)
        if template is None:
            return
        body = template.format(
            date=settlement.settlement_date.isoformat(),
            amount=float(settlement.total_amount or 0),
            reason=settlement.rejection_reason or "-",
        )
        await self._dispatch(
            _business_phone(business),
            body,
            event_type=f"settlement_{settlement.status.value}",
            metadata={"settlement_id": str(settlement.id), "business_id": str(business.id)},
        )

    async def _dispatch(
        self,
        recipient: str | None,
        body: str,
        *,
        event_type: str,
        metadata: dict[str, Any],
    ) -> None:
        if not recipient:
            logger.info("Skipping SMS without recipient", event_type=event_type, **metadata)
            return

        delivered = True
        try:
            await self._backend.send_sms(recipient, body)
        except Exception as exc:  # noqa: BLE001 - delivery is best effort
            delivered = False
            logger.warning("SMS delivery failed", event_type=event_type, error=str(exc), **metadata)
        else:
            logger.info("SMS delivered", event_type=event_type, **metadata)

        self._events.append(
            NotificationEvent(
                recipient=recipient,
                body_text=body,
                event_type=event_type,
                metadata=metadata,
                delivered=delivered,
            )
        )

    @staticmethod
    def _build_default_backend() -> SMSBackend:
        settings = get_settings()
        if settings.sms_gateway_url:
            return HttpSMSBackend(
                gateway_url=settings.sms_gateway_url,
                api_key=settings.sms_api_key,
                sender=settings.sms_sender_number,
                timeout_seconds=settings.sms_timeout_seconds,
            )
        return LoggingSMSBackend()


def _business_phone(business: Business) -> str | None:
    if business.phone_number:
        return business.phone_number
    owner = business.owner
    return owner.phone_number if owner is not None else None
