import json
from datetime import date
from decimal import Decimal
from uuid import uuid4

import httpx
import pytest

from buzz_api.models.business import Business, BusinessStatus
from buzz_api.models.settlement import SettlementRequest, SettlementStatus
from buzz_api.models.user import User
from buzz_api.services.notifications import HttpSMSBackend, InMemorySMSBackend, NotificationService


class _FailingBackend:
    async def send_sms(self, recipient: str, body_text: str) -> None:
        raise httpx.ConnectError("gateway unreachable")


def _business(**overrides) -> Business:
    values = {
        "id": uuid4(),
        "business_name": "Buzz Cafe",
        "phone_number": "02-555-0100",
        "status": BusinessStatus.APPROVED,
    }
    values.update(overrides)
    return Business(**values)


@pytest.mark.asyncio
async def test_business_approval_message() -> None:
    backend = InMemorySMSBackend()
    service = NotificationService(backend=backend)

    await service.send_business_status(_business())

    assert backend.sent_messages == [
        ("02-555-0100", "[Buzz] Buzz Cafe has been approved. You can now accept mileage and coupons.")
    ]
    assert service.sent_events[0].event_type == "business_approved"
    assert service.sent_events[0].delivered is True


@pytest.mark.asyncio
async def test_falls_back_to_owner_phone_and_skips_without_recipient() -> None:
    backend = InMemorySMSBackend()
    service = NotificationService(backend=backend)

    owner = User(email="owner@example.com", phone_number="010-3333-4444")
    await service.send_business_status(
        _business(phone_number=None, owner=owner, status=BusinessStatus.REJECTED, rejection_reason="Blurry license")
    )
    await service.send_business_status(_business(phone_number=None, owner=None, status=BusinessStatus.SUSPENDED))
    await service.send_business_status(_business(status=BusinessStatus.PENDING))

    assert backend.sent_messages == [
        ("010-3333-4444", "[Buzz] Buzz Cafe registration was rejected. Reason: Blurry license"),
    ]


@pytest.mark.asyncio
async def test_settlement_messages_include_amount() -> None:
    backend = InMemorySMSBackend()
    service = NotificationService(backend=backend)
    business = _business()
    settlement = SettlementRequest(
        id=uuid4(),
        business_id=business.id,
        settlement_date=date(2026, 10, 13),
        total_amount=Decimal("4200"),
        status=SettlementStatus.PAID,
    )

    await service.send_settlement_status(settlement, business)
    settlement.status = SettlementStatus.CANCELLED
    await service.send_settlement_status(settlement, business)

    assert backend.sent_messages == [("02-555-0100", "[Buzz] Settlement for 2026-10-13 (4,200) has been paid.")]
    assert service.sent_events[0].metadata["settlement_id"] == str(settlement.id)


@pytest.mark.asyncio
async def test_delivery_failure_is_recorded_not_raised() -> None:
    service = NotificationService(backend=_FailingBackend())

    await service.send_business_status(_business())

    assert len(service.sent_events) == 1
    assert service.sent_events[0].delivered is False


@pytest.mark.asyncio
async def test_http_backend_posts_to_gateway() -> None:
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(202, json={"queued": True})

    backend = HttpSMSBackend(
        gateway_url="https://sms.example.com/send",
        api_key="token-123",
        sender="1588-0000",
        transport=httpx.MockTransport(handler),
    )
    await backend.send_sms("010-1111-2222", "hello")

    assert len(captured) == 1
    request = captured[0]
    assert request.url == "https://sms.example.com/send"
    assert request.headers["Authorization"] == "Bearer token-123"
    assert json.loads(request.content) == {"from": "1588-0000", "to": "010-1111-2222", "text": "hello"}


@pytest.mark.asyncio
async def test_http_backend_raises_on_gateway_error() -> None:
    backend = HttpSMSBackend(
        gateway_url="https://sms.example.com/send",
        api_key=None,
        sender="1588-0000",
        transport=httpx.MockTransport(lambda request: httpx.Response(503)),
    )

    with pytest.raises(httpx.HTTPStatusError):
        await backend.send_sms("010-1111-2222", "hello")

    service = NotificationService(backend=backend)
    await service.send_business_status(_business())
    assert service.sent_events[0].delivered is False


def test_use_in_memory_backend_swaps_dispatcher() -> None:
    service = NotificationService(backend=_FailingBackend())
    backend = service.use_in_memory_backend()
    assert isinstance(backend, InMemorySMSBackend)
    assert backend.sent_messages == []
