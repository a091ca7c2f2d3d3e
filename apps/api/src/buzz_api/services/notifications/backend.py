"""SMS backend implementations for business notifications."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Protocol

import httpx
from loguru import logger


class SMSBackend(Protocol):
    """Protocol for SMS dispatchers."""

    async def send_sms(self, recipient: str, body_text: str) -> None:
        ...


class HttpSMSBackend:
    """Posts messages to a JSON SMS gateway."""

    def __init__(
        self,
        *,
        gateway_url: str,
        api_key: str | None,
        sender: str,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._gateway_url = gateway_url
        self._api_key = api_key
        self._sender = sender
        self._timeout = timeout_seconds
        self._transport = transport

    async def send_sms(self, recipient: str, body_text: str) -> None:
        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
        payload = {"from": self._sender, "to": recipient, "text": body_text}
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(self._gateway_url, json=payload, headers=headers)
            response.raise_for_status()


class LoggingSMSBackend:
    """Development backend that only logs outbound messages."""

    async def send_sms(self, recipient: str, body_text: str) -> None:
        logger.info("SMS dispatched (logging backend)", recipient=recipient, body=body_text)


@dataclass
class InMemorySMSBackend:
    """Stores SMS payloads for inspection in tests."""

    sent_messages: List[tuple[str, str]]

    def __init__(self) -> None:
        self.sent_messages = []

    async def send_sms(self, recipient: str, body_text: str) -> None:
        self.sent_messages.append((recipient, body_text))
