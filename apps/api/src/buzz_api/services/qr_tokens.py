"""Signed QR payloads for mileage payments and coupon redemption.

Format: ``BZ1.<kind>.<subject>.<expiry>.<signature>`` where ``signature`` is
a URL-safe base64 HMAC-SHA256 of everything before it. ``expiry`` is a unix
timestamp, or ``0`` when the referenced row carries its own expiry (coupons).
"""

from __future__ import annotations

import base64
import hashlib
import hmac
from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID

from buzz_api.core.clock import utcnow
from buzz_api.core.errors import InvalidQrCode
from buzz_api.core.settings import settings

TOKEN_VERSION = "BZ1"
KIND_MILEAGE = "m"
KIND_COUPON = "c"
MIN_TOKEN_LENGTH = 10


@dataclass(frozen=True, slots=True)
class QrClaims:
    kind: str
    subject: UUID
    expires_at: datetime | None


def _sign(payload: str, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def _encode(kind: str, subject: UUID, expiry: int, secret: str) -> str:
    payload = f"{TOKEN_VERSION}.{kind}.{subject.hex}.{expiry}"
    return f"{payload}.{_sign(payload, secret)}"


def issue_mileage_token(
    user_id: UUID,
    *,
    ttl_seconds: int | None = None,
    now: datetime | None = None,
    secret: str | None = None,
) -> tuple[str, datetime]:
    """Short-lived token a user shows at the counter to pay with mileage."""

    issued = now or utcnow()
    ttl = settings.qr_code_ttl_seconds if ttl_seconds is None else ttl_seconds
    expires_at = datetime.fromtimestamp(int(issued.timestamp()) + ttl, tz=timezone.utc)
    token = _encode(KIND_MILEAGE, user_id, int(expires_at.timestamp()), secret or settings.qr_signing_secret)
    return token, expires_at


def issue_coupon_token(coupon_id: UUID, *, secret: str | None = None) -> str:
    return _encode(KIND_COUPON, coupon_id, 0, secret or settings.qr_signing_secret)


def verify_token(
    token: str,
    *,
    kind: str,
    now: datetime | None = None,
    secret: str | None = None,
) -> QrClaims:
    """Return the claims of a valid token or raise ``InvalidQrCode``."""

    if not token or len(token) < MIN_TOKEN_LENGTH:
        raise InvalidQrCode()

    parts = token.split(".")
    if len(parts) != 5 or parts[0] != TOKEN_VERSION:
        raise InvalidQrCode()

    payload, signature = token.rsplit(".", 1)
    expected = _sign(payload, secret or settings.qr_signing_secret)
    if not hmac.compare_digest(signature, expected):
        raise InvalidQrCode()

    _, token_kind, subject_hex, expiry_raw = payload.split(".")
    if token_kind != kind:
        raise InvalidQrCode("QR code is not valid for this operation")

    try:
        subject = UUID(hex=subject_hex)
        expiry = int(expiry_raw)
    except ValueError as exc:
        raise InvalidQrCode() from exc

    expires_at: datetime | None = None
    if expiry:
        expires_at = datetime.fromtimestamp(expiry, tz=timezone.utc)
        if (now or utcnow()) >= expires_at:
            raise InvalidQrCode("QR code has expired")

    return QrClaims(kind=token_kind, subject=subject, expires_at=expires_at)


__all__ = [
    "KIND_COUPON",
    "KIND_MILEAGE",
    "QrClaims",
    "issue_coupon_token",
    "issue_mileage_token",
    "verify_token",
]
