from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from buzz_api.core.errors import InvalidQrCode
from buzz_api.services.qr_tokens import (
    KIND_COUPON,
    KIND_MILEAGE,
    issue_coupon_token,
    issue_mileage_token,
    verify_token,
)

NOW = datetime(2026, 10, 14, 9, 30, tzinfo=timezone.utc)


def test_mileage_token_carries_subject_and_expiry() -> None:
    user_id = uuid4()
    token, expires_at = issue_mileage_token(user_id, ttl_seconds=120, now=NOW, secret="s3cret")

    assert token.startswith("BZ1.m.")
    assert expires_at == NOW + timedelta(seconds=120)

    claims = verify_token(token, kind=KIND_MILEAGE, now=NOW + timedelta(seconds=60), secret="s3cret")
    assert claims.subject == user_id
    assert claims.expires_at == expires_at


def test_mileage_token_expires() -> None:
    token, _ = issue_mileage_token(uuid4(), ttl_seconds=120, now=NOW, secret="s3cret")

    with pytest.raises(InvalidQrCode, match="expired"):
        verify_token(token, kind=KIND_MILEAGE, now=NOW + timedelta(seconds=120), secret="s3cret")


def test_coupon_token_never_expires_on_its_own() -> None:
    coupon_id = uuid4()
    token = issue_coupon_token(coupon_id, secret="s3cret")

    claims = verify_token(token, kind=KIND_COUPON, now=NOW + timedelta(days=3650), secret="s3cret")
    assert claims.subject == coupon_id
    assert claims.expires_at is None


def test_token_kind_must_match() -> None:
    token = issue_coupon_token(uuid4(), secret="s3cret")

    with pytest.raises(InvalidQrCode, match="not valid for this operation"):
        verify_token(token, kind=KIND_MILEAGE, now=NOW, secret="s3cret")


@pytest.mark.parametrize(
    "mangle",
    [
        lambda token: token[:-1] + ("A" if token[-1] != "A" else "B"),
        lambda token: token.replace("BZ1.", "BZ2.", 1),
        lambda token: token.rsplit(".", 1)[0],
        lambda token: "",
        lambda token: "short",
        lambda token: token + ".extra",
    ],
)
def test_tampered_tokens_are_rejected(mangle) -> None:
    token, _ = issue_mileage_token(uuid4(), now=NOW, secret="s3cret")

    with pytest.raises(InvalidQrCode):
        verify_token(mangle(token), kind=KIND_MILEAGE, now=NOW, secret="s3cret")


def test_token_signed_with_other_secret_is_rejected() -> None:
    token, _ = issue_mileage_token(uuid4(), now=NOW, secret="first")

    with pytest.raises(InvalidQrCode):
        verify_token(token, kind=KIND_MILEAGE, now=NOW, secret="second")
