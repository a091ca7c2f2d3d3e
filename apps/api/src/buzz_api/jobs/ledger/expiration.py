"""Expire lapsed coupons and mileage earns."""

from __future__ import annotations

import datetime as dt
from typing import Any, Awaitable, Callable, Dict

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from buzz_api.core.clock import utcnow
from buzz_api.services.coupons import CouponService
from buzz_api.services.mileage import MileageLedgerService


# meta: job: ledger-expiration

SessionFactory = Callable[[], AsyncSession] | Callable[[], Awaitable[AsyncSession]]


async def run_ledger_expiration(
    *,
    session_factory: SessionFactory,
    now: dt.datetime | None = None,
    limit: int | None = None,
    dry_run: bool = False,
) -> Dict[str, Any]:
    """Run both expiry sweeps in one transaction; ``dry_run`` rolls it back."""

    current = now or utcnow()
    maybe_session = session_factory()
    session = maybe_session if isinstance(maybe_session, AsyncSession) else await maybe_session

    async with session as managed_session:
        expired_coupons = await CouponService(managed_session).expire_stale(now=current)
        sweep = await MileageLedgerService(managed_session).expire_due(now=current, limit=limit)
        if dry_run:
            await managed_session.rollback()
        else:
            await managed_session.commit()

        summary = {
            "as_of": current.isoformat(),
            "expired_coupons": expired_coupons,
            "expired_transactions": sweep.expired_transactions,
            "expired_amount": float(sweep.expired_amount),
            "skipped": sweep.skipped,
            "dry_run": dry_run,
        }
        logger.bind(summary=summary).info("Ledger expiration sweep completed")
        return summary


__all__ = ["run_ledger_expiration"]
