"""Expire lapsed coupons and mileage once.

Intended usage: schedule via cron (daily, shortly after midnight UTC) or run
manually after a backfill.

Example:
    python tooling/scripts/run_ledger_expiration.py --dry-run
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from loguru import logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Execute the ledger expiration sweep once")
    parser.add_argument(
        "--now",
        type=datetime.fromisoformat,
        default=None,
        help="ISO timestamp to evaluate expiry against (defaults to the current UTC time).",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Maximum number of mileage expire transactions recorded in this sweep.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Compute the sweep and roll it back instead of committing.",
    )
    return parser.parse_args()


async def _run(now: datetime | None, limit: int | None, dry_run: bool) -> dict[str, Any]:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "apps" / "api" / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from buzz_api.core.logging import configure_logging  # type: ignore import-position
    from buzz_api.core.settings import settings  # type: ignore import-position
    from buzz_api.db.session import async_session, engine  # type: ignore import-position
    from buzz_api.jobs.ledger import run_ledger_expiration  # type: ignore import-position

    configure_logging(service_name="buzz-ledger-expiration", environment=settings.environment, version="0.1.0")
    if now is not None and now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    try:
        return await run_ledger_expiration(
            session_factory=async_session,  # type: ignore[arg-type]
            now=now,
            limit=limit,
            dry_run=dry_run,
        )
    finally:
        await engine.dispose()


def main() -> int:
    args = parse_args()
    summary = asyncio.run(_run(args.now, args.limit, args.dry_run))
    logger.success(
        "Ledger expiration run completed",
        expired_coupons=summary.get("expired_coupons", 0),
        expired_transactions=summary.get("expired_transactions", 0),
        expired_amount=summary.get("expired_amount", 0),
        dry_run=args.dry_run,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
