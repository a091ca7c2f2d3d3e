#!/usr/bin/env python3
"""Quick health check for a running Buzz ledger service.

Usage:
    python tooling/scripts/check_ledger_health.py \
        --base-url https://staging-api.example.com \
        --admin-user "$BUZZ_ADMIN_USER_ID"

The script validates:
  * Readiness: the database component reports ready.
  * Ledger counters (optional, requires an admin user id): rejected
    redemptions have not exceeded the configured threshold.
  * Budget (optional, requires an admin user id): no critical budget alert.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Any, Dict, Optional

import httpx


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Buzz ledger health checker")
    parser.add_argument(
        "--base-url",
        default="http://localhost:8000",
        help="Base URL of the Buzz API service.",
    )
    parser.add_argument(
        "--admin-user",
        default=None,
        help="Admin user id forwarded as X-Session-User for admin-only checks.",
    )
    parser.add_argument(
        "--max-rejections",
        type=int,
        default=100,
        help="Maximum allowed rejected ledger operations since process start (default: 100).",
    )
    parser.add_argument(
        "--fail-on-critical-budget",
        action="store_true",
        help="Exit non-zero when the budget monitor reports a critical alert.",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=10.0,
        help="HTTP request timeout in seconds.",
    )
    return parser.parse_args()


async def _get_json(
    client: httpx.AsyncClient,
    path: str,
    *,
    headers: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    response = await client.get(path, headers=headers)
    response.raise_for_status()
    return response.json()


def _fail(message: str) -> None:
    print(f"[check-ledger] FAIL {message}")
    sys.exit(1)


def _log_ok(message: str) -> None:
    print(f"[check-ledger] OK {message}")


async def validate_readiness(client: httpx.AsyncClient) -> None:
    payload = await _get_json(client, "/api/v1/readyz")
    database = payload.get("components", {}).get("database", {})
    if database.get("status") != "ready":
        _fail(f"Database component not ready: {database.get('detail') or database.get('status')}")
    _log_ok(f"Readiness OK (status={payload.get('status')})")


async def validate_ledger(client: httpx.AsyncClient, admin_user: Optional[str], max_rejections: int) -> None:
    if not admin_user:
        _log_ok("Skipping ledger counters (no admin user provided)")
        return

    payload = await _get_json(
        client,
        "/api/v1/admin/observability/ledger",
        headers={"X-Session-User": admin_user},
    )
    rejections = payload.get("rejections", {}) or {}
    total_rejections = sum(int(value) for value in rejections.values())
    if total_rejections > max_rejections:
        _fail(f"Rejected ledger operations {total_rejections} exceed threshold {max_rejections}")

    transactions = payload.get("transactions", {}) or {}
    _log_ok(
        f"Ledger counters OK (transactions={sum(int(v) for v in transactions.values())}, "
        f"rejections={total_rejections})"
    )


async def validate_budget(client: httpx.AsyncClient, admin_user: Optional[str], fail_on_critical: bool) -> None:
    if not admin_user:
        _log_ok("Skipping budget status (no admin user provided)")
        return

    payload = await _get_json(
        client,
        "/api/v1/admin/budget/status",
        headers={"X-Session-User": admin_user},
    )
    data = payload.get("data", {}) or {}
    alerts = data.get("alerts", []) or []
    critical = [alert for alert in alerts if alert.get("level") == "critical"]
    if critical and fail_on_critical:
        _fail("; ".join(alert.get("message", "") for alert in critical))

    total = data.get("total", {}) or {}
    _log_ok(f"Budget OK (utilization={total.get('utilizationRate', 0)}%, alerts={len(alerts)})")


async def main_async(args: argparse.Namespace) -> None:
    async with httpx.AsyncClient(base_url=args.base_url, timeout=args.timeout) as client:
        await validate_readiness(client)
        await validate_ledger(client, args.admin_user, args.max_rejections)
        await validate_budget(client, args.admin_user, args.fail_on_critical_budget)


def main() -> None:
    args = parse_args()
    try:
        asyncio.run(main_async(args))
    except httpx.HTTPError as exc:
        _fail(f"HTTP error: {exc}")


if __name__ == "__main__":
    main()
