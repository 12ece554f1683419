#!/usr/bin/env python3
"""Quick health check for the points core observability counters.

Usage:
    python tooling/check_points_observability.py \
        --base-url https://staging-api.example.com \
        --api-key "$ADMIN_API_KEY"

The script validates:
  * The service answers on /healthz.
  * Redemptions that failed mid-transaction stay within a threshold.
  * The share of voucher validations rejected as already used stays below a ratio.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Any, Dict, Optional

import httpx


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Trendle points core observability checker")
    parser.add_argument(
        "--base-url",
        default="http://localhost:8000",
        help="Base URL of the points API service.",
    )
    parser.add_argument(
        "--api-key",
        default=None,
        help="Admin API key for the observability endpoint.",
    )
    parser.add_argument(
        "--max-failed-redemptions",
        type=int,
        default=0,
        help="Maximum redemptions that may have failed with a persistence error (default: 0).",
    )
    parser.add_argument(
        "--max-reused-voucher-rate",
        type=float,
        default=0.1,
        help="Maximum ratio (0-1) of validations rejected as already used (default: 0.1).",
    )
    parser.add_argument(
        "--voucher-min-sample-size",
        type=int,
        default=20,
        help="Validations required before enforcing the reuse ratio (default: 20).",
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
    print(f"[check-points] FAIL {message}")
    sys.exit(1)


def _log_ok(message: str) -> None:
    print(f"[check-points] OK {message}")


def validate_redemptions(payload: Dict[str, Any], max_failed: int) -> None:
    redemptions = payload.get("redemptions", {}) or {}
    failed = int(redemptions.get("failed", 0))
    if failed > max_failed:
        _fail(f"Failed redemptions {failed} exceed threshold {max_failed}")
    _log_ok(f"Redemptions OK (issued={redemptions.get('issued', 0)}, failed={failed})")


def validate_vouchers(payload: Dict[str, Any], max_reused_rate: float, min_sample_size: int) -> None:
    vouchers = payload.get("vouchers", {}) or {}
    total = sum(int(value) for value in vouchers.values())
    if total < min_sample_size:
        _log_ok(f"Voucher sample size below threshold ({total}/{min_sample_size}); skipping reuse check")
        return

    reused = int(vouchers.get("already_used", 0))
    rate = reused / total
    if rate > max_reused_rate:
        _fail(f"Reused voucher rate {rate:.1%} exceeds threshold {max_reused_rate:.1%} (reused={reused}, total={total})")
    _log_ok(f"Voucher validations OK (total={total}, reused_rate={rate:.1%})")


async def main() -> None:
    args = parse_args()
    headers = {"X-API-Key": args.api_key} if args.api_key else None

    async with httpx.AsyncClient(base_url=args.base_url, timeout=args.timeout) as client:
        health = await _get_json(client, "/healthz")
        _log_ok(f"Service {health.get('status')} ({health.get('environment')}, v{health.get('version')})")

        payload = await _get_json(client, "/api/v1/observability/points", headers=headers)

    validate_redemptions(payload, args.max_failed_redemptions)
    validate_vouchers(payload, args.max_reused_voucher_rate, args.voucher_min_sample_size)
    _log_ok("Points observability checks completed successfully")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except httpx.HTTPStatusError as exc:
        _fail(f"HTTP {exc.response.status_code} while calling {exc.request.url}")
    except Exception as exc:  # pragma: no cover - best-effort logging
        _fail(f"Unexpected error: {exc}")
