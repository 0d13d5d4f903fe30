#!/usr/bin/env python3
"""
Inspect and remediate cached QPay tokens on a running payments service.

Talks to the service's admin routes, so it works against any deployment the
operator can reach. Typical recovery after the gateway handed out tokens with
absurd lifetimes::

    python scripts/qpay_tokens.py list-poisoned
    python scripts/qpay_tokens.py purge-poisoned
    python scripts/qpay_tokens.py verify tenant-1
"""

import argparse
import json
from typing import Any, List, Optional
import sys
import os

import httpx


def run_command(http: httpx.Client, args: argparse.Namespace) -> Any:
    """Execute one admin command and return the decoded response body."""
    params = {}
    if getattr(args, "threshold", None) is not None:
        params["threshold_seconds"] = args.threshold

    if args.command == "list-poisoned":
        response = http.get("/admin/tokens/poisoned", params=params)
    elif args.command == "purge-poisoned":
        response = http.post("/admin/tokens/poisoned/purge", params=params)
    elif args.command == "status":
        response = http.get(f"/admin/tokens/{args.tenant}")
    elif args.command == "invalidate":
        response = http.delete(f"/admin/tokens/{args.tenant}")
    elif args.command == "verify":
        response = http.post(f"/admin/tenants/{args.tenant}/verify")
    else:
        raise ValueError(f"Unknown command: {args.command}")

    response.raise_for_status()
    return response.json()


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Inspect and remediate cached QPay tokens.")
    parser.add_argument("--url", default=os.getenv("PAYMENTS_SERVICE_URL", "http://localhost:8020"), help="Payments service URL")
    parser.add_argument("--admin-key", default=os.getenv("PAYMENTS_ADMIN_API_KEY"), help="Admin API key (X-Admin-Key)")
    parser.add_argument("--timeout", type=float, default=30.0, help="Request timeout in seconds")

    commands = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (
        ("list-poisoned", "List tenants whose cached expiry is implausibly far ahead"),
        ("purge-poisoned", "Invalidate every poisoned token"),
    ):
        command = commands.add_parser(name, help=help_text)
        command.add_argument("--threshold", type=float, default=None, help="Seconds ahead considered poisoned (default: service max TTL)")

    for name, help_text in (
        ("status", "Show a tenant's cached token status"),
        ("invalidate", "Drop a tenant's cached token"),
        ("verify", "Acquire a fresh token with the tenant's current credentials"),
    ):
        command = commands.add_parser(name, help=help_text)
        command.add_argument("tenant", help="Tenant identifier")

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    headers = {"X-Admin-Key": args.admin_key} if args.admin_key else {}

    try:
        with httpx.Client(base_url=args.url, headers=headers, timeout=args.timeout) as http:
            result = run_command(http, args)
    except KeyboardInterrupt:
        return 130
    except httpx.HTTPStatusError as exc:
        print(f"[qpay-tokens] {exc.response.status_code}: {exc.response.text}", file=sys.stderr)
        return 1
    except httpx.HTTPError as exc:
        print(f"[qpay-tokens] failed: {exc}", file=sys.stderr)
        return 1

    print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
