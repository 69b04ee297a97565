"""CLI helper for listing object keys served by a tilegate edge."""

from __future__ import annotations

import argparse
import asyncio
import json
from typing import Any, Optional

import httpx


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="List stored keys behind a tilegate edge")
    parser.add_argument("--edge-url", required=True, help="Edge service base URL")
    parser.add_argument("--prefix", default="", help="Only list keys starting with this prefix")
    parser.add_argument("--limit", type=int, default=100, help="Maximum number of keys")
    parser.add_argument("--token", help="Operator bearer token")
    parser.add_argument("--json", action="store_true", help="Output raw JSON")
    return parser.parse_args()


async def fetch_keys(base_url: str, params: dict[str, Any], token: Optional[str] = None) -> dict[str, Any]:
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    async with httpx.AsyncClient(timeout=10.0) as client:
        response = await client.get(
            f"{base_url.rstrip('/')}/_edge/keys",
            params=params,
            headers=headers,
        )
        response.raise_for_status()
        return response.json()


async def run() -> None:
    args = parse_args()
    params: dict[str, Any] = {"limit": args.limit}
    if args.prefix:
        params["prefix"] = args.prefix

    payload = await fetch_keys(args.edge_url, params, args.token)
    if args.json:
        print(json.dumps(payload, indent=2))
        return

    keys = payload.get("keys", [])
    if not keys:
        print("No keys found")
        return
    for key in keys:
        print(key)
    if payload.get("count", len(keys)) >= payload.get("limit", args.limit):
        print(f"(listing stopped at {payload.get('limit', args.limit)} keys)")


def main() -> None:
    asyncio.run(run())


if __name__ == "__main__":
    main()
