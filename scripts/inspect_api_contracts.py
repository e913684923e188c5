import argparse
import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Optional

import httpx


def _pretty(obj: Any) -> str:
    return json.dumps(obj, indent=2, ensure_ascii=False, sort_keys=True)


async def _request(
    client: httpx.AsyncClient,
    method: str,
    path: str,
    json_body: Optional[dict[str, Any]] = None,
    params: Optional[dict[str, Any]] = None,
) -> None:
    url = f"{client.base_url}{path}"
    print("\n" + "=" * 80)
    print(f"{method} {url}")

    if params:
        print("\nQuery params:")
        print(_pretty(params))

    if json_body is not None:
        print("\nRequest JSON:")
        print(_pretty(json_body))

    response = await client.request(method, path, json=json_body, params=params)

    print(f"\nStatus: {response.status_code}")
    content_type = response.headers.get("content-type", "")
    print(f"Content-Type: {content_type}")

    if "application/json" in content_type:
        try:
            print("\nResponse JSON:")
            print(_pretty(response.json()))
        except Exception:
            print("\nResponse (raw):")
            print(response.text)
    else:
        print("\nResponse (raw):")
        text = response.text
        print(text[:4000] + ("\n... (truncated)" if len(text) > 4000 else ""))


async def main() -> None:
    parser = argparse.ArgumentParser(
        description="Inspect request/response payloads for the API endpoints"
    )
    parser.add_argument(
        "--url",
        type=str,
        default="http://localhost:8000",
        help="Base URL of the API (default: http://localhost:8000)",
    )
    parser.add_argument(
        "--affiliate-code",
        type=str,
        default="INSPECT01",
        help="Affiliate code to create and record commissions for (default: INSPECT01)",
    )
    parser.add_argument(
        "--order-amount",
        type=int,
        default=60000,
        help="Order amount in cents (default: 60000)",
    )
    parser.add_argument(
        "--execute",
        action="store_true",
        help="Run a real payout batch instead of a dry run",
    )

    args = parser.parse_args()

    base_url = args.url.rstrip("/")
    stamp = int(datetime.now(timezone.utc).timestamp())
    order_id = f"order_inspect_{stamp}"

    async with httpx.AsyncClient(base_url=base_url, timeout=30.0) as client:
        await _request(client, "GET", "/health")
        await _request(client, "GET", "/v1/affiliate-settings")

        response = await client.post(
            "/v1/affiliates",
            json={"affiliate_code": args.affiliate_code, "status": "active"},
        )
        if response.status_code != 201:
            print(f"\nCould not create affiliate: {response.status_code} {response.text[:500]}")
            return
        affiliate_id = response.json()["id"]

        await _request(
            client,
            "PUT",
            f"/v1/affiliates/{affiliate_id}/payout-account",
            json_body={
                "provider_account_id": f"acct_{stamp}",
                "payouts_enabled": True,
                "details_submitted": True,
            },
        )

        commission = {
            "affiliate_code": args.affiliate_code,
            "order_id": order_id,
            "order_amount": args.order_amount,
        }
        await _request(client, "POST", "/v1/commissions", json_body=commission)
        await _request(client, "POST", "/v1/commissions", json_body=commission)

        await _request(client, "GET", f"/v1/affiliates/{affiliate_id}/balance")
        await _request(client, "GET", "/v1/payouts/eligibility")
        await _request(
            client, "POST", "/v1/payouts/run", json_body={"dry_run": not args.execute}
        )
        await _request(client, "GET", f"/v1/affiliates/{affiliate_id}/payouts")
        await _request(client, "GET", "/v1/jobs")


if __name__ == "__main__":
    asyncio.run(main())
