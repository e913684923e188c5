import asyncio

import httpx


METRIC_NAMES = [
    "affiliate_commissions_recorded_total",
    "affiliate_commission_transitions_total",
    "affiliate_payouts_total",
    "affiliate_payout_amount_cents_total",
    "affiliate_payout_batches_total",
    "affiliate_ledger_drift_total",
    "affiliate_last_batch_amount_paid_cents",
]


async def check_metrics():
    api_url = "http://localhost:8000"

    async with httpx.AsyncClient(base_url=api_url, timeout=30.0) as client:
        print("=" * 60)
        print("Checking Prometheus Metrics")
        print("=" * 60)

        print("\n1. Creating affiliate...")
        response = await client.post(
            "/v1/affiliates",
            json={"affiliate_code": "METRICS01", "status": "active"},
        )
        print(f"   Status: {response.status_code}")

        print("\n2. Recording commission...")
        response = await client.post(
            "/v1/commissions",
            json={
                "affiliate_code": "METRICS01",
                "order_id": "order_metrics_001",
                "order_amount": 50000,
            },
        )
        print(f"   Status: {response.status_code}")
        if response.status_code >= 400:
            print(f"   Error: {response.text}")

        print("\n3. Running payout batch (dry run)...")
        response = await client.post("/v1/payouts/run", json={"dry_run": True})
        print(f"   Status: {response.status_code}")

        print("\n4. Fetching metrics...")
        response = await client.get("/metrics/")
        print(f"   Status: {response.status_code}")

        if response.status_code == 200:
            metrics_text = response.text
            for metric_name in METRIC_NAMES:
                print(f"\n{metric_name}:")
                for line in metrics_text.split("\n"):
                    if line.startswith(metric_name + "{") or line.startswith(
                        metric_name + " "
                    ):
                        print(f"  {line}")

        print("\n" + "=" * 60)
        print("Done")
        print("=" * 60)


if __name__ == "__main__":
    asyncio.run(check_metrics())
