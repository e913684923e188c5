import asyncio

import httpx


AFFILIATES = [
    # code, email, order amounts in cents
    ("SUSHIFAN", "sushi@example.com", [25000, 30000]),
    ("TACOLOVER", "tacos@example.com", [40000]),
    ("PASTAPRO", "pasta@example.com", [12000, 8000, 20000]),
]


async def seed_affiliates():
    api_url = "http://localhost:8000"
    headers = {"Content-Type": "application/json", "X-Actor-Id": "seed-script"}

    print("Seeding affiliates and commissions via API...\n")

    async with httpx.AsyncClient(base_url=api_url, timeout=30.0) as client:
        for code, email, orders in AFFILIATES:
            response = await client.post(
                "/v1/affiliates",
                json={"affiliate_code": code, "email": email, "status": "active"},
                headers=headers,
            )
            if response.status_code != 201:
                print(f"Failed to create {code} - {response.status_code}: {response.text[:200]}")
                continue
            affiliate_id = response.json()["id"]
            print(f"Created affiliate {code} ({affiliate_id})")

            await client.put(
                f"/v1/affiliates/{affiliate_id}/payout-account",
                json={
                    "provider_account_id": f"acct_{code.lower()}",
                    "payouts_enabled": True,
                    "details_submitted": True,
                },
                headers=headers,
            )

            referral_ids = []
            for index, amount in enumerate(orders, start=1):
                response = await client.post(
                    "/v1/commissions",
                    json={
                        "affiliate_code": code,
                        "order_id": f"order_{code.lower()}_{index}",
                        "order_amount": amount,
                        "customer_email": f"customer{index}@example.com",
                    },
                    headers=headers,
                )
                if response.status_code in (200, 201):
                    referral_ids.append(response.json()["id"])
                else:
                    print(f"  Commission failed - {response.status_code}: {response.text[:200]}")

            if referral_ids:
                response = await client.post(
                    "/v1/commissions/bulk-approve",
                    json={"referral_ids": referral_ids},
                    headers=headers,
                )
                print(f"  Approved: {response.json()}")

        print("\n--- Eligibility ---")
        response = await client.get("/v1/payouts/eligibility")
        print(response.text)


if __name__ == "__main__":
    asyncio.run(seed_affiliates())
