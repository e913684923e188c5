import pytest
from httpx import AsyncClient

from app.core.enums import AffiliateStatus, ReferralStatus

from tests.utils import load_audit_logs, seed_affiliate, seed_referral


@pytest.mark.integration
class TestAffiliatesAPI:
    async def test_create_affiliate(self, client: AsyncClient) -> None:
        response = await client.post(
            "/v1/affiliates",
            json={"affiliate_code": "ALICE", "email": "alice@example.com"},
            headers={"X-Actor-Id": "admin-1"},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["affiliate_code"] == "ALICE"
        assert data["status"] == "pending"
        assert data["pending_balance"] == 0
        assert data["paid_balance"] == 0

        logs = await load_audit_logs("affiliate.create")
        assert logs[0].actor == "admin-1"
        assert logs[0].entity_id == data["id"]

    async def test_duplicate_code_conflict(self, client: AsyncClient) -> None:
        await seed_affiliate("ALICE")

        response = await client.post("/v1/affiliates", json={"affiliate_code": "ALICE"})

        assert response.status_code == 409
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "AFFILIATE_CODE_TAKEN"
        assert body["meta"]["path"] == "/v1/affiliates"

    async def test_custom_rate_requires_type_and_value(self, client: AsyncClient) -> None:
        response = await client.post(
            "/v1/affiliates",
            json={"affiliate_code": "ALICE", "use_custom_rates": True},
        )

        assert response.status_code == 422

    async def test_unknown_affiliate(self, client: AsyncClient) -> None:
        response = await client.get("/v1/affiliates/missing")

        assert response.status_code == 404
        error = response.json()["error"]
        assert error["code"] == "AFFILIATE_NOT_FOUND"
        assert error["details"] == {"affiliate": "missing"}

    async def test_update_status(self, client: AsyncClient) -> None:
        affiliate_id = await seed_affiliate(status=AffiliateStatus.PENDING)

        response = await client.patch(
            f"/v1/affiliates/{affiliate_id}/status", json={"status": "active"}
        )

        assert response.status_code == 200
        assert response.json()["status"] == "active"
        logs = await load_audit_logs("affiliate.status")
        assert logs[0].metadata_ == {"from_status": "pending", "to_status": "active"}

    async def test_payout_account_upsert(self, client: AsyncClient) -> None:
        affiliate_id = await seed_affiliate(with_account=False)
        payload = {"provider_account_id": "acct_123", "payouts_enabled": False}

        created = await client.put(
            f"/v1/affiliates/{affiliate_id}/payout-account", json=payload
        )
        payload["payouts_enabled"] = True
        updated = await client.put(
            f"/v1/affiliates/{affiliate_id}/payout-account", json=payload
        )

        assert created.status_code == 201
        assert updated.status_code == 200
        assert updated.json()["id"] == created.json()["id"]
        assert updated.json()["payouts_enabled"] is True
        assert updated.json()["country"] == "US"
        assert updated.json()["currency"] == "usd"

    async def test_payout_account_rejects_bad_country(self, client: AsyncClient) -> None:
        affiliate_id = await seed_affiliate(with_account=False)

        response = await client.put(
            f"/v1/affiliates/{affiliate_id}/payout-account",
            json={"provider_account_id": "acct_123", "country": "usa"},
        )

        assert response.status_code == 422

    async def test_balance_and_reconcile(self, client: AsyncClient) -> None:
        affiliate_id = await seed_affiliate()
        await seed_referral(affiliate_id, 1500, status=ReferralStatus.PENDING)
        await seed_referral(affiliate_id, 2500)

        balance = await client.get(f"/v1/affiliates/{affiliate_id}/balance")
        reconcile = await client.get(f"/v1/affiliates/{affiliate_id}/reconcile")

        assert balance.status_code == 200
        assert balance.json()["pending_balance"] == 4000
        assert balance.json()["approved_balance"] == 2500
        assert "timestamp" in balance.json()["meta"]
        assert reconcile.json()["in_sync"] is True
        assert reconcile.json()["drift_cents"] == 0

    async def test_manual_payout(self, client: AsyncClient) -> None:
        affiliate_id = await seed_affiliate()
        await seed_referral(affiliate_id, 2500)

        response = await client.post(
            f"/v1/affiliates/{affiliate_id}/payouts",
            json={"amount": 2000, "payment_method": "bank_transfer"},
            headers={"X-Actor-Id": "admin-1"},
        )

        assert response.status_code == 201
        payout = response.json()
        assert payout["status"] == "paid"
        assert payout["amount"] == 2000
        assert payout["processed_by"] == "admin-1"

        listed = await client.get(f"/v1/affiliates/{affiliate_id}/payouts")
        assert [p["id"] for p in listed.json()] == [payout["id"]]

        affiliate = (await client.get(f"/v1/affiliates/{affiliate_id}")).json()
        assert affiliate["paid_balance"] == 2000
        assert affiliate["pending_balance"] == 500

    async def test_manual_payout_over_balance(self, client: AsyncClient) -> None:
        affiliate_id = await seed_affiliate()
        await seed_referral(affiliate_id, 2500)

        response = await client.post(
            f"/v1/affiliates/{affiliate_id}/payouts", json={"amount": 9000}
        )

        assert response.status_code == 409
        error = response.json()["error"]
        assert error["code"] == "PAYOUT_INSUFFICIENT_BALANCE"
        assert error["details"]["available_cents"] == 2500

    async def test_delete_affiliate_cascades(self, client: AsyncClient) -> None:
        affiliate_id = await seed_affiliate()
        await seed_referral(affiliate_id, 2500)
        await seed_referral(affiliate_id, 1000)

        response = await client.delete(f"/v1/affiliates/{affiliate_id}")

        assert response.status_code == 200
        assert response.json() == {
            "deleted": True,
            "affiliate_id": affiliate_id,
            "related": {"referrals": 2, "payouts": 0, "payout_accounts": 1},
        }
        assert (await client.get(f"/v1/affiliates/{affiliate_id}")).status_code == 404
        assert len(await load_audit_logs("affiliate.delete")) == 1
