import pytest
from httpx import AsyncClient

from tests.utils import load_audit_logs, seed_affiliate, seed_referral


@pytest.mark.integration
class TestJobsAPI:
    async def test_status_lists_registered_jobs(self, client: AsyncClient) -> None:
        response = await client.get("/v1/jobs")

        assert response.status_code == 200
        data = response.json()
        assert data["running"] is False
        assert {j["name"]: j["current_run_key"] for j in data["jobs"]} == {
            "affiliate_payout": "affiliate_payout:2026-W43",
            "commission_approval": "commission_approval:2026-10-21",
        }

    async def test_manual_trigger_runs_once(self, client: AsyncClient) -> None:
        affiliate_id = await seed_affiliate()
        await seed_referral(affiliate_id, 6000)

        first = await client.post("/v1/jobs/affiliate_payout/run")
        second = await client.post("/v1/jobs/affiliate_payout/run", json={})
        forced = await client.post(
            "/v1/jobs/affiliate_payout/run", json={"force_new_key": True}
        )

        assert first.status_code == 200
        assert first.json()["run_key"] == "affiliate_payout:2026-W43"
        assert first.json()["result"]["data"]["total_paid"] == 6000

        assert second.status_code == 409
        assert second.json()["error"]["code"] == "JOB_DUPLICATE_RUN"

        assert forced.status_code == 200
        assert forced.json()["run_key"].startswith("affiliate_payout:2026-W43:manual:")
        assert forced.json()["result"]["data"]["already_paid"] == 1

        status = (await client.get("/v1/jobs")).json()
        assert len(status["recent_runs"]) == 2
        assert len(await load_audit_logs("affiliate_payout_batch")) == 1

    async def test_unknown_job(self, client: AsyncClient) -> None:
        response = await client.post("/v1/jobs/missing/run")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "JOB_NOT_FOUND"


@pytest.mark.integration
class TestAffiliateSettingsAPI:
    async def test_defaults(self, client: AsyncClient) -> None:
        response = await client.get("/v1/affiliate-settings")

        assert response.status_code == 200
        data = response.json()
        assert data["minimum_payout"] == 5000
        assert data["approval_days"] == 14
        assert data["default_commission_type"] == "PERCENT"
        assert data["default_commission_value"] == 10
        assert data["program_active"] is True

    async def test_patch_updates_and_is_audited(self, client: AsyncClient) -> None:
        response = await client.patch(
            "/v1/affiliate-settings",
            json={"minimum_payout": 2500},
            headers={"X-Actor-Id": "admin-1"},
        )

        assert response.status_code == 200
        assert response.json()["minimum_payout"] == 2500
        assert response.json()["approval_days"] == 14

        fetched = await client.get("/v1/affiliate-settings")
        assert fetched.json()["minimum_payout"] == 2500

        logs = await load_audit_logs("affiliate_settings.update")
        assert logs[0].actor == "admin-1"
        assert logs[0].metadata_ == {"minimum_payout": 2500}

    async def test_lower_minimum_widens_eligibility(self, client: AsyncClient) -> None:
        affiliate_id = await seed_affiliate()
        await seed_referral(affiliate_id, 3000)

        before = (await client.get("/v1/payouts/eligibility")).json()
        await client.patch("/v1/affiliate-settings", json={"minimum_payout": 2500})
        after = (await client.get("/v1/payouts/eligibility")).json()

        assert before["eligible"] == []
        assert [e["affiliate_id"] for e in after["eligible"]] == [affiliate_id]

    async def test_negative_minimum_rejected(self, client: AsyncClient) -> None:
        response = await client.patch(
            "/v1/affiliate-settings", json={"minimum_payout": -1}
        )

        assert response.status_code == 422
