from datetime import datetime, timedelta, timezone

import pytest

from app.core.enums import AffiliateStatus, CommissionType, ReferralStatus
from app.db.repositories import AffiliateRepository
from app.db.session import AsyncSessionLocal
from app.exceptions import (
    AffiliateNotFoundException,
    CommissionNotFoundException,
    InvalidStateTransitionException,
    ValidationException,
)
from app.schemas.commissions import CommissionCreate, CouponRedemption
from app.services.commission_state_machine import CommissionStateMachine
from app.services.settings_provider import AffiliateSettingsProvider
from tests.utils import (
    load_affiliate,
    load_audit_logs,
    load_referral,
    seed_affiliate,
    seed_referral,
    set_program_settings,
)


async def record(
    provider: AffiliateSettingsProvider, **fields
) -> tuple[str, bool]:
    async with AsyncSessionLocal() as session:
        async with session.begin():
            referral, created = await CommissionStateMachine(
                session, provider
            ).record_commission(CommissionCreate(**fields))
            return referral.id, created


async def transition(method: str, referral_id: str, **kwargs):
    async with AsyncSessionLocal() as session:
        async with session.begin():
            machine = CommissionStateMachine(session)
            return await getattr(machine, method)(referral_id, **kwargs)


@pytest.mark.integration
class TestRecordCommission:
    async def test_records_pending_commission_and_credits_balance(
        self, settings_provider: AffiliateSettingsProvider
    ) -> None:
        affiliate_id = await seed_affiliate("ALICE")

        referral_id, created = await record(
            settings_provider,
            affiliate_code="ALICE",
            order_id="order-1",
            order_amount=25000,
        )

        assert created is True
        referral = await load_referral(referral_id)
        assert referral.status == ReferralStatus.PENDING.value
        assert referral.commission_amount == 2500
        assert referral.commission_rate == 10

        affiliate = await load_affiliate(affiliate_id)
        assert affiliate.pending_balance == 2500
        assert affiliate.total_earnings == 2500
        assert affiliate.total_referrals == 1
        assert affiliate.total_sales == 25000

    async def test_same_order_is_idempotent(
        self, settings_provider: AffiliateSettingsProvider
    ) -> None:
        affiliate_id = await seed_affiliate("ALICE")
        first_id, _ = await record(
            settings_provider, affiliate_code="ALICE", order_id="order-1", order_amount=10000
        )

        second_id, created = await record(
            settings_provider, affiliate_code="ALICE", order_id="order-1", order_amount=10000
        )

        assert created is False
        assert second_id == first_id
        assert (await load_affiliate(affiliate_id)).pending_balance == 1000

    async def test_custom_rates_take_precedence(
        self, settings_provider: AffiliateSettingsProvider
    ) -> None:
        affiliate_id = await seed_affiliate("FIXEDRATE")
        async with AsyncSessionLocal() as session:
            async with session.begin():
                affiliate = await AffiliateRepository(session).get_by_id(affiliate_id)
                affiliate.use_custom_rates = True
                affiliate.custom_commission_type = CommissionType.FIXED
                affiliate.custom_commission_value = 750

        referral_id, _ = await record(
            settings_provider,
            affiliate_code="FIXEDRATE",
            order_id="order-2",
            order_amount=20000,
        )

        assert (await load_referral(referral_id)).commission_amount == 750

    async def test_explicit_commission_amount_overrides_rate(
        self, settings_provider: AffiliateSettingsProvider
    ) -> None:
        await seed_affiliate("ALICE")

        referral_id, _ = await record(
            settings_provider,
            affiliate_code="ALICE",
            order_id="order-3",
            order_amount=20000,
            commission_amount=1234,
        )

        assert (await load_referral(referral_id)).commission_amount == 1234

    async def test_unknown_affiliate_code(
        self, settings_provider: AffiliateSettingsProvider
    ) -> None:
        with pytest.raises(AffiliateNotFoundException):
            await record(
                settings_provider, affiliate_code="NOPE", order_id="o", order_amount=100
            )

    async def test_inactive_affiliate_is_rejected(
        self, settings_provider: AffiliateSettingsProvider
    ) -> None:
        await seed_affiliate("SLEEPY", status=AffiliateStatus.SUSPENDED)

        with pytest.raises(ValidationException):
            await record(
                settings_provider, affiliate_code="SLEEPY", order_id="o", order_amount=100
            )

    async def test_inactive_program_is_rejected(
        self, settings_provider: AffiliateSettingsProvider
    ) -> None:
        await seed_affiliate("ALICE")
        await set_program_settings(program_active=False)

        with pytest.raises(ValidationException):
            await record(
                settings_provider, affiliate_code="ALICE", order_id="o", order_amount=100
            )

    async def test_self_referral_is_flagged_without_balance(
        self, settings_provider: AffiliateSettingsProvider
    ) -> None:
        affiliate_id = await seed_affiliate("ALICE", email="alice@example.com")

        referral_id, _ = await record(
            settings_provider,
            affiliate_code="ALICE",
            order_id="order-4",
            order_amount=10000,
            customer_email="ALICE@example.com",
        )

        referral = await load_referral(referral_id)
        assert referral.status == ReferralStatus.FLAGGED.value
        assert referral.flag_reason == "self_referral"
        assert referral.flagged_at is not None
        assert (await load_affiliate(affiliate_id)).pending_balance == 0

    async def test_blocking_coupon_is_flagged(
        self, settings_provider: AffiliateSettingsProvider
    ) -> None:
        await seed_affiliate("ALICE")

        referral_id, _ = await record(
            settings_provider,
            affiliate_code="ALICE",
            order_id="order-5",
            order_amount=10000,
            coupons=[CouponRedemption(code="STAFF", blocks_affiliate_commission=True)],
        )

        referral = await load_referral(referral_id)
        assert referral.status == ReferralStatus.FLAGGED.value
        assert referral.flag_reason == "coupon_abuse"


@pytest.mark.integration
class TestTransitions:
    async def test_approve_pending(self) -> None:
        affiliate_id = await seed_affiliate()
        referral_id = await seed_referral(
            affiliate_id, 3000, status=ReferralStatus.PENDING
        )

        await transition("approve", referral_id, actor_id="admin-1")

        referral = await load_referral(referral_id)
        assert referral.status == ReferralStatus.APPROVED.value
        assert referral.approved_at is not None
        assert referral.reviewed_by == "admin-1"
        # approval does not move money between balances
        assert (await load_affiliate(affiliate_id)).pending_balance == 3000
        assert len(await load_audit_logs("commission.approve")) == 1

    @pytest.mark.parametrize(
        "status", [ReferralStatus.APPROVED, ReferralStatus.PAID, ReferralStatus.VOID]
    )
    async def test_approve_rejects_other_statuses(self, status: ReferralStatus) -> None:
        affiliate_id = await seed_affiliate()
        referral_id = await seed_referral(affiliate_id, 3000, status=status)

        with pytest.raises(InvalidStateTransitionException):
            await transition("approve", referral_id)

    async def test_void_pending_debits_balance(self) -> None:
        affiliate_id = await seed_affiliate()
        referral_id = await seed_referral(
            affiliate_id, 3000, status=ReferralStatus.PENDING
        )

        await transition("void", referral_id, reason="refunded", actor_id="admin-1")

        referral = await load_referral(referral_id)
        assert referral.status == ReferralStatus.VOID.value
        assert referral.review_notes == "refunded"
        affiliate = await load_affiliate(affiliate_id)
        assert affiliate.pending_balance == 0
        assert affiliate.total_earnings == 0

    async def test_void_approved(self) -> None:
        affiliate_id = await seed_affiliate()
        referral_id = await seed_referral(affiliate_id, 3000)

        await transition("void", referral_id, reason="chargeback")

        assert (await load_referral(referral_id)).status == ReferralStatus.VOID.value
        assert (await load_affiliate(affiliate_id)).pending_balance == 0

    async def test_void_is_terminal(self) -> None:
        affiliate_id = await seed_affiliate()
        referral_id = await seed_referral(affiliate_id, 3000)
        await transition("void", referral_id, reason="chargeback")

        with pytest.raises(InvalidStateTransitionException):
            await transition("void", referral_id, reason="again")

    async def test_missing_referral(self) -> None:
        with pytest.raises(CommissionNotFoundException):
            await transition("approve", "does-not-exist")

    async def test_review_approve_credits_flagged_commission(self) -> None:
        affiliate_id = await seed_affiliate()
        referral_id = await seed_referral(
            affiliate_id, 2000, status=ReferralStatus.FLAGGED
        )
        assert (await load_affiliate(affiliate_id)).pending_balance == 0

        await transition(
            "review_approve", referral_id, notes="customer verified", actor_id="admin-1"
        )

        referral = await load_referral(referral_id)
        assert referral.status == ReferralStatus.APPROVED.value
        assert referral.reviewed_at is not None
        assert referral.review_notes == "customer verified"
        affiliate = await load_affiliate(affiliate_id)
        assert affiliate.pending_balance == 2000
        assert affiliate.total_earnings == 2000
        assert len(await load_audit_logs("commission.review_approve")) == 1

    async def test_review_requires_notes(self) -> None:
        affiliate_id = await seed_affiliate()
        referral_id = await seed_referral(
            affiliate_id, 2000, status=ReferralStatus.FLAGGED
        )

        with pytest.raises(ValidationException):
            await transition("review_approve", referral_id, notes="  ")
        with pytest.raises(ValidationException):
            await transition("review_void", referral_id, notes="")

    async def test_review_void_keeps_balance_untouched(self) -> None:
        affiliate_id = await seed_affiliate()
        referral_id = await seed_referral(
            affiliate_id, 2000, status=ReferralStatus.FLAGGED
        )

        await transition("review_void", referral_id, notes="confirmed self referral")

        assert (await load_referral(referral_id)).status == ReferralStatus.VOID.value
        assert (await load_affiliate(affiliate_id)).pending_balance == 0
        assert len(await load_audit_logs("commission.review_void")) == 1

    async def test_review_rejects_unflagged(self) -> None:
        affiliate_id = await seed_affiliate()
        referral_id = await seed_referral(
            affiliate_id, 2000, status=ReferralStatus.PENDING
        )

        with pytest.raises(InvalidStateTransitionException):
            await transition("review_approve", referral_id, notes="ok")


@pytest.mark.integration
class TestBatchApproval:
    async def test_auto_approve_only_past_hold_period(
        self, settings_provider: AffiliateSettingsProvider
    ) -> None:
        affiliate_id = await seed_affiliate()
        now = datetime.now(timezone.utc)
        old_id = await seed_referral(
            affiliate_id,
            1000,
            status=ReferralStatus.PENDING,
            created_at=now - timedelta(days=15),
        )
        fresh_id = await seed_referral(
            affiliate_id,
            1000,
            status=ReferralStatus.PENDING,
            created_at=now - timedelta(days=3),
        )

        async with AsyncSessionLocal() as session:
            async with session.begin():
                result = await CommissionStateMachine(
                    session, settings_provider
                ).auto_approve(now=now)

        assert result.approved == 1
        assert result.errors == []
        assert (await load_referral(old_id)).status == ReferralStatus.APPROVED.value
        assert (await load_referral(old_id)).reviewed_by == "system:auto-approve"
        assert (await load_referral(fresh_id)).status == ReferralStatus.PENDING.value

    async def test_bulk_approve_reports_item_errors(self) -> None:
        affiliate_id = await seed_affiliate()
        pending_id = await seed_referral(
            affiliate_id, 1000, status=ReferralStatus.PENDING
        )
        approved_id = await seed_referral(affiliate_id, 1000)

        async with AsyncSessionLocal() as session:
            async with session.begin():
                result = await CommissionStateMachine(session).bulk_approve(
                    [pending_id, approved_id, "missing"], actor_id="admin-1"
                )

        assert result.approved == 1
        assert result.failed == 2
        assert {e.referral_id for e in result.errors} == {approved_id, "missing"}
        assert (await load_referral(pending_id)).status == ReferralStatus.APPROVED.value

    async def test_unexpected_error_is_isolated_per_item(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        affiliate_id = await seed_affiliate()
        broken_id = await seed_referral(affiliate_id, 1000, status=ReferralStatus.PENDING)
        healthy_id = await seed_referral(affiliate_id, 1000, status=ReferralStatus.PENDING)
        original_approve = CommissionStateMachine.approve

        async def flaky_approve(self, referral_id, actor_id=None, notes=None):
            if referral_id == broken_id:
                raise RuntimeError("deadlock detected")
            return await original_approve(self, referral_id, actor_id=actor_id, notes=notes)

        monkeypatch.setattr(CommissionStateMachine, "approve", flaky_approve)
        async with AsyncSessionLocal() as session:
            async with session.begin():
                result = await CommissionStateMachine(session).bulk_approve(
                    [broken_id, healthy_id], actor_id="admin-1"
                )

        assert result.approved == 1
        assert result.failed == 1
        assert result.errors[0].referral_id == broken_id
        assert result.errors[0].error == "deadlock detected"
        assert (await load_referral(broken_id)).status == ReferralStatus.PENDING.value
        assert (await load_referral(healthy_id)).status == ReferralStatus.APPROVED.value

    async def test_auto_approve_survives_unexpected_error(
        self,
        settings_provider: AffiliateSettingsProvider,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        affiliate_id = await seed_affiliate()
        now = datetime.now(timezone.utc)
        broken_id = await seed_referral(
            affiliate_id,
            1000,
            status=ReferralStatus.PENDING,
            created_at=now - timedelta(days=20),
        )
        healthy_id = await seed_referral(
            affiliate_id,
            1000,
            status=ReferralStatus.PENDING,
            created_at=now - timedelta(days=19),
        )
        original_approve = CommissionStateMachine.approve

        async def flaky_approve(self, referral_id, actor_id=None, notes=None):
            if referral_id == broken_id:
                raise ConnectionResetError()
            return await original_approve(self, referral_id, actor_id=actor_id, notes=notes)

        monkeypatch.setattr(CommissionStateMachine, "approve", flaky_approve)
        async with AsyncSessionLocal() as session:
            async with session.begin():
                result = await CommissionStateMachine(
                    session, settings_provider
                ).auto_approve(now=now)

        assert result.approved == 1
        assert [(e.referral_id, e.error) for e in result.errors] == [
            (broken_id, "ConnectionResetError")
        ]
        assert (await load_referral(healthy_id)).status == ReferralStatus.APPROVED.value
