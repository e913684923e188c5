import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import AffiliateStatus, ReferralStatus
from app.db.models import AffiliateReferral
from app.db.repositories import (
    AffiliateRepository,
    AuditLogRepository,
    ReferralRepository,
)
from app.exceptions import (
    AffiliateNotFoundException,
    BaseAPIException,
    CommissionNotFoundException,
    InvalidStateTransitionException,
    ValidationException,
)
from app.metrics import commission_transitions_total, commissions_recorded_total
from app.schemas.commissions import (
    AutoApproveResult,
    BulkApproveResult,
    CommissionCreate,
    ItemError,
)
from app.services.commission_rules import calculate_commission, check_for_fraud
from app.services.settings_provider import AffiliateSettingsProvider

logger = logging.getLogger(__name__)

# Statuses whose commission is counted in Affiliate.pending_balance
BALANCE_STATUSES = frozenset({ReferralStatus.PENDING, ReferralStatus.APPROVED})


def status_value(status) -> str:
    return status.value if hasattr(status, "value") else str(status)


class CommissionStateMachine:
    """Owns every status change of a referral and its effect on balances.

    pending -> approved -> paid, pending/approved -> void, and flagged ->
    approved/void through review. Paid and void are terminal. Marking a
    referral paid belongs to the payout commit, not to this class.

    Methods run inside the caller's transaction.
    """

    def __init__(
        self,
        session: AsyncSession,
        settings_provider: Optional[AffiliateSettingsProvider] = None,
    ) -> None:
        self.session = session
        self.settings_provider = settings_provider
        self.referral_repo = ReferralRepository(session)
        self.affiliate_repo = AffiliateRepository(session)
        self.audit_repo = AuditLogRepository(session)

    async def record_commission(
        self, data: CommissionCreate
    ) -> tuple[AffiliateReferral, bool]:
        existing = await self.referral_repo.get_by_order_id(data.order_id)
        if existing is not None:
            logger.info(
                "Commission already recorded order_id=%s referral_id=%s",
                data.order_id,
                existing.id,
                extra={"order_id": data.order_id, "referral_id": existing.id},
            )
            return existing, False

        affiliate = await self.affiliate_repo.get_by_code(data.affiliate_code)
        if affiliate is None:
            raise AffiliateNotFoundException(data.affiliate_code)
        if status_value(affiliate.status) != AffiliateStatus.ACTIVE.value:
            raise ValidationException(
                message="Affiliate is not active",
                details={
                    "affiliate_id": affiliate.id,
                    "status": status_value(affiliate.status),
                },
            )

        commission_rate, commission_amount = await self._resolve_commission(
            affiliate.use_custom_rates,
            affiliate.custom_commission_type,
            affiliate.custom_commission_value,
            data,
        )

        fraud = check_for_fraud(affiliate.email, data.customer_email, data.coupons)
        status = ReferralStatus.FLAGGED if fraud.is_flagged else ReferralStatus.PENDING

        try:
            async with self.session.begin_nested():
                referral = await self.referral_repo.create_referral(
                    affiliate_id=affiliate.id,
                    order_id=data.order_id,
                    order_amount=data.order_amount,
                    commission_rate=commission_rate,
                    commission_amount=commission_amount,
                    status=status,
                    flag_reason=fraud.reason,
                    flag_details=fraud.details,
                    flagged_at=datetime.now(timezone.utc) if fraud.is_flagged else None,
                )
        except IntegrityError:
            # Concurrent insert for the same order won the race
            existing = await self.referral_repo.get_by_order_id(data.order_id)
            if existing is None:
                raise
            return existing, False

        if fraud.is_flagged:
            logger.warning(
                "Flagged commission order_id=%s affiliate_id=%s reason=%s",
                data.order_id,
                affiliate.id,
                status_value(fraud.reason),
                extra={
                    "order_id": data.order_id,
                    "affiliate_id": affiliate.id,
                    "flag_reason": status_value(fraud.reason),
                    "flag_details": fraud.details,
                },
            )
        else:
            await self.affiliate_repo.credit_earnings(
                affiliate, commission_amount, data.order_amount
            )

        commissions_recorded_total.labels(status=status.value).inc()
        logger.info(
            "Recorded commission referral_id=%s affiliate_id=%s order_id=%s amount_cents=%s",
            referral.id,
            affiliate.id,
            data.order_id,
            commission_amount,
            extra={
                "referral_id": referral.id,
                "affiliate_id": affiliate.id,
                "order_id": data.order_id,
                "amount_cents": commission_amount,
            },
        )
        return referral, True

    async def _resolve_commission(
        self, use_custom_rates, custom_type, custom_value, data: CommissionCreate
    ) -> tuple[int, int]:
        if use_custom_rates and custom_type is not None and custom_value is not None:
            commission_type, value = custom_type, custom_value
        else:
            if self.settings_provider is None:
                raise ValueError("settings_provider is required to price commissions")
            program = await self.settings_provider.get_affiliate_settings()
            if not program.program_active:
                raise ValidationException(message="Affiliate program is not active")
            commission_type = program.default_commission_type
            value = program.default_commission_value

        if data.commission_amount is not None:
            return value, data.commission_amount
        return value, calculate_commission(data.order_amount, commission_type, value)

    async def _load(self, referral_id: str) -> AffiliateReferral:
        referral = await self.referral_repo.get_by_id_for_update(referral_id)
        if referral is None:
            raise CommissionNotFoundException(referral_id)
        return referral

    async def _record_transition(
        self,
        referral: AffiliateReferral,
        from_status: str,
        to_status: ReferralStatus,
        actor_id: Optional[str],
        action: str,
        notes: Optional[str] = None,
    ) -> None:
        await self.audit_repo.create(
            actor=actor_id or "system",
            action=action,
            entity_type="affiliate_referral",
            entity_id=referral.id,
            metadata_={
                "from_status": from_status,
                "to_status": to_status.value,
                "affiliate_id": referral.affiliate_id,
                "commission_amount": referral.commission_amount,
                "notes": notes,
            },
        )
        commission_transitions_total.labels(to_status=to_status.value).inc()
        logger.info(
            "Commission %s referral_id=%s from=%s to=%s actor=%s",
            action,
            referral.id,
            from_status,
            to_status.value,
            actor_id or "system",
            extra={
                "referral_id": referral.id,
                "affiliate_id": referral.affiliate_id,
                "from_status": from_status,
                "to_status": to_status.value,
            },
        )

    async def approve(
        self,
        referral_id: str,
        actor_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> AffiliateReferral:
        referral = await self._load(referral_id)
        current = status_value(referral.status)

        if current == ReferralStatus.PENDING.value:
            was_flagged = False
        elif current == ReferralStatus.FLAGGED.value:
            if not notes or not notes.strip():
                raise ValidationException(
                    message="Review notes are required to approve a flagged commission",
                    details={"referral_id": referral_id},
                )
            was_flagged = True
        else:
            raise InvalidStateTransitionException(
                referral_id, current, ReferralStatus.APPROVED.value
            )

        now = datetime.now(timezone.utc)
        referral.status = ReferralStatus.APPROVED
        referral.approved_at = now
        if actor_id:
            referral.reviewed_by = actor_id
        if notes:
            referral.review_notes = notes.strip()
        if was_flagged:
            referral.reviewed_at = now
        await self.session.flush()

        if was_flagged:
            affiliate = await self.affiliate_repo.get_by_id_for_update(
                referral.affiliate_id
            )
            if affiliate is not None:
                await self.affiliate_repo.credit_earnings(
                    affiliate, referral.commission_amount, referral.order_amount
                )

        await self._record_transition(
            referral,
            current,
            ReferralStatus.APPROVED,
            actor_id,
            "commission.review_approve" if was_flagged else "commission.approve",
            notes,
        )
        return referral

    async def void(
        self,
        referral_id: str,
        reason: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> AffiliateReferral:
        referral = await self._load(referral_id)
        current = status_value(referral.status)

        if current == ReferralStatus.FLAGGED.value:
            if not reason or not reason.strip():
                raise ValidationException(
                    message="A reason is required to void a flagged commission",
                    details={"referral_id": referral_id},
                )
        elif current not in {s.value for s in BALANCE_STATUSES}:
            raise InvalidStateTransitionException(
                referral_id, current, ReferralStatus.VOID.value
            )

        referral.status = ReferralStatus.VOID
        if actor_id:
            referral.reviewed_by = actor_id
        if reason:
            referral.review_notes = reason.strip()
        if current == ReferralStatus.FLAGGED.value:
            referral.reviewed_at = datetime.now(timezone.utc)
        await self.session.flush()

        if current != ReferralStatus.FLAGGED.value:
            affiliate = await self.affiliate_repo.get_by_id_for_update(
                referral.affiliate_id
            )
            if affiliate is not None:
                shortfall = await self.affiliate_repo.debit_earnings(
                    affiliate, referral.commission_amount
                )
                if shortfall:
                    logger.warning(
                        "Pending balance drift on void affiliate_id=%s shortfall=%s",
                        affiliate.id,
                        shortfall,
                        extra={
                            "affiliate_id": affiliate.id,
                            "referral_id": referral.id,
                            "shortfall_cents": shortfall,
                        },
                    )

        await self._record_transition(
            referral,
            current,
            ReferralStatus.VOID,
            actor_id,
            (
                "commission.review_void"
                if current == ReferralStatus.FLAGGED.value
                else "commission.void"
            ),
            reason,
        )
        return referral

    async def _require_flagged(self, referral_id: str) -> None:
        referral = await self._load(referral_id)
        current = status_value(referral.status)
        if current != ReferralStatus.FLAGGED.value:
            raise InvalidStateTransitionException(
                referral_id, current, "reviewed"
            )

    async def review_approve(
        self, referral_id: str, notes: str, actor_id: Optional[str] = None
    ) -> AffiliateReferral:
        await self._require_flagged(referral_id)
        return await self.approve(referral_id, actor_id=actor_id, notes=notes)

    async def review_void(
        self, referral_id: str, notes: str, actor_id: Optional[str] = None
    ) -> AffiliateReferral:
        await self._require_flagged(referral_id)
        return await self.void(referral_id, reason=notes, actor_id=actor_id)

    async def _approve_each(
        self, referral_ids: list[str], actor_id: Optional[str]
    ) -> tuple[int, list[ItemError]]:
        """Approve each referral in its own savepoint, collecting per-item errors."""
        approved = 0
        errors: list[ItemError] = []
        for referral_id in referral_ids:
            try:
                async with self.session.begin_nested():
                    await self.approve(referral_id, actor_id=actor_id)
                approved += 1
            except BaseAPIException as e:
                errors.append(ItemError(referral_id=referral_id, error=e.message))
            except Exception as e:
                logger.error(
                    "Approval failed referral_id=%s: %s",
                    referral_id,
                    e,
                    exc_info=True,
                    extra={"referral_id": referral_id, "actor_id": actor_id},
                )
                errors.append(
                    ItemError(referral_id=referral_id, error=str(e) or type(e).__name__)
                )
        return approved, errors

    async def auto_approve(self, now: Optional[datetime] = None) -> AutoApproveResult:
        """Approve pending commissions older than the configured hold period.

        Each referral is approved in its own savepoint so one failure does not
        undo the others.
        """
        if self.settings_provider is None:
            raise ValueError("settings_provider is required for auto-approval")
        program = await self.settings_provider.get_affiliate_settings()
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(
            days=program.approval_days
        )

        referral_ids = await self.referral_repo.list_pending_ids_created_before(cutoff)
        approved, errors = await self._approve_each(referral_ids, "system:auto-approve")

        logger.info(
            "Auto-approval finished approved=%s errors=%s approval_days=%s",
            approved,
            len(errors),
            program.approval_days,
            extra={"approved": approved, "errors": len(errors)},
        )
        return AutoApproveResult(approved=approved, errors=errors)

    async def bulk_approve(
        self, referral_ids: list[str], actor_id: Optional[str] = None
    ) -> BulkApproveResult:
        approved, errors = await self._approve_each(referral_ids, actor_id)
        return BulkApproveResult(
            approved=approved, failed=len(errors), errors=errors
        )
