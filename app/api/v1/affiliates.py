import logging

from fastapi import APIRouter, Response, status

from app.api.dependencies import ActorDep, AlertingDep, SessionDep
from app.db.repositories import (
    AffiliateRepository,
    AuditLogRepository,
    PayoutAccountRepository,
    PayoutRepository,
)
from app.exceptions import AffiliateNotFoundException
from app.schemas.affiliates import (
    AffiliateBalance,
    AffiliateCreate,
    AffiliateResponse,
    AffiliateStatusUpdate,
    BalanceDriftReport,
    PayoutAccountResponse,
    PayoutAccountUpsert,
)
from app.schemas.payouts import ManualPayoutCreate, PayoutResponse
from app.services.balance_calculator import BalanceCalculator
from app.services.manual_payouts import ManualPayoutRecorder

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post(
    "", response_model=AffiliateResponse, status_code=status.HTTP_201_CREATED
)
async def create_affiliate(
    affiliate_data: AffiliateCreate, session: SessionDep, actor_id: ActorDep
) -> AffiliateResponse:
    async with session.begin():
        affiliate = await AffiliateRepository(session).create(
            affiliate_code=affiliate_data.affiliate_code,
            email=affiliate_data.email,
            status=affiliate_data.status,
            use_custom_rates=affiliate_data.use_custom_rates,
            custom_commission_type=affiliate_data.custom_commission_type,
            custom_commission_value=affiliate_data.custom_commission_value,
        )
        await AuditLogRepository(session).create(
            actor=actor_id,
            action="affiliate.create",
            entity_type="affiliate",
            entity_id=affiliate.id,
            metadata_={"affiliate_code": affiliate.affiliate_code},
        )
        await session.refresh(affiliate)
        return AffiliateResponse.model_validate(affiliate)


@router.get("/{affiliate_id}", response_model=AffiliateResponse)
async def get_affiliate(affiliate_id: str, session: SessionDep) -> AffiliateResponse:
    affiliate = await AffiliateRepository(session).get_by_id(affiliate_id)
    if affiliate is None:
        raise AffiliateNotFoundException(affiliate_id)
    return AffiliateResponse.model_validate(affiliate)


@router.patch("/{affiliate_id}/status", response_model=AffiliateResponse)
async def update_affiliate_status(
    affiliate_id: str,
    status_data: AffiliateStatusUpdate,
    session: SessionDep,
    actor_id: ActorDep,
) -> AffiliateResponse:
    async with session.begin():
        repo = AffiliateRepository(session)
        affiliate = await repo.get_by_id_for_update(affiliate_id)
        if affiliate is None:
            raise AffiliateNotFoundException(affiliate_id)

        previous = affiliate.status
        await repo.update_status(affiliate, status_data.status)
        await AuditLogRepository(session).create(
            actor=actor_id,
            action="affiliate.status",
            entity_type="affiliate",
            entity_id=affiliate.id,
            metadata_={
                "from_status": getattr(previous, "value", previous),
                "to_status": status_data.status.value,
            },
        )
        await session.refresh(affiliate)
        return AffiliateResponse.model_validate(affiliate)


@router.delete("/{affiliate_id}")
async def delete_affiliate(
    affiliate_id: str, session: SessionDep, actor_id: ActorDep
) -> dict:
    async with session.begin():
        repo = AffiliateRepository(session)
        affiliate = await repo.get_by_id_for_update(affiliate_id)
        if affiliate is None:
            raise AffiliateNotFoundException(affiliate_id)

        affiliate_code = affiliate.affiliate_code
        counts = await repo.delete_cascade(affiliate)
        await AuditLogRepository(session).create(
            actor=actor_id,
            action="affiliate.delete",
            entity_type="affiliate",
            entity_id=affiliate_id,
            metadata_={"affiliate_code": affiliate_code, "deleted": counts},
        )

    logger.warning(
        "Affiliate deleted affiliate_id=%s actor=%s counts=%s",
        affiliate_id,
        actor_id,
        counts,
        extra={"affiliate_id": affiliate_id, "actor": actor_id},
    )
    return {"deleted": True, "affiliate_id": affiliate_id, "related": counts}


@router.put("/{affiliate_id}/payout-account", response_model=PayoutAccountResponse)
async def upsert_payout_account(
    affiliate_id: str,
    account_data: PayoutAccountUpsert,
    session: SessionDep,
    response: Response,
) -> PayoutAccountResponse:
    async with session.begin():
        affiliate = await AffiliateRepository(session).get_by_id(affiliate_id)
        if affiliate is None:
            raise AffiliateNotFoundException(affiliate_id)

        account, created = await PayoutAccountRepository(session).upsert(
            affiliate_id=affiliate_id,
            provider_account_id=account_data.provider_account_id,
            payouts_enabled=account_data.payouts_enabled,
            details_submitted=account_data.details_submitted,
            country=account_data.country,
            currency=account_data.currency,
        )
        response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
        return PayoutAccountResponse.model_validate(account)


@router.get("/{affiliate_id}/balance", response_model=AffiliateBalance)
async def get_affiliate_balance(
    affiliate_id: str, session: SessionDep
) -> AffiliateBalance:
    return await BalanceCalculator(session).get_balance(affiliate_id)


@router.get("/{affiliate_id}/reconcile", response_model=BalanceDriftReport)
async def reconcile_affiliate_balance(
    affiliate_id: str, session: SessionDep
) -> BalanceDriftReport:
    return await BalanceCalculator(session).reconcile(affiliate_id)


@router.get("/{affiliate_id}/payouts", response_model=list[PayoutResponse])
async def list_affiliate_payouts(
    affiliate_id: str, session: SessionDep
) -> list[PayoutResponse]:
    if await AffiliateRepository(session).get_by_id(affiliate_id) is None:
        raise AffiliateNotFoundException(affiliate_id)
    payouts = await PayoutRepository(session).list_for_affiliate(affiliate_id)
    return [PayoutResponse.model_validate(p) for p in payouts]


@router.post(
    "/{affiliate_id}/payouts",
    response_model=PayoutResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_manual_payout(
    affiliate_id: str,
    payout_data: ManualPayoutCreate,
    session: SessionDep,
    actor_id: ActorDep,
    alerting: AlertingDep,
) -> PayoutResponse:
    async with session.begin():
        payout, shortfall = await ManualPayoutRecorder(session).record(
            affiliate_id, payout_data, actor_id=actor_id
        )
        result = PayoutResponse.model_validate(payout)

    if shortfall:
        await alerting.alert_ledger_drift(affiliate_id, "manual_payout", shortfall)
    return result
