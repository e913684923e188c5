from typing import Optional

from fastapi import APIRouter, Response, status

from app.api.dependencies import ActorDep, SessionDep, SettingsProviderDep
from app.db.repositories import ReferralRepository
from app.schemas.commissions import (
    ApproveRequest,
    AutoApproveResult,
    BulkApproveRequest,
    BulkApproveResult,
    CommissionCreate,
    CommissionResponse,
    ReviewRequest,
    VoidRequest,
)
from app.services.commission_state_machine import CommissionStateMachine

router = APIRouter()


@router.post("", response_model=CommissionResponse)
async def record_commission(
    commission_data: CommissionCreate,
    session: SessionDep,
    settings_provider: SettingsProviderDep,
    response: Response,
) -> CommissionResponse:
    async with session.begin():
        machine = CommissionStateMachine(session, settings_provider)
        referral, is_new = await machine.record_commission(commission_data)

        result = CommissionResponse.model_validate(referral)
        result.idempotent = not is_new

        response.status_code = status.HTTP_201_CREATED if is_new else status.HTTP_200_OK

        return result


@router.get("/flagged", response_model=list[CommissionResponse])
async def list_flagged_commissions(session: SessionDep) -> list[CommissionResponse]:
    referrals = await ReferralRepository(session).list_flagged()
    return [CommissionResponse.model_validate(r) for r in referrals]


@router.post("/bulk-approve", response_model=BulkApproveResult)
async def bulk_approve_commissions(
    request_data: BulkApproveRequest, session: SessionDep, actor_id: ActorDep
) -> BulkApproveResult:
    async with session.begin():
        machine = CommissionStateMachine(session)
        return await machine.bulk_approve(request_data.referral_ids, actor_id)


@router.post("/auto-approve", response_model=AutoApproveResult)
async def auto_approve_commissions(
    session: SessionDep, settings_provider: SettingsProviderDep
) -> AutoApproveResult:
    async with session.begin():
        machine = CommissionStateMachine(session, settings_provider)
        return await machine.auto_approve()


@router.post("/{referral_id}/approve", response_model=CommissionResponse)
async def approve_commission(
    referral_id: str,
    session: SessionDep,
    actor_id: ActorDep,
    request_data: Optional[ApproveRequest] = None,
) -> CommissionResponse:
    notes = request_data.notes if request_data else None
    async with session.begin():
        referral = await CommissionStateMachine(session).approve(
            referral_id, actor_id=actor_id, notes=notes
        )
        return CommissionResponse.model_validate(referral)


@router.post("/{referral_id}/void", response_model=CommissionResponse)
async def void_commission(
    referral_id: str,
    request_data: VoidRequest,
    session: SessionDep,
    actor_id: ActorDep,
) -> CommissionResponse:
    async with session.begin():
        referral = await CommissionStateMachine(session).void(
            referral_id, reason=request_data.reason, actor_id=actor_id
        )
        return CommissionResponse.model_validate(referral)


@router.post("/{referral_id}/review-approve", response_model=CommissionResponse)
async def review_approve_commission(
    referral_id: str,
    request_data: ReviewRequest,
    session: SessionDep,
    actor_id: ActorDep,
) -> CommissionResponse:
    async with session.begin():
        referral = await CommissionStateMachine(session).review_approve(
            referral_id, notes=request_data.notes, actor_id=actor_id
        )
        return CommissionResponse.model_validate(referral)


@router.post("/{referral_id}/review-void", response_model=CommissionResponse)
async def review_void_commission(
    referral_id: str,
    request_data: ReviewRequest,
    session: SessionDep,
    actor_id: ActorDep,
) -> CommissionResponse:
    async with session.begin():
        referral = await CommissionStateMachine(session).review_void(
            referral_id, notes=request_data.notes, actor_id=actor_id
        )
        return CommissionResponse.model_validate(referral)
