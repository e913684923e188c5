from fastapi import APIRouter

from app.api.v1 import affiliate_settings, affiliates, commissions, jobs, payouts

api_router = APIRouter()

api_router.include_router(affiliates.router, prefix="/affiliates", tags=["affiliates"])
api_router.include_router(
    commissions.router, prefix="/commissions", tags=["commissions"]
)
api_router.include_router(payouts.router, prefix="/payouts", tags=["payouts"])
api_router.include_router(
    affiliate_settings.router,
    prefix="/affiliate-settings",
    tags=["affiliate-settings"],
)
api_router.include_router(jobs.router, prefix="/jobs", tags=["jobs"])
