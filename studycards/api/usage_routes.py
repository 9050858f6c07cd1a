"""
Usage API Routes - tier and monthly quota for the caller.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from studycards.api.dependencies import get_current_user
from studycards.db.session import get_db
from studycards.models.api import SuccessEnvelope, UsageResponse
from studycards.models.domain import UserIdentity
from studycards.services.entitlements import EntitlementService

router = APIRouter()


@router.get("/api/user/usage", response_model=SuccessEnvelope[UsageResponse])
async def get_usage(
    user: UserIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> SuccessEnvelope[UsageResponse]:
    """
    Current usage, creating the user record on first call.

    Expired premium is downgraded and the monthly counter reset as part of
    this read.
    """
    snapshot = await EntitlementService(db).get_usage(user)
    return SuccessEnvelope(
        data=UsageResponse(
            usage=snapshot.to_usage_info(),
            tier=snapshot.tier,
            subscription_expires_at=snapshot.subscription_expires_at,
        )
    )
