"""
Subscription Routes
Access check for the signed-in user
"""
import logging

from fastapi import APIRouter, Depends

from manuflix.api.dependencies import get_orchestrator
from manuflix.core.security import get_current_user_id
from manuflix.schemas.checkout import SubscriptionStatusResponse
from manuflix.services.checkout_service import PaymentSessionOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["subscriptions"])


@router.get("/me", response_model=SubscriptionStatusResponse)
async def my_subscription(
    user_id: str = Depends(get_current_user_id),
    orchestrator: PaymentSessionOrchestrator = Depends(get_orchestrator),
):
    """
    Current subscription of the authenticated user.
    Lifetime subscriptions are always active; expired ones are deactivated on read.
    """
    active, subscription = orchestrator.subscription_status(user_id)
    logger.info(f"Subscription check for user {user_id}: active={active}")
    return SubscriptionStatusResponse(success=True, active=active, subscription=subscription)
