"""
Webhook Handler for PushinPay
Applies charge status notifications to transactions and subscriptions
"""
import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status

from manuflix.api.dependencies import get_orchestrator, get_registry
from manuflix.core.config import Settings, get_settings
from manuflix.schemas.checkout import WebhookPushinPayRequest, WebhookResponse
from manuflix.services.checkout_service import PaymentSessionOrchestrator
from manuflix.services.checkout_session import SessionRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


class WebhookValidator:
    """Validate webhook origin"""

    @staticmethod
    def validate_pushinpay_secret(received: Optional[str], secret: str) -> bool:
        """
        Compare the shared secret header in constant time

        Args:
            received: X-Webhook-Secret header value
            secret: PUSHINPAY_WEBHOOK_SECRET; empty disables the check

        Returns:
            True if valid (or no secret configured), False otherwise
        """
        if not secret:
            return True
        if not received:
            return False
        return hmac.compare_digest(received.encode(), secret.encode())


@router.post("/pushinpay", response_model=WebhookResponse)
async def pushinpay_webhook(
    payload: WebhookPushinPayRequest,
    x_webhook_secret: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
    orchestrator: PaymentSessionOrchestrator = Depends(get_orchestrator),
    registry: SessionRegistry = Depends(get_registry),
):
    """
    PushinPay webhook handler

    Body: {"payment_id": "...", "status": "..."}
    PAID settles the payment (idempotent, shared with polling); FAILED and
    EXPIRED fail a pending transaction. Other statuses are acknowledged only.
    """
    if not WebhookValidator.validate_pushinpay_secret(x_webhook_secret, settings.PUSHINPAY_WEBHOOK_SECRET):
        logger.warning("Invalid PushinPay webhook secret")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook secret")

    logger.info(f"PushinPay webhook received: payment_id={payload.payment_id} status={payload.status}")

    normalized = orchestrator.handle_webhook(payload.payment_id, payload.status)

    session = registry.get(payload.payment_id)
    if session is not None:
        session.apply_status(normalized)

    return WebhookResponse(success=True, message=f"Webhook processed: {normalized.value}")
