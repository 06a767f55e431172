"""
PIX Checkout Routes
Start a checkout session, follow it (poll or server-sent events) and cancel it
"""
import asyncio
import logging

from fastapi import APIRouter, Depends, Request
from sse_starlette.sse import EventSourceResponse

from manuflix.api.dependencies import get_catalog, get_orchestrator, get_registry
from manuflix.core.exceptions import NotFoundError
from manuflix.core.security import get_current_user_id
from manuflix.schemas.checkout import (
    CancelSessionResponse,
    ChargeStatusResponse,
    CheckoutRequest,
    CheckoutResponse,
    ErrorResponse,
    SessionSnapshot,
)
from manuflix.services.checkout_service import PaymentSessionOrchestrator, validate_customer
from manuflix.services.checkout_session import TERMINAL_STATES, CheckoutSession, SessionRegistry
from manuflix.services.plan_catalog import PlanCatalog

logger = logging.getLogger(__name__)

router = APIRouter(tags=["checkout"])

# Seconds between keep-alive events while nothing changes
STREAM_IDLE_SECONDS = 15.0


def _owned_session(registry: SessionRegistry, charge_id: str, user_id: str) -> CheckoutSession:
    session = registry.get(charge_id)
    if session is None or session.user_id != user_id:
        raise NotFoundError(f"No open checkout session for charge {charge_id}")
    return session


@router.post(
    "/pix",
    response_model=CheckoutResponse,
    responses={400: {"model": ErrorResponse}, 502: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def create_pix_checkout(
    payload: CheckoutRequest,
    user_id: str = Depends(get_current_user_id),
    catalog: PlanCatalog = Depends(get_catalog),
    registry: SessionRegistry = Depends(get_registry),
):
    """
    Create a PIX charge for the selected plan and start watching it.

    The amount always comes from the plan; the response carries the QR code,
    the copy-paste code and the countdown seed.
    """
    # Customer errors come back before the plan list is read
    validate_customer(payload.customer)
    plan = catalog.get_plan(payload.plan_id)

    session = registry.new_session()
    await session.start(
        plan.price,
        f"{plan.name} - Manuflix",
        payload.customer,
        user_id=user_id,
        plan_id=plan.id,
    )
    registry.add(session)

    logger.info(f"Checkout started for user {user_id}: charge={session.charge_id} plan={plan.id}")
    return CheckoutResponse(success=True, session=session.snapshot())


@router.get("/pix/{charge_id}", response_model=ChargeStatusResponse)
async def get_pix_status(
    charge_id: str,
    user_id: str = Depends(get_current_user_id),
    orchestrator: PaymentSessionOrchestrator = Depends(get_orchestrator),
    registry: SessionRegistry = Depends(get_registry),
):
    """
    Check a charge with PushinPay right now.
    A PAID answer settles the payment the same way polling and the webhook do.
    """
    txn = orchestrator.get_transaction(charge_id)
    if txn.user_id != user_id:
        raise NotFoundError(f"Transaction not found for payment_id: {charge_id}")

    status = await orchestrator.poll_status(charge_id)

    session = registry.get(charge_id)
    if session is not None:
        session.apply_status(status)

    return ChargeStatusResponse(success=True, charge_id=charge_id, status=status)


@router.get("/pix/{charge_id}/events")
async def stream_pix_session(
    charge_id: str,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    registry: SessionRegistry = Depends(get_registry),
):
    """
    Server-sent events with a session snapshot on every change and countdown tick.
    The stream ends once the session is PAID, ERROR or CANCELLED. Disconnecting
    does not cancel the session.
    """
    session = _owned_session(registry, charge_id, user_id)

    async def event_generator():
        queue = session.subscribe()
        try:
            while True:
                if await request.is_disconnected():
                    logger.info(f"Event stream for {charge_id} disconnected")
                    break

                try:
                    snapshot: SessionSnapshot = await asyncio.wait_for(queue.get(), timeout=STREAM_IDLE_SECONDS)
                except asyncio.TimeoutError:
                    yield {"event": "ping", "data": ""}
                    continue

                yield {"event": "session", "data": snapshot.model_dump_json()}

                if snapshot.state in TERMINAL_STATES:
                    break
        finally:
            session.unsubscribe(queue)

    return EventSourceResponse(event_generator())


@router.delete("/pix/{charge_id}", response_model=CancelSessionResponse)
async def cancel_pix_checkout(
    charge_id: str,
    user_id: str = Depends(get_current_user_id),
    registry: SessionRegistry = Depends(get_registry),
):
    """
    Stop polling and the countdown for a session.
    The PIX charge itself is not cancelled; a late webhook can still settle it.
    """
    _owned_session(registry, charge_id, user_id)
    registry.cancel(charge_id)
    return CancelSessionResponse(success=True, message="Checkout session cancelled", charge_id=charge_id)
