"""
Checkout Session
Session-local state machine driving the status poll timer and the expiration countdown
"""
import asyncio
import logging
import math
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from manuflix.core.exceptions import CheckoutError
from manuflix.db import utcnow
from manuflix.schemas.checkout import (
    ChargeStatus,
    Customer,
    PaymentSession,
    SessionSnapshot,
    SessionState,
)
from manuflix.services.checkout_service import PaymentSessionOrchestrator

logger = logging.getLogger(__name__)

TERMINAL_STATES = {SessionState.PAID, SessionState.ERROR, SessionState.CANCELLED}


def format_time_left(seconds: int) -> str:
    """MM:SS; minutes are not wrapped, so a full hour reads 60:00"""
    seconds = max(0, int(seconds))
    return f"{seconds // 60:02d}:{seconds % 60:02d}"


class Countdown:
    """Cosmetic timer: seeded once from the charge expiration, then ticked locally"""

    def __init__(self, seconds: int):
        self.seconds_left = max(0, int(seconds))

    @classmethod
    def from_expiration(cls, expires_at: datetime, now: datetime, fallback: int) -> "Countdown":
        remaining = math.floor((expires_at - now).total_seconds())
        return cls(remaining if remaining > 0 else fallback)

    @property
    def finished(self) -> bool:
        return self.seconds_left <= 0

    def tick(self) -> int:
        if self.seconds_left > 0:
            self.seconds_left -= 1
        return self.seconds_left

    def format(self) -> str:
        return format_time_left(self.seconds_left)


class CheckoutSession:
    """
    One checkout attempt.

    IDLE -> AWAITING_PAYMENT -> PAID | EXPIRED | ERROR | CANCELLED, with
    EXPIRED -> PAID still possible because the local countdown does not
    invalidate the charge. A session in ERROR is discarded, never restarted.

    cancel() stops both timers without aborting a request already in flight;
    its result is dropped once the session is no longer active.

    With reap_when_unwatched, an EXPIRED session that nobody is subscribed to
    cancels itself; that is how an abandoned checkout gets torn down.
    """

    def __init__(
        self,
        orchestrator: PaymentSessionOrchestrator,
        poll_interval: float = 10.0,
        tick_interval: float = 1.0,
        clock: Callable[[], datetime] = utcnow,
        reap_when_unwatched: bool = False,
    ):
        self.orchestrator = orchestrator
        self.poll_interval = poll_interval
        self.tick_interval = tick_interval
        self.clock = clock
        self.reap_when_unwatched = reap_when_unwatched

        self.state = SessionState.IDLE
        self.user_id: Optional[str] = None
        self.payment: Optional[PaymentSession] = None
        self.countdown: Optional[Countdown] = None
        self.error: Optional[str] = None

        self._active = False
        self._stop = asyncio.Event()
        self._done = asyncio.Event()
        self._tasks: List[asyncio.Task] = []
        self._subscribers: List[asyncio.Queue] = []
        self._close_callbacks: List[Callable[["CheckoutSession"], None]] = []

    @property
    def charge_id(self) -> Optional[str]:
        return self.payment.charge_id if self.payment else None

    @property
    def active(self) -> bool:
        return self._active

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    # ==================== Lifecycle ====================

    async def start(
        self,
        amount: Decimal,
        description: str,
        customer: Customer,
        *,
        user_id: str,
        plan_id: str,
    ) -> PaymentSession:
        """Create the charge and start both timers"""
        if self.state != SessionState.IDLE:
            raise RuntimeError(f"Checkout session already {self.state.value}; create a new one to retry")

        self.user_id = user_id
        try:
            payment = await self.orchestrator.create_session(
                amount,
                description,
                customer,
                user_id=user_id,
                plan_id=plan_id,
            )
        except CheckoutError as e:
            self.error = str(e)
            self._transition(SessionState.ERROR)
            raise
        except Exception as e:
            logger.error(f"Checkout session creation failed: {e}")
            self.error = "Erro ao gerar pagamento PIX. Por favor, tente novamente."
            self._transition(SessionState.ERROR)
            raise

        self.payment = payment
        self.countdown = Countdown.from_expiration(
            payment.expires_at,
            self.clock(),
            fallback=self.orchestrator.expiration_seconds,
        )
        self._active = True
        self._transition(SessionState.AWAITING_PAYMENT)

        self._tasks = [
            asyncio.create_task(self._poll_loop(), name=f"pix-poll-{payment.charge_id}"),
            asyncio.create_task(self._countdown_loop(), name=f"pix-countdown-{payment.charge_id}"),
        ]
        return payment

    def cancel(self) -> None:
        """Stop polling and the countdown. No gateway-side cancellation."""
        if self.is_terminal:
            return
        self._finish(SessionState.CANCELLED)

    async def wait(self, timeout: Optional[float] = None) -> SessionState:
        """Wait until the session reaches PAID, ERROR or CANCELLED"""
        await asyncio.wait_for(self._done.wait(), timeout=timeout)
        return self.state

    async def aclose(self) -> None:
        """Cancel and wait for the timer tasks to return"""
        self.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def add_close_callback(self, callback: Callable[["CheckoutSession"], None]) -> None:
        self._close_callbacks.append(callback)

    # ==================== Observers ====================

    def snapshot(self) -> SessionSnapshot:
        payment = self.payment
        seconds_left = self.countdown.seconds_left if self.countdown else 0
        return SessionSnapshot(
            state=self.state,
            charge_id=payment.charge_id if payment else None,
            qrcode_image=payment.qrcode_image if payment else None,
            copy_paste=payment.copy_paste if payment else None,
            expires_at=payment.expires_at if payment else None,
            seconds_left=seconds_left,
            time_left=format_time_left(seconds_left),
            plan_id=payment.plan_id if payment else None,
            amount=payment.amount if payment else None,
            error=self.error,
        )

    def subscribe(self) -> asyncio.Queue:
        """Queue of snapshots, starting with the current one"""
        queue: asyncio.Queue = asyncio.Queue()
        queue.put_nowait(self.snapshot())
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)
        self._reap_if_unwatched()

    def _reap_if_unwatched(self) -> None:
        if self.reap_when_unwatched and self.state == SessionState.EXPIRED and not self._subscribers:
            logger.info(f"Checkout session {self.charge_id}: expired with nobody watching, closing")
            self.cancel()

    def _emit(self) -> None:
        snapshot = self.snapshot()
        for queue in self._subscribers:
            queue.put_nowait(snapshot)

    # ==================== State machine ====================

    def _transition(self, state: SessionState) -> None:
        if state == self.state:
            return
        logger.info(f"Checkout session {self.charge_id or '-'}: {self.state.value} -> {state.value}")
        self.state = state
        self._emit()
        if state in TERMINAL_STATES:
            self._done.set()
            for callback in self._close_callbacks:
                callback(self)

    def _finish(self, state: SessionState) -> None:
        self._active = False
        self._stop.set()
        self._transition(state)

    async def _sleep(self, interval: float) -> bool:
        """False when the session was stopped during the wait"""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=interval)
        except asyncio.TimeoutError:
            return True
        return False

    def _polling(self) -> bool:
        return self._active and self.state not in TERMINAL_STATES

    async def _poll_loop(self) -> None:
        charge_id = self.payment.charge_id
        while self._polling():
            if not await self._sleep(self.poll_interval):
                return

            try:
                status = await self.orchestrator.poll_status(charge_id)
            except Exception as e:
                # No retry limit or backoff: the next tick simply tries again
                logger.warning(f"Error checking payment status for {charge_id}: {e}")
                continue

            self.apply_status(status)

    def apply_status(self, status: ChargeStatus) -> None:
        """Apply a charge status learned from a poll or a webhook"""
        if not self._active:
            logger.info(f"Ignoring status {status.value} for {self.charge_id}: session closed")
            return

        if status == ChargeStatus.PAID:
            self._finish(SessionState.PAID)
        elif status == ChargeStatus.FAILED:
            self.error = "Pagamento não aprovado. Por favor, tente novamente."
            self._finish(SessionState.ERROR)
        elif status == ChargeStatus.EXPIRED:
            self.error = "O código PIX expirou. Por favor, gere um novo."
            self._finish(SessionState.ERROR)

    async def _countdown_loop(self) -> None:
        while self._active and not self.countdown.finished:
            if not await self._sleep(self.tick_interval):
                return
            if not self._active:
                return

            self.countdown.tick()
            if self.countdown.finished and self.state == SessionState.AWAITING_PAYMENT:
                # Local signal only; a watched session keeps polling and may still see PAID
                self._transition(SessionState.EXPIRED)
                self._reap_if_unwatched()
            else:
                self._emit()


class SessionRegistry:
    """In-memory sessions by charge id; closed sessions drop out"""

    def __init__(
        self,
        orchestrator: PaymentSessionOrchestrator,
        poll_interval: float = 10.0,
        tick_interval: float = 1.0,
    ):
        self.orchestrator = orchestrator
        self.poll_interval = poll_interval
        self.tick_interval = tick_interval
        self._sessions: Dict[str, CheckoutSession] = {}

    def new_session(self) -> CheckoutSession:
        return CheckoutSession(
            self.orchestrator,
            poll_interval=self.poll_interval,
            tick_interval=self.tick_interval,
            reap_when_unwatched=True,
        )

    def add(self, session: CheckoutSession) -> None:
        charge_id = session.charge_id
        if charge_id is None:
            raise ValueError("Only started sessions can be registered")
        self._sessions[charge_id] = session
        session.add_close_callback(lambda s: self._sessions.pop(charge_id, None))

    def get(self, charge_id: str) -> Optional[CheckoutSession]:
        return self._sessions.get(charge_id)

    def cancel(self, charge_id: str) -> Optional[CheckoutSession]:
        session = self._sessions.pop(charge_id, None)
        if session is not None:
            session.cancel()
        return session

    async def close_all(self) -> None:
        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            await session.aclose()

    def __len__(self) -> int:
        return len(self._sessions)
