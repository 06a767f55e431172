"""
PIX Checkout Service
Charge creation, status polling and idempotent payment settlement
"""
import logging
import re
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Optional, Tuple, Union

from manuflix.core.exceptions import NotFoundError, PersistenceError, ValidationError
from manuflix.db import utcnow
from manuflix.schemas.checkout import (
    ChargeStatus,
    Customer,
    PaymentMethodEnum,
    PaymentSession,
    SubscriptionPlanSchema,
    TransactionSchema,
    TransactionStatus,
    UserSubscriptionSchema,
)
from manuflix.services.plan_catalog import PlanCatalog
from manuflix.services.pushinpay_service import PushinPayClient, clean_cpf, normalize_status
from manuflix.services.store import SubscriptionStore

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

PIX_EXPIRATION_SECONDS = 3600


def to_minor_units(amount: Union[Decimal, str, int, float]) -> int:
    """
    Convert a BRL amount to centavos, rounding half up.

    29.90 -> 2990, 19.905 -> 1991. Floats go through str() so two-decimal
    inputs never pick up binary drift.
    """
    value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def validate_customer(customer: Customer) -> None:
    """Raise ValidationError with one message per bad field"""
    errors = {}

    if not customer.email:
        errors["email"] = "Email é obrigatório"
    elif not EMAIL_PATTERN.match(customer.email):
        errors["email"] = "Email inválido"

    if not customer.name or not customer.name.strip():
        errors["name"] = "Nome é obrigatório"

    if customer.cpf and clean_cpf(customer.cpf) is None:
        errors["cpf"] = "CPF inválido (deve conter 11 dígitos)"

    if errors:
        raise ValidationError("Invalid customer data", errors=errors)


def compute_expiration(plan: SubscriptionPlanSchema, created_at: datetime) -> Optional[datetime]:
    """Lifetime plans never expire; others expire duration_days after creation"""
    if plan.is_lifetime or plan.duration_days <= 0:
        return None
    return created_at + timedelta(days=plan.duration_days)


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class PaymentSessionOrchestrator:
    """
    Coordinates the gateway and the store for one PIX checkout.

    settle_payment is the only path that marks a transaction paid and creates
    its subscription; polling and the webhook both go through it.
    """

    def __init__(
        self,
        gateway: PushinPayClient,
        store: SubscriptionStore,
        catalog: PlanCatalog,
        callback_url: str,
        expiration_seconds: int = PIX_EXPIRATION_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.gateway = gateway
        self.store = store
        self.catalog = catalog
        self.callback_url = callback_url
        self.expiration_seconds = expiration_seconds
        self.clock = clock

    # ==================== Charge creation ====================

    async def create_session(
        self,
        amount: Union[Decimal, str, float],
        description: str,
        customer: Customer,
        *,
        user_id: str,
        plan_id: str,
    ) -> PaymentSession:
        """
        Create a PIX charge and persist its pending transaction

        Args:
            amount: Price in BRL with decimals (e.g. 29.90)
            description: Charge description shown to the payer
            customer: Payer data
            user_id: Owner of the transaction
            plan_id: Plan selected at checkout; its price must equal amount

        Returns:
            PaymentSession with QR code, copy-paste code and expiration

        Raises:
            ValidationError: Bad customer data, unknown plan or amount mismatch
            GatewayError: PushinPay rejected the request or answered malformed data
            PersistenceError: The pending transaction could not be stored
        """
        validate_customer(customer)

        amount = amount if isinstance(amount, Decimal) else Decimal(str(amount))
        plan = self.catalog.get_plan(plan_id)
        if amount != plan.price:
            raise ValidationError(
                f"Amount {amount} does not match plan {plan.id} price {plan.price}",
                errors={"amount": "Valor não corresponde ao plano selecionado"},
            )

        amount_in_cents = to_minor_units(amount)
        if amount_in_cents <= 0:
            raise ValidationError("Amount must be positive", errors={"amount": "Valor inválido"})

        logger.info(f"Converting amount {amount} to cents: {amount_in_cents}")

        charge = await self.gateway.create_pix_charge(
            amount=amount_in_cents,
            description=description,
            customer=customer,
            expiration=self.expiration_seconds,
            callback_url=self.callback_url,
        )

        try:
            txn = self.store.create_transaction(
                user_id=user_id,
                plan_id=plan.id,
                amount=amount,
                payment_method=PaymentMethodEnum.PIX.value,
                payment_id=charge.id,
            )
        except PersistenceError:
            # No local record means no session: the charge stays unreferenced
            logger.error(f"Charge {charge.id} created but its transaction could not be stored")
            raise

        if charge.expiration_date is not None:
            expires_at = _aware(charge.expiration_date)
        else:
            expires_at = self.clock() + timedelta(seconds=self.expiration_seconds)

        logger.info(f"PIX session created: charge={charge.id} transaction={txn.id} plan={plan.id}")

        return PaymentSession(
            charge_id=charge.id,
            qrcode_image=charge.qrcode_image,
            copy_paste=charge.copy_paste,
            expires_at=expires_at,
            status=normalize_status(charge.status) if charge.status else ChargeStatus.PENDING,
            transaction_id=txn.id,
            plan_id=plan.id,
            amount=amount,
        )

    # ==================== Status ====================

    async def poll_status(self, charge_id: str) -> ChargeStatus:
        """Read the charge status from PushinPay and apply it locally"""
        raw = await self.gateway.get_pix_charge_status(charge_id)
        status = normalize_status(raw)
        self.apply_status(charge_id, status)
        return status

    def apply_status(self, charge_id: str, status: ChargeStatus) -> None:
        if status == ChargeStatus.PAID:
            self.settle_payment(charge_id)
        elif status in (ChargeStatus.FAILED, ChargeStatus.EXPIRED):
            self.mark_failed(charge_id)

    def get_transaction(self, charge_id: str) -> TransactionSchema:
        txn = self.store.get_transaction_by_payment_id(charge_id)
        if txn is None:
            raise NotFoundError(f"Transaction not found for payment_id: {charge_id}")
        return txn

    def settle_payment(self, charge_id: str) -> UserSubscriptionSchema:
        """
        Make sure exactly one subscription exists for the transaction, then mark it paid.
        Safe to call any number of times from polling and the webhook.

        The transaction is marked paid last, so a failure anywhere before that
        leaves it unpaid and the next PAID notification finishes the job.
        """
        txn = self.get_transaction(charge_id)

        subscription = self.store.get_subscription_for_transaction(txn.id)
        if subscription is not None:
            logger.info(f"Subscription {subscription.id} already exists for transaction {txn.id}")
        else:
            plan = self.catalog.get_plan(txn.plan_id)
            created_at = self.clock()
            expires_at = compute_expiration(plan, created_at)

            subscription = self.store.create_user_subscription(
                user_id=txn.user_id,
                plan_id=plan.id,
                transaction_id=txn.id,
                is_lifetime=plan.is_lifetime,
                expires_at=expires_at,
                created_at=created_at,
            )
            logger.info(
                f"Subscription {subscription.id} active for user {txn.user_id} "
                f"(plan={plan.id}, expires_at={subscription.expires_at})"
            )

        if txn.status != TransactionStatus.PAID:
            txn = self.store.update_transaction_status(charge_id, TransactionStatus.PAID)
            logger.info(f"Transaction {txn.id} marked as paid")

        return subscription

    def mark_failed(self, charge_id: str) -> TransactionSchema:
        """Fail a pending transaction; a paid one is never downgraded"""
        txn = self.get_transaction(charge_id)
        if txn.status != TransactionStatus.PENDING:
            logger.info(f"Transaction {txn.id} already {txn.status.value}, not marking failed")
            return txn
        logger.info(f"Transaction {txn.id} marked as failed")
        return self.store.update_transaction_status(charge_id, TransactionStatus.FAILED)

    # ==================== Webhook ====================

    def handle_webhook(self, payment_id: Optional[str], status: Optional[str]) -> ChargeStatus:
        """
        Apply a PushinPay notification

        Raises:
            ValidationError: payment_id missing
            NotFoundError: no transaction for payment_id
        """
        if not payment_id:
            raise ValidationError("Missing payment_id in webhook payload", errors={"payment_id": "required"})

        self.get_transaction(payment_id)

        normalized = normalize_status(status)
        logger.info(f"Webhook for payment {payment_id}: {status} -> {normalized.value}")
        self.apply_status(payment_id, normalized)
        return normalized

    # ==================== Subscriptions ====================

    def subscription_status(self, user_id: str) -> Tuple[bool, Optional[UserSubscriptionSchema]]:
        """Latest active subscription and whether it still grants access; expired ones are deactivated"""
        subscription = self.store.get_user_subscription(user_id)
        if subscription is None:
            return False, None

        if subscription.is_lifetime:
            return True, subscription

        if subscription.expires_at and _aware(subscription.expires_at) < self.clock():
            self.store.deactivate_subscription(subscription.id)
            logger.info(f"Subscription {subscription.id} expired, marked inactive")
            return False, subscription.model_copy(update={"is_active": False})

        return subscription.is_active, subscription

    def check_subscription_status(self, user_id: str) -> bool:
        active, _ = self.subscription_status(user_id)
        return active
