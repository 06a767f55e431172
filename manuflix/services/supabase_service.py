"""
Supabase Integration Service
Subscription store backed by Supabase tables
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx
from postgrest.exceptions import APIError
from supabase import Client, create_client

from manuflix.core.config import Settings
from manuflix.core.exceptions import NotFoundError, PersistenceError
from manuflix.db import utcnow
from manuflix.schemas.checkout import (
    SubscriptionPlanSchema,
    TransactionSchema,
    TransactionStatus,
    UserSubscriptionSchema,
)

logger = logging.getLogger(__name__)

# Postgres unique_violation
UNIQUE_VIOLATION = "23505"


class SupabaseStore:
    """Subscription store over the subscription_plans, transactions and user_subscriptions tables"""

    def __init__(self, client: Client):
        self.client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "SupabaseStore":
        """Initialize Supabase client"""
        try:
            client = create_client(settings.SUPABASE_URL, settings.SUPABASE_KEY)
            logger.info("Supabase client initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize Supabase client: {e}")
            raise
        return cls(client)

    def _execute(self, query, action: str) -> List[Dict[str, Any]]:
        try:
            response = query.execute()
        except (APIError, httpx.HTTPError) as e:
            logger.error(f"Error {action}: {e}")
            raise PersistenceError(f"Error {action}") from e
        return response.data or []

    # ==================== Plans ====================

    def list_plans(self) -> List[SubscriptionPlanSchema]:
        rows = self._execute(
            self.client.table("subscription_plans").select("*").order("price"),
            "fetching subscription plans",
        )
        return [SubscriptionPlanSchema.model_validate(row) for row in rows]

    # ==================== Transactions ====================

    def create_transaction(
        self,
        user_id: str,
        plan_id: str,
        amount: Decimal,
        payment_method: str,
        payment_id: str,
    ) -> TransactionSchema:
        rows = self._execute(
            self.client.table("transactions").insert({
                "user_id": user_id,
                "plan_id": plan_id,
                "amount": str(amount),
                "payment_method": payment_method,
                "payment_id": payment_id,
                "status": TransactionStatus.PENDING.value,
            }),
            "creating transaction",
        )
        if not rows:
            raise PersistenceError("Error creating transaction: no row returned")
        return TransactionSchema.model_validate(rows[0])

    def get_transaction_by_payment_id(self, payment_id: str) -> Optional[TransactionSchema]:
        rows = self._execute(
            self.client.table("transactions").select("*").eq("payment_id", payment_id).limit(1),
            "fetching transaction",
        )
        return TransactionSchema.model_validate(rows[0]) if rows else None

    def update_transaction_status(self, payment_id: str, status: TransactionStatus) -> TransactionSchema:
        rows = self._execute(
            self.client.table("transactions")
            .update({
                "status": TransactionStatus(status).value,
                "updated_at": utcnow().isoformat(),
            })
            .eq("payment_id", payment_id),
            "updating transaction status",
        )
        if not rows:
            raise NotFoundError(f"Transaction not found for payment_id: {payment_id}")
        return TransactionSchema.model_validate(rows[0])

    # ==================== Subscriptions ====================

    def get_subscription_for_transaction(self, transaction_id: str) -> Optional[UserSubscriptionSchema]:
        rows = self._execute(
            self.client.table("user_subscriptions").select("*").eq("transaction_id", transaction_id).limit(1),
            "fetching subscription",
        )
        return UserSubscriptionSchema.model_validate(rows[0]) if rows else None

    def create_user_subscription(
        self,
        user_id: str,
        plan_id: str,
        transaction_id: str,
        is_lifetime: bool,
        expires_at: Optional[datetime],
        created_at: datetime,
    ) -> UserSubscriptionSchema:
        query = self.client.table("user_subscriptions").insert({
            "user_id": user_id,
            "plan_id": plan_id,
            "transaction_id": transaction_id,
            "is_active": True,
            "is_lifetime": is_lifetime,
            "expires_at": expires_at.isoformat() if expires_at else None,
            "created_at": created_at.isoformat(),
        })
        try:
            rows = query.execute().data or []
        except APIError as e:
            if e.code != UNIQUE_VIOLATION:
                logger.error(f"Error creating user subscription: {e}")
                raise PersistenceError("Error creating user subscription") from e
            # The other settlement path won the insert
            existing = self.get_subscription_for_transaction(transaction_id)
            if existing is None:
                raise PersistenceError("Error creating user subscription") from e
            logger.info(f"Subscription for transaction {transaction_id} already exists")
            return existing
        except httpx.HTTPError as e:
            logger.error(f"Error creating user subscription: {e}")
            raise PersistenceError("Error creating user subscription") from e

        if not rows:
            raise PersistenceError("Error creating user subscription: no row returned")
        logger.info(f"Created subscription {rows[0].get('id')} for user {user_id}")
        return UserSubscriptionSchema.model_validate(rows[0])

    def get_user_subscription(self, user_id: str) -> Optional[UserSubscriptionSchema]:
        rows = self._execute(
            self.client.table("user_subscriptions")
            .select("*")
            .eq("user_id", user_id)
            .eq("is_active", True)
            .order("created_at", desc=True)
            .limit(1),
            "fetching user subscription",
        )
        return UserSubscriptionSchema.model_validate(rows[0]) if rows else None

    def deactivate_subscription(self, subscription_id: str) -> None:
        self._execute(
            self.client.table("user_subscriptions").update({"is_active": False}).eq("id", subscription_id),
            "deactivating subscription",
        )
