"""
Persistence interface shared by the Supabase and SQL stores
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Protocol

from manuflix.core.config import Settings
from manuflix.schemas.checkout import (
    SubscriptionPlanSchema,
    TransactionSchema,
    TransactionStatus,
    UserSubscriptionSchema,
)

logger = logging.getLogger(__name__)


class SubscriptionStore(Protocol):
    """
    Record access for plans, transactions and user subscriptions.

    Every method raises PersistenceError when the backend fails.
    Implementations must allow at most one subscription per transaction:
    create_user_subscription returns the existing row on a conflict.
    """

    def list_plans(self) -> List[SubscriptionPlanSchema]:
        ...

    def create_transaction(
        self,
        user_id: str,
        plan_id: str,
        amount: Decimal,
        payment_method: str,
        payment_id: str,
    ) -> TransactionSchema:
        ...

    def get_transaction_by_payment_id(self, payment_id: str) -> Optional[TransactionSchema]:
        ...

    def update_transaction_status(self, payment_id: str, status: TransactionStatus) -> TransactionSchema:
        """Raises NotFoundError when no transaction has this payment id."""
        ...

    def get_subscription_for_transaction(self, transaction_id: str) -> Optional[UserSubscriptionSchema]:
        ...

    def create_user_subscription(
        self,
        user_id: str,
        plan_id: str,
        transaction_id: str,
        is_lifetime: bool,
        expires_at: Optional[datetime],
        created_at: datetime,
    ) -> UserSubscriptionSchema:
        ...

    def get_user_subscription(self, user_id: str) -> Optional[UserSubscriptionSchema]:
        """Latest active subscription for the user."""
        ...

    def deactivate_subscription(self, subscription_id: str) -> None:
        ...


def build_store(settings: Settings) -> SubscriptionStore:
    """Supabase when configured, otherwise the SQL database (SQLite for local dev)."""
    if settings.supabase_enabled:
        from manuflix.services.supabase_service import SupabaseStore

        logger.info("[SUPABASE] Using Supabase tables for persistence")
        return SupabaseStore.from_settings(settings)

    from manuflix.services.sql_store import SqlStore

    logger.info(f"[LOCAL] Using SQL store at {settings.DATABASE_URL.split('@')[-1]}")
    return SqlStore.from_url(settings.DATABASE_URL)
