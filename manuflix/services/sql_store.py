"""
SQL Store
SQLAlchemy implementation of the subscription store (SQLite locally, any SQL URL in production)
"""
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterator, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from manuflix.core.exceptions import NotFoundError, PersistenceError
from manuflix.db import create_db_engine, create_session_factory, init_db, utcnow
from manuflix.models.checkout import SubscriptionPlan, Transaction, UserSubscription
from manuflix.schemas.checkout import (
    SubscriptionPlanSchema,
    TransactionSchema,
    TransactionStatus,
    UserSubscriptionSchema,
)

logger = logging.getLogger(__name__)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo; everything is written in UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _subscription_out(row: UserSubscription) -> UserSubscriptionSchema:
    out = UserSubscriptionSchema.model_validate(row)
    out.expires_at = _aware(out.expires_at)
    out.created_at = _aware(out.created_at)
    out.updated_at = _aware(out.updated_at)
    return out


class SqlStore:
    """Subscription store backed by SQLAlchemy sessions"""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @classmethod
    def from_url(cls, database_url: str) -> "SqlStore":
        engine = create_db_engine(database_url)
        init_db(engine)
        return cls(create_session_factory(engine))

    @contextmanager
    def _session(self, action: str) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Error {action}: {e}")
            raise PersistenceError(f"Error {action}") from e
        finally:
            db.close()

    # ==================== Plans ====================

    def list_plans(self) -> List[SubscriptionPlanSchema]:
        with self._session("fetching subscription plans") as db:
            rows = db.execute(select(SubscriptionPlan).order_by(SubscriptionPlan.price)).scalars().all()
            return [SubscriptionPlanSchema.model_validate(row) for row in rows]

    def add_plan(self, plan: SubscriptionPlanSchema) -> None:
        """Seed helper for local databases"""
        with self._session("creating subscription plan") as db:
            db.merge(SubscriptionPlan(
                id=plan.id,
                name=plan.name,
                price=plan.price,
                duration_days=plan.duration_days,
                is_lifetime=plan.is_lifetime,
                features=plan.features or None,
            ))
            db.commit()

    # ==================== Transactions ====================

    def create_transaction(
        self,
        user_id: str,
        plan_id: str,
        amount: Decimal,
        payment_method: str,
        payment_id: str,
    ) -> TransactionSchema:
        with self._session("creating transaction") as db:
            txn = Transaction(
                user_id=user_id,
                plan_id=plan_id,
                amount=amount,
                payment_method=payment_method,
                payment_id=payment_id,
                status=TransactionStatus.PENDING.value,
            )
            db.add(txn)
            db.commit()
            logger.info(f"Created transaction {txn.id} for payment {payment_id}")
            return TransactionSchema.model_validate(txn)

    def _find_transaction(self, db: Session, payment_id: str) -> Optional[Transaction]:
        return db.execute(
            select(Transaction).where(Transaction.payment_id == payment_id)
        ).scalar_one_or_none()

    def get_transaction_by_payment_id(self, payment_id: str) -> Optional[TransactionSchema]:
        with self._session("fetching transaction") as db:
            txn = self._find_transaction(db, payment_id)
            return TransactionSchema.model_validate(txn) if txn else None

    def update_transaction_status(self, payment_id: str, status: TransactionStatus) -> TransactionSchema:
        with self._session("updating transaction status") as db:
            txn = self._find_transaction(db, payment_id)
            if txn is None:
                raise NotFoundError(f"Transaction not found for payment_id: {payment_id}")
            txn.status = TransactionStatus(status).value
            txn.updated_at = utcnow()
            db.commit()
            return TransactionSchema.model_validate(txn)

    # ==================== Subscriptions ====================

    def get_subscription_for_transaction(self, transaction_id: str) -> Optional[UserSubscriptionSchema]:
        with self._session("fetching subscription") as db:
            row = db.execute(
                select(UserSubscription).where(UserSubscription.transaction_id == transaction_id)
            ).scalar_one_or_none()
            return _subscription_out(row) if row else None

    def create_user_subscription(
        self,
        user_id: str,
        plan_id: str,
        transaction_id: str,
        is_lifetime: bool,
        expires_at: Optional[datetime],
        created_at: datetime,
    ) -> UserSubscriptionSchema:
        with self._session("creating user subscription") as db:
            row = UserSubscription(
                user_id=user_id,
                plan_id=plan_id,
                transaction_id=transaction_id,
                is_active=True,
                is_lifetime=is_lifetime,
                expires_at=expires_at,
                created_at=created_at,
                updated_at=created_at,
            )
            db.add(row)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                existing = db.execute(
                    select(UserSubscription).where(UserSubscription.transaction_id == transaction_id)
                ).scalar_one_or_none()
                if existing is None:
                    raise
                logger.info(f"Subscription for transaction {transaction_id} already exists")
                return _subscription_out(existing)

            logger.info(f"Created subscription {row.id} for user {user_id}")
            return _subscription_out(row)

    def get_user_subscription(self, user_id: str) -> Optional[UserSubscriptionSchema]:
        with self._session("fetching user subscription") as db:
            row = db.execute(
                select(UserSubscription)
                .where(UserSubscription.user_id == user_id)
                .where(UserSubscription.is_active.is_(True))
                .order_by(UserSubscription.created_at.desc())
                .limit(1)
            ).scalar_one_or_none()
            return _subscription_out(row) if row else None

    def deactivate_subscription(self, subscription_id: str) -> None:
        with self._session("deactivating subscription") as db:
            row = db.get(UserSubscription, subscription_id)
            if row is not None:
                row.is_active = False
                db.commit()
