from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from manuflix.core.exceptions import NotFoundError, PersistenceError
from manuflix.db import create_db_engine, create_session_factory
from manuflix.schemas.checkout import TransactionStatus
from manuflix.services.sql_store import SqlStore
from tests.conftest import USER_ID

NOW = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)


def _transaction(store, payment_id="charge-1", plan_id="quarterly", amount=Decimal("49.90")):
    return store.create_transaction(
        user_id=USER_ID,
        plan_id=plan_id,
        amount=amount,
        payment_method="pix",
        payment_id=payment_id,
    )


def _subscription(store, txn, created_at=NOW, expires_at=None):
    return store.create_user_subscription(
        user_id=USER_ID,
        plan_id=txn.plan_id,
        transaction_id=txn.id,
        is_lifetime=expires_at is None,
        expires_at=expires_at,
        created_at=created_at,
    )


def test_transaction_lifecycle(store):
    txn = _transaction(store)
    assert txn.status == TransactionStatus.PENDING

    found = store.get_transaction_by_payment_id("charge-1")
    assert found.id == txn.id
    assert found.amount == Decimal("49.90")

    updated = store.update_transaction_status("charge-1", TransactionStatus.PAID)
    assert updated.status == TransactionStatus.PAID
    assert store.get_transaction_by_payment_id("charge-1").status == TransactionStatus.PAID


def test_update_unknown_transaction(store):
    with pytest.raises(NotFoundError):
        store.update_transaction_status("charge-missing", TransactionStatus.PAID)


def test_duplicate_payment_id_is_persistence_error(store):
    _transaction(store)
    with pytest.raises(PersistenceError):
        _transaction(store)


def test_one_subscription_per_transaction(store):
    txn = _transaction(store)

    first = _subscription(store, txn)
    second = _subscription(store, txn, created_at=NOW + timedelta(minutes=1))

    assert first.id == second.id
    assert store.get_subscription_for_transaction(txn.id).id == first.id


def test_latest_active_subscription(store):
    old = _subscription(store, _transaction(store, "charge-1"), created_at=NOW - timedelta(days=10),
                        expires_at=NOW + timedelta(days=20))
    new = _subscription(store, _transaction(store, "charge-2"), created_at=NOW,
                        expires_at=NOW + timedelta(days=90))

    latest = store.get_user_subscription(USER_ID)
    assert latest.id == new.id
    assert latest.expires_at == NOW + timedelta(days=90)

    store.deactivate_subscription(new.id)
    assert store.get_user_subscription(USER_ID).id == old.id


def test_no_subscription(store):
    assert store.get_user_subscription(USER_ID) is None


def test_backend_failure_is_persistence_error():
    # Engine without tables
    store = SqlStore(create_session_factory(create_db_engine("sqlite:///:memory:")))
    with pytest.raises(PersistenceError):
        store.list_plans()
