from decimal import Decimal

import pytest

from manuflix.core.exceptions import PersistenceError, ValidationError
from manuflix.services.plan_catalog import PlanCatalog, period_label
from manuflix.services.sql_store import SqlStore
from manuflix.schemas.checkout import SubscriptionPlanSchema


class UnreachableStore(SqlStore):
    def list_plans(self):
        raise PersistenceError("Error fetching subscription plans")


def test_store_plans_sorted_by_price(store):
    plans = PlanCatalog(store).list_plans()

    assert [p.id for p in plans] == ["monthly", "lifetime", "quarterly"]
    assert [p.price for p in plans] == [Decimal("19.90"), Decimal("29.90"), Decimal("49.90")]


def test_store_plans_get_display_fields(store):
    plans = {p.id: p for p in PlanCatalog(store).list_plans()}

    assert plans["lifetime"].period == "pagamento único"
    assert plans["monthly"].period == "por mês"
    assert plans["quarterly"].popular is True
    assert plans["monthly"].popular is False
    assert "Sem pagamentos recorrentes" in plans["lifetime"].features


def test_empty_store_uses_fallback_plans():
    catalog = PlanCatalog(SqlStore.from_url("sqlite:///:memory:"))
    plans = catalog.list_plans()

    assert [(p.id, p.price) for p in plans] == [
        ("monthly", Decimal("19.90")),
        ("quarterly", Decimal("29.90")),
        ("lifetime", Decimal("49.90")),
    ]
    assert plans[2].is_lifetime is True
    assert plans[1].duration_days == 90


def test_unreachable_store_uses_fallback_plans():
    catalog = PlanCatalog(UnreachableStore.from_url("sqlite:///:memory:"))
    assert catalog.get_plan("quarterly").price == Decimal("29.90")


def test_get_plan_unknown(store):
    with pytest.raises(ValidationError):
        PlanCatalog(store).get_plan("weekly")


@pytest.mark.parametrize("duration,lifetime,label", [
    (30, False, "por mês"),
    (90, False, "a cada 3 meses"),
    (365, False, "a cada 365 dias"),
    (0, True, "pagamento único"),
])
def test_period_label(duration, lifetime, label):
    plan = SubscriptionPlanSchema(
        id="p", name="Plano", price=Decimal("1.00"), duration_days=duration, is_lifetime=lifetime
    )
    assert period_label(plan) == label
