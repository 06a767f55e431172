"""
Plan Catalog
Read-only subscription plans with a fixed fallback list
"""
import logging
from decimal import Decimal
from typing import List

from manuflix.core.exceptions import PersistenceError, ValidationError
from manuflix.schemas.checkout import SubscriptionPlanSchema
from manuflix.services.store import SubscriptionStore

logger = logging.getLogger(__name__)

BASE_FEATURES = [
    "Acesso a todo conteúdo",
    "Assista em qualquer dispositivo",
    "Suporte prioritário",
]

PLAN_FEATURES = {
    "monthly": ["Atualizações mensais"],
    "quarterly": ["Atualizações mensais", "Economia de 33%"],
    "lifetime": [
        "Atualizações vitalícias",
        "Acesso a conteúdos exclusivos",
        "Sem pagamentos recorrentes",
    ],
}

POPULAR_PLAN_ID = "quarterly"

FALLBACK_PLANS = [
    SubscriptionPlanSchema(
        id="monthly",
        name="Plano Mensal",
        price=Decimal("19.90"),
        duration_days=30,
        is_lifetime=False,
    ),
    SubscriptionPlanSchema(
        id="quarterly",
        name="Plano Trimestral",
        price=Decimal("29.90"),
        duration_days=90,
        is_lifetime=False,
    ),
    SubscriptionPlanSchema(
        id="lifetime",
        name="Plano Vitalício",
        price=Decimal("49.90"),
        duration_days=0,
        is_lifetime=True,
    ),
]


def period_label(plan: SubscriptionPlanSchema) -> str:
    if plan.is_lifetime:
        return "pagamento único"
    if plan.duration_days == 30:
        return "por mês"
    if plan.duration_days == 90:
        return "a cada 3 meses"
    if plan.duration_days > 0:
        return f"a cada {plan.duration_days} dias"
    return ""


def present_plan(plan: SubscriptionPlanSchema) -> SubscriptionPlanSchema:
    """Fill in the display fields (period, features, popular) the store does not keep"""
    features = plan.features or BASE_FEATURES + PLAN_FEATURES.get(plan.id, [])
    return plan.model_copy(update={
        "period": plan.period or period_label(plan),
        "features": list(features),
        "popular": plan.popular or plan.id == POPULAR_PLAN_ID,
    })


class PlanCatalog:
    """Plans from the store, or the fixed list when the store is empty or unreachable"""

    def __init__(self, store: SubscriptionStore):
        self.store = store

    def list_plans(self) -> List[SubscriptionPlanSchema]:
        try:
            plans = self.store.list_plans()
        except PersistenceError as e:
            logger.warning(f"Plan store unavailable, using fallback plans: {e}")
            plans = []

        if not plans:
            plans = FALLBACK_PLANS

        return [present_plan(plan) for plan in sorted(plans, key=lambda p: p.price)]

    def get_plan(self, plan_id: str) -> SubscriptionPlanSchema:
        for plan in self.list_plans():
            if plan.id == plan_id:
                return plan
        raise ValidationError(f"Unknown plan: {plan_id}", errors={"plan_id": "Plano inválido"})
