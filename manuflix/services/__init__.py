from manuflix.services.checkout_service import PaymentSessionOrchestrator
from manuflix.services.checkout_session import CheckoutSession, SessionRegistry
from manuflix.services.plan_catalog import PlanCatalog
from manuflix.services.pushinpay_service import PushinPayClient
from manuflix.services.store import SubscriptionStore, build_store

__all__ = [
    "PaymentSessionOrchestrator",
    "CheckoutSession",
    "SessionRegistry",
    "PlanCatalog",
    "PushinPayClient",
    "SubscriptionStore",
    "build_store",
]
