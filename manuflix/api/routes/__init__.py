from manuflix.api.routes.plans import router as plans_router
from manuflix.api.routes.checkout import router as checkout_router
from manuflix.api.routes.subscriptions import router as subscriptions_router

__all__ = [
    "plans_router",
    "checkout_router",
    "subscriptions_router",
]
