from manuflix.models.checkout import SubscriptionPlan, Transaction, UserSubscription

__all__ = ["SubscriptionPlan", "Transaction", "UserSubscription"]
