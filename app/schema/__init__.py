"""Schema package exports."""

from .credits import CreditAction, CreditTransaction, UserCredits
from .generation import GenerationJob, WebhookDelivery
from .push_subscriptions import WebPushSubscription

__all__ = ["CreditAction", "CreditTransaction", "GenerationJob", "UserCredits", "WebPushSubscription", "WebhookDelivery"]
