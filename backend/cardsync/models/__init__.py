"""ORM models. Importing this package registers every table with Base.metadata."""

from cardsync.models.contact import Contact
from cardsync.models.user_profile import PLAN_LIMITS, SubscriptionPlan, UserProfile, plan_limit

__all__ = ["Contact", "UserProfile", "SubscriptionPlan", "PLAN_LIMITS", "plan_limit"]
