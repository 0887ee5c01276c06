"""
CardSync Pro Backend — UserProfile SQLAlchemy Model
====================================================

What:  ORM model for the `user_profiles` table plus the plan → limit mapping.
Why:   The profile carries the quota state (plan + contact_count) that the
       contact save/delete path gates on.
Who:   ProfileService (create/read/billing updates), ContactService (counter).

Column ownership:
    - subscription_plan / billing_*: written only by the billing flow
    - contact_count: written only by ContactService's atomic units
"""

import enum
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, Integer, String, case, text
from sqlalchemy.orm import Mapped, mapped_column

from cardsync.database import Base


class SubscriptionPlan(str, enum.Enum):
    FREE = "free"
    PRO = "pro"
    BUSINESS = "business"


# Maximum number of contacts each plan may own at once
PLAN_LIMITS = {
    SubscriptionPlan.FREE: 10,
    SubscriptionPlan.PRO: 1000,
    SubscriptionPlan.BUSINESS: 10000,
}


def plan_limit(plan: str) -> int:
    """Limit for a plan value; unknown plans get the free limit."""
    try:
        return PLAN_LIMITS[SubscriptionPlan(plan)]
    except ValueError:
        return PLAN_LIMITS[SubscriptionPlan.FREE]


class UserProfile(Base):
    """
    One row per authenticated identity.

    Lifecycle:
        1. Created on first authenticated access (plan='free', count=0)
        2. contact_count moves by ±1 inside ContactService transactions
        3. Plan and billing references change on checkout confirmation and
           Stripe webhooks
    """

    __tablename__ = "user_profiles"

    # Identity provider subject id (Firebase uid), not generated here
    id: Mapped[str] = mapped_column(
        String(128),
        primary_key=True,
        comment="Identity provider subject id",
    )

    email: Mapped[str] = mapped_column(
        String(320),
        nullable=False,
        default="",
        server_default=text("''"),
    )

    subscription_plan: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=SubscriptionPlan.FREE.value,
        server_default=text("'free'"),
        comment="free, pro, business",
    )

    contact_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
        comment="Number of contacts owned; kept in step by the quota gate",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    # ── Billing references (Stripe) ───────────────────────────────────────
    billing_customer_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, index=True
    )
    billing_subscription_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, index=True
    )
    billing_subscription_status: Mapped[Optional[str]] = mapped_column(
        String(50), nullable=True
    )

    __table_args__ = (
        CheckConstraint("contact_count >= 0", name="ck_user_profiles_contact_count"),
    )

    @property
    def plan_limit(self) -> int:
        return plan_limit(self.subscription_plan)

    def __repr__(self) -> str:
        return (
            f"<UserProfile(id={self.id}, plan='{self.subscription_plan}', "
            f"contact_count={self.contact_count})>"
        )


def plan_limit_expression():
    """
    SQL expression evaluating the limit of the row's own plan.

    Used in the guarded UPDATE so the limit lookup happens in the same
    statement as the counter check and increment.
    """
    return case(
        {plan.value: limit for plan, limit in PLAN_LIMITS.items()},
        value=UserProfile.subscription_plan,
        else_=PLAN_LIMITS[SubscriptionPlan.FREE],
    )
