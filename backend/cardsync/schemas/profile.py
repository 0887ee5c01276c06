"""
CardSync Pro Backend — Profile Schemas
=======================================
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class ProfileResponse(BaseModel):
    """
    What:  The caller's profile with quota state.
    Who:   GET /api/profile; the dashboard uses remaining_contacts to show
           the "upgrade your plan" banner before a save is even attempted.
    """
    id: str
    email: str
    subscription_plan: str
    contact_count: int
    plan_limit: int
    remaining_contacts: int = Field(description="plan_limit - contact_count, floored at 0")
    billing_customer_id: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_profile(cls, profile) -> "ProfileResponse":
        return cls(
            id=profile.id,
            email=profile.email,
            subscription_plan=profile.subscription_plan,
            contact_count=profile.contact_count,
            plan_limit=profile.plan_limit,
            remaining_contacts=max(0, profile.plan_limit - profile.contact_count),
            billing_customer_id=profile.billing_customer_id,
            created_at=profile.created_at,
        )
