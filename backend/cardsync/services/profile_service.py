"""
CardSync Pro Backend — Profile Service
=======================================

What:  Reads and creates user profiles; applies billing changes to them.
Why:   The profile holds the plan and the contact counter that the quota
       gate works against. It is created on first authenticated access.
Who:   Profile/contact routes (via get_or_create_profile), BillingService.

contact_count is never written here; only ContactService moves it.
"""

import logging
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from cardsync.database import Database
from cardsync.exceptions import DatabaseError, NotFoundError
from cardsync.models.user_profile import SubscriptionPlan, UserProfile
from cardsync.services.auth_service import Identity

logger = logging.getLogger(__name__)


class ProfileService:

    def __init__(self, database: Database):
        self.database = database

    async def get_or_create_profile(self, identity: Identity) -> UserProfile:
        """
        Return the caller's profile, creating a free-plan one if missing.

        Two first requests racing each other both try the INSERT; the loser
        hits the primary key and re-reads the winner's row.
        """
        try:
            async with self.database.transaction() as session:
                profile = await session.get(UserProfile, identity.subject_id)
                if profile is not None:
                    if identity.email and profile.email != identity.email:
                        profile.email = identity.email
                    return profile
        except SQLAlchemyError as e:
            raise self._database_error("read profile", e)

        try:
            async with self.database.transaction() as session:
                profile = UserProfile(
                    id=identity.subject_id,
                    email=identity.email,
                    subscription_plan=SubscriptionPlan.FREE.value,
                    contact_count=0,
                )
                session.add(profile)
            logger.info("Profile created for subject %s", identity.subject_id)
            return profile
        except IntegrityError:
            logger.info("Profile for %s created concurrently; re-reading", identity.subject_id)
            return await self.get_profile(identity.subject_id)
        except SQLAlchemyError as e:
            raise self._database_error("create profile", e)

    async def get_profile(self, user_id: str) -> UserProfile:
        """
        Raises:
            NotFoundError: no profile for this subject id
        """
        try:
            async with self.database.transaction() as session:
                profile = await session.get(UserProfile, user_id)
        except SQLAlchemyError as e:
            raise self._database_error("read profile", e)
        if profile is None:
            raise NotFoundError(resource="profile", resource_id=user_id)
        return profile

    async def find_by_billing_customer(self, customer_id: str) -> Optional[UserProfile]:
        return await self._find_one(UserProfile.billing_customer_id == customer_id)

    async def find_by_subscription(self, subscription_id: str) -> Optional[UserProfile]:
        return await self._find_one(UserProfile.billing_subscription_id == subscription_id)

    async def _find_one(self, condition) -> Optional[UserProfile]:
        try:
            async with self.database.transaction() as session:
                result = await session.execute(select(UserProfile).where(condition).limit(1))
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise self._database_error("find profile", e)

    async def set_billing_customer(self, user_id: str, customer_id: str) -> None:
        await self._update(user_id, billing_customer_id=customer_id)
        logger.info("Billing customer %s attached to profile %s", customer_id, user_id)

    async def apply_subscription(
        self,
        user_id: str,
        plan: str,
        subscription_id: Optional[str] = None,
        status: Optional[str] = None,
        customer_id: Optional[str] = None,
    ) -> UserProfile:
        """
        Switch the profile's plan and record the subscription references.

        A downgrade never touches contact_count: an account over its new
        limit keeps its contacts but cannot add more until it is below it.
        """
        values = {
            "subscription_plan": SubscriptionPlan(plan).value,
            "billing_subscription_id": subscription_id,
            "billing_subscription_status": status,
        }
        if customer_id:
            values["billing_customer_id"] = customer_id
        await self._update(user_id, **values)
        logger.info("Profile %s moved to plan '%s' (subscription=%s, status=%s)", user_id, plan, subscription_id, status)
        return await self.get_profile(user_id)

    async def _update(self, user_id: str, **values) -> None:
        try:
            async with self.database.transaction() as session:
                result = await session.execute(
                    update(UserProfile)
                    .where(UserProfile.id == user_id)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise NotFoundError(resource="profile", resource_id=user_id)
        except SQLAlchemyError as e:
            raise self._database_error("update profile", e)

    @staticmethod
    def _database_error(action: str, error: Exception) -> DatabaseError:
        logger.error("Database error (%s): %s", action, str(error), exc_info=True)
        return DatabaseError(context={"action": action, "error_type": type(error).__name__})
