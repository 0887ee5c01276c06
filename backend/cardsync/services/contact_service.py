"""
CardSync Pro Backend — Contact Service (Quota-Gated Save / Delete)
===================================================================

What:  Creates, edits, lists and deletes contacts while keeping each
       profile's contact_count equal to the number of contacts it owns.
Why:   The plan limit must hold under concurrent saves from the same
       account: two saves at limit - 1 give exactly one contact.
How:   Each create/delete is one database transaction whose first statement
       is a guarded UPDATE of the profile row. The row lock taken by that
       UPDATE serializes competing saves; the WHERE clause makes the limit
       check and the increment a single statement.
Who:   Contact routes; identity is passed in explicitly on every call.

Create Flow (POST /api/contacts):
    ┌─────────────┐   ┌────────────────────────────────────┐   ┌──────────────┐
    │ Validate    │──▶│ TX: guarded count+1  →  INSERT     │──▶│ Upload blobs │
    │ attachments │   │     (no row matched → roll back)   │   │ + write URLs │
    └─────────────┘   └────────────────────────────────────┘   └──────────────┘

    Attachment upload happens after the commit and may fail on its own; the
    contact then stays saved with the attachment field empty and the save is
    still reported as successful.
"""

import logging
import uuid
from typing import Dict, List, Optional

from sqlalchemy import case, delete, or_, select, update
from sqlalchemy.exc import SQLAlchemyError

from cardsync.database import Database
from cardsync.exceptions import (
    AttachmentUploadError,
    DatabaseError,
    NotFoundError,
    QuotaExceededError,
)
from cardsync.models.contact import CONTACT_INFO_FIELDS, Contact
from cardsync.models.user_profile import UserProfile, plan_limit_expression
from cardsync.schemas.contact import ContactCreate, ContactUpdate
from cardsync.services.auth_service import Identity
from cardsync.services.storage_service import Attachment, StorageService

logger = logging.getLogger(__name__)


class ContactService:
    """
    Error Handling Strategy:
        Quota and not-found errors are raised from inside the transaction,
        which rolls it back, so nothing is written. SQLAlchemy errors are
        wrapped in DatabaseError. Post-commit attachment and blob-delete
        failures are logged and swallowed.
    """

    def __init__(self, database: Database, storage: StorageService):
        self.database = database
        self.storage = storage

    # ── Create ────────────────────────────────────────────────────────────

    async def create_contact(
        self,
        identity: Identity,
        info: ContactCreate,
        photo: Optional[Attachment] = None,
        voice_note: Optional[Attachment] = None,
    ) -> Contact:
        """
        Quota-gated create.

        Raises:
            ValidationError: attachment has the wrong type or size (nothing written)
            QuotaExceededError: the profile is at its plan limit (nothing written)
            NotFoundError: the caller has no profile
            DatabaseError: the transaction failed (nothing written)
        """
        owner = identity.subject_id

        # Reject bad attachments before anything is written
        photo_file = self.storage.validate_image(photo) if photo else None
        voice_file = self.storage.validate_audio(voice_note) if voice_note else None

        contact = Contact(
            id=uuid.uuid4(),
            user_id=owner,
            image_url=info.image_url,
            **{name: getattr(info, name) for name in CONTACT_INFO_FIELDS},
        )

        try:
            async with self.database.transaction() as session:
                # First statement of the transaction: check and increment in one
                result = await session.execute(
                    update(UserProfile)
                    .where(
                        UserProfile.id == owner,
                        UserProfile.contact_count < plan_limit_expression(),
                    )
                    .values(contact_count=UserProfile.contact_count + 1)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    profile = await session.get(UserProfile, owner)
                    if profile is None:
                        raise NotFoundError(resource="profile", resource_id=owner)
                    logger.info(
                        "Quota reached for %s: %d/%d on plan '%s'",
                        owner,
                        profile.contact_count,
                        profile.plan_limit,
                        profile.subscription_plan,
                    )
                    raise QuotaExceededError(
                        plan=profile.subscription_plan,
                        limit=profile.plan_limit,
                        contact_count=profile.contact_count,
                    )
                session.add(contact)
        except SQLAlchemyError as e:
            logger.error("Database error creating contact for %s: %s", owner, str(e), exc_info=True)
            raise DatabaseError(
                message="Could not save the contact. Please try again.",
                context={"error_type": type(e).__name__},
            ) from e

        logger.info("Contact %s created for %s", contact.id, owner)

        urls: Dict[str, str] = {}
        if photo_file:
            key = self.storage.contact_image_key(owner, contact.id, photo_file.extension)
            url = await self._upload_attachment(contact, "photo", key, photo.content)
            if url:
                urls["image_url"] = url
        if voice_file:
            key = self.storage.voice_note_key(owner, contact.id, voice_file.extension)
            url = await self._upload_attachment(contact, "voice note", key, voice_note.content)
            if url:
                urls["voice_note_url"] = url

        if urls:
            try:
                async with self.database.transaction() as session:
                    await session.execute(
                        update(Contact)
                        .where(Contact.id == contact.id)
                        .values(**urls)
                        .execution_options(synchronize_session=False)
                    )
                for name, url in urls.items():
                    setattr(contact, name, url)
            except SQLAlchemyError as e:
                self._log_attachment_failure(contact, ", ".join(urls), e)

        return contact

    async def _upload_attachment(self, contact: Contact, attachment: str, key: str, content: bytes) -> Optional[str]:
        try:
            return await self.storage.upload(key, content)
        except Exception as e:
            self._log_attachment_failure(contact, attachment, e)
            return None

    @staticmethod
    def _log_attachment_failure(contact: Contact, attachment: str, error: Exception) -> None:
        failure = AttachmentUploadError(
            contact_id=str(contact.id),
            attachment=attachment,
            context={"error_type": type(error).__name__, "error": str(error)},
        )
        logger.warning("%s: %s", failure.message, failure.context, exc_info=error)

    # ── Delete ────────────────────────────────────────────────────────────

    async def delete_contact(self, identity: Identity, contact_id: uuid.UUID) -> None:
        """
        Delete an owned contact and release one unit of quota.

        The counter never goes below zero, even if it had drifted. Stored
        blobs are removed after the commit, best-effort.

        Raises:
            NotFoundError: no such contact, or it belongs to somebody else
        """
        owner = identity.subject_id
        try:
            async with self.database.transaction() as session:
                result = await session.execute(
                    delete(Contact)
                    .where(Contact.id == contact_id, Contact.user_id == owner)
                    .returning(Contact.image_url, Contact.voice_note_url)
                    .execution_options(synchronize_session=False)
                )
                row = result.first()
                if row is None:
                    raise NotFoundError(resource="Contact", resource_id=str(contact_id))
                await session.execute(
                    update(UserProfile)
                    .where(UserProfile.id == owner)
                    .values(
                        contact_count=case(
                            (UserProfile.contact_count > 0, UserProfile.contact_count - 1),
                            else_=0,
                        )
                    )
                    .execution_options(synchronize_session=False)
                )
        except SQLAlchemyError as e:
            logger.error("Database error deleting contact %s: %s", contact_id, str(e), exc_info=True)
            raise DatabaseError(
                message="Could not delete the contact. Please try again.",
                context={"contact_id": str(contact_id), "error_type": type(e).__name__},
            ) from e

        logger.info("Contact %s deleted for %s", contact_id, owner)
        for url in row:
            await self._delete_blob(url)

    async def _delete_blob(self, url: Optional[str]) -> None:
        key = self.storage.key_from_url(url)
        if key is None:
            return
        try:
            await self.storage.delete(key)
        except Exception as e:
            # The contact is already gone; an orphaned blob is acceptable
            logger.warning("Failed to delete stored object %s: %s", key, str(e))

    async def _discard_upload(self, uploaded_url: Optional[str], previous_url: Optional[str]) -> None:
        """Remove a voice note uploaded for an update that did not commit."""
        # Same key as the stored note means the upload overwrote it in place
        if uploaded_url is None or uploaded_url == previous_url:
            return
        await self._delete_blob(uploaded_url)

    # ── Update ────────────────────────────────────────────────────────────

    async def update_contact(
        self,
        identity: Identity,
        contact_id: uuid.UUID,
        changes: ContactUpdate,
        voice_note: Optional[Attachment] = None,
    ) -> Contact:
        """
        Merge field changes into an owned contact. contact_count is untouched.

        A supplied voice note is uploaded first and its URL merged in the
        same write; a replaced voice note is then removed best-effort.
        """
        owner = identity.subject_id
        existing = await self.get_contact(identity, contact_id)
        previous_voice_url = existing.voice_note_url

        uploaded_url = None
        if voice_note:
            voice_file = self.storage.validate_audio(voice_note)
            key = self.storage.voice_note_key(owner, contact_id, voice_file.extension)
            uploaded_url = await self.storage.upload(key, voice_note.content)
            changes = changes.model_copy(update={"voice_note_url": uploaded_url})

        try:
            async with self.database.transaction() as session:
                result = await session.execute(
                    select(Contact).where(Contact.id == contact_id, Contact.user_id == owner)
                )
                contact = result.scalar_one_or_none()
                if contact is None:
                    raise NotFoundError(resource="Contact", resource_id=str(contact_id))
                changed = changes.apply_to(contact)
        except SQLAlchemyError as e:
            logger.error("Database error updating contact %s: %s", contact_id, str(e), exc_info=True)
            await self._discard_upload(uploaded_url, previous_voice_url)
            raise DatabaseError(
                message="Could not update the contact. Please try again.",
                context={"contact_id": str(contact_id), "error_type": type(e).__name__},
            ) from e
        except NotFoundError:
            await self._discard_upload(uploaded_url, previous_voice_url)
            raise

        logger.info("Contact %s updated (%s)", contact_id, ", ".join(changed) or "no changes")
        if "voice_note_url" in changed and previous_voice_url != contact.voice_note_url:
            await self._delete_blob(previous_voice_url)
        return contact

    # ── Read ──────────────────────────────────────────────────────────────

    async def get_contact(self, identity: Identity, contact_id: uuid.UUID) -> Contact:
        """
        Raises:
            NotFoundError: missing, or owned by another account
        """
        try:
            async with self.database.transaction() as session:
                result = await session.execute(
                    select(Contact).where(
                        Contact.id == contact_id,
                        Contact.user_id == identity.subject_id,
                    )
                )
                contact = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Database error fetching contact %s: %s", contact_id, str(e))
            raise DatabaseError(
                message="Could not retrieve the contact. Please try again.",
                context={"contact_id": str(contact_id)},
            ) from e

        if contact is None:
            raise NotFoundError(resource="Contact", resource_id=str(contact_id))
        return contact

    async def list_contacts(self, identity: Identity, search: Optional[str] = None) -> List[Contact]:
        """
        The caller's contacts, newest first.

        search: case-insensitive substring match on name, company or title.

        Query plan:
            SELECT * FROM contacts WHERE user_id = :owner ORDER BY created_at DESC
            → served by idx_contacts_user_created_at
        """
        query = select(Contact).where(Contact.user_id == identity.subject_id)
        term = (search or "").strip()
        if term:
            query = query.where(
                or_(
                    Contact.full_name.icontains(term, autoescape=True),
                    Contact.company_name.icontains(term, autoescape=True),
                    Contact.job_title.icontains(term, autoescape=True),
                )
            )
        query = query.order_by(Contact.created_at.desc(), Contact.id)

        try:
            async with self.database.transaction() as session:
                result = await session.execute(query)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error("Database error listing contacts: %s", str(e), exc_info=True)
            raise DatabaseError(
                message="Could not retrieve contacts. Please try again.",
                context={"error_type": type(e).__name__},
            ) from e
