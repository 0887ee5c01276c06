"""
CardSync Pro Backend — Contact Service Tests
=============================================

What:  Tests for the quota-gated create/delete and for update/list.
How:   Runs against a real (file-backed) SQLite database from conftest, so
       the guarded UPDATE, RETURNING delete and transactions are exercised
       for real. Blob storage is a temp directory.

What we test:
    ✅ Create increments contact_count; quota refusal writes nothing
    ✅ The free plan end-to-end: 9 → 10 → refused
    ✅ Two concurrent saves at limit - 1 give exactly one contact
    ✅ Delete decrements, never below zero, and releases blobs
    ✅ Attachment failures keep the contact (no rollback)
    ✅ Owner scoping: other accounts' contacts are "not found"
"""

import asyncio
import uuid
from unittest.mock import AsyncMock, patch

import pytest

from cardsync.exceptions import (
    FileStorageError,
    NotFoundError,
    QuotaExceededError,
    ValidationError,
)
from cardsync.schemas.contact import ContactCreate, ContactUpdate
from cardsync.services.storage_service import Attachment


async def _count(profiles, user_id):
    return (await profiles.get_profile(user_id)).contact_count


class TestCreate:

    @pytest.mark.asyncio
    async def test_create_increments_count(self, contact_service, profiles, profile, identity):
        contact = await contact_service.create_contact(
            identity, ContactCreate(full_name="Jane Doe", company_name="Acme")
        )
        assert contact.id is not None
        assert contact.user_id == identity.subject_id
        assert contact.full_name == "Jane Doe"
        assert contact.job_title is None
        assert contact.created_at is not None
        assert await _count(profiles, identity.subject_id) == 1

    @pytest.mark.asyncio
    async def test_blank_fields_are_stored_as_none(self, contact_service, identity, profile):
        contact = await contact_service.create_contact(
            identity, ContactCreate(full_name="Jane", job_title="  ", email_address="")
        )
        stored = await contact_service.get_contact(identity, contact.id)
        assert stored.full_name == "Jane"
        assert stored.job_title is None
        assert stored.email_address is None

    @pytest.mark.asyncio
    async def test_refused_at_limit_writes_nothing(self, contact_service, profiles, profile, identity, set_quota):
        await set_quota(identity.subject_id, 10)

        with pytest.raises(QuotaExceededError) as exc_info:
            await contact_service.create_contact(identity, ContactCreate(full_name="Over"))

        assert exc_info.value.limit == 10
        assert exc_info.value.plan == "free"
        assert await _count(profiles, identity.subject_id) == 10
        assert await contact_service.list_contacts(identity) == []

    @pytest.mark.asyncio
    async def test_free_plan_nine_to_ten_then_refused(self, contact_service, profiles, profile, identity, set_quota):
        await set_quota(identity.subject_id, 9)

        await contact_service.create_contact(identity, ContactCreate(full_name="Tenth"))
        assert await _count(profiles, identity.subject_id) == 10

        with pytest.raises(QuotaExceededError):
            await contact_service.create_contact(identity, ContactCreate(full_name="Eleventh"))
        assert await _count(profiles, identity.subject_id) == 10

    @pytest.mark.asyncio
    async def test_paid_plan_uses_its_own_limit(self, contact_service, profiles, profile, identity, set_quota):
        await set_quota(identity.subject_id, 10, plan="pro")
        await contact_service.create_contact(identity, ContactCreate(full_name="Pro contact"))
        assert await _count(profiles, identity.subject_id) == 11

    @pytest.mark.asyncio
    async def test_concurrent_saves_at_limit_minus_one(self, contact_service, profiles, profile, identity, set_quota):
        """Exactly one of two racing saves succeeds; the other sees the quota."""
        await set_quota(identity.subject_id, 9)

        results = await asyncio.gather(
            contact_service.create_contact(identity, ContactCreate(full_name="A")),
            contact_service.create_contact(identity, ContactCreate(full_name="B")),
            return_exceptions=True,
        )

        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], QuotaExceededError)
        assert await _count(profiles, identity.subject_id) == 10
        assert len(await contact_service.list_contacts(identity)) == 1

    @pytest.mark.asyncio
    async def test_missing_profile_is_not_found(self, contact_service, identity):
        with pytest.raises(NotFoundError):
            await contact_service.create_contact(identity, ContactCreate(full_name="Nobody"))

    @pytest.mark.asyncio
    async def test_downgrade_keeps_contacts_but_blocks_new(
        self, contact_service, profiles, profile, identity, set_quota
    ):
        await set_quota(identity.subject_id, 50, plan="pro")
        await profiles.apply_subscription(identity.subject_id, "free")

        assert await _count(profiles, identity.subject_id) == 50
        with pytest.raises(QuotaExceededError):
            await contact_service.create_contact(identity, ContactCreate(full_name="Blocked"))


class TestAttachments:

    @pytest.mark.asyncio
    async def test_photo_is_stored_after_commit(self, contact_service, storage, profile, identity, sample_image_bytes):
        contact = await contact_service.create_contact(
            identity,
            ContactCreate(full_name="Jane Doe"),
            photo=Attachment(filename="card.png", content=sample_image_bytes),
        )
        key = storage.contact_image_key(identity.subject_id, contact.id, ".png")
        assert contact.image_url == storage.url_for(key)
        assert storage.resolve_path(key).read_bytes() == sample_image_bytes

        stored = await contact_service.get_contact(identity, contact.id)
        assert stored.image_url == contact.image_url

    @pytest.mark.asyncio
    async def test_upload_failure_keeps_contact(self, contact_service, storage, profiles, profile, identity, sample_image_bytes):
        with patch.object(storage, "upload", AsyncMock(side_effect=FileStorageError())):
            contact = await contact_service.create_contact(
                identity,
                ContactCreate(full_name="Jane Doe"),
                photo=Attachment(filename="card.png", content=sample_image_bytes),
            )

        assert contact.image_url is None
        stored = await contact_service.get_contact(identity, contact.id)
        assert stored.full_name == "Jane Doe"
        assert stored.image_url is None
        assert await _count(profiles, identity.subject_id) == 1

    @pytest.mark.asyncio
    async def test_invalid_photo_rejected_before_write(self, contact_service, profiles, profile, identity):
        with pytest.raises(ValidationError):
            await contact_service.create_contact(
                identity,
                ContactCreate(full_name="Jane Doe"),
                photo=Attachment(filename="card.exe", content=b"MZ\x90\x00"),
            )
        assert await _count(profiles, identity.subject_id) == 0

    @pytest.mark.asyncio
    async def test_external_image_url_is_kept(self, contact_service, profile, identity):
        contact = await contact_service.create_contact(
            identity, ContactCreate(full_name="Jane", image_url="https://cdn.example.com/card.jpg")
        )
        assert contact.image_url == "https://cdn.example.com/card.jpg"


class TestDelete:

    @pytest.mark.asyncio
    async def test_delete_decrements(self, contact_service, profiles, profile, identity):
        contact = await contact_service.create_contact(identity, ContactCreate(full_name="Jane"))
        await contact_service.delete_contact(identity, contact.id)

        assert await _count(profiles, identity.subject_id) == 0
        with pytest.raises(NotFoundError):
            await contact_service.get_contact(identity, contact.id)

    @pytest.mark.asyncio
    async def test_count_never_negative(self, contact_service, profiles, profile, identity, set_quota):
        contact = await contact_service.create_contact(identity, ContactCreate(full_name="Jane"))
        await set_quota(identity.subject_id, 0)  # drifted counter

        await contact_service.delete_contact(identity, contact.id)
        assert await _count(profiles, identity.subject_id) == 0

    @pytest.mark.asyncio
    async def test_delete_unknown_is_not_found(self, contact_service, profiles, profile, identity):
        with pytest.raises(NotFoundError):
            await contact_service.delete_contact(identity, uuid.uuid4())
        assert await _count(profiles, identity.subject_id) == 0

    @pytest.mark.asyncio
    async def test_delete_releases_photo(self, contact_service, storage, profile, identity, sample_image_bytes):
        contact = await contact_service.create_contact(
            identity,
            ContactCreate(full_name="Jane"),
            photo=Attachment(filename="card.png", content=sample_image_bytes),
        )
        path = storage.resolve_path(storage.key_from_url(contact.image_url))
        assert path.exists()

        await contact_service.delete_contact(identity, contact.id)
        assert not path.exists()

    @pytest.mark.asyncio
    async def test_blob_delete_failure_is_swallowed(
        self, contact_service, storage, profiles, profile, identity, sample_image_bytes
    ):
        contact = await contact_service.create_contact(
            identity,
            ContactCreate(full_name="Jane"),
            photo=Attachment(filename="card.png", content=sample_image_bytes),
        )
        with patch.object(storage, "delete", AsyncMock(side_effect=FileStorageError())):
            await contact_service.delete_contact(identity, contact.id)

        assert await _count(profiles, identity.subject_id) == 0

    @pytest.mark.asyncio
    async def test_external_image_is_not_deleted(self, contact_service, storage, profile, identity):
        contact = await contact_service.create_contact(
            identity, ContactCreate(full_name="Jane", image_url="https://cdn.example.com/card.jpg")
        )
        with patch.object(storage, "delete", AsyncMock()) as mock_delete:
            await contact_service.delete_contact(identity, contact.id)
        mock_delete.assert_not_called()


class TestOwnership:

    @pytest.mark.asyncio
    async def test_other_account_cannot_touch_contact(
        self, contact_service, profiles, profile, identity, other_identity
    ):
        await profiles.get_or_create_profile(other_identity)
        contact = await contact_service.create_contact(identity, ContactCreate(full_name="Jane"))

        with pytest.raises(NotFoundError):
            await contact_service.get_contact(other_identity, contact.id)
        with pytest.raises(NotFoundError):
            await contact_service.delete_contact(other_identity, contact.id)
        with pytest.raises(NotFoundError):
            await contact_service.update_contact(other_identity, contact.id, ContactUpdate(full_name="Mallory"))

        assert await _count(profiles, identity.subject_id) == 1
        assert await _count(profiles, other_identity.subject_id) == 0
        assert await contact_service.list_contacts(other_identity) == []


class TestUpdate:

    @pytest.mark.asyncio
    async def test_partial_update(self, contact_service, profiles, profile, identity):
        contact = await contact_service.create_contact(
            identity,
            ContactCreate(full_name="Jane", email_address="old@acme.com", company_name="Acme"),
        )
        changes = ContactUpdate.model_validate({"full_name": "Jane Doe", "email_address": None})

        updated = await contact_service.update_contact(identity, contact.id, changes)

        assert updated.full_name == "Jane Doe"
        assert updated.email_address is None
        assert updated.company_name == "Acme"
        assert await _count(profiles, identity.subject_id) == 1

    @pytest.mark.asyncio
    async def test_attach_and_replace_voice_note(self, contact_service, storage, profile, identity):
        contact = await contact_service.create_contact(identity, ContactCreate(full_name="Jane"))

        with patch.object(storage, "_detect_mime_type", return_value="audio/webm"):
            first = await contact_service.update_contact(
                identity, contact.id, ContactUpdate(),
                voice_note=Attachment(filename="memo.webm", content=b"\x1aE\xdf\xa3first"),
            )
            assert first.voice_note_url == storage.url_for(
                storage.voice_note_key(identity.subject_id, contact.id, ".webm")
            )

            second = await contact_service.update_contact(
                identity, contact.id, ContactUpdate(),
                voice_note=Attachment(filename="memo.ogg", content=b"OggS-second"),
            )

        # Detection is patched to webm, so the key (and file) is the same one
        path = storage.resolve_path(storage.key_from_url(second.voice_note_url))
        assert path.read_bytes() == b"OggS-second"

    @pytest.mark.asyncio
    async def test_clear_voice_note_removes_blob(self, contact_service, storage, profile, identity):
        contact = await contact_service.create_contact(identity, ContactCreate(full_name="Jane"))
        with patch.object(storage, "_detect_mime_type", return_value="audio/ogg"):
            with_note = await contact_service.update_contact(
                identity, contact.id, ContactUpdate(),
                voice_note=Attachment(filename="memo.ogg", content=b"OggS-data"),
            )
        path = storage.resolve_path(storage.key_from_url(with_note.voice_note_url))
        assert path.exists()

        cleared = await contact_service.update_contact(
            identity, contact.id, ContactUpdate.model_validate({"voice_note_url": None})
        )
        assert cleared.voice_note_url is None
        assert not path.exists()

    @pytest.mark.asyncio
    async def test_blank_change_clears_field(self, contact_service, identity, profile):
        contact = await contact_service.create_contact(identity, ContactCreate(full_name="Jane", job_title="CTO"))
        updated = await contact_service.update_contact(
            identity, contact.id, ContactUpdate.model_validate({"job_title": " "})
        )
        assert updated.job_title is None
        assert updated.full_name == "Jane"

    @pytest.mark.asyncio
    async def test_voice_note_removed_when_contact_vanishes(self, contact_service, storage, profile, identity):
        contact = await contact_service.create_contact(identity, ContactCreate(full_name="Jane"))
        key = storage.voice_note_key(identity.subject_id, contact.id, ".ogg")

        # Deleted by another request between the ownership check and the write
        await contact_service.delete_contact(identity, contact.id)
        with patch.object(contact_service, "get_contact", AsyncMock(return_value=contact)), \
                patch.object(storage, "_detect_mime_type", return_value="audio/ogg"):
            with pytest.raises(NotFoundError):
                await contact_service.update_contact(
                    identity, contact.id, ContactUpdate(),
                    voice_note=Attachment(filename="memo.ogg", content=b"OggS-late"),
                )

        assert not storage.resolve_path(key).exists()


class TestList:

    @pytest.mark.asyncio
    async def test_newest_first_and_search(self, contact_service, profile, identity):
        await contact_service.create_contact(identity, ContactCreate(full_name="Alice", company_name="Acme"))
        await contact_service.create_contact(identity, ContactCreate(full_name="Bob", job_title="Acme evangelist"))
        await contact_service.create_contact(identity, ContactCreate(full_name="Carol", company_name="Globex"))

        everyone = await contact_service.list_contacts(identity)
        assert [c.full_name for c in everyone] == ["Carol", "Bob", "Alice"]

        acme = await contact_service.list_contacts(identity, search="aCmE")
        assert sorted(c.full_name for c in acme) == ["Alice", "Bob"]

        assert await contact_service.list_contacts(identity, search="100%") == []
