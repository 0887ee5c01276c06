"""
CardSync Pro Backend — Contact Request/Response Schemas
========================================================

What:  Pydantic models for contact extraction, creation, editing, and listing.
Why:   Strict input validation, automatic serialization, and OpenAPI docs.

Design Decision:
    The six contact-info fields are modelled once, in `ContactInfo`, as an
    explicit optional-field record. "Not detected / not supplied" is None,
    never "" (whitespace-only values are turned into None). Partial edits are expressed by which fields were *set* on the
    model (pydantic's `model_fields_set`), so a client can clear a field by
    sending an explicit null and leave another untouched by omitting it.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from cardsync.models.contact import CONTACT_INFO_FIELDS


class ContactInfo(BaseModel):
    """
    What:  The extractable part of a contact.
    Who:   Returned by both extractors; embedded in create/update payloads.

    No length caps here: extraction copies card lines verbatim, however
    long. Column widths are enforced on ContactCreate / ContactUpdate.
    """
    full_name: Optional[str] = None
    job_title: Optional[str] = None
    company_name: Optional[str] = None
    phone_number: Optional[str] = None
    email_address: Optional[str] = None
    physical_address: Optional[str] = None

    @field_validator(*CONTACT_INFO_FIELDS)
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        # Whitespace-only means "not supplied"; anything else is kept verbatim
        if v is not None and not v.strip():
            return None
        return v

    def is_empty(self) -> bool:
        return all(getattr(self, name) is None for name in CONTACT_INFO_FIELDS)


class StoredContactInfo(ContactInfo):
    """ContactInfo limited to the widths of the contacts table columns."""
    full_name: Optional[str] = Field(default=None, max_length=255)
    job_title: Optional[str] = Field(default=None, max_length=255)
    company_name: Optional[str] = Field(default=None, max_length=255)
    phone_number: Optional[str] = Field(default=None, max_length=64)
    email_address: Optional[str] = Field(default=None, max_length=320)


class ContactCreate(StoredContactInfo):
    """
    What:  Body of POST /api/contacts (the `contact` form field, as JSON).

    image_url lets a client reference an externally hosted photo instead of
    uploading one. An uploaded photo takes precedence.
    """
    image_url: Optional[str] = Field(default=None, max_length=2048)

    @field_validator("image_url")
    @classmethod
    def validate_image_url(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.startswith(("http://", "https://")):
            raise ValueError("image_url must be an http(s) URL")
        return v


class ContactUpdate(StoredContactInfo):
    """
    What:  Body of PATCH /api/contacts/{id} (the `changes` form field).

    Only fields present in the payload are applied. voice_note_url may be
    set to null to detach a voice note.
    """
    voice_note_url: Optional[str] = Field(default=None, max_length=2048)

    @field_validator("voice_note_url")
    @classmethod
    def only_clear_voice_note(cls, v: Optional[str]) -> Optional[str]:
        # A new voice note arrives as a file upload, never as a URL
        if v is not None:
            raise ValueError("voice_note_url can only be cleared; upload a voice_note file to replace it")
        return v

    def apply_to(self, contact) -> List[str]:
        """Write the set fields onto an ORM Contact; returns the field names changed."""
        updatable = set(CONTACT_INFO_FIELDS) | {"voice_note_url"}
        changed = []
        for name in sorted(self.model_fields_set & updatable):
            setattr(contact, name, getattr(self, name))
            changed.append(name)
        return changed


class ContactResponse(ContactInfo):
    """Full representation of a saved contact."""
    id: uuid.UUID
    user_id: str
    image_url: Optional[str] = None
    voice_note_url: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class ContactListResponse(BaseModel):
    contacts: List[ContactResponse]
    total_count: int = Field(description="Number of contacts returned")


class ExtractTextRequest(BaseModel):
    """Body of POST /api/extract/text: raw recognized text from a card."""
    text: str = Field(max_length=20_000, description="Newline-delimited OCR text")


class ExtractionResponse(BaseModel):
    """
    What:  Suggested contact fields for the user to confirm.
    Why:   Extraction never saves anything; the client edits these and then
           calls POST /api/contacts.
    """
    contact_info: ContactInfo
    source: str = Field(description="'gemini' or 'heuristic'")
