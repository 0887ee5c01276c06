"""
CardSync Pro Backend — Contact SQLAlchemy Model
================================================

What:  ORM model representing the `contacts` table.
Why:   Maps saved business-card contacts to database rows.
Who:   ContactService (create/update/delete/list), Alembic (migrations).

Table Design Rationale:
    - UUID primary key: Non-sequential, so contact ids cannot be enumerated
    - user_id: Owner reference; every query filters on it
    - Six nullable contact fields: a card rarely carries all of them, and
      "not detected" is stored as NULL rather than an empty string
    - image_url / voice_note_url: References to blob-store objects (or an
      external URL for images); filled in after the create transaction
    - created_at: UTC with timezone, assigned by the server, never updated

    Index on (user_id, created_at DESC):
        Serves the only list query: "my contacts, newest first"
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from cardsync.database import Base

# Contact-info columns, in export/display order
CONTACT_INFO_FIELDS = (
    "full_name",
    "job_title",
    "company_name",
    "phone_number",
    "email_address",
    "physical_address",
)


class Contact(Base):
    """
    A saved business-card contact.

    Lifecycle:
        1. Created by ContactService.create_contact (quota-gated)
        2. Attachment URLs written back after the create commits
        3. Fields edited by ContactService.update_contact
        4. Deleted by ContactService.delete_contact, releasing blobs
    """

    __tablename__ = "contacts"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    user_id: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("user_profiles.id", ondelete="CASCADE"),
        nullable=False,
        comment="Owning profile (identity subject id)",
    )

    # ── Contact info ──────────────────────────────────────────────────────
    full_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    job_title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    company_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone_number: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    email_address: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    physical_address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # ── Attachments ───────────────────────────────────────────────────────
    image_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    voice_note_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    __table_args__ = (
        Index("idx_contacts_user_created_at", "user_id", created_at.desc()),
    )

    def __repr__(self) -> str:
        return f"<Contact(id={self.id}, user_id='{self.user_id}', full_name='{self.full_name}')>"
