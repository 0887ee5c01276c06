"""Create user_profiles and contacts tables

Revision ID: 001
Revises: None
Create Date: 2026-10-19 00:00:00.000000+00:00

What:  Creates the `user_profiles` table (plan + quota counter + billing
       references) and the `contacts` table it owns.
How:   PostgreSQL UUID primary key for contacts, TIMESTAMP WITH TIME ZONE,
       a CHECK keeping contact_count non-negative, and ON DELETE CASCADE
       from profiles to contacts.

Rollback: downgrade() drops both tables (destructive, all data lost).
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "user_profiles",

        # Identity provider subject id, assigned by Firebase
        sa.Column(
            "id",
            sa.String(128),
            nullable=False,
            comment="Identity provider subject id",
        ),
        sa.Column("email", sa.String(320), nullable=False, server_default=sa.text("''")),
        sa.Column(
            "subscription_plan",
            sa.String(20),
            nullable=False,
            server_default=sa.text("'free'"),
            comment="free, pro, business",
        ),
        sa.Column(
            "contact_count",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("0"),
            comment="Number of contacts owned; kept in step by the quota gate",
        ),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column("billing_customer_id", sa.String(255), nullable=True),
        sa.Column("billing_subscription_id", sa.String(255), nullable=True),
        sa.Column("billing_subscription_status", sa.String(50), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("contact_count >= 0", name="ck_user_profiles_contact_count"),
    )

    # Webhooks look profiles up by Stripe customer and subscription
    op.create_index(
        "ix_user_profiles_billing_customer_id", "user_profiles", ["billing_customer_id"]
    )
    op.create_index(
        "ix_user_profiles_billing_subscription_id", "user_profiles", ["billing_subscription_id"]
    )

    op.create_table(
        "contacts",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column(
            "user_id",
            sa.String(128),
            sa.ForeignKey("user_profiles.id", ondelete="CASCADE"),
            nullable=False,
            comment="Owning profile (identity subject id)",
        ),
        sa.Column("full_name", sa.String(255), nullable=True),
        sa.Column("job_title", sa.String(255), nullable=True),
        sa.Column("company_name", sa.String(255), nullable=True),
        sa.Column("phone_number", sa.String(64), nullable=True),
        sa.Column("email_address", sa.String(320), nullable=True),
        sa.Column("physical_address", sa.Text(), nullable=True),

        # Blob-store keys rendered as URLs, or an external image URL
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("voice_note_url", sa.Text(), nullable=True),

        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )

    # The list query is always "this user's contacts, newest first"
    op.create_index(
        "idx_contacts_user_created_at",
        "contacts",
        ["user_id", sa.text("created_at DESC")],
    )


def downgrade() -> None:
    """
    Drop both tables.

    WARNING: destructive. Contacts go first because they reference profiles.
    """
    op.drop_index("idx_contacts_user_created_at", table_name="contacts")
    op.drop_table("contacts")
    op.drop_index("ix_user_profiles_billing_subscription_id", table_name="user_profiles")
    op.drop_index("ix_user_profiles_billing_customer_id", table_name="user_profiles")
    op.drop_table("user_profiles")
