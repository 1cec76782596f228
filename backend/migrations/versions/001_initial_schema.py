"""Initial schema (4 tables matching db.py models).

Revision ID: 001
Revises: (none)
Create Date: 2026-10-18
"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # --- shops ---
    op.create_table(
        "shops",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("shop_domain", sa.String(255), nullable=False, unique=True),
        sa.Column("access_token", sa.Text(), nullable=False, server_default=""),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )

    # --- shop_settings ---
    op.create_table(
        "shop_settings",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "shop_id",
            sa.String(64),
            sa.ForeignKey("shops.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column(
            "default_tone", sa.String(20), server_default="professional", nullable=False
        ),
        sa.Column("include_meta", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("product_desc_template", sa.Text(), nullable=True),
        sa.Column("meta_title_template", sa.Text(), nullable=True),
        sa.Column("meta_desc_template", sa.Text(), nullable=True),
        sa.Column(
            "visual_analysis_depth", sa.String(20), server_default="standard", nullable=False
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )

    # --- credit_ledgers ---
    op.create_table(
        "credit_ledgers",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "shop_id",
            sa.String(64),
            sa.ForeignKey("shops.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("plan", sa.String(20), server_default="FREE", nullable=False),
        sa.Column("available", sa.Integer(), server_default="0", nullable=False),
        sa.Column("total", sa.Integer(), server_default="0", nullable=False),
        sa.Column("reset_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_granted_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("available >= 0", name="ck_credit_ledgers_available_nonneg"),
    )

    # --- generation_history ---
    op.create_table(
        "generation_history",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "shop_id",
            sa.String(64),
            sa.ForeignKey("shops.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("item_id", sa.String(255), nullable=False),
        sa.Column("item_title", sa.Text(), server_default="", nullable=False),
        sa.Column("original_description", sa.Text(), nullable=True),
        sa.Column("generated_description", sa.Text(), nullable=True),
        sa.Column("image_analysis", JSONB(), nullable=True),
        sa.Column("generated_meta", JSONB(), nullable=True),
        sa.Column("credits_used", sa.Integer(), server_default="0", nullable=False),
        sa.Column("status", sa.String(20), server_default="pending", nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "idx_generation_history_shop_status", "generation_history", ["shop_id", "status"],
    )
    op.create_index(
        "idx_generation_history_shop_created", "generation_history", ["shop_id", "created_at"],
    )


def downgrade() -> None:
    op.drop_table("generation_history")
    op.drop_table("credit_ledgers")
    op.drop_table("shop_settings")
    op.drop_table("shops")
