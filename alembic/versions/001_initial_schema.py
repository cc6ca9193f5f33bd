"""Initial schema: users, catalogue, carts, entitlements, videos.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18
"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

revision: str = "001_initial_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    """Create all tables."""
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("password_hash", sa.String(256), nullable=True),
        sa.Column("first_name", sa.String(100), nullable=True),
        sa.Column("last_name", sa.String(100), nullable=True),
        sa.Column("role", sa.String(16), server_default="USER", nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )
    op.execute("ALTER TABLE users ADD CONSTRAINT ck_users_role CHECK (role IN ('ADMIN', 'SUBADMIN', 'USER'))")

    op.create_table(
        "categories",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("slug", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("image", sa.Text(), nullable=True),
        sa.Column("price_ars", sa.Numeric(12, 2), server_default="0", nullable=False),
        sa.Column("price_usd", sa.Numeric(12, 2), server_default="0", nullable=False),
        sa.Column("is_free", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_categories"),
        sa.UniqueConstraint("slug", name="uq_categories_slug"),
    )

    # --- Cart ---
    op.create_table(
        "carts",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(36), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_carts"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_carts_user_id_users", ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", name="uq_carts_user_id"),
    )
    op.create_table(
        "cart_items",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("cart_id", sa.String(36), nullable=False),
        sa.Column("category_id", sa.String(36), nullable=False),
        sa.Column("price_ars", sa.Numeric(12, 2), nullable=False),
        sa.Column("price_usd", sa.Numeric(12, 2), nullable=False),
        sa.Column("added_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_cart_items"),
        sa.ForeignKeyConstraint(["cart_id"], ["carts.id"], name="fk_cart_items_cart_id_carts", ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["category_id"], ["categories.id"], name="fk_cart_items_category_id_categories", ondelete="CASCADE"
        ),
        sa.UniqueConstraint("cart_id", "category_id", name="uq_cart_items_cart_category"),
    )

    # --- Entitlements ---
    op.create_table(
        "category_purchases",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("category_id", sa.String(36), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("payment_method", sa.String(64), nullable=True),
        sa.Column("transaction_id", sa.String(64), nullable=True),
        sa.Column("payment_status", sa.String(16), server_default="completed", nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_category_purchases"),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"], name="fk_category_purchases_user_id_users", ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(
            ["category_id"],
            ["categories.id"],
            name="fk_category_purchases_category_id_categories",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint("user_id", "category_id", name="uq_category_purchases_user_category"),
    )
    op.create_index("ix_category_purchases_transaction_id", "category_purchases", ["transaction_id"])
    # Expiry sweep and stats scan active rows by expiry
    op.create_index(
        "ix_category_purchases_active_expires",
        "category_purchases",
        ["expires_at"],
        postgresql_where=sa.text("is_active"),
    )

    # --- Videos ---
    op.create_table(
        "videos",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("vimeo_id", sa.String(32), nullable=False),
        sa.Column("vimeo_url", sa.Text(), nullable=True),
        sa.Column("thumbnail", sa.Text(), nullable=True),
        sa.Column("duration", sa.Integer(), nullable=True),
        sa.Column("category_id", sa.String(36), nullable=False),
        sa.Column("order", sa.Integer(), server_default="0", nullable=False),
        sa.Column("is_published", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("syllabus", sa.Text(), nullable=True),
        sa.Column("downloads", sa.JSON(), nullable=True),
        sa.Column("meta_title", sa.String(300), nullable=True),
        sa.Column("meta_description", sa.Text(), nullable=True),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_videos"),
        sa.ForeignKeyConstraint(
            ["category_id"], ["categories.id"], name="fk_videos_category_id_categories", ondelete="CASCADE"
        ),
    )
    op.create_index("ix_videos_vimeo_id", "videos", ["vimeo_id"])
    op.create_index("ix_videos_category_id", "videos", ["category_id"])

    op.create_table(
        "video_views",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("video_id", sa.String(36), nullable=False),
        sa.Column("watched_seconds", sa.Integer(), server_default="0", nullable=False),
        sa.Column("total_seconds", sa.Integer(), nullable=True),
        sa.Column("progress", sa.Integer(), server_default="0", nullable=False),
        sa.Column("completed", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("last_watched_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_video_views"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_video_views_user_id_users", ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["video_id"], ["videos.id"], name="fk_video_views_video_id_videos", ondelete="CASCADE"
        ),
        sa.UniqueConstraint("user_id", "video_id", name="uq_video_views_user_video"),
    )


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("video_views")
    op.drop_index("ix_videos_category_id", table_name="videos")
    op.drop_index("ix_videos_vimeo_id", table_name="videos")
    op.drop_table("videos")
    op.drop_index("ix_category_purchases_active_expires", table_name="category_purchases")
    op.drop_index("ix_category_purchases_transaction_id", table_name="category_purchases")
    op.drop_table("category_purchases")
    op.drop_table("cart_items")
    op.drop_table("carts")
    op.drop_table("categories")
    op.drop_table("users")
