"""Initial schema: users, programs, enrollments, day states, blog, newsletter

Revision ID: 3f9a1c2b7d10
Revises:
Create Date: 2026-03-01 00:00:00.000000+00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "3f9a1c2b7d10"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    """Upgrade database schema."""

    # ------------------------------------------------------------------
    # 1. Accounts
    # ------------------------------------------------------------------
    op.create_table(
        "users",
        sa.Column("user_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("role", sa.String(16), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=True),
        sa.Column("password_changed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("avatar_url", sa.String(500), nullable=True),
        sa.Column("theme", sa.String(16), nullable=False),
        sa.Column("marketing", sa.Boolean(), nullable=False),
        sa.Column("product_updates", sa.Boolean(), nullable=False),
        sa.Column("suspended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("limits", postgresql.JSONB(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"])

    # ------------------------------------------------------------------
    # 2. Programs and learner progress
    # ------------------------------------------------------------------
    op.create_table(
        "programs",
        sa.Column("program_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("slug", sa.String(120), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("level", sa.String(16), nullable=True),
        sa.Column("cover_url", sa.String(500), nullable=True),
        sa.Column("duration_days", sa.Integer(), nullable=True),
        sa.Column("est_minutes_per_day", sa.Integer(), nullable=True),
        sa.Column("units_count", sa.Integer(), nullable=False),
        sa.Column("price_cents", sa.Integer(), nullable=True),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("marketing", postgresql.JSONB(), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_programs_slug", "programs", ["slug"], unique=True)
    op.create_index("ix_programs_status", "programs", ["status"])

    op.create_table(
        "enrollments",
        sa.Column("enrollment_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.user_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("program_slug", sa.String(120), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("current_day", sa.Integer(), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("intro_engaged", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "program_slug", name="uq_enrollments_user_program"),
        sa.CheckConstraint("current_day BETWEEN 1 AND 365", name="ck_enrollments_current_day"),
    )
    op.create_index("ix_enrollments_user_id", "enrollments", ["user_id"])
    op.create_index("ix_enrollments_program_slug", "enrollments", ["program_slug"])

    op.create_table(
        "day_states",
        sa.Column("day_state_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.user_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("program_slug", sa.String(120), nullable=False),
        sa.Column("day", sa.Integer(), nullable=False),
        sa.Column("data", postgresql.JSONB(), nullable=True),
        sa.Column("sliders", postgresql.JSONB(), nullable=True),
        sa.Column("checkout", postgresql.JSONB(), nullable=True),
        sa.Column("practiced", sa.Boolean(), nullable=False),
        sa.Column("mantra3x", sa.Boolean(), nullable=False),
        sa.Column("completed", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "program_slug", "day", name="uq_day_states_user_program_day"),
        sa.CheckConstraint("day >= 1", name="ck_day_states_day"),
    )
    op.create_index("ix_day_states_user_id", "day_states", ["user_id"])

    # ------------------------------------------------------------------
    # 3. Blog
    # ------------------------------------------------------------------
    op.create_table(
        "blog_categories",
        sa.Column("category_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("slug", sa.String(80), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("color", sa.String(7), nullable=True),
        sa.Column("icon", sa.String(32), nullable=True),
        sa.Column("image_path", sa.String(500), nullable=True),
        sa.Column("image_alt", sa.String(255), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_blog_categories_slug", "blog_categories", ["slug"], unique=True)

    op.create_table(
        "blog_posts",
        sa.Column("post_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(80), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("summary", sa.Text(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("cover_path", sa.String(500), nullable=True),
        sa.Column("cover_alt", sa.String(255), nullable=True),
        sa.Column("category_slug", sa.String(80), nullable=True),
        sa.Column("tags", postgresql.ARRAY(sa.String(64)), nullable=False),
        sa.Column("seo_title", sa.String(255), nullable=True),
        sa.Column("seo_description", sa.String(500), nullable=True),
        sa.Column("canonical_url", sa.String(500), nullable=True),
        sa.Column("is_featured", sa.Boolean(), nullable=False),
        sa.Column("reading_time_min", sa.Integer(), nullable=False),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("author_email", sa.String(255), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_blog_posts_slug", "blog_posts", ["slug"])
    op.create_index("ix_blog_posts_status", "blog_posts", ["status"])
    op.create_index("ix_blog_posts_category_slug", "blog_posts", ["category_slug"])
    op.create_index("ix_blog_posts_published_at", "blog_posts", ["published_at"])
    op.create_index("ix_blog_posts_deleted_at", "blog_posts", ["deleted_at"])
    # Archived posts may reuse a slug; live ones may not
    op.create_index(
        "uq_blog_posts_slug_live",
        "blog_posts",
        ["slug"],
        unique=True,
        postgresql_where=sa.text("deleted_at IS NULL"),
    )

    # ------------------------------------------------------------------
    # 4. Newsletter
    # ------------------------------------------------------------------
    op.create_table(
        "newsletter_subscribers",
        sa.Column("subscriber_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("source", sa.String(64), nullable=True),
        sa.Column("tags", postgresql.ARRAY(sa.String(64)), nullable=False),
        sa.Column("confirm_token", sa.String(64), nullable=True),
        sa.Column("unsub_token", sa.String(64), nullable=True),
        sa.Column("consent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("unsubscribed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("meta", postgresql.JSONB(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_newsletter_subscribers_email", "newsletter_subscribers", ["email"], unique=True)
    op.create_index("ix_newsletter_subscribers_status", "newsletter_subscribers", ["status"])
    op.create_index("ix_newsletter_subscribers_confirm_token", "newsletter_subscribers", ["confirm_token"])
    op.create_index("ix_newsletter_subscribers_unsub_token", "newsletter_subscribers", ["unsub_token"])


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_table("newsletter_subscribers")
    op.drop_index("uq_blog_posts_slug_live", table_name="blog_posts")
    op.drop_table("blog_posts")
    op.drop_table("blog_categories")
    op.drop_table("day_states")
    op.drop_table("enrollments")
    op.drop_table("programs")
    op.drop_table("users")
