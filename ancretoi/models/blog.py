"""
Blog Models
===========

SQLAlchemy models for blog categories and posts.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
import uuid

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text, text
from sqlalchemy.dialects.postgresql import ARRAY, UUID
from sqlalchemy.orm import Mapped, mapped_column

from ancretoi.db.base import Base, TimestampMixin, iso


class PostStatus(str, Enum):
    """Publication status of a post."""
    DRAFT = "draft"
    PUBLISHED = "published"


class Category(Base, TimestampMixin):
    """
    Blog category.

    Categories are hard-deleted. Posts reference them by slug only, so
    removing a category leaves its posts pointing at a missing slug.
    """

    __tablename__ = "blog_categories"

    category_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    slug: Mapped[str] = mapped_column(String(80), unique=True, nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    color: Mapped[Optional[str]] = mapped_column(String(7), nullable=True)
    icon: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    image_path: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    image_alt: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    def to_api_dict(self, posts_using: Optional[int] = None) -> dict:
        data = {
            "id": str(self.category_id) if self.category_id else None,
            "name": self.name,
            "slug": self.slug,
            "description": self.description or "",
            "color": self.color,
            "icon": self.icon,
            "imagePath": self.image_path,
            "imageAlt": self.image_alt or "",
            "createdAt": iso(getattr(self, "created_at", None)),
            "updatedAt": iso(getattr(self, "updated_at", None)),
        }
        if posts_using is not None:
            data["postsUsing"] = posts_using
        return data


class Post(Base, TimestampMixin):
    """
    Blog article.

    Soft-deleted through ``deleted_at``; the slug is unique among live posts.
    """

    __tablename__ = "blog_posts"
    __table_args__ = (
        Index(
            "uq_blog_posts_slug_live",
            "slug",
            unique=True,
            postgresql_where=text("deleted_at IS NULL"),
        ),
    )

    post_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(80), nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=PostStatus.DRAFT.value,
        index=True,
    )
    summary: Mapped[str] = mapped_column(Text, nullable=False, default="")
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    cover_path: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    cover_alt: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Plain reference to blog_categories.slug
    category_slug: Mapped[Optional[str]] = mapped_column(String(80), nullable=True, index=True)
    tags: Mapped[list[str]] = mapped_column(ARRAY(String(64)), nullable=False, default=list)

    seo_title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    seo_description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    canonical_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    is_featured: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reading_time_min: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    published_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True,
    )
    author_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True,
    )

    def to_api_dict(self, category_name: Optional[str] = None) -> dict:
        """Serialize to API response format."""
        return {
            "id": str(self.post_id) if self.post_id else None,
            "title": self.title,
            "slug": self.slug,
            "status": self.status or PostStatus.DRAFT.value,
            "summary": self.summary or "",
            "content": self.content or "",
            "coverPath": self.cover_path,
            "coverAlt": self.cover_alt or "",
            "category": self.category_slug,
            "categoryName": category_name,
            "tags": list(self.tags or []),
            "seoTitle": self.seo_title or "",
            "seoDescription": self.seo_description or "",
            "canonicalUrl": self.canonical_url or "",
            "isFeatured": bool(self.is_featured),
            "readingTimeMin": self.reading_time_min or 1,
            "publishedAt": iso(self.published_at),
            "authorEmail": self.author_email,
            "deletedAt": iso(self.deleted_at),
            "createdAt": iso(getattr(self, "created_at", None)),
            "updatedAt": iso(getattr(self, "updated_at", None)),
        }
