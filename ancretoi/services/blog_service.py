"""
Blog Service
============

Categories and posts: admin CRUD, archives, and the public read side.

Posts reference their category by slug only. Deleting a category never
touches its posts; the admin is told how many posts still use it.
"""

import logging
from typing import Any, Optional
import uuid

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ancretoi.core.errors import ConflictError, ErrorCodes, NotFoundError, ValidationError
from ancretoi.models.blog import Category, Post, PostStatus
from ancretoi.schemas.blog import CategoryCreate, CategoryUpdate, PostCreate, PostUpdate
from ancretoi.services.cache import CacheInvalidator
from ancretoi.utils.helpers import (
    LIKE_ESCAPE,
    like_escape,
    parse_tags,
    reading_time_min,
    slugify,
    suffixed_slug,
    utc_now,
)
from ancretoi.utils.validators import normalize_hex_color, validate_local_path

logger = logging.getLogger(__name__)

CATEGORY_IN_USE_WARNING = (
    "Cette catégorie est encore utilisée par des articles. "
    "Ils devront être re-catégorisés manuellement."
)


def _as_uuid(value: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(value)
    except (TypeError, ValueError):
        return None


class BlogService:
    """Service for blog categories and posts."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # Categories
    # =========================================================================

    async def _posts_using(self, slug: str) -> int:
        result = await self.db.execute(
            select(func.count()).select_from(Post).where(
                Post.category_slug == slug,
                Post.deleted_at.is_(None),
            )
        )
        return int(result.scalar_one() or 0)

    async def _category_usage(self) -> dict[str, int]:
        result = await self.db.execute(
            select(Post.category_slug, func.count())
            .where(Post.deleted_at.is_(None), Post.category_slug.is_not(None))
            .group_by(Post.category_slug)
        )
        return {slug: int(count) for slug, count in result.all()}

    async def get_category(self, slug: str) -> Category:
        result = await self.db.execute(
            select(Category).where(Category.slug == slug.strip().lower())
        )
        category = result.scalar_one_or_none()
        if category is None:
            raise NotFoundError(code=ErrorCodes.CATEGORY_NOT_FOUND, message="Catégorie introuvable.")
        return category

    async def list_categories(self) -> list[dict]:
        """All categories with the number of live posts using each one."""
        result = await self.db.execute(select(Category).order_by(Category.name))
        usage = await self._category_usage()
        return [c.to_api_dict(posts_using=usage.get(c.slug, 0)) for c in result.scalars().all()]

    async def category_names(self) -> dict[str, str]:
        result = await self.db.execute(select(Category.slug, Category.name))
        return {slug: name for slug, name in result.all()}

    async def create_category(self, data: CategoryCreate) -> Category:
        """
        Create a category.

        Raises:
            ValidationError: missing name, bad colour or non-local image path
            ConflictError: slug already taken
        """
        name = (data.name or "").strip()
        if not name:
            raise ValidationError(message="Nom requis.", field="name")

        slug = slugify((data.slug or "").strip() or name)
        if not slug:
            raise ValidationError(message="Slug invalide.", field="slug")

        color = normalize_hex_color(data.color)
        image_path = validate_local_path(data.image_path)

        exists = await self.db.execute(select(Category.category_id).where(Category.slug == slug))
        if exists.scalar_one_or_none() is not None:
            raise ConflictError(code=ErrorCodes.CATEGORY_SLUG_EXISTS, message="Ce slug existe déjà.")

        category = Category(
            name=name,
            slug=slug,
            description=(data.description or "").strip(),
            color=color,
            icon=(data.icon or "").strip() or None,
            image_path=image_path,
            image_alt=(data.image_alt or "").strip() or None,
        )
        self.db.add(category)
        await self.db.flush()
        await CacheInvalidator.on_category_change()
        logger.info("Created category %s", slug)
        return category

    async def update_category(self, slug: str, data: CategoryUpdate) -> Category:
        category = await self.get_category(slug)
        fields = data.model_dump(exclude_unset=True)

        if "name" in fields:
            name = (data.name or "").strip()
            if not name:
                raise ValidationError(message="Nom requis.", field="name")
            category.name = name
        if "slug" in fields and data.slug:
            next_slug = slugify(data.slug)
            if next_slug != category.slug:
                taken = await self.db.execute(select(Category.category_id).where(Category.slug == next_slug))
                if taken.scalar_one_or_none() is not None:
                    raise ConflictError(code=ErrorCodes.CATEGORY_SLUG_EXISTS, message="Ce slug existe déjà.")
                category.slug = next_slug
        if "description" in fields:
            category.description = (data.description or "").strip()
        if "color" in fields:
            category.color = normalize_hex_color(data.color)
        if "icon" in fields:
            category.icon = (data.icon or "").strip() or None
        if "image_path" in fields:
            category.image_path = validate_local_path(data.image_path)
        if "image_alt" in fields:
            category.image_alt = (data.image_alt or "").strip() or None

        await self.db.flush()
        await CacheInvalidator.on_category_change()
        return category

    async def preview_category_delete(self, slug: str) -> dict:
        """The category and how many live posts still reference it."""
        category = await self.get_category(slug)
        return category.to_api_dict(posts_using=await self._posts_using(category.slug))

    async def delete_category(self, slug: str) -> dict:
        """
        Hard-delete a category.

        Posts keep their ``category_slug``; the result carries ``postsUsing``
        and a warning when some still point at it.
        """
        category = await self.get_category(slug)
        posts_using = await self._posts_using(category.slug)
        await self.db.execute(delete(Category).where(Category.category_id == category.category_id))
        await CacheInvalidator.on_category_change()
        logger.info("Deleted category %s (%d posts still reference it)", category.slug, posts_using)

        out: dict[str, Any] = {"deleted": 1, "slug": category.slug, "postsUsing": posts_using}
        if posts_using:
            out["warning"] = CATEGORY_IN_USE_WARNING
        return out

    # =========================================================================
    # Posts
    # =========================================================================

    async def _live_slugs_like(self, base: str, exclude: Optional[uuid.UUID] = None) -> set[str]:
        stmt = select(Post.slug).where(
            Post.deleted_at.is_(None),
            Post.slug.like(f"{like_escape(base)}%", escape=LIKE_ESCAPE),
        )
        if exclude is not None:
            stmt = stmt.where(Post.post_id != exclude)
        result = await self.db.execute(stmt)
        return {row[0] for row in result.all()}

    async def available_slug(self, base: str, exclude: Optional[uuid.UUID] = None) -> str:
        """``base`` or the first free ``base-N`` among live posts."""
        return suffixed_slug(base, await self._live_slugs_like(base, exclude))

    async def suggest_slug(self, text: str) -> str:
        base = slugify(text)
        if not base:
            raise ValidationError(message="Paramètre q requis.", field="q")
        return await self.available_slug(base)

    async def _existing_category(self, slug: Optional[str]) -> Optional[str]:
        if not slug or not slug.strip():
            return None
        result = await self.db.execute(
            select(Category.slug).where(Category.slug == slug.strip().lower())
        )
        return result.scalar_one_or_none()

    async def list_posts(self, include_drafts: bool = True) -> list[dict]:
        """Live posts, most recently updated first, with category names."""
        stmt = select(Post).where(Post.deleted_at.is_(None))
        if not include_drafts:
            stmt = stmt.where(Post.status == PostStatus.PUBLISHED.value)
        stmt = stmt.order_by(Post.updated_at.desc())
        result = await self.db.execute(stmt)
        names = await self.category_names()
        return [p.to_api_dict(category_name=names.get(p.category_slug or "")) for p in result.scalars().all()]

    async def get_post(self, slug: str, published_only: bool = False) -> Post:
        stmt = select(Post).where(Post.slug == slug, Post.deleted_at.is_(None))
        if published_only:
            stmt = stmt.where(Post.status == PostStatus.PUBLISHED.value)
        result = await self.db.execute(stmt)
        post = result.scalar_one_or_none()
        if post is None:
            raise NotFoundError(code=ErrorCodes.POST_NOT_FOUND, message="Article introuvable.")
        return post

    async def create_post(self, data: PostCreate, author_email: str) -> Post:
        """
        Create a post.

        The slug comes from ``slug`` or the title, suffixed ``-2``, ``-3``...
        until free; ``published_at`` is stamped when created published.
        """
        title = (data.title or "").strip()
        if not title:
            raise ValidationError(message="Titre requis.", field="title")

        base = slugify(data.slug or title)
        if not base:
            raise ValidationError(message="Slug invalide.", field="slug")

        post = Post(
            title=title,
            slug=await self.available_slug(base),
            status=data.status,
            summary=data.summary or "",
            content=data.content or "",
            cover_path=validate_local_path(data.cover_path, field_name="coverPath"),
            cover_alt=data.cover_alt or "",
            category_slug=await self._existing_category(data.category),
            tags=parse_tags(data.tags),
            seo_title=data.seo_title or title,
            seo_description=data.seo_description or data.summary or "",
            canonical_url=data.canonical_url or "",
            is_featured=bool(data.is_featured),
            reading_time_min=reading_time_min(data.content),
            published_at=utc_now() if data.status == PostStatus.PUBLISHED.value else None,
            author_email=author_email,
        )
        self.db.add(post)
        await self.db.flush()
        await CacheInvalidator.on_post_change(post.slug)
        logger.info("Created post %s", post.slug)
        return post

    async def update_post(self, slug: str, data: PostUpdate) -> Post:
        """
        Update a live post.

        The slug is recomputed when title or slug change. Returning to draft
        clears ``published_at``; publishing stamps it once.
        """
        post = await self.get_post(slug)
        fields = data.model_dump(exclude_unset=True)
        old_slug = post.slug

        if data.slug or data.title:
            base = slugify(data.slug or data.title or post.title)
            if base and base != post.slug:
                post.slug = await self.available_slug(base, exclude=post.post_id)

        if data.title is not None:
            if not data.title.strip():
                raise ValidationError(message="Titre requis.", field="title")
            post.title = data.title.strip()
        if data.status is not None:
            post.status = data.status
        if data.summary is not None:
            post.summary = data.summary
        if data.content is not None:
            post.content = data.content
            post.reading_time_min = reading_time_min(data.content)
        if "cover_path" in fields:
            post.cover_path = validate_local_path(data.cover_path, field_name="coverPath")
        if data.cover_alt is not None:
            post.cover_alt = data.cover_alt
        if "category" in fields:
            post.category_slug = await self._existing_category(data.category)
        if "tags" in fields:
            post.tags = parse_tags(data.tags)

        post.seo_title = data.seo_title if data.seo_title is not None else (post.seo_title or post.title)
        if data.seo_description is not None:
            post.seo_description = data.seo_description
        elif not post.seo_description:
            post.seo_description = post.summary or ""
        if data.canonical_url is not None:
            post.canonical_url = data.canonical_url
        if data.is_featured is not None:
            post.is_featured = data.is_featured

        if data.status == PostStatus.PUBLISHED.value and post.published_at is None:
            post.published_at = utc_now()
        if data.status == PostStatus.DRAFT.value:
            post.published_at = None

        await self.db.flush()
        await CacheInvalidator.on_post_change(old_slug)
        if post.slug != old_slug:
            await CacheInvalidator.on_post_change(post.slug)
        return post

    async def soft_delete_post(self, slug: str) -> dict:
        result = await self.db.execute(
            select(Post).where(Post.slug == slug, Post.deleted_at.is_(None))
        )
        post = result.scalar_one_or_none()
        if post is None:
            return {"deleted": 0}
        post.deleted_at = utc_now()
        await self.db.flush()
        await CacheInvalidator.on_post_change(slug)
        return {"deleted": 1}

    # =========================================================================
    # Archives
    # =========================================================================

    async def list_archived_posts(self) -> list[dict]:
        result = await self.db.execute(
            select(Post).where(Post.deleted_at.is_not(None)).order_by(Post.deleted_at.desc())
        )
        names = await self.category_names()
        return [p.to_api_dict(category_name=names.get(p.category_slug or "")) for p in result.scalars().all()]

    async def _find_archived(self, id_or_slug: str) -> Optional[Post]:
        raw = (id_or_slug or "").strip()
        if not raw:
            return None
        post_id = _as_uuid(raw)
        if post_id is not None:
            stmt = select(Post).where(Post.post_id == post_id, Post.deleted_at.is_not(None))
            result = await self.db.execute(stmt)
            return result.scalars().first()

        for candidate in dict.fromkeys((slugify(raw), raw)):
            stmt = (
                select(Post)
                .where(Post.slug == candidate, Post.deleted_at.is_not(None))
                .order_by(Post.deleted_at.desc())
            )
            result = await self.db.execute(stmt)
            post = result.scalars().first()
            if post is not None:
                return post
        return None

    async def get_archived_post(self, id_or_slug: str) -> Post:
        post = await self._find_archived(id_or_slug)
        if post is None:
            raise NotFoundError(code=ErrorCodes.POST_NOT_FOUND, message="Introuvable (ou pas archivé).")
        return post

    async def restore_post(self, id_or_slug: str) -> dict:
        """Bring an archived post back, suffixing its slug if a live post took it."""
        post = await self.get_archived_post(id_or_slug)
        desired = post.slug or slugify(post.title or "article")
        next_slug = await self.available_slug(desired, exclude=post.post_id)

        post.deleted_at = None
        post.slug = next_slug
        await self.db.flush()
        await CacheInvalidator.on_post_change(next_slug)
        logger.info("Restored post %s", next_slug)
        return {"restored": True, "slug": next_slug}

    async def hard_delete_post(self, id_or_slug: str) -> dict:
        """Permanently delete an archived post. Live posts are refused."""
        post = await self._find_archived(id_or_slug)
        if post is None:
            live = await self.db.execute(
                select(Post.post_id).where(Post.slug == id_or_slug, Post.deleted_at.is_(None))
            )
            if live.scalar_one_or_none() is not None:
                raise ConflictError(
                    code=ErrorCodes.POST_NOT_ARCHIVED,
                    message="Archive l'article avant de le supprimer définitivement.",
                )
            return {"deleted": 0}

        await self.db.execute(delete(Post).where(Post.post_id == post.post_id))
        await CacheInvalidator.on_post_change(post.slug)
        return {"deleted": 1}
