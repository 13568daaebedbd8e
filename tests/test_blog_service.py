"""
Blog Service Tests
==================

Tests for the post lifecycle including:
- Slug suffixing on create and restore
- Draft/published transitions
- Soft delete, restore and hard delete of archived posts
"""

from datetime import datetime, timezone
import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest

from ancretoi.core.errors import ConflictError, ErrorCodes
from ancretoi.models.blog import Post
from ancretoi.schemas.blog import PostCreate, PostUpdate
from ancretoi.services.blog_service import BlogService
from ancretoi.services.cache import CacheKeys

PUBLISHED_AT = datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)


def _post(slug: str = "respirer", status: str = "published", deleted: bool = False) -> Post:
    return Post(
        post_id=uuid.uuid4(),
        title="Respirer",
        slug=slug,
        status=status,
        summary="",
        content="",
        tags=[],
        published_at=PUBLISHED_AT if status == "published" else None,
        deleted_at=PUBLISHED_AT if deleted else None,
    )


def _slugs(*slugs: str) -> MagicMock:
    result = MagicMock()
    result.all.return_value = [(s,) for s in slugs]
    return result


def _one(value) -> MagicMock:
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    result.scalars.return_value.first.return_value = value
    return result


def _db(*results) -> AsyncMock:
    db = AsyncMock()
    db.add = MagicMock()
    db.execute.side_effect = list(results)
    return db


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------

class TestCreatePost:

    @pytest.mark.asyncio
    async def test_free_slug_kept(self):
        db = _db(_slugs())
        post = await BlogService(db).create_post(PostCreate(title="Respirer"), "admin@example.com")

        assert post.slug == "respirer"
        assert post.published_at is None
        db.add.assert_called_once_with(post)

    @pytest.mark.asyncio
    async def test_taken_slugs_are_suffixed(self):
        db = _db(_slugs("respirer", "respirer-2"))
        post = await BlogService(db).create_post(
            PostCreate(title="Respirer", status="published"),
            "admin@example.com",
        )

        assert post.slug == "respirer-3"
        assert post.published_at is not None
        assert post.seo_title == "Respirer"

    @pytest.mark.asyncio
    async def test_slug_search_escapes_wildcards(self):
        db = _db(_slugs())
        await BlogService(db).available_slug("mon_article")

        compiled = db.execute.await_args.args[0].compile()
        assert "ESCAPE" in str(compiled)
        assert "mon\\_article%" in compiled.params.values()

    @pytest.mark.asyncio
    async def test_create_drops_cached_lists(self, fake_redis):
        fake_redis.store["cache:blog:list:all"] = "[]"
        await BlogService(_db(_slugs())).create_post(PostCreate(title="Respirer"), "admin@example.com")

        assert "cache:blog:list:all" not in fake_redis.store


# ---------------------------------------------------------------------------
# Update
# ---------------------------------------------------------------------------

class TestUpdatePost:

    @pytest.mark.asyncio
    async def test_back_to_draft_clears_published_at(self):
        post = _post()
        await BlogService(_db(_one(post))).update_post("respirer", PostUpdate(status="draft"))

        assert post.status == "draft"
        assert post.published_at is None

    @pytest.mark.asyncio
    async def test_publishing_stamps_once(self):
        post = _post()
        await BlogService(_db(_one(post))).update_post("respirer", PostUpdate(status="published"))

        assert post.published_at == PUBLISHED_AT

    @pytest.mark.asyncio
    async def test_renaming_moves_slug_and_cache(self, fake_redis):
        post = _post()
        fake_redis.store[CacheKeys.blog_post("respirer")] = "{}"
        db = _db(_one(post), _slugs("souffler"))

        await BlogService(db).update_post("respirer", PostUpdate(title="Souffler"))

        assert post.slug == "souffler-2"
        assert post.title == "Souffler"
        assert CacheKeys.blog_post("respirer") not in fake_redis.store


# ---------------------------------------------------------------------------
# Archive lifecycle
# ---------------------------------------------------------------------------

class TestArchiveLifecycle:

    @pytest.mark.asyncio
    async def test_soft_delete_stamps_deleted_at(self):
        post = _post()
        result = await BlogService(_db(_one(post))).soft_delete_post("respirer")

        assert result == {"deleted": 1}
        assert post.deleted_at is not None

    @pytest.mark.asyncio
    async def test_soft_delete_unknown_post(self):
        result = await BlogService(_db(_one(None))).soft_delete_post("absent")

        assert result == {"deleted": 0}

    @pytest.mark.asyncio
    async def test_restore_suffixes_taken_slug(self):
        post = _post(deleted=True)
        db = _db(_one(post), _slugs("respirer"))

        result = await BlogService(db).restore_post("respirer")

        assert result == {"restored": True, "slug": "respirer-2"}
        assert post.slug == "respirer-2"
        assert post.deleted_at is None

    @pytest.mark.asyncio
    async def test_restore_by_id(self):
        post = _post(deleted=True)
        db = _db(_one(post), _slugs())

        result = await BlogService(db).restore_post(str(post.post_id))

        assert result["slug"] == "respirer"

    @pytest.mark.asyncio
    async def test_hard_delete_refuses_live_post(self):
        db = _db(_one(None), _one(uuid.uuid4()))

        with pytest.raises(ConflictError) as exc_info:
            await BlogService(db).hard_delete_post("respirer")

        assert exc_info.value.code == ErrorCodes.POST_NOT_ARCHIVED

    @pytest.mark.asyncio
    async def test_hard_delete_archived_post(self):
        post = _post(deleted=True)
        db = _db(_one(post), MagicMock())

        result = await BlogService(db).hard_delete_post("respirer")

        assert result == {"deleted": 1}
        assert db.execute.await_count == 2

    @pytest.mark.asyncio
    async def test_hard_delete_unknown_post(self):
        db = _db(_one(None), _one(None))

        assert await BlogService(db).hard_delete_post("absent") == {"deleted": 0}
