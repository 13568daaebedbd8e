"""
Admin Blog API Endpoints
========================

Categories, posts and the post archive.

Deleting a category never touches the posts that reference it; the
response carries ``postsUsing`` and a warning so they can be re-categorized
by hand.
"""

import logging

from fastapi import APIRouter, Depends, Query, status

from ancretoi.core.rate_limit import create_rate_limit_dependency
from ancretoi.dependencies import CurrentAdmin, DBSession, ListParams
from ancretoi.models.blog import Post
from ancretoi.schemas.blog import CategoryCreate, CategoryUpdate, PostCreate, PostUpdate
from ancretoi.schemas.common import DataResponse, PaginatedResponse
from ancretoi.services.blog_service import BlogService
from ancretoi.services.toolbar import apply_query, category_haystack, post_haystack

logger = logging.getLogger(__name__)

router = APIRouter()

CREATE_LIMIT = create_rate_limit_dependency("create")


async def _post_row(service: BlogService, post: Post) -> dict:
    names = await service.category_names()
    return post.to_api_dict(category_name=names.get(post.category_slug or ""))


# =============================================================================
# Categories
# =============================================================================

@router.get("/categories", response_model=PaginatedResponse[dict])
async def list_categories(admin: CurrentAdmin, db: DBSession, query: ListParams):
    """Categories with the number of live posts using each."""
    rows = await BlogService(db).list_categories()
    page, meta = apply_query(rows, query, category_haystack, title_key="name")
    return PaginatedResponse[dict](data=page, pagination=meta)


@router.post(
    "/categories",
    response_model=DataResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(CREATE_LIMIT)],
)
async def create_category(body: CategoryCreate, admin: CurrentAdmin, db: DBSession):
    category = await BlogService(db).create_category(body)
    return DataResponse(data=category.to_api_dict(posts_using=0), message="Catégorie créée ✅")


@router.get("/categories/{slug}", response_model=DataResponse)
async def get_category(slug: str, admin: CurrentAdmin, db: DBSession):
    return DataResponse(data=await BlogService(db).preview_category_delete(slug))


@router.put("/categories/{slug}", response_model=DataResponse)
async def update_category(slug: str, body: CategoryUpdate, admin: CurrentAdmin, db: DBSession):
    category = await BlogService(db).update_category(slug, body)
    return DataResponse(data=category.to_api_dict(), message="Catégorie mise à jour.")


@router.delete("/categories/{slug}", response_model=DataResponse)
async def delete_category(
    slug: str,
    admin: CurrentAdmin,
    db: DBSession,
    dry_run: bool = Query(default=False, alias="dryRun"),
):
    """
    Delete a category.

    With ``?dryRun=true`` nothing is deleted; the category and its
    ``postsUsing`` count are returned for the confirmation dialog.
    """
    service = BlogService(db)
    if dry_run:
        return DataResponse(data={"dryRun": True, "category": await service.preview_category_delete(slug)})
    return DataResponse(data=await service.delete_category(slug))


# =============================================================================
# Posts
# =============================================================================

@router.get("/posts", response_model=PaginatedResponse[dict])
async def list_posts(admin: CurrentAdmin, db: DBSession, query: ListParams):
    """Live posts (drafts included) filtered by status, category, tag and text."""
    rows = await BlogService(db).list_posts(include_drafts=True)
    page, meta = apply_query(rows, query, post_haystack)
    return PaginatedResponse[dict](data=page, pagination=meta)


@router.get("/posts/slug-suggestion", response_model=DataResponse)
async def suggest_slug(admin: CurrentAdmin, db: DBSession, q: str = Query(default="")):
    """First free slug derived from ``q``."""
    return DataResponse(data={"slug": await BlogService(db).suggest_slug(q)})


@router.post(
    "/posts",
    response_model=DataResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(CREATE_LIMIT)],
)
async def create_post(body: PostCreate, admin: CurrentAdmin, db: DBSession):
    service = BlogService(db)
    post = await service.create_post(body, author_email=admin.email)
    return DataResponse(data=await _post_row(service, post), message="Article créé ✅")


@router.get("/posts/{slug}", response_model=DataResponse)
async def get_post(slug: str, admin: CurrentAdmin, db: DBSession):
    service = BlogService(db)
    return DataResponse(data=await _post_row(service, await service.get_post(slug)))


@router.put("/posts/{slug}", response_model=DataResponse)
async def update_post(slug: str, body: PostUpdate, admin: CurrentAdmin, db: DBSession):
    service = BlogService(db)
    post = await service.update_post(slug, body)
    return DataResponse(data=await _post_row(service, post), message="Article mis à jour.")


@router.delete("/posts/{slug}", response_model=DataResponse)
async def archive_post(slug: str, admin: CurrentAdmin, db: DBSession):
    """Soft delete: the post moves to the archive."""
    return DataResponse(data=await BlogService(db).soft_delete_post(slug))


# =============================================================================
# Archives
# =============================================================================

@router.get("/archives", response_model=PaginatedResponse[dict])
async def list_archives(admin: CurrentAdmin, db: DBSession, query: ListParams):
    rows = await BlogService(db).list_archived_posts()
    page, meta = apply_query(rows, query, post_haystack)
    return PaginatedResponse[dict](data=page, pagination=meta)


@router.get("/archives/{id_or_slug}", response_model=DataResponse)
async def get_archive(id_or_slug: str, admin: CurrentAdmin, db: DBSession):
    service = BlogService(db)
    return DataResponse(data=await _post_row(service, await service.get_archived_post(id_or_slug)))


@router.post("/archives/{id_or_slug}/restore", response_model=DataResponse)
async def restore_archive(id_or_slug: str, admin: CurrentAdmin, db: DBSession):
    """Restore; the slug gets a ``-N`` suffix when a live post took it meanwhile."""
    return DataResponse(data=await BlogService(db).restore_post(id_or_slug), message="Article restauré.")


@router.delete("/archives/{id_or_slug}", response_model=DataResponse)
async def hard_delete_archive(id_or_slug: str, admin: CurrentAdmin, db: DBSession):
    """Permanent deletion of an archived post."""
    return DataResponse(data=await BlogService(db).hard_delete_post(id_or_slug))
