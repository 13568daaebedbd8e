"""
Blog API Endpoints
==================

Public read access to published posts and categories.
Responses are cached in Redis and invalidated by admin mutations.
"""

from fastapi import APIRouter, Depends

from ancretoi.core.rate_limit import create_rate_limit_dependency
from ancretoi.dependencies import DBSession, ListParams
from ancretoi.schemas.common import DataResponse, PaginatedResponse
from ancretoi.services.blog_service import BlogService
from ancretoi.services.cache import CacheKeys, CacheManager
from ancretoi.services.toolbar import apply_query, post_haystack

router = APIRouter(dependencies=[Depends(create_rate_limit_dependency("read"))])


@router.get("", response_model=PaginatedResponse[dict])
async def list_published_posts(db: DBSession, query: ListParams):
    """Published, non-deleted posts with category, tag and text filters."""
    query = query.model_copy(update={"status": "published"})
    cache_key = CacheKeys.blog_list(query.model_dump_json())
    cached = await CacheManager.get(cache_key)
    if cached is not None:
        return PaginatedResponse[dict](**cached)

    rows = await BlogService(db).list_posts(include_drafts=False)
    page, meta = apply_query(rows, query, post_haystack)
    response = PaginatedResponse[dict](data=page, pagination=meta)
    await CacheManager.set(cache_key, response.model_dump(), ttl=CacheManager.TTL_SHORT)
    return response


@router.get("/categories", response_model=DataResponse)
async def list_categories(db: DBSession):
    cached = await CacheManager.get(CacheKeys.blog_categories())
    if cached is None:
        cached = await BlogService(db).list_categories()
        await CacheManager.set(CacheKeys.blog_categories(), cached, ttl=CacheManager.TTL_SHORT)
    return DataResponse(data=cached)


@router.get("/{slug}", response_model=DataResponse)
async def get_published_post(slug: str, db: DBSession):
    """A published post; 404 when missing, draft or archived."""
    cached = await CacheManager.get(CacheKeys.blog_post(slug))
    if cached is not None:
        return DataResponse(data=cached)

    service = BlogService(db)
    post = await service.get_post(slug, published_only=True)
    names = await service.category_names()
    data = post.to_api_dict(category_name=names.get(post.category_slug or ""))
    await CacheManager.set(CacheKeys.blog_post(slug), data, ttl=CacheManager.TTL_SHORT)
    return DataResponse(data=data)
