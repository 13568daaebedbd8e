"""
Common Dependencies
===================

Shared dependencies used across the application.
"""

import json
import logging
import re
import secrets
from datetime import datetime, timezone
from typing import Annotated, Optional
import uuid

from fastapi import Depends, HTTPException, Query, Request, Response, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ancretoi.config import settings
from ancretoi.core.errors import ErrorCodes, ForbiddenError
from ancretoi.core.security import decode_token, issued_before
from ancretoi.db.session import get_db
from ancretoi.models.user import User, UserRole, default_limits
from ancretoi.services.auth_service import AuthService, is_active
from ancretoi.services.cache import CacheKeys, get_redis
from ancretoi.services.day_state_cache import ANONYMOUS_USER_KEY
from ancretoi.services.storage import KeyValueStorage, RedisStorage
from ancretoi.services.toolbar import ALL, ALL_CATEGORIES, ListQuery, SortKey

logger = logging.getLogger(__name__)

# Database session dependency
DBSession = Annotated[AsyncSession, Depends(get_db)]

# Security scheme for JWT authentication
security = HTTPBearer(auto_error=False)

# Development admin (consistent UUID for local work)
DEV_USER_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")
DEV_USER_EMAIL = "dev@test.local"

# Redis cache TTL for authenticated user lookup (seconds)
_USER_AUTH_CACHE_TTL = 300  # 5 minutes


# =============================================================================
# User Auth Cache Helpers
# =============================================================================

def _serialize_user_for_cache(user: User) -> dict:
    """Serialize a User to a JSON-safe dict."""
    return {
        "user_id": str(user.user_id),
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "password_changed_at": user.password_changed_at.isoformat() if user.password_changed_at else None,
        "avatar_url": user.avatar_url,
        "theme": user.theme,
        "marketing": user.marketing,
        "product_updates": user.product_updates,
        "suspended_at": user.suspended_at.isoformat() if user.suspended_at else None,
        "deleted_at": user.deleted_at.isoformat() if user.deleted_at else None,
        "limits": user.limits,
        "created_at": user.created_at.isoformat() if getattr(user, "created_at", None) else None,
        "updated_at": user.updated_at.isoformat() if getattr(user, "updated_at", None) else None,
    }


def _parse_dt(value: str | None) -> datetime | None:
    """Parse an ISO datetime string, returning None on missing input."""
    if not value:
        return None
    return datetime.fromisoformat(value)


def _build_user_from_cache(data: dict) -> User:
    """
    Reconstruct a *transient* (session-free) User from a cached dict.

    The returned object is NOT attached to any SQLAlchemy session; consumers
    of ``CurrentUser`` only read attributes.
    """
    return User(
        user_id=uuid.UUID(data["user_id"]),
        email=data["email"],
        name=data.get("name"),
        role=data.get("role") or UserRole.USER.value,
        password_changed_at=_parse_dt(data.get("password_changed_at")),
        avatar_url=data.get("avatar_url"),
        theme=data.get("theme"),
        marketing=data.get("marketing", False),
        product_updates=data.get("product_updates", True),
        suspended_at=_parse_dt(data.get("suspended_at")),
        deleted_at=_parse_dt(data.get("deleted_at")),
        limits=data.get("limits") or default_limits(),
        created_at=_parse_dt(data.get("created_at")) or datetime.now(timezone.utc),
        updated_at=_parse_dt(data.get("updated_at")) or datetime.now(timezone.utc),
    )


async def _get_cached_user(user_id: uuid.UUID) -> User | None:
    """Return the cached User object, or ``None`` on miss / Redis failure."""
    try:
        client = await get_redis()
        raw = await client.get(CacheKeys.user_auth(str(user_id)))
        if raw is None:
            return None
        return _build_user_from_cache(json.loads(raw))
    except Exception as e:
        logger.warning("User auth cache read failed for %s: %s", user_id, e)
        return None


async def _cache_user(user: User) -> None:
    """Best-effort cache of a DB-loaded User into Redis."""
    try:
        client = await get_redis()
        await client.setex(
            CacheKeys.user_auth(str(user.user_id)),
            _USER_AUTH_CACHE_TTL,
            json.dumps(_serialize_user_for_cache(user), default=str),
        )
    except Exception as e:
        # next request just hits the DB
        logger.warning("User auth cache write failed for %s: %s", user.user_id, e)


# =============================================================================
# User resolution
# =============================================================================

async def get_or_create_dev_user(db: AsyncSession) -> User:
    """
    Get or create the development admin.
    Only used when DEV_AUTH_DISABLED is True outside production.
    """
    cached = await _get_cached_user(DEV_USER_ID)
    if cached is not None:
        return cached

    result = await db.execute(select(User).where(User.user_id == DEV_USER_ID))
    user = result.scalar_one_or_none()

    if user is None:
        user = User(
            user_id=DEV_USER_ID,
            email=DEV_USER_EMAIL,
            name="Development Admin",
            role=UserRole.ADMIN.value,
            limits=default_limits(),
            created_at=datetime.now(timezone.utc),
            updated_at=datetime.now(timezone.utc),
        )
        db.add(user)
        await db.commit()
        await db.refresh(user)

    await _cache_user(user)
    return user


async def resolve_user_from_token(token: str, db: AsyncSession) -> User | None:
    """
    Decode an access token, then return the active User from Redis cache or DB.

    Tokens issued before the last password change are refused.
    """
    payload = decode_token(token)
    if payload is None or payload.get("type") != "access":
        return None

    user_id_str = payload.get("sub")
    if user_id_str is None:
        return None

    try:
        user_id = uuid.UUID(user_id_str)
    except ValueError:
        return None

    user = await _get_cached_user(user_id)
    if user is None:
        user = await AuthService(db).get_user_by_id(user_id)
        if user is None:
            return None
        await _cache_user(user)

    if not is_active(user) or issued_before(payload, user.password_changed_at):
        return None
    return user


async def resolve_stream_user(token: Optional[str], db: AsyncSession) -> tuple[Optional[User], bool]:
    """
    User of a WebSocket connection authenticated by ``?token=``.

    Returns:
        ``(user, ok)``; ``ok`` is False when a token was given but refused
    """
    if settings.auth_disabled:
        return await get_or_create_dev_user(db), True
    if not token:
        return None, True
    user = await resolve_user_from_token(token, db)
    return user, user is not None


async def get_current_user_optional(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: DBSession,
) -> Optional[User]:
    """
    Get current user if authenticated, None otherwise.

    Use this for endpoints that work with or without authentication.
    """
    if settings.auth_disabled:
        return await get_or_create_dev_user(db)

    if credentials is None:
        return None

    return await resolve_user_from_token(credentials.credentials, db)


async def get_current_user(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: DBSession,
) -> User:
    """
    Get current authenticated user.

    Raises 401 if not authenticated or token is invalid.
    """
    if settings.auth_disabled:
        user = await get_or_create_dev_user(db)
        request.state.user_id = str(user.user_id)
        return user

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "code": ErrorCodes.UNAUTHORIZED,
                "message": "Non authentifié.",
            },
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = await resolve_user_from_token(credentials.credentials, db)

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "code": ErrorCodes.AUTH_TOKEN_EXPIRED,
                "message": "Jeton invalide ou expiré.",
            },
            headers={"WWW-Authenticate": "Bearer"},
        )

    # read by the New Relic middleware
    request.state.user_id = str(user.user_id)
    return user


async def get_current_admin(
    user: Annotated[User, Depends(get_current_user)],
) -> User:
    """Authenticated user with the admin role, 403 otherwise."""
    if not user.is_admin:
        raise ForbiddenError(message="Accès réservé aux administrateurs.")
    return user


# Type alias for authenticated user dependency
CurrentUser = Annotated[User, Depends(get_current_user)]
CurrentUserOptional = Annotated[Optional[User], Depends(get_current_user_optional)]
CurrentAdmin = Annotated[User, Depends(get_current_admin)]


# =============================================================================
# Admin list parameters
# =============================================================================

async def get_list_query(
    q: str = Query(default=""),
    status: str = Query(default=ALL),
    category: str = Query(default=ALL_CATEGORIES),
    tag: Optional[str] = Query(default=None),
    sort: SortKey = Query(default="recent"),
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=50, ge=1, le=200),
) -> ListQuery:
    return ListQuery(
        q=q,
        status=status,
        category=category,
        tag=tag,
        sort=sort,
        page=page,
        per_page=per_page,
    )


ListParams = Annotated[ListQuery, Depends(get_list_query)]


# =============================================================================
# Key-value storage
# =============================================================================

PREVIEW_COOKIE = "ancretoi_preview"
PREVIEW_HEADER = "X-Preview-Id"
_PREVIEW_ID_RE = re.compile(r"^[A-Za-z0-9_-]{16,64}$")


def valid_preview_id(value: Optional[str]) -> Optional[str]:
    if value and _PREVIEW_ID_RE.match(value):
        return value
    return None


def new_preview_id() -> str:
    return secrets.token_urlsafe(18)


def storage_for(user: Optional[User]) -> KeyValueStorage:
    """
    Redis-backed storage.

    Anonymous previews live under their own prefix and expire after
    ``PREVIEW_STATE_TTL_SECONDS`` without a write.
    """
    if user is None:
        return RedisStorage(prefix="preview:", ttl=settings.PREVIEW_STATE_TTL_SECONDS)
    return RedisStorage()


async def get_kv_storage(user: CurrentUserOptional) -> KeyValueStorage:
    return storage_for(user)


KVStorage = Annotated[KeyValueStorage, Depends(get_kv_storage)]


def get_preview_id(request: Request, response: Response) -> str:
    """
    Preview id of an anonymous visitor.

    Read from the ``X-Preview-Id`` header, then the preview cookie; a new
    id is issued as a cookie when neither holds one. The id is always
    echoed in the response header.
    """
    preview_id = (
        valid_preview_id(request.headers.get(PREVIEW_HEADER))
        or valid_preview_id(request.cookies.get(PREVIEW_COOKIE))
    )
    if preview_id is None:
        preview_id = new_preview_id()
        response.set_cookie(
            PREVIEW_COOKIE,
            preview_id,
            max_age=settings.PREVIEW_STATE_TTL_SECONDS,
            httponly=True,
            samesite="lax",
            secure=settings.is_production,
        )
    response.headers[PREVIEW_HEADER] = preview_id
    return preview_id


def runner_key(user: Optional[User], preview_id: Optional[str]) -> str:
    """Day-state owner: the user id, or ``anon:<preview id>`` for visitors."""
    if user is not None:
        return str(user.user_id)
    return f"{ANONYMOUS_USER_KEY}:{preview_id}"


async def get_runner_key(user: CurrentUserOptional, request: Request, response: Response) -> str:
    if user is not None:
        return runner_key(user, None)
    return runner_key(None, get_preview_id(request, response))


RunnerKey = Annotated[str, Depends(get_runner_key)]
