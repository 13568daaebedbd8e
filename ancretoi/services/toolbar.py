"""
Admin List Toolbar
==================

Search, filter, sort and pagination over admin row sets, plus the
per-admin toolbar preferences that survive reloads.

Rows are the serialized ``to_api_dict`` payloads (camelCase keys).
"""

import json
import logging
import unicodedata
from typing import Any, Callable, Iterable, Literal, Optional

from pydantic import BaseModel, Field, ValidationError

from ancretoi.schemas.common import PaginationMeta
from ancretoi.services.storage import KeyValueStorage

logger = logging.getLogger(__name__)

ALL = "all"
ALL_CATEGORIES = "__all__"

SortKey = Literal["recent", "alpha"]
Haystack = Callable[[dict], str]


class ListQuery(BaseModel):
    """List parameters accepted by every admin list endpoint."""

    q: str = ""
    status: str = ALL
    category: str = ALL_CATEGORIES
    tag: Optional[str] = None
    sort: SortKey = "recent"
    page: int = Field(default=1, ge=1)
    per_page: int = Field(default=50, ge=1, le=200)

    @property
    def needle(self) -> str:
        return self.q.strip().lower()


# =============================================================================
# Haystacks
# =============================================================================

def post_haystack(row: dict) -> str:
    """Title, slug, summary and category name."""
    category = row.get("categoryName") or row.get("category") or ""
    return f"{row.get('title', '')} {row.get('slug', '')} {row.get('summary') or ''} {category}"


def category_haystack(row: dict) -> str:
    return f"{row.get('name', '')} {row.get('slug', '')} {row.get('description') or ''}"


def program_haystack(row: dict) -> str:
    return f"{row.get('title', '')} {row.get('slug', '')} {row.get('level') or ''}"


def user_haystack(row: dict) -> str:
    return f"{row.get('email', '')} {row.get('name') or ''}"


def subscriber_haystack(row: dict) -> str:
    return f"{row.get('email', '')} {row.get('source') or ''} {' '.join(row.get('tags') or [])}"


# =============================================================================
# Filtering and sorting
# =============================================================================

def filter_rows(
    rows: Iterable[dict],
    query: ListQuery,
    haystack: Haystack = post_haystack,
) -> list[dict]:
    """
    Rows matching status, category, tag and free text at once.

    Free text is a case-insensitive substring match against ``haystack``.
    """
    needle = query.needle
    tag = (query.tag or "").strip().lower()
    out = []
    for row in rows:
        if query.status and query.status != ALL and row.get("status") != query.status:
            continue
        if query.category and query.category != ALL_CATEGORIES:
            if (row.get("category") or "").strip() != query.category:
                continue
        if tag and tag not in (row.get("tags") or []):
            continue
        if needle and needle not in haystack(row).lower():
            continue
        out.append(row)
    return out


def _fold(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text or "")
    return "".join(c for c in decomposed if not unicodedata.combining(c)).casefold()


def _recent_key(row: dict) -> str:
    return row.get("updatedAt") or row.get("createdAt") or ""


def sort_rows(rows: Iterable[dict], key: str = "recent", title_key: str = "title") -> list[dict]:
    """
    Stable sort.

    ``recent``: ``updatedAt`` (or ``createdAt``) descending.
    ``alpha``: title ignoring case and accents.
    """
    if key == "alpha":
        return sorted(rows, key=lambda r: _fold(str(r.get(title_key) or "")))
    return sorted(rows, key=_recent_key, reverse=True)


def paginate(rows: list[Any], page: int, per_page: int) -> tuple[list[Any], PaginationMeta]:
    total = len(rows)
    total_pages = max(1, -(-total // per_page))
    start = (page - 1) * per_page
    return rows[start:start + per_page], PaginationMeta(
        current_page=page,
        total_pages=total_pages,
        total_items=total,
        per_page=per_page,
        has_next=page < total_pages,
        has_previous=page > 1,
    )


def apply_query(
    rows: Iterable[dict],
    query: ListQuery,
    haystack: Haystack = post_haystack,
    title_key: str = "title",
) -> tuple[list[dict], PaginationMeta]:
    """Filter, sort, then paginate."""
    visible = sort_rows(filter_rows(rows, query, haystack), query.sort, title_key)
    return paginate(visible, query.page, query.per_page)


# =============================================================================
# Preferences
# =============================================================================

TOOLBAR_KEYS = {
    "posts": "adminPostsToolbar:v6",
    "programs": "adminProgramsToolbar:v6",
    "categories": "adminCategoriesToolbar:v2",
    "users": "adminUsersToolbar:v1",
    "newsletter": "adminNewsletterToolbar:v1",
}


class ToolbarState(BaseModel):
    """Persisted toolbar state."""

    q: str = ""
    status: str = ALL
    category: str = ALL_CATEGORIES
    sort: SortKey = "recent"
    view: Literal["cards", "table"] = "cards"


class ToolbarPreferences:
    """Toolbar state of one admin, stored under versioned keys."""

    def __init__(self, storage: KeyValueStorage, owner_key: str):
        self.storage = storage
        self.owner_key = owner_key

    def key(self, toolbar: str) -> str:
        return f"{self.owner_key}:{TOOLBAR_KEYS[toolbar]}"

    async def load(self, toolbar: str) -> ToolbarState:
        """Stored state, or defaults when missing or unreadable."""
        key = self.key(toolbar)
        try:
            raw = await self.storage.get(key)
            if not raw:
                return ToolbarState()
            return ToolbarState.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as e:
            logger.warning("Ignoring unreadable toolbar preferences %s: %s", key, e)
            return ToolbarState()
        except Exception as e:
            logger.warning("Toolbar preferences unavailable %s: %s", key, e)
            return ToolbarState()

    async def save(self, toolbar: str, state: ToolbarState) -> ToolbarState:
        await self.storage.set(self.key(toolbar), state.model_dump_json())
        return state

