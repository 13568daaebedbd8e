"""
Admin Toolbar Tests
===================

Search, filters, sorting, pagination and stored toolbar preferences.
"""

import json
from unittest.mock import AsyncMock

import pytest

from ancretoi.services.toolbar import (
    ListQuery,
    ToolbarPreferences,
    ToolbarState,
    apply_query,
    filter_rows,
    paginate,
    sort_rows,
    user_haystack,
)
from conftest import MemoryStorage

ROWS = [
    {
        "title": "Respirer en réunion",
        "slug": "respirer-en-reunion",
        "summary": "Trois souffles avant de parler",
        "status": "published",
        "category": "souffle",
        "tags": ["respiration", "travail"],
        "updatedAt": "2026-03-02T10:00:00+00:00",
    },
    {
        "title": "Écrire le soir",
        "slug": "ecrire-le-soir",
        "summary": "Un journal en cinq minutes",
        "status": "draft",
        "category": "journal",
        "tags": ["journal"],
        "updatedAt": "2026-03-05T10:00:00+00:00",
    },
    {
        "title": "ancrage du matin",
        "slug": "ancrage-du-matin",
        "summary": None,
        "status": "published",
        "category": None,
        "tags": [],
        "updatedAt": "2026-02-20T10:00:00+00:00",
    },
]


class TestFilterRows:

    def test_free_text_matches_summary_case_insensitively(self):
        rows = filter_rows(ROWS, ListQuery(q="  JOURNAL "))
        assert [r["slug"] for r in rows] == ["ecrire-le-soir"]

    def test_status_and_category_combine(self):
        rows = filter_rows(ROWS, ListQuery(status="published", category="souffle"))
        assert [r["slug"] for r in rows] == ["respirer-en-reunion"]

    def test_tag_filter(self):
        rows = filter_rows(ROWS, ListQuery(tag="Travail"))
        assert len(rows) == 1

    def test_all_means_no_filter(self):
        assert len(filter_rows(ROWS, ListQuery())) == 3

    def test_custom_haystack(self):
        users = [{"email": "ana@example.com", "name": "Ana"}, {"email": "bob@example.com", "name": None}]
        rows = filter_rows(users, ListQuery(q="bob"), user_haystack)
        assert rows == [users[1]]


class TestSortRows:

    def test_recent_first(self):
        assert [r["slug"] for r in sort_rows(ROWS)] == [
            "ecrire-le-soir",
            "respirer-en-reunion",
            "ancrage-du-matin",
        ]

    def test_alpha_ignores_case_and_accents(self):
        assert [r["slug"] for r in sort_rows(ROWS, "alpha")] == [
            "ancrage-du-matin",
            "ecrire-le-soir",
            "respirer-en-reunion",
        ]

    def test_ties_keep_input_order(self):
        stamp = "2026-03-01T00:00:00+00:00"
        rows = [{"slug": s, "title": "Même titre", "updatedAt": stamp} for s in ("a", "b", "c")]

        assert [r["slug"] for r in sort_rows(rows)] == ["a", "b", "c"]
        assert [r["slug"] for r in sort_rows(rows, "alpha")] == ["a", "b", "c"]

    def test_missing_updated_at_falls_back_to_created_at(self):
        rows = [
            {"slug": "old", "updatedAt": "2026-01-01T00:00:00+00:00"},
            {"slug": "created-only", "createdAt": "2026-02-01T00:00:00+00:00"},
            {"slug": "undated"},
            {"slug": "new", "updatedAt": "2026-03-01T00:00:00+00:00", "createdAt": "2025-01-01T00:00:00+00:00"},
        ]

        assert [r["slug"] for r in sort_rows(rows)] == ["new", "created-only", "old", "undated"]


class TestPaginate:

    def test_pages(self):
        page, meta = paginate(list(range(5)), page=2, per_page=2)
        assert page == [2, 3]
        assert meta.total_pages == 3
        assert meta.has_next and meta.has_previous

    def test_empty_has_one_page(self):
        page, meta = paginate([], page=1, per_page=50)
        assert page == []
        assert meta.total_pages == 1
        assert not meta.has_next

    def test_apply_query(self):
        page, meta = apply_query(ROWS, ListQuery(status="published", sort="alpha", per_page=1))
        assert [r["slug"] for r in page] == ["ancrage-du-matin"]
        assert meta.total_items == 2


class TestToolbarPreferences:

    @pytest.mark.asyncio
    async def test_defaults_when_missing(self):
        prefs = ToolbarPreferences(MemoryStorage(), "admin-1")
        assert await prefs.load("posts") == ToolbarState()

    @pytest.mark.asyncio
    async def test_round_trip_under_versioned_key(self):
        storage = MemoryStorage()
        prefs = ToolbarPreferences(storage, "admin-1")
        state = ToolbarState(q="souffle", status="draft", sort="alpha", view="table")

        await prefs.save("posts", state)

        assert "admin-1:adminPostsToolbar:v6" in storage.data
        assert await prefs.load("posts") == state

    @pytest.mark.asyncio
    async def test_unreadable_state_falls_back_to_defaults(self):
        storage = MemoryStorage({
            "admin-1:adminProgramsToolbar:v6": "{oops",
            "admin-1:adminUsersToolbar:v1": json.dumps({"view": "mosaic"}),
        })
        prefs = ToolbarPreferences(storage, "admin-1")

        assert await prefs.load("programs") == ToolbarState()
        assert await prefs.load("users") == ToolbarState()

    @pytest.mark.asyncio
    async def test_storage_failure_falls_back_to_defaults(self):
        storage = AsyncMock()
        storage.get.side_effect = ConnectionError("Redis down")
        assert await ToolbarPreferences(storage, "admin-1").load("newsletter") == ToolbarState()
