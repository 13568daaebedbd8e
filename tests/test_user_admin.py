"""
User Administration Tests
=========================

Role-change guards, limits parsing, progress and lifecycle state.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from ancretoi.core.errors import ConflictError, ErrorCodes, ValidationError
from ancretoi.services.user_admin_service import (
    UserAdminService,
    check_role_change,
    parse_features,
    progress_pct,
    user_state,
)

NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)


class TestCheckRoleChange:

    def test_promotion_always_allowed(self):
        check_role_change("a@x.fr", "a@x.fr", "admin", ["a@x.fr"])

    def test_self_demotion_refused(self):
        with pytest.raises(ConflictError) as exc:
            check_role_change("a@x.fr", "a@x.fr", "user", ["a@x.fr", "b@x.fr"])
        assert exc.value.code == ErrorCodes.USER_SELF_DEMOTION

    def test_last_admin_refused(self):
        with pytest.raises(ConflictError) as exc:
            check_role_change("root@x.fr", "b@x.fr", "user", ["b@x.fr"])
        assert exc.value.code == ErrorCodes.USER_LAST_ADMIN

    def test_demoting_one_of_several_admins(self):
        check_role_change("a@x.fr", "b@x.fr", "user", ["a@x.fr", "b@x.fr"])


def test_parse_features():
    assert parse_features("forum, chat ,,") == ["forum", "chat"]
    assert parse_features([" forum ", ""]) == ["forum"]
    assert parse_features(None) == []


@pytest.mark.parametrize(
    "current_day,units,expected",
    [
        (3, 7, 43),
        (7, 7, 100),
        (9, 7, 100),
        (1, 0, None),
        (None, 7, None),
    ],
)
def test_progress_pct(current_day, units, expected):
    assert progress_pct(current_day, units) == expected


def test_user_state(user_factory):
    user = user_factory()
    assert user_state(user) == "active"

    user.suspended_at = NOW
    assert user_state(user) == "suspended"

    user.deleted_at = NOW
    assert user_state(user) == "archived"


def _result(value) -> MagicMock:
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    return result


class TestUserAdminService:

    @pytest.mark.asyncio
    async def test_hard_delete_requires_confirmation(self, user_factory):
        db = AsyncMock()
        with pytest.raises(ValidationError) as exc:
            await UserAdminService(db).hard_delete(user_factory().user_id, confirm=False)
        assert exc.value.code == ErrorCodes.USER_CONFIRMATION_REQUIRED
        db.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_suspend_and_unsuspend(self, user_factory):
        user = user_factory()
        db = AsyncMock()
        db.execute.return_value = _result(user)
        service = UserAdminService(db)

        await service.suspend(user.user_id)
        assert user.suspended_at is not None

        await service.unsuspend(user.user_id)
        assert user.suspended_at is None

    @pytest.mark.asyncio
    async def test_set_limits(self, user_factory):
        user = user_factory()
        db = AsyncMock()
        db.execute.return_value = _result(user)

        await UserAdminService(db).set_limits(user.user_id, 2, "forum, chat")

        assert user.limits == {"max_concurrent_programs": 2, "features": ["forum", "chat"]}
        assert user.max_concurrent_programs == 2

    @pytest.mark.asyncio
    async def test_search_wildcards_match_literally(self):
        result = MagicMock()
        result.scalars.return_value.all.return_value = []
        db = AsyncMock()
        db.execute.return_value = result

        await UserAdminService(db).list_users(q="  100%_Sûr ")

        compiled = db.execute.await_args.args[0].compile()
        assert "ESCAPE" in str(compiled)
        assert "%100\\%\\_sûr%" in compiled.params.values()
