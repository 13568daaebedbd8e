"""
Admin Users API Endpoints
=========================

Account administration: listing, detail, role changes, lifecycle
(archive/suspend), limits and irreversible deletion.
"""

import logging
import uuid

from fastapi import APIRouter, Query

from ancretoi.dependencies import CurrentAdmin, DBSession, ListParams
from ancretoi.schemas.common import DataResponse, PaginatedResponse
from ancretoi.schemas.user import HardDeleteRequest, LimitsUpdate, RoleUpdate
from ancretoi.services.toolbar import apply_query, user_haystack
from ancretoi.services.user_admin_service import USER_STATES, UserAdminService, user_state

logger = logging.getLogger(__name__)

router = APIRouter()


def _row(user) -> dict:
    row = user.to_api_dict()
    row["state"] = user_state(user)
    return row


@router.get("", response_model=PaginatedResponse[dict])
async def list_users(
    admin: CurrentAdmin,
    db: DBSession,
    query: ListParams,
    role: str = Query(default="all"),
    state: str = Query(default="all", pattern="^(" + "|".join(USER_STATES) + ")$"),
):
    """Users matching search text, role and lifecycle state."""
    rows = await UserAdminService(db).list_users(q=query.q, role=role, state=state)
    page, meta = apply_query(rows, query, user_haystack, title_key="email")
    return PaginatedResponse[dict](data=page, pagination=meta)


@router.get("/{user_id}", response_model=DataResponse)
async def get_user(user_id: uuid.UUID, admin: CurrentAdmin, db: DBSession):
    """Profile, lifecycle flags and enrollments with progress."""
    return DataResponse(data=await UserAdminService(db).get_detail(user_id))


@router.put("/{user_id}/role", response_model=DataResponse)
async def set_role(user_id: uuid.UUID, body: RoleUpdate, admin: CurrentAdmin, db: DBSession):
    user = await UserAdminService(db).set_role(admin, user_id, body.role)
    return DataResponse(data=_row(user), message="Rôle mis à jour.")


@router.post("/{user_id}/archive", response_model=DataResponse)
async def archive_user(user_id: uuid.UUID, admin: CurrentAdmin, db: DBSession):
    user = await UserAdminService(db).archive(user_id)
    return DataResponse(data=_row(user), message="Utilisateur archivé.")


@router.post("/{user_id}/restore", response_model=DataResponse)
async def restore_user(user_id: uuid.UUID, admin: CurrentAdmin, db: DBSession):
    user = await UserAdminService(db).restore(user_id)
    return DataResponse(data=_row(user), message="Utilisateur restauré.")


@router.post("/{user_id}/suspend", response_model=DataResponse)
async def suspend_user(user_id: uuid.UUID, admin: CurrentAdmin, db: DBSession):
    user = await UserAdminService(db).suspend(user_id)
    return DataResponse(data=_row(user), message="Utilisateur suspendu.")


@router.post("/{user_id}/unsuspend", response_model=DataResponse)
async def unsuspend_user(user_id: uuid.UUID, admin: CurrentAdmin, db: DBSession):
    user = await UserAdminService(db).unsuspend(user_id)
    return DataResponse(data=_row(user), message="Suspension levée.")


@router.put("/{user_id}/limits", response_model=DataResponse)
async def set_limits(user_id: uuid.UUID, body: LimitsUpdate, admin: CurrentAdmin, db: DBSession):
    user = await UserAdminService(db).set_limits(
        user_id,
        body.max_concurrent_programs,
        body.features,
    )
    return DataResponse(data=_row(user), message="Limites mises à jour.")


@router.post("/{user_id}/hard-delete", response_model=DataResponse)
async def hard_delete_user(
    user_id: uuid.UUID,
    body: HardDeleteRequest,
    admin: CurrentAdmin,
    db: DBSession,
):
    """Irreversible; the body must carry ``{"confirm": true}``."""
    await UserAdminService(db).hard_delete(user_id, body.confirm)
    logger.info("User %s hard-deleted by %s", user_id, admin.user_id)
    return DataResponse(data={"deleted": 1}, message="Utilisateur supprimé définitivement.")
