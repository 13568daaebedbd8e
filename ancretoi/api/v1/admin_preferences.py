"""
Admin Preferences API Endpoints
===============================

Per-admin toolbar state (search text, filters, sort, view) for each
admin list, stored under versioned keys so it survives reloads.
"""

from fastapi import APIRouter

from ancretoi.core.errors import NotFoundError
from ancretoi.dependencies import CurrentAdmin, KVStorage
from ancretoi.schemas.common import DataResponse
from ancretoi.services.toolbar import TOOLBAR_KEYS, ToolbarPreferences, ToolbarState

router = APIRouter()


def _check_toolbar(toolbar: str) -> None:
    if toolbar not in TOOLBAR_KEYS:
        raise NotFoundError(message=f"Barre d'outils inconnue: {toolbar}")


@router.get("/{toolbar}", response_model=DataResponse)
async def get_preferences(toolbar: str, admin: CurrentAdmin, storage: KVStorage):
    """Stored state, or defaults."""
    _check_toolbar(toolbar)
    state = await ToolbarPreferences(storage, str(admin.user_id)).load(toolbar)
    return DataResponse(data=state.model_dump())


@router.put("/{toolbar}", response_model=DataResponse)
async def save_preferences(
    toolbar: str,
    body: ToolbarState,
    admin: CurrentAdmin,
    storage: KVStorage,
):
    _check_toolbar(toolbar)
    state = await ToolbarPreferences(storage, str(admin.user_id)).save(toolbar, body)
    return DataResponse(data=state.model_dump())
