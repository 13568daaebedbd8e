"""
Account Settings API Endpoints
==============================

The signed-in user's preferences, profile, password, account deletion and
personal data export.
"""

from fastapi import APIRouter, Response

from ancretoi.dependencies import CurrentUser, DBSession
from ancretoi.schemas.common import DataResponse
from ancretoi.schemas.settings import PasswordChange, PrefsUpdate, ProfileUpdate
from ancretoi.services.account_service import EXPORT_FILENAME, AccountService

router = APIRouter()


@router.post("/prefs", response_model=DataResponse)
async def update_prefs(body: PrefsUpdate, current_user: CurrentUser, db: DBSession):
    user = await AccountService(db).update_prefs(
        current_user.user_id,
        theme=body.theme,
        marketing=body.marketing,
        product_updates=body.product_updates,
    )
    return DataResponse(data=user.to_api_dict(), message="Préférences enregistrées.")


@router.post("/profile", response_model=DataResponse)
async def update_profile(body: ProfileUpdate, current_user: CurrentUser, db: DBSession):
    user = await AccountService(db).update_profile(current_user.user_id, body.name)
    return DataResponse(data=user.to_api_dict(), message="Profil mis à jour.")


@router.post("/password", response_model=DataResponse)
async def change_password(body: PasswordChange, current_user: CurrentUser, db: DBSession):
    """
    Change the password. Older tokens are revoked; the response carries
    fresh ones.
    """
    tokens = await AccountService(db).change_password(current_user.user_id, body.current, body.password)
    return DataResponse(data={"tokens": tokens}, message="Mot de passe mis à jour.")


@router.post("/delete-account", response_model=DataResponse)
async def delete_account(current_user: CurrentUser, db: DBSession):
    await AccountService(db).delete_account(current_user.user_id)
    return DataResponse(data={"deleted": True}, message="Compte supprimé.")


@router.post("/export")
async def export_account(current_user: CurrentUser, db: DBSession):
    """Download the account data as JSON."""
    body = await AccountService(db).export(current_user.user_id)
    return Response(
        content=body,
        media_type="application/json; charset=utf-8",
        headers={
            "Content-Disposition": f'attachment; filename="{EXPORT_FILENAME}"',
            "Cache-Control": "no-store",
        },
    )
