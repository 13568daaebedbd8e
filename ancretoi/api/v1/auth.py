"""
Authentication API Endpoints
============================

Handles user registration, login, token refresh, logout and password reset.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from ancretoi.config import settings
from ancretoi.core.errors import AuthenticationError, ConflictError, ErrorCodes, ValidationError
from ancretoi.core.rate_limit import create_rate_limit_dependency
from ancretoi.core.security import create_tokens_for_user
from ancretoi.dependencies import CurrentUser, DBSession
from ancretoi.schemas.auth import (
    AuthResponse,
    ForgotPasswordRequest,
    LogoutResponse,
    RefreshTokenRequest,
    ResetPasswordRequest,
    UserLogin,
    UserRegister,
)
from ancretoi.schemas.common import DataResponse, ErrorResponse
from ancretoi.services.auth_service import AuthService
from ancretoi.services.mailer import (
    Mailer,
    MailerError,
    get_mailer,
    render_reset_html,
    reset_password_url,
)

logger = logging.getLogger(__name__)

router = APIRouter()

RESET_SUBJECT = "Réinitialisation de ton mot de passe"


@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(create_rate_limit_dependency("auth"))],
    responses={
        409: {"model": ErrorResponse, "description": "Email already registered"},
    },
)
async def register(user_data: UserRegister, db: DBSession):
    """
    Register a new learner account.
    """
    auth_service = AuthService(db)

    if await auth_service.get_user_by_email(user_data.email) is not None:
        raise ConflictError(
            code=ErrorCodes.AUTH_EMAIL_EXISTS,
            message="Un compte existe déjà avec cet e-mail.",
        )

    user = await auth_service.create_user(user_data)
    tokens = create_tokens_for_user(user_id=user.user_id, email=user.email, role=user.role)

    return AuthResponse(
        success=True,
        data={"user": user.to_api_dict(), "tokens": tokens},
        message="Compte créé.",
    )


@router.post(
    "/login",
    response_model=AuthResponse,
    dependencies=[Depends(create_rate_limit_dependency("auth"))],
    responses={
        401: {"model": ErrorResponse, "description": "Invalid credentials"},
    },
)
async def login(credentials: UserLogin, db: DBSession):
    """
    Authenticate user and return tokens.

    Archived and suspended accounts are refused with the same error as a
    wrong password.
    """
    user = await AuthService(db).authenticate_user(
        email=credentials.email,
        password=credentials.password,
    )

    if user is None:
        raise AuthenticationError(message="Identifiants invalides.")

    tokens = create_tokens_for_user(user_id=user.user_id, email=user.email, role=user.role)
    return AuthResponse(
        success=True,
        data={"user": user.to_api_dict(), "tokens": tokens},
    )


@router.post(
    "/refresh",
    response_model=AuthResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid refresh token"},
    },
)
async def refresh_token(request: RefreshTokenRequest, db: DBSession):
    """
    Refresh access token using refresh token.
    """
    tokens = await AuthService(db).refresh_tokens(request.refresh_token)

    if tokens is None:
        raise AuthenticationError(
            code=ErrorCodes.AUTH_TOKEN_EXPIRED,
            message="Jeton de rafraîchissement invalide ou expiré.",
        )

    return AuthResponse(success=True, data={"tokens": tokens})


@router.get("/me", response_model=DataResponse)
async def me(current_user: CurrentUser):
    """The signed-in account."""
    return DataResponse(data=current_user.to_api_dict())


@router.post("/logout", response_model=LogoutResponse)
async def logout():
    """
    Logout user (client should discard tokens).

    Tokens are stateless; changing the password revokes every token issued
    before the change.
    """
    return LogoutResponse(success=True)


# =============================================================================
# Password reset
# =============================================================================

@router.post(
    "/forgot-password",
    response_model=DataResponse,
    dependencies=[Depends(create_rate_limit_dependency("auth"))],
)
async def forgot_password(
    body: ForgotPasswordRequest,
    db: DBSession,
    mailer: Annotated[Mailer, Depends(get_mailer)],
):
    """
    Mail a reset link valid for ``PASSWORD_RESET_TTL_MINUTES``.

    Always succeeds. Outside production the link is also returned as
    ``devResetUrl``.
    """
    email = body.email.strip().lower()
    token = await AuthService(db).create_password_reset(email)
    data: dict = {}
    if token is not None:
        reset_link = reset_password_url(token)
        if mailer.configured:
            try:
                await mailer.send(
                    to=email,
                    subject=RESET_SUBJECT,
                    html=render_reset_html(reset_link, settings.PASSWORD_RESET_TTL_MINUTES),
                )
            except MailerError as e:
                logger.warning("Password reset email failed: %s", e)
        else:
            logger.warning("Mail not configured, password reset link not sent")
        if not settings.is_production:
            data["devResetUrl"] = reset_link

    return DataResponse(
        data=data,
        message="Si un compte existe pour cette adresse, un lien de réinitialisation a été envoyé.",
    )


@router.post(
    "/reset-password",
    response_model=DataResponse,
    dependencies=[Depends(create_rate_limit_dependency("auth"))],
    responses={
        400: {"model": ErrorResponse, "description": "Invalid or expired link"},
    },
)
async def reset_password(body: ResetPasswordRequest, db: DBSession):
    """Set a new password from a reset link; older tokens stop working."""
    await AuthService(db).reset_password(body.token, body.password)
    return DataResponse(data={"ok": True}, message="Mot de passe mis à jour.")


@router.get("/reset-password/verify", response_model=DataResponse)
async def verify_reset_link(db: DBSession, token: str = Query(default="")):
    """Whether a reset link can still be used."""
    if not token:
        raise ValidationError(message="Paramètre token requis.", field="token")
    return DataResponse(data={"ok": await AuthService(db).reset_link_valid(token)})
