"""Auth endpoints (/api/v1/auth).

Tokens are returned in the body AND set as httpOnly cookies
(``accessToken`` 15 min, ``refreshToken`` 7 days), so browser clients can
rely on cookies while API clients use the bearer header.
"""

from __future__ import annotations

import logging
import re
from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, Request, Response, status
from pydantic import AfterValidator, BaseModel, Field

from app.api.dependencies import CurrentPrincipal
from app.api.ratelimit import require_rate_limit
from app.api.responses import ok
from app.core.config import SETTINGS
from app.core.errors import NotFound
from app.repos.user_repo import user_repo
from app.services import auth_service
from app.services.auth_service import IssuedTokens
from app.services.identity import ACCESS_COOKIE, REFRESH_COOKIE, extract_token
from app.services.org_service import get_organization
from app.services.token_service import ACCESS_TOKEN_TTL_MIN, REFRESH_TOKEN_TTL_DAYS

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/auth",
    tags=["auth"],
    dependencies=[Depends(require_rate_limit())],
)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _check_email(value: str) -> str:
    value = value.strip().lower()
    if not _EMAIL_RE.match(value):
        raise ValueError("Invalid email format")
    return value


Email = Annotated[str, AfterValidator(_check_email)]
Password = Annotated[str, Field(min_length=6, max_length=100)]


# --- Request schemas ---------------------------------------------------------


class RegisterIn(BaseModel):
    name: str = Field(min_length=2)
    email: Email
    password: Password
    organizationName: str = Field(min_length=2)
    organizationSlug: str = Field(min_length=2)


class LoginIn(BaseModel):
    email: Email
    password: str = Field(min_length=1)


class RefreshIn(BaseModel):
    refreshToken: str | None = None


class ChangePasswordIn(BaseModel):
    currentPassword: str = Field(min_length=1)
    newPassword: Password


class ForgotPasswordIn(BaseModel):
    email: Email


class ResetPasswordIn(BaseModel):
    token: str = Field(min_length=1)
    password: Password


class SetupAccountIn(BaseModel):
    token: str = Field(min_length=1)
    password: Password
    name: str | None = Field(default=None, min_length=2)


# --- Cookies -----------------------------------------------------------------


def set_auth_cookies(response: Response, tokens: IssuedTokens) -> None:
    for key, value, max_age in (
        (ACCESS_COOKIE, tokens.access_token, ACCESS_TOKEN_TTL_MIN * 60),
        (REFRESH_COOKIE, tokens.refresh_token, REFRESH_TOKEN_TTL_DAYS * 86400),
    ):
        response.set_cookie(
            key,
            value,
            max_age=max_age,
            httponly=True,
            secure=SETTINGS.cookie_secure,
            samesite="strict",
        )


def clear_auth_cookies(response: Response) -> None:
    for key in (ACCESS_COOKIE, REFRESH_COOKIE):
        response.delete_cookie(
            key, httponly=True, secure=SETTINGS.cookie_secure, samesite="strict"
        )


def _token_body(tokens: IssuedTokens) -> dict[str, str]:
    return {"accessToken": tokens.access_token, "refreshToken": tokens.refresh_token}


# --- Endpoints ---------------------------------------------------------------


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(payload: RegisterIn, response: Response) -> dict[str, Any]:
    user, org, tokens = await auth_service.register(
        name=payload.name,
        email=payload.email,
        password=payload.password,
        organization_name=payload.organizationName,
        organization_slug=payload.organizationSlug,
    )
    set_auth_cookies(response, tokens)
    return ok(
        "Registration successful",
        {"user": user.to_dict(), "organization": org.to_dict(), **_token_body(tokens)},
    )


@router.post("/login")
async def login(payload: LoginIn, response: Response) -> dict[str, Any]:
    user, tokens = await auth_service.login(payload.email, payload.password)
    set_auth_cookies(response, tokens)
    return ok("Login successful", {"user": user.to_dict(), **_token_body(tokens)})


@router.post("/refresh-token")
async def refresh_token(
    request: Request,
    response: Response,
    payload: Annotated[RefreshIn | None, Body()] = None,
) -> dict[str, Any]:
    raw = request.cookies.get(REFRESH_COOKIE) or (payload.refreshToken if payload else None)
    _user, tokens = await auth_service.refresh(raw)
    set_auth_cookies(response, tokens)
    return ok("Token refreshed successfully", _token_body(tokens))


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    payload: Annotated[RefreshIn | None, Body()] = None,
) -> dict[str, Any]:
    await auth_service.logout(
        access_token=extract_token(request.cookies, request.headers.get("authorization")),
        refresh_token=request.cookies.get(REFRESH_COOKIE)
        or (payload.refreshToken if payload else None),
    )
    clear_auth_cookies(response)
    return ok("Logout successful")


@router.get("/me")
async def me(principal: CurrentPrincipal) -> dict[str, Any]:
    user = await user_repo.get_by_id(principal.user_id)
    if user is None:
        raise NotFound("User not found")
    data: dict[str, Any] = {"user": user.to_dict(), "organization": None}
    if user.organization_id is not None:
        data["organization"] = (await get_organization(user.organization_id)).to_dict()
    return ok("User profile retrieved successfully", data)


@router.post("/change-password")
async def change_password(
    payload: ChangePasswordIn, principal: CurrentPrincipal
) -> dict[str, Any]:
    await auth_service.change_password(
        principal.user_id, payload.currentPassword, payload.newPassword
    )
    return ok("Password changed successfully")


@router.post("/forgot-password")
async def forgot_password(payload: ForgotPasswordIn) -> dict[str, Any]:
    await auth_service.forgot_password(payload.email)
    return ok(auth_service.FORGOT_PASSWORD_REPLY)


@router.post("/reset-password")
async def reset_password(payload: ResetPasswordIn) -> dict[str, Any]:
    await auth_service.reset_password(payload.token, payload.password)
    return ok("Password reset successful")


@router.post("/setup-account")
async def setup_account(payload: SetupAccountIn, response: Response) -> dict[str, Any]:
    user, org, tokens = await auth_service.setup_account(
        payload.token, payload.password, payload.name
    )
    set_auth_cookies(response, tokens)
    return ok(
        "Account setup complete",
        {"user": user.to_dict(), "organization": org.to_dict(), **_token_body(tokens)},
    )
