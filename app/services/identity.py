"""Identity resolution: raw access token -> Principal.

The token is looked for in the ``accessToken`` cookie first, then in an
``Authorization: Bearer`` header.  A verified token is only the start:
the user is reloaded from the store on every request, so a deactivated
user or a changed role takes effect immediately rather than when the
token expires.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from uuid import UUID

import jwt

from app.core.errors import Unauthenticated
from app.middleware.request_context import user_id_var
from app.models.principal import Principal
from app.repos.user_repo import user_repo
from app.services import token_service
from app.services.token_blacklist import token_blacklist

logger = logging.getLogger(__name__)

ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"

NO_TOKEN = "Unauthorized - No token provided"
INVALID_TOKEN = "Unauthorized - Invalid token"
INVALID_USER = "Unauthorized - Invalid user"


def extract_token(cookies: Mapping[str, str], authorization: str | None) -> str | None:
    token = cookies.get(ACCESS_COOKIE)
    if token:
        return token
    if authorization:
        scheme, _, credentials = authorization.partition(" ")
        if scheme.lower() == "bearer" and credentials.strip():
            return credentials.strip()
    return None


async def resolve_identity(token: str | None) -> Principal:
    """Verify *token* and load its user.  Raises Unauthenticated."""
    if not token:
        raise Unauthenticated(NO_TOKEN)

    try:
        claims = token_service.decode_access_token(token)
        user_id = UUID(claims["sub"])
    except (jwt.InvalidTokenError, ValueError, TypeError) as e:
        logger.warning("Invalid token rejected: %s", e)
        raise Unauthenticated(INVALID_TOKEN) from None

    if await token_blacklist.is_revoked(claims["jti"]):
        logger.warning("Revoked token rejected: jti=%s", claims["jti"])
        raise Unauthenticated(INVALID_TOKEN)

    user = await user_repo.get_by_id(user_id)
    if user is None or not user.is_active:
        logger.warning("Token for missing or inactive user=%s rejected", user_id)
        raise Unauthenticated(INVALID_USER)

    user_id_var.set(str(user.id))
    return Principal.from_user(user, token_jti=claims["jti"])


async def resolve_optional_identity(token: str | None) -> Principal | None:
    """Like resolve_identity, but a missing or bad token yields None."""
    if not token:
        return None
    try:
        return await resolve_identity(token)
    except Exception:
        logger.debug("Optional identity not resolved", exc_info=True)
        return None
