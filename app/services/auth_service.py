"""Accounts: passwords, registration, login, token rotation and resets.

Passwords are hashed with argon2 (parameters and salt live inside the
encoded hash), and hashes made with older parameters are upgraded on the
next successful login.  Reset and setup tokens are random strings sent by
email; only their sha256 digest is stored.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from uuid import UUID

import jwt
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from app.core.config import SETTINGS
from app.core.errors import BadRequest, Conflict, Forbidden, NotFound, Unauthenticated
from app.core.roles import Role
from app.models.organization import SLUG_RE, Organization, OrgStatus
from app.models.user import User, normalize_email
from app.repos.org_repo import org_repo
from app.repos.user_repo import user_repo
from app.services import token_service
from app.services.email_service import queue_email
from app.services.org_service import invalidate_organization
from app.services.token_blacklist import token_blacklist

logger = logging.getLogger(__name__)

_ph = PasswordHasher()

RESET_TOKEN_TTL = timedelta(hours=1)
INVALID_CREDENTIALS = "Invalid email or password"
INVALID_REFRESH = "Invalid refresh token"
FORGOT_PASSWORD_REPLY = (
    "If an account with that email exists, a password reset link has been sent"
)


def hash_password(plain_password: str) -> str:
    if not plain_password:
        raise ValueError("password must be non-empty")
    return _ph.hash(plain_password)


def verify_password(plain_password: str, password_hash: str) -> bool:
    """Never raises: malformed hashes and mismatches are both False."""
    if not plain_password or not password_hash:
        return False
    try:
        return _ph.verify(password_hash, plain_password)
    except (VerifyMismatchError, VerificationError, InvalidHash):
        return False


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


@dataclass(frozen=True, slots=True)
class IssuedTokens:
    access_token: str
    refresh_token: str


def issue_tokens(user: User) -> IssuedTokens:
    return IssuedTokens(
        access_token=token_service.create_access_token(
            sub=str(user.id), email=user.email, role=user.role.value
        ),
        refresh_token=token_service.create_refresh_token(sub=str(user.id)),
    )


# ---------------------------------------------------------------------------
# Registration and login
# ---------------------------------------------------------------------------


async def register(
    *,
    name: str,
    email: str,
    password: str,
    organization_name: str,
    organization_slug: str,
) -> tuple[User, Organization, IssuedTokens]:
    """Self-service sign-up: a new OrgOwner and a new trialing organization."""
    email = normalize_email(email)
    slug = organization_slug.strip().lower()
    if not SLUG_RE.match(slug):
        raise BadRequest(
            "Slug can only contain lowercase letters, numbers, and hyphens"
        )
    if await user_repo.get_by_email(email) is not None:
        raise Conflict("User with this email already exists")
    if await org_repo.get_by_slug(slug) is not None:
        raise Conflict("Organization slug already exists")

    user = User.new(
        email=email,
        password_hash=hash_password(password),
        name=name,
        role=Role.ORG_OWNER,
    )
    org = Organization.new_trial(
        name=organization_name,
        slug=slug,
        owner_id=user.id,
        trial_days=SETTINGS.trial_days,
    )
    try:
        await org_repo.add(org)
    except ValueError:
        raise Conflict("Organization slug already exists") from None
    try:
        await user_repo.add(_with_org(user, org.id))
    except ValueError:
        await org_repo.delete(org.id)
        raise Conflict("User with this email already exists") from None

    user = await user_repo.get_by_id(user.id) or _with_org(user, org.id)
    logger.info("Registered user=%s with organization=%s (%s)", user.id, org.id, slug)
    return user, org, issue_tokens(user)


def _with_org(user: User, org_id: UUID) -> User:
    return replace(user, organization_id=org_id)


async def login(email: str, password: str) -> tuple[User, IssuedTokens]:
    user = await user_repo.get_by_email(email)
    if user is None:
        logger.warning("Login failed: unknown email")
        raise Unauthenticated(INVALID_CREDENTIALS)
    if not user.is_active:
        logger.warning("Login refused for deactivated user=%s", user.id)
        raise Forbidden("Your account has been deactivated")
    if not verify_password(password, user.password_hash):
        logger.warning("Login failed: bad password for user=%s", user.id)
        raise Unauthenticated(INVALID_CREDENTIALS)

    changes: dict = {"last_login_at": datetime.now(UTC)}
    if _ph.check_needs_rehash(user.password_hash):
        changes["password_hash"] = _ph.hash(password)
        logger.info("Rehashed password for user=%s", user.id)
    user = await user_repo.update(user.id, **changes) or user

    logger.info("User %s logged in", user.id)
    return user, issue_tokens(user)


# ---------------------------------------------------------------------------
# Token rotation and logout
# ---------------------------------------------------------------------------


async def refresh(refresh_token: str | None) -> tuple[User, IssuedTokens]:
    """Rotate a refresh token: the old one is revoked, a new pair issued."""
    if not refresh_token:
        raise Unauthenticated("No refresh token provided")
    try:
        claims = token_service.decode_refresh_token(refresh_token)
        user_id = UUID(claims["sub"])
    except (jwt.InvalidTokenError, ValueError, TypeError):
        logger.warning("Invalid refresh token rejected")
        raise Unauthenticated(INVALID_REFRESH) from None

    if await token_blacklist.is_revoked(claims["jti"]):
        logger.warning("Revoked refresh token presented for user=%s", user_id)
        raise Unauthenticated(INVALID_REFRESH)

    user = await user_repo.get_by_id(user_id)
    if user is None or not user.is_active:
        raise Unauthenticated(INVALID_REFRESH)

    await token_blacklist.revoke(claims["jti"], float(claims["exp"]))
    return user, issue_tokens(user)


async def logout(*, access_token: str | None, refresh_token: str | None) -> None:
    """Revoke whichever of the two tokens is present and still valid.

    Logout is idempotent: an expired or garbled token has nothing left to
    revoke and is ignored.
    """
    for token, decode in (
        (access_token, token_service.decode_access_token),
        (refresh_token, token_service.decode_refresh_token),
    ):
        if not token:
            continue
        try:
            claims = decode(token)
        except jwt.InvalidTokenError:
            logger.debug("Logout with an invalid token; nothing to revoke")
            continue
        await token_blacklist.revoke(claims["jti"], float(claims["exp"]))


# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------


async def change_password(user_id: UUID, current: str, new: str) -> None:
    user = await user_repo.get_by_id(user_id)
    if user is None:
        raise NotFound("User not found")
    if not verify_password(current, user.password_hash):
        raise BadRequest("Current password is incorrect")
    if current == new:
        raise BadRequest("New password must be different from the current password")
    await user_repo.update(
        user_id, password_hash=hash_password(new), must_change_password=False
    )
    logger.info("Password changed for user=%s", user_id)


async def forgot_password(email: str) -> str | None:
    """Issue a one-hour reset token and email it.

    Returns the raw token (None for an unknown email) so dev builds can
    surface it; the HTTP reply is the same either way.
    """
    user = await user_repo.get_by_email(email)
    if user is None:
        logger.info("Password reset requested for unknown email")
        return None

    token = secrets.token_hex(32)
    await user_repo.update(
        user.id,
        password_reset_token_hash=hash_token(token),
        password_reset_expires=datetime.now(UTC) + RESET_TOKEN_TTL,
    )
    await queue_email("password_reset", user.email, name=user.name, token=token)
    return token


async def reset_password(token: str, new_password: str) -> None:
    user = await user_repo.get_by_reset_token_hash(hash_token(token))
    now = datetime.now(UTC)
    if (
        user is None
        or user.password_reset_expires is None
        or user.password_reset_expires <= now
    ):
        raise BadRequest("Invalid or expired reset token")
    await user_repo.update(
        user.id,
        password_hash=hash_password(new_password),
        password_reset_token_hash=None,
        password_reset_expires=None,
        must_change_password=False,
    )
    logger.info("Password reset completed for user=%s", user.id)


# ---------------------------------------------------------------------------
# Admin-created organizations
# ---------------------------------------------------------------------------


async def setup_account(
    token: str, password: str, name: str | None = None
) -> tuple[User, Organization, IssuedTokens]:
    """Activate an admin-created organization and its owner."""
    org = await org_repo.get_by_setup_token_hash(hash_token(token))
    if org is None or org.status is not OrgStatus.PENDING_SETUP or org.owner_id is None:
        raise BadRequest("Invalid or expired setup token")
    owner = await user_repo.get_by_id(org.owner_id)
    if owner is None:
        raise BadRequest("Invalid or expired setup token")

    changes: dict = {
        "password_hash": hash_password(password),
        "is_active": True,
        "must_change_password": False,
        "last_login_at": datetime.now(UTC),
    }
    if name and name.strip():
        changes["name"] = name.strip()
    owner = await user_repo.update(owner.id, **changes) or owner
    org = (
        await org_repo.update(org.id, status=OrgStatus.ACTIVE, setup_token_hash=None)
        or org
    )
    await invalidate_organization(org.id)
    logger.info("Organization %s set up by owner=%s", org.id, owner.id)
    return owner, org, issue_tokens(owner)
