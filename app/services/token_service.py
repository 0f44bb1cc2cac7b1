"""JWT creation and validation (ES256).

Access and refresh tokens are signed with the same key pair but carry
different audiences, so a refresh token is never accepted where an
access token is expected (and vice versa).
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

import jwt
from cryptography.hazmat.primitives.asymmetric import ec

# ---------------------------------------------------------------------------
# Key management
# ---------------------------------------------------------------------------
# Ephemeral EC key pair generated on import: tokens do not survive a
# restart and are not shared between processes.
_private_key = ec.generate_private_key(ec.SECP256R1())
_public_key = _private_key.public_key()

ALGORITHM = "ES256"
ISSUER = "teamspace-service"
AUDIENCE = "teamspace-api"
ACCESS_TOKEN_TTL_MIN = 15

REFRESH_AUDIENCE = "teamspace-refresh"
REFRESH_TOKEN_TTL_DAYS = 7

_REQUIRED = ["sub", "exp", "iat", "jti"]


def create_access_token(*, sub: str, email: str, role: str) -> str:
    """Build and sign an access token carrying the user's id, email and role.

    The role claim is informational: identity resolution always reloads
    the user, so role changes apply on the next request.
    """
    now = datetime.now(UTC)
    payload = {
        "sub": sub,
        "email": email,
        "role": role,
        "iss": ISSUER,
        "aud": AUDIENCE,
        "exp": now + timedelta(minutes=ACCESS_TOKEN_TTL_MIN),
        "iat": now,
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, _private_key, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Verify signature and claims, return the payload.

    Pins the algorithm to ES256 so alg:none and alg-switching tokens are
    rejected.  Raises jwt.InvalidTokenError (or a subclass) on failure.
    """
    return jwt.decode(
        token,
        _public_key,
        algorithms=[ALGORITHM],
        issuer=ISSUER,
        audience=AUDIENCE,
        options={"require": _REQUIRED},
    )


def create_refresh_token(*, sub: str) -> str:
    """Refresh tokens carry identity only; the role is re-read on refresh."""
    now = datetime.now(UTC)
    payload = {
        "sub": sub,
        "iss": ISSUER,
        "aud": REFRESH_AUDIENCE,
        "exp": now + timedelta(days=REFRESH_TOKEN_TTL_DAYS),
        "iat": now,
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, _private_key, algorithm=ALGORITHM)


def decode_refresh_token(token: str) -> dict:
    return jwt.decode(
        token,
        _public_key,
        algorithms=[ALGORITHM],
        issuer=ISSUER,
        audience=REFRESH_AUDIENCE,
        options={"require": _REQUIRED},
    )
