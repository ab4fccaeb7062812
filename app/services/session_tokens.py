"""Verification of identity-provider session tokens (RS256).

The browser signs in with Clerk and sends Clerk's short-lived session JWT
as a bearer token.  This service never issues tokens in production; it
only verifies them against the instance's public key (CLERK_JWT_KEY, the
PEM shown in the Clerk dashboard under "JWT public key").

Dev/test: no key is configured, so an ephemeral RSA key pair is generated
on import and create_session_token() mints tokens the verifier accepts.
That helper is what the tests use to authenticate as any user id.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from app.core.config import SETTINGS

ALGORITHM = "RS256"
DEV_SESSION_TTL_MIN = 15

# ---------------------------------------------------------------------------
# Key management
# ---------------------------------------------------------------------------

if SETTINGS.clerk_jwt_key:
    # Env vars often carry the PEM with literal "\n" sequences
    _public_key = serialization.load_pem_public_key(
        SETTINGS.clerk_jwt_key.replace("\\n", "\n").encode()
    )
    _private_key: rsa.RSAPrivateKey | None = None
else:
    _private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    _public_key = _private_key.public_key()


def decode_session_token(token: str) -> dict:
    """Verify signature and expiry, return the claims.

    Pins the algorithm to RS256 to prevent alg:none and alg-switching
    attacks.  Clerk session tokens carry no audience, so none is checked.

    Raises jwt.ExpiredSignatureError, jwt.InvalidTokenError on failure.
    """
    return jwt.decode(
        token,
        _public_key,
        algorithms=[ALGORITHM],
        options={"require": ["sub", "exp", "iat"], "verify_aud": False},
        leeway=5,
    )


def create_session_token(
    *, sub: str, ttl: timedelta = timedelta(minutes=DEV_SESSION_TTL_MIN)
) -> str:
    """Mint a session token signed by the ephemeral dev key.

    Raises RuntimeError when a real CLERK_JWT_KEY is configured: only the
    identity provider can issue tokens then.
    """
    if _private_key is None:
        raise RuntimeError("session tokens are issued by the identity provider")
    now = datetime.now(UTC)
    payload = {
        "sub": sub,
        "sid": f"sess_{uuid.uuid4().hex}",
        "iat": now,
        "nbf": now,
        "exp": now + ttl,
    }
    return jwt.encode(payload, _private_key, algorithm=ALGORITHM)
