"""JWT access tokens (ES256) identifying badge-service callers.

The token's ``sub`` claim is the caller Identity the ledger sees: the
awarder for award/propose, the recipient for claim/return.

Dev/test: an ephemeral EC key pair is generated on import and
create_access_token() mints tokens for tests and local scripts.
Production: JWT_PUBLIC_KEY_FILE points at the upstream issuer's public
key; tokens are only verified here, never minted.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from app.core.config import SETTINGS

ALGORITHM = "ES256"
ISSUER = "badge-service"
AUDIENCE = "badge-service"
ACCESS_TOKEN_TTL_MIN = 15

if SETTINGS.jwt_public_key_file:
    with open(SETTINGS.jwt_public_key_file, "rb") as f:
        _public_key = serialization.load_pem_public_key(f.read())
    _private_key: ec.EllipticCurvePrivateKey | None = None
else:
    _private_key = ec.generate_private_key(ec.SECP256R1())
    _public_key = _private_key.public_key()


def create_access_token(
    *,
    sub: str,
    roles: list[str] | None = None,
) -> str:
    """Build and sign an access token.  Only available with the local key."""
    if _private_key is None:
        raise RuntimeError("access tokens are minted by the upstream issuer")
    now = datetime.now(UTC)
    payload = {
        "sub": sub,
        "iss": ISSUER,
        "aud": AUDIENCE,
        "exp": now + timedelta(minutes=ACCESS_TOKEN_TTL_MIN),
        "iat": now,
        "jti": str(uuid.uuid4()),
        "roles": roles or ["user"],
    }
    return jwt.encode(payload, _private_key, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Verify signature and claims, return the payload.

    Pins the algorithm to ES256 to prevent alg:none and alg-switching.
    Raises jwt.ExpiredSignatureError, jwt.InvalidTokenError on failure.
    """
    return jwt.decode(
        token,
        _public_key,
        algorithms=[ALGORITHM],
        issuer=ISSUER,
        audience=AUDIENCE,
        options={"require": ["sub", "exp", "iat", "jti"]},
    )
