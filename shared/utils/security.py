"""
shared/utils/security.py
Bearer token handling. Tokens are issued by the identity provider with the
shared JWT secret; this service only verifies them. create_access_token is
kept for service-to-service calls and the test-suite.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from config.settings import settings
from shared.models.models import UserRole

REQUIRED_CLAIMS = ("sub", "role", "email", "jti")
KNOWN_ROLES = frozenset(role.value for role in UserRole)


def create_access_token(
    user_id: str,
    role: str,
    email: str,
    extra: Optional[dict] = None,
) -> tuple[str, str]:
    """Returns (token, jti); jti is the key used for deny-listing."""
    jti = str(uuid.uuid4())
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "role": role,
        "email": email,
        "jti": jti,
        "iat": now,
        "exp": now + timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES),
        "type": "access",
        **(extra or {}),
    }
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM), jti


def verify_access_token(token: str) -> dict:
    """
    Decode an access token and check the claims the marketplace relies on.
    Raises JWTError for a bad signature, expiry, wrong token type, a missing
    claim or a role this service does not know.
    """
    payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    if payload.get("type") != "access":
        raise JWTError("Invalid token type")

    missing = [claim for claim in REQUIRED_CLAIMS if not payload.get(claim)]
    if missing:
        raise JWTError(f"Token is missing claims: {', '.join(missing)}")
    if payload["role"] not in KNOWN_ROLES:
        raise JWTError(f"Unknown role '{payload['role']}'")
    return payload
