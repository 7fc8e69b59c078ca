from __future__ import annotations

import os
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MIN = int(os.getenv("JWT_EXPIRES_MIN", "60"))
REQUIRED_CLAIMS = ["sub", "exp"]


def create_access_token(
    user_id: str,
    permissions: list[str] | None = None,
    *,
    expires_minutes: int | None = None,
) -> str:
    issued_at = datetime.now(UTC)
    expires_at = issued_at + timedelta(minutes=expires_minutes or JWT_EXPIRES_MIN)
    return jwt.encode(
        {"sub": user_id, "permissions": permissions or [], "iat": issued_at, "exp": expires_at},
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )


def decode_access_token(token: str) -> dict[str, Any]:
    """Decode a bearer token, requiring a subject and an expiry.

    Raises ``jwt.InvalidTokenError`` for anything the caller should treat as
    unauthenticated.
    """
    claims = jwt.decode(
        token,
        JWT_SECRET,
        algorithms=[JWT_ALGORITHM],
        options={"require": REQUIRED_CLAIMS},
    )
    if not str(claims["sub"]).strip():
        raise jwt.InvalidTokenError("empty subject")
    return claims
