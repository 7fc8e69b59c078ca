from __future__ import annotations

from collections.abc import Callable
from typing import Annotated, Any

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from salesorg.domain.permissions import has_permission
from salesorg.infra.auth import decode_access_token

bearer_token = OAuth2PasswordBearer(tokenUrl="/api/auth/token")

Checker = Callable[..., dict[str, Any]]


def get_current_claims(request: Request, token: Annotated[str, Depends(bearer_token)]) -> dict[str, Any]:
    try:
        claims = decode_access_token(token)
    except jwt.InvalidTokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc
    request.state.claims = claims
    return claims


def require_perm(*permissions: str) -> Checker:
    """Allow the request when the token grants any of ``permissions``."""

    def _checker(claims: Annotated[dict[str, Any], Depends(get_current_claims)]) -> dict[str, Any]:
        if any(has_permission(claims, permission) for permission in permissions):
            return claims
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Missing permission: {' or '.join(permissions)}",
        )

    return _checker
