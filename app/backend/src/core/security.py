"""Bearer-token authentication for operator and file endpoints."""

from __future__ import annotations

from datetime import timedelta
from typing import Any

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from app.backend.src.core.config import get_settings
from app.backend.src.models.base import utc_now

ROLE_ADMIN = "admin"
ROLE_SHOP_OWNER = "shop-owner"

_scheme = HTTPBearer(auto_error=False)


class AuthenticatedUser(BaseModel):
    """Caller identity carried by a verified access token."""

    id: str
    role: str
    email: str | None = None
    shop_id: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def create_access_token(
    *,
    user_id: str,
    role: str,
    email: str | None = None,
    shop_id: str | None = None,
    expires_minutes: int | None = None,
) -> str:
    """Sign an access token for the given identity."""

    settings = get_settings()
    minutes = expires_minutes if expires_minutes is not None else settings.access_token_expire_minutes
    claims: dict[str, Any] = {
        "sub": user_id,
        "role": role,
        "exp": utc_now() + timedelta(minutes=minutes),
    }
    if email:
        claims["email"] = email
    if shop_id:
        claims["shop_id"] = shop_id
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def _decode_token(token: str) -> dict[str, Any]:
    settings = get_settings()
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        ) from exc


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(_scheme),
) -> AuthenticatedUser:
    """Resolve the caller from the bearer token."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )

    payload = _decode_token(credentials.credentials)
    subject = payload.get("sub")
    role = payload.get("role")
    if not subject or not isinstance(role, str):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        )
    return AuthenticatedUser(
        id=str(subject),
        role=role.lower(),
        email=payload.get("email"),
        shop_id=payload.get("shop_id"),
    )


def require_admin_user(user: AuthenticatedUser = Depends(get_current_user)) -> AuthenticatedUser:
    """Dependency ensuring the caller is an administrator."""
    if not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions",
        )
    return user


def require_shop_owner_or_admin(
    user: AuthenticatedUser = Depends(get_current_user),
) -> AuthenticatedUser:
    if user.is_admin or (user.role == ROLE_SHOP_OWNER and user.shop_id):
        return user
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Insufficient permissions",
    )


def ensure_shop_access(user: AuthenticatedUser, shop_id: str) -> None:
    """Shop owners only reach their own shop's records."""
    if not user.is_admin and user.shop_id != shop_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied",
        )


__all__ = [
    "AuthenticatedUser",
    "ROLE_ADMIN",
    "ROLE_SHOP_OWNER",
    "create_access_token",
    "ensure_shop_access",
    "get_current_user",
    "require_admin_user",
    "require_shop_owner_or_admin",
]
