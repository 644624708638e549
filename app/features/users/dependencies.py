"""
FastAPI dependencies for authentication.

Authorization (roles and permissions) is handled by
``app.features.rbac.guards``.
"""
from typing import Annotated, Optional
from datetime import datetime, timezone
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.errors import AppError, ErrorKind
from app.features.users.models import User
from app.features.users.auth import unauthorized, verify_jwt_token


# Missing credentials are reported as AppError, not FastAPI's own 403/401
security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> User:
    """
    Get the current authenticated user from JWT token.

    This dependency:
    1. Extracts JWT from Authorization header
    2. Verifies signature and expiry
    3. Looks up the user in the local database (archived users are unknown)
    4. Updates last_login_at timestamp

    Usage:
        @router.get("/me")
        async def get_me(user: User = Depends(get_current_user)):
            return user
    """
    if credentials is None:
        raise unauthorized("Not authenticated")

    payload = verify_jwt_token(credentials.credentials)
    user_id = payload.get("sub")

    if not user_id:
        raise unauthorized("Invalid token payload")

    result = await db.execute(
        select(User).where(User.id == str(user_id), User.deleted_at.is_(None))
    )
    user = result.scalar_one_or_none()

    if user is None:
        raise unauthorized("User not found")

    if not user.is_active:
        raise AppError(ErrorKind.FORBIDDEN, "User account is deactivated", entity="user")

    user.last_login_at = datetime.now(timezone.utc)
    await db.flush()
    await db.refresh(user)

    return user


def get_authorization_header(request) -> str:
    """
    Extract authorization header for rate limiting.
    Used with slowapi Limiter.
    """
    auth = request.headers.get("Authorization", "")
    return auth or "anonymous"
