"""
User feature routes.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.errors import not_found
from app.features.users.models import User
from app.features.users.schemas import CurrentUserResponse, UserResponse, UserPublic
from app.features.users.dependencies import get_current_user
from app.features.rbac import service as rbac_service
from app.features.rbac.audit import RequestInfo
from app.features.rbac.constants import Permissions
from app.features.rbac.engine import RbacService, get_rbac_service
from app.features.rbac.guards import require
from app.features.rbac.stores import SqlIdentityStore


router = APIRouter(tags=["users"])


@router.get("/me", response_model=CurrentUserResponse)
async def get_current_user_profile(
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    rbac: Annotated[RbacService, Depends(get_rbac_service)],
):
    """Get current authenticated user's profile with roles and effective permissions."""
    roles = await rbac_service.list_user_roles(db, user.id)
    effective_ids = await rbac.effective_permission_ids(db, user.id)
    return CurrentUserResponse(
        **UserResponse.model_validate(user).model_dump(),
        roles=[role.name for role in roles],
        permissions=await SqlIdentityStore().names_for_permission_ids(db, effective_ids),
    )


@router.get("/{user_id}", response_model=UserPublic)
async def get_user_by_id(
    user_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    _: Annotated[User, Depends(require(permissions=[Permissions.USERS_READ]))],
):
    """Get public user profile by ID."""
    result = await db.execute(select(User).where(User.id == user_id, User.deleted_at.is_(None)))
    user = result.scalar_one_or_none()

    if user is None:
        raise not_found("user")

    return user


@router.get("/", response_model=list[UserPublic])
async def list_users(
    db: Annotated[AsyncSession, Depends(get_db)],
    _: Annotated[User, Depends(require(permissions=[Permissions.USERS_READ]))],
    skip: int = 0,
    limit: int = 50
):
    """List all active users (public info only)."""
    result = await db.execute(
        select(User)
        .where(User.is_active == True, User.deleted_at.is_(None))  # noqa: E712
        .order_by(User.username)
        .offset(skip)
        .limit(limit)
    )
    users = result.scalars().all()
    return users


@router.post("/{user_id}/archive", response_model=UserResponse)
async def archive_user(
    user_id: str,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require(permissions=[Permissions.USERS_ARCHIVE]))],
):
    """Archive a user. Their tokens stop authenticating immediately."""
    user = await rbac_service.get_user(db, user_id, include_archived=True)
    return await rbac_service.set_archived(
        db, user, True, "user", RequestInfo.from_request(request, current_user)
    )


@router.post("/{user_id}/restore", response_model=UserResponse)
async def restore_user(
    user_id: str,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require(permissions=[Permissions.USERS_RESTORE]))],
):
    user = await rbac_service.get_user(db, user_id, include_archived=True)
    return await rbac_service.set_archived(
        db, user, False, "user", RequestInfo.from_request(request, current_user)
    )
