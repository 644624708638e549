"""
RBAC management API routes.

Provides endpoints for reading roles and permissions, archiving them,
managing role-permission links, user role assignments, per-user permission
overrides, authorization checks and the audit log.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Request
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.features.rbac import service
from app.features.rbac.audit import RequestInfo
from app.features.rbac.constants import Permissions
from app.features.rbac.engine import RbacService, get_rbac_service
from app.features.rbac.guards import require
from app.features.rbac.models import AuditLog, Permission, Role
from app.features.rbac.schemas import (
    AssignPermissions,
    AssignRolesToUser,
    AuditLogListResponse,
    AuditLogResponse,
    AuthorizationCheckRequest,
    AuthorizationCheckResponse,
    PermissionIds,
    PermissionOverrideResponse,
    PermissionResponse,
    RoleIds,
    RoleResponse,
    RoleWithPermissions,
    UserPermissionsResponse,
    UserRolesResponse,
)
from app.features.rbac.stores import SqlIdentityStore
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()


# ============================================================================
# Role Routes
# ============================================================================

@router.get("/roles", response_model=List[RoleResponse])
async def list_roles(
    skip: int = 0,
    limit: int = 100,
    include_archived: bool = False,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require(permissions=[Permissions.ROLES_READ]))
):
    """List roles; archived ones only when asked for."""
    stmt = select(Role)
    if not include_archived:
        stmt = stmt.where(Role.deleted_at.is_(None))
    stmt = stmt.order_by(Role.name).offset(skip).limit(limit)
    result = await db.execute(stmt)
    return result.scalars().all()


@router.get("/roles/{role_id}", response_model=RoleWithPermissions)
async def get_role(
    role_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require(permissions=[Permissions.ROLES_READ]))
):
    """Get a role with its live permissions."""
    role = await service.get_role(db, role_id, include_archived=True)
    permissions = await service.list_live_role_permissions(db, role_id)
    return RoleWithPermissions(
        **RoleResponse.model_validate(role).model_dump(),
        permissions=[PermissionResponse.model_validate(p) for p in permissions],
    )


@router.post("/roles/{role_id}/archive", response_model=RoleResponse)
async def archive_role(
    role_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require(permissions=[Permissions.ROLES_ARCHIVE]))
):
    role = await service.get_role(db, role_id, include_archived=True)
    return await service.set_archived(db, role, True, "role", RequestInfo.from_request(request, current_user))


@router.post("/roles/{role_id}/restore", response_model=RoleResponse)
async def restore_role(
    role_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require(permissions=[Permissions.ROLES_RESTORE]))
):
    role = await service.get_role(db, role_id, include_archived=True)
    return await service.set_archived(db, role, False, "role", RequestInfo.from_request(request, current_user))


@router.post("/roles/{role_id}/permissions", response_model=RoleWithPermissions)
async def assign_permissions_to_role(
    role_id: str,
    assignment: AssignPermissions,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require(permissions=[Permissions.ROLES_ASSIGN_PERMISSIONS]))
):
    """Link permissions to a role."""
    await service.assign_permissions_to_role(
        db, role_id, assignment.permission_ids, assignment.replace,
        RequestInfo.from_request(request, current_user),
    )
    return await get_role(role_id, db, current_user)


@router.delete("/roles/{role_id}/permissions", response_model=RoleWithPermissions)
async def remove_permissions_from_role(
    role_id: str,
    removal: PermissionIds,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require(permissions=[Permissions.ROLES_REMOVE_PERMISSIONS]))
):
    """Unlink permissions from a role."""
    await service.remove_permissions_from_role(
        db, role_id, removal.permission_ids, RequestInfo.from_request(request, current_user)
    )
    return await get_role(role_id, db, current_user)


# ============================================================================
# Permission Routes
# ============================================================================

@router.get("/permissions", response_model=List[PermissionResponse])
async def list_permissions(
    skip: int = 0,
    limit: int = 100,
    resource: Optional[str] = None,
    action: Optional[str] = None,
    include_archived: bool = False,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require(permissions=[Permissions.PERMISSIONS_READ]))
):
    """List permissions with optional filtering."""
    stmt = select(Permission)

    if resource:
        stmt = stmt.where(Permission.resource == resource)
    if action:
        stmt = stmt.where(Permission.action == action)
    if not include_archived:
        stmt = stmt.where(Permission.deleted_at.is_(None))

    stmt = stmt.order_by(Permission.name).offset(skip).limit(limit)
    result = await db.execute(stmt)
    return result.scalars().all()


@router.get("/permissions/{permission_id}", response_model=PermissionResponse)
async def get_permission(
    permission_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require(permissions=[Permissions.PERMISSIONS_READ]))
):
    return await service.get_permission(db, permission_id, include_archived=True)


@router.post("/permissions/{permission_id}/archive", response_model=PermissionResponse)
async def archive_permission(
    permission_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require(permissions=[Permissions.PERMISSIONS_ARCHIVE]))
):
    """Archive a permission. It stops resolving by name immediately."""
    permission = await service.get_permission(db, permission_id, include_archived=True)
    return await service.set_archived(
        db, permission, True, "permission", RequestInfo.from_request(request, current_user)
    )


@router.post("/permissions/{permission_id}/restore", response_model=PermissionResponse)
async def restore_permission(
    permission_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require(permissions=[Permissions.PERMISSIONS_RESTORE]))
):
    permission = await service.get_permission(db, permission_id, include_archived=True)
    return await service.set_archived(
        db, permission, False, "permission", RequestInfo.from_request(request, current_user)
    )


# ============================================================================
# User Role Routes
# ============================================================================

@router.get("/users/{user_id}/roles", response_model=UserRolesResponse)
async def get_user_roles(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require(permissions=[Permissions.USER_ROLES_READ]))
):
    await service.get_user(db, user_id)
    roles = await service.list_user_roles(db, user_id)
    return UserRolesResponse(user_id=user_id, roles=[RoleResponse.model_validate(r) for r in roles])


@router.post("/users/{user_id}/roles", response_model=UserRolesResponse)
async def assign_roles_to_user(
    user_id: str,
    assignment: AssignRolesToUser,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require(permissions=[Permissions.USER_ROLES_ASSIGN]))
):
    """Assign roles to a user. With ``replace`` the user's current roles are dropped first."""
    await service.assign_roles_to_user(
        db, user_id, assignment.role_ids, assignment.replace,
        RequestInfo.from_request(request, current_user),
    )
    return await get_user_roles(user_id, db, current_user)


@router.delete("/users/{user_id}/roles", response_model=UserRolesResponse)
async def remove_roles_from_user(
    user_id: str,
    removal: RoleIds,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require(permissions=[Permissions.USER_ROLES_REMOVE]))
):
    await service.remove_roles_from_user(
        db, user_id, removal.role_ids, RequestInfo.from_request(request, current_user)
    )
    return await get_user_roles(user_id, db, current_user)


# ============================================================================
# User Permission Override Routes
# ============================================================================

async def _user_permissions_response(
    db: AsyncSession,
    rbac: RbacService,
    user_id: str,
) -> UserPermissionsResponse:
    overrides = await service.list_overrides(db, user_id)
    roles = await service.list_user_roles(db, user_id)
    effective_ids = await rbac.effective_permission_ids(db, user_id)
    effective_names = await SqlIdentityStore().names_for_permission_ids(db, effective_ids)
    return UserPermissionsResponse(
        user_id=user_id,
        role_names=[role.name for role in roles],
        overrides=[
            PermissionOverrideResponse(
                permission_id=row.permission_id,
                permission_name=row.permission_name,
                is_allowed=bool(row.is_allowed),
                created_by=row.created_by,
                created_at=row.created_at,
            )
            for row in overrides
        ],
        effective_permissions=effective_names,
    )


@router.get("/users/{user_id}/permissions", response_model=UserPermissionsResponse)
async def get_user_permissions(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    rbac: RbacService = Depends(get_rbac_service),
    current_user: User = Depends(require(permissions=[Permissions.USER_PERMISSIONS_READ]))
):
    """A user's overrides and resulting effective permissions."""
    await service.get_user(db, user_id)
    return await _user_permissions_response(db, rbac, user_id)


@router.post("/users/{user_id}/permissions/grant", response_model=UserPermissionsResponse)
async def grant_permissions_to_user(
    user_id: str,
    assignment: AssignPermissions,
    request: Request,
    db: AsyncSession = Depends(get_db),
    rbac: RbacService = Depends(get_rbac_service),
    current_user: User = Depends(require(permissions=[Permissions.USER_PERMISSIONS_GRANT]))
):
    await service.grant_permissions_to_user(
        db, user_id, assignment.permission_ids, assignment.replace,
        RequestInfo.from_request(request, current_user),
    )
    return await _user_permissions_response(db, rbac, user_id)


@router.post("/users/{user_id}/permissions/deny", response_model=UserPermissionsResponse)
async def deny_permissions_to_user(
    user_id: str,
    assignment: AssignPermissions,
    request: Request,
    db: AsyncSession = Depends(get_db),
    rbac: RbacService = Depends(get_rbac_service),
    current_user: User = Depends(require(permissions=[Permissions.USER_PERMISSIONS_DENY]))
):
    await service.deny_permissions_to_user(
        db, user_id, assignment.permission_ids, assignment.replace,
        RequestInfo.from_request(request, current_user),
    )
    return await _user_permissions_response(db, rbac, user_id)


@router.delete("/users/{user_id}/permissions", response_model=UserPermissionsResponse)
async def remove_permission_overrides(
    user_id: str,
    removal: PermissionIds,
    request: Request,
    db: AsyncSession = Depends(get_db),
    rbac: RbacService = Depends(get_rbac_service),
    current_user: User = Depends(require(permissions=[Permissions.USER_PERMISSIONS_REMOVE]))
):
    """Remove overrides; the user falls back to role-derived permissions."""
    await service.remove_permission_overrides(
        db, user_id, removal.permission_ids, RequestInfo.from_request(request, current_user)
    )
    return await _user_permissions_response(db, rbac, user_id)


# ============================================================================
# Authorization Check Routes
# ============================================================================

@router.post("/check", response_model=AuthorizationCheckResponse)
async def check_authorization(
    check_request: AuthorizationCheckRequest,
    db: AsyncSession = Depends(get_db),
    rbac: RbacService = Depends(get_rbac_service),
    current_user: User = Depends(get_current_user)
):
    """Check whether the current user meets a role/permission requirement."""
    has_role = None
    has_perm = None

    if check_request.roles:
        has_role = await rbac.has_any_role(db, current_user.id, check_request.roles)
    if check_request.permissions:
        has_perm = await rbac.has_permission(
            db, current_user.id, check_request.permissions, check_request.match_all
        )

    allowed = has_role is not False and has_perm is not False
    reason = None
    if has_role is False:
        reason = "Missing required role"
    elif has_perm is False:
        reason = "Missing required permission"

    return AuthorizationCheckResponse(
        allowed=allowed,
        has_role=has_role,
        has_permission=has_perm,
        reason=reason,
    )


# ============================================================================
# Audit Log Routes
# ============================================================================

@router.get("/audit-logs", response_model=AuditLogListResponse)
async def list_audit_logs(
    skip: int = 0,
    limit: int = 50,
    user_id: Optional[str] = None,
    action: Optional[str] = None,
    entity: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require(permissions=[Permissions.AUDIT_LOGS_READ]))
):
    """List audit logs with optional filtering, newest first."""
    stmt = select(AuditLog)

    if user_id:
        stmt = stmt.where(AuditLog.user_id == user_id)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    if entity:
        stmt = stmt.where(AuditLog.entity == entity)

    # Get total count
    count_stmt = select(func.count()).select_from(stmt.subquery())
    total_result = await db.execute(count_stmt)
    total = total_result.scalar() or 0

    # Get paginated results
    stmt = stmt.order_by(AuditLog.created_at.desc()).offset(skip).limit(limit)
    result = await db.execute(stmt)
    logs = result.scalars().all()

    pages = (total + limit - 1) // limit if limit > 0 else 0
    page = (skip // limit) + 1 if limit > 0 else 1

    return AuditLogListResponse(
        items=[AuditLogResponse.model_validate(entry) for entry in logs],
        total=total,
        page=page,
        page_size=limit,
        pages=pages
    )
