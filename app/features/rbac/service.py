"""
Administrative RBAC mutations.

Every function works inside the caller's session and leaves committing to
the caller (``get_db`` commits when the route returns). Each mutation writes
an audit entry with before/after change tracking in the same session.

Replace semantics: ``replace=True`` removes *all* of the target's existing
rows of that kind before inserting the new ones.
"""
from typing import Iterable, List, Optional, Sequence, Type, TypeVar
from sqlalchemy import select, delete, update, insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import AppError, ErrorKind, not_found, validation_error
from app.features.rbac.audit import RequestInfo, create_audit_log, get_changed_fields, id_list_state
from app.features.rbac.constants import AuditActions
from app.features.rbac.models import (
    Permission,
    Role,
    user_roles,
    role_permissions,
    user_permissions,
    utcnow,
)
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)

ArchivableT = TypeVar("ArchivableT", Role, Permission, User)


def _ids(values: Optional[Iterable[str]], entity: str) -> List[str]:
    cleaned: List[str] = []
    for value in values or ():
        if value and value not in cleaned:
            cleaned.append(value)
    if not cleaned:
        raise validation_error(f"At least one {entity.replace('_', ' ')} ID is required.", entity=entity)
    return cleaned


# ============================================================================
# Lookups
# ============================================================================

async def get_user(db: AsyncSession, user_id: str, include_archived: bool = False) -> User:
    stmt = select(User).where(User.id == user_id)
    if not include_archived:
        stmt = stmt.where(User.deleted_at.is_(None))
    user = (await db.execute(stmt)).scalars().first()
    if user is None:
        raise not_found("user")
    return user


async def get_role(db: AsyncSession, role_id: str, include_archived: bool = False) -> Role:
    stmt = select(Role).where(Role.id == role_id)
    if not include_archived:
        stmt = stmt.where(Role.deleted_at.is_(None))
    role = (await db.execute(stmt)).scalars().first()
    if role is None:
        raise not_found("role")
    return role


async def get_permission(db: AsyncSession, permission_id: str, include_archived: bool = False) -> Permission:
    stmt = select(Permission).where(Permission.id == permission_id)
    if not include_archived:
        stmt = stmt.where(Permission.deleted_at.is_(None))
    permission = (await db.execute(stmt)).scalars().first()
    if permission is None:
        raise not_found("permission")
    return permission


async def _require_live(db: AsyncSession, model: Type[ArchivableT], ids: Sequence[str], entity: str) -> List[ArchivableT]:
    result = await db.execute(select(model).where(model.id.in_(ids), model.deleted_at.is_(None)))
    found = list(result.scalars().all())
    missing = sorted(set(ids) - {row.id for row in found})
    if missing:
        raise not_found(entity, f"{entity.capitalize()}(s) not found: {', '.join(missing)}")
    return found


async def list_user_role_ids(db: AsyncSession, user_id: str) -> List[str]:
    result = await db.execute(select(user_roles.c.role_id).where(user_roles.c.user_id == user_id))
    return sorted(result.scalars().all())


async def list_user_roles(db: AsyncSession, user_id: str) -> List[Role]:
    stmt = (
        select(Role)
        .join(user_roles, user_roles.c.role_id == Role.id)
        .where(user_roles.c.user_id == user_id, Role.deleted_at.is_(None))
        .order_by(Role.name)
    )
    return list((await db.execute(stmt)).scalars().all())


async def list_role_permission_ids(db: AsyncSession, role_id: str) -> List[str]:
    result = await db.execute(
        select(role_permissions.c.permission_id).where(role_permissions.c.role_id == role_id)
    )
    return sorted(result.scalars().all())


async def list_live_role_permissions(db: AsyncSession, role_id: str) -> List[Permission]:
    stmt = (
        select(Permission)
        .join(role_permissions, role_permissions.c.permission_id == Permission.id)
        .where(role_permissions.c.role_id == role_id, Permission.deleted_at.is_(None))
        .order_by(Permission.name)
    )
    return list((await db.execute(stmt)).scalars().all())


async def list_overrides(db: AsyncSession, user_id: str):
    """Override rows joined with permission names, archived permissions included."""
    stmt = (
        select(
            user_permissions.c.permission_id,
            user_permissions.c.is_allowed,
            user_permissions.c.created_by,
            user_permissions.c.created_at,
            Permission.name.label("permission_name"),
        )
        .join(Permission, Permission.id == user_permissions.c.permission_id)
        .where(user_permissions.c.user_id == user_id)
        .order_by(Permission.name)
    )
    return list((await db.execute(stmt)).all())


async def _override_state(db: AsyncSession, user_id: str) -> dict:
    rows = await db.execute(
        select(user_permissions.c.permission_id, user_permissions.c.is_allowed)
        .where(user_permissions.c.user_id == user_id)
    )
    granted, denied = [], []
    for row in rows:
        (granted if row.is_allowed else denied).append(row.permission_id)
    return {"granted_ids": sorted(granted), "denied_ids": sorted(denied)}


async def _write(db: AsyncSession, entity: str, stmt=None, params=None) -> None:
    """Execute a write (or just flush) and report unique/foreign key clashes as CONFLICT."""
    try:
        if stmt is not None:
            await db.execute(stmt, params)
        await db.flush()
    except IntegrityError as e:
        log.warning("Integrity error writing %s: %s", entity, e)
        raise AppError(ErrorKind.CONFLICT, f"Conflicting {entity.replace('_', ' ')} write", entity) from e


# ============================================================================
# User Roles
# ============================================================================

async def assign_roles_to_user(
    db: AsyncSession,
    user_id: str,
    role_ids: Iterable[str],
    replace: bool = False,
    info: Optional[RequestInfo] = None,
) -> List[str]:
    """Assign roles to a user. Already-held roles are left as they are."""
    role_ids = _ids(role_ids, "role")
    await get_user(db, user_id)
    await _require_live(db, Role, role_ids, "role")

    before = await list_user_role_ids(db, user_id)
    if replace:
        await db.execute(delete(user_roles).where(user_roles.c.user_id == user_id))
        existing: set = set()
    else:
        existing = set(before)

    new_ids = [role_id for role_id in role_ids if role_id not in existing]
    if new_ids:
        await _write(
            db,
            "user_roles",
            insert(user_roles),
            [
                {"user_id": user_id, "role_id": role_id, "created_by": info.user_name if info else None, "created_at": utcnow()}
                for role_id in new_ids
            ],
        )

    after = await list_user_role_ids(db, user_id)
    await create_audit_log(
        db,
        AuditActions.ASSIGN_ROLES,
        "user_roles",
        info,
        {
            "user_id": user_id,
            "replace": replace,
            "changed_fields": get_changed_fields(id_list_state("role_ids", before), id_list_state("role_ids", after)),
        },
    )
    return after


async def remove_roles_from_user(
    db: AsyncSession,
    user_id: str,
    role_ids: Iterable[str],
    info: Optional[RequestInfo] = None,
) -> List[str]:
    role_ids = _ids(role_ids, "role")
    await get_user(db, user_id)

    before = await list_user_role_ids(db, user_id)
    await db.execute(
        delete(user_roles).where(user_roles.c.user_id == user_id, user_roles.c.role_id.in_(role_ids))
    )
    after = await list_user_role_ids(db, user_id)

    await create_audit_log(
        db,
        AuditActions.REMOVE_ROLES,
        "user_roles",
        info,
        {
            "user_id": user_id,
            "changed_fields": get_changed_fields(id_list_state("role_ids", before), id_list_state("role_ids", after)),
        },
    )
    return after


# ============================================================================
# User Permission Overrides
# ============================================================================

async def set_permission_overrides(
    db: AsyncSession,
    user_id: str,
    permission_ids: Iterable[str],
    is_allowed: bool,
    replace: bool = False,
    info: Optional[RequestInfo] = None,
) -> dict:
    """
    Upsert grant (``is_allowed=True``) or deny overrides for a user.

    An existing override for the same permission has its ``is_allowed``
    replaced, so a grant and a denial never coexist.
    """
    permission_ids = _ids(permission_ids, "permission")
    await get_user(db, user_id)
    await _require_live(db, Permission, permission_ids, "permission")

    before = await _override_state(db, user_id)
    if replace:
        await db.execute(delete(user_permissions).where(user_permissions.c.user_id == user_id))
        existing: set = set()
    else:
        result = await db.execute(
            select(user_permissions.c.permission_id).where(
                user_permissions.c.user_id == user_id,
                user_permissions.c.permission_id.in_(permission_ids),
            )
        )
        existing = set(result.scalars().all())

    if existing:
        await db.execute(
            update(user_permissions)
            .where(
                user_permissions.c.user_id == user_id,
                user_permissions.c.permission_id.in_(sorted(existing)),
            )
            .values(is_allowed=is_allowed)
        )
    new_ids = [permission_id for permission_id in permission_ids if permission_id not in existing]
    if new_ids:
        await _write(
            db,
            "user_permissions",
            insert(user_permissions),
            [
                {
                    "user_id": user_id,
                    "permission_id": permission_id,
                    "is_allowed": is_allowed,
                    "created_by": info.user_name if info else None,
                    "created_at": utcnow(),
                }
                for permission_id in new_ids
            ],
        )

    after = await _override_state(db, user_id)
    await create_audit_log(
        db,
        AuditActions.GRANT_PERMISSIONS if is_allowed else AuditActions.DENY_PERMISSIONS,
        "user_permissions",
        info,
        {"user_id": user_id, "replace": replace, "changed_fields": get_changed_fields(before, after)},
    )
    return after


async def grant_permissions_to_user(db, user_id, permission_ids, replace=False, info=None) -> dict:
    return await set_permission_overrides(db, user_id, permission_ids, True, replace, info)


async def deny_permissions_to_user(db, user_id, permission_ids, replace=False, info=None) -> dict:
    return await set_permission_overrides(db, user_id, permission_ids, False, replace, info)


async def remove_permission_overrides(
    db: AsyncSession,
    user_id: str,
    permission_ids: Iterable[str],
    info: Optional[RequestInfo] = None,
) -> dict:
    """Drop overrides so the user falls back to role-derived permissions."""
    permission_ids = _ids(permission_ids, "permission")
    await get_user(db, user_id)

    before = await _override_state(db, user_id)
    await db.execute(
        delete(user_permissions).where(
            user_permissions.c.user_id == user_id,
            user_permissions.c.permission_id.in_(permission_ids),
        )
    )
    after = await _override_state(db, user_id)

    await create_audit_log(
        db,
        AuditActions.REMOVE_OVERRIDES,
        "user_permissions",
        info,
        {"user_id": user_id, "changed_fields": get_changed_fields(before, after)},
    )
    return after


# ============================================================================
# Role Permissions
# ============================================================================

async def assign_permissions_to_role(
    db: AsyncSession,
    role_id: str,
    permission_ids: Iterable[str],
    replace: bool = False,
    info: Optional[RequestInfo] = None,
) -> List[str]:
    permission_ids = _ids(permission_ids, "permission")
    await get_role(db, role_id)
    await _require_live(db, Permission, permission_ids, "permission")

    before = await list_role_permission_ids(db, role_id)
    if replace:
        await db.execute(delete(role_permissions).where(role_permissions.c.role_id == role_id))
        existing: set = set()
    else:
        existing = set(before)

    new_ids = [permission_id for permission_id in permission_ids if permission_id not in existing]
    if new_ids:
        await _write(
            db,
            "role_permissions",
            insert(role_permissions),
            [
                {"role_id": role_id, "permission_id": permission_id, "created_by": info.user_name if info else None, "created_at": utcnow()}
                for permission_id in new_ids
            ],
        )

    after = await list_role_permission_ids(db, role_id)
    await create_audit_log(
        db,
        AuditActions.ASSIGN_ROLE_PERMISSIONS,
        "role_permissions",
        info,
        {
            "role_id": role_id,
            "replace": replace,
            "changed_fields": get_changed_fields(
                id_list_state("permission_ids", before), id_list_state("permission_ids", after)
            ),
        },
    )
    return after


async def remove_permissions_from_role(
    db: AsyncSession,
    role_id: str,
    permission_ids: Iterable[str],
    info: Optional[RequestInfo] = None,
) -> List[str]:
    permission_ids = _ids(permission_ids, "permission")
    await get_role(db, role_id, include_archived=True)

    before = await list_role_permission_ids(db, role_id)
    await db.execute(
        delete(role_permissions).where(
            role_permissions.c.role_id == role_id,
            role_permissions.c.permission_id.in_(permission_ids),
        )
    )
    after = await list_role_permission_ids(db, role_id)

    await create_audit_log(
        db,
        AuditActions.REMOVE_ROLE_PERMISSIONS,
        "role_permissions",
        info,
        {
            "role_id": role_id,
            "changed_fields": get_changed_fields(
                id_list_state("permission_ids", before), id_list_state("permission_ids", after)
            ),
        },
    )
    return after


# ============================================================================
# Archive / Restore
# ============================================================================

async def set_archived(
    db: AsyncSession,
    row: ArchivableT,
    archived: bool,
    entity: str,
    info: Optional[RequestInfo] = None,
) -> ArchivableT:
    """
    Soft-delete or restore a role, permission or user.

    Links and overrides are kept; they simply stop counting while the row
    is archived. An archived user can no longer authenticate.
    """
    if archived == row.is_archived:
        state = "archived" if archived else "active"
        raise AppError(ErrorKind.CONFLICT, f"{entity.capitalize()} is already {state}", entity)

    before = row.deleted_at.isoformat() if row.deleted_at else None
    row.deleted_at = utcnow() if archived else None
    await _write(db, entity)
    await db.refresh(row)

    await create_audit_log(
        db,
        AuditActions.ARCHIVE if archived else AuditActions.RESTORE,
        f"{entity}s",
        info,
        {
            f"{entity}_id": row.id,
            "name": row.name,
            "changed_fields": {"deleted_at": {"before": before, "after": row.deleted_at.isoformat() if row.deleted_at else None}},
        },
    )
    return row
