"""
Read ports consumed by the authorization engine, and their SQLAlchemy adapter.

Every port takes the caller's execution context (an ``AsyncSession``) as its
first argument. The adapter never opens, commits or closes it.

Soft-deleted roles and permissions are invisible here:
- name lookups skip archived rows
- role expansion skips archived roles and archived permissions
- override rows pointing at archived permissions are not returned
"""
import functools
from typing import Any, Iterable, NamedTuple, Protocol, runtime_checkable
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import AppError, store_failure
from app.features.rbac.models import (
    Permission,
    Role,
    user_roles,
    role_permissions,
    user_permissions,
)
from app.utils import get_logger


log = get_logger(__name__)


class PermissionOverride(NamedTuple):
    """A per-user grant (``is_allowed=True``) or denial of one permission."""
    permission_id: str
    is_allowed: bool


# ============================================================================
# Ports
# ============================================================================

@runtime_checkable
class RoleStore(Protocol):
    async def find_role_id_by_name(self, ctx: Any, name: str) -> str | None: ...


@runtime_checkable
class PermissionStore(Protocol):
    async def find_permission_id_by_name(self, ctx: Any, name: str) -> str | None: ...


@runtime_checkable
class RoleAssignmentStore(Protocol):
    async def role_ids_for_user(self, ctx: Any, user_id: str) -> list[str]: ...


@runtime_checkable
class RolePermissionStore(Protocol):
    async def permission_ids_for_role(self, ctx: Any, role_id: str) -> list[str]: ...


@runtime_checkable
class OverrideStore(Protocol):
    async def overrides_for_user(self, ctx: Any, user_id: str) -> list[PermissionOverride]: ...


# ============================================================================
# SQLAlchemy adapter
# ============================================================================

def _store_call(func):
    """Turn driver errors into STORE_FAILURE so callers can fail closed."""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except AppError:
            raise
        except SQLAlchemyError as e:
            log.error("Identity store read %s failed: %s", func.__name__, e)
            raise store_failure(f"Identity store read failed: {func.__name__}") from e

    return wrapper


class SqlIdentityStore:
    """
    Implements every read port against the relational schema.

    Usage:
        store = SqlIdentityStore()
        role_id = await store.find_role_id_by_name(db, "Admin")
    """

    @_store_call
    async def find_role_id_by_name(self, ctx: AsyncSession, name: str) -> str | None:
        result = await ctx.execute(
            select(Role.id).where(Role.name == name, Role.deleted_at.is_(None))
        )
        return result.scalar_one_or_none()

    @_store_call
    async def find_permission_id_by_name(self, ctx: AsyncSession, name: str) -> str | None:
        result = await ctx.execute(
            select(Permission.id).where(Permission.name == name, Permission.deleted_at.is_(None))
        )
        return result.scalar_one_or_none()

    @_store_call
    async def role_ids_for_user(self, ctx: AsyncSession, user_id: str) -> list[str]:
        result = await ctx.execute(
            select(user_roles.c.role_id)
            .where(user_roles.c.user_id == user_id)
            .order_by(user_roles.c.role_id)
        )
        return list(result.scalars().all())

    @_store_call
    async def permission_ids_for_role(self, ctx: AsyncSession, role_id: str) -> list[str]:
        stmt = (
            select(role_permissions.c.permission_id)
            .join(Role, Role.id == role_permissions.c.role_id)
            .join(Permission, Permission.id == role_permissions.c.permission_id)
            .where(
                role_permissions.c.role_id == role_id,
                Role.deleted_at.is_(None),
                Permission.deleted_at.is_(None),
            )
            .order_by(role_permissions.c.permission_id)
        )
        result = await ctx.execute(stmt)
        return list(result.scalars().all())

    @_store_call
    async def overrides_for_user(self, ctx: AsyncSession, user_id: str) -> list[PermissionOverride]:
        stmt = (
            select(user_permissions.c.permission_id, user_permissions.c.is_allowed)
            .join(Permission, Permission.id == user_permissions.c.permission_id)
            .where(
                user_permissions.c.user_id == user_id,
                Permission.deleted_at.is_(None),
            )
            .order_by(user_permissions.c.permission_id)
        )
        result = await ctx.execute(stmt)
        return [PermissionOverride(row.permission_id, bool(row.is_allowed)) for row in result]

    @_store_call
    async def names_for_permission_ids(self, ctx: AsyncSession, permission_ids: Iterable[str]) -> list[str]:
        ids = list(permission_ids)
        if not ids:
            return []
        result = await ctx.execute(
            select(Permission.name)
            .where(Permission.id.in_(ids), Permission.deleted_at.is_(None))
            .order_by(Permission.name)
        )
        return list(result.scalars().all())
