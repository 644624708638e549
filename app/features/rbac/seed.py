"""
Idempotent seeding of the role/permission reference data.

Creates the default permissions, the Admin/Editor/Viewer roles and their
role-permission links. Existing rows are left untouched, so running it
twice creates nothing new.
"""
from typing import Optional
from sqlalchemy import select, insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.rbac.constants import (
    DEFAULT_PERMISSIONS,
    DEFAULT_ROLES,
    DEFAULT_ROLE_PERMISSIONS,
    Roles,
    permission_name,
)
from app.features.rbac.models import Permission, Role, role_permissions, user_roles, utcnow
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)

SEEDED_BY = "auto generated"


async def seed_permissions(db: AsyncSession) -> dict[str, str]:
    """
    Create default permissions.

    Returns:
        Dictionary mapping permission names to permission IDs
    """
    log.info("Creating default permissions...")
    permissions_map: dict[str, str] = {}

    for resource, action, description in DEFAULT_PERMISSIONS:
        name = permission_name(resource, action)
        existing = (await db.execute(select(Permission).where(Permission.name == name))).scalars().first()

        if existing:
            log.debug("Permission '%s' already exists, skipping", name)
            permissions_map[name] = existing.id
            continue

        permission = Permission(name=name, resource=resource, action=action, description=description)
        db.add(permission)
        await db.flush()
        permissions_map[name] = permission.id
        log.info("Created permission: %s", name)

    return permissions_map


async def seed_roles(db: AsyncSession) -> dict[str, str]:
    """
    Create default roles.

    Returns:
        Dictionary mapping role names to role IDs
    """
    log.info("Creating default roles...")
    roles_map: dict[str, str] = {}

    for name, description in DEFAULT_ROLES:
        existing = (await db.execute(select(Role).where(Role.name == name))).scalars().first()

        if existing:
            log.debug("Role '%s' already exists, skipping", name)
            roles_map[name] = existing.id
            continue

        role = Role(name=name, description=description)
        db.add(role)
        await db.flush()
        roles_map[name] = role.id
        log.info("Created role: %s", name)

    return roles_map


async def seed_role_permissions(db: AsyncSession, roles_map: dict[str, str], permissions_map: dict[str, str]) -> int:
    """Link roles to their default permissions. Returns the number of links created."""
    created = 0
    for role_name, names in DEFAULT_ROLE_PERMISSIONS.items():
        role_id = roles_map.get(role_name)
        if not role_id:
            log.warning("Role '%s' not found. Skipping permissions assignment.", role_name)
            continue

        result = await db.execute(
            select(role_permissions.c.permission_id).where(role_permissions.c.role_id == role_id)
        )
        linked = set(result.scalars().all())

        rows = []
        for name in names:
            permission_id = permissions_map.get(name)
            if not permission_id:
                log.warning("Permission '%s' not found. Skipping.", name)
                continue
            if permission_id in linked:
                continue
            rows.append({"role_id": role_id, "permission_id": permission_id, "created_by": SEEDED_BY, "created_at": utcnow()})

        if rows:
            await db.execute(insert(role_permissions), rows)
            created += len(rows)
            log.info("Linked %d permissions to role '%s'", len(rows), role_name)

    return created


async def seed_admin_user(db: AsyncSession, username: str, email: str, admin_role_id: str) -> User:
    """Create (or reuse) a user and make sure it holds the Admin role."""
    user = (await db.execute(select(User).where(User.username == username))).scalars().first()
    if user is None:
        user = User(username=username, email=email, name=username, email_verified=True)
        db.add(user)
        await db.flush()
        log.info("Created admin user: %s", username)

    held = await db.execute(
        select(user_roles.c.role_id).where(user_roles.c.user_id == user.id, user_roles.c.role_id == admin_role_id)
    )
    if held.first() is None:
        await db.execute(
            insert(user_roles),
            [{"user_id": user.id, "role_id": admin_role_id, "created_by": SEEDED_BY, "created_at": utcnow()}],
        )
    return user


async def seed_reference_data(
    db: AsyncSession,
    admin_username: Optional[str] = None,
    admin_email: Optional[str] = None,
) -> dict:
    """Run every seed step in the given session. The caller commits."""
    permissions_map = await seed_permissions(db)
    roles_map = await seed_roles(db)
    links = await seed_role_permissions(db, roles_map, permissions_map)

    admin_id = None
    if admin_username and admin_email:
        admin = await seed_admin_user(db, admin_username, admin_email, roles_map[Roles.ADMIN])
        admin_id = admin.id

    return {"permissions": permissions_map, "roles": roles_map, "links_created": links, "admin_user_id": admin_id}
