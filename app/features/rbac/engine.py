"""
Authorization resolution engine.

Given a user id and required role or permission names, decide whether access
is granted. The effective permission set of a user is

    (permissions of assigned roles  ∪  granted overrides)  \\  denied overrides

and is recomputed from the identity store on every call. Nothing is cached
and nothing is written.

Names that do not resolve (unknown or archived) are dropped from the request.
Store errors propagate as ``AppError(STORE_FAILURE)``; they are never turned
into a ``False`` answer, so callers can tell "denied" from "could not decide".
"""
from dataclasses import dataclass, field
from typing import Any, FrozenSet, Iterable, List, Optional, Set

from app.core.errors import store_failure, validation_error
from app.features.rbac.stores import (
    OverrideStore,
    PermissionOverride,
    PermissionStore,
    RoleAssignmentStore,
    RolePermissionStore,
    RoleStore,
    SqlIdentityStore,
)
from app.utils import get_logger


log = get_logger(__name__)


def _require_user_id(user_id: str) -> str:
    if user_id is None or not str(user_id).strip():
        raise validation_error("User ID is required.", entity="user")
    return str(user_id)


def _clean_names(names: Optional[Iterable[str]]) -> List[str]:
    """Strip, drop blanks and duplicates, keep first-seen order."""
    if isinstance(names, str):
        names = [names]
    seen: Set[str] = set()
    cleaned: List[str] = []
    for name in names or ():
        if not isinstance(name, str):
            continue
        name = name.strip()
        if name and name not in seen:
            seen.add(name)
            cleaned.append(name)
    return cleaned


# ============================================================================
# Resolvers
# ============================================================================

class RoleAssignmentResolver:
    """Maps a user id to the ids of the roles currently assigned to it."""

    def __init__(self, store: RoleAssignmentStore):
        self.store = store

    async def role_ids_for_user(self, ctx: Any, user_id: str) -> Set[str]:
        return set(await self.store.role_ids_for_user(ctx, user_id))


class RolePermissionExpander:
    """Maps a role id to the ids of the permissions that role grants."""

    def __init__(self, store: RolePermissionStore):
        self.store = store

    async def permission_ids_for_role(self, ctx: Any, role_id: str) -> Set[str]:
        return set(await self.store.permission_ids_for_role(ctx, role_id))

    async def permission_ids_for_roles(self, ctx: Any, role_ids: Iterable[str]) -> Set[str]:
        # Sequential on purpose: one session cannot run concurrent statements
        permission_ids: Set[str] = set()
        for role_id in sorted(role_ids):
            permission_ids |= await self.permission_ids_for_role(ctx, role_id)
        return permission_ids


class PermissionOverrideResolver:
    """
    Maps a user id to its permission overrides, grants and denials alike.

    A storage layer returning both a grant and a denial for the same
    permission is broken; that is reported as a store failure.
    """

    def __init__(self, store: OverrideStore):
        self.store = store

    async def overrides_for_user(self, ctx: Any, user_id: str) -> List[PermissionOverride]:
        overrides = list(await self.store.overrides_for_user(ctx, user_id))
        seen: dict[str, bool] = {}
        for override in overrides:
            previous = seen.setdefault(override.permission_id, override.is_allowed)
            if previous != override.is_allowed:
                log.error(
                    "Conflicting overrides for user=%s permission=%s",
                    user_id, override.permission_id,
                )
                raise store_failure(
                    f"Conflicting grant and deny overrides for permission {override.permission_id}",
                    entity="user_permission",
                )
        return overrides


# ============================================================================
# Calculator
# ============================================================================

@dataclass(frozen=True)
class EffectivePermissions:
    """Inputs and result of one effective-set computation."""
    user_id: str
    role_ids: FrozenSet[str] = field(default_factory=frozenset)
    role_permission_ids: FrozenSet[str] = field(default_factory=frozenset)
    granted_ids: FrozenSet[str] = field(default_factory=frozenset)
    denied_ids: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def permission_ids(self) -> FrozenSet[str]:
        return combine(self.role_permission_ids, self.granted_ids, self.denied_ids)

    def __contains__(self, permission_id: str) -> bool:
        return permission_id in self.permission_ids


def combine(
    role_permission_ids: Iterable[str],
    granted_ids: Iterable[str],
    denied_ids: Iterable[str],
) -> FrozenSet[str]:
    """Union role permissions with grants, then subtract denials."""
    return frozenset((set(role_permission_ids) | set(granted_ids)) - set(denied_ids))


def partition_overrides(overrides: Iterable[PermissionOverride]) -> tuple[FrozenSet[str], FrozenSet[str]]:
    granted = frozenset(o.permission_id for o in overrides if o.is_allowed)
    denied = frozenset(o.permission_id for o in overrides if not o.is_allowed)
    return granted, denied


class EffectivePermissionCalculator:
    def __init__(
        self,
        assignments: RoleAssignmentResolver,
        expander: RolePermissionExpander,
        overrides: PermissionOverrideResolver,
    ):
        self.assignments = assignments
        self.expander = expander
        self.overrides = overrides

    async def calculate(self, ctx: Any, user_id: str) -> EffectivePermissions:
        user_id = _require_user_id(user_id)
        role_ids = await self.assignments.role_ids_for_user(ctx, user_id)
        role_permission_ids = await self.expander.permission_ids_for_roles(ctx, role_ids)
        granted, denied = partition_overrides(await self.overrides.overrides_for_user(ctx, user_id))
        return EffectivePermissions(
            user_id=user_id,
            role_ids=frozenset(role_ids),
            role_permission_ids=frozenset(role_permission_ids),
            granted_ids=granted,
            denied_ids=denied,
        )


# ============================================================================
# Decisions
# ============================================================================

class RbacService:
    """
    Answers "has role" and "has permission" questions for a user.

    Usage:
        rbac = RbacService.from_store(SqlIdentityStore())
        if await rbac.has_permission(db, user.id, ["users:read"]):
            ...
    """

    def __init__(
        self,
        roles: RoleStore,
        permissions: PermissionStore,
        assignments: RoleAssignmentStore,
        role_permissions: RolePermissionStore,
        overrides: OverrideStore,
    ):
        self.roles = roles
        self.permissions = permissions
        self.assignment_resolver = RoleAssignmentResolver(assignments)
        self.calculator = EffectivePermissionCalculator(
            self.assignment_resolver,
            RolePermissionExpander(role_permissions),
            PermissionOverrideResolver(overrides),
        )

    @classmethod
    def from_store(cls, store) -> "RbacService":
        """Build from one object implementing every read port."""
        return cls(store, store, store, store, store)

    async def resolve_role_ids(self, ctx: Any, role_names: Iterable[str]) -> Set[str]:
        role_ids: Set[str] = set()
        for name in _clean_names(role_names):
            role_id = await self.roles.find_role_id_by_name(ctx, name)
            if role_id is None:
                log.debug("Role %r does not resolve, dropping it", name)
                continue
            role_ids.add(role_id)
        return role_ids

    async def resolve_permission_ids(self, ctx: Any, permission_names: Iterable[str]) -> Set[str]:
        permission_ids: Set[str] = set()
        for name in _clean_names(permission_names):
            permission_id = await self.permissions.find_permission_id_by_name(ctx, name)
            if permission_id is None:
                log.debug("Permission %r does not resolve, dropping it", name)
                continue
            permission_ids.add(permission_id)
        return permission_ids

    async def has_any_role(self, ctx: Any, user_id: str, role_names: Iterable[str]) -> bool:
        """True if the user holds at least one of the named roles. No names means no restriction."""
        user_id = _require_user_id(user_id)
        role_names = _clean_names(role_names)
        if not role_names:
            return True

        required_ids = await self.resolve_role_ids(ctx, role_names)
        if not required_ids:
            log.debug("User %s denied: none of roles %s resolve", user_id, role_names)
            return False

        assigned_ids = await self.assignment_resolver.role_ids_for_user(ctx, user_id)
        granted = bool(required_ids & assigned_ids)
        log.debug("User %s has_any_role %s -> %s", user_id, role_names, granted)
        return granted

    async def has_permission(
        self,
        ctx: Any,
        user_id: str,
        permission_names: Iterable[str],
        match_all: bool = False,
    ) -> bool:
        """
        Check the user's effective permissions against the named ones.

        ``match_all=False`` needs any one of them, ``match_all=True`` needs
        every one that still resolves. If none resolve the answer is False in
        both modes.
        """
        user_id = _require_user_id(user_id)
        permission_names = _clean_names(permission_names)

        required_ids = await self.resolve_permission_ids(ctx, permission_names)
        if not required_ids:
            log.debug("User %s denied: none of permissions %s resolve", user_id, permission_names)
            return False

        effective = (await self.calculator.calculate(ctx, user_id)).permission_ids
        if match_all:
            granted = required_ids <= effective
        else:
            granted = bool(required_ids & effective)

        log.debug(
            "User %s has_permission %s match_all=%s -> %s",
            user_id, permission_names, match_all, granted,
        )
        return granted

    async def has_all_permissions(self, ctx: Any, user_id: str, permission_names: Iterable[str]) -> bool:
        return await self.has_permission(ctx, user_id, permission_names, match_all=True)

    async def effective_permissions(self, ctx: Any, user_id: str) -> EffectivePermissions:
        return await self.calculator.calculate(ctx, user_id)

    async def effective_permission_ids(self, ctx: Any, user_id: str) -> FrozenSet[str]:
        return (await self.calculator.calculate(ctx, user_id)).permission_ids


def get_rbac_service() -> RbacService:
    """FastAPI dependency returning the engine wired to the SQL store."""
    return RbacService.from_store(SqlIdentityStore())
