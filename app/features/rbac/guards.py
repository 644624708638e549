"""
Route-level authorization.

Each protected route declares an ``AuthorizationRequirement`` when it is
registered and depends on ``require(...)``:

    @router.get("/roles")
    async def list_roles(
        db: AsyncSession = Depends(get_db),
        user: User = Depends(require(permissions=[Permissions.ROLES_READ]))
    ):
        ...

An empty requirement lets every authenticated user through without asking
the engine. Store failures are not caught here; they reach the AppError
handler and come back as 503, never as an allow.
"""
from dataclasses import dataclass, field
from typing import Iterable, Optional, Tuple
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.errors import AppError, ErrorKind
from app.features.rbac.engine import RbacService, get_rbac_service
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


def _names(names: Optional[Iterable[str]]) -> Tuple[str, ...]:
    # A lone string is one name, not a sequence of characters
    if isinstance(names, str):
        return (names,)
    return tuple(names or ())


@dataclass(frozen=True)
class AuthorizationRequirement:
    """What a route needs: any of ``roles``, and any/all of ``permissions``."""
    roles: Tuple[str, ...] = field(default_factory=tuple)
    permissions: Tuple[str, ...] = field(default_factory=tuple)
    match_all: bool = False

    @classmethod
    def of(
        cls,
        roles: Optional[Iterable[str]] = None,
        permissions: Optional[Iterable[str]] = None,
        match_all: bool = False,
    ) -> "AuthorizationRequirement":
        return cls(_names(roles), _names(permissions), match_all)

    @property
    def is_empty(self) -> bool:
        return not self.roles and not self.permissions

    def describe_permissions(self) -> str:
        joined = ", ".join(self.permissions)
        if self.match_all:
            return f"Access denied. Required all permissions: {joined}"
        return f"Access denied. Required at least one permission: {joined}"


async def authorize(
    rbac: RbacService,
    db: AsyncSession,
    user_id: str,
    requirement: AuthorizationRequirement,
) -> None:
    """
    Enforce ``requirement`` for ``user_id``.

    Raises:
        AppError(FORBIDDEN): the user lacks the role(s) or permission(s)
        AppError(STORE_FAILURE): the decision could not be made
    """
    if requirement.is_empty:
        return

    if requirement.roles and not await rbac.has_any_role(db, user_id, requirement.roles):
        log.info("User %s denied: missing roles %s", user_id, list(requirement.roles))
        raise AppError(
            ErrorKind.FORBIDDEN,
            f"Access denied. Required roles: {', '.join(requirement.roles)}",
            entity="role",
        )

    if requirement.permissions and not await rbac.has_permission(
        db, user_id, requirement.permissions, requirement.match_all
    ):
        log.info(
            "User %s denied: missing permissions %s (match_all=%s)",
            user_id, list(requirement.permissions), requirement.match_all,
        )
        raise AppError(ErrorKind.FORBIDDEN, requirement.describe_permissions(), entity="permission")


def require(
    roles: Optional[Iterable[str]] = None,
    permissions: Optional[Iterable[str]] = None,
    match_all: bool = False,
):
    """
    FastAPI dependency factory enforcing a requirement.

    Returns:
        Dependency function that returns the current user if authorized
    """
    requirement = AuthorizationRequirement.of(roles, permissions, match_all)

    async def authorization_dependency(
        request: Request,
        db: AsyncSession = Depends(get_db),
        current_user: User = Depends(get_current_user),
        rbac: RbacService = Depends(get_rbac_service),
    ) -> User:
        try:
            await authorize(rbac, db, current_user.id, requirement)
        except AppError as e:
            if e.kind is ErrorKind.STORE_FAILURE:
                log.error(
                    "Authorization for %s %s could not be decided: %s",
                    request.method, request.url.path, e.message,
                )
            raise
        return current_user

    authorization_dependency.requirement = requirement  # type: ignore[attr-defined]
    return authorization_dependency
