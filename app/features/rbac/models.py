"""
Role, Permission, and link tables for RBAC.

- Roles and permissions are reference data, archived via ``deleted_at``
- user_roles: which roles a user holds
- role_permissions: which permissions a role grants
- user_permissions: per-user overrides, ``is_allowed`` grants or denies
- audit_logs: immutable record of RBAC mutations
"""
from datetime import datetime, timezone
from typing import Any, Dict
from sqlalchemy import String, ForeignKey, Table, Column, JSON, Text, DateTime, Boolean
from sqlalchemy.orm import Mapped, mapped_column
import ulid

from app.core.database.base import Base, TimestampMixin, SoftDeleteMixin


def generate_ulid() -> str:
    """Generate a new ULID string."""
    return str(ulid.new())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Link Tables
# ============================================================================

# Composite primary keys double as the unique (a, b) indexes

user_roles = Table(
    "user_roles",
    Base.metadata,
    Column("user_id", String(26), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", String(26), ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    Column("created_by", String(100), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
)

role_permissions = Table(
    "role_permissions",
    Base.metadata,
    Column("role_id", String(26), ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", String(26), ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
    Column("created_by", String(100), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
)

# At most one override per (user, permission); writes replace is_allowed
user_permissions = Table(
    "user_permissions",
    Base.metadata,
    Column("user_id", String(26), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", String(26), ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
    Column("is_allowed", Boolean, nullable=False),
    Column("created_by", String(100), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
)


# ============================================================================
# Core Models
# ============================================================================

class Permission(Base, TimestampMixin, SoftDeleteMixin):
    """
    Atomic capability named ``resource:action``.

    Examples:
    - name="users:read", resource="users", action="read"
    - name="user_permissions:deny_permissions"
    """
    __tablename__ = "permissions"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    resource: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<Permission(id={self.id}, name={self.name!r})>"


class Role(Base, TimestampMixin, SoftDeleteMixin):
    """
    Named bundle of permissions assignable to users.

    Roles are seeded (Admin, Editor, Viewer) and never created through the
    authorization path.
    """
    __tablename__ = "roles"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<Role(id={self.id}, name={self.name!r})>"


class AuditLog(Base):
    """
    Audit log for RBAC mutations.

    Rows are inserted and never updated. Tracks who did what, when, and from
    where; ``details`` holds before/after change tracking.
    """
    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # Action details
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    entity: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    # Actor
    user_id: Mapped[str | None] = mapped_column(String(26), nullable=True, index=True)
    user_name: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Context
    details: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, user_id={self.user_id}, action={self.action}, entity={self.entity})>"
