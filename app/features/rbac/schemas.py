"""
Pydantic schemas for RBAC management.

Request and response models for roles, permissions, assignments, overrides,
authorization checks and audit logs.
"""
from datetime import datetime
from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator


def _dedupe(values: List[str]) -> List[str]:
    cleaned: List[str] = []
    for value in values:
        value = value.strip()
        if value and value not in cleaned:
            cleaned.append(value)
    return cleaned


# ============================================================================
# Permission Schemas
# ============================================================================

class PermissionResponse(BaseModel):
    """Schema for permission response."""
    id: str
    name: str
    resource: str
    action: str
    description: Optional[str] = None
    deleted_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Role Schemas
# ============================================================================

class RoleResponse(BaseModel):
    """Schema for role response."""
    id: str
    name: str
    description: Optional[str] = None
    deleted_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RoleWithPermissions(RoleResponse):
    """Schema for role with its live permissions."""
    permissions: List[PermissionResponse] = []


# ============================================================================
# Assignment Schemas
# ============================================================================

class RoleIds(BaseModel):
    """Role ids to remove from a user."""
    role_ids: List[str] = Field(..., description="Role IDs")

    @field_validator("role_ids")
    @classmethod
    def role_ids_not_empty(cls, v: List[str]) -> List[str]:
        v = _dedupe(v)
        if not v:
            raise ValueError("At least one role ID is required")
        return v


class AssignRolesToUser(RoleIds):
    """Assign roles to a user; ``replace`` first removes every role the user holds."""
    replace: bool = False


class PermissionIds(BaseModel):
    """Permission ids for role links or user overrides."""
    permission_ids: List[str] = Field(..., description="Permission IDs")

    @field_validator("permission_ids")
    @classmethod
    def permission_ids_not_empty(cls, v: List[str]) -> List[str]:
        v = _dedupe(v)
        if not v:
            raise ValueError("At least one permission ID is required")
        return v


class AssignPermissions(PermissionIds):
    """
    Grant/deny overrides to a user, or link permissions to a role.

    ``replace`` first removes all of the target's existing rows.
    """
    replace: bool = False


class UserRolesResponse(BaseModel):
    user_id: str
    roles: List[RoleResponse] = []


class PermissionOverrideResponse(BaseModel):
    permission_id: str
    permission_name: str
    is_allowed: bool
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None


class UserPermissionsResponse(BaseModel):
    """A user's overrides and the effective permission names they produce."""
    user_id: str
    role_names: List[str] = []
    overrides: List[PermissionOverrideResponse] = []
    effective_permissions: List[str] = []


# ============================================================================
# Authorization Check Schemas
# ============================================================================

class AuthorizationCheckRequest(BaseModel):
    """Check the caller against roles and/or permissions."""
    roles: List[str] = Field(default_factory=list, description="Role names, any-of")
    permissions: List[str] = Field(default_factory=list, description="Permission names")
    match_all: bool = Field(False, description="Require every permission instead of any")


class AuthorizationCheckResponse(BaseModel):
    allowed: bool
    has_role: Optional[bool] = None
    has_permission: Optional[bool] = None
    reason: Optional[str] = None


# ============================================================================
# Audit Log Schemas
# ============================================================================

class AuditLogResponse(BaseModel):
    """Schema for audit log response."""
    id: str
    action: str
    entity: str
    user_id: Optional[str]
    user_name: Optional[str]
    details: Optional[Dict[str, Any]]
    ip_address: Optional[str]
    user_agent: Optional[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditLogListResponse(BaseModel):
    """Schema for paginated audit log list."""
    items: List[AuditLogResponse]
    total: int
    page: int
    page_size: int
    pages: int
