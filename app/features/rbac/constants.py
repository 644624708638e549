"""
Role and permission names used by routes and seed data.

Permissions follow the pattern ``<resource>:<action>``.
"""


class Roles:
    ADMIN = "Admin"
    EDITOR = "Editor"
    VIEWER = "Viewer"


def permission_name(resource: str, action: str) -> str:
    return f"{resource}:{action}"


class Permissions:
    ROLES_READ = "roles:read"
    ROLES_ARCHIVE = "roles:archive"
    ROLES_RESTORE = "roles:restore"
    ROLES_ASSIGN_PERMISSIONS = "roles:assign_permissions"
    ROLES_REMOVE_PERMISSIONS = "roles:remove_permissions"

    PERMISSIONS_READ = "permissions:read"
    PERMISSIONS_ARCHIVE = "permissions:archive"
    PERMISSIONS_RESTORE = "permissions:restore"

    USERS_READ = "users:read"
    USERS_ARCHIVE = "users:archive"
    USERS_RESTORE = "users:restore"

    USER_ROLES_READ = "user_roles:read"
    USER_ROLES_ASSIGN = "user_roles:assign_roles"
    USER_ROLES_REMOVE = "user_roles:remove_roles"

    USER_PERMISSIONS_READ = "user_permissions:read"
    USER_PERMISSIONS_GRANT = "user_permissions:grant_permissions"
    USER_PERMISSIONS_DENY = "user_permissions:deny_permissions"
    USER_PERMISSIONS_REMOVE = "user_permissions:remove_overrides"

    AUDIT_LOGS_READ = "audit_logs:read"


# (resource, action, description)
DEFAULT_PERMISSIONS = [
    ("roles", "read", "View roles"),
    ("roles", "archive", "Archive roles"),
    ("roles", "restore", "Restore archived roles"),
    ("roles", "assign_permissions", "Link permissions to roles"),
    ("roles", "remove_permissions", "Unlink permissions from roles"),
    ("permissions", "read", "View permissions"),
    ("permissions", "archive", "Archive permissions"),
    ("permissions", "restore", "Restore archived permissions"),
    ("users", "read", "View users"),
    ("users", "archive", "Archive users"),
    ("users", "restore", "Restore archived users"),
    ("user_roles", "read", "View a user's roles"),
    ("user_roles", "assign_roles", "Assign roles to users"),
    ("user_roles", "remove_roles", "Remove roles from users"),
    ("user_permissions", "read", "View a user's permission overrides"),
    ("user_permissions", "grant_permissions", "Grant permission overrides to users"),
    ("user_permissions", "deny_permissions", "Deny permissions to users"),
    ("user_permissions", "remove_overrides", "Remove permission overrides from users"),
    ("audit_logs", "read", "View the audit log"),
    ("holidays", "create", "Create holidays"),
    ("holidays", "read", "View holidays"),
    ("holidays", "update", "Update holidays"),
    ("holidays", "archive", "Archive holidays"),
    ("holidays", "restore", "Restore archived holidays"),
]

DEFAULT_ROLES = [
    (Roles.ADMIN, "Full access to every resource"),
    (Roles.EDITOR, "Create, read and update access; no archive or restore"),
    (Roles.VIEWER, "Read-only access"),
]

_ALL = [permission_name(resource, action) for resource, action, _ in DEFAULT_PERMISSIONS]

DEFAULT_ROLE_PERMISSIONS = {
    Roles.ADMIN: _ALL,
    Roles.EDITOR: [
        name for name in _ALL
        if name.split(":", 1)[1] in ("create", "read", "update")
    ],
    Roles.VIEWER: [name for name in _ALL if name.endswith(":read")],
}


class AuditActions:
    ASSIGN_ROLES = "assign_roles"
    REMOVE_ROLES = "remove_roles"
    GRANT_PERMISSIONS = "grant_permissions"
    DENY_PERMISSIONS = "deny_permissions"
    REMOVE_OVERRIDES = "remove_overrides"
    ASSIGN_ROLE_PERMISSIONS = "assign_permissions"
    REMOVE_ROLE_PERMISSIONS = "remove_permissions"
    ARCHIVE = "archive"
    RESTORE = "restore"
