"""
HTTP tests for the users and rbac routers.

Each test seeds the default roles and permissions, creates users holding
them and calls the app in-process with a signed bearer token.
"""
from datetime import datetime, timedelta, timezone

import jwt
import pytest
import pytest_asyncio

from app.core import config
from app.features.rbac.constants import Roles
from app.features.rbac.engine import RbacService, get_rbac_service
from tests.conftest import auth_headers, token_for
from tests.fakes import InMemoryIdentityStore


@pytest_asyncio.fixture
async def people(seeded, make_user):
    roles = seeded["roles"]
    return {
        "admin": await make_user("admin", role_ids=[roles[Roles.ADMIN]]),
        "editor": await make_user("editor", role_ids=[roles[Roles.EDITOR]]),
        "viewer": await make_user("viewer", role_ids=[roles[Roles.VIEWER]]),
        "nobody": await make_user("nobody"),
    }


# ============================================================================
# Public endpoints and authentication
# ============================================================================

async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


async def test_root_lists_features(client):
    body = (await client.get("/")).json()
    assert body["status"] == "online"
    assert "rbac" in body["features"]


async def test_missing_token_is_unauthorized(client, people):
    response = await client.get("/users/me")
    assert response.status_code == 401
    assert response.json() == {"error": "unauthorized", "message": "Not authenticated", "entity": "token"}
    assert response.headers["WWW-Authenticate"] == "Bearer"


async def test_bad_token_is_unauthorized(client, people):
    response = await client.get("/users/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401
    body = response.json()
    assert body["error"] == "unauthorized"
    assert body["message"].startswith("Invalid token")
    assert response.headers["WWW-Authenticate"] == "Bearer"


async def test_expired_token_is_unauthorized(client, people):
    token = token_for(people["viewer"].id, expires_in=timedelta(seconds=-10))
    response = await client.get("/users/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401
    assert response.json()["message"] == "Token has expired"


async def test_unknown_user_is_unauthorized(client, people):
    response = await client.get("/users/me", headers=auth_headers("01HZZZZZZZZZZZZZZZZZZZZZZZ"))
    assert response.status_code == 401
    assert response.json() == {"error": "unauthorized", "message": "User not found", "entity": "token"}


async def test_inactive_user_is_forbidden(client, seeded, make_user):
    user = await make_user("gone", is_active=False)
    response = await client.get("/users/me", headers=auth_headers(user.id))
    assert response.status_code == 403
    assert response.json() == {"error": "forbidden", "message": "User account is deactivated", "entity": "user"}


# ============================================================================
# Users
# ============================================================================

async def test_me_lists_roles_and_effective_permissions(client, people):
    response = await client.get("/users/me", headers=auth_headers(people["viewer"].id))

    assert response.status_code == 200
    body = response.json()
    assert body["username"] == "viewer"
    assert body["roles"] == [Roles.VIEWER]
    assert "holidays:read" in body["permissions"]
    assert "holidays:create" not in body["permissions"]
    assert body["last_login_at"] is not None


async def test_me_for_user_without_roles(client, people):
    body = (await client.get("/users/me", headers=auth_headers(people["nobody"].id))).json()
    assert body["roles"] == []
    assert body["permissions"] == []


async def test_list_users_needs_users_read(client, people):
    allowed = await client.get("/users/", headers=auth_headers(people["viewer"].id))
    denied = await client.get("/users/", headers=auth_headers(people["nobody"].id))

    assert allowed.status_code == 200
    assert {u["username"] for u in allowed.json()} >= {"admin", "viewer", "nobody"}
    assert denied.status_code == 403
    assert denied.json() == {
        "error": "forbidden",
        "message": "Access denied. Required at least one permission: users:read",
        "entity": "permission",
    }


async def test_get_user_by_id(client, people):
    response = await client.get(f"/users/{people['editor'].id}", headers=auth_headers(people["viewer"].id))
    assert response.status_code == 200
    assert response.json() == {"id": people["editor"].id, "username": "editor", "name": "Editor"}

    missing = await client.get("/users/does-not-exist", headers=auth_headers(people["viewer"].id))
    assert missing.status_code == 404
    assert missing.json()["error"] == "not_found"


async def test_archived_user_can_no_longer_authenticate(client, people):
    admin = auth_headers(people["admin"].id)
    viewer = people["viewer"].id

    response = await client.post(f"/users/{viewer}/archive", headers=admin)
    assert response.status_code == 200
    assert response.json()["deleted_at"] is not None

    me = await client.get("/users/me", headers=auth_headers(viewer))
    assert me.status_code == 401
    assert me.json()["error"] == "unauthorized"

    listed = await client.get("/users/", headers=admin)
    assert "viewer" not in {u["username"] for u in listed.json()}

    again = await client.post(f"/users/{viewer}/archive", headers=admin)
    assert again.status_code == 409
    assert again.json()["message"] == "User is already archived"

    restored = await client.post(f"/users/{viewer}/restore", headers=admin)
    assert restored.status_code == 200
    assert (await client.get("/users/me", headers=auth_headers(viewer))).status_code == 200

    logs = (await client.get("/rbac/audit-logs", params={"entity": "users"}, headers=admin)).json()
    assert {item["action"] for item in logs["items"]} == {"archive", "restore"}


async def test_archiving_users_needs_permission(client, people):
    response = await client.post(
        f"/users/{people['nobody'].id}/archive", headers=auth_headers(people["editor"].id)
    )
    assert response.status_code == 403
    assert response.json()["message"] == "Access denied. Required at least one permission: users:archive"


async def test_tokens_rejected_without_configured_secret(client, people, monkeypatch):
    monkeypatch.setattr(config, "JWT_SECRET", None)
    forged = jwt.encode(
        {"sub": people["admin"].id, "exp": datetime.now(timezone.utc) + timedelta(hours=1)},
        "change-me",
        algorithm="HS256",
    )

    response = await client.get("/users/", headers={"Authorization": f"Bearer {forged}"})

    assert response.status_code == 401
    assert response.json()["message"] == "Token verification is not configured"


# ============================================================================
# Roles and permissions
# ============================================================================

async def test_list_roles(client, people):
    response = await client.get("/rbac/roles", headers=auth_headers(people["viewer"].id))
    assert response.status_code == 200
    assert [r["name"] for r in response.json()] == sorted([Roles.ADMIN, Roles.EDITOR, Roles.VIEWER])


async def test_get_role_with_permissions(client, seeded, people):
    role_id = seeded["roles"][Roles.VIEWER]
    body = (await client.get(f"/rbac/roles/{role_id}", headers=auth_headers(people["viewer"].id))).json()
    assert body["name"] == Roles.VIEWER
    assert all(p["action"] == "read" for p in body["permissions"])


async def test_list_permissions_filtered(client, people):
    response = await client.get(
        "/rbac/permissions", params={"resource": "holidays"}, headers=auth_headers(people["viewer"].id)
    )
    assert response.status_code == 200
    assert {p["name"] for p in response.json()} == {
        "holidays:create", "holidays:read", "holidays:update", "holidays:archive", "holidays:restore",
    }


async def test_archive_permission_takes_effect_and_conflicts_when_repeated(client, seeded, people):
    permission_id = seeded["permissions"]["holidays:read"]
    admin = auth_headers(people["admin"].id)

    response = await client.post(f"/rbac/permissions/{permission_id}/archive", headers=admin)
    assert response.status_code == 200
    assert response.json()["deleted_at"] is not None

    check = await client.post(
        "/rbac/check", json={"permissions": ["holidays:read"]}, headers=auth_headers(people["viewer"].id)
    )
    assert check.json()["allowed"] is False

    again = await client.post(f"/rbac/permissions/{permission_id}/archive", headers=admin)
    assert again.status_code == 409

    listed = await client.get("/rbac/permissions", params={"resource": "holidays"}, headers=admin)
    assert "holidays:read" not in {p["name"] for p in listed.json()}

    restored = await client.post(f"/rbac/permissions/{permission_id}/restore", headers=admin)
    assert restored.status_code == 200
    assert restored.json()["deleted_at"] is None


async def test_editor_cannot_archive(client, seeded, people):
    role_id = seeded["roles"][Roles.VIEWER]
    response = await client.post(f"/rbac/roles/{role_id}/archive", headers=auth_headers(people["editor"].id))
    assert response.status_code == 403


async def test_link_permission_to_role(client, seeded, people):
    role_id = seeded["roles"][Roles.VIEWER]
    permission_id = seeded["permissions"]["holidays:create"]
    admin = auth_headers(people["admin"].id)

    response = await client.post(
        f"/rbac/roles/{role_id}/permissions", json={"permission_ids": [permission_id]}, headers=admin
    )
    assert response.status_code == 200
    assert "holidays:create" in {p["name"] for p in response.json()["permissions"]}

    response = await client.request(
        "DELETE", f"/rbac/roles/{role_id}/permissions", json={"permission_ids": [permission_id]}, headers=admin
    )
    assert response.status_code == 200
    assert "holidays:create" not in {p["name"] for p in response.json()["permissions"]}


# ============================================================================
# User roles
# ============================================================================

async def test_admin_assigns_and_removes_roles(client, seeded, people):
    editor_role = seeded["roles"][Roles.EDITOR]
    target = people["nobody"].id
    admin = auth_headers(people["admin"].id)

    response = await client.post(f"/rbac/users/{target}/roles", json={"role_ids": [editor_role]}, headers=admin)
    assert response.status_code == 200
    assert [r["name"] for r in response.json()["roles"]] == [Roles.EDITOR]

    me = (await client.get("/users/me", headers=auth_headers(target))).json()
    assert "holidays:create" in me["permissions"]

    response = await client.request(
        "DELETE", f"/rbac/users/{target}/roles", json={"role_ids": [editor_role]}, headers=admin
    )
    assert response.json()["roles"] == []


async def test_replace_roles(client, seeded, people):
    response = await client.post(
        f"/rbac/users/{people['editor'].id}/roles",
        json={"role_ids": [seeded["roles"][Roles.VIEWER]], "replace": True},
        headers=auth_headers(people["admin"].id),
    )
    assert [r["name"] for r in response.json()["roles"]] == [Roles.VIEWER]


async def test_viewer_cannot_assign_roles(client, seeded, people):
    response = await client.post(
        f"/rbac/users/{people['viewer'].id}/roles",
        json={"role_ids": [seeded["roles"][Roles.ADMIN]]},
        headers=auth_headers(people["viewer"].id),
    )
    assert response.status_code == 403
    assert response.json()["message"] == "Access denied. Required at least one permission: user_roles:assign_roles"


async def test_empty_role_ids_is_a_bad_request(client, people):
    response = await client.post(
        f"/rbac/users/{people['viewer'].id}/roles",
        json={"role_ids": []},
        headers=auth_headers(people["admin"].id),
    )
    assert response.status_code == 400
    assert "role_ids" in response.json()


async def test_unknown_role_is_not_found(client, people):
    response = await client.post(
        f"/rbac/users/{people['viewer'].id}/roles",
        json={"role_ids": ["no-such-role"]},
        headers=auth_headers(people["admin"].id),
    )
    assert response.status_code == 404
    assert response.json()["entity"] == "role"


# ============================================================================
# User permission overrides
# ============================================================================

async def test_deny_override_blocks_a_guarded_route(client, seeded, people):
    users_read = seeded["permissions"]["users:read"]
    viewer = people["viewer"].id

    assert (await client.get("/users/", headers=auth_headers(viewer))).status_code == 200

    response = await client.post(
        f"/rbac/users/{viewer}/permissions/deny",
        json={"permission_ids": [users_read]},
        headers=auth_headers(people["admin"].id),
    )
    assert response.status_code == 200
    body = response.json()
    assert body["role_names"] == [Roles.VIEWER]
    assert [(o["permission_name"], o["is_allowed"]) for o in body["overrides"]] == [("users:read", False)]
    assert "users:read" not in body["effective_permissions"]

    assert (await client.get("/users/", headers=auth_headers(viewer))).status_code == 403

    response = await client.request(
        "DELETE",
        f"/rbac/users/{viewer}/permissions",
        json={"permission_ids": [users_read]},
        headers=auth_headers(people["admin"].id),
    )
    assert response.json()["overrides"] == []
    assert (await client.get("/users/", headers=auth_headers(viewer))).status_code == 200


async def test_grant_override_opens_a_guarded_route(client, seeded, people):
    nobody = people["nobody"].id
    assert (await client.get("/users/", headers=auth_headers(nobody))).status_code == 403

    response = await client.post(
        f"/rbac/users/{nobody}/permissions/grant",
        json={"permission_ids": [seeded["permissions"]["users:read"]]},
        headers=auth_headers(people["admin"].id),
    )
    assert response.json()["effective_permissions"] == ["users:read"]
    assert (await client.get("/users/", headers=auth_headers(nobody))).status_code == 200


async def test_get_user_permissions(client, people):
    response = await client.get(
        f"/rbac/users/{people['editor'].id}/permissions", headers=auth_headers(people["viewer"].id)
    )
    assert response.status_code == 200
    body = response.json()
    assert body["overrides"] == []
    assert "holidays:update" in body["effective_permissions"]


# ============================================================================
# Authorization check
# ============================================================================

@pytest.mark.parametrize(
    "payload, expected",
    [
        ({"roles": [Roles.EDITOR]}, {"allowed": True, "has_role": True, "has_permission": None, "reason": None}),
        ({"roles": [Roles.ADMIN]}, {"allowed": False, "has_role": False, "has_permission": None, "reason": "Missing required role"}),
        (
            {"permissions": ["holidays:read", "holidays:archive"]},
            {"allowed": True, "has_role": None, "has_permission": True, "reason": None},
        ),
        (
            {"permissions": ["holidays:read", "holidays:archive"], "match_all": True},
            {"allowed": False, "has_role": None, "has_permission": False, "reason": "Missing required permission"},
        ),
        ({}, {"allowed": True, "has_role": None, "has_permission": None, "reason": None}),
    ],
)
async def test_check(client, people, payload, expected):
    response = await client.post("/rbac/check", json=payload, headers=auth_headers(people["editor"].id))
    assert response.status_code == 200
    assert response.json() == expected


# ============================================================================
# Store failures
# ============================================================================

async def test_store_failure_is_service_unavailable(client, people):
    from app.main import app

    broken = InMemoryIdentityStore()
    broken.failing.update({"find_role_id_by_name", "find_permission_id_by_name"})
    app.dependency_overrides[get_rbac_service] = lambda: RbacService.from_store(broken)

    response = await client.get("/rbac/roles", headers=auth_headers(people["admin"].id))

    assert response.status_code == 503
    assert response.json()["error"] == "store_failure"


# ============================================================================
# Audit log
# ============================================================================

async def test_mutations_show_up_in_audit_log(client, seeded, people):
    admin = auth_headers(people["admin"].id)
    target = people["nobody"].id
    await client.post(
        f"/rbac/users/{target}/roles", json={"role_ids": [seeded["roles"][Roles.VIEWER]]}, headers=admin
    )
    await client.post(
        f"/rbac/users/{target}/permissions/deny",
        json={"permission_ids": [seeded["permissions"]["holidays:read"]]},
        headers=admin,
    )

    response = await client.get("/rbac/audit-logs", headers=admin)
    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 2
    assert {item["action"] for item in body["items"]} == {"assign_roles", "deny_permissions"}
    assert all(item["user_name"] == "admin" for item in body["items"])

    filtered = (await client.get("/rbac/audit-logs", params={"entity": "user_permissions"}, headers=admin)).json()
    assert filtered["total"] == 1
    assert filtered["items"][0]["details"]["user_id"] == target


async def test_audit_log_requires_permission(client, people):
    response = await client.get("/rbac/audit-logs", headers=auth_headers(people["nobody"].id))
    assert response.status_code == 403
