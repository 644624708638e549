"""
Audit logging for RBAC mutations.

Entries are added to the caller's session so they commit or roll back
together with the change they describe.
"""
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.rbac.models import AuditLog, utcnow
from app.utils import get_logger


log = get_logger(__name__)


@dataclass(frozen=True)
class RequestInfo:
    """Who made a request and from where."""
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def from_request(cls, request: Request, user=None) -> "RequestInfo":
        return cls(
            user_id=getattr(user, "id", None),
            user_name=getattr(user, "username", None),
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
        )


def id_list_state(field_name: str, ids: Iterable[str]) -> Dict[str, Any]:
    return {field_name: sorted(ids)}


def get_changed_fields(before: Dict[str, Any], after: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    """
    Return only the fields whose values differ.

    Example:
        get_changed_fields({"role_ids": ["a"]}, {"role_ids": ["a", "b"]})
        # {"role_ids": {"before": ["a"], "after": ["a", "b"]}}
    """
    changed: Dict[str, Dict[str, Any]] = {}
    for key in before.keys() | after.keys():
        if before.get(key) != after.get(key):
            changed[key] = {"before": before.get(key), "after": after.get(key)}
    return changed


async def create_audit_log(
    db: AsyncSession,
    action: str,
    entity: str,
    info: Optional[RequestInfo] = None,
    details: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """
    Add an audit log entry to the session.

    Args:
        db: Session the audited change was made in
        action: Action performed (e.g., "assign_roles", "deny_permissions")
        entity: Table or entity affected (e.g., "user_roles")
        info: Actor and client details
        details: Additional details, usually change tracking
    """
    info = info or RequestInfo()
    audit_log = AuditLog(
        action=action,
        entity=entity,
        user_id=info.user_id,
        user_name=info.user_name,
        details=details,
        ip_address=info.ip_address,
        user_agent=info.user_agent,
        created_at=utcnow(),
    )
    db.add(audit_log)
    await db.flush()

    log.info("Audit: user=%s action=%s entity=%s", info.user_id, action, entity)

    return audit_log
