# fitcoach/api/v1/routers/admin.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from tortoise.expressions import Q

from fitcoach.api.v1.deps import Principal, require_admin
from fitcoach.core.db import store_guard
from fitcoach.core.errors import Conflict
from fitcoach.core.security import hash_password_async
from fitcoach.models.audit_event import CATEGORIES, LEVELS, AuditEvent
from fitcoach.models.user import User
from fitcoach.schemas.admin import (
    AdminResetPasswordIn,
    AdminUserDetailOut,
    AdminUserListOut,
    AdminUserUpdateIn,
    AuditEventListOut,
)
from fitcoach.schemas.auth import user_to_dict
from fitcoach.services.audit import RequestContext, audit_sink
from fitcoach.services.credentials import credential_store

router = APIRouter(prefix="/admin", tags=["admin"])


# ==============================================================================
# I. User Management Interface
#     Prefix: /api/v1/admin/users
# ==============================================================================
def _user_to_admin_dict(u: User) -> dict:
    """Public user fields plus the security state only admins may see."""
    data = user_to_dict(u)
    data.update(
        tokenVersion=u.token_version,
        failedLoginAttempts=u.failed_login_attempts,
        lockoutUntil=u.lockout_until.isoformat() if u.lockout_until else None,
        lastLoggedIn=u.last_logged_in.isoformat() if u.last_logged_in else None,
        anonymized=u.anonymized_at is not None,
    )
    return data


async def _guard_admin_removal(target: User, admin: Principal, action: str) -> None:
    """
    Refuse to take admin rights away from the caller or from the last admin.

    Raises:
        Conflict (400): CANNOT_MODIFY_SELF or LAST_ADMIN_FORBIDDEN
    """
    if str(target.id) == admin.id:
        raise Conflict(f"Cannot {action} yourself", code="CANNOT_MODIFY_SELF")
    if target.role == "admin" and await credential_store.count_admins() <= 1:
        raise Conflict(f"Cannot {action} the last admin", code="LAST_ADMIN_FORBIDDEN")


@router.get("/users", response_model=AdminUserListOut)
async def list_users(
    q: str | None = Query(default=None, description="Fuzzy search by name/email"),
    offset: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    admin: Principal = Depends(require_admin),
):
    """
    Get paginated list of all users (admin only).

    Results are ordered by creation date (newest first).
    """
    qs = User.all().order_by("-created_at")
    if q:
        qs = qs.filter(Q(first_name__icontains=q) | Q(last_name__icontains=q) | Q(email__icontains=q))

    async with store_guard("list_users"):
        total = await qs.count()
        rows = await qs.offset(offset).limit(limit)

    return {"items": [_user_to_admin_dict(u) for u in rows], "offset": offset, "limit": limit, "total": total}


@router.get("/users/{user_id}", response_model=AdminUserDetailOut)
async def get_user_detail(user_id: str, admin: Principal = Depends(require_admin)):
    u = await credential_store.require(user_id)
    return {"user": _user_to_admin_dict(u)}


@router.patch("/users/{user_id}", response_model=AdminUserDetailOut)
async def update_user(
    user_id: str,
    body: AdminUserUpdateIn,
    request: Request,
    admin: Principal = Depends(require_admin),
):
    """
    Update a user's name or role (admin only).

    A role change takes effect on the target's very next request, because
    every guard re-reads the role from the store.

    Raises:
        NotFound (404): User not found
        Conflict (400): Demoting yourself or the last admin
    """
    u = await credential_store.require(user_id)
    changes = {}

    if body.firstName is not None or body.lastName is not None:
        u.first_name = body.firstName.strip() if body.firstName is not None else u.first_name
        u.last_name = body.lastName.strip() if body.lastName is not None else u.last_name
        async with store_guard("update_user"):
            await u.save(update_fields=["first_name", "last_name"])
        changes["name"] = u.full_name

    if body.role and body.role != u.role:
        if u.role == "admin":
            await _guard_admin_removal(u, admin, "demote")
        previous = u.role
        u = await credential_store.set_role(u.id, body.role)
        changes["role"] = {"from": previous, "to": body.role}

    if changes:
        audit_sink.admin_action(
            "update_user", admin.id, {"targetUserId": str(u.id), **changes}, RequestContext.from_request(request)
        )
    return {"user": _user_to_admin_dict(u)}


@router.post("/users/{user_id}/revoke-tokens")
async def revoke_user_tokens(user_id: str, request: Request, admin: Principal = Depends(require_admin)):
    """
    Forced logout: bump the user's tokenVersion so every token issued so far is rejected.
    """
    version = await credential_store.increment_token_version(user_id)
    audit_sink.admin_action(
        "revoke_tokens", admin.id, {"targetUserId": user_id, "tokenVersion": version},
        RequestContext.from_request(request),
    )
    return {"success": True, "data": {"tokenVersion": version}}


@router.post("/users/{user_id}/unlock")
async def unlock_user(user_id: str, request: Request, admin: Principal = Depends(require_admin)):
    await credential_store.clear_lockout(user_id)
    audit_sink.admin_action("unlock_account", admin.id, {"targetUserId": user_id}, RequestContext.from_request(request))
    return {"success": True, "data": {"ok": True}}


@router.post("/users/{user_id}/reset-password")
async def reset_user_password(
    user_id: str,
    body: AdminResetPasswordIn,
    request: Request,
    admin: Principal = Depends(require_admin),
):
    """
    Reset a user's password (admin only).

    The current password is not needed. Existing tokens of the user are
    revoked along with the old password.
    """
    u = await credential_store.update_password(user_id, await hash_password_async(body.newPassword))
    audit_sink.admin_action(
        "reset_password", admin.id, {"targetUserId": str(u.id), "tokenVersion": u.token_version},
        RequestContext.from_request(request),
    )
    return {"success": True, "data": {"ok": True}}


@router.post("/users/{user_id}/erase")
async def erase_user(user_id: str, request: Request, admin: Principal = Depends(require_admin)):
    """
    Erase a user's personal data (admin only).

    Identity fields are redacted and the password invalidated, but the row
    and its id stay so historical appointments still resolve.

    Raises:
        NotFound (404): User not found
        Conflict (400): Erasing yourself or the last admin
    """
    u = await credential_store.require(user_id)
    await _guard_admin_removal(u, admin, "erase")
    u = await credential_store.anonymize(u.id)
    audit_sink.admin_action("erase_user", admin.id, {"targetUserId": str(u.id)}, RequestContext.from_request(request))
    return {"success": True, "data": {"user": _user_to_admin_dict(u)}}


# ==============================================================================
# II. Audit Log Viewer
#     Prefix: /api/v1/admin/logs
# ==============================================================================
def _event_to_dict(e: AuditEvent) -> dict:
    return {
        "id": str(e.id),
        "timestamp": e.timestamp.isoformat() if e.timestamp else None,
        "level": e.level,
        "category": e.category,
        "message": e.message,
        "userId": e.user_id,
        "ip": e.ip,
        "userAgent": e.user_agent,
        "requestId": e.request_id,
        "metadata": e.metadata or {},
    }


@router.get("/logs", response_model=AuditEventListOut, dependencies=[Depends(require_admin)])
async def list_audit_events(
    level: Optional[str] = Query(default=None, description="|".join(LEVELS)),
    category: Optional[str] = Query(default=None, description="|".join(CATEGORIES)),
    userId: Optional[str] = Query(default=None),
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
):
    """Persisted audit events, newest first, optionally filtered by level, category and user."""
    qs = AuditEvent.all()
    if level:
        qs = qs.filter(level=level)
    if category:
        qs = qs.filter(category=category)
    if userId:
        qs = qs.filter(user_id=userId)

    async with store_guard("list_audit_events"):
        total = await qs.count()
        rows = await qs.order_by("-timestamp").offset(offset).limit(limit)

    return {"items": [_event_to_dict(e) for e in rows], "offset": offset, "limit": limit, "total": total}
