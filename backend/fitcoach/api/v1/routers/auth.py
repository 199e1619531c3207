# fitcoach/api/v1/routers/auth.py
import datetime as dt

from fastapi import APIRouter, Depends, Request, status

from fitcoach.api.v1.deps import Principal, get_current_principal
from fitcoach.config import settings
from fitcoach.core.errors import AccountLocked, InvalidCredentials
from fitcoach.core.revocation import revocation_registry
from fitcoach.core.security import clock, hash_password_async, verify_password_async
from fitcoach.core.tokens import TokenError, token_service
from fitcoach.schemas.auth import AuthOut, ChangePasswordIn, LoginIn, SignupIn, user_to_dict
from fitcoach.services.audit import RequestContext, audit_sink
from fitcoach.services.credentials import credential_store

router = APIRouter(prefix="/auth", tags=["auth"])


def _locked(lockout_until) -> AccountLocked:
    return AccountLocked(details={"lockoutUntil": lockout_until.isoformat() if lockout_until else None})


@router.post("/signup", status_code=status.HTTP_201_CREATED, response_model=AuthOut)
async def signup(body: SignupIn, request: Request):
    """
    Register a new account and log it in.

    The password is hashed before storage; the email is stored lowercase
    and must be unique.

    Returns:
        dict: ``{token, user}``

    Raises:
        DuplicateEmail (409): Email already registered
        ValidationFailed (400): Body failed validation
    """
    user = await credential_store.create(
        first_name=body.firstName,
        last_name=body.lastName,
        email=body.email,
        password_hash=await hash_password_async(body.password),
        role="user",
    )
    token = token_service.mint(user)
    audit_sink.user_action("signup", user.id, {"email": user.email}, RequestContext.from_request(request))
    return {"token": token, "user": user_to_dict(user)}


@router.post("/login", response_model=AuthOut)
async def login(body: LoginIn, request: Request):
    """
    Exchange email + password for a token.

    Unknown email and wrong password produce the same 400 so the endpoint
    does not reveal which accounts exist. Repeated failures lock the
    account (423) for the configured duration.

    Raises:
        InvalidCredentials (400): Unknown email or wrong password
        AccountLocked (423): Too many failed attempts; ``details.lockoutUntil`` says until when
    """
    ctx = RequestContext.from_request(request)
    user = await credential_store.find_by_email(body.email)
    if not user or user.anonymized_at is not None:
        audit_sink.security_event("AUTH_FAILED_LOGIN", None, {"email": body.email, "reason": "unknown_email"}, ctx)
        raise InvalidCredentials()

    if credential_store.is_locked(user):
        audit_sink.security_event(
            "AUTH_ACCOUNT_LOCKED", user.id, {"email": user.email, "lockoutUntil": user.lockout_until}, ctx
        )
        raise _locked(user.lockout_until)

    if not await verify_password_async(body.password, user.password_hash):
        state = await credential_store.record_failed_login(user.id)
        audit_sink.security_event(
            "AUTH_FAILED_LOGIN", user.id, {"email": user.email, "attempts": state.failed_attempts}, ctx
        )
        if state.locked:
            audit_sink.security_event(
                "AUTH_ACCOUNT_LOCKED", user.id,
                {"email": user.email, "attempts": state.failed_attempts, "lockoutUntil": state.lockout_until}, ctx,
            )
            raise _locked(state.lockout_until)
        if state.failed_attempts >= settings.multiple_failed_threshold:
            audit_sink.security_event(
                "AUTH_MULTIPLE_FAILED", user.id, {"email": user.email, "attempts": state.failed_attempts}, ctx
            )
        raise InvalidCredentials()

    await credential_store.record_login(user.id)
    token = token_service.mint(user)
    audit_sink.user_action("login_success", user.id, {"email": user.email}, ctx)
    return {"token": token, "user": user_to_dict(user)}


@router.get("/me")
async def me(principal: Principal = Depends(get_current_principal)):
    """Profile of the authenticated caller."""
    user = await credential_store.require(principal.id)
    return user_to_dict(user)


@router.post("/logout")
async def logout(request: Request, principal: Principal = Depends(get_current_principal)):
    """
    Revoke the presented token.

    Only this token is blacklisted (for the rest of its lifetime); other
    sessions of the same user stay valid. Use change-password or the admin
    revoke endpoint to end every session.
    """
    token = request.state.token
    try:
        # Keep the entry only as long as the token could still be accepted
        ttl = token_service.verify(token).expires_at - clock.now()
    except TokenError:
        ttl = token_service.ttl
    revocation_registry.blacklist(token, max(ttl, dt.timedelta(seconds=1)))
    audit_sink.user_action("logout", principal.id, None, RequestContext.from_request(request))
    return {"success": True, "msg": "Logged out successfully"}


@router.post("/change-password", response_model=AuthOut)
async def change_password(
    body: ChangePasswordIn,
    request: Request,
    principal: Principal = Depends(get_current_principal),
):
    """
    Change the caller's password.

    Bumps tokenVersion, so every token issued before the change (including
    the one used for this request) is revoked. A fresh token is returned.

    Raises:
        InvalidCredentials (400): ``currentPassword`` is wrong
    """
    user = await credential_store.require(principal.id)
    if not await verify_password_async(body.currentPassword, user.password_hash):
        raise InvalidCredentials("Current password is incorrect")
    user = await credential_store.update_password(user.id, await hash_password_async(body.newPassword))
    token = token_service.mint(user)
    audit_sink.security_event("password_changed", user.id, {"tokenVersion": user.token_version},
                              RequestContext.from_request(request))
    return {"token": token, "user": user_to_dict(user)}
