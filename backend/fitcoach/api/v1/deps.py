# fitcoach/api/v1/deps.py
from dataclasses import dataclass
from typing import Iterable, Optional

from fastapi import Depends, Header, Request

from fitcoach.core.errors import AuthenticationFailed, Forbidden
from fitcoach.core.revocation import revocation_registry
from fitcoach.core.tokens import TokenExpired, TokenError, token_service
from fitcoach.services.audit import RequestContext, audit_sink
from fitcoach.services.credentials import credential_store


@dataclass(frozen=True)
class Principal:
    """
    Authenticated identity attached to a request.

    ``role`` is always the role read from the credential store during this
    request, never the role claimed by the token.
    """
    id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def extract_token(authorization: Optional[str], x_auth_token: Optional[str]) -> Optional[str]:
    """Bearer header first, then the x-auth-token fallback header."""
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization.split(" ", 1)[1].strip()
        if token:
            return token
    if x_auth_token and x_auth_token.strip():
        return x_auth_token.strip()
    return None


def _reject(kind: str, reason: str, context: RequestContext, user_id: Optional[str] = None) -> AuthenticationFailed:
    audit_sink.auth_rejection(reason, context, user_id=user_id)
    return AuthenticationFailed(kind)


async def authenticate_token(token: Optional[str], context: Optional[RequestContext] = None) -> Principal:
    """
    Turn a raw token into a verified Principal.

    Checks run in this order, the first failure wins:
      1. token present                       -> missing
      2. not on the revocation blacklist     -> revoked
      3. signature and expiry                -> invalid / expired
      4. subject claim present               -> invalid
      5. user still exists                   -> unknown_user
      6. token.tokenVersion >= user's        -> revoked
      7. role taken from the store

    Every rejection is audited (warn, category auth). Success is not.

    Raises:
        AuthenticationFailed: With the kind listed above
        ServerMisconfigured: No signing secret configured
    """
    context = context or RequestContext()
    if not token:
        raise _reject("missing", "no_token", context)

    if revocation_registry.is_blacklisted(token):
        raise _reject("revoked", "blacklisted_token", context)

    try:
        claims = token_service.verify(token)
    except TokenExpired:
        raise _reject("expired", "token_expired", context)
    except TokenError as e:
        # Malformed, bad signature or missing subject
        raise _reject("invalid", f"invalid_token: {e}", context)

    user = await credential_store.find_by_id(claims.subject)
    if not user:
        raise _reject("unknown_user", "user_not_found", context, user_id=claims.subject)

    if claims.token_version < (user.token_version or 0):
        raise _reject("revoked", "outdated_token_version", context, user_id=claims.subject)

    return Principal(id=str(user.id), role=user.role)


async def get_current_principal(
    request: Request,
    authorization: str | None = Header(default=None),
    x_auth_token: str | None = Header(default=None),
) -> Principal:
    """
    FastAPI dependency: the auth gate.

    Accepts ``Authorization: Bearer <token>`` or the ``x-auth-token``
    header, verifies the token, and stores the principal and the raw
    token on ``request.state`` for downstream handlers (logout uses the
    raw token).

    Usage:
        @router.get("/protected")
        async def protected_route(principal: Principal = Depends(get_current_principal)):
            ...
    """
    token = extract_token(authorization, x_auth_token)
    principal = await authenticate_token(token, RequestContext.from_request(request))
    request.state.principal = principal
    request.state.token = token
    return principal


async def ensure_role(
    principal: Principal,
    allowed: Iterable[str],
    context: Optional[RequestContext] = None,
    denied_message: str = "Access denied",
    denied_code: str = "FORBIDDEN",
) -> Principal:
    """
    Re-read the role from the credential store and require it to be in ``allowed``.

    The re-read is deliberate: a role change takes effect on the next
    request without forcing the user to log in again.
    """
    context = context or RequestContext()
    user = await credential_store.find_by_id(principal.id)
    if not user:
        raise _reject("unknown_user", "user_not_found", context, user_id=principal.id)
    if user.role not in set(allowed):
        audit_sink.auth_rejection(
            "insufficient_role", context, user_id=principal.id,
            details={"role": user.role, "required": sorted(allowed)},
        )
        raise Forbidden(denied_message, code=denied_code)
    return Principal(id=principal.id, role=user.role)


async def require_admin(
    request: Request,
    principal: Principal = Depends(get_current_principal),
) -> Principal:
    """
    FastAPI dependency: authenticated AND currently an admin in the store.

    Raises:
        Forbidden (403): Store role is not admin (FORBIDDEN_ADMIN_ONLY)
        AuthenticationFailed (401): From the auth gate
    """
    checked = await ensure_role(
        principal, ("admin",), RequestContext.from_request(request),
        "Access denied. Admin privileges required.", "FORBIDDEN_ADMIN_ONLY",
    )
    request.state.principal = checked
    return checked


async def require_trainer(
    request: Request,
    principal: Principal = Depends(get_current_principal),
) -> Principal:
    """FastAPI dependency: authenticated AND currently a trainer in the store."""
    checked = await ensure_role(
        principal, ("trainer",), RequestContext.from_request(request),
        "Access denied. Trainer privileges required.", "FORBIDDEN_TRAINER_ONLY",
    )
    request.state.principal = checked
    return checked
