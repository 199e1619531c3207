# fitcoach/core/tokens.py
"""
Token service.
Issues and verifies signed, expiring bearer tokens (JWT, HS256). Each token
carries the subject, a role snapshot, a tokenVersion snapshot, and its
issue/expiry timestamps.
"""
import datetime as dt
import logging
from dataclasses import dataclass
from typing import Any, Optional

import jwt  # PyJWT

from fitcoach.config import settings
from fitcoach.core.errors import ServerMisconfigured
from fitcoach.core.security import Clock, clock as default_clock

logger = logging.getLogger("fitcoach.security")


@dataclass(frozen=True)
class Claims:
    """Verified token payload."""
    subject: str
    role: str
    token_version: int
    issued_at: dt.datetime
    expires_at: dt.datetime
    token_id: Optional[str] = None


class TokenError(Exception):
    """Base class for token verification failures."""


class TokenInvalid(TokenError):
    """Bad signature, wrong algorithm or missing subject."""


class TokenExpired(TokenError):
    pass


class TokenMalformed(TokenError):
    """Not a decodable JWT at all."""


class TokenService:
    """
    Mint and verify access tokens.

    The secret and TTL are read from settings on every call unless given
    explicitly, so a missing secret surfaces as ServerMisconfigured at the
    first use rather than at import time. Expiry is checked against the
    shared Clock, not the interpreter's wall clock.
    """

    def __init__(
        self,
        secret: Optional[str] = None,
        ttl_minutes: Optional[int] = None,
        algorithm: Optional[str] = None,
        clock: Optional[Clock] = None,
    ):
        self._secret = secret
        self._ttl_minutes = ttl_minutes
        self._algorithm = algorithm
        self._clock = clock or default_clock

    @property
    def algorithm(self) -> str:
        return self._algorithm or settings.jwt_algorithm

    @property
    def ttl(self) -> dt.timedelta:
        minutes = self._ttl_minutes if self._ttl_minutes is not None else settings.token_ttl_minutes
        if minutes <= 0:
            logger.error("[tokens] ACCESS_TOKEN_EXPIRE_MINUTES must be positive, got %s", minutes)
            raise ServerMisconfigured()
        return dt.timedelta(minutes=minutes)

    def _require_secret(self) -> str:
        secret = self._secret or settings.server_secret
        if not secret:
            # Clients only ever see the generic 500 message
            logger.error("[tokens] JWT secret missing; cannot mint or verify tokens")
            raise ServerMisconfigured()
        return secret

    def mint(self, user: Any) -> str:
        """
        Create a signed access token for ``user``.

        Args:
            user: Object exposing ``id``, ``role`` and ``token_version``

        Returns:
            Encoded JWT string
        """
        secret = self._require_secret()
        issued_at = self._clock.now()
        expires_at = issued_at + self.ttl
        payload = {
            "sub": str(user.id),
            "role": user.role,
            "tokenVersion": int(user.token_version or 0),
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
            # Two tokens minted in the same second must still be distinct strings
            "jti": self._clock.random_token(12),
        }
        return jwt.encode(payload, secret, algorithm=self.algorithm)

    def verify(self, token: str) -> Claims:
        """
        Validate signature and expiry and return the claims.

        Raises:
            ServerMisconfigured: No secret configured
            TokenMalformed: Not a JWT
            TokenInvalid: Signature mismatch, missing subject or bad claim types
            TokenExpired: ``exp`` is not after the current time
        """
        secret = self._require_secret()
        try:
            payload = jwt.decode(
                token,
                secret,
                algorithms=[self.algorithm],
                options={
                    "require": ["exp", "iat"],
                    "verify_exp": False,
                    "verify_iat": False,
                },
            )
        except jwt.InvalidSignatureError as e:
            raise TokenInvalid("signature mismatch") from e
        except jwt.DecodeError as e:
            raise TokenMalformed(str(e)) from e
        except jwt.InvalidTokenError as e:
            raise TokenInvalid(str(e)) from e

        iat, exp = payload.get("iat"), payload.get("exp")
        if not isinstance(iat, (int, float)) or not isinstance(exp, (int, float)):
            raise TokenMalformed("iat/exp must be numeric")
        if self._clock.now().timestamp() >= exp:
            raise TokenExpired("token expired")

        subject = payload.get("sub") or payload.get("id")
        if not subject:
            raise TokenInvalid("Invalid token structure")

        version = payload.get("tokenVersion", 0)
        if not isinstance(version, int) or version < 0:
            raise TokenInvalid("tokenVersion must be a non-negative integer")

        return Claims(
            subject=str(subject),
            role=str(payload.get("role", "user")),
            token_version=version,
            issued_at=dt.datetime.fromtimestamp(iat, tz=dt.timezone.utc),
            expires_at=dt.datetime.fromtimestamp(exp, tz=dt.timezone.utc),
            token_id=payload.get("jti"),
        )


# Global token service instance
token_service = TokenService()
