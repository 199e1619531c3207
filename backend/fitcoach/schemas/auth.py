# fitcoach/schemas/auth.py
"""
Pydantic schemas for authentication endpoints.
Defines request models for signup, login and password change, and the
user representation returned by every auth response.
"""
import re
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from fitcoach.models.user import User

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _check_email(value: str) -> str:
    value = (value or "").strip().lower()
    if not _EMAIL_RE.match(value):
        raise ValueError("Please provide a valid email address")
    return value


class SignupIn(BaseModel):
    """
    Request model for account creation.
    Email is case-folded before it reaches the credential store.
    """
    firstName: str = Field(min_length=1, max_length=50)
    lastName: str = Field(min_length=1, max_length=50)
    email: str
    password: str = Field(min_length=8, max_length=128)  # Plain text, hashed server-side

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return _check_email(v)

    @field_validator("firstName", "lastName")
    @classmethod
    def strip_names(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class LoginIn(BaseModel):
    email: str
    password: str = Field(min_length=1)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return _check_email(v)


class ChangePasswordIn(BaseModel):
    """Self-service password change; the current password must be supplied."""
    currentPassword: str = Field(min_length=1)
    newPassword: str = Field(min_length=8, max_length=128)


class UserOut(BaseModel):
    """
    User information returned in authentication responses.
    Never contains the hash, tokenVersion or lockout counters.
    """
    id: str
    firstName: str
    lastName: str
    name: str
    email: str
    role: str = "user"
    isEmailVerified: bool = False
    createdAt: Optional[str] = None


class AuthOut(BaseModel):
    """Response model for signup and login."""
    token: str  # Bearer token for subsequent requests
    user: UserOut


def user_to_dict(u: User) -> dict:
    """Convert a User model instance to its API representation."""
    return {
        "id": str(u.id),
        "firstName": u.first_name,
        "lastName": u.last_name,
        "name": u.full_name,
        "email": u.email,
        "role": u.role,
        "isEmailVerified": bool(u.is_email_verified),
        "createdAt": u.created_at.isoformat() if u.created_at else None,
    }
