# fitcoach/schemas/admin.py
"""
Pydantic schemas for admin user management endpoints.
Defines request/response models for user administration and the audit log viewer.
"""
from pydantic import BaseModel, Field
from typing import Any, Dict, Optional, List, Literal

from fitcoach.schemas.auth import UserOut


# ========== Common return model ==========
class AdminUserOut(UserOut):
    """
    User as seen by an admin: the public fields plus security state.
    """
    tokenVersion: int = 0
    failedLoginAttempts: int = 0
    lockoutUntil: Optional[str] = None
    lastLoggedIn: Optional[str] = None
    anonymized: bool = False


class AdminUserListOut(BaseModel):
    """
    Response model for paginated user list endpoint.
    Returns a list of users with pagination metadata.
    """
    items: List[AdminUserOut]
    offset: int  # Number of items skipped
    limit: int   # Maximum number of items per page
    total: int   # Total number of users matching the query


class AdminUserDetailOut(BaseModel):
    user: AdminUserOut


class AuditEventOut(BaseModel):
    id: str
    timestamp: Optional[str] = None
    level: str
    category: str
    message: str
    userId: Optional[str] = None
    ip: Optional[str] = None
    userAgent: Optional[str] = None
    requestId: Optional[str] = None
    metadata: Dict[str, Any] = {}


class AuditEventListOut(BaseModel):
    items: List[AuditEventOut]
    offset: int
    limit: int
    total: int


# ========== Input model ==========
class AdminUserUpdateIn(BaseModel):
    """
    Request model for updating user information.
    All fields are optional - only provided fields will be updated.
    """
    firstName: Optional[str] = Field(default=None, min_length=1, max_length=50)
    lastName: Optional[str] = Field(default=None, min_length=1, max_length=50)
    role: Optional[Literal["user", "trainer", "admin"]] = None  # Cannot demote self or the last admin


class AdminResetPasswordIn(BaseModel):
    """
    Request model for admin-initiated password reset.
    Resetting also revokes every token the user holds.
    """
    newPassword: str = Field(min_length=8, max_length=128)
