# fitcoach/models/user.py
"""
Database model for users.
Holds the account identity, the hashed password, the role and the
security counters (tokenVersion, lockout) owned by the credential store.
"""
import uuid
from tortoise import fields, models

ROLES = ("user", "trainer", "admin")


class User(models.Model):
    """
    User database model.

    Relationships:
    - Has many Appointments as client (related_name="client_appointments")
    - Has many Appointments as trainer (related_name="trainer_appointments")

    Security:
    - Email is unique and stored lowercase, so lookups are case-insensitive
    - token_version only ever increases; tokens carrying a lower snapshot are revoked
    - Erased accounts keep their id (appointments still reference it) but lose identity fields
    """
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    first_name = fields.CharField(max_length=100)
    last_name = fields.CharField(max_length=100)
    email = fields.CharField(max_length=256, unique=True, index=True)  # Always lowercase
    password_hash = fields.CharField(max_length=255)
    role = fields.CharField(max_length=16, default="user")  # "user", "trainer" or "admin"

    token_version = fields.IntField(default=0)
    is_email_verified = fields.BooleanField(default=False)
    failed_login_attempts = fields.IntField(default=0)
    last_failed_login_at = fields.DatetimeField(null=True)
    lockout_until = fields.DatetimeField(null=True)
    last_logged_in = fields.DatetimeField(null=True)

    anonymized_at = fields.DatetimeField(null=True)  # Set when the account was erased
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        """Tortoise ORM metadata configuration."""
        table = "users"

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
