# fitcoach/core/bootstrap.py
"""
Bootstrap module for application initialization.
Creates the default admin account on first startup.
"""
import os
import logging

from fitcoach.core.errors import DuplicateEmail
from fitcoach.core.security import hash_password_async
from fitcoach.models.user import User
from fitcoach.services.credentials import credential_store

logger = logging.getLogger("fitcoach")


async def ensure_default_admin() -> None:
    """
    If no admin exists in the database, create a default admin based on environment variables.
    Only takes effect under the following conditions:
      - Currently no user with role="admin"
      - And ADMIN_PASSWORD is set (to avoid using default weak password)
    Environment variables:
      ADMIN_EMAIL    (default: "admin@example.com")
      ADMIN_PASSWORD (required, otherwise won't create)
    """
    if await User.filter(role="admin", anonymized_at__isnull=True).exists():
        return

    admin_password = os.getenv("ADMIN_PASSWORD")
    if not admin_password:
        logger.warning("[bootstrap] No admin present, but ADMIN_PASSWORD not set -> skip creating default admin.")
        return

    admin_email = os.getenv("ADMIN_EMAIL", "admin@example.com").strip().lower()

    # The address may belong to a regular account; never promote it, pick a free one instead
    local, _, domain = admin_email.partition("@")
    candidate = admin_email
    suffix = 1
    while await credential_store.find_by_email(candidate):
        suffix += 1
        candidate = f"{local}{suffix}@{domain}"
    if candidate != admin_email:
        logger.warning("[bootstrap] %s is taken by a non-admin account -> using %s", admin_email, candidate)

    try:
        u = await credential_store.create(
            first_name="Admin",
            last_name="User",
            email=candidate,
            password_hash=await hash_password_async(admin_password),
            role="admin",
            is_email_verified=True,
        )
    except DuplicateEmail:
        # Another worker created it concurrently
        return
    logger.warning("[bootstrap] Created default admin -> email=%s id=%s", u.email, u.id)
