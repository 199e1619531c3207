# fitcoach/models/audit_event.py
import uuid
from tortoise import fields, models

LEVELS = ("info", "warn", "error")
CATEGORIES = ("general", "admin", "user", "security", "auth")


class AuditEvent(models.Model):
    """
    Persisted audit record (append-only).
    - user_id is a plain column, not a foreign key: events outlive the rows they mention
    - metadata holds the event-specific details (eventType, reason, slot, ...)
    """
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    timestamp = fields.DatetimeField(index=True)
    level = fields.CharField(max_length=8)
    category = fields.CharField(max_length=16, index=True)
    message = fields.TextField()
    user_id = fields.CharField(max_length=64, null=True, index=True)
    ip = fields.CharField(max_length=64, null=True)
    user_agent = fields.CharField(max_length=512, null=True)
    request_id = fields.CharField(max_length=64, null=True)
    metadata = fields.JSONField(default=dict)

    class Meta:
        table = "audit_events"
