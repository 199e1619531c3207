# fitcoach/models/appointment.py
"""
Database model for trainer/client appointments.
A slot is (trainer, date, time); status changes are owned by the booking engine.
"""
import uuid
from tortoise import fields, models

STATUSES = ("scheduled", "completed", "cancelled", "no_show", "late")


class Appointment(models.Model):
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    client = fields.ForeignKeyField(
        "models.User",
        related_name="client_appointments",
        on_delete=fields.RESTRICT,
    )
    trainer = fields.ForeignKeyField(
        "models.User",
        related_name="trainer_appointments",
        on_delete=fields.RESTRICT,
    )
    date = fields.DateField()                 # Calendar day
    time = fields.CharField(max_length=5)     # "HH:00"
    status = fields.CharField(max_length=16, default="scheduled")
    notes = fields.TextField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "appointments"
        indexes = (("trainer_id", "date", "time"), ("client_id", "date"))
