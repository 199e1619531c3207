# fitcoach/schemas/appointment.py
"""
Pydantic schemas for appointment endpoints.

Date and time arrive as strings; their semantic checks (future, booking
window, on the hour) belong to the booking engine, so only shape is
validated here.
"""
from typing import Literal, Optional

from pydantic import BaseModel, Field

from fitcoach.models.appointment import Appointment
from fitcoach.models.user import User

Status = Literal["scheduled", "completed", "cancelled", "no_show", "late"]


class AppointmentCreateIn(BaseModel):
    trainerId: str = Field(min_length=1)
    date: str = Field(min_length=1)   # YYYY-MM-DD
    time: str = Field(min_length=1)   # HH:MM
    notes: Optional[str] = Field(default=None, max_length=500)
    clientId: Optional[str] = None    # Admin booking on behalf of a client


class AppointmentUpdateIn(BaseModel):
    """All fields optional; only the ones sent are applied."""
    date: Optional[str] = None
    time: Optional[str] = None
    status: Optional[Status] = None
    notes: Optional[str] = Field(default=None, max_length=500)


def _party(u: Optional[User]) -> Optional[dict]:
    if u is None:
        return None
    return {"id": str(u.id), "firstName": u.first_name, "lastName": u.last_name, "email": u.email}


def appointment_to_dict(a: Appointment) -> dict:
    """
    API representation. ``client`` and ``trainer`` must already be fetched;
    they are rendered under ``clientId`` / ``trainerId`` as small user objects.
    """
    return {
        "id": str(a.id),
        "clientId": _party(a.client),
        "trainerId": _party(a.trainer),
        "date": a.date.isoformat() if a.date else None,
        "time": a.time,
        "status": a.status,
        "notes": a.notes,
        "createdAt": a.created_at.isoformat() if a.created_at else None,
        "updatedAt": a.updated_at.isoformat() if a.updated_at else None,
    }
