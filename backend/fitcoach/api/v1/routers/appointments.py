# fitcoach/api/v1/routers/appointments.py
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status

from fitcoach.api.v1.deps import Principal, get_current_principal, require_admin
from fitcoach.core.errors import AppError, Conflict, Forbidden, NotFound, ValidationFailed
from fitcoach.models.appointment import Appointment
from fitcoach.schemas.appointment import AppointmentCreateIn, AppointmentUpdateIn, Status, appointment_to_dict
from fitcoach.services.audit import RequestContext
from fitcoach.services.booking import BookingError, BookingResult, booking_engine

router = APIRouter(prefix="/appointments", tags=["appointments"])

# Booking outcome -> HTTP error class
_ERROR_CLASSES = {
    BookingError.NOT_FOUND: NotFound,
    BookingError.FORBIDDEN: Forbidden,
    BookingError.VALIDATION: ValidationFailed,
    BookingError.INVALID_TRAINER: ValidationFailed,
    BookingError.PAST_BOOKING: ValidationFailed,
    BookingError.OUTSIDE_WINDOW: ValidationFailed,
    BookingError.NOT_ON_THE_HOUR: ValidationFailed,
    BookingError.CLIENT_ALREADY_BOOKED: Conflict,
    BookingError.SLOT_FULL: Conflict,
    BookingError.INVALID_TRANSITION: Conflict,
}


def _unwrap(result: BookingResult) -> Optional[Appointment]:
    """Lift a BookingResult to HTTP: the appointment on success, an AppError otherwise."""
    if result.ok:
        return result.appointment
    exc_cls = _ERROR_CLASSES.get(result.error, AppError)
    raise exc_cls(result.message, code=result.error.value)


@router.get("", dependencies=[Depends(require_admin)])
async def list_appointments(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = Query(default=None, description="Matches client/trainer first or last name"),
    status_filter: Optional[Status] = Query(default=None, alias="status"),
    sortBy: str = Query("date"),
    sortOrder: str = Query("asc", pattern="^(asc|desc)$"),
):
    """
    Paginated list of every appointment (admin only).

    Returns:
        dict: ``{appointments, pagination}`` where pagination is
        ``{currentPage, totalPages, totalAppointments, hasNext, hasPrev}``
    """
    rows, pagination = await booking_engine.list_all(
        page=page, limit=limit, search=search, status=status_filter, sort_by=sortBy, sort_order=sortOrder,
    )
    return {"appointments": [appointment_to_dict(a) for a in rows], "pagination": pagination}


@router.get("/user")
async def list_my_appointments(principal: Principal = Depends(get_current_principal)):
    """Every appointment where the caller is the client or the trainer, by date then time."""
    rows = await booking_engine.list_for_user(principal)
    return [appointment_to_dict(a) for a in rows]


@router.get("/{appointment_id}")
async def get_appointment(
    appointment_id: str,
    request: Request,
    principal: Principal = Depends(get_current_principal),
):
    result = await booking_engine.get(principal, appointment_id, RequestContext.from_request(request))
    return appointment_to_dict(_unwrap(result))


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_appointment(
    body: AppointmentCreateIn,
    request: Request,
    principal: Principal = Depends(get_current_principal),
):
    """
    Book a slot with a trainer.

    The caller books for themselves; an admin may pass ``clientId`` to book
    on someone's behalf.

    Raises:
        400: Invalid trainer, past slot, outside the window, not on the hour,
             client already booked that day, or slot fully booked
        403: Booking for someone else without being an admin
    """
    result = await booking_engine.create(
        principal,
        trainer_id=body.trainerId,
        date=body.date,
        time=body.time,
        notes=body.notes,
        client_id=body.clientId,
        context=RequestContext.from_request(request),
    )
    return appointment_to_dict(_unwrap(result))


@router.put("/{appointment_id}")
async def update_appointment(
    appointment_id: str,
    body: AppointmentUpdateIn,
    request: Request,
    principal: Principal = Depends(get_current_principal),
):
    """
    Update date, time, status or notes (admin or the owning trainer).

    Only fields present in the body are applied.
    """
    patch = body.model_dump(exclude_unset=True)
    result = await booking_engine.update(principal, appointment_id, patch, RequestContext.from_request(request))
    return appointment_to_dict(_unwrap(result))


@router.post("/{appointment_id}/cancel")
async def cancel_appointment(
    appointment_id: str,
    request: Request,
    principal: Principal = Depends(get_current_principal),
):
    """Cancel (idempotent). Admin, owning trainer or the booking client."""
    result = await booking_engine.cancel(principal, appointment_id, RequestContext.from_request(request))
    return appointment_to_dict(_unwrap(result))


@router.delete("/{appointment_id}")
async def delete_appointment(
    appointment_id: str,
    request: Request,
    principal: Principal = Depends(get_current_principal),
):
    """Hard delete. Unlike cancel, no history is kept."""
    _unwrap(await booking_engine.delete(principal, appointment_id, RequestContext.from_request(request)))
    return {"msg": "Appointment deleted successfully"}
