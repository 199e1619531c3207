# fitcoach/api/v1/routers/trainer.py
from typing import Optional

from fastapi import APIRouter, Depends, Query

from fitcoach.api.v1.deps import Principal, require_trainer
from fitcoach.schemas.appointment import Status, appointment_to_dict
from fitcoach.services.booking import booking_engine

router = APIRouter(prefix="/trainer", tags=["trainer"])


@router.get("/appointments")
async def list_trainer_appointments(
    status_filter: Optional[Status] = Query(default=None, alias="status"),
    principal: Principal = Depends(require_trainer),
):
    """
    Appointments booked with the calling trainer, by date then time.

    Optional ``status`` narrows the list (e.g. only ``scheduled``).
    """
    rows = await booking_engine.list_for_trainer(principal.id, status_filter)
    return [appointment_to_dict(a) for a in rows]
