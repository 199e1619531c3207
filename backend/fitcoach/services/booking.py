# fitcoach/services/booking.py
"""
Booking engine.

Owns every Appointment status change. Operations return a BookingResult
instead of raising, so the router can map outcomes to HTTP in one place.

Invariants kept here:
  - at most ``slot_capacity`` non-cancelled appointments per (trainer, date, time)
  - at most one non-cancelled appointment per (client, date)
  - status only moves scheduled -> {completed, cancelled, no_show, late}

The two counting invariants are guaranteed by per-key asyncio locks held
around the check and the write, so they hold for a single process only.
The re-check after the write runs inside the same uncommitted transaction
and cannot see another process's pending insert; it only catches rows
committed by writers that bypass these locks.
"""
import asyncio
import datetime as dt
import logging
import math
import re
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Hashable, List, Optional, Tuple
from zoneinfo import ZoneInfo

from tortoise.expressions import Q
from tortoise.transactions import in_transaction

from fitcoach.config import settings
from fitcoach.core.db import store_guard
from fitcoach.core.security import Clock, clock as default_clock
from fitcoach.models.appointment import STATUSES, Appointment
from fitcoach.models.user import User
from fitcoach.services.audit import AuditSink, RequestContext, audit_sink as default_sink

logger = logging.getLogger("fitcoach.booking")

TRAINER_ROLES = ("trainer", "admin")
TERMINAL_STATUSES = frozenset({"completed", "cancelled", "no_show", "late"})
ALLOWED_TRANSITIONS: Dict[str, frozenset] = {"scheduled": TERMINAL_STATUSES}
UPDATABLE_FIELDS = frozenset({"date", "time", "status", "notes"})

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")

MSG_SLOT_FULL = "Time slot is fully booked. Please choose another time."
MSG_ONE_PER_DAY = "You can only book one appointment per day."


class BookingError(str, Enum):
    VALIDATION = "VALIDATION_ERROR"
    INVALID_TRAINER = "INVALID_TRAINER"
    PAST_BOOKING = "PAST_BOOKING"
    OUTSIDE_WINDOW = "OUTSIDE_BOOKING_WINDOW"
    NOT_ON_THE_HOUR = "NOT_ON_THE_HOUR"
    CLIENT_ALREADY_BOOKED = "CLIENT_ALREADY_BOOKED_THIS_DAY"
    SLOT_FULL = "SLOT_FULL"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    NOT_FOUND = "APPOINTMENT_NOT_FOUND"
    FORBIDDEN = "FORBIDDEN"


@dataclass
class BookingResult:
    """Outcome of a booking operation: an appointment, or an error kind with a message."""
    appointment: Optional[Appointment] = None
    error: Optional[BookingError] = None
    message: str = ""
    created: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, appointment: Optional[Appointment], created: bool = False) -> "BookingResult":
        return cls(appointment=appointment, created=created)

    @classmethod
    def failure(cls, error: BookingError, message: str) -> "BookingResult":
        return cls(error=error, message=message)


@dataclass(frozen=True)
class BookingPolicy:
    slot_capacity: int = 6
    start_hour: int = 5
    end_hour: int = 13  # exclusive
    timezone: str = "UTC"

    @classmethod
    def from_settings(cls) -> "BookingPolicy":
        return cls(
            slot_capacity=settings.slot_capacity,
            start_hour=settings.booking_start_hour,
            end_hour=settings.booking_end_hour,
            timezone=settings.booking_timezone,
        )

    @property
    def window_text(self) -> str:
        return f"{self.start_hour:02d}:00 and {self.end_hour:02d}:00"


class _Violation(Exception):
    """Raised inside a transaction to roll it back with a booking error."""

    def __init__(self, error: BookingError, message: str):
        super().__init__(message)
        self.error = error
        self.message = message


class KeyedLocks:
    """
    asyncio locks created on demand per key and dropped when unused.

    ``hold`` takes several keys in sorted order, so two callers needing
    overlapping keys cannot deadlock.
    """

    def __init__(self):
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._refs: Dict[Hashable, int] = {}

    def _ref(self, key: Hashable) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._refs[key] = self._refs.get(key, 0) + 1
        return lock

    def _unref(self, key: Hashable) -> None:
        self._refs[key] -= 1
        if self._refs[key] == 0:
            del self._refs[key]
            del self._locks[key]

    @asynccontextmanager
    async def hold(self, *keys: Hashable):
        held: List[Hashable] = []
        try:
            for key in sorted(set(keys)):
                lock = self._ref(key)
                try:
                    await lock.acquire()
                except BaseException:
                    self._unref(key)
                    raise
                held.append(key)
            yield
        finally:
            for key in reversed(held):
                self._locks[key].release()
                self._unref(key)

    def __len__(self) -> int:
        return len(self._locks)


def _parse_uuid(value: Any) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


def parse_date(value: Any) -> Optional[dt.date]:
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    try:
        # Accept "YYYY-MM-DD" and full ISO timestamps ("2030-01-15T00:00:00.000Z")
        return dt.date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        return None


def parse_time(value: Any) -> Optional[Tuple[int, int]]:
    m = _TIME_RE.match(str(value or "").strip())
    if not m:
        return None
    hour, minute = int(m.group(1)), int(m.group(2))
    if hour > 23 or minute > 59:
        return None
    return hour, minute


class BookingEngine:
    def __init__(
        self,
        policy: Optional[BookingPolicy] = None,
        clock: Optional[Clock] = None,
        sink: Optional[AuditSink] = None,
    ):
        self._policy = policy
        self._clock = clock or default_clock
        self._sink = sink or default_sink
        self._locks = KeyedLocks()

    @property
    def policy(self) -> BookingPolicy:
        return self._policy or BookingPolicy.from_settings()

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _check_slot(self, date_value: Any, time_value: Any) -> Tuple[Optional[dt.date], Optional[str], Optional[BookingResult]]:
        """
        Parse and validate a requested slot.

        Returns (date, "HH:00", None) on success or (None, None, failure).
        Order: format, strictly in the future, inside the window, on the hour.
        """
        policy = self.policy
        day = parse_date(date_value)
        if day is None:
            return None, None, BookingResult.failure(BookingError.VALIDATION, "Invalid date. Use YYYY-MM-DD.")
        hm = parse_time(time_value)
        if hm is None:
            return None, None, BookingResult.failure(BookingError.VALIDATION, "Invalid time. Use HH:MM.")
        hour, minute = hm

        moment = dt.datetime.combine(day, dt.time(hour, minute), tzinfo=ZoneInfo(policy.timezone))
        if moment <= self._clock.now():
            return None, None, BookingResult.failure(
                BookingError.PAST_BOOKING, "Cannot book appointments in the past."
            )
        if not (policy.start_hour <= hour < policy.end_hour):
            return None, None, BookingResult.failure(
                BookingError.OUTSIDE_WINDOW,
                f"Appointments can only be booked between {policy.window_text}.",
            )
        if minute != 0:
            return None, None, BookingResult.failure(
                BookingError.NOT_ON_THE_HOUR, "Appointments can only be booked on the hour (e.g. 09:00)."
            )
        return day, f"{hour:02d}:00", None

    @staticmethod
    async def _client_day_count(client_id, day: dt.date, exclude_id=None, conn=None) -> int:
        qs = Appointment.filter(client_id=client_id, date=day).exclude(status="cancelled")
        if exclude_id is not None:
            qs = qs.exclude(id=exclude_id)
        return await qs.using_db(conn).count()

    @staticmethod
    async def _slot_count(trainer_id, day: dt.date, slot_time: str, exclude_id=None, conn=None) -> int:
        qs = Appointment.filter(trainer_id=trainer_id, date=day, time=slot_time).exclude(status="cancelled")
        if exclude_id is not None:
            qs = qs.exclude(id=exclude_id)
        return await qs.using_db(conn).count()

    async def _check_capacity(self, client_id, trainer_id, day, slot_time, exclude_id=None, conn=None) -> None:
        if await self._client_day_count(client_id, day, exclude_id, conn) > 0:
            raise _Violation(BookingError.CLIENT_ALREADY_BOOKED, MSG_ONE_PER_DAY)
        if await self._slot_count(trainer_id, day, slot_time, exclude_id, conn) >= self.policy.slot_capacity:
            raise _Violation(BookingError.SLOT_FULL, MSG_SLOT_FULL)

    async def _verify_after_write(self, appt: Appointment, conn=None) -> None:
        # Sees only committed rows plus our own write; the keyed locks are what serialize this process
        if await self._client_day_count(appt.client_id, appt.date, conn=conn) > 1:
            raise _Violation(BookingError.CLIENT_ALREADY_BOOKED, MSG_ONE_PER_DAY)
        if await self._slot_count(appt.trainer_id, appt.date, appt.time, conn=conn) > self.policy.slot_capacity:
            raise _Violation(BookingError.SLOT_FULL, MSG_SLOT_FULL)

    @staticmethod
    def _slot_keys(client_id, trainer_id, day: dt.date, slot_time: str) -> Tuple[tuple, tuple]:
        return (
            ("client-day", str(client_id), day.isoformat()),
            ("slot", str(trainer_id), day.isoformat(), slot_time),
        )

    async def _load(self, appointment_id: Any) -> Optional[Appointment]:
        aid = _parse_uuid(appointment_id)
        if aid is None:
            return None
        async with store_guard("load_appointment"):
            return await Appointment.get_or_none(id=aid).prefetch_related("client", "trainer")

    def _deny(self, principal, action: str, appt: Appointment, context: Optional[RequestContext]) -> BookingResult:
        self._sink.security_event(
            "DATA_ACCESS_DENIED",
            principal.id,
            {"action": action, "appointmentId": str(appt.id), "role": principal.role},
            context,
        )
        return BookingResult.failure(BookingError.FORBIDDEN, "Access denied")

    @staticmethod
    def _is_party(principal, appt: Appointment) -> bool:
        return principal.id in (str(appt.client_id), str(appt.trainer_id))

    # ------------------------------------------------------------------
    # create
    # ------------------------------------------------------------------
    async def create(
        self,
        principal,
        *,
        trainer_id: Any,
        date: Any,
        time: Any,
        notes: Optional[str] = None,
        client_id: Any = None,
        context: Optional[RequestContext] = None,
    ) -> BookingResult:
        """
        Book ``client_id`` (defaults to the caller) with ``trainer_id``.

        Only admins may book on behalf of someone else.
        """
        client_id = str(client_id) if client_id else principal.id
        if client_id != principal.id and not principal.is_admin:
            self._sink.security_event(
                "DATA_ACCESS_DENIED", principal.id, {"action": "book_on_behalf", "clientId": client_id}, context
            )
            return BookingResult.failure(BookingError.FORBIDDEN, "You can only book appointments for yourself")

        async with store_guard("create_appointment"):
            client_uuid = _parse_uuid(client_id)
            client = await User.get_or_none(id=client_uuid) if client_uuid else None
            if not client:
                return BookingResult.failure(BookingError.VALIDATION, "Invalid client")

            trainer_uuid = _parse_uuid(trainer_id)
            trainer = await User.get_or_none(id=trainer_uuid) if trainer_uuid else None
            if not trainer or trainer.role not in TRAINER_ROLES:
                return BookingResult.failure(BookingError.INVALID_TRAINER, "Invalid trainer")

            day, slot_time, failure = self._check_slot(date, time)
            if failure:
                return failure

            try:
                async with self._locks.hold(*self._slot_keys(client.id, trainer.id, day, slot_time)):
                    async with in_transaction() as conn:
                        await self._check_capacity(client.id, trainer.id, day, slot_time, conn=conn)
                        appt = await Appointment.create(
                            client=client,
                            trainer=trainer,
                            date=day,
                            time=slot_time,
                            status="scheduled",
                            notes=notes,
                            using_db=conn,
                        )
                        await self._verify_after_write(appt, conn)
            except _Violation as v:
                logger.info("[booking] rejected %s for client=%s slot=%s %s %s",
                            v.error.value, client.id, trainer.id, day, slot_time)
                return BookingResult.failure(v.error, v.message)

            await appt.fetch_related("client", "trainer")

        self._sink.user_action(
            "book_appointment",
            principal.id,
            {
                "appointmentId": str(appt.id),
                "clientId": str(client.id),
                "trainerId": str(trainer.id),
                "date": day.isoformat(),
                "time": slot_time,
            },
            context,
        )
        return BookingResult.success(appt, created=True)

    # ------------------------------------------------------------------
    # update
    # ------------------------------------------------------------------
    async def update(
        self,
        principal,
        appointment_id: Any,
        patch: Dict[str, Any],
        context: Optional[RequestContext] = None,
    ) -> BookingResult:
        """
        Apply ``patch`` (date, time, status, notes). Admin or owning trainer only.

        A status change must follow the state machine. Moving the date or
        time re-runs the slot checks against the new slot.
        """
        appt = await self._load(appointment_id)
        if not appt:
            return BookingResult.failure(BookingError.NOT_FOUND, "Appointment not found")
        if not (principal.is_admin or principal.id == str(appt.trainer_id)):
            return self._deny(principal, "update_appointment", appt, context)

        unknown = set(patch) - UPDATABLE_FIELDS
        if unknown:
            return BookingResult.failure(BookingError.VALIDATION, f"Unknown fields: {', '.join(sorted(unknown))}")

        current = appt.status
        new_status = patch.get("status") or current
        if new_status not in STATUSES:
            return BookingResult.failure(BookingError.VALIDATION, f"Invalid status: {new_status}")
        if new_status != current and new_status not in ALLOWED_TRANSITIONS.get(current, ()):
            return BookingResult.failure(
                BookingError.INVALID_TRANSITION, f"Cannot change status from {current} to {new_status}"
            )

        new_day, new_time = appt.date, appt.time
        req_date = patch.get("date") if patch.get("date") is not None else appt.date
        req_time = patch.get("time") if patch.get("time") is not None else appt.time
        hm = parse_time(req_time)
        unchanged = parse_date(req_date) == appt.date and hm is not None and f"{hm[0]:02d}:{hm[1]:02d}" == appt.time
        if not unchanged:
            day, slot_time, failure = self._check_slot(req_date, req_time)
            if failure:
                return failure
            new_day, new_time = day, slot_time
        moving = (new_day, new_time) != (appt.date, appt.time)
        if moving and current != "scheduled":
            return BookingResult.failure(
                BookingError.INVALID_TRANSITION, f"Cannot reschedule an appointment that is {current}"
            )

        changes: Dict[str, Any] = {}
        if moving:
            changes.update(date=new_day, time=new_time)
        if new_status != current:
            changes["status"] = new_status
        if "notes" in patch:
            changes["notes"] = patch["notes"]

        # Every status but cancelled occupies the new slot and day
        occupies = moving and new_status != "cancelled"
        if changes:
            keys = self._slot_keys(appt.client_id, appt.trainer_id, new_day, new_time)
            try:
                async with store_guard("update_appointment"):
                    async with self._locks.hold(*keys):
                        async with in_transaction() as conn:
                            if occupies:
                                await self._check_capacity(
                                    appt.client_id, appt.trainer_id, new_day, new_time,
                                    exclude_id=appt.id, conn=conn,
                                )
                            # Conditional on the status we validated against
                            updated = await Appointment.filter(id=appt.id, status=current).using_db(conn).update(
                                updated_at=self._clock.now(), **changes
                            )
                            if not updated:
                                raise _Violation(
                                    BookingError.INVALID_TRANSITION,
                                    "Appointment was modified concurrently; reload and retry",
                                )
                            if occupies:
                                await appt.refresh_from_db(using_db=conn)
                                await self._verify_after_write(appt, conn)
            except _Violation as v:
                return BookingResult.failure(v.error, v.message)
            await appt.refresh_from_db()
            await appt.fetch_related("client", "trainer")

        self._sink.user_action(
            "update_appointment",
            principal.id,
            {"appointmentId": str(appt.id), "changes": sorted(changes), "status": appt.status},
            context,
        )
        return BookingResult.success(appt)

    # ------------------------------------------------------------------
    # cancel / delete
    # ------------------------------------------------------------------
    async def cancel(self, principal, appointment_id: Any, context: Optional[RequestContext] = None) -> BookingResult:
        """Transition to cancelled. Idempotent: an already-cancelled appointment is returned as-is."""
        appt = await self._load(appointment_id)
        if not appt:
            return BookingResult.failure(BookingError.NOT_FOUND, "Appointment not found")
        if not (principal.is_admin or self._is_party(principal, appt)):
            return self._deny(principal, "cancel_appointment", appt, context)
        if appt.status == "cancelled":
            return BookingResult.success(appt)

        async with store_guard("cancel_appointment"):
            updated = await Appointment.filter(id=appt.id, status="scheduled").update(
                status="cancelled", updated_at=self._clock.now()
            )
            await appt.refresh_from_db()
        if not updated and appt.status != "cancelled":
            return BookingResult.failure(
                BookingError.INVALID_TRANSITION, f"Cannot change status from {appt.status} to cancelled"
            )
        if updated:
            self._sink.user_action("cancel_appointment", principal.id, {"appointmentId": str(appt.id)}, context)
        return BookingResult.success(appt)

    async def delete(self, principal, appointment_id: Any, context: Optional[RequestContext] = None) -> BookingResult:
        """Hard delete (erases history, unlike cancel). Admin, owning trainer or booking client."""
        appt = await self._load(appointment_id)
        if not appt:
            return BookingResult.failure(BookingError.NOT_FOUND, "Appointment not found")
        if not (principal.is_admin or self._is_party(principal, appt)):
            return self._deny(principal, "delete_appointment", appt, context)
        async with store_guard("delete_appointment"):
            await appt.delete()
        self._sink.user_action(
            "delete_appointment", principal.id,
            {"appointmentId": str(appointment_id), "status": appt.status}, context,
        )
        return BookingResult.success(None)

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------
    async def get(self, principal, appointment_id: Any, context: Optional[RequestContext] = None) -> BookingResult:
        appt = await self._load(appointment_id)
        if not appt:
            return BookingResult.failure(BookingError.NOT_FOUND, "Appointment not found")
        if not (principal.is_admin or self._is_party(principal, appt)):
            return self._deny(principal, "read_appointment", appt, context)
        return BookingResult.success(appt)

    async def list_for_user(self, principal) -> List[Appointment]:
        """Every appointment where the caller is client or trainer, by (date, time)."""
        async with store_guard("list_user_appointments"):
            return await (
                Appointment.filter(Q(client_id=principal.id) | Q(trainer_id=principal.id))
                .order_by("date", "time")
                .prefetch_related("client", "trainer")
            )

    async def list_for_trainer(self, trainer_id: Any, status: Optional[str] = None) -> List[Appointment]:
        async with store_guard("list_trainer_appointments"):
            qs = Appointment.filter(trainer_id=trainer_id)
            if status:
                qs = qs.filter(status=status)
            return await qs.order_by("date", "time").prefetch_related("client", "trainer")

    SORT_FIELDS = {
        "date": ("date", "time"),
        "time": ("time", "date"),
        "status": ("status", "date", "time"),
        "createdAt": ("created_at",),
        "updatedAt": ("updated_at",),
    }

    async def list_all(
        self,
        page: int = 1,
        limit: int = 10,
        search: Optional[str] = None,
        status: Optional[str] = None,
        sort_by: str = "date",
        sort_order: str = "asc",
    ) -> Tuple[List[Appointment], Dict[str, Any]]:
        """
        Admin listing with pagination, status filter, name search and sorting.

        Returns (appointments, pagination) where pagination is
        {currentPage, totalPages, totalAppointments, hasNext, hasPrev}.
        """
        page = max(int(page or 1), 1)
        limit = min(max(int(limit or 10), 1), 100)

        qs = Appointment.all()
        if status:
            qs = qs.filter(status=status)
        if search and search.strip():
            s = search.strip()
            qs = qs.filter(
                Q(client__first_name__icontains=s)
                | Q(client__last_name__icontains=s)
                | Q(trainer__first_name__icontains=s)
                | Q(trainer__last_name__icontains=s)
            )

        prefix = "-" if str(sort_order).lower() == "desc" else ""
        ordering = [prefix + f for f in self.SORT_FIELDS.get(sort_by, self.SORT_FIELDS["date"])]

        async with store_guard("list_appointments"):
            total = await qs.count()
            rows = await (
                qs.order_by(*ordering)
                .offset((page - 1) * limit)
                .limit(limit)
                .prefetch_related("client", "trainer")
            )

        total_pages = math.ceil(total / limit) if total else 0
        pagination = {
            "currentPage": page,
            "totalPages": total_pages,
            "totalAppointments": total,
            "hasNext": page < total_pages,
            "hasPrev": page > 1,
        }
        return rows, pagination


# Global engine instance
booking_engine = BookingEngine()
