# fitcoach/services/audit.py
"""
Audit sink.

Append-only stream of structured security and user-action events. Every
event goes to the ``fitcoach.audit`` logger (console channel) and, in a
background task, to the ``audit_events`` table (persistent channel).
Critical security events are also POSTed to the alert webhook.

Audit and alert failures are logged and never reach the caller.
"""
import asyncio
import datetime as dt
import json
import logging
from collections import Counter
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Optional, Set

import httpx
from fastapi import Request

from fitcoach.config import settings
from fitcoach.core.security import Clock, clock as default_clock
from fitcoach.models.audit_event import AuditEvent

logger = logging.getLogger("fitcoach.audit")

# Event type -> level; anything not listed is "info"
EVENT_LEVELS: Dict[str, str] = {
    "AUTH_FAILED_LOGIN": "error",
    "AUTH_ACCOUNT_LOCKED": "error",
    "DATA_ACCESS_DENIED": "error",
    "AUTH_MULTIPLE_FAILED": "warn",
}

# Events mirrored to the alert webhook
CRITICAL_EVENTS = frozenset({"AUTH_FAILED_LOGIN", "AUTH_ACCOUNT_LOCKED", "DATA_ACCESS_DENIED"})

_LOG_LEVELS = {"info": logging.INFO, "warn": logging.WARNING, "error": logging.ERROR}


def level_for_event(event_type: str) -> str:
    return EVENT_LEVELS.get(event_type, "info")


@dataclass
class RequestContext:
    """Who/where of the request an event was emitted from."""
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: Optional[str] = None

    @classmethod
    def from_request(cls, request: Optional[Request]) -> "RequestContext":
        if request is None:
            return cls()
        forwarded = request.headers.get("x-forwarded-for")
        ip = forwarded.split(",")[0].strip() if forwarded else (request.client.host if request.client else None)
        return cls(
            ip=ip,
            user_agent=request.headers.get("user-agent"),
            request_id=getattr(request.state, "request_id", None) or request.headers.get("x-request-id"),
        )


@dataclass
class AuditRecord:
    level: str
    category: str
    message: str
    user_id: Optional[str] = None
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: Optional[dt.datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat() if self.timestamp else None
        return data


class AuditSink:
    """
    Fan-out point for audit events.

    ``emit`` is synchronous: it logs, counts, and schedules persistence and
    alerting on the running loop without waiting for them. ``drain`` awaits
    whatever is still in flight (shutdown, tests). Counters are updated
    without locking; they are indicative, not exact.
    """

    def __init__(
        self,
        clock: Optional[Clock] = None,
        persist: Optional[bool] = None,
        webhook_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._clock = clock or default_clock
        self._persist_override = persist
        self._webhook_override = webhook_url
        self.transport = transport
        self._last_ts: Optional[dt.datetime] = None
        self._pending: Set[asyncio.Task] = set()
        self._counts: Counter = Counter()

    # ----- configuration (read per call so settings changes apply) -----
    @property
    def persist(self) -> bool:
        return settings.audit_persist if self._persist_override is None else self._persist_override

    @property
    def webhook_url(self) -> Optional[str]:
        return self._webhook_override or settings.alert_webhook_url

    # ----- core -----
    def emit(self, record: AuditRecord, *, alert: bool = False) -> AuditRecord:
        """
        Append ``record`` to the stream.

        Timestamps are non-decreasing for this sink even if the clock steps back.
        """
        now = self._clock.now()
        if self._last_ts is not None and now < self._last_ts:
            now = self._last_ts
        self._last_ts = now
        record.timestamp = now

        logger.log(
            _LOG_LEVELS.get(record.level, logging.INFO),
            "[%s] %s | user=%s | request=%s | %s",
            record.category.upper(),
            record.message,
            record.user_id,
            record.request_id,
            json.dumps(record.metadata, default=str),
        )
        self._counts[("category", record.category)] += 1
        self._counts[("level", record.level)] += 1

        if self.persist:
            self._spawn(self._persist(record))
        if alert and self.webhook_url:
            self._spawn(self._send_alert(record))
        return record

    def _spawn(self, coro) -> None:
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError:
            # No running loop (sync caller): console channel only
            coro.close()
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _persist(self, record: AuditRecord) -> None:
        try:
            await AuditEvent.create(
                timestamp=record.timestamp,
                level=record.level,
                category=record.category,
                message=record.message,
                user_id=record.user_id,
                ip=record.ip,
                user_agent=(record.user_agent or "")[:512] or None,
                request_id=record.request_id,
                metadata=json.loads(json.dumps(record.metadata, default=str)),
            )
        except Exception as e:
            logger.warning("[audit] persistent store unavailable, console only: %s", e)

    async def _send_alert(self, record: AuditRecord) -> None:
        payload = {
            "alertType": record.metadata.get("eventType", record.category),
            "message": record.message,
            "userId": record.user_id,
            "metadata": record.metadata,
            "timestamp": record.timestamp.isoformat() if record.timestamp else None,
            "service": settings.APP_NAME,
            "environment": settings.env,
        }
        try:
            async with httpx.AsyncClient(timeout=5.0, transport=self.transport) as client:
                resp = await client.post(self.webhook_url, json=json.loads(json.dumps(payload, default=str)))
                resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("[audit] failed to send alert webhook: %s", e)

    async def drain(self) -> None:
        """Wait for in-flight persistence and alert tasks."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def stats(self) -> Dict[str, Dict[str, int]]:
        out: Dict[str, Dict[str, int]] = {"category": {}, "level": {}}
        for (kind, name), count in self._counts.items():
            out[kind][name] = count
        return out

    def reset_stats(self) -> None:
        self._counts.clear()

    # ----- convenience emitters -----
    def security_event(
        self,
        event_type: str,
        user_id: Optional[Any] = None,
        details: Optional[Dict[str, Any]] = None,
        context: Optional[RequestContext] = None,
    ) -> AuditRecord:
        ctx = context or RequestContext()
        record = AuditRecord(
            level=level_for_event(event_type),
            category="security",
            message=f"Security event: {event_type}",
            user_id=str(user_id) if user_id else None,
            ip=ctx.ip,
            user_agent=ctx.user_agent,
            request_id=ctx.request_id,
            metadata={"eventType": event_type, **(details or {})},
        )
        return self.emit(record, alert=event_type in CRITICAL_EVENTS)

    def user_action(
        self,
        action: str,
        user_id: Optional[Any] = None,
        details: Optional[Dict[str, Any]] = None,
        context: Optional[RequestContext] = None,
    ) -> AuditRecord:
        return self._action("user", action, user_id, details, context)

    def admin_action(
        self,
        action: str,
        user_id: Optional[Any] = None,
        details: Optional[Dict[str, Any]] = None,
        context: Optional[RequestContext] = None,
    ) -> AuditRecord:
        return self._action("admin", action, user_id, details, context)

    def _action(self, category, action, user_id, details, context) -> AuditRecord:
        ctx = context or RequestContext()
        record = AuditRecord(
            level="info",
            category=category,
            message=f"{category.capitalize()} action: {action}",
            user_id=str(user_id) if user_id else None,
            ip=ctx.ip,
            user_agent=ctx.user_agent,
            request_id=ctx.request_id,
            metadata={"action": action, **(details or {})},
        )
        return self.emit(record)

    def auth_rejection(
        self,
        reason: str,
        context: Optional[RequestContext] = None,
        user_id: Optional[Any] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditRecord:
        """Auth gate / role guard rejection: always warn level, category auth."""
        ctx = context or RequestContext()
        record = AuditRecord(
            level="warn",
            category="auth",
            message=f"Authentication rejected: {reason}",
            user_id=str(user_id) if user_id else None,
            ip=ctx.ip,
            user_agent=ctx.user_agent,
            request_id=ctx.request_id,
            metadata={"reason": reason, **(details or {})},
        )
        return self.emit(record)

    def error(
        self,
        message: str,
        context: Optional[RequestContext] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditRecord:
        ctx = context or RequestContext()
        record = AuditRecord(
            level="error",
            category="general",
            message=message,
            ip=ctx.ip,
            user_agent=ctx.user_agent,
            request_id=ctx.request_id,
            metadata=details or {},
        )
        return self.emit(record)


# Global sink instance
audit_sink = AuditSink()
