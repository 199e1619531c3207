"""
Services Module

Domain services shared by the routers:
- Credential store: users, password hashes, tokenVersion, lockout
- Booking engine: appointment slots, capacity and status transitions
- Audit sink: structured security and user-action events
"""

from .audit import AuditSink, RequestContext, audit_sink
from .booking import BookingEngine, BookingError, BookingResult, booking_engine
from .credentials import CredentialStore, LockoutState, credential_store

__all__ = [
    # Audit
    "AuditSink",
    "RequestContext",
    "audit_sink",
    # Booking
    "BookingEngine",
    "BookingError",
    "BookingResult",
    "booking_engine",
    # Credentials
    "CredentialStore",
    "LockoutState",
    "credential_store",
]
