# fitcoach/models/__init__.py
"""
Database models module initialization.
Exports all Tortoise ORM models for convenient imports.

Models exported:
- User: Account, credentials and security counters
- Appointment: Trainer/client booking in an hourly slot
- AuditEvent: Persisted audit/security event
"""
from .user import User
from .appointment import Appointment
from .audit_event import AuditEvent
