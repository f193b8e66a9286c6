"""Security module: audit trail of every system event."""

from src.security.audit import audit_on_event

__all__ = ["audit_on_event"]
