"""Activity trail for billing actions.

Callers pass an explicit :class:`ActorContext` rather than reading request
globals. Entries go to an :class:`AuditSink`; the default sink writes them to
the ``audit`` structlog logger.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

import structlog

from app.backend.src.models import User
from app.backend.src.models.user import STAFF_ROLES


@dataclass(frozen=True, slots=True)
class ActorContext:
    """Who is acting and from where."""

    user_id: int | None
    role: str | None = None
    ip_address: str | None = None

    @property
    def is_staff(self) -> bool:
        return (self.role or "").lower() in STAFF_ROLES

    @classmethod
    def for_user(cls, user: User, ip_address: str | None = None) -> "ActorContext":
        return cls(user_id=user.id, role=user.role, ip_address=ip_address)

    @classmethod
    def system(cls) -> "ActorContext":
        return cls(user_id=None, role="admin")


@dataclass(frozen=True, slots=True)
class ActivityEntry:
    actor_id: int | None
    action: str
    description: str
    subject_type: str | None
    subject_id: int | None
    metadata: dict[str, Any] = field(default_factory=dict)
    ip_address: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class AuditSink(Protocol):
    """Append-only destination for activity entries."""

    def record(self, entry: ActivityEntry) -> None:
        """Persist or forward ``entry``."""


class LoggingAuditSink:
    """Emit each entry as a structured ``activity_logged`` event."""

    def __init__(self, logger: Any | None = None) -> None:
        self._logger = logger or structlog.get_logger("audit")

    def record(self, entry: ActivityEntry) -> None:
        self._logger.info(
            "activity_logged",
            actor_id=entry.actor_id,
            action=entry.action,
            description=entry.description,
            subject_type=entry.subject_type,
            subject_id=entry.subject_id,
            metadata=entry.metadata,
            ip=entry.ip_address,
            timestamp=entry.timestamp.isoformat(),
        )


_sink: AuditSink = LoggingAuditSink()


def get_audit_sink() -> AuditSink:
    return _sink


def set_audit_sink(sink: AuditSink) -> AuditSink:
    """Install ``sink`` and return the previous one."""

    global _sink
    previous, _sink = _sink, sink
    return previous


def record_activity(
    context: ActorContext,
    action: str,
    description: str,
    subject: object | None = None,
    metadata: dict[str, Any] | None = None,
) -> ActivityEntry:
    """Build an entry for ``subject`` and hand it to the active sink."""

    entry = ActivityEntry(
        actor_id=context.user_id,
        action=action,
        description=description,
        subject_type=type(subject).__name__ if subject is not None else None,
        subject_id=getattr(subject, "id", None),
        metadata=dict(metadata or {}),
        ip_address=context.ip_address,
    )
    get_audit_sink().record(entry)
    return entry


__all__ = [
    "ActivityEntry",
    "ActorContext",
    "AuditSink",
    "LoggingAuditSink",
    "get_audit_sink",
    "record_activity",
    "set_audit_sink",
]
