# Overview: Append-only audit trail for domain events.

from __future__ import annotations

from typing import Optional

from ..models import AuditEvent
from .concurrency import UnitOfWork
"""
Audit Invariants (authoritative)

- Append-only: no updates or deletes of existing events.
- No domain/business logic in the audit log itself.
- Events are written inside the same Unit of Work as the change they record.
"""


def append_audit_event(
    uow: UnitOfWork,
    *,
    event_type: str,
    entity_type: str,
    entity_id: int,
    actor: str | None = None,
    note: Optional[str] = None,
    payload: Optional[dict] = None,
) -> AuditEvent:
    ev = AuditEvent(
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        actor=actor,
        note=note,
        payload=payload,
    )
    uow.add(ev)
    uow.flush()  # ensures ev.id is assigned without committing
    return ev


def list_audit_events(entity_type: str, entity_id: int) -> list[AuditEvent]:
    return (
        AuditEvent.query.filter_by(entity_type=entity_type, entity_id=entity_id)
        .order_by(AuditEvent.id.asc())
        .all()
    )
