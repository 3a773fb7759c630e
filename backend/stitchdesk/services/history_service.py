# Overview: Append-only garment history; records service and stage changes for audit.

from __future__ import annotations

from typing import Any, Optional

from ..extensions import db
from ..models import GarmentHistory
"""
Garment History Invariants

- Append-only: no updates or deletes of existing events.
- No business rules here; callers decide what is worth recording.
- Events are written inside the same transaction as the change they record.
"""


CHANGE_SERVICE_ADDED = "service_added"
CHANGE_SERVICE_REMOVED = "service_removed"
CHANGE_SERVICE_RESTORED = "service_restored"
CHANGE_SERVICE_UPDATED = "service_updated"
CHANGE_SERVICE_COMPLETED = "service_completed"
CHANGE_SERVICE_REOPENED = "service_reopened"
CHANGE_FIELD_UPDATE = "field_update"
CHANGE_SPECIAL_ACTION = "special_action"


def record_garment_event(
    *,
    garment_id: int,
    change_type: str,
    field_name: str,
    old_value: Any = None,
    new_value: Any = None,
    related_service_id: int | None = None,
    notes: Optional[str] = None,
) -> GarmentHistory:
    """Append one history event; flushes so the id is available, never commits."""
    ev = GarmentHistory(
        garment_id=garment_id,
        change_type=change_type,
        field_name=field_name,
        old_value=old_value,
        new_value=new_value,
        related_service_id=related_service_id,
        notes=notes,
    )
    db.session.add(ev)
    db.session.flush()
    return ev


def service_snapshot(service, status: str | None = None) -> dict:
    """The service fields worth keeping in a history row."""
    snap = {
        "name": service.name,
        "quantity": str(service.quantity) if service.quantity is not None else None,
        "unit_price_cents": service.unit_price_cents,
        "line_total_cents": service.line_total_cents,
    }
    if status:
        snap["status"] = status
    return snap


def get_garment_history(garment_id: int) -> list[GarmentHistory]:
    """Newest first."""
    return (
        db.session.query(GarmentHistory)
        .filter_by(garment_id=garment_id)
        .order_by(GarmentHistory.changed_at.desc(), GarmentHistory.id.desc())
        .all()
    )
