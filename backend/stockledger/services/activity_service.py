# Overview: Append-only activity trail for workflow transitions.

from __future__ import annotations

import json

from ..extensions import db
from ..models import ActivityEvent
from ..time_utils import utcnow

"""
Activity log invariants

- Append-only: no updates, no deletes.
- No domain logic here; callers decide what is worth recording.
- Events are written inside the same DB transaction as the change they
  record, so a rolled-back workflow leaves no event behind.
"""


def append_activity(
    *,
    entity_type: str,
    entity_id: int,
    action: str,
    actor_id: int | None = None,
    location_id: int | None = None,
    details: dict | None = None,
) -> ActivityEvent:
    """Record one workflow transition. Flushes, never commits."""
    ev = ActivityEvent(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_id=actor_id,
        location_id=location_id,
        details=json.dumps(details, sort_keys=True, default=str) if details else None,
        occurred_at=utcnow(),
    )
    db.session.add(ev)
    db.session.flush()
    return ev


def list_activity(entity_type: str, entity_id: int) -> list[ActivityEvent]:
    return (
        db.session.query(ActivityEvent)
        .filter_by(entity_type=entity_type, entity_id=entity_id)
        .order_by(ActivityEvent.occurred_at.asc(), ActivityEvent.id.asc())
        .all()
    )
