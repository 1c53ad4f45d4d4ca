# Overview: Activate/deactivate stock locations; locations are never deleted.

from __future__ import annotations

from ..errors import NotFound, ValidationError
from ..extensions import db
from ..models import StockLocation
from .activity_service import append_activity
from .concurrency import atomic, lock_for_update


def get_location(location_id: int) -> StockLocation:
    location = db.session.get(StockLocation, location_id)
    if location is None:
        raise NotFound(f"Location {location_id} not found")
    return location


def set_location_active(location_id: int, is_active: bool, actor_id: int | None = None) -> StockLocation:
    """
    Flip is_active on a location.

    Inventory records and history stay in place. An inactive location
    keeps its stock but is refused as the target of new transfers, audits,
    purchase orders and checkouts.
    """
    if not isinstance(is_active, bool):
        raise ValidationError("is_active must be a boolean")

    def _op() -> StockLocation:
        location = lock_for_update(db.session.query(StockLocation).filter_by(id=location_id)).first()
        if location is None:
            raise NotFound(f"Location {location_id} not found")
        if location.is_active == is_active:
            return location

        location.is_active = is_active
        db.session.flush()
        append_activity(
            entity_type="location",
            entity_id=location.id,
            action="location.activated" if is_active else "location.deactivated",
            actor_id=actor_id,
            location_id=location.id,
            details={"code": location.code},
        )
        return location

    return atomic(_op)
