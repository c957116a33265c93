# Overview: Service-layer operations for cash-drawer movements.

from __future__ import annotations

from ..extensions import db
from ..models import Movement
from ..models.shifts import MOVEMENT_TYPES
from ..time_utils import utcnow
from ..validation import ValidationError, optional_datetime, optional_int, require_choice, require_decimal, require_fields
from .realtime_service import emit_movement_create


def upsert_movement(data: dict) -> tuple[Movement, bool]:
    """
    Insert or update a movement by id, in the caller's transaction.

    Returns (movement, created). Only a new movement is broadcast.
    """
    if not isinstance(data, dict):
        raise ValidationError("movement must be an object")
    require_fields(data, "id", "type", "amount")
    kind = require_choice(data, "type", MOVEMENT_TYPES)
    amount = require_decimal(data, "amount", positive=True)

    movement = db.session.get(Movement, str(data["id"]))
    created = movement is None
    if created:
        movement = Movement(id=str(data["id"]), created_at=optional_datetime(data, "created_at") or utcnow())
        db.session.add(movement)

    movement.type = kind
    movement.amount = amount
    movement.description = data.get("description")
    movement.shift_id = str(data["shift_id"]) if data.get("shift_id") else None
    user_id = optional_int(data, "user_id")
    if user_id is not None:
        movement.user_id = user_id
    db.session.flush()

    if created:
        emit_movement_create(movement)
    return movement, created
