"""
Coach stage tracker (pre -> mid -> post).

The stage lives in the customer's ``coach_metadata`` JSON object:

    {"coach_stage": "mid", "coach_stage_updated_at": "2026-10-19T08:00:00+00:00", ...}

Rules:
- advance saturates at 'post' and never regresses
- set writes any stage, including backward moves
- unrelated metadata keys round-trip unchanged
- writes go through the customer's version_id, so a concurrent writer gets
  StaleDataError instead of a silent lost update
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict

from sqlalchemy.orm import Session

from core.exceptions import ValidationError
from models import Customer
from services.audit_logger import log_audit

STAGE_KEY = "coach_stage"
STAGE_UPDATED_AT_KEY = "coach_stage_updated_at"
NOTE_TEXT_KEY = "note_text"


class CoachStage(str, Enum):
    PRE = "pre"
    MID = "mid"
    POST = "post"


_NEXT_STAGE = {
    CoachStage.PRE: CoachStage.MID,
    CoachStage.MID: CoachStage.POST,
    CoachStage.POST: CoachStage.POST,
}


def parse_stage(value: Any) -> CoachStage:
    try:
        return CoachStage(value)
    except ValueError:
        raise ValidationError(f"Unknown coach stage: {value!r}", field="stage")


def advance_stage(current: CoachStage | str) -> CoachStage:
    return _NEXT_STAGE[parse_stage(current)]


def parse_coach_metadata(raw: Any) -> Dict[str, Any]:
    """
    Normalize a stored metadata blob to a dict.

    Older rows carried plain-text notes in this field; anything that is not a
    JSON object is kept under ``note_text`` rather than dropped.
    """
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return dict(raw)
    if isinstance(raw, str):
        try:
            parsed = json.loads(raw)
        except ValueError:
            return {NOTE_TEXT_KEY: raw}
        if isinstance(parsed, dict):
            return parsed
        return {NOTE_TEXT_KEY: raw}
    return {}


def current_stage(customer: Customer) -> CoachStage:
    meta = parse_coach_metadata(customer.coach_metadata)
    try:
        return CoachStage(meta.get(STAGE_KEY))
    except ValueError:
        return CoachStage.PRE


def set_stage(db: Session, customer: Customer, stage: CoachStage | str, *, actor_id=None, mode: str = "set") -> CoachStage:
    """Overwrite the customer's stage; other metadata keys are preserved."""
    stage = parse_stage(stage)
    meta = parse_coach_metadata(customer.coach_metadata)
    meta[STAGE_KEY] = stage.value
    meta[STAGE_UPDATED_AT_KEY] = datetime.now(timezone.utc).isoformat()
    customer.coach_metadata = meta
    db.flush()

    log_audit(
        "coach.set_stage",
        "customer",
        customer.id,
        actor_id=actor_id,
        metadata={"stage": stage.value, "mode": mode},
    )
    return stage


def advance_customer_stage(db: Session, customer: Customer, *, actor_id=None) -> CoachStage:
    return set_stage(db, customer, advance_stage(current_stage(customer)), actor_id=actor_id, mode="advance")
