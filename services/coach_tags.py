"""Coach-applied customer tags (always 'coach:*')."""

from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from core.exceptions import NotFoundError
from models import CoachTag, Customer
from services.audit_logger import log_audit
from services.tag_aggregator import validate_coach_tag


def add_coach_tag(db: Session, *, customer: Customer, coach_id: UUID, tag_key: str) -> CoachTag:
    """Idempotent: re-adding an existing tag returns the existing row."""
    tag_key = validate_coach_tag(tag_key)
    existing = (
        db.query(CoachTag)
        .filter(
            CoachTag.customer_id == customer.id,
            CoachTag.coach_id == coach_id,
            CoachTag.tag_key == tag_key,
        )
        .first()
    )
    if existing is not None:
        return existing

    tag = CoachTag(customer_id=customer.id, coach_id=coach_id, tag_key=tag_key)
    db.add(tag)
    db.flush()
    log_audit(
        "coach.create_tag",
        "coach_tag",
        tag.id,
        actor_id=coach_id,
        metadata={"customer_id": str(customer.id), "tag_key": tag_key},
    )
    return tag


def remove_coach_tag(db: Session, *, customer: Customer, coach_id: UUID, tag_key: str) -> None:
    tag = (
        db.query(CoachTag)
        .filter(
            CoachTag.customer_id == customer.id,
            CoachTag.coach_id == coach_id,
            CoachTag.tag_key == tag_key,
        )
        .first()
    )
    if tag is None:
        raise NotFoundError("Coach tag", tag_key)
    db.delete(tag)
    db.flush()
    log_audit(
        "coach.delete_tag",
        "coach_tag",
        tag.id,
        actor_id=coach_id,
        metadata={"customer_id": str(customer.id), "tag_key": tag_key},
    )


def coach_tag_keys(db: Session, customer_id: UUID, coach_id: Optional[UUID] = None) -> List[str]:
    q = db.query(CoachTag.tag_key).filter(CoachTag.customer_id == customer_id)
    if coach_id is not None:
        q = q.filter(CoachTag.coach_id == coach_id)
    return [row[0] for row in q.order_by(CoachTag.created_at, CoachTag.tag_key)]
