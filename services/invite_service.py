"""
Invite issuing service.

Coaches issue invites for their customers; the raw token leaves the server
exactly once (in the create response) and only its hash is stored.

- One active invite per (customer, track): issuing a new one expires the old.
- Expiry is a status, never a row deletion.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from core.config import settings
from core.exceptions import ConflictError, ValidationError
from core.security import generate_invite_token, hash_invite_token
from models import Customer, Invite
from services.audit_logger import log_audit
from services.invite_gate import TERMINAL_STATUSES


def invite_url(token: str) -> str:
    return f"{settings.INVITE_BASE_URL.rstrip('/')}/t/{token}"


def create_invite(
    db: Session,
    *,
    coach_id: UUID,
    customer: Customer,
    quiz_version: str,
    track: str,
    expires_at: Optional[datetime] = None,
) -> Tuple[Invite, str]:
    """
    Issue a new invite and return it with its raw token.

    Any still-active invite for the same customer and track is expired first.
    """
    quiz_version = (quiz_version or "").strip()
    track = (track or "").strip()
    if not quiz_version or not track:
        raise ValidationError("quiz_version and track are required")
    if expires_at is not None and expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)

    previous = (
        db.query(Invite)
        .filter(
            Invite.customer_id == customer.id,
            Invite.track == track,
            Invite.status == "active",
        )
        .all()
    )
    for old in previous:
        old.status = "expired"
        log_audit(
            "coach.expire_invite",
            "invite",
            old.id,
            actor_id=coach_id,
            metadata={"reason": "auto_expired_by_new_invite", "track": track},
        )

    token = generate_invite_token()
    inv = Invite(
        token_hash=hash_invite_token(token),
        coach_id=coach_id,
        customer_id=customer.id,
        quiz_version=quiz_version,
        track=track,
        status="active",
        expires_at=expires_at,
    )
    db.add(inv)
    db.flush()  # ensures inv.id
    log_audit(
        "coach.create_invite",
        "invite",
        inv.id,
        actor_id=coach_id,
        metadata={"customer_id": str(customer.id), "quiz_version": quiz_version, "track": track},
    )
    return inv, token


def expire_invite(db: Session, *, invite: Invite, actor_id: Optional[UUID]) -> Invite:
    if invite.status in TERMINAL_STATUSES:
        raise ConflictError("Invite is already expired or completed", error_code="INVITE_ALREADY_EXPIRED")
    previous_status = invite.status
    invite.status = "expired"
    db.flush()
    log_audit(
        "coach.expire_invite",
        "invite",
        invite.id,
        actor_id=actor_id,
        metadata={"previous_status": previous_status},
    )
    return invite


def list_invites(
    db: Session,
    *,
    coach_id: Optional[UUID] = None,
    status: Optional[str] = None,
    customer_id: Optional[UUID] = None,
    page: int = 1,
    limit: int = 20,
) -> Tuple[List[Invite], int]:
    """Newest first. ``coach_id=None`` lists across coaches (admin view)."""
    q = db.query(Invite)
    if coach_id is not None:
        q = q.filter(Invite.coach_id == coach_id)
    if status:
        q = q.filter(Invite.status == status)
    if customer_id is not None:
        q = q.filter(Invite.customer_id == customer_id)
    total = q.count()
    rows = (
        q.order_by(Invite.created_at.desc())
        .offset((max(page, 1) - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total
