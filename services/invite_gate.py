"""
Invite gate: token -> invite resolution with status allow-lists.

Every public (customer-facing) operation enters through ``resolve_invite``.
The allow-list is chosen by the caller:

- ANSWERABLE_STATUSES for start/answer (completed or expired invites rejected)
- VIEWABLE_STATUSES for invite/result views (terminal invites still readable)

Resolution is read-only. Time-based expiry is reported, not written back.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy.orm import Session, joinedload

from core.exceptions import InviteExpiredOrCompletedError, InviteInvalidError, ValidationError
from core.security import hash_invite_token
from models import Invite

ANSWERABLE_STATUSES = frozenset({"active", "entered"})
VIEWABLE_STATUSES = frozenset({"active", "entered", "completed", "expired"})
TERMINAL_STATUSES = frozenset({"completed", "expired"})


def lookup_by_hash(db: Session, token_hash: str, *, include_relations: bool = False) -> Optional[Invite]:
    q = db.query(Invite)
    if include_relations:
        q = q.options(joinedload(Invite.customer), joinedload(Invite.coach))
    return q.filter(Invite.token_hash == token_hash).first()


def is_past_expiry(invite: Invite, now: Optional[datetime] = None) -> bool:
    if invite.expires_at is None:
        return False
    now = now or datetime.now(timezone.utc)
    expires_at = invite.expires_at
    # SQLite hands back naive datetimes; everything we store is UTC.
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at < now


def resolve_invite(
    db: Session,
    token: str,
    allowed_statuses: Iterable[str] = ANSWERABLE_STATUSES,
    include_relations: bool = False,
) -> Invite:
    """
    Resolve a raw invite token.

    Raises:
        ValidationError: token is empty
        InviteInvalidError: no invite has this token
        InviteExpiredOrCompletedError: invite is past expires_at, or its
            status is not in ``allowed_statuses``
    """
    if not token:
        raise ValidationError("token is required", field="token")

    invite = lookup_by_hash(db, hash_invite_token(token), include_relations=include_relations)
    if invite is None:
        raise InviteInvalidError()

    ensure_status_allowed(invite, allowed_statuses)
    return invite


def ensure_status_allowed(invite: Invite, allowed_statuses: Iterable[str]) -> None:
    """Raise InviteExpiredOrCompletedError unless the invite fits the allow-list."""
    allowed = frozenset(allowed_statuses)

    # A lapsed expiry only blocks contexts that exclude expired invites.
    if is_past_expiry(invite) and "expired" not in allowed:
        raise InviteExpiredOrCompletedError()

    if invite.status not in allowed:
        raise InviteExpiredOrCompletedError()


def effective_status(invite: Invite) -> str:
    """Status as a viewer should see it (lapsed expiry reads as 'expired')."""
    if invite.status not in TERMINAL_STATUSES and is_past_expiry(invite):
        return "expired"
    return invite.status
