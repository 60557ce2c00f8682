"""Invite issuing/expiry and coach tag management."""
from datetime import datetime, timedelta, timezone

import pytest

from core.exceptions import ConflictError, NotFoundError, ValidationError
from core.security import hash_invite_token
from models import CoachTag, Invite
from services.coach_tags import add_coach_tag, coach_tag_keys, remove_coach_tag
from services.invite_gate import ANSWERABLE_STATUSES, resolve_invite
from services.invite_service import create_invite, expire_invite, invite_url, list_invites


def test_create_invite_stores_only_the_hash(db_session, coach, customer):
    inv, token = create_invite(
        db_session, coach_id=coach.id, customer=customer, quiz_version="v1", track="fast"
    )
    db_session.commit()

    assert len(token) == 64
    assert inv.token_hash == hash_invite_token(token)
    assert inv.token_hash != token
    assert inv.status == "active"
    assert resolve_invite(db_session, token, ANSWERABLE_STATUSES).id == inv.id


def test_new_invite_expires_previous_active_invite_on_same_track(db_session, coach, customer):
    old, _ = create_invite(db_session, coach_id=coach.id, customer=customer, quiz_version="v1", track="fast")
    other_track, _ = create_invite(db_session, coach_id=coach.id, customer=customer, quiz_version="v1", track="pro")
    new, _ = create_invite(db_session, coach_id=coach.id, customer=customer, quiz_version="v2", track="fast")
    db_session.commit()

    assert old.status == "expired"
    assert other_track.status == "active"
    assert new.status == "active"
    assert db_session.query(Invite).count() == 3


def test_create_invite_requires_version_and_track(db_session, coach, customer):
    with pytest.raises(ValidationError):
        create_invite(db_session, coach_id=coach.id, customer=customer, quiz_version=" ", track="fast")


def test_naive_expiry_is_stored_as_utc(db_session, coach, customer):
    naive = datetime(2030, 1, 1, 12, 0)
    inv, _ = create_invite(
        db_session, coach_id=coach.id, customer=customer, quiz_version="v1", track="fast", expires_at=naive
    )
    assert inv.expires_at == naive.replace(tzinfo=timezone.utc)


def test_expire_invite(db_session, coach, customer):
    inv, _ = create_invite(db_session, coach_id=coach.id, customer=customer, quiz_version="v1", track="fast")
    expire_invite(db_session, invite=inv, actor_id=coach.id)
    assert inv.status == "expired"

    with pytest.raises(ConflictError) as exc:
        expire_invite(db_session, invite=inv, actor_id=coach.id)
    assert exc.value.error_code == "INVITE_ALREADY_EXPIRED"


def test_list_invites_filters_and_paginates(db_session, make_coach, make_customer):
    coach_a, coach_b = make_coach(), make_coach()
    cust_a, cust_b = make_customer(coach_a), make_customer(coach_b)
    for track in ("t1", "t2", "t3"):
        create_invite(db_session, coach_id=coach_a.id, customer=cust_a, quiz_version="v1", track=track)
    create_invite(db_session, coach_id=coach_b.id, customer=cust_b, quiz_version="v1", track="t1")
    db_session.commit()

    rows, total = list_invites(db_session, coach_id=coach_a.id, page=1, limit=2)
    assert total == 3
    assert len(rows) == 2
    assert all(r.coach_id == coach_a.id for r in rows)

    rows, total = list_invites(db_session, coach_id=coach_a.id, page=2, limit=2)
    assert len(rows) == 1

    _, total = list_invites(db_session)
    assert total == 4

    _, total = list_invites(db_session, status="expired")
    assert total == 0


def test_invite_url(monkeypatch):
    from core.config import settings

    monkeypatch.setattr(settings, "INVITE_BASE_URL", "https://assess.example.com/")
    assert invite_url("abc") == "https://assess.example.com/t/abc"


# ---------------------------------------------------------------------------
# Coach tags
# ---------------------------------------------------------------------------

def test_add_coach_tag_is_idempotent(db_session, coach, customer):
    first = add_coach_tag(db_session, customer=customer, coach_id=coach.id, tag_key="coach:vip")
    again = add_coach_tag(db_session, customer=customer, coach_id=coach.id, tag_key=" coach:vip ")
    db_session.commit()

    assert first.id == again.id
    assert db_session.query(CoachTag).count() == 1
    assert coach_tag_keys(db_session, customer.id) == ["coach:vip"]


def test_add_coach_tag_requires_prefix(db_session, coach, customer):
    with pytest.raises(ValidationError):
        add_coach_tag(db_session, customer=customer, coach_id=coach.id, tag_key="vip")


def test_remove_coach_tag(db_session, coach, customer):
    add_coach_tag(db_session, customer=customer, coach_id=coach.id, tag_key="coach:vip")
    add_coach_tag(db_session, customer=customer, coach_id=coach.id, tag_key="coach:slow-reply")
    remove_coach_tag(db_session, customer=customer, coach_id=coach.id, tag_key="coach:vip")
    db_session.commit()

    assert coach_tag_keys(db_session, customer.id) == ["coach:slow-reply"]

    with pytest.raises(NotFoundError):
        remove_coach_tag(db_session, customer=customer, coach_id=coach.id, tag_key="coach:vip")
