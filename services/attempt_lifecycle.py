"""
Attempt lifecycle (per invite): NoAttempt -> InProgress -> Submitted.

- start_attempt: the only creation path; idempotent under retries and
  concurrent starts (partial unique index on open attempts + re-read).
- record_answers: merge-only writes, last write wins per question,
  all-or-nothing validation.
- record_submission / submit_attempt: one-way freeze performed on behalf of
  the scoring step, which is an external collaborator supplied as a callable.

All failures are typed APIExceptions (see core.exceptions) and represent
business state; none of them is worth retrying.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from core.exceptions import (
    AttemptAlreadySubmittedError,
    AttemptNotFoundError,
    NotFoundError,
    ValidationError,
)
from models import Attempt, Invite, Option, Question, Quiz
from services.audit_logger import log_audit
from services.invite_gate import (
    ANSWERABLE_STATUSES,
    VIEWABLE_STATUSES,
    ensure_status_allowed,
    resolve_invite,
)

logger = logging.getLogger(__name__)


@dataclass
class ScoringOutput:
    """What the external scoring step hands back for a finished attempt."""
    tags: List[str] = field(default_factory=list)
    stage: Optional[str] = None
    result_summary: Dict[str, Any] = field(default_factory=dict)


Scorer = Callable[[Attempt], ScoringOutput]


def _coerce_uuid(value: Any) -> Optional[UUID]:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


def find_open_attempt(db: Session, invite_id: UUID) -> Optional[Attempt]:
    return (
        db.query(Attempt)
        .filter(Attempt.invite_id == invite_id, Attempt.submitted_at.is_(None))
        .order_by(Attempt.started_at.desc())
        .first()
    )


def _get_owned_attempt(db: Session, invite: Invite, attempt_id: Any, *, lock: bool = False) -> Attempt:
    """
    Load an attempt only through its invite. A valid attempt id belonging to a
    different invite is indistinguishable from a missing one.
    """
    attempt_uuid = _coerce_uuid(attempt_id)
    if attempt_uuid is None:
        raise AttemptNotFoundError(attempt_id)

    q = db.query(Attempt).filter(Attempt.id == attempt_uuid, Attempt.invite_id == invite.id)
    if lock:
        q = q.with_for_update()
    attempt = q.first()
    if attempt is None:
        raise AttemptNotFoundError(attempt_id)
    return attempt


# ---------------------------------------------------------------------------
# Start
# ---------------------------------------------------------------------------

def start_attempt(db: Session, token: str) -> Attempt:
    """
    Start (or resume) the attempt for an invite token.

    Returns the existing open attempt unchanged when there is one. Otherwise
    moves an ``active`` invite to ``entered`` and creates the attempt.
    """
    invite = resolve_invite(db, token, ANSWERABLE_STATUSES)

    existing = find_open_attempt(db, invite.id)
    if existing is not None:
        return existing

    try:
        with db.begin_nested():
            if invite.status == "active":
                invite.status = "entered"
            attempt = Attempt(
                invite_id=invite.id,
                customer_id=invite.customer_id,
                coach_id=invite.coach_id,
                quiz_version=invite.quiz_version,
                track=invite.track,
                started_at=datetime.now(timezone.utc),
                answers={},
            )
            db.add(attempt)
            db.flush()
    except IntegrityError:
        # A concurrent start won the insert; its attempt is the one to resume.
        existing = find_open_attempt(db, invite.id)
        if existing is None:
            raise
        logger.info(
            "Concurrent attempt start resolved to existing attempt",
            extra={"extra_fields": {"invite_id": str(invite.id), "attempt_id": str(existing.id)}},
        )
        return existing

    log_audit(
        "attempt.start",
        "attempt",
        attempt.id,
        metadata={"invite_id": str(invite.id), "customer_id": str(invite.customer_id)},
    )
    return attempt


# ---------------------------------------------------------------------------
# Answers
# ---------------------------------------------------------------------------

def normalize_answers(answers: Mapping[Any, Any]) -> Dict[str, str]:
    """Canonicalize ids to UUID strings. Malformed ids fail the whole payload."""
    normalized: Dict[str, str] = {}
    for question_id, option_id in answers.items():
        q_uuid = _coerce_uuid(question_id)
        o_uuid = _coerce_uuid(option_id)
        if q_uuid is None or o_uuid is None:
            raise ValidationError(
                f"Malformed answer: {question_id!r} -> {option_id!r}", field="answers"
            )
        normalized[str(q_uuid)] = str(o_uuid)
    return normalized


def get_quiz_for_token(db: Session, token: str) -> Tuple[Quiz, List[Question]]:
    """
    Quiz content an answerable invite may answer: the active questions of its
    quiz with their options, both by ``order_no``.

    Raises NotFoundError when the quiz is missing or not active.
    """
    invite = resolve_invite(db, token, ANSWERABLE_STATUSES)
    quiz = (
        db.query(Quiz)
        .filter(Quiz.quiz_version == invite.quiz_version, Quiz.track == invite.track)
        .first()
    )
    if quiz is None or quiz.status != "active":
        raise NotFoundError("Quiz", f"{invite.quiz_version}/{invite.track}")

    questions = (
        db.query(Question)
        .options(selectinload(Question.options))
        .filter(Question.quiz_id == quiz.id, Question.status == "active")
        .order_by(Question.order_no, Question.id)
        .all()
    )
    return quiz, questions


def validate_answers(db: Session, invite: Invite, answers: Dict[str, str]) -> None:
    """
    Every question must be an active question of the invite's quiz, and every
    option must belong to its question. Raises on the first violation.
    """
    quiz = (
        db.query(Quiz)
        .filter(Quiz.quiz_version == invite.quiz_version, Quiz.track == invite.track)
        .first()
    )
    if quiz is None:
        raise ValidationError(
            f"No quiz configured for {invite.quiz_version}/{invite.track}", field="answers"
        )

    question_ids = [UUID(q) for q in answers]
    option_ids = [UUID(o) for o in answers.values()]

    questions = {
        str(q.id): q
        for q in db.query(Question).filter(
            Question.id.in_(question_ids),
            Question.quiz_id == quiz.id,
            Question.status == "active",
        )
    }
    options = {str(o.id): o for o in db.query(Option).filter(Option.id.in_(option_ids))}

    for question_id, option_id in answers.items():
        if question_id not in questions:
            raise ValidationError(
                f"Question {question_id} does not exist or is inactive", field="answers"
            )
        option = options.get(option_id)
        if option is None:
            raise ValidationError(f"Option {option_id} does not exist", field="answers")
        if str(option.question_id) != question_id:
            raise ValidationError(
                f"Option {option_id} does not belong to question {question_id}", field="answers"
            )


def record_answers(db: Session, token: str, attempt_id: Any, answers: Mapping[Any, Any]) -> int:
    """
    Merge answers into an open attempt.

    Returns the number of distinct answered questions after the merge.
    A submitted attempt always fails with AttemptAlreadySubmittedError, even
    though submission has since completed its invite.
    """
    invite = resolve_invite(db, token, VIEWABLE_STATUSES)
    attempt = _get_owned_attempt(db, invite, attempt_id, lock=True)

    if attempt.submitted_at is not None:
        raise AttemptAlreadySubmittedError()

    ensure_status_allowed(invite, ANSWERABLE_STATUSES)

    normalized = normalize_answers(answers)
    if not normalized:
        raise ValidationError("answers must not be empty", field="answers")

    validate_answers(db, invite, normalized)

    merged = dict(attempt.answers or {})
    merged.update(normalized)
    # Reassign (not mutate) so the JSON column is flagged dirty.
    attempt.answers = merged
    db.flush()

    log_audit(
        "attempt.answer",
        "attempt",
        attempt.id,
        metadata={"invite_id": str(invite.id), "answered_count": len(merged)},
    )
    return len(merged)


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------

def record_submission(
    db: Session,
    attempt: Attempt,
    *,
    tags: List[str],
    stage: Optional[str],
    result_summary: Dict[str, Any],
) -> Attempt:
    """
    Freeze an attempt with the scoring output and complete its invite.

    One-way: a second call raises AttemptAlreadySubmittedError.
    """
    if attempt.submitted_at is not None:
        raise AttemptAlreadySubmittedError()

    attempt.submitted_at = datetime.now(timezone.utc)
    attempt.tags = list(tags)
    attempt.stage = stage
    attempt.result_summary = result_summary

    invite = attempt.invite
    if invite.status in ANSWERABLE_STATUSES:
        invite.status = "completed"
    db.flush()

    log_audit(
        "attempt.submit",
        "attempt",
        attempt.id,
        metadata={"invite_id": str(invite.id), "customer_id": str(attempt.customer_id)},
    )
    return attempt


def submit_attempt(db: Session, token: str, attempt_id: Any, scorer: Scorer) -> Attempt:
    """
    Submit an attempt through its invite token.

    Already-submitted attempts are returned as-is so the customer can safely
    retry. Otherwise the invite must still be answerable, the attempt must
    have at least one answer, and ``scorer`` produces the derived fields.
    """
    invite = resolve_invite(db, token, VIEWABLE_STATUSES)
    attempt = _get_owned_attempt(db, invite, attempt_id, lock=True)

    if attempt.submitted_at is not None:
        return attempt

    # Stricter allow-list now that idempotent replays are out of the way.
    ensure_status_allowed(invite, ANSWERABLE_STATUSES)

    if not attempt.answers:
        raise ValidationError("Attempt has no answers to submit", field="answers")

    output = scorer(attempt)
    return record_submission(
        db,
        attempt,
        tags=output.tags,
        stage=output.stage,
        result_summary=output.result_summary,
    )


def get_attempt_result(db: Session, token: str) -> Tuple[Invite, Optional[Attempt]]:
    """Invite plus its latest submitted attempt (None while still in progress)."""
    invite = resolve_invite(db, token, VIEWABLE_STATUSES, include_relations=True)
    attempt = (
        db.query(Attempt)
        .filter(Attempt.invite_id == invite.id, Attempt.submitted_at.isnot(None))
        .order_by(Attempt.submitted_at.desc())
        .first()
    )
    return invite, attempt
