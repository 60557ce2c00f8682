"""
Public Attempt API Router

Customer-facing endpoints authenticated only by the invite token:
- resolve an invite link
- fetch the quiz the invite answers
- start / resume the attempt
- save answers
- read the submitted result
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from core.database import get_db
from core.exceptions import NotFoundError
from schemas import (
    AttemptResultResponse,
    CoachBrief,
    CustomerBrief,
    InviteView,
    QuizQuestionView,
    QuizResponse,
    RecordAnswersRequest,
    RecordAnswersResponse,
    StartAttemptRequest,
    StartAttemptResponse,
)
from services.attempt_lifecycle import (
    get_attempt_result,
    get_quiz_for_token,
    record_answers,
    start_attempt,
)
from services.invite_gate import VIEWABLE_STATUSES, effective_status, resolve_invite
from services.tag_aggregator import parse_tag_list

router = APIRouter(prefix="/v1", tags=["Attempt"])


@router.get("/public/invite/resolve", response_model=InviteView)
def resolve_invite_endpoint(
    token: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
):
    """Invite details for the landing page. Terminal invites are still viewable."""
    invite = resolve_invite(db, token, VIEWABLE_STATUSES, include_relations=True)
    return InviteView(
        id=invite.id,
        status=effective_status(invite),
        quiz_version=invite.quiz_version,
        track=invite.track,
        expires_at=invite.expires_at,
        customer=CustomerBrief.model_validate(invite.customer),
        coach=CoachBrief.model_validate(invite.coach),
    )


@router.get("/quiz", response_model=QuizResponse)
def quiz_endpoint(
    token: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
):
    """Active questions and options, in display order, for an answerable invite."""
    quiz, questions = get_quiz_for_token(db, token)
    return QuizResponse(
        quiz_version=quiz.quiz_version,
        track=quiz.track,
        title=quiz.title,
        questions=[QuizQuestionView.model_validate(q) for q in questions],
    )


@router.post("/attempt/start", response_model=StartAttemptResponse)
def start_attempt_endpoint(
    request: StartAttemptRequest,
    db: Session = Depends(get_db),
):
    """Start or resume. Safe to retry: repeated calls return the same attempt."""
    attempt = start_attempt(db, request.token)
    return StartAttemptResponse(
        attempt_id=attempt.id,
        quiz_version=attempt.quiz_version,
        track=attempt.track,
    )


@router.post("/attempt/answer", response_model=RecordAnswersResponse)
def record_answers_endpoint(
    request: RecordAnswersRequest,
    db: Session = Depends(get_db),
):
    answered_count = record_answers(db, request.token, request.attempt_id, request.answer_map())
    return RecordAnswersResponse(saved=True, answered_count=answered_count)


@router.get("/public/attempt/result", response_model=AttemptResultResponse)
def attempt_result_endpoint(
    token: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
):
    invite, attempt = get_attempt_result(db, token)
    if attempt is None:
        raise NotFoundError("Submitted attempt for invite", str(invite.id))
    return AttemptResultResponse(
        attempt_id=attempt.id,
        submitted_at=attempt.submitted_at,
        tags=parse_tag_list(attempt.tags),
        stage=attempt.stage,
        result=attempt.result_summary,
    )
