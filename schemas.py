from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from uuid import UUID
from typing import Any, Optional, List, Dict, Literal


# ---------------------------------------------------------------------------
# Public (invite token) flow
# ---------------------------------------------------------------------------

class StartAttemptRequest(BaseModel):
    token: str = Field(min_length=1)


class StartAttemptResponse(BaseModel):
    attempt_id: UUID
    quiz_version: str
    track: str


class AnswerItem(BaseModel):
    question_id: UUID
    option_id: UUID


class RecordAnswersRequest(BaseModel):
    token: str = Field(min_length=1)
    attempt_id: UUID
    answers: List[AnswerItem] = Field(min_length=1)

    def answer_map(self) -> Dict[str, str]:
        """Later items for the same question win, matching stored merge semantics."""
        return {str(a.question_id): str(a.option_id) for a in self.answers}


class RecordAnswersResponse(BaseModel):
    saved: bool = True
    answered_count: int


class CustomerBrief(BaseModel):
    id: UUID
    name: Optional[str] = None
    nickname: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class CoachBrief(BaseModel):
    id: UUID
    username: str
    display_name: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class QuizOptionView(BaseModel):
    id: UUID
    order_no: int
    text: str

    model_config = ConfigDict(from_attributes=True)


class QuizQuestionView(BaseModel):
    id: UUID
    order_no: int
    stem: str
    options: List[QuizOptionView]

    model_config = ConfigDict(from_attributes=True)


class QuizResponse(BaseModel):
    quiz_version: str
    track: str
    title: Optional[str] = None
    questions: List[QuizQuestionView]


class InviteView(BaseModel):
    id: UUID
    status: str
    quiz_version: str
    track: str
    expires_at: Optional[datetime] = None
    customer: CustomerBrief
    coach: CoachBrief


class AttemptResultResponse(BaseModel):
    attempt_id: UUID
    submitted_at: datetime
    tags: List[str]
    stage: Optional[str] = None
    result: Optional[Dict[str, Any]] = None


# ---------------------------------------------------------------------------
# Coach
# ---------------------------------------------------------------------------

class InviteCreateRequest(BaseModel):
    customer_id: UUID
    quiz_version: str = Field(min_length=1)
    track: str = Field(min_length=1)
    expires_at: Optional[datetime] = None


class InviteResponse(BaseModel):
    id: UUID
    status: str
    customer_id: UUID
    coach_id: UUID
    quiz_version: str
    track: str
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class InviteCreatedResponse(InviteResponse):
    # Only ever returned here; the server keeps the hash.
    token: str
    url: str


class InviteListResponse(BaseModel):
    invites: List[InviteResponse]
    total: int
    page: int
    limit: int


class StageResponse(BaseModel):
    stage: Literal["pre", "mid", "post"]


class StageUpdateRequest(BaseModel):
    """Either an explicit ``stage`` (any direction) or ``action='advance'``."""
    stage: Optional[Literal["pre", "mid", "post"]] = None
    action: Optional[Literal["advance"]] = None


class CoachTagRequest(BaseModel):
    tag_key: str = Field(min_length=1)


class CoachTagResponse(BaseModel):
    id: UUID
    tag_key: str
    customer_id: UUID
    coach_id: UUID
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class RealtimePanel(BaseModel):
    stage: str
    sop_id: Optional[str] = None
    sop_name: Optional[str] = None
    state_summary: Optional[str] = None
    core_goal: Optional[str] = None
    strategy_list: List[str] = []
    forbidden_list: List[str] = []
    is_default: bool = False


class CustomerPanelResponse(BaseModel):
    customer_id: UUID
    stage: Literal["pre", "mid", "post"]
    latest_attempt_id: Optional[UUID] = None
    system_tags: List[str]
    coach_tags: List[str]
    tags: List[str]
    realtime_panel: RealtimePanel
