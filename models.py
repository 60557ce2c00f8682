from sqlalchemy import Column, Integer, Boolean, CheckConstraint, DateTime, ForeignKey, JSON, Text, String, Index, UniqueConstraint, Uuid, text
from sqlalchemy.orm import relationship
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from core.database import Base
import uuid

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")

INVITE_STATUSES = ("active", "entered", "completed", "expired")
CONTENT_STATUSES = ("active", "inactive")


class Coach(Base):
    __tablename__ = "coach"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    username = Column(Text, unique=True, nullable=False)
    display_name = Column(Text, nullable=True)
    role = Column(Text, default="coach", nullable=False)  # 'coach' | 'admin'
    is_active = Column(Boolean, default=True, nullable=False)

    customers = relationship("Customer", back_populates="coach", lazy="dynamic")


class Customer(Base):
    """
    A coached customer.

    ``coach_metadata`` is a free-form JSON object owned by coaching tools.
    The stage tracker reads/writes ``coach_stage`` and ``coach_stage_updated_at``
    in it; every other key must round-trip unchanged.
    """
    __tablename__ = "customer"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    coach_id = Column(Uuid, ForeignKey("coach.id"), nullable=False, index=True)
    name = Column(Text, nullable=True)
    nickname = Column(Text, nullable=True)
    coach_metadata = Column(JSONType, nullable=False, default=dict)
    # Optimistic concurrency token; a stale UPDATE raises StaleDataError.
    version_id = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    coach = relationship("Coach", back_populates="customers")
    coach_tags = relationship("CoachTag", back_populates="customer", lazy="selectin", order_by="CoachTag.created_at")

    __mapper_args__ = {"version_id_col": version_id}


class Invite(Base):
    """
    A token-addressable grant for one customer to take one quiz.

    Status machine: active -> entered -> completed, or any non-terminal
    status -> expired. Rows are never deleted.
    """
    __tablename__ = "invite"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    token_hash = Column(String(64), unique=True, nullable=False)  # sha256 hex, raw token never stored
    coach_id = Column(Uuid, ForeignKey("coach.id"), nullable=False, index=True)
    customer_id = Column(Uuid, ForeignKey("customer.id"), nullable=False, index=True)
    quiz_version = Column(Text, nullable=False)  # content version tag, e.g. "v1"
    track = Column(Text, nullable=False)  # quiz track, e.g. "fast" | "pro"
    status = Column(Text, default="active", nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    coach = relationship("Coach")
    customer = relationship("Customer")
    attempts = relationship("Attempt", back_populates="invite", lazy="dynamic")

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'entered', 'completed', 'expired')",
            name="ck_invite_status",
        ),
        Index("ix_invite_customer_track_status", "customer_id", "track", "status"),
    )


class Attempt(Base):
    """
    One quiz-taking session.

    ``answers`` maps question id -> option id (both as strings). Once
    ``submitted_at`` is set the attempt is frozen.
    """
    __tablename__ = "attempt"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    invite_id = Column(Uuid, ForeignKey("invite.id"), nullable=False, index=True)
    # Denormalized from the invite at creation
    customer_id = Column(Uuid, ForeignKey("customer.id"), nullable=False, index=True)
    coach_id = Column(Uuid, ForeignKey("coach.id"), nullable=False, index=True)
    quiz_version = Column(Text, nullable=False)
    track = Column(Text, nullable=False)

    started_at = Column(DateTime(timezone=True), nullable=False)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    answers = Column(JSONType, nullable=False, default=dict)

    # Written once by the scoring step
    tags = Column(JSONType, nullable=True)
    stage = Column(Text, nullable=True)
    result_summary = Column(JSONType, nullable=True)

    invite = relationship("Invite", back_populates="attempts")

    __table_args__ = (
        # At most one open attempt per invite. Concurrent starts collide here.
        Index(
            "uq_attempt_open_per_invite",
            "invite_id",
            unique=True,
            postgresql_where=text("submitted_at IS NULL"),
            sqlite_where=text("submitted_at IS NULL"),
        ),
    )


class Quiz(Base):
    __tablename__ = "quiz"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    quiz_version = Column(Text, nullable=False)
    track = Column(Text, nullable=False)
    title = Column(Text, nullable=True)
    status = Column(Text, default="active", nullable=False)

    questions = relationship("Question", back_populates="quiz", order_by="Question.order_no")

    __table_args__ = (
        UniqueConstraint("quiz_version", "track", name="uq_quiz_version_track"),
    )


class Question(Base):
    __tablename__ = "question"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    quiz_id = Column(Uuid, ForeignKey("quiz.id"), nullable=False, index=True)
    order_no = Column(Integer, nullable=False, default=0)
    stem = Column(Text, nullable=False)
    status = Column(Text, default="active", nullable=False)

    quiz = relationship("Quiz", back_populates="questions")
    options = relationship("Option", back_populates="question", order_by="Option.order_no")


class Option(Base):
    __tablename__ = "option"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    question_id = Column(Uuid, ForeignKey("question.id"), nullable=False, index=True)
    order_no = Column(Integer, nullable=False, default=0)
    text = Column(Text, nullable=False)

    question = relationship("Question", back_populates="options")


class CoachTag(Base):
    """Manual coach annotation on a customer. tag_key always starts with 'coach:'."""
    __tablename__ = "coach_tag"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    customer_id = Column(Uuid, ForeignKey("customer.id"), nullable=False, index=True)
    coach_id = Column(Uuid, ForeignKey("coach.id"), nullable=False)
    tag_key = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    customer = relationship("Customer", back_populates="coach_tags")

    __table_args__ = (
        UniqueConstraint("customer_id", "coach_id", "tag_key", name="uq_coach_tag_customer_coach_key"),
    )


# ---------------------------------------------------------------------------
# SOP content (curated by admins, read-only here)
# ---------------------------------------------------------------------------

class CoachingStage(Base):
    __tablename__ = "coaching_stage"

    stage_id = Column(Text, primary_key=True)  # 'pre' | 'mid' | 'post'
    stage_name = Column(Text, nullable=False)
    stage_desc = Column(Text, nullable=True)
    allow_actions = Column(JSONType, nullable=True)  # list[str]
    forbid_actions = Column(JSONType, nullable=True)  # list[str]


class SopDefinition(Base):
    __tablename__ = "sop_definition"

    sop_id = Column(Text, primary_key=True)
    sop_name = Column(Text, nullable=False)
    sop_stage = Column(Text, nullable=False)
    priority = Column(Integer, nullable=False, default=0)  # primary tie-break, higher wins
    state_summary = Column(Text, nullable=True)
    core_goal = Column(Text, nullable=True)
    strategy_list = Column(JSONType, nullable=True)  # ordered list[str]
    forbidden_list = Column(JSONType, nullable=True)  # list[str]
    status = Column(Text, default="active", nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    rules = relationship("SopRule", back_populates="sop")


class SopRule(Base):
    __tablename__ = "sop_rule"

    rule_id = Column(Text, primary_key=True)
    sop_id = Column(Text, ForeignKey("sop_definition.sop_id"), nullable=False, index=True)
    required_stage = Column(Text, nullable=True)  # NULL, "" or "*" matches every stage
    required_tags = Column(JSONType, nullable=True)  # all must be present
    excluded_tags = Column(JSONType, nullable=True)  # none may be present
    confidence = Column(Integer, nullable=False, default=0)  # secondary tie-break
    status = Column(Text, default="active", nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    sop = relationship("SopDefinition", back_populates="rules")


class SopStageMap(Base):
    """Rule-free stage -> SOP mapping; the ``is_default`` row is the stage fallback."""
    __tablename__ = "sop_stage_map"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    stage_id = Column(Text, ForeignKey("coaching_stage.stage_id"), nullable=False)
    sop_id = Column(Text, ForeignKey("sop_definition.sop_id"), nullable=False)
    is_default = Column(Boolean, default=False, nullable=False)

    sop = relationship("SopDefinition")

    __table_args__ = (
        UniqueConstraint("stage_id", "sop_id", name="uq_sop_stage_map_stage_sop"),
        Index(
            "uq_sop_stage_map_default_per_stage",
            "stage_id",
            unique=True,
            postgresql_where=text("is_default"),
            sqlite_where=text("is_default = 1"),
        ),
    )
