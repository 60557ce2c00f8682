"""
Pytest configuration and fixtures

Tests run against an in-memory SQLite database. The schema is created fresh
for every test and dropped afterwards, so nothing leaks between tests.
API tests share the test session with the app through a get_db override.
"""
import pytest
import sys
import os
from datetime import datetime, timezone
from uuid import uuid4

# Settings are read at import time; configure before anything imports core.
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-coach-assess-0123456789")
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ.setdefault("LOG_FORMAT", "text")

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fastapi.testclient import TestClient

from core.database import Base, SessionLocal, engine, get_db
from core.security import create_access_token, generate_invite_token, hash_invite_token
from main import app
from models import (
    Coach,
    CoachingStage,
    Customer,
    Invite,
    Option,
    Question,
    Quiz,
    SopDefinition,
    SopRule,
    SopStageMap,
)


@pytest.fixture(scope="function")
def db_session():
    """
    Fresh schema per test.

    The engine uses a single shared connection (StaticPool), so the in-memory
    database lives exactly as long as the tables we create here.
    """
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db_session):
    """TestClient whose requests run on the test session."""

    def _override_get_db():
        try:
            yield db_session
            db_session.commit()
        except Exception:
            db_session.rollback()
            raise

    app.dependency_overrides[get_db] = _override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_db, None)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

@pytest.fixture
def make_coach(db_session):
    def _make(role="coach", is_active=True):
        coach = Coach(
            username=f"coach_{uuid4().hex[:8]}",
            display_name="Test Coach",
            role=role,
            is_active=is_active,
        )
        db_session.add(coach)
        db_session.commit()
        return coach

    return _make


@pytest.fixture
def coach(make_coach):
    return make_coach()


@pytest.fixture
def make_customer(db_session):
    def _make(coach, coach_metadata=None, name="Test Customer"):
        customer = Customer(
            coach_id=coach.id,
            name=name,
            nickname="tc",
            coach_metadata=coach_metadata if coach_metadata is not None else {},
        )
        db_session.add(customer)
        db_session.commit()
        return customer

    return _make


@pytest.fixture
def customer(make_customer, coach):
    return make_customer(coach)


@pytest.fixture
def quiz(db_session):
    """Quiz v1/fast with two active questions (two options each) and one inactive question."""
    quiz = Quiz(quiz_version="v1", track="fast", title="Fast track")
    db_session.add(quiz)
    db_session.flush()

    questions = []
    for i, status in enumerate(["active", "active", "inactive"]):
        q = Question(quiz_id=quiz.id, order_no=i, stem=f"Question {i + 1}", status=status)
        db_session.add(q)
        db_session.flush()
        for j in range(2):
            db_session.add(Option(question_id=q.id, order_no=j, text=f"Q{i + 1} option {j + 1}"))
        questions.append(q)
    db_session.commit()
    return quiz


@pytest.fixture
def make_invite(db_session):
    """Returns (invite, raw_token)."""

    def _make(customer, status="active", quiz_version="v1", track="fast", expires_at=None):
        token = generate_invite_token()
        invite = Invite(
            token_hash=hash_invite_token(token),
            coach_id=customer.coach_id,
            customer_id=customer.id,
            quiz_version=quiz_version,
            track=track,
            status=status,
            expires_at=expires_at,
        )
        db_session.add(invite)
        db_session.commit()
        return invite, token

    return _make


@pytest.fixture
def invite(make_invite, customer, quiz):
    return make_invite(customer)


@pytest.fixture
def auth_headers():
    def _headers(user):
        token = create_access_token({"sub": str(user.id)})
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def make_sop(db_session):
    """Create an SOP definition and, optionally, one rule pointing at it."""

    def _make(
        sop_id,
        stage="pre",
        priority=0,
        strategies=None,
        status="active",
        rule_id=None,
        required_tags=None,
        excluded_tags=None,
        confidence=0,
        rule_status="active",
        rule_created_at=None,
    ):
        sop = SopDefinition(
            sop_id=sop_id,
            sop_name=f"SOP {sop_id}",
            sop_stage=stage,
            priority=priority,
            state_summary=f"{sop_id} summary",
            core_goal=f"{sop_id} goal",
            strategy_list=strategies if strategies is not None else [f"{sop_id} strategy"],
            forbidden_list=[f"{sop_id} forbidden"],
            status=status,
        )
        db_session.add(sop)
        if rule_id is not None:
            db_session.add(
                SopRule(
                    rule_id=rule_id,
                    sop_id=sop_id,
                    required_stage=stage,
                    required_tags=required_tags or [],
                    excluded_tags=excluded_tags or [],
                    confidence=confidence,
                    status=rule_status,
                    created_at=rule_created_at or datetime.now(timezone.utc),
                )
            )
        db_session.commit()
        return sop

    return _make


@pytest.fixture
def make_stage(db_session):
    def _make(stage_id="pre", stage_desc=None, allow_actions=None, forbid_actions=None, default_sop_id=None):
        stage = CoachingStage(
            stage_id=stage_id,
            stage_name=stage_id.upper(),
            stage_desc=stage_desc,
            allow_actions=allow_actions,
            forbid_actions=forbid_actions,
        )
        db_session.add(stage)
        db_session.flush()
        if default_sop_id is not None:
            db_session.add(SopStageMap(stage_id=stage_id, sop_id=default_sop_id, is_default=True))
        db_session.commit()
        return stage

    return _make
