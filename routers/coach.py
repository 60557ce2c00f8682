"""
Coach API Router

Invite issuing, coaching stage, coach tags and the realtime SOP panel.
Coaches only see their own customers/invites; admins see all.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from core.auth import get_owned_customer, get_owned_invite, is_admin, require_coach
from core.database import get_db
from core.exceptions import ConflictError, ValidationError
from models import Coach
from schemas import (
    CoachTagRequest,
    CoachTagResponse,
    CustomerPanelResponse,
    InviteCreatedResponse,
    InviteCreateRequest,
    InviteListResponse,
    InviteResponse,
    RealtimePanel,
    StageResponse,
    StageUpdateRequest,
)
from services.coach_guidance import build_customer_guidance
from services.coach_stage import advance_customer_stage, current_stage, set_stage
from services.coach_tags import add_coach_tag, remove_coach_tag
from services.invite_service import create_invite, expire_invite, invite_url, list_invites

router = APIRouter(prefix="/v1/coach", tags=["Coach"])


# ---------------------------------------------------------------------------
# Invites
# ---------------------------------------------------------------------------

@router.post("/invites", response_model=InviteCreatedResponse)
def create_invite_endpoint(
    request: InviteCreateRequest,
    current_user: Coach = Depends(require_coach),
    db: Session = Depends(get_db),
):
    """Issue an invite link. The raw token is returned once and never again."""
    customer = get_owned_customer(db, current_user, request.customer_id)
    inv, token = create_invite(
        db,
        coach_id=customer.coach_id,
        customer=customer,
        quiz_version=request.quiz_version,
        track=request.track,
        expires_at=request.expires_at,
    )
    return InviteCreatedResponse(
        **InviteResponse.model_validate(inv).model_dump(),
        token=token,
        url=invite_url(token),
    )


@router.get("/invites", response_model=InviteListResponse)
def list_invites_endpoint(
    status: Optional[str] = Query(default=None),
    customer_id: Optional[UUID] = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    current_user: Coach = Depends(require_coach),
    db: Session = Depends(get_db),
):
    rows, total = list_invites(
        db,
        coach_id=None if is_admin(current_user) else current_user.id,
        status=status,
        customer_id=customer_id,
        page=page,
        limit=limit,
    )
    return InviteListResponse(
        invites=[InviteResponse.model_validate(r) for r in rows],
        total=total,
        page=page,
        limit=limit,
    )


@router.post("/invites/{invite_id}/expire", response_model=InviteResponse)
def expire_invite_endpoint(
    invite_id: UUID,
    current_user: Coach = Depends(require_coach),
    db: Session = Depends(get_db),
):
    invite = get_owned_invite(db, current_user, invite_id)
    return expire_invite(db, invite=invite, actor_id=current_user.id)


# ---------------------------------------------------------------------------
# Customer guidance
# ---------------------------------------------------------------------------

@router.get("/customers/{customer_id}/panel", response_model=CustomerPanelResponse)
def customer_panel_endpoint(
    customer_id: UUID,
    current_user: Coach = Depends(require_coach),
    db: Session = Depends(get_db),
):
    """Stage, aggregated tags and the SOP guidance to show next to the chat."""
    customer = get_owned_customer(db, current_user, customer_id)
    guidance = build_customer_guidance(db, customer)
    panel = guidance.panel
    return CustomerPanelResponse(
        customer_id=customer.id,
        stage=guidance.stage.value,
        latest_attempt_id=guidance.latest_attempt.id if guidance.latest_attempt else None,
        system_tags=guidance.system_tags,
        coach_tags=guidance.coach_tags,
        tags=guidance.tags,
        realtime_panel=RealtimePanel(
            stage=panel.stage,
            sop_id=panel.sop_id,
            sop_name=panel.sop_name,
            state_summary=panel.state_summary,
            core_goal=panel.core_goal,
            strategy_list=panel.strategy_list,
            forbidden_list=panel.forbidden_list,
            is_default=panel.is_default,
        ),
    )


@router.get("/customers/{customer_id}/stage", response_model=StageResponse)
def get_stage_endpoint(
    customer_id: UUID,
    current_user: Coach = Depends(require_coach),
    db: Session = Depends(get_db),
):
    customer = get_owned_customer(db, current_user, customer_id)
    return StageResponse(stage=current_stage(customer).value)


@router.post("/customers/{customer_id}/stage", response_model=StageResponse)
def update_stage_endpoint(
    customer_id: UUID,
    request: StageUpdateRequest,
    current_user: Coach = Depends(require_coach),
    db: Session = Depends(get_db),
):
    """Set the stage explicitly (backward moves allowed) or advance it one step."""
    customer = get_owned_customer(db, current_user, customer_id)
    try:
        if request.stage is not None:
            stage = set_stage(db, customer, request.stage, actor_id=current_user.id)
        elif request.action == "advance":
            stage = advance_customer_stage(db, customer, actor_id=current_user.id)
        else:
            raise ValidationError("Provide stage (pre/mid/post) or action='advance'", field="stage")
    except StaleDataError:
        raise ConflictError("Customer was modified concurrently; reload and retry")
    return StageResponse(stage=stage.value)


@router.post("/customers/{customer_id}/tags", response_model=CoachTagResponse)
def add_tag_endpoint(
    customer_id: UUID,
    request: CoachTagRequest,
    current_user: Coach = Depends(require_coach),
    db: Session = Depends(get_db),
):
    customer = get_owned_customer(db, current_user, customer_id)
    return add_coach_tag(db, customer=customer, coach_id=current_user.id, tag_key=request.tag_key)


@router.delete("/customers/{customer_id}/tags")
def remove_tag_endpoint(
    customer_id: UUID,
    tag_key: str = Query(..., min_length=1),
    current_user: Coach = Depends(require_coach),
    db: Session = Depends(get_db),
):
    customer = get_owned_customer(db, current_user, customer_id)
    remove_coach_tag(db, customer=customer, coach_id=current_user.id, tag_key=tag_key)
    return {"deleted": True}
