"""
Coach guidance panel for a customer.

Joins the three inputs the SOP matcher needs:
    stage  <- stage tracker (customer.coach_metadata)
    tags   <- latest submitted attempt's derived tags + coach tags
    rules  <- SOP tables

Customers without a submitted attempt get the stage default panel.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from core.config import settings
from models import Attempt, Customer
from services.coach_stage import CoachStage, current_stage
from services.coach_tags import coach_tag_keys
from services.sop_matcher import SopMatch, default_panel, realtime_panel
from services.tag_aggregator import aggregate_tags, parse_tag_list


@dataclass
class CustomerGuidance:
    stage: CoachStage
    system_tags: List[str]
    coach_tags: List[str]
    tags: List[str]
    latest_attempt: Optional[Attempt]
    panel: SopMatch


def latest_submitted_attempt(db: Session, customer_id: UUID) -> Optional[Attempt]:
    return (
        db.query(Attempt)
        .filter(Attempt.customer_id == customer_id, Attempt.submitted_at.isnot(None))
        .order_by(Attempt.submitted_at.desc())
        .first()
    )


def build_customer_guidance(db: Session, customer: Customer) -> CustomerGuidance:
    stage = current_stage(customer)
    attempt = latest_submitted_attempt(db, customer.id)
    system_tags = parse_tag_list(attempt.tags) if attempt is not None else []
    coach_tags = coach_tag_keys(db, customer.id)
    tags = aggregate_tags(system_tags, coach_tags)

    if attempt is None:
        panel = default_panel(db, stage.value)
        panel = replace(panel, strategy_list=panel.strategy_list[: settings.SOP_PANEL_MAX_STRATEGIES])
    else:
        panel = realtime_panel(db, stage.value, tags)

    return CustomerGuidance(
        stage=stage,
        system_tags=system_tags,
        coach_tags=coach_tags,
        tags=tags,
        latest_attempt=attempt,
        panel=panel,
    )
