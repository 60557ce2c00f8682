"""
SOP matching engine.

Input: a coaching stage ('pre' | 'mid' | 'post') and the customer's
aggregated tag set (system + coach tags).

Rule predicate:
    rule.status == active AND owning SOP.status == active
    AND rule.required_stage in (stage, '*', '', NULL)
    AND required_tags is a subset of tags
    AND excluded_tags is disjoint from tags

Ranking (top-1 wins):
    1. owning SOP priority, descending
    2. rule confidence, descending
    3. rule created_at, ascending (older rule wins)
    4. rule_id, ascending

When nothing matches, ``default_panel`` supplies stage-level guidance so the
coach UI never renders an empty panel.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from core.config import settings
from models import CoachingStage, SopDefinition, SopRule, SopStageMap
from services.tag_aggregator import parse_tag_list

logger = logging.getLogger(__name__)

# Used only when the stage has neither a default SOP nor its own content.
FALLBACK_STATE_SUMMARY = "Early trust-building phase"
FALLBACK_CORE_GOAL = "Build trust and understand the customer's real needs"
FALLBACK_STRATEGIES = ["Build trust", "Understand needs"]
FALLBACK_FORBIDDEN = ["Hard selling", "Promising returns"]

STAGE_WILDCARD = "*"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class SopMatch:
    """Guidance payload handed to the coach panel."""
    stage: str
    sop_id: Optional[str] = None
    sop_name: Optional[str] = None
    state_summary: Optional[str] = None
    core_goal: Optional[str] = None
    strategy_list: List[str] = field(default_factory=list)
    forbidden_list: List[str] = field(default_factory=list)
    is_default: bool = False

    @classmethod
    def from_definition(cls, sop: SopDefinition, *, is_default: bool = False) -> "SopMatch":
        return cls(
            stage=sop.sop_stage,
            sop_id=sop.sop_id,
            sop_name=sop.sop_name,
            state_summary=sop.state_summary,
            core_goal=sop.core_goal,
            strategy_list=parse_tag_list(sop.strategy_list),
            forbidden_list=parse_tag_list(sop.forbidden_list),
            is_default=is_default,
        )


Candidate = Tuple[SopRule, SopDefinition]


def stage_applies(required_stage: Optional[str], stage: str) -> bool:
    """An unset or wildcard required stage applies to every stage."""
    return not required_stage or required_stage in (stage, STAGE_WILDCARD)


def rule_matches(rule: SopRule, stage: str, tags: Iterable[str]) -> bool:
    tag_set = set(tags)
    if not stage_applies(rule.required_stage, stage):
        return False
    if not set(parse_tag_list(rule.required_tags)).issubset(tag_set):
        return False
    if tag_set.intersection(parse_tag_list(rule.excluded_tags)):
        return False
    return True


def _created_at_key(value: Optional[datetime]) -> datetime:
    if value is None:
        return _EPOCH
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def rank_rules(candidates: Sequence[Candidate], stage: str, tags: Iterable[str]) -> List[Candidate]:
    """Filter candidates by the rule predicate and order them best-first."""
    tags = list(tags)
    surviving = [
        (rule, sop)
        for rule, sop in candidates
        if rule.status == "active" and sop.status == "active" and rule_matches(rule, stage, tags)
    ]
    return sorted(
        surviving,
        key=lambda c: (
            -(c[1].priority or 0),
            -(c[0].confidence or 0),
            _created_at_key(c[0].created_at),
            c[0].rule_id,
        ),
    )


def load_candidates(db: Session, stage: str) -> List[Candidate]:
    rows = (
        db.query(SopRule, SopDefinition)
        .join(SopDefinition, SopRule.sop_id == SopDefinition.sop_id)
        .filter(
            SopRule.status == "active",
            or_(
                SopRule.required_stage == stage,
                SopRule.required_stage.is_(None),
                SopRule.required_stage.in_(("", STAGE_WILDCARD)),
            ),
            SopDefinition.status == "active",
        )
        .all()
    )
    return [(rule, sop) for rule, sop in rows]


def match_sop(db: Session, stage: str, tags: Iterable[str]) -> Optional[SopMatch]:
    """Top-ranked SOP for (stage, tags), or None when no rule survives."""
    ranked = rank_rules(load_candidates(db, stage), stage, tags)
    if not ranked:
        return None
    rule, sop = ranked[0]
    logger.debug(
        "SOP matched",
        extra={"extra_fields": {"stage": stage, "rule_id": rule.rule_id, "sop_id": sop.sop_id}},
    )
    return SopMatch.from_definition(sop)


def default_panel(db: Session, stage_id: str = "pre") -> SopMatch:
    """
    Stage-level guidance when no rule applies.

    Order of preference: the stage's default SOP mapping (active SOP only),
    then the stage's own description and allow/forbid lists, then built-in
    fallbacks.
    """
    stage = db.query(CoachingStage).filter(CoachingStage.stage_id == stage_id).first()

    mapping = (
        db.query(SopStageMap)
        .join(SopDefinition, SopStageMap.sop_id == SopDefinition.sop_id)
        .filter(
            SopStageMap.stage_id == stage_id,
            SopStageMap.is_default.is_(True),
            SopDefinition.status == "active",
        )
        .first()
    )

    stage_desc = stage.stage_desc if stage is not None else None

    if mapping is not None:
        sop = mapping.sop
        match = SopMatch.from_definition(sop, is_default=True)
        return replace(
            match,
            state_summary=sop.state_summary or stage_desc or FALLBACK_STATE_SUMMARY,
            core_goal=sop.core_goal or FALLBACK_CORE_GOAL,
        )

    if stage is None:
        logger.warning(f"No coaching_stage row for '{stage_id}', using built-in guidance")

    allow = parse_tag_list(stage.allow_actions) if stage is not None else []
    forbid = parse_tag_list(stage.forbid_actions) if stage is not None else []
    return SopMatch(
        stage=stage_id,
        state_summary=stage_desc or FALLBACK_STATE_SUMMARY,
        core_goal=FALLBACK_CORE_GOAL,
        strategy_list=allow or list(FALLBACK_STRATEGIES),
        forbidden_list=forbid or list(FALLBACK_FORBIDDEN),
        is_default=True,
    )


def realtime_panel(db: Session, stage: str, tags: Iterable[str]) -> SopMatch:
    """Matched SOP or stage default, with the strategy list capped for display."""
    panel = match_sop(db, stage, tags) or default_panel(db, stage)
    return replace(panel, strategy_list=panel.strategy_list[: settings.SOP_PANEL_MAX_STRATEGIES])
