"""
SOP matching: rule predicate, ranking, stage defaults and panel capping.
"""
from datetime import datetime, timedelta, timezone

from models import SopDefinition, SopRule
from services.sop_matcher import (
    FALLBACK_CORE_GOAL,
    FALLBACK_FORBIDDEN,
    FALLBACK_STRATEGIES,
    default_panel,
    match_sop,
    rank_rules,
    realtime_panel,
    rule_matches,
)

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _candidate(rule_id, priority=0, confidence=0, created_at=T0, required=None, excluded=None,
               stage="pre", rule_status="active", sop_status="active"):
    sop = SopDefinition(
        sop_id=f"sop_{rule_id}",
        sop_name=rule_id,
        sop_stage=stage,
        priority=priority,
        status=sop_status,
    )
    rule = SopRule(
        rule_id=rule_id,
        sop_id=sop.sop_id,
        required_stage=stage,
        required_tags=required or [],
        excluded_tags=excluded or [],
        confidence=confidence,
        status=rule_status,
        created_at=created_at,
    )
    return rule, sop


# ---------------------------------------------------------------------------
# Pure predicate / ranking
# ---------------------------------------------------------------------------

def test_rule_requires_all_tags_and_stage():
    rule, _ = _candidate("r", required=["image:steady", "risk:low"])
    assert rule_matches(rule, "pre", ["image:steady", "risk:low", "coach:vip"])
    assert not rule_matches(rule, "pre", ["image:steady"])
    assert not rule_matches(rule, "mid", ["image:steady", "risk:low"])


def test_excluded_tag_vetoes_rule():
    rule, _ = _candidate("r", required=["image:steady"], excluded=["coach:do-not-contact"])
    assert not rule_matches(rule, "pre", ["image:steady", "coach:do-not-contact"])


def test_rule_without_required_tags_matches_any_tag_set():
    rule, _ = _candidate("r")
    assert rule_matches(rule, "pre", [])


def test_priority_beats_confidence():
    low = _candidate("low", priority=1, confidence=99)
    high = _candidate("high", priority=5, confidence=0)
    ranked = rank_rules([low, high], "pre", [])
    assert [r.rule_id for r, _ in ranked] == ["high", "low"]


def test_confidence_breaks_priority_tie():
    a = _candidate("a", priority=3, confidence=10)
    b = _candidate("b", priority=3, confidence=80)
    assert rank_rules([a, b], "pre", [])[0][0].rule_id == "b"


def test_older_rule_then_rule_id_break_remaining_ties():
    newer = _candidate("a_newer", created_at=T0 + timedelta(days=1))
    older = _candidate("z_older", created_at=T0)
    assert rank_rules([newer, older], "pre", [])[0][0].rule_id == "z_older"

    b = _candidate("b")
    a = _candidate("a")
    assert [r.rule_id for r, _ in rank_rules([b, a], "pre", [])] == ["a", "b"]


def test_ranking_is_input_order_independent():
    cands = [
        _candidate("r1", priority=2, confidence=5),
        _candidate("r2", priority=2, confidence=5, created_at=T0 - timedelta(hours=1)),
        _candidate("r3", priority=1, confidence=90),
    ]
    expected = [r.rule_id for r, _ in rank_rules(cands, "pre", [])]
    assert [r.rule_id for r, _ in rank_rules(list(reversed(cands)), "pre", [])] == expected
    assert expected == ["r2", "r1", "r3"]


def test_inactive_rule_or_sop_is_skipped():
    inactive_rule = _candidate("a", priority=9, rule_status="inactive")
    inactive_sop = _candidate("b", priority=8, sop_status="inactive")
    live = _candidate("c", priority=1)
    ranked = rank_rules([inactive_rule, inactive_sop, live], "pre", [])
    assert [r.rule_id for r, _ in ranked] == ["c"]


# ---------------------------------------------------------------------------
# Database-backed matching
# ---------------------------------------------------------------------------

def test_match_sop_picks_highest_priority(db_session, make_sop):
    make_sop("calm", priority=1, rule_id="r_calm", required_tags=["image:steady"], confidence=90)
    make_sop("urgent", priority=5, rule_id="r_urgent", required_tags=["image:steady"], confidence=10)

    match = match_sop(db_session, "pre", ["image:steady"])
    assert match.sop_id == "urgent"
    assert match.is_default is False
    assert match.strategy_list == ["urgent strategy"]


def test_match_sop_respects_exclusions(db_session, make_sop):
    make_sop("a", priority=5, rule_id="r_a", required_tags=["risk:high"], excluded_tags=["coach:paused"])
    make_sop("b", priority=1, rule_id="r_b", required_tags=["risk:high"])

    assert match_sop(db_session, "pre", ["risk:high"]).sop_id == "a"
    assert match_sop(db_session, "pre", ["risk:high", "coach:paused"]).sop_id == "b"


def test_match_sop_returns_none_when_nothing_applies(db_session, make_sop):
    assert match_sop(db_session, "pre", ["anything"]) is None

    make_sop("mid_only", stage="mid", rule_id="r_mid")
    make_sop("needs_tag", rule_id="r_tag", required_tags=["image:steady"])
    assert match_sop(db_session, "pre", ["risk:low"]) is None


def test_match_sop_tie_break_by_created_at(db_session, make_sop):
    make_sop("later", priority=2, rule_id="r_later", confidence=5, rule_created_at=T0 + timedelta(days=2))
    make_sop("earlier", priority=2, rule_id="r_earlier", confidence=5, rule_created_at=T0)
    assert match_sop(db_session, "pre", []).sop_id == "earlier"


def test_default_panel_uses_default_mapping(db_session, make_sop, make_stage):
    make_sop("pre_default", strategies=["s1", "s2"])
    make_stage("pre", stage_desc="Getting to know each other", default_sop_id="pre_default")

    panel = default_panel(db_session, "pre")
    assert panel.sop_id == "pre_default"
    assert panel.is_default is True
    assert panel.strategy_list == ["s1", "s2"]


def test_default_panel_ignores_inactive_default_sop(db_session, make_sop, make_stage):
    make_sop("retired", status="inactive")
    make_stage("pre", stage_desc="Stage text", allow_actions=["Listen"], forbid_actions=["Push"],
               default_sop_id="retired")

    panel = default_panel(db_session, "pre")
    assert panel.sop_id is None
    assert panel.state_summary == "Stage text"
    assert panel.strategy_list == ["Listen"]
    assert panel.forbidden_list == ["Push"]


def test_default_panel_without_any_content_uses_builtin_guidance(db_session):
    panel = default_panel(db_session, "post")
    assert panel.stage == "post"
    assert panel.is_default is True
    assert panel.core_goal == FALLBACK_CORE_GOAL
    assert panel.strategy_list == FALLBACK_STRATEGIES
    assert panel.forbidden_list == FALLBACK_FORBIDDEN


def test_realtime_panel_caps_strategies(db_session, make_sop):
    make_sop("long", rule_id="r_long", strategies=["1", "2", "3", "4", "5"])
    panel = realtime_panel(db_session, "pre", [])
    assert panel.sop_id == "long"
    assert panel.strategy_list == ["1", "2", "3"]


def test_realtime_panel_falls_back_to_default(db_session, make_sop, make_stage):
    make_sop("fallback", strategies=["a", "b", "c", "d"])
    make_stage("mid", default_sop_id="fallback")
    make_sop("tagged", stage="mid", rule_id="r_tagged", required_tags=["risk:high"])

    panel = realtime_panel(db_session, "mid", ["risk:low"])
    assert panel.sop_id == "fallback"
    assert panel.is_default is True
    assert panel.strategy_list == ["a", "b", "c"]


# ---------------------------------------------------------------------------
# Wildcard stage
# ---------------------------------------------------------------------------

def test_unset_or_wildcard_stage_matches_every_stage():
    for required_stage in (None, "", "*"):
        rule, sop = _candidate("any", required=["a"])
        rule.required_stage = required_stage
        for stage in ("pre", "mid", "post"):
            assert rule_matches(rule, stage, ["a"])
            assert [r.rule_id for r, _ in rank_rules([(rule, sop)], stage, ["a"])] == ["any"]


def test_wildcard_rule_still_needs_its_tags():
    rule, _ = _candidate("any", required=["a"], excluded=["b"])
    rule.required_stage = None
    assert not rule_matches(rule, "mid", [])
    assert not rule_matches(rule, "mid", ["a", "b"])


def test_match_sop_loads_wildcard_rules(db_session, make_sop):
    make_sop("everywhere", stage="pre", priority=1)
    db_session.add_all([
        SopRule(rule_id="r_null", sop_id="everywhere", required_stage=None, required_tags=["risk:high"]),
        SopRule(rule_id="r_star", sop_id="everywhere", required_stage="*", required_tags=["risk:low"]),
    ])
    make_sop("pre_only", stage="pre", priority=9, rule_id="r_pre", required_tags=["risk:high"])
    db_session.commit()

    assert match_sop(db_session, "mid", ["risk:high"]).sop_id == "everywhere"
    assert match_sop(db_session, "post", ["risk:low"]).sop_id == "everywhere"
    # An exact-stage rule with higher priority still wins where it applies.
    assert match_sop(db_session, "pre", ["risk:high"]).sop_id == "pre_only"
