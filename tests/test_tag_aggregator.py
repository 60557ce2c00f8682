"""Tag merging and coach tag validation."""
import pytest

from core.exceptions import ValidationError
from services.tag_aggregator import aggregate_tags, parse_tag_list, validate_coach_tag


def test_system_tags_first_then_coach_tags():
    merged = aggregate_tags(["image:steady", "risk:low"], ["coach:vip"])
    assert merged == ["image:steady", "risk:low", "coach:vip"]


def test_duplicates_keep_first_occurrence():
    merged = aggregate_tags(["a", "b", "a"], ["b", "coach:x", "coach:x"])
    assert merged == ["a", "b", "coach:x"]


def test_empty_inputs():
    assert aggregate_tags([], []) == []
    assert aggregate_tags([], ["coach:x"]) == ["coach:x"]


@pytest.mark.parametrize(
    "raw,expected",
    [
        (None, []),
        ("", []),
        (["a", "b"], ["a", "b"]),
        ('["a", "b"]', ["a", "b"]),
        ("not json", []),
        ('{"a": 1}', []),
        (["a", 3, None, "", "b"], ["a", "b"]),
    ],
)
def test_parse_tag_list(raw, expected):
    assert parse_tag_list(raw) == expected


def test_validate_coach_tag_strips_whitespace():
    assert validate_coach_tag("  coach:follow-up ") == "coach:follow-up"


@pytest.mark.parametrize("tag_key", ["", "coach:", "vip", "image:steady", "Coach:vip"])
def test_validate_coach_tag_rejects(tag_key):
    with pytest.raises(ValidationError) as exc:
        validate_coach_tag(tag_key)
    assert exc.value.error_code == "VALIDATION_ERROR_TAG_KEY"
