"""
Tag aggregation for SOP matching.

Two tag sources feed the matcher:
- system tags written by scoring on a submitted attempt
  ("image:*", "stability:*", "phase:*", dimension tags like "risk:high")
- coach tags applied manually ("coach:*")

The matcher only checks containment, so order matters for display only.
"""

import json
from typing import Any, Iterable, List

from core.exceptions import ValidationError

COACH_TAG_PREFIX = "coach:"


def parse_tag_list(raw: Any) -> List[str]:
    """Read a stored tag list, tolerating JSON-encoded text and junk entries."""
    if raw is None or raw == "":
        return []
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            return []
    if not isinstance(raw, (list, tuple)):
        return []
    return [t for t in raw if isinstance(t, str) and t]


def aggregate_tags(system_tags: Iterable[str], coach_tags: Iterable[str]) -> List[str]:
    """System tags first, then coach tags; first occurrence wins on duplicates."""
    seen = set()
    merged: List[str] = []
    for tag in list(system_tags) + list(coach_tags):
        if tag in seen:
            continue
        seen.add(tag)
        merged.append(tag)
    return merged


def validate_coach_tag(tag_key: str) -> str:
    tag_key = (tag_key or "").strip()
    if not tag_key.startswith(COACH_TAG_PREFIX) or len(tag_key) == len(COACH_TAG_PREFIX):
        raise ValidationError(
            f"Coach tags must start with '{COACH_TAG_PREFIX}' and name a label", field="tag_key"
        )
    return tag_key
