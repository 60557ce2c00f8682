"""
Audit Logger

Structured logging for coach- and customer-impacting actions
(invite issued/expired, attempt started/answered/submitted, stage and tag
changes). Audit persistence lives outside this service; we emit one JSON
line per event on the audit logger and let the log pipeline keep it.

Format:
- timestamp
- action
- actor_id (coach id, or None for token-authenticated customer actions)
- entity_type / entity_id
- metadata
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from core.logging import AUDIT_LOGGER_NAME

audit_logger = logging.getLogger(AUDIT_LOGGER_NAME)


def log_audit(
    action: str,
    entity_type: str,
    entity_id: Any,
    actor_id: Optional[UUID] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Log an audit event.

    Args:
        action: Action type (e.g., "attempt.start", "coach.set_stage")
        entity_type: "invite", "attempt", "customer", "coach_tag"
        entity_id: Primary key of the affected row
        actor_id: Coach performing the action; None for invite-token callers
        metadata: Additional context (must not contain raw tokens)
    """
    event = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "action": action,
        "actor_id": str(actor_id) if actor_id else None,
        "entity_type": entity_type,
        "entity_id": str(entity_id),
    }
    if metadata:
        event["metadata"] = metadata

    audit_logger.info(json.dumps(event, default=str))
