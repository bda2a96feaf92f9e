"""
Audit trail of user actions.
"""

import json
import logging
from typing import Any, Optional

import psycopg2

logger = logging.getLogger(__name__)


def log_activity(store, user_id: str, action: str, entity_type: str,
                 entity_id: Optional[str] = None, details: Optional[Any] = None) -> None:
    """
    Record an action in the activity log.

    Runs inside a savepoint: a failed insert is reported in the application
    log and rolled back on its own, leaving the caller's transaction usable.
    """
    payload = json.dumps(details, default=str) if details is not None else None
    try:
        with store.savepoint("activity_log"):
            store.insert_activity(user_id, action, entity_type, entity_id, payload)
    except psycopg2.Error:
        logger.exception("Failed to record activity %s on %s %s", action, entity_type, entity_id)
