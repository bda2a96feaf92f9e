"""
Input helpers shared by the services and their routes.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from flask import request

from teamcal.errors import ValidationError


def parse_dt(val: Optional[str]) -> Optional[datetime]:
    """
    Safely parse an ISO-8601 or datetime-local string to an aware datetime.

    Naive values are taken as UTC.

    Args:
        val (str): The date string to parse.

    Returns:
        datetime: The parsed datetime, or None if invalid.
    """
    if not val:
        return None
    if isinstance(val, datetime):
        parsed = val
    else:
        try:
            # Handles 'YYYY-MM-DDTHH:MM' and '...Z' or '...+00:00'
            if val.endswith("Z"):
                val = val[:-1] + "+00:00"
            parsed = datetime.fromisoformat(val)
        except (ValueError, TypeError, AttributeError):
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def require_dt(val: Any, field: str) -> datetime:
    parsed = parse_dt(val)
    if parsed is None:
        raise ValidationError(f"Invalid {field} format. Use ISO-8601.")
    return parsed


def require_uuid(val: Any, field: str) -> str:
    try:
        return str(uuid.UUID(str(val)))
    except (ValueError, TypeError, AttributeError) as e:
        raise ValidationError(f"{field} must be a UUID") from e


def require_uuid_list(values: Any, field: str) -> List[str]:
    """Validate a JSON list of ids, dropping duplicates but keeping order."""
    if values is None:
        return []
    if not isinstance(values, (list, tuple)):
        raise ValidationError(f"{field} must be a list")
    return list(dict.fromkeys(require_uuid(v, field) for v in values))


def require_bool(val: Any, field: str) -> bool:
    if not isinstance(val, bool):
        raise ValidationError(f"{field} must be true or false")
    return val


def require_choice(val: Any, choices: Iterable[str], field: str) -> str:
    choices = tuple(choices)
    if val not in choices:
        raise ValidationError(f"{field} must be one of: {', '.join(choices)}")
    return val


def json_body() -> Dict[str, Any]:
    """
    The request's JSON body as a dict; an absent body reads as empty.
    """
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data
