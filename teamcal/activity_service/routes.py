"""
Activity log route (system admins only).
"""

import logging
from typing import Tuple

from flask import Blueprint, request, jsonify, Response

from teamcal.auth_service.utils import verify_token_from_request
from teamcal.database.store import open_store
from teamcal.errors import ForbiddenError, ValidationError
from teamcal.validation import require_uuid

activity_bp = Blueprint("activity", __name__)

MAX_LIMIT = 500


@activity_bp.route("/", methods=["GET"])
def list_activity() -> Tuple[Response, int]:
    """
    Recent activity, newest first.

    Query params:
        user_id (optional), action (optional), limit (default 50)
    """
    user_id, _, err, code = verify_token_from_request()
    if err:
        return err, code

    try:
        limit = int(request.args.get("limit", 50))
    except ValueError:
        raise ValidationError("limit must be an integer")
    if not 1 <= limit <= MAX_LIMIT:
        raise ValidationError(f"limit must be between 1 and {MAX_LIMIT}")

    filter_user = request.args.get("user_id")
    if filter_user:
        filter_user = require_uuid(filter_user, "user_id")

    with open_store() as store:
        # role is re-read, a stale token claim is not enough
        caller = store.get_user(user_id)
        if not caller or caller.get("role") != "admin":
            raise ForbiddenError("Admin access required")
        entries = store.list_activity(filter_user, request.args.get("action"), limit)

    logging.info(f"[Activity] {len(entries)} entries returned")
    return jsonify(entries), 200
