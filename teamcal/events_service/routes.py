"""
Events service routes: create, read, update, delete events, sharing and RSVP.

Handlers only translate HTTP to calls into `events_service.service`; domain
errors propagate to the gateway's error handler.
"""

import logging
from typing import Any, Dict, Tuple
from uuid import UUID

from flask import Blueprint, request, jsonify, Response

from teamcal.auth_service.utils import optional_user_from_request, verify_token_from_request
from teamcal.database.store import open_store
from teamcal.errors import ValidationError
from teamcal.events_service import service
from teamcal.security.keys import current_key_vault
from teamcal.validation import json_body, require_dt, require_uuid

events_bp = Blueprint("events", __name__)


# --- REQUEST LOGGING ---
@events_bp.before_request
def before_request() -> None:
    logging.info(f"[Events] Incoming {request.method} {request.path}")


@events_bp.after_request
def after_request(response: Response) -> Response:
    logging.info(f"[Events] Response {response.status}")
    return response


def _flag(name: str) -> bool:
    return request.args.get(name, "").lower() in ("1", "true", "yes")


def _time_window() -> Tuple[Any, Any]:
    start = request.args.get("start")
    end = request.args.get("end")
    if not start or not end:
        raise ValidationError("start and end query parameters are required")
    return require_dt(start, "start"), require_dt(end, "end")


@events_bp.route("/", methods=["GET"])
def list_events() -> Tuple[Response, int]:
    """
    Events within ?start=&end= with the caller's capability flags.

    Filters:
    - ?my_stuff_only=true : only the caller's events.
    - ?grouping_ids=<id>,<id> : events tagged with any of these groupings.
    - ?user_id=<id> : events owned by one user.

    Anonymous callers are allowed; they see no private content and no rights.
    """
    viewer_id = optional_user_from_request()
    start, end = _time_window()

    grouping_ids = [g for g in request.args.get("grouping_ids", "").split(",") if g]
    filter_user_id = request.args.get("user_id")

    with open_store() as store:
        events = service.get_events_with_permissions(
            store, current_key_vault(), viewer_id, start, end,
            my_stuff_only=_flag("my_stuff_only"),
            grouping_ids=[require_uuid(g, "grouping_ids") for g in grouping_ids],
            filter_user_id=require_uuid(filter_user_id, "user_id") if filter_user_id else None,
        )
    return jsonify(events), 200


@events_bp.route("/whos-out", methods=["GET"])
def whos_out() -> Tuple[Response, int]:
    """
    Out-of-office summary for ?start=&end=, one entry per person.
    """
    _, _, err, code = verify_token_from_request()
    if err:
        return err, code

    start, end = _time_window()
    with open_store() as store:
        people = service.get_whos_out(store, start, end)
    return jsonify(people), 200


@events_bp.route("/<uuid:event_id>", methods=["GET"])
def get_event(event_id: UUID) -> Tuple[Response, int]:
    viewer_id = optional_user_from_request()
    with open_store() as store:
        event = service.get_event(store, current_key_vault(), viewer_id, str(event_id))
    return jsonify(event), 200


@events_bp.route("/", methods=["POST"])
def create_event() -> Tuple[Response, int]:
    """
    Create an event owned by the caller.

    Returns:
        201: The created event.
        400: Validation error.
        409: Private event requested but the caller's key is unavailable.
    """
    user_id, _, err, code = verify_token_from_request()
    if err:
        return err, code

    data: Dict[str, Any] = json_body()
    with open_store() as store:
        event = service.create_event(store, current_key_vault(), user_id, data)
    return jsonify(event), 201


@events_bp.route("/<uuid:event_id>", methods=["PUT"])
def update_event(event_id: UUID) -> Tuple[Response, int]:
    user_id, _, err, code = verify_token_from_request()
    if err:
        return err, code

    data: Dict[str, Any] = json_body()
    with open_store() as store:
        event = service.update_event(store, current_key_vault(), user_id, str(event_id), data)
    return jsonify(event), 200


@events_bp.route("/<uuid:event_id>", methods=["DELETE"])
def delete_event(event_id: UUID) -> Tuple[Response, int]:
    user_id, _, err, code = verify_token_from_request()
    if err:
        return err, code

    with open_store() as store:
        service.delete_event(store, user_id, str(event_id))
    return jsonify({"status": "deleted"}), 200


@events_bp.route("/<uuid:event_id>/capabilities", methods=["GET"])
def capabilities(event_id: UUID) -> Tuple[Response, int]:
    """
    Whether the caller may edit / delete the event. Unknown events answer
    false for both rather than 404.
    """
    user_id, _, err, code = verify_token_from_request()
    if err:
        return err, code

    with open_store() as store:
        flags = service.event_capabilities(store, str(event_id), user_id)
    return jsonify(flags), 200


# --- EXPLICIT GRANTS ---

@events_bp.route("/<uuid:event_id>/permissions", methods=["GET"])
def list_permissions(event_id: UUID) -> Tuple[Response, int]:
    user_id, _, err, code = verify_token_from_request()
    if err:
        return err, code

    with open_store() as store:
        grants = service.list_event_permissions(store, user_id, str(event_id))
    return jsonify(grants), 200


@events_bp.route("/<uuid:event_id>/permissions", methods=["POST"])
def grant_permission(event_id: UUID) -> Tuple[Response, int]:
    """
    Owner-only: grant edit/delete rights to another user.

    Expects JSON:
        { "user_id": str, "can_edit": bool, "can_delete": bool }
    """
    user_id, _, err, code = verify_token_from_request()
    if err:
        return err, code

    data: Dict[str, Any] = json_body()
    with open_store() as store:
        grant = service.grant_event_permission(
            store, user_id, str(event_id), data.get("user_id"),
            can_edit=data.get("can_edit", False),
            can_delete=data.get("can_delete", False),
        )
    return jsonify(grant), 200


@events_bp.route("/<uuid:event_id>/permissions/<uuid:target_id>", methods=["DELETE"])
def revoke_permission(event_id: UUID, target_id: UUID) -> Tuple[Response, int]:
    user_id, _, err, code = verify_token_from_request()
    if err:
        return err, code

    with open_store() as store:
        removed = service.revoke_event_permission(store, user_id, str(event_id), str(target_id))
    return jsonify({"status": "revoked" if removed else "not_granted"}), 200


# --- ATTENDEES ---

@events_bp.route("/<uuid:event_id>/attendees", methods=["POST"])
def assign_attendees(event_id: UUID) -> Tuple[Response, int]:
    """
    Invite users and whole teams (including their sub-teams).

    Expects JSON:
        { "user_ids": [str], "team_ids": [str] }
    """
    user_id, _, err, code = verify_token_from_request()
    if err:
        return err, code

    data: Dict[str, Any] = json_body()
    with open_store() as store:
        result = service.assign_attendees(
            store, user_id, str(event_id), data.get("user_ids"), data.get("team_ids")
        )
    return jsonify(result), 200


@events_bp.route("/<uuid:event_id>/attendees", methods=["GET"])
def get_attendees(event_id: UUID) -> Tuple[Response, int]:
    _, _, err, code = verify_token_from_request()
    if err:
        return err, code

    with open_store() as store:
        attendees = service.list_attendees(store, str(event_id))
    return jsonify(attendees), 200


@events_bp.route("/<uuid:event_id>/rsvp", methods=["POST"])
def rsvp(event_id: UUID) -> Tuple[Response, int]:
    """
    Answer an invitation: 'accepted', 'declined', 'tentative' or 'pending'.
    """
    user_id, _, err, code = verify_token_from_request()
    if err:
        return err, code

    data: Dict[str, Any] = json_body()
    with open_store() as store:
        status = service.respond_to_event(store, user_id, str(event_id), data.get("status"))
    return jsonify({"status": status}), 200
