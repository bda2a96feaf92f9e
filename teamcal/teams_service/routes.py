"""
Teams routes: hierarchy, membership and attendee expansion.
"""

import logging
from typing import Any, Dict, Tuple
from uuid import UUID

from flask import Blueprint, request, jsonify, Response

from teamcal.auth_service.utils import verify_token_from_request
from teamcal.database.store import open_store
from teamcal.teams_service import service
from teamcal.validation import json_body

teams_bp = Blueprint("teams", __name__)


@teams_bp.before_request
def before_request() -> None:
    logging.info(f"[Teams] Incoming {request.method} {request.path}")


@teams_bp.after_request
def after_request(response: Response) -> Response:
    logging.info(f"[Teams] Response {response.status}")
    return response


@teams_bp.route("/", methods=["GET"])
def list_teams() -> Tuple[Response, int]:
    user_id, _, err, code = verify_token_from_request()
    if err:
        return err, code

    with open_store() as store:
        teams = service.list_teams(store, user_id)
    return jsonify(teams), 200


@teams_bp.route("/", methods=["POST"])
def create_team() -> Tuple[Response, int]:
    """
    Create a team.

    Expects JSON:
        { "name": str, "parent_team_id": str (optional), "is_private": bool (optional) }

    Returns:
        201: The created team; the caller is its first admin.
        403: Not allowed to create this kind of team.
        404: Parent team not found.
    """
    user_id, _, err, code = verify_token_from_request()
    if err:
        return err, code

    data: Dict[str, Any] = json_body()
    with open_store() as store:
        team = service.create_team(
            store, user_id, data.get("name"), data.get("parent_team_id"), data.get("is_private", False)
        )
    return jsonify(team), 201


@teams_bp.route("/<uuid:team_id>/members", methods=["GET"])
def list_members(team_id: UUID) -> Tuple[Response, int]:
    _, _, err, code = verify_token_from_request()
    if err:
        return err, code

    with open_store() as store:
        members = service.list_team_members(store, str(team_id))
    return jsonify(members), 200


@teams_bp.route("/<uuid:team_id>/members", methods=["POST"])
def add_members(team_id: UUID) -> Tuple[Response, int]:
    """
    Expects JSON: { "user_ids": [str], "is_admin": bool (optional) }
    """
    user_id, _, err, code = verify_token_from_request()
    if err:
        return err, code

    data: Dict[str, Any] = json_body()
    with open_store() as store:
        added = service.add_team_members(
            store, user_id, str(team_id), data.get("user_ids"), data.get("is_admin", False)
        )
    return jsonify({"added": added}), 200


@teams_bp.route("/<uuid:team_id>/members/<uuid:member_id>", methods=["DELETE"])
def remove_member(team_id: UUID, member_id: UUID) -> Tuple[Response, int]:
    user_id, _, err, code = verify_token_from_request()
    if err:
        return err, code

    with open_store() as store:
        removed = service.remove_team_member(store, user_id, str(team_id), str(member_id))
    return jsonify({"status": "removed" if removed else "not_member"}), 200


@teams_bp.route("/<uuid:team_id>/members/<uuid:member_id>", methods=["PUT"])
def update_member(team_id: UUID, member_id: UUID) -> Tuple[Response, int]:
    user_id, _, err, code = verify_token_from_request()
    if err:
        return err, code

    data: Dict[str, Any] = json_body()
    with open_store() as store:
        service.update_member_role(store, user_id, str(team_id), str(member_id), data.get("is_admin"))
    return jsonify({"status": "updated"}), 200


@teams_bp.route("/expand", methods=["POST"])
def expand() -> Tuple[Response, int]:
    """
    Resolve team ids to the people in them and in all their sub-teams.

    Expects JSON: { "team_ids": [str] }
    """
    _, _, err, code = verify_token_from_request()
    if err:
        return err, code

    data: Dict[str, Any] = json_body()
    with open_store() as store:
        members = service.expand_teams(store, data.get("team_ids"))
    return jsonify(members), 200
