"""
Groupings routes: event tags and their group admins.
"""

import logging
from typing import Any, Dict, Tuple
from uuid import UUID

from flask import Blueprint, request, jsonify, Response

from teamcal.auth_service.utils import verify_token_from_request
from teamcal.database.store import open_store
from teamcal.groupings_service import service
from teamcal.validation import json_body

groupings_bp = Blueprint("groupings", __name__)


@groupings_bp.before_request
def before_request() -> None:
    logging.info(f"[Groupings] Incoming {request.method} {request.path}")


@groupings_bp.after_request
def after_request(response: Response) -> Response:
    logging.info(f"[Groupings] Response {response.status}")
    return response


@groupings_bp.route("/", methods=["GET"])
def list_groupings() -> Tuple[Response, int]:
    user_id, _, err, code = verify_token_from_request()
    if err:
        return err, code

    with open_store() as store:
        groupings = service.list_groupings(store, user_id)
    return jsonify(groupings), 200


@groupings_bp.route("/managed", methods=["GET"])
def list_managed_groupings() -> Tuple[Response, int]:
    user_id, _, err, code = verify_token_from_request()
    if err:
        return err, code

    with open_store() as store:
        groupings = service.list_managed_groupings(store, user_id)
    return jsonify(groupings), 200


@groupings_bp.route("/", methods=["POST"])
def create_grouping() -> Tuple[Response, int]:
    """
    Create a grouping.

    Expects JSON:
        { "name": str, "color": "#RRGGBB" (optional), "private": bool (optional) }

    Private groupings are visible to their creator only.
    """
    user_id, _, err, code = verify_token_from_request()
    if err:
        return err, code

    data: Dict[str, Any] = json_body()
    with open_store() as store:
        grouping = service.create_grouping(
            store, user_id, data.get("name"), data.get("color"), data.get("private", False)
        )
    return jsonify(grouping), 201


@groupings_bp.route("/<uuid:grouping_id>", methods=["DELETE"])
def delete_grouping(grouping_id: UUID) -> Tuple[Response, int]:
    user_id, _, err, code = verify_token_from_request()
    if err:
        return err, code

    with open_store() as store:
        service.delete_grouping(store, user_id, str(grouping_id))
    return jsonify({"status": "deleted"}), 200


@groupings_bp.route("/<uuid:grouping_id>/admins", methods=["GET"])
def list_admins(grouping_id: UUID) -> Tuple[Response, int]:
    _, _, err, code = verify_token_from_request()
    if err:
        return err, code

    with open_store() as store:
        admins = service.list_group_admins(store, str(grouping_id))
    return jsonify(admins), 200


@groupings_bp.route("/<uuid:grouping_id>/admins", methods=["POST"])
def assign_admin(grouping_id: UUID) -> Tuple[Response, int]:
    """
    System admins only. Expects JSON: { "user_id": str }
    """
    user_id, _, err, code = verify_token_from_request()
    if err:
        return err, code

    data: Dict[str, Any] = json_body()
    with open_store() as store:
        added = service.assign_group_admin(store, user_id, str(grouping_id), data.get("user_id"))
    return jsonify({"status": "assigned" if added else "already_admin"}), 200


@groupings_bp.route("/<uuid:grouping_id>/admins/<uuid:target_id>", methods=["DELETE"])
def remove_admin(grouping_id: UUID, target_id: UUID) -> Tuple[Response, int]:
    user_id, _, err, code = verify_token_from_request()
    if err:
        return err, code

    with open_store() as store:
        removed = service.remove_group_admin(store, user_id, str(grouping_id), str(target_id))
    return jsonify({"status": "removed" if removed else "not_admin"}), 200
