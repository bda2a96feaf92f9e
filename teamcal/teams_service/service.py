"""
Team management.

Who may create what:
- root public team: system admins only
- public sub-team: admins of the parent team, or system admins
- private team: anyone

The creator always becomes an admin of the new team. Membership changes need
a system admin or an admin of that team.
"""

from typing import Any, Dict, List, Optional

from teamcal.activity_service.activity import log_activity
from teamcal.errors import ForbiddenError, NotFoundError, ValidationError
from teamcal.teams_service.membership import expand_team_members
from teamcal.validation import require_bool, require_uuid, require_uuid_list

NAME_MAX_LENGTH = 100


def _is_system_admin(store, user_id: str) -> bool:
    user = store.get_user(user_id)
    return bool(user and user.get("role") == "admin")


def _is_team_admin(store, team_id: str, user_id: str) -> bool:
    membership = store.get_team_membership(team_id, user_id)
    return bool(membership and membership.get("is_admin"))


def _get_team_or_404(store, team_id: str) -> Dict[str, Any]:
    team = store.get_team(team_id)
    if not team:
        raise NotFoundError("Team", team_id)
    return team


def can_manage_team(store, team_id: str, user_id: str) -> bool:
    return _is_system_admin(store, user_id) or _is_team_admin(store, team_id, user_id)


def _require_manager(store, team_id: str, actor_id: str) -> None:
    _get_team_or_404(store, team_id)
    if not can_manage_team(store, team_id, actor_id):
        raise ForbiddenError("Insufficient permissions")


def create_team(store, actor_id: str, name: Any, parent_team_id: Optional[str] = None,
                is_private: bool = False) -> Dict[str, Any]:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Name is required")
    if len(name) > NAME_MAX_LENGTH:
        raise ValidationError(f"Name must be {NAME_MAX_LENGTH} characters or less.")
    is_private = require_bool(is_private, "is_private")

    if parent_team_id:
        parent_team_id = require_uuid(parent_team_id, "parent_team_id")
        _get_team_or_404(store, parent_team_id)

    if not is_private and not parent_team_id:
        if not _is_system_admin(store, actor_id):
            raise ForbiddenError("Only system admins can create root public teams")
    elif not is_private:
        if not can_manage_team(store, parent_team_id, actor_id):
            raise ForbiddenError("You must be an admin of the parent team to create a sub-team")

    team = store.create_team(name.strip(), parent_team_id, is_private, actor_id)
    store.add_team_members(team["id"], [actor_id], True)

    log_activity(store, actor_id, "create_team", "team", team["id"],
                 {"name": team["name"], "is_private": is_private})
    return team


def list_teams(store, viewer_id: str) -> Dict[str, List[Dict[str, Any]]]:
    """Public teams, and the private teams the viewer belongs to."""
    teams = store.list_visible_teams(viewer_id)
    return {
        "public_teams": [t for t in teams if not t["is_private"]],
        "my_private_teams": [t for t in teams if t["is_private"]],
    }


def add_team_members(store, actor_id: str, team_id: str, user_ids: Any,
                     is_admin: bool = False) -> List[str]:
    """
    Add users to a team. Unknown user ids are ignored.

    Returns:
        list: ids of users that were not already members.
    """
    _require_manager(store, team_id, actor_id)
    is_admin = require_bool(is_admin, "is_admin")

    valid = store.existing_user_ids(require_uuid_list(user_ids, "user_ids"))
    if not valid:
        return []

    added = store.add_team_members(team_id, valid, is_admin)
    for uid in added:
        log_activity(store, actor_id, "add_team_member", "team", team_id,
                     {"member_id": uid, "is_admin": is_admin})
    return added


def remove_team_member(store, actor_id: str, team_id: str, user_id: Any) -> bool:
    _require_manager(store, team_id, actor_id)
    user_id = require_uuid(user_id, "user_id")
    removed = store.remove_team_member(team_id, user_id)
    if removed:
        log_activity(store, actor_id, "remove_team_member", "team", team_id, {"member_id": user_id})
    return removed


def update_member_role(store, actor_id: str, team_id: str, user_id: Any, is_admin: Any) -> None:
    _require_manager(store, team_id, actor_id)
    user_id = require_uuid(user_id, "user_id")
    if not store.set_team_member_admin(team_id, user_id, require_bool(is_admin, "is_admin")):
        raise NotFoundError("Team member", user_id)


def list_team_members(store, team_id: str) -> List[Dict[str, Any]]:
    _get_team_or_404(store, team_id)
    return store.list_team_members(team_id)


def expand_teams(store, team_ids: Any) -> List[Dict[str, str]]:
    """Everyone reachable from `team_ids`, with the team each was reached through."""
    teams = require_uuid_list(team_ids, "team_ids")
    for team_id in teams:
        _get_team_or_404(store, team_id)
    return [
        {"user_id": uid, "invited_via_team_id": tid}
        for uid, tid in expand_team_members(store, teams).items()
    ]
