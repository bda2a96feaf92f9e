"""
Groupings (event tags) and the group admins who manage their events.
"""

import re
from typing import Any, Dict, List

from teamcal.activity_service.activity import log_activity
from teamcal.errors import ForbiddenError, NotFoundError, ValidationError
from teamcal.validation import require_bool, require_uuid

COLOR_PATTERN = re.compile(r"^#[0-9a-fA-F]{6}$")
NAME_MAX_LENGTH = 100


def _is_system_admin(store, user_id: str) -> bool:
    user = store.get_user(user_id)
    return bool(user and user.get("role") == "admin")


def _get_grouping_or_404(store, grouping_id: str) -> Dict[str, Any]:
    grouping = store.get_grouping(grouping_id)
    if not grouping:
        raise NotFoundError("Grouping", grouping_id)
    return grouping


def list_groupings(store, viewer_id: str) -> List[Dict[str, Any]]:
    """Shared groupings plus the viewer's own private ones."""
    return store.list_groupings(viewer_id)


def create_grouping(store, actor_id: str, name: Any, color: Any = None,
                    private: bool = False) -> Dict[str, Any]:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Name is required")
    if len(name) > NAME_MAX_LENGTH:
        raise ValidationError(f"Name must be {NAME_MAX_LENGTH} characters or less.")
    if color is not None and (not isinstance(color, str) or not COLOR_PATTERN.match(color)):
        raise ValidationError("color must be a hex code like #1a2b3c")

    private = require_bool(private, "private")

    grouping = store.create_grouping(name.strip(), color, actor_id if private else None)
    log_activity(store, actor_id, "create_grouping", "grouping", grouping["id"], {"name": grouping["name"]})
    return grouping


def delete_grouping(store, actor_id: str, grouping_id: str) -> None:
    """
    Private groupings are deleted by their owner, shared ones by a system admin.
    """
    grouping = _get_grouping_or_404(store, grouping_id)
    if grouping.get("user_id"):
        if grouping["user_id"] != actor_id:
            # someone else's private grouping is invisible, not forbidden
            raise NotFoundError("Grouping", grouping_id)
    elif not _is_system_admin(store, actor_id):
        raise ForbiddenError("Only system admins can delete shared groupings")

    store.delete_grouping(grouping_id)
    log_activity(store, actor_id, "delete_grouping", "grouping", grouping_id)


def assign_group_admin(store, actor_id: str, grouping_id: str, target_user_id: Any) -> bool:
    """
    Make `target_user_id` an admin of a grouping. Idempotent.

    Returns:
        bool: True if the assignment is new.
    """
    if not _is_system_admin(store, actor_id):
        raise ForbiddenError("Only system admins can assign group admins")

    _get_grouping_or_404(store, grouping_id)
    target_user_id = require_uuid(target_user_id, "user_id")
    if not store.get_user(target_user_id):
        raise NotFoundError("User", target_user_id)

    added = store.add_group_admin(grouping_id, target_user_id, actor_id)
    if added:
        log_activity(store, actor_id, "assign_group_admin", "grouping", grouping_id,
                     {"user_id": target_user_id})
    return added


def remove_group_admin(store, actor_id: str, grouping_id: str, target_user_id: Any) -> bool:
    if not _is_system_admin(store, actor_id):
        raise ForbiddenError("Only system admins can remove group admins")

    target_user_id = require_uuid(target_user_id, "user_id")
    removed = store.remove_group_admin(grouping_id, target_user_id)
    if removed:
        log_activity(store, actor_id, "remove_group_admin", "grouping", grouping_id,
                     {"user_id": target_user_id})
    return removed


def list_group_admins(store, grouping_id: str) -> List[Dict[str, Any]]:
    _get_grouping_or_404(store, grouping_id)
    return store.list_group_admins(grouping_id)


def list_managed_groupings(store, user_id: str) -> List[Dict[str, Any]]:
    """Groupings the user is a group admin of, with when they were assigned."""
    return store.list_managed_groupings(user_id)
