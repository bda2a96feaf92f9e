"""
Calendar event operations.

Framework-free: each function receives a CalendarStore, the KeyVault where
content may need sealing or unsealing, and the id of the acting user. Every
mutation re-derives authorization from the store before writing anything.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from teamcal.activity_service.activity import log_activity
from teamcal.errors import ForbiddenError, NotFoundError, ValidationError
from teamcal.security.authorization import can_user_delete_event, can_user_edit_event
from teamcal.security.confidentiality import (
    OwnerKeyRing,
    read_private_fields,
    reveal_event,
    seal_event_fields,
)
from teamcal.teams_service.membership import expand_team_members
from teamcal.validation import (
    require_bool,
    require_choice,
    require_dt,
    require_uuid,
    require_uuid_list,
)

logger = logging.getLogger(__name__)

# --- CONSTANTS FOR VALIDATION ---
TITLE_MAX_LENGTH = 200
EVENT_TYPES = (
    "vacation",
    "sick_leave",
    "project_travel",
    "personal_travel",
    "personal_appointment",
    "work_meeting",
    "work_gathering",
)
ATTENDEE_STATUSES = ("pending", "accepted", "declined", "tentative")


def _check_title(title: Any) -> str:
    if not isinstance(title, str) or not title.strip():
        raise ValidationError("Title cannot be empty")
    if len(title) > TITLE_MAX_LENGTH:
        raise ValidationError(f"Title must be {TITLE_MAX_LENGTH} characters or less.")
    return title


def _check_description(description: Any) -> str:
    if description is None:
        return ""
    if not isinstance(description, str):
        raise ValidationError("Description must be a string")
    return description


def _check_times(start, end) -> None:
    if start >= end:
        raise ValidationError("start_time must be before end_time")


def _check_groupings(store, actor_id: str, raw_ids: Any) -> List[str]:
    grouping_ids = require_uuid_list(raw_ids, "grouping_ids")
    visible = store.existing_grouping_ids(grouping_ids, actor_id)
    missing = [gid for gid in grouping_ids if gid not in visible]
    if missing:
        raise ValidationError("Unknown grouping", {"grouping_ids": missing})
    return grouping_ids


def _get_event_or_404(store, event_id: str) -> Dict[str, Any]:
    event = store.get_event(event_id)
    if not event:
        raise NotFoundError("Event", event_id)
    return event


def _present(store, vault, event, viewer_id, key_ring=None) -> Dict[str, Any]:
    shown = reveal_event(store, vault, event, viewer_id, key_ring)
    shown["grouping_ids"] = store.get_event_grouping_ids(event["id"])
    return shown


# --- WRITE PATHS ---

def create_event(store, vault, actor_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Create an event owned by `actor_id`.

    Expects:
        title (str), description (str, optional), start_time, end_time (ISO-8601),
        event_type (str), is_private (bool, default False),
        is_out_of_office (bool, default False), grouping_ids (list, optional).

    Returns:
        dict: The stored event as its owner sees it.

    Raises:
        ValidationError: Bad or inconsistent input.
        KeyUnavailableError: Private event but the owner's key is unusable.
    """
    if not data.get("title") or not data.get("start_time") or not data.get("end_time"):
        raise ValidationError("title, start_time, and end_time are required")

    title = _check_title(data["title"])
    description = _check_description(data.get("description"))
    start = require_dt(data["start_time"], "start_time")
    end = require_dt(data["end_time"], "end_time")
    _check_times(start, end)
    event_type = require_choice(data.get("event_type"), EVENT_TYPES, "event_type")
    is_private = require_bool(data.get("is_private", False), "is_private")
    is_out_of_office = require_bool(data.get("is_out_of_office", False), "is_out_of_office")
    grouping_ids = _check_groupings(store, actor_id, data.get("grouping_ids"))

    ring = OwnerKeyRing(store, vault)
    sealed = seal_event_fields(store, vault, actor_id, title, description, is_private, ring)

    event = store.insert_event({
        "user_id": actor_id,
        "title": sealed.title,
        "description": sealed.description,
        "start_time": start,
        "end_time": end,
        "is_private": is_private,
        "is_out_of_office": is_out_of_office,
        "event_type": event_type,
        "encrypted_data": sealed.encrypted_data,
    })
    if grouping_ids:
        store.set_event_groupings(event["id"], grouping_ids)

    log_activity(store, actor_id, "create_event", "event", event["id"],
                 {"is_private": is_private, "event_type": event_type})
    return _present(store, vault, event, actor_id, ring)


def update_event(store, vault, actor_id: str, event_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Update an event the actor may edit.

    The sealed payload of a private event is always rewritten whole: fields
    not supplied are filled in from the owner-decrypted current content.
    Only the owner may change `is_private`; making an event private drops its
    explicit grants and attendee list, since private events cannot be shared.

    Raises:
        NotFoundError, ForbiddenError, ValidationError, KeyUnavailableError,
        IntegrityError / FormatError (current private content unreadable and
        not fully replaced by the update).
    """
    if not data:
        raise ValidationError("No update data provided")

    event = _get_event_or_404(store, event_id)
    if not can_user_edit_event(store, event_id, actor_id):
        raise ForbiddenError("No permission to edit this event")

    is_private = event["is_private"]
    if "is_private" in data:
        is_private = require_bool(data["is_private"], "is_private")
        if is_private != event["is_private"] and actor_id != event["user_id"]:
            raise ForbiddenError("Only the event owner can change event privacy")

    changes: Dict[str, Any] = {}

    start = require_dt(data["start_time"], "start_time") if "start_time" in data else event["start_time"]
    end = require_dt(data["end_time"], "end_time") if "end_time" in data else event["end_time"]
    _check_times(start, end)
    if "start_time" in data:
        changes["start_time"] = start
    if "end_time" in data:
        changes["end_time"] = end

    if "event_type" in data:
        changes["event_type"] = require_choice(data["event_type"], EVENT_TYPES, "event_type")
    if "is_out_of_office" in data:
        changes["is_out_of_office"] = require_bool(data["is_out_of_office"], "is_out_of_office")

    grouping_ids = None
    if "grouping_ids" in data:
        # re-tagging can make the actor a group admin of the event, which carries delete
        if not can_user_delete_event(store, event_id, actor_id):
            raise ForbiddenError("No permission to change this event's groupings")
        grouping_ids = _check_groupings(store, actor_id, data["grouping_ids"])

    content_changed = "title" in data or "description" in data or is_private != event["is_private"]
    if content_changed:
        ring = OwnerKeyRing(store, vault)
        if not event["is_private"]:
            current = {"title": event["title"], "description": event["description"] or ""}
        elif "title" in data and "description" in data:
            current = {}
        else:
            current = read_private_fields(event, ring)

        title = _check_title(data["title"] if "title" in data else current["title"])
        description = _check_description(data["description"] if "description" in data else current["description"])

        sealed = seal_event_fields(store, vault, event["user_id"], title, description, is_private, ring)
        changes.update(
            title=sealed.title,
            description=sealed.description,
            encrypted_data=sealed.encrypted_data,
            is_private=is_private,
        )

    if is_private and not event["is_private"]:
        store.clear_event_sharing(event_id)

    updated = store.update_event(event_id, changes) if changes else event
    if grouping_ids is not None:
        store.set_event_groupings(event_id, grouping_ids)

    log_activity(store, actor_id, "update_event", "event", event_id, {"fields": sorted(data)})
    return _present(store, vault, updated, actor_id)


def delete_event(store, actor_id: str, event_id: str) -> None:
    _get_event_or_404(store, event_id)
    if not can_user_delete_event(store, event_id, actor_id):
        raise ForbiddenError("No permission to delete this event")

    store.delete_event(event_id)
    log_activity(store, actor_id, "delete_event", "event", event_id)


# --- READ PATHS ---

def get_events(store, vault, viewer_id: Optional[str], start, end, my_stuff_only: bool = False,
               grouping_ids: Optional[Iterable[str]] = None,
               filter_user_id: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Events lying within [start, end], shaped for `viewer_id`.

    Private events belonging to the viewer come back decrypted; everyone
    else's private events carry placeholder content.
    """
    _check_times(start, end)

    owner_id = filter_user_id
    if my_stuff_only and viewer_id:
        if owner_id and owner_id != viewer_id:
            return []
        owner_id = viewer_id

    rows = store.find_events(start, end, owner_id=owner_id, grouping_ids=list(grouping_ids or []))

    # one ring per call: each owner key is unveiled at most once per request
    ring = OwnerKeyRing(store, vault)
    return [_present(store, vault, row, viewer_id, ring) for row in rows]


def get_events_with_permissions(store, vault, viewer_id: Optional[str], start, end,
                                **options) -> List[Dict[str, Any]]:
    """`get_events` plus the viewer's capability flags for each event."""
    events = get_events(store, vault, viewer_id, start, end, **options)

    for event in events:
        if viewer_id is None:
            event["permissions"] = {"can_edit": False, "can_delete": False, "is_owner": False}
            continue
        event["permissions"] = dict(
            event_capabilities(store, event["id"], viewer_id),
            is_owner=event["user_id"] == viewer_id,
        )
    return events


def event_capabilities(store, event_id: str, viewer_id: Optional[str]) -> Dict[str, bool]:
    return {
        "can_edit": can_user_edit_event(store, event_id, viewer_id),
        "can_delete": can_user_delete_event(store, event_id, viewer_id),
    }


def get_event(store, vault, viewer_id: Optional[str], event_id: str) -> Dict[str, Any]:
    event = _get_event_or_404(store, event_id)
    shown = _present(store, vault, event, viewer_id)
    shown["permissions"] = dict(
        event_capabilities(store, event_id, viewer_id),
        is_owner=viewer_id is not None and event["user_id"] == viewer_id,
    )
    return shown


def get_whos_out(store, start, end) -> List[Dict[str, Any]]:
    """
    Out-of-office time per person overlapping [start, end].

    Built from clear columns only, so private events are counted without
    ever being decrypted and without exposing their content.
    """
    _check_times(start, end)

    people: Dict[str, Dict[str, Any]] = {}
    for row in store.find_out_of_office(start, end):
        person = people.setdefault(row["user_id"], {
            "user_id": row["user_id"],
            "name": row.get("owner_name"),
            "absences": [],
        })
        person["absences"].append({
            "event_id": row["id"],
            "start_time": row["start_time"],
            "end_time": row["end_time"],
            "event_type": row["event_type"],
            "is_private": row["is_private"],
        })
    return list(people.values())


# --- EXPLICIT GRANTS ---

def _require_owner(event: Dict[str, Any], actor_id: str, action: str) -> None:
    if event["user_id"] != actor_id:
        raise ForbiddenError(f"Only the event owner can {action} permissions")


def grant_event_permission(store, actor_id: str, event_id: str, target_user_id: str,
                           can_edit: bool = False, can_delete: bool = False) -> Dict[str, Any]:
    """
    Give `target_user_id` edit and/or delete rights on a public event.

    Raises:
        ForbiddenError: The actor is not the owner, or the event is private.
    """
    event = _get_event_or_404(store, event_id)
    _require_owner(event, actor_id, "grant")
    if event["is_private"]:
        raise ForbiddenError("Cannot grant permissions on private events")

    target_user_id = require_uuid(target_user_id, "user_id")
    if target_user_id == actor_id:
        raise ValidationError("The owner already has full rights on this event")
    if not store.get_user(target_user_id):
        raise NotFoundError("User", target_user_id)

    grant = store.upsert_event_permission(
        event_id, target_user_id,
        require_bool(can_edit, "can_edit"),
        require_bool(can_delete, "can_delete"),
        actor_id,
    )
    log_activity(store, actor_id, "grant_event_permission", "event", event_id,
                 {"user_id": target_user_id, "can_edit": can_edit, "can_delete": can_delete})
    return grant


def revoke_event_permission(store, actor_id: str, event_id: str, target_user_id: str) -> bool:
    event = _get_event_or_404(store, event_id)
    _require_owner(event, actor_id, "revoke")

    target_user_id = require_uuid(target_user_id, "user_id")
    removed = store.delete_event_permission(event_id, target_user_id)
    if removed:
        log_activity(store, actor_id, "revoke_event_permission", "event", event_id,
                     {"user_id": target_user_id})
    return removed


def list_event_permissions(store, actor_id: str, event_id: str) -> List[Dict[str, Any]]:
    event = _get_event_or_404(store, event_id)
    actor = store.get_user(actor_id)
    if event["user_id"] != actor_id and not (actor and actor.get("role") == "admin"):
        raise ForbiddenError("Only the event owner can view permissions")
    return store.list_event_permissions(event_id)


# --- ATTENDEES ---

def assign_attendees(store, actor_id: str, event_id: str, user_ids: Any = None,
                     team_ids: Any = None) -> Dict[str, Any]:
    """
    Invite people to a public event, directly and through teams.

    Team ids are expanded through the team hierarchy. Direct invitations carry
    no team attribution and take precedence; the owner is never invited to
    their own event; existing invitations are left untouched.

    Returns:
        dict: {"added": [user ids newly invited], "skipped": [unknown user ids]}
    """
    event = _get_event_or_404(store, event_id)
    if not can_user_edit_event(store, event_id, actor_id):
        raise ForbiddenError("No permission to edit this event")
    if event["is_private"]:
        raise ForbiddenError("Private events cannot have attendees")

    requested = require_uuid_list(user_ids, "user_ids")
    teams = require_uuid_list(team_ids, "team_ids")
    for team_id in teams:
        if not store.get_team(team_id):
            raise NotFoundError("Team", team_id)

    direct = store.existing_user_ids(requested)
    skipped = [uid for uid in requested if uid not in direct]

    invitations: Dict[str, Optional[str]] = {uid: None for uid in direct}
    for uid, team_id in expand_team_members(store, teams).items():
        invitations.setdefault(uid, team_id)
    invitations.pop(event["user_id"], None)

    added = store.add_attendees(event_id, list(invitations.items()))
    if added:
        log_activity(store, actor_id, "assign_attendees", "event", event_id,
                     {"added": len(added), "team_ids": teams})
    return {"added": added, "skipped": skipped}


def respond_to_event(store, actor_id: str, event_id: str, status: Any) -> str:
    status = require_choice(status, ATTENDEE_STATUSES, "status")
    if not store.get_attendee(event_id, actor_id):
        raise NotFoundError("Invitation", event_id)
    store.set_attendee_status(event_id, actor_id, status)
    return status


def list_attendees(store, event_id: str) -> List[Dict[str, Any]]:
    event = _get_event_or_404(store, event_id)
    if event["is_private"]:
        return []
    return store.list_attendees(event_id)
