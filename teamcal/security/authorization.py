"""
Edit/delete rights on calendar events.

Rights are decided by an ordered list of rules. Each rule either returns a
Decision or None ("not my case"); the first Decision wins. Order:

    1. event missing            -> denied
    2. private event            -> allowed for the owner only, nothing else applies
    3. owner                    -> allowed
    4. system admin             -> allowed
    5. admin of any grouping the event is tagged with -> allowed
    6. explicit grant with the capability flag set     -> allowed
    7. otherwise                -> denied

Nothing is cached: every call reads the current state from the store.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple


class Capability(str, Enum):
    EDIT = "can_edit"
    DELETE = "can_delete"


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str

    def __bool__(self) -> bool:
        return self.allowed


def allow(reason: str) -> Decision:
    return Decision(True, reason)


def deny(reason: str) -> Decision:
    return Decision(False, reason)


@dataclass
class AccessRequest:
    """One evaluation; lookups are fetched on first use and reused by later rules."""

    store: Any
    event_id: str
    user_id: str
    capability: Capability
    _cache: Dict[str, Any] = field(default_factory=dict, repr=False)

    def _memo(self, key: str, load: Callable[[], Any]) -> Any:
        if key not in self._cache:
            self._cache[key] = load()
        return self._cache[key]

    @property
    def event(self) -> Optional[Dict[str, Any]]:
        return self._memo("event", lambda: self.store.get_event(self.event_id))

    @property
    def viewer(self) -> Optional[Dict[str, Any]]:
        return self._memo("viewer", lambda: self.store.get_user(self.user_id))

    @property
    def grouping_ids(self):
        return self._memo("groupings", lambda: self.store.get_event_grouping_ids(self.event_id))


Rule = Callable[[AccessRequest], Optional[Decision]]


def event_exists(req: AccessRequest) -> Optional[Decision]:
    if req.event is None:
        return deny("event_not_found")
    return None


def private_owner_only(req: AccessRequest) -> Optional[Decision]:
    if not req.event["is_private"]:
        return None
    if req.event["user_id"] == req.user_id:
        return allow("private_owner")
    return deny("private_not_owner")


def owner(req: AccessRequest) -> Optional[Decision]:
    if req.event["user_id"] == req.user_id:
        return allow("owner")
    return None


def system_admin(req: AccessRequest) -> Optional[Decision]:
    if req.viewer and req.viewer.get("role") == "admin":
        return allow("system_admin")
    return None


def group_admin(req: AccessRequest) -> Optional[Decision]:
    groupings = req.grouping_ids
    if groupings and req.store.is_group_admin_of_any(req.user_id, groupings):
        return allow("group_admin")
    return None


def explicit_grant(req: AccessRequest) -> Optional[Decision]:
    grant = req.store.get_event_permission(req.event_id, req.user_id)
    if grant and grant.get(req.capability.value):
        return allow("explicit_grant")
    return None


RULES: Tuple[Rule, ...] = (
    event_exists,
    private_owner_only,
    owner,
    system_admin,
    group_admin,
    explicit_grant,
)


def resolve(store, event_id: str, user_id: Optional[str], capability: Capability,
            rules: Tuple[Rule, ...] = RULES) -> Decision:
    """
    Evaluate `rules` in order for one (event, user, capability).

    Args:
        store: Anything exposing the CalendarStore lookup methods.
        event_id (str): Event being acted on.
        user_id (str): Acting user; None always yields a denial.
        capability (Capability): EDIT or DELETE.

    Returns:
        Decision: `allowed` plus the name of the rule that decided.
    """
    if not user_id:
        return deny("anonymous")

    req = AccessRequest(store=store, event_id=event_id, user_id=user_id, capability=capability)
    for rule in rules:
        decision = rule(req)
        if decision is not None:
            return decision
    return deny("no_matching_rule")


def can_user_edit_event(store, event_id: str, user_id: Optional[str]) -> bool:
    return resolve(store, event_id, user_id, Capability.EDIT).allowed


def can_user_delete_event(store, event_id: str, user_id: Optional[str]) -> bool:
    return resolve(store, event_id, user_id, Capability.DELETE).allowed
