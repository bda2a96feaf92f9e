"""
Team hierarchy expansion for attendee invitations.

Teams form a tree through `parent_team_id`. Expanding a set of teams yields
every member of those teams and of all their descendants.
"""

import logging
from collections import OrderedDict, deque
from typing import Iterable

logger = logging.getLogger(__name__)


def expand_team_members(store, root_team_ids: Iterable[str]) -> "OrderedDict[str, str]":
    """
    Collect the members of `root_team_ids` and every team below them.

    Breadth-first over the hierarchy, so each user is attributed to the
    shallowest team they were found in. Teams at the same depth are visited
    in the order the roots were given, then children by name. The team
    attribution is informational only and must not drive access decisions.

    A team is visited at most once, which also stops the walk if the stored
    hierarchy contains a cycle.

    Returns:
        OrderedDict: user_id -> id of the team the user was reached through.
    """
    members: "OrderedDict[str, str]" = OrderedDict()
    seen = set()
    queue = deque()

    for team_id in root_team_ids:
        if team_id not in seen:
            seen.add(team_id)
            queue.append(team_id)

    while queue:
        team_id = queue.popleft()

        for user_id in store.get_team_member_ids(team_id):
            members.setdefault(user_id, team_id)

        for child_id in store.get_child_team_ids(team_id):
            if child_id in seen:
                logger.debug("Team %s already visited; skipping", child_id)
                continue
            seen.add(child_id)
            queue.append(child_id)

    return members
