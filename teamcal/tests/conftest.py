import os

# Ensure JWT_SECRET is set before anything imports auth_service.utils
os.environ.setdefault("JWT_SECRET", "test_secret")

import itertools
import uuid
from contextlib import contextmanager, nullcontext
from datetime import datetime, timedelta, timezone

import psycopg2.errors
import pytest

from teamcal.auth_service.utils import create_token
from teamcal.gateway.server import create_app
from teamcal.security.keys import KeyVault

ROUTE_MODULES = [
    "teamcal.auth_service.routes",
    "teamcal.events_service.routes",
    "teamcal.groupings_service.routes",
    "teamcal.teams_service.routes",
    "teamcal.activity_service.routes",
]

BASE_TIME = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)


def at(hours: float) -> datetime:
    """A timestamp `hours` after a fixed Monday morning."""
    return BASE_TIME + timedelta(hours=hours)


class InMemoryStore:
    """
    Dict-backed stand-in for CalendarStore with the same method surface.

    Seeding helpers (`add_user`, `add_event`, ...) are test-only conveniences.
    """

    def __init__(self):
        self.users = {}
        self.events = {}
        self.event_groupings = {}
        self.groupings = {}
        self.group_admins = {}
        self.permissions = {}
        self.teams = {}
        self.team_members = {}
        self.attendees = {}
        self.activity = []
        self._clock = itertools.count()

    @staticmethod
    def _new_id() -> str:
        return str(uuid.uuid4())

    def _tick(self) -> datetime:
        return BASE_TIME + timedelta(seconds=next(self._clock))

    @contextmanager
    def savepoint(self, name):
        yield

    # --- seeding ---

    def add_user(self, name="User", role="user", vault=None, email=None, envelope=None):
        if envelope is None and vault is not None:
            envelope = vault.envelope(KeyVault.generate_user_key())
        user = self.create_user(
            email or f"{name.lower().replace(' ', '.')}.{len(self.users)}@example.com",
            "argon2-hash", name, envelope, role,
        )
        return user["id"]

    def add_event(self, owner_id, title="Standup", start=None, end=None, **extra):
        fields = {
            "user_id": owner_id,
            "title": title,
            "description": extra.pop("description", ""),
            "start_time": start or at(1),
            "end_time": end or at(2),
            "is_private": extra.pop("is_private", False),
            "is_out_of_office": extra.pop("is_out_of_office", False),
            "event_type": extra.pop("event_type", "work_meeting"),
            "encrypted_data": extra.pop("encrypted_data", None),
        }
        event = self.insert_event(fields)
        if extra.get("grouping_ids"):
            self.set_event_groupings(event["id"], extra["grouping_ids"])
        return event["id"]

    def add_team(self, name, parent_team_id=None, is_private=False, created_by=None, members=()):
        team = self.create_team(name, parent_team_id, is_private, created_by)
        self.add_team_members(team["id"], list(members), False)
        return team["id"]

    # --- users ---

    def get_user(self, user_id):
        user = self.users.get(user_id)
        if not user:
            return None
        return {k: v for k, v in user.items() if k != "password_hash"}

    def get_user_credentials(self, email):
        for user in self.users.values():
            if user["email"] == email:
                return {k: user[k] for k in ("id", "password_hash", "role", "name")}
        return None

    def create_user(self, email, password_hash, name, encrypted_private_key, role="user"):
        if any(u["email"] == email for u in self.users.values()):
            raise psycopg2.errors.UniqueViolation("duplicate key value violates unique constraint")
        user_id = self._new_id()
        self.users[user_id] = {
            "id": user_id,
            "email": email,
            "name": name,
            "role": role,
            "encrypted_private_key": encrypted_private_key,
            "password_hash": password_hash,
            "email_verified": False,
            "created_at": self._tick(),
        }
        return self.get_user(user_id)

    def list_users(self):
        users = sorted(self.users.values(), key=lambda u: (u["name"], u["id"]))
        return [{k: u[k] for k in ("id", "email", "name", "role", "email_verified", "created_at")}
                for u in users]

    def set_user_role(self, user_id, role):
        if user_id not in self.users:
            return False
        self.users[user_id]["role"] = role
        return True

    def delete_user(self, user_id):
        if user_id not in self.users:
            return False
        del self.users[user_id]
        for event_id in [e["id"] for e in self.events.values() if e["user_id"] == user_id]:
            self.delete_event(event_id)
        for grouping_id in [g["id"] for g in self.groupings.values() if g["user_id"] == user_id]:
            self.delete_grouping(grouping_id)
        for rows in (self.group_admins, self.permissions, self.team_members, self.attendees):
            for key in [k for k in rows if k[1] == user_id]:
                del rows[key]
        # ON DELETE SET NULL columns
        for rows, column in ((self.group_admins, "assigned_by"), (self.permissions, "granted_by"),
                             (self.teams, "created_by")):
            for row in rows.values():
                if row.get(column) == user_id:
                    row[column] = None
        return True

    def get_password_hash(self, user_id):
        user = self.users.get(user_id)
        return user["password_hash"] if user else None

    def set_user_password(self, user_id, password_hash):
        if user_id not in self.users:
            return False
        self.users[user_id]["password_hash"] = password_hash
        return True

    def update_user_profile(self, user_id, name, email):
        user = self.users.get(user_id)
        if not user:
            return None
        if any(u["email"] == email and uid != user_id for uid, u in self.users.items()):
            raise psycopg2.errors.UniqueViolation("duplicate key value violates unique constraint")
        if user["email"] != email:
            user["email_verified"] = False
        user.update(name=name, email=email)
        return self.get_user(user_id)

    def existing_user_ids(self, user_ids):
        return [uid for uid in user_ids if uid in self.users]

    # --- events ---

    def get_event(self, event_id):
        event = self.events.get(event_id)
        return dict(event) if event else None

    def insert_event(self, fields):
        event_id = self._new_id()
        now = self._tick()
        self.events[event_id] = dict(fields, id=event_id, created_at=now, updated_at=now)
        return self.get_event(event_id)

    def update_event(self, event_id, fields):
        if event_id not in self.events:
            return None
        self.events[event_id].update(fields, updated_at=self._tick())
        return self.get_event(event_id)

    def delete_event(self, event_id):
        if self.events.pop(event_id, None) is None:
            return False
        self.event_groupings.pop(event_id, None)
        self.clear_event_sharing(event_id)
        return True

    def _with_owner(self, event):
        owner = self.users.get(event["user_id"])
        return dict(event, owner_name=owner["name"] if owner else None)

    def find_events(self, start, end, owner_id=None, grouping_ids=None):
        rows = []
        for event in self.events.values():
            if not (event["start_time"] >= start and event["end_time"] <= end):
                continue
            if owner_id and event["user_id"] != owner_id:
                continue
            if grouping_ids and not set(grouping_ids) & set(self.event_groupings.get(event["id"], [])):
                continue
            rows.append(self._with_owner(event))
        return sorted(rows, key=lambda e: (e["start_time"], e["id"]))

    def find_out_of_office(self, start, end):
        rows = [
            self._with_owner(e) for e in self.events.values()
            if e["is_out_of_office"] and e["start_time"] < end and e["end_time"] > start
        ]
        return sorted(rows, key=lambda e: (e["owner_name"] or "", e["start_time"]))

    def get_event_grouping_ids(self, event_id):
        return sorted(self.event_groupings.get(event_id, []))

    def set_event_groupings(self, event_id, grouping_ids):
        self.event_groupings[event_id] = list(dict.fromkeys(grouping_ids))

    # --- groupings ---

    def get_grouping(self, grouping_id):
        grouping = self.groupings.get(grouping_id)
        return dict(grouping) if grouping else None

    def existing_grouping_ids(self, grouping_ids, viewer_id):
        visible = {g["id"] for g in self.list_groupings(viewer_id)}
        return [gid for gid in grouping_ids if gid in visible]

    def list_groupings(self, viewer_id):
        rows = [dict(g) for g in self.groupings.values()
                if g["user_id"] is None or g["user_id"] == viewer_id]
        return sorted(rows, key=lambda g: (g["name"], g["id"]))

    def create_grouping(self, name, color, user_id):
        grouping_id = self._new_id()
        self.groupings[grouping_id] = {
            "id": grouping_id, "name": name, "color": color,
            "user_id": user_id, "created_at": self._tick(),
        }
        return self.get_grouping(grouping_id)

    def delete_grouping(self, grouping_id):
        if self.groupings.pop(grouping_id, None) is None:
            return False
        for event_id, gids in self.event_groupings.items():
            self.event_groupings[event_id] = [g for g in gids if g != grouping_id]
        for key in [k for k in self.group_admins if k[0] == grouping_id]:
            del self.group_admins[key]
        return True

    def is_group_admin_of_any(self, user_id, grouping_ids):
        return any((gid, user_id) in self.group_admins for gid in grouping_ids)

    def add_group_admin(self, grouping_id, user_id, assigned_by):
        if (grouping_id, user_id) in self.group_admins:
            return False
        self.group_admins[(grouping_id, user_id)] = {
            "grouping_id": grouping_id, "user_id": user_id,
            "assigned_by": assigned_by, "assigned_at": self._tick(),
        }
        return True

    def remove_group_admin(self, grouping_id, user_id):
        return self.group_admins.pop((grouping_id, user_id), None) is not None

    def list_group_admins(self, grouping_id):
        rows = []
        for (gid, uid), row in self.group_admins.items():
            if gid == grouping_id:
                user = self.users[uid]
                rows.append(dict(row, name=user["name"], email=user["email"]))
        return sorted(rows, key=lambda r: r["name"])

    def list_managed_groupings(self, user_id):
        rows = [dict(self.groupings[gid], assigned_at=row["assigned_at"])
                for (gid, uid), row in self.group_admins.items() if uid == user_id]
        return sorted(rows, key=lambda g: (g["name"], g["id"]))

    # --- explicit grants ---

    def get_event_permission(self, event_id, user_id):
        grant = self.permissions.get((event_id, user_id))
        return dict(grant) if grant else None

    def upsert_event_permission(self, event_id, user_id, can_edit, can_delete, granted_by):
        existing = self.permissions.get((event_id, user_id))
        self.permissions[(event_id, user_id)] = {
            "event_id": event_id, "user_id": user_id,
            "can_edit": can_edit, "can_delete": can_delete,
            "granted_by": existing["granted_by"] if existing else granted_by,
            "granted_at": existing["granted_at"] if existing else self._tick(),
        }
        return self.get_event_permission(event_id, user_id)

    def delete_event_permission(self, event_id, user_id):
        return self.permissions.pop((event_id, user_id), None) is not None

    def list_event_permissions(self, event_id):
        rows = []
        for (eid, uid), row in self.permissions.items():
            if eid == event_id:
                user = self.users[uid]
                rows.append(dict(row, name=user["name"], email=user["email"]))
        return sorted(rows, key=lambda r: r["name"])

    def clear_event_sharing(self, event_id):
        for key in [k for k in self.permissions if k[0] == event_id]:
            del self.permissions[key]
        for key in [k for k in self.attendees if k[0] == event_id]:
            del self.attendees[key]

    # --- teams ---

    def get_team(self, team_id):
        team = self.teams.get(team_id)
        return dict(team) if team else None

    def create_team(self, name, parent_team_id, is_private, created_by):
        team_id = self._new_id()
        self.teams[team_id] = {
            "id": team_id, "name": name, "parent_team_id": parent_team_id,
            "is_private": is_private, "created_by": created_by, "created_at": self._tick(),
        }
        return self.get_team(team_id)

    def list_visible_teams(self, viewer_id):
        rows = [dict(t) for t in self.teams.values()
                if not t["is_private"] or (t["id"], viewer_id) in self.team_members]
        return sorted(rows, key=lambda t: (t["name"], t["id"]))

    def get_child_team_ids(self, team_id):
        children = [t for t in self.teams.values() if t["parent_team_id"] == team_id]
        return [t["id"] for t in sorted(children, key=lambda t: (t["name"], t["id"]))]

    def get_team_member_ids(self, team_id):
        return [uid for (tid, uid) in self.team_members if tid == team_id]

    def get_team_membership(self, team_id, user_id):
        membership = self.team_members.get((team_id, user_id))
        return dict(membership) if membership else None

    def add_team_members(self, team_id, user_ids, is_admin):
        added = []
        for uid in user_ids:
            if (team_id, uid) in self.team_members:
                continue
            self.team_members[(team_id, uid)] = {
                "team_id": team_id, "user_id": uid,
                "is_admin": is_admin, "joined_at": self._tick(),
            }
            added.append(uid)
        return added

    def remove_team_member(self, team_id, user_id):
        return self.team_members.pop((team_id, user_id), None) is not None

    def set_team_member_admin(self, team_id, user_id, is_admin):
        membership = self.team_members.get((team_id, user_id))
        if not membership:
            return False
        membership["is_admin"] = is_admin
        return True

    def list_team_members(self, team_id):
        rows = []
        for (tid, uid), row in self.team_members.items():
            if tid == team_id:
                user = self.users[uid]
                rows.append({"user_id": uid, "name": user["name"], "email": user["email"],
                             "is_admin": row["is_admin"], "joined_at": row["joined_at"]})
        return sorted(rows, key=lambda r: r["name"])

    # --- attendees ---

    def add_attendees(self, event_id, invitations):
        added = []
        for user_id, team_id in invitations:
            if (event_id, user_id) in self.attendees:
                continue
            self.attendees[(event_id, user_id)] = {
                "event_id": event_id, "user_id": user_id, "status": "pending",
                "invited_via_team_id": team_id, "invited_at": self._tick(),
            }
            added.append(user_id)
        return added

    def get_attendee(self, event_id, user_id):
        attendee = self.attendees.get((event_id, user_id))
        return dict(attendee) if attendee else None

    def set_attendee_status(self, event_id, user_id, status):
        attendee = self.attendees.get((event_id, user_id))
        if not attendee:
            return False
        attendee["status"] = status
        return True

    def list_attendees(self, event_id):
        rows = []
        for (eid, uid), row in self.attendees.items():
            if eid == event_id:
                user = self.users[uid]
                rows.append({"user_id": uid, "name": user["name"], "email": user["email"],
                             "status": row["status"], "invited_via_team_id": row["invited_via_team_id"],
                             "invited_at": row["invited_at"]})
        return sorted(rows, key=lambda r: r["name"])

    # --- activity log ---

    def insert_activity(self, user_id, action, entity_type, entity_id, details):
        self.activity.append({
            "id": self._new_id(), "user_id": user_id, "action": action,
            "entity_type": entity_type, "entity_id": entity_id,
            "details": details, "created_at": self._tick(),
        })

    def list_activity(self, user_id=None, action=None, limit=50):
        rows = [dict(a) for a in reversed(self.activity)
                if (not user_id or a["user_id"] == user_id) and (not action or a["action"] == action)]
        return rows[:limit]


@pytest.fixture
def vault():
    return KeyVault(KeyVault.generate_user_key())


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def app(vault):
    return create_app(key_vault=vault, testing=True)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def routes_store(mocker, store):
    """
    Points every blueprint's `open_store` at the in-memory store.
    """
    for module in ROUTE_MODULES:
        mocker.patch(f"{module}.open_store", side_effect=lambda: nullcontext(store))
    return store


@pytest.fixture
def auth_header():
    def _header(user_id, role="user"):
        return {"Authorization": f"Bearer {create_token(user_id, role)}"}
    return _header
