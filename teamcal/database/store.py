"""
SQL access for the calendar core.

`CalendarStore` wraps an open psycopg2 cursor. Services receive a store rather
than a cursor so every statement the core relies on lives in one place, and
tests can hand the services an in-memory double with the same methods.

All identifiers are returned as strings; rows are plain dicts.
"""

import uuid
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from teamcal.database.db_connection import get_db

Row = Dict[str, Any]

USER_COLUMNS = """
    id, email, name, role, encrypted_private_key, email_verified, created_at
"""

EVENT_COLUMNS = """
    e.id, e.user_id, e.title, e.description, e.start_time, e.end_time,
    e.is_private, e.is_out_of_office, e.event_type, e.encrypted_data,
    e.created_at, e.updated_at
"""


def _row(raw) -> Optional[Row]:
    if raw is None:
        return None
    return {k: (str(v) if isinstance(v, uuid.UUID) else v) for k, v in dict(raw).items()}


def _rows(raws) -> List[Row]:
    return [_row(r) for r in raws]


class CalendarStore:
    """Row-level persistence for users, events, groupings, grants and teams."""

    def __init__(self, cursor):
        self.cur = cursor

    def _one(self, sql: str, params: Sequence[Any] = ()) -> Optional[Row]:
        self.cur.execute(sql, params)
        return _row(self.cur.fetchone())

    def _all(self, sql: str, params: Sequence[Any] = ()) -> List[Row]:
        self.cur.execute(sql, params)
        return _rows(self.cur.fetchall())

    def _count(self, sql: str, params: Sequence[Any] = ()) -> int:
        self.cur.execute(sql, params)
        return self.cur.rowcount

    @contextmanager
    def savepoint(self, name: str) -> Iterator[None]:
        """Run a block whose failure must not abort the surrounding transaction."""
        self.cur.execute(f"SAVEPOINT {name};")
        try:
            yield
        except Exception:
            self.cur.execute(f"ROLLBACK TO SAVEPOINT {name};")
            raise
        else:
            self.cur.execute(f"RELEASE SAVEPOINT {name};")

    # --- USERS ---

    def get_user(self, user_id: str) -> Optional[Row]:
        return self._one(f"SELECT {USER_COLUMNS} FROM users WHERE id = %s;", (user_id,))

    def get_user_credentials(self, email: str) -> Optional[Row]:
        return self._one(
            "SELECT id, password_hash, role, name FROM users WHERE email = %s;",
            (email,),
        )

    def create_user(self, email: str, password_hash: str, name: str,
                    encrypted_private_key: str, role: str = "user") -> Row:
        return self._one(
            f"""
            INSERT INTO users (email, password_hash, name, role, encrypted_private_key)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING {USER_COLUMNS};
            """,
            (email, password_hash, name, role, encrypted_private_key),
        )

    def list_users(self) -> List[Row]:
        return self._all(
            "SELECT id, email, name, role, email_verified, created_at FROM users ORDER BY name, id;"
        )

    def set_user_role(self, user_id: str, role: str) -> bool:
        return self._count(
            "UPDATE users SET role = %s, updated_at = NOW() WHERE id = %s;", (role, user_id)
        ) > 0

    def get_password_hash(self, user_id: str) -> Optional[str]:
        row = self._one("SELECT password_hash FROM users WHERE id = %s;", (user_id,))
        return row["password_hash"] if row else None

    def set_user_password(self, user_id: str, password_hash: str) -> bool:
        return self._count(
            "UPDATE users SET password_hash = %s, updated_at = NOW() WHERE id = %s;",
            (password_hash, user_id),
        ) > 0

    def update_user_profile(self, user_id: str, name: str, email: str) -> Optional[Row]:
        """A changed email is no longer verified."""
        return self._one(
            f"""
            UPDATE users
            SET name = %s,
                email_verified = CASE WHEN email = %s THEN email_verified ELSE FALSE END,
                email = %s,
                updated_at = NOW()
            WHERE id = %s
            RETURNING {USER_COLUMNS};
            """,
            (name, email, email, user_id),
        )

    def delete_user(self, user_id: str) -> bool:
        return self._count("DELETE FROM users WHERE id = %s;", (user_id,)) > 0

    def existing_user_ids(self, user_ids: Iterable[str]) -> List[str]:
        ids = list(user_ids)
        if not ids:
            return []
        rows = self._all("SELECT id FROM users WHERE id = ANY(%s::uuid[]);", (ids,))
        found = {r["id"] for r in rows}
        return [uid for uid in ids if uid in found]

    # --- EVENTS ---

    def get_event(self, event_id: str) -> Optional[Row]:
        return self._one(f"SELECT {EVENT_COLUMNS} FROM events e WHERE e.id = %s;", (event_id,))

    def insert_event(self, fields: Row) -> Row:
        columns = list(fields)
        placeholders = ", ".join(["%s"] * len(columns))
        return self._one(
            f"""
            INSERT INTO events AS e ({", ".join(columns)})
            VALUES ({placeholders})
            RETURNING {EVENT_COLUMNS};
            """,
            [fields[c] for c in columns],
        )

    def update_event(self, event_id: str, fields: Row) -> Optional[Row]:
        set_clause = ", ".join(f"{k} = %s" for k in fields)
        set_clause += ", updated_at = NOW()"
        return self._one(
            f"UPDATE events AS e SET {set_clause} WHERE e.id = %s RETURNING {EVENT_COLUMNS};",
            list(fields.values()) + [event_id],
        )

    def delete_event(self, event_id: str) -> bool:
        return self._count("DELETE FROM events WHERE id = %s;", (event_id,)) > 0

    def find_events(self, start, end, owner_id: Optional[str] = None,
                    grouping_ids: Optional[Sequence[str]] = None) -> List[Row]:
        """Events lying entirely within [start, end], with the owner's name."""
        sql = f"""
            SELECT {EVENT_COLUMNS}, u.name AS owner_name
            FROM events e
            LEFT JOIN users u ON e.user_id = u.id
            WHERE e.start_time >= %s AND e.end_time <= %s
        """
        params: List[Any] = [start, end]

        if owner_id:
            sql += " AND e.user_id = %s"
            params.append(owner_id)

        if grouping_ids:
            sql += """
                AND EXISTS (
                    SELECT 1 FROM event_groupings eg
                    WHERE eg.event_id = e.id AND eg.grouping_id = ANY(%s::uuid[])
                )
            """
            params.append(list(grouping_ids))

        sql += " ORDER BY e.start_time, e.id;"
        return self._all(sql, params)

    def find_out_of_office(self, start, end) -> List[Row]:
        """Out-of-office events overlapping [start, end]."""
        return self._all(
            f"""
            SELECT {EVENT_COLUMNS}, u.name AS owner_name
            FROM events e
            LEFT JOIN users u ON e.user_id = u.id
            WHERE e.is_out_of_office AND e.start_time < %s AND e.end_time > %s
            ORDER BY u.name, e.start_time;
            """,
            (end, start),
        )

    def get_event_grouping_ids(self, event_id: str) -> List[str]:
        rows = self._all(
            "SELECT grouping_id FROM event_groupings WHERE event_id = %s ORDER BY grouping_id;",
            (event_id,),
        )
        return [r["grouping_id"] for r in rows]

    def set_event_groupings(self, event_id: str, grouping_ids: Sequence[str]) -> None:
        self.cur.execute("DELETE FROM event_groupings WHERE event_id = %s;", (event_id,))
        for gid in dict.fromkeys(grouping_ids):
            self.cur.execute(
                "INSERT INTO event_groupings (event_id, grouping_id) VALUES (%s, %s);",
                (event_id, gid),
            )

    # --- GROUPINGS ---

    def get_grouping(self, grouping_id: str) -> Optional[Row]:
        return self._one(
            "SELECT id, name, color, user_id, created_at FROM groupings WHERE id = %s;",
            (grouping_id,),
        )

    def existing_grouping_ids(self, grouping_ids: Iterable[str], viewer_id: str) -> List[str]:
        """Subset of `grouping_ids` that exist and are visible to `viewer_id`."""
        ids = list(grouping_ids)
        if not ids:
            return []
        rows = self._all(
            """
            SELECT id FROM groupings
            WHERE id = ANY(%s::uuid[]) AND (user_id IS NULL OR user_id = %s);
            """,
            (ids, viewer_id),
        )
        found = {r["id"] for r in rows}
        return [gid for gid in ids if gid in found]

    def list_groupings(self, viewer_id: str) -> List[Row]:
        return self._all(
            """
            SELECT id, name, color, user_id, created_at FROM groupings
            WHERE user_id IS NULL OR user_id = %s
            ORDER BY name, id;
            """,
            (viewer_id,),
        )

    def create_grouping(self, name: str, color: Optional[str], user_id: Optional[str]) -> Row:
        return self._one(
            """
            INSERT INTO groupings (name, color, user_id) VALUES (%s, %s, %s)
            RETURNING id, name, color, user_id, created_at;
            """,
            (name, color, user_id),
        )

    def delete_grouping(self, grouping_id: str) -> bool:
        return self._count("DELETE FROM groupings WHERE id = %s;", (grouping_id,)) > 0

    def is_group_admin_of_any(self, user_id: str, grouping_ids: Sequence[str]) -> bool:
        if not grouping_ids:
            return False
        row = self._one(
            """
            SELECT 1 AS hit FROM group_admins
            WHERE user_id = %s AND grouping_id = ANY(%s::uuid[])
            LIMIT 1;
            """,
            (user_id, list(grouping_ids)),
        )
        return row is not None

    def add_group_admin(self, grouping_id: str, user_id: str, assigned_by: str) -> bool:
        return self._count(
            """
            INSERT INTO group_admins (grouping_id, user_id, assigned_by)
            VALUES (%s, %s, %s)
            ON CONFLICT (grouping_id, user_id) DO NOTHING;
            """,
            (grouping_id, user_id, assigned_by),
        ) > 0

    def remove_group_admin(self, grouping_id: str, user_id: str) -> bool:
        return self._count(
            "DELETE FROM group_admins WHERE grouping_id = %s AND user_id = %s;",
            (grouping_id, user_id),
        ) > 0

    def list_group_admins(self, grouping_id: str) -> List[Row]:
        return self._all(
            """
            SELECT ga.grouping_id, ga.user_id, ga.assigned_by, ga.assigned_at,
                   u.name, u.email
            FROM group_admins ga
            JOIN users u ON ga.user_id = u.id
            WHERE ga.grouping_id = %s
            ORDER BY u.name;
            """,
            (grouping_id,),
        )

    def list_managed_groupings(self, user_id: str) -> List[Row]:
        return self._all(
            """
            SELECT g.id, g.name, g.color, g.user_id, g.created_at, ga.assigned_at
            FROM group_admins ga
            JOIN groupings g ON ga.grouping_id = g.id
            WHERE ga.user_id = %s
            ORDER BY g.name, g.id;
            """,
            (user_id,),
        )

    # --- EXPLICIT GRANTS ---

    def get_event_permission(self, event_id: str, user_id: str) -> Optional[Row]:
        return self._one(
            """
            SELECT event_id, user_id, can_edit, can_delete, granted_by, granted_at
            FROM event_permissions WHERE event_id = %s AND user_id = %s;
            """,
            (event_id, user_id),
        )

    def upsert_event_permission(self, event_id: str, user_id: str, can_edit: bool,
                                can_delete: bool, granted_by: str) -> Row:
        return self._one(
            """
            INSERT INTO event_permissions (event_id, user_id, can_edit, can_delete, granted_by)
            VALUES (%s, %s, %s, %s, %s)
            ON CONFLICT (event_id, user_id)
            DO UPDATE SET can_edit = EXCLUDED.can_edit, can_delete = EXCLUDED.can_delete
            RETURNING event_id, user_id, can_edit, can_delete, granted_by, granted_at;
            """,
            (event_id, user_id, can_edit, can_delete, granted_by),
        )

    def delete_event_permission(self, event_id: str, user_id: str) -> bool:
        return self._count(
            "DELETE FROM event_permissions WHERE event_id = %s AND user_id = %s;",
            (event_id, user_id),
        ) > 0

    def list_event_permissions(self, event_id: str) -> List[Row]:
        return self._all(
            """
            SELECT p.event_id, p.user_id, p.can_edit, p.can_delete, p.granted_by, p.granted_at,
                   u.name, u.email
            FROM event_permissions p
            JOIN users u ON p.user_id = u.id
            WHERE p.event_id = %s
            ORDER BY u.name;
            """,
            (event_id,),
        )

    def clear_event_sharing(self, event_id: str) -> None:
        """Drop grants and invitations; used when an event becomes private."""
        self.cur.execute("DELETE FROM event_permissions WHERE event_id = %s;", (event_id,))
        self.cur.execute("DELETE FROM event_attendees WHERE event_id = %s;", (event_id,))

    # --- TEAMS ---

    def get_team(self, team_id: str) -> Optional[Row]:
        return self._one(
            "SELECT id, name, parent_team_id, is_private, created_by, created_at FROM teams WHERE id = %s;",
            (team_id,),
        )

    def create_team(self, name: str, parent_team_id: Optional[str], is_private: bool,
                    created_by: str) -> Row:
        return self._one(
            """
            INSERT INTO teams (name, parent_team_id, is_private, created_by)
            VALUES (%s, %s, %s, %s)
            RETURNING id, name, parent_team_id, is_private, created_by, created_at;
            """,
            (name, parent_team_id, is_private, created_by),
        )

    def list_visible_teams(self, viewer_id: str) -> List[Row]:
        return self._all(
            """
            SELECT t.id, t.name, t.parent_team_id, t.is_private, t.created_by, t.created_at
            FROM teams t
            WHERE NOT t.is_private
               OR EXISTS (
                    SELECT 1 FROM team_members m
                    WHERE m.team_id = t.id AND m.user_id = %s
               )
            ORDER BY t.name, t.id;
            """,
            (viewer_id,),
        )

    def get_child_team_ids(self, team_id: str) -> List[str]:
        rows = self._all(
            "SELECT id FROM teams WHERE parent_team_id = %s ORDER BY name, id;", (team_id,)
        )
        return [r["id"] for r in rows]

    def get_team_member_ids(self, team_id: str) -> List[str]:
        rows = self._all(
            "SELECT user_id FROM team_members WHERE team_id = %s ORDER BY joined_at, user_id;",
            (team_id,),
        )
        return [r["user_id"] for r in rows]

    def get_team_membership(self, team_id: str, user_id: str) -> Optional[Row]:
        return self._one(
            "SELECT team_id, user_id, is_admin, joined_at FROM team_members WHERE team_id = %s AND user_id = %s;",
            (team_id, user_id),
        )

    def add_team_members(self, team_id: str, user_ids: Sequence[str], is_admin: bool) -> List[str]:
        added = []
        for uid in user_ids:
            inserted = self._count(
                """
                INSERT INTO team_members (team_id, user_id, is_admin) VALUES (%s, %s, %s)
                ON CONFLICT (team_id, user_id) DO NOTHING;
                """,
                (team_id, uid, is_admin),
            )
            if inserted:
                added.append(uid)
        return added

    def remove_team_member(self, team_id: str, user_id: str) -> bool:
        return self._count(
            "DELETE FROM team_members WHERE team_id = %s AND user_id = %s;", (team_id, user_id)
        ) > 0

    def set_team_member_admin(self, team_id: str, user_id: str, is_admin: bool) -> bool:
        return self._count(
            "UPDATE team_members SET is_admin = %s WHERE team_id = %s AND user_id = %s;",
            (is_admin, team_id, user_id),
        ) > 0

    def list_team_members(self, team_id: str) -> List[Row]:
        return self._all(
            """
            SELECT m.user_id, u.name, u.email, m.is_admin, m.joined_at
            FROM team_members m
            JOIN users u ON m.user_id = u.id
            WHERE m.team_id = %s
            ORDER BY u.name;
            """,
            (team_id,),
        )

    # --- ATTENDEES ---

    def add_attendees(self, event_id: str, invitations: Sequence[Tuple[str, Optional[str]]]) -> List[str]:
        """Insert `(user_id, invited_via_team_id)` pairs; existing invitations are kept."""
        added = []
        for user_id, team_id in invitations:
            inserted = self._count(
                """
                INSERT INTO event_attendees (event_id, user_id, invited_via_team_id)
                VALUES (%s, %s, %s)
                ON CONFLICT (event_id, user_id) DO NOTHING;
                """,
                (event_id, user_id, team_id),
            )
            if inserted:
                added.append(user_id)
        return added

    def get_attendee(self, event_id: str, user_id: str) -> Optional[Row]:
        return self._one(
            """
            SELECT event_id, user_id, status, invited_via_team_id, invited_at
            FROM event_attendees WHERE event_id = %s AND user_id = %s;
            """,
            (event_id, user_id),
        )

    def set_attendee_status(self, event_id: str, user_id: str, status: str) -> bool:
        return self._count(
            "UPDATE event_attendees SET status = %s WHERE event_id = %s AND user_id = %s;",
            (status, event_id, user_id),
        ) > 0

    def list_attendees(self, event_id: str) -> List[Row]:
        return self._all(
            """
            SELECT a.user_id, u.name, u.email, a.status, a.invited_via_team_id, a.invited_at
            FROM event_attendees a
            JOIN users u ON a.user_id = u.id
            WHERE a.event_id = %s
            ORDER BY u.name;
            """,
            (event_id,),
        )

    # --- ACTIVITY LOG ---

    def insert_activity(self, user_id: str, action: str, entity_type: str,
                        entity_id: Optional[str], details: Optional[str]) -> None:
        self.cur.execute(
            """
            INSERT INTO activity_log (user_id, action, entity_type, entity_id, details)
            VALUES (%s, %s, %s, %s, %s);
            """,
            (user_id, action, entity_type, entity_id, details),
        )

    def list_activity(self, user_id: Optional[str] = None, action: Optional[str] = None,
                      limit: int = 50) -> List[Row]:
        sql = """
            SELECT a.id, a.user_id, a.action, a.entity_type, a.entity_id, a.details,
                   a.created_at, u.name AS user_name, u.email AS user_email
            FROM activity_log a
            LEFT JOIN users u ON a.user_id = u.id
        """
        conditions = []
        params: List[Any] = []
        if user_id:
            conditions.append("a.user_id = %s")
            params.append(user_id)
        if action:
            conditions.append("a.action = %s")
            params.append(action)
        if conditions:
            sql += " WHERE " + " AND ".join(conditions)
        sql += " ORDER BY a.created_at DESC LIMIT %s;"
        params.append(limit)
        return self._all(sql, params)


@contextmanager
def open_store() -> Iterator[CalendarStore]:
    """
    A store over a fresh connection, for one request.

    Commits when the block exits cleanly, rolls back if it raises, and always
    closes the connection.
    """
    conn = get_db()
    try:
        with conn:
            with conn.cursor() as cur:
                yield CalendarStore(cur)
    finally:
        conn.close()
