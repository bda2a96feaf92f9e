"""
Apply schema.sql to the database named by DATABASE_URL.

Usage:
    python -m teamcal.database.init_db

The schema only uses IF NOT EXISTS / duplicate_object guards, so running it
against an initialized database is a no-op.
"""

import logging
import os
import sys

import psycopg2

from teamcal.database.db_connection import get_db

SCHEMA_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "schema.sql")

REQUIRED_TABLES = [
    "users",
    "groupings",
    "events",
    "event_groupings",
    "group_admins",
    "event_permissions",
    "teams",
    "team_members",
    "event_attendees",
    "activity_log",
]


def apply_schema(conn, path: str = SCHEMA_PATH) -> None:
    with open(path, encoding="utf-8") as f:
        ddl = f.read()
    with conn:
        with conn.cursor() as cur:
            cur.execute(ddl)


def missing_tables(conn) -> list:
    """Names from REQUIRED_TABLES that the database does not have."""
    missing = []
    with conn.cursor() as cur:
        for table in REQUIRED_TABLES:
            cur.execute("SELECT to_regclass(%s);", (table,))
            if cur.fetchone()[0] is None:
                missing.append(table)
    return missing


def main() -> int:
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(asctime)s - %(message)s")

    conn = get_db()
    try:
        apply_schema(conn)
        missing = missing_tables(conn)
    except psycopg2.Error:
        logging.exception("Applying schema failed")
        return 1
    finally:
        conn.close()

    if missing:
        logging.error(f"Schema applied but tables are missing: {', '.join(missing)}")
        return 1

    logging.info("Schema applied; all tables present.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
