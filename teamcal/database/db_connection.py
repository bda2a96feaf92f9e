"""
PostgreSQL connection helper.
Provides get_db() for use by services.
"""

import logging
import os

import psycopg2
import psycopg2.extras
from psycopg2.extras import DictCursor
from dotenv import load_dotenv

# Load .env variables from the project root
load_dotenv()

# UUID columns come back as uuid.UUID and are accepted as query parameters
psycopg2.extras.register_uuid()

logger = logging.getLogger(__name__)


def get_db():
    """
    Returns a new psycopg2 connection with dictionary-based row access.

    Usage:
        with get_db() as conn:
            with conn.cursor() as cur:
                cur.execute(...)

    Note that leaving the `with conn` block commits or rolls back the
    transaction but does not close the connection.

    Returns:
        psycopg2.extensions.connection: A connection object with DictCursor factory.

    Raises:
        RuntimeError: If DATABASE_URL is not configured.
        psycopg2.Error: If connection fails.
    """
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        raise RuntimeError("DATABASE_URL is not set. Please set the environment variable.")

    try:
        conn = psycopg2.connect(database_url)
        conn.cursor_factory = DictCursor
        return conn
    except psycopg2.Error:
        logger.exception("Error connecting to database")
        # Re-raise so the caller knows the connection failed
        raise
