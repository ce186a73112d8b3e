"""
PostgreSQL connection helper.
Provides get_db() for use by services.
"""

import logging
import os

import psycopg2
from psycopg2.extras import DictCursor
from dotenv import load_dotenv

# Load .env variables from the project root
load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")


def get_db():
    """
    Returns a new psycopg2 connection with dictionary-based row access.

    Usage:
        with get_db() as conn:
            with conn.cursor() as cur:
                cur.execute(...)

    Returns:
        psycopg2.extensions.connection: A connection object with DictCursor factory.

    Raises:
        RuntimeError: If DATABASE_URL is not configured.
        psycopg2.Error: If connection fails.
    """
    if not DATABASE_URL:
        raise RuntimeError("DATABASE_URL is not set. Please set the environment variable.")

    try:
        conn = psycopg2.connect(DATABASE_URL)
        # Rows come back as dictionaries (e.g., {"user_id": 1, "email": "..."})
        conn.cursor_factory = DictCursor
        return conn
    except psycopg2.Error as e:
        logging.error(f"Error connecting to database: {e}")
        raise
