"""
Create the AlumniConnect schema.

Run once against an empty database (safe to re-run, every statement is
IF NOT EXISTS):

    python -m backend.database.init_db

Notes on constraints the application relies on:
- workshop_rsvps (workshop_id, user_id) is unique; the registration flow
  treats a UniqueViolation as "already registered".
- workshop_rsvps.token is UNIQUE and nullable, so any number of rows may
  have no token while issued tokens never collide.
- password_resets has no TTL support in PostgreSQL; the reset ledger
  deletes expired rows itself (see auth_service/ledger.py).
"""

import logging
import sys

from backend.database.db_connection import get_db

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users (
        user_id SERIAL PRIMARY KEY,
        email VARCHAR(255) UNIQUE NOT NULL,
        password_hash TEXT NOT NULL,
        name VARCHAR(200) NOT NULL,
        role VARCHAR(20) NOT NULL DEFAULT 'student'
            CHECK (role IN ('student', 'alumni')),
        profile JSONB NOT NULL DEFAULT '{}'::jsonb,
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS password_resets (
        reset_id SERIAL PRIMARY KEY,
        user_id INTEGER REFERENCES users(user_id) ON DELETE SET NULL,
        email VARCHAR(255) NOT NULL,
        otp_hash TEXT NOT NULL,
        attempts INTEGER NOT NULL DEFAULT 0,
        resend_count INTEGER NOT NULL DEFAULT 0,
        used BOOLEAN NOT NULL DEFAULT FALSE,
        ip VARCHAR(64),
        user_agent TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        expires_at TIMESTAMPTZ NOT NULL
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_password_resets_email ON password_resets (email, created_at DESC);",
    "CREATE INDEX IF NOT EXISTS idx_password_resets_expires ON password_resets (expires_at);",
    """
    CREATE TABLE IF NOT EXISTS workshops (
        workshop_id SERIAL PRIMARY KEY,
        title VARCHAR(200) NOT NULL,
        description TEXT NOT NULL,
        date TIMESTAMPTZ NOT NULL,
        mode VARCHAR(10) NOT NULL CHECK (mode IN ('online', 'offline')),
        location TEXT,
        meeting_link TEXT,
        target_audience VARCHAR(200) NOT NULL,
        duration VARCHAR(100) NOT NULL,
        organizer_id INTEGER NOT NULL REFERENCES users(user_id),
        registration_mode VARCHAR(20) NOT NULL DEFAULT 'email-only'
            CHECK (registration_mode IN ('email-only', 'public-link', 'external-form')),
        status VARCHAR(20) NOT NULL DEFAULT 'upcoming'
            CHECK (status IN ('upcoming', 'ongoing', 'completed', 'cancelled')),
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        CHECK (
            (mode = 'online' AND meeting_link IS NOT NULL AND location IS NULL)
            OR (mode = 'offline' AND location IS NOT NULL AND meeting_link IS NULL)
        )
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS workshop_rsvps (
        rsvp_id SERIAL PRIMARY KEY,
        workshop_id INTEGER NOT NULL REFERENCES workshops(workshop_id) ON DELETE CASCADE,
        user_id INTEGER NOT NULL REFERENCES users(user_id),
        registered_email VARCHAR(255) NOT NULL,
        status VARCHAR(20) NOT NULL DEFAULT 'registered'
            CHECK (status IN ('registered', 'used', 'cancelled')),
        token VARCHAR(64) UNIQUE,
        token_expires_at TIMESTAMPTZ,
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        UNIQUE (workshop_id, user_id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS freelance_entries (
        entry_id SERIAL PRIMARY KEY,
        student_id INTEGER NOT NULL REFERENCES users(user_id),
        title VARCHAR(200) NOT NULL,
        short_summary VARCHAR(200) NOT NULL,
        role VARCHAR(20) NOT NULL DEFAULT 'Developer'
            CHECK (role IN ('Developer', 'Designer', 'PM', 'Other')),
        technologies TEXT[] NOT NULL DEFAULT '{}',
        problem_solved TEXT NOT NULL,
        implementation_details TEXT NOT NULL,
        github_link TEXT NOT NULL DEFAULT '',
        demo_link TEXT NOT NULL DEFAULT '',
        figma_link TEXT NOT NULL DEFAULT '',
        attachments TEXT[] NOT NULL DEFAULT '{}',
        is_anonymous BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_freelance_student ON freelance_entries (student_id, created_at DESC);",
    """
    CREATE TABLE IF NOT EXISTS jobs (
        job_id SERIAL PRIMARY KEY,
        title VARCHAR(200) NOT NULL,
        company VARCHAR(200) NOT NULL,
        location VARCHAR(200),
        job_type VARCHAR(50) NOT NULL DEFAULT 'full-time',
        description TEXT NOT NULL,
        apply_link TEXT,
        posted_by INTEGER NOT NULL REFERENCES users(user_id),
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS job_applications (
        application_id SERIAL PRIMARY KEY,
        job_id INTEGER NOT NULL REFERENCES jobs(job_id) ON DELETE CASCADE,
        user_id INTEGER NOT NULL REFERENCES users(user_id),
        status VARCHAR(20) NOT NULL DEFAULT 'applied',
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        UNIQUE (job_id, user_id)
    );
    """,
]


def init_db() -> None:
    """
    Apply every schema statement in a single transaction.

    Raises:
        psycopg2.Error: If any statement fails (the transaction is rolled back).
    """
    with get_db() as conn:
        with conn.cursor() as cur:
            for statement in SCHEMA:
                cur.execute(statement)
        conn.commit()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(asctime)s - %(message)s")
    try:
        init_db()
    except Exception as e:
        logging.error(f"Schema creation FAILED: {e}")
        sys.exit(1)
    logging.info("Schema is up to date.")
