"""
Registration ledger: workshops and workshop_rsvps tables.

The (workshop_id, user_id) unique constraint is what actually prevents
double registration; callers should expect psycopg2.errors.UniqueViolation
from insert_rsvp() when two requests race.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from backend.database.db_connection import get_db

WORKSHOP_FIELDS = [
    "workshop_id", "title", "description", "date", "mode", "location",
    "meeting_link", "target_audience", "duration", "organizer_id",
    "registration_mode", "status", "created_at", "updated_at",
]

# Unqualified for INSERT/UPDATE ... RETURNING, w.-qualified for joins
WORKSHOP_RETURNING = ", ".join(WORKSHOP_FIELDS)
WORKSHOP_COLUMNS = ", ".join(f"w.{f}" for f in WORKSHOP_FIELDS)

RSVP_COLUMNS = """
    rsvp_id, workshop_id, user_id, registered_email, status, token,
    token_expires_at, created_at, updated_at
"""


class RegistrationLedger:
    def __init__(self, connect: Optional[Callable] = None):
        self._connect = connect

    def connect(self):
        # get_db is resolved at call time, not bound at construction
        return (self._connect or get_db)()

    def _fetch_one(self, sql: str, params: tuple) -> Optional[Dict[str, Any]]:
        with self.connect() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                row = cur.fetchone()
        return dict(row) if row else None

    def _execute(self, sql: str, params: tuple) -> int:
        with self.connect() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                count = cur.rowcount
            conn.commit()
        return count

    # --- workshops ---
    def find_workshop(self, workshop_id: int) -> Optional[Dict[str, Any]]:
        return self._fetch_one(
            f"SELECT {WORKSHOP_COLUMNS} FROM workshops w WHERE w.workshop_id = %s;",
            (workshop_id,),
        )

    # --- rsvps ---
    def find_rsvp(self, workshop_id: int, user_id: int) -> Optional[Dict[str, Any]]:
        return self._fetch_one(
            f"SELECT {RSVP_COLUMNS} FROM workshop_rsvps WHERE workshop_id = %s AND user_id = %s;",
            (workshop_id, user_id),
        )

    def find_rsvp_by_token(self, token: str) -> Optional[Dict[str, Any]]:
        return self._fetch_one(
            f"SELECT {RSVP_COLUMNS} FROM workshop_rsvps WHERE token = %s;",
            (token,),
        )

    def insert_rsvp(self, workshop_id: int, user_id: int, email: str,
                    token: Optional[str], token_expires_at: Optional[datetime]) -> int:
        sql = """
            INSERT INTO workshop_rsvps
                (workshop_id, user_id, registered_email, status, token, token_expires_at)
            VALUES (%s, %s, %s, 'registered', %s, %s)
            RETURNING rsvp_id;
        """
        with self.connect() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, (workshop_id, user_id, email, token, token_expires_at))
                row = cur.fetchone()
            conn.commit()
        return row["rsvp_id"]

    def reactivate_rsvp(self, rsvp_id: int, email: str, token: Optional[str],
                        token_expires_at: Optional[datetime]) -> bool:
        """
        Turn a cancelled record back into a registration.

        Returns False when the record was no longer cancelled, i.e. another
        request re-registered it first.
        """
        count = self._execute(
            """
            UPDATE workshop_rsvps
            SET status = 'registered', registered_email = %s, token = %s,
                token_expires_at = %s, updated_at = CURRENT_TIMESTAMP
            WHERE rsvp_id = %s AND status = 'cancelled';
            """,
            (email, token, token_expires_at, rsvp_id),
        )
        return count > 0

    def cancel_rsvp(self, rsvp_id: int) -> None:
        self._execute(
            """
            UPDATE workshop_rsvps
            SET status = 'cancelled', token = NULL, token_expires_at = NULL,
                updated_at = CURRENT_TIMESTAMP
            WHERE rsvp_id = %s;
            """,
            (rsvp_id,),
        )

    def mark_used(self, rsvp_id: int) -> None:
        self._execute(
            "UPDATE workshop_rsvps SET status = 'used', updated_at = CURRENT_TIMESTAMP WHERE rsvp_id = %s;",
            (rsvp_id,),
        )

    def list_for_student(self, user_id: int) -> List[Dict[str, Any]]:
        sql = """
            SELECT r.rsvp_id, r.workshop_id, r.registered_email, r.status, r.created_at,
                   w.title, w.description, w.date, w.mode, w.meeting_link,
                   w.location, w.status AS workshop_status
            FROM workshop_rsvps r
            JOIN workshops w ON w.workshop_id = r.workshop_id
            WHERE r.user_id = %s AND r.status <> 'cancelled'
            ORDER BY r.created_at DESC;
        """
        with self.connect() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, (user_id,))
                rows = [dict(r) for r in cur.fetchall()]
        return rows
