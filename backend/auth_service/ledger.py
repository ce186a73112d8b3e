"""
Reset-request ledger: the password_resets table.

One row per password-reset cycle. Rows past expires_at are deleted by
purge_expired(), which the OTP flow calls before every operation; this
stands in for a storage-level TTL index.
"""

from datetime import datetime
from typing import Any, Callable, Dict, Optional

from backend.database.db_connection import get_db


class ResetLedger:
    def __init__(self, connect: Optional[Callable] = None):
        self._connect = connect

    def connect(self):
        # get_db is resolved at call time, not bound at construction
        return (self._connect or get_db)()

    def _execute(self, sql: str, params: tuple) -> int:
        with self.connect() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                count = cur.rowcount
            conn.commit()
        return count

    def _scalar(self, sql: str, params: tuple) -> int:
        with self.connect() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                row = cur.fetchone()
        return int(row[0] or 0) if row else 0

    def purge_expired(self, now: datetime) -> int:
        """Delete rows whose expiry has passed, consumed or not."""
        return self._execute("DELETE FROM password_resets WHERE expires_at < %s;", (now,))

    def count_created_since(self, email: str, since: datetime) -> int:
        return self._scalar(
            "SELECT COUNT(*) FROM password_resets WHERE email = %s AND created_at >= %s;",
            (email, since),
        )

    def count_resends_since(self, email: str, since: datetime) -> int:
        # A resend moves created_at to "now", so a rotated row stays inside the window.
        return self._scalar(
            "SELECT COALESCE(SUM(resend_count), 0) FROM password_resets "
            "WHERE email = %s AND created_at >= %s;",
            (email, since),
        )

    def create(self, email: str, user_id: Optional[int], otp_hash: str,
               created_at: datetime, expires_at: datetime,
               ip: Optional[str] = None, user_agent: Optional[str] = None) -> int:
        sql = """
            INSERT INTO password_resets
                (email, user_id, otp_hash, created_at, expires_at, ip, user_agent)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            RETURNING reset_id;
        """
        with self.connect() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, (email, user_id, otp_hash, created_at, expires_at, ip, user_agent or ""))
                row = cur.fetchone()
            conn.commit()
        return row["reset_id"]

    def latest_unconsumed(self, email: str) -> Optional[Dict[str, Any]]:
        sql = """
            SELECT reset_id, email, user_id, otp_hash, attempts, resend_count,
                   used, created_at, expires_at
            FROM password_resets
            WHERE email = %s AND used = FALSE
            ORDER BY created_at DESC, reset_id DESC
            LIMIT 1;
        """
        with self.connect() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, (email,))
                row = cur.fetchone()
        return dict(row) if row else None

    def rotate(self, reset_id: int, otp_hash: str, expires_at: datetime, now: datetime) -> None:
        self._execute(
            """
            UPDATE password_resets
            SET otp_hash = %s, expires_at = %s, created_at = %s,
                resend_count = resend_count + 1
            WHERE reset_id = %s;
            """,
            (otp_hash, expires_at, now, reset_id),
        )

    def record_failed_attempt(self, reset_id: int, max_attempts: int) -> bool:
        """Count a wrong code; returns True once the request is locked."""
        with self.connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE password_resets
                    SET attempts = attempts + 1, used = used OR attempts + 1 >= %s
                    WHERE reset_id = %s
                    RETURNING used;
                    """,
                    (max_attempts, reset_id),
                )
                row = cur.fetchone()
            conn.commit()
        return bool(row and row["used"])

    def mark_used(self, reset_id: int) -> bool:
        """Consume the request; False when it was already consumed."""
        count = self._execute(
            "UPDATE password_resets SET used = TRUE WHERE reset_id = %s AND used = FALSE;",
            (reset_id,),
        )
        return count > 0
