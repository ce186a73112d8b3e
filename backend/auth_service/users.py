"""
Credential store: reads and writes the users table.

Passwords only ever enter this module as plaintext and leave it as Argon2
hashes; create() and set_password() are the only writers of password_hash.
"""

import json
from typing import Any, Callable, Dict, Optional

from backend.auth_service.utils import hash_password
from backend.database.db_connection import get_db

PUBLIC_COLUMNS = "user_id, email, name, role, profile, created_at, updated_at"


def normalize_email(email: Any) -> str:
    return str(email or "").strip().lower()


class UserStore:
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

    def find_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        """Return the user (including password_hash) or None."""
        return self._fetch_one(
            f"SELECT {PUBLIC_COLUMNS}, password_hash FROM users WHERE email = %s;",
            (normalize_email(email),),
        )

    def find_by_id(self, user_id: int) -> Optional[Dict[str, Any]]:
        return self._fetch_one(
            f"SELECT {PUBLIC_COLUMNS} FROM users WHERE user_id = %s;",
            (user_id,),
        )

    def create(self, email: str, password: str, name: str, role: str) -> Dict[str, Any]:
        """
        Insert a new user.

        Raises:
            psycopg2.errors.UniqueViolation: If the email is taken.
        """
        sql = """
            INSERT INTO users (email, password_hash, name, role)
            VALUES (%s, %s, %s, %s)
            RETURNING user_id, role;
        """
        with self.connect() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, (normalize_email(email), hash_password(password), name, role))
                user = cur.fetchone()
            conn.commit()
        return dict(user)

    def set_password(self, user_id: int, password: str) -> None:
        sql = """
            UPDATE users
            SET password_hash = %s, updated_at = CURRENT_TIMESTAMP
            WHERE user_id = %s;
        """
        with self.connect() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, (hash_password(password), user_id))
            conn.commit()

    def update_profile(self, user_id: int, name: Optional[str],
                       profile: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        """
        Update the display name and/or merge keys into the profile document.
        """
        sql = f"""
            UPDATE users
            SET name = COALESCE(%s, name),
                profile = profile || %s::jsonb,
                updated_at = CURRENT_TIMESTAMP
            WHERE user_id = %s
            RETURNING {PUBLIC_COLUMNS};
        """
        with self.connect() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, (name, json.dumps(profile or {}), user_id))
                row = cur.fetchone()
            conn.commit()
        return dict(row) if row else None
