import os
from datetime import datetime, timedelta, timezone

import psycopg2.errors
import pytest
from argon2 import PasswordHasher

# Ensure JWT_SECRET is set before any auth module is imported
os.environ["JWT_SECRET"] = "test_secret"

from backend.auth_service.utils import hash_password  # noqa: E402
from backend.config import RegistrationSettings, ResetSettings  # noqa: E402
from backend.gateway.server import create_app  # noqa: E402
from backend.notifications.email_service import DispatchResult  # noqa: E402


# --- FAKES ---

class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeUserStore:
    def __init__(self):
        self.users = {}

    def add(self, user_id, email, name="Test User", role="student", password="old-password"):
        self.users[user_id] = {
            "user_id": user_id,
            "email": email,
            "name": name,
            "role": role,
            "password_hash": hash_password(password),
        }
        return self.users[user_id]

    def find_by_email(self, email):
        for user in self.users.values():
            if user["email"] == email:
                return dict(user)
        return None

    def find_by_id(self, user_id):
        user = self.users.get(user_id)
        return dict(user) if user else None

    def set_password(self, user_id, password):
        self.users[user_id]["password_hash"] = hash_password(password)


class FakeResetLedger:
    """In-memory password_resets table with the same semantics as the SQL."""

    def __init__(self):
        self.rows = []
        self._next_id = 1

    def purge_expired(self, now):
        before = len(self.rows)
        self.rows = [r for r in self.rows if r["expires_at"] >= now]
        return before - len(self.rows)

    def count_created_since(self, email, since):
        return sum(1 for r in self.rows if r["email"] == email and r["created_at"] >= since)

    def count_resends_since(self, email, since):
        return sum(r["resend_count"] for r in self.rows if r["email"] == email and r["created_at"] >= since)

    def create(self, email, user_id, otp_hash, created_at, expires_at, ip=None, user_agent=None):
        row = {
            "reset_id": self._next_id,
            "email": email,
            "user_id": user_id,
            "otp_hash": otp_hash,
            "attempts": 0,
            "resend_count": 0,
            "used": False,
            "created_at": created_at,
            "expires_at": expires_at,
            "ip": ip,
            "user_agent": user_agent or "",
        }
        self._next_id += 1
        self.rows.append(row)
        return row["reset_id"]

    def _get(self, reset_id):
        return next(r for r in self.rows if r["reset_id"] == reset_id)

    def latest_unconsumed(self, email):
        candidates = [r for r in self.rows if r["email"] == email and not r["used"]]
        if not candidates:
            return None
        return dict(max(candidates, key=lambda r: (r["created_at"], r["reset_id"])))

    def rotate(self, reset_id, otp_hash, expires_at, now):
        row = self._get(reset_id)
        row.update(otp_hash=otp_hash, expires_at=expires_at, created_at=now)
        row["resend_count"] += 1

    def record_failed_attempt(self, reset_id, max_attempts):
        row = self._get(reset_id)
        row["used"] = row["used"] or row["attempts"] + 1 >= max_attempts
        row["attempts"] += 1
        return row["used"]

    def mark_used(self, reset_id):
        row = self._get(reset_id)
        if row["used"]:
            return False
        row["used"] = True
        return True


class FakeRegistrationLedger:
    """In-memory workshops + workshop_rsvps, unique on (workshop_id, user_id)."""

    def __init__(self):
        self.workshops = {}
        self.rsvps = []
        self._next_id = 1

    def add_workshop(self, workshop_id, **overrides):
        workshop = {
            "workshop_id": workshop_id,
            "title": "Intro to System Design",
            "description": "Scaling basics",
            "date": datetime(2025, 4, 1, 17, 0, tzinfo=timezone.utc),
            "mode": "online",
            "location": None,
            "meeting_link": "https://meet.example.com/abc-defg",
            "target_audience": "Students",
            "duration": "2 hours",
            "organizer_id": 99,
            "registration_mode": "email-only",
            "status": "upcoming",
        }
        workshop.update(overrides)
        self.workshops[workshop_id] = workshop
        return workshop

    def find_workshop(self, workshop_id):
        workshop = self.workshops.get(workshop_id)
        return dict(workshop) if workshop else None

    def find_rsvp(self, workshop_id, user_id):
        for r in self.rsvps:
            if r["workshop_id"] == workshop_id and r["user_id"] == user_id:
                return dict(r)
        return None

    def find_rsvp_by_token(self, token):
        for r in self.rsvps:
            if r["token"] == token:
                return dict(r)
        return None

    def insert_rsvp(self, workshop_id, user_id, email, token, token_expires_at):
        if self.find_rsvp(workshop_id, user_id):
            raise psycopg2.errors.UniqueViolation()
        row = {
            "rsvp_id": self._next_id,
            "workshop_id": workshop_id,
            "user_id": user_id,
            "registered_email": email,
            "status": "registered",
            "token": token,
            "token_expires_at": token_expires_at,
        }
        self._next_id += 1
        self.rsvps.append(row)
        return row["rsvp_id"]

    def _get(self, rsvp_id):
        return next(r for r in self.rsvps if r["rsvp_id"] == rsvp_id)

    def reactivate_rsvp(self, rsvp_id, email, token, token_expires_at):
        row = self._get(rsvp_id)
        if row["status"] != "cancelled":
            return False
        row.update(status="registered", registered_email=email, token=token,
                   token_expires_at=token_expires_at)
        return True

    def cancel_rsvp(self, rsvp_id):
        self._get(rsvp_id).update(status="cancelled", token=None, token_expires_at=None)

    def mark_used(self, rsvp_id):
        self._get(rsvp_id)["status"] = "used"

    def list_for_student(self, user_id):
        return [dict(r) for r in self.rsvps if r["user_id"] == user_id and r["status"] != "cancelled"]


class RecordingNotifier:
    def __init__(self, fail=False, explode=False):
        self.fail = fail
        self.explode = explode
        self.resets = []
        self.changed = []
        self.links = []

    def _result(self):
        if self.explode:
            raise RuntimeError("template blew up")
        if self.fail:
            return DispatchResult(False, error="smtp down")
        return DispatchResult(True, message_id="<test@example.com>")

    def password_reset(self, to, user_name, otp, ttl_minutes):
        self.resets.append({"to": to, "user_name": user_name, "otp": otp, "ttl_minutes": ttl_minutes})
        return self._result()

    def password_changed(self, to, user_name):
        self.changed.append({"to": to, "user_name": user_name})
        return self._result()

    def workshop_link(self, to, student_name, workshop_title, workshop_date, join_url, registration_mode):
        self.links.append({
            "to": to,
            "student_name": student_name,
            "title": workshop_title,
            "url": join_url,
            "mode": registration_mode,
        })
        return self._result()


# --- FIXTURES ---

@pytest.fixture
def app():
    app = create_app()
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def users():
    return FakeUserStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def reset_ledger():
    return FakeResetLedger()


@pytest.fixture
def registration_ledger():
    return FakeRegistrationLedger()


@pytest.fixture
def fast_hasher():
    # Minimum Argon2 cost keeps the OTP tests quick
    return PasswordHasher(time_cost=1, memory_cost=8, parallelism=1)


@pytest.fixture
def reset_settings():
    return ResetSettings()


@pytest.fixture
def registration_settings():
    return RegistrationSettings(frontend_url="https://app.example.com")


@pytest.fixture
def mock_db(mocker):
    """
    Mocks the database connection and cursor.

    Returns a function that patches get_db in the given module path and
    hands back (mock_conn, mock_cursor).
    """
    def _patch(target="backend.auth_service.users.get_db"):
        mock_conn = mocker.MagicMock()
        mock_cursor = mocker.MagicMock()

        # Setup the context managers for connection and cursor
        mock_conn.__enter__.return_value = mock_conn
        mock_conn.__exit__.return_value = None
        mock_cursor.__enter__.return_value = mock_cursor
        mock_cursor.__exit__.return_value = None

        mock_conn.cursor.return_value = mock_cursor
        mocker.patch(target, return_value=mock_conn)
        return mock_conn, mock_cursor

    return _patch
