"""
Workshop registration flow.

A student registers for an online, upcoming workshop and receives a join
artifact that depends on the workshop's registration mode:

- external-form: a redirect target (the workshop's meeting link); nothing stored
- public-link:   the raw meeting link, returned and emailed
- email-only:    a tokenized join URL, emailed only; redeem() later turns
                 the token into the meeting link
"""

import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import psycopg2.errors

from backend.config import RegistrationSettings
from backend.errors import (
    ConflictError,
    ForbiddenError,
    InvalidLinkError,
    NotFoundError,
    ValidationError,
)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

MODE_EXTERNAL_FORM = "external-form"
MODE_PUBLIC_LINK = "public-link"
MODE_EMAIL_ONLY = "email-only"


@dataclass(frozen=True)
class RegistrationResult:
    """
    kind is one of "redirect", "link" or "emailed". link is None for
    "emailed": the tokenized URL is only ever sent by mail.
    """

    kind: str
    link: Optional[str] = None
    message: Optional[str] = None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_join_token() -> str:
    # 24 random bytes = 192 bits
    return secrets.token_hex(24)


class RegistrationFlow:
    def __init__(self, settings: RegistrationSettings, ledger, users, notifier,
                 clock: Callable[[], datetime] = utcnow):
        self.settings = settings
        self.ledger = ledger
        self.users = users
        self.notifier = notifier
        self.clock = clock

    def join_url(self, token: str) -> str:
        return f"{self.settings.frontend_url}/workshops/join/{token}"

    def _save(self, existing: Optional[Dict[str, Any]], workshop_id: int, user_id: int,
              email: str, token: Optional[str], expires_at: Optional[datetime]) -> None:
        try:
            if existing:
                if not self.ledger.reactivate_rsvp(existing["rsvp_id"], email, token, expires_at):
                    raise ConflictError("Already registered for this workshop")
            else:
                self.ledger.insert_rsvp(workshop_id, user_id, email, token, expires_at)
        except psycopg2.errors.UniqueViolation:
            logging.warning(f"[Workshops] Duplicate registration race for workshop {workshop_id}, user {user_id}")
            raise ConflictError("Already registered for this workshop")

    def _send_link(self, email: str, user_id: int, workshop: Dict[str, Any],
                   url: str, mode: str) -> None:
        try:
            user = self.users.find_by_id(user_id)
            result = self.notifier.workshop_link(
                email,
                (user or {}).get("name") or "Student",
                workshop["title"],
                workshop["date"],
                url,
                mode,
            )
        except Exception:
            logging.exception(f"[Workshops] Join email for workshop {workshop['workshop_id']} raised")
            return
        if not result.success:
            # Registration stands even if the email did not go out.
            logging.error(f"[Workshops] Failed to send join email to {email}: {result.error}")

    def register(self, workshop_id: int, user_id: int, role: str, email: str) -> RegistrationResult:
        """
        Register user_id for workshop_id.

        Raises:
            ForbiddenError: Caller is not a student.
            ValidationError: Bad email, or workshop not online/upcoming.
            NotFoundError: Unknown workshop.
            ConflictError: Already registered (pre-check or storage race).
        """
        if role != "student":
            logging.info(f"[Workshops] Registration denied for role {role}")
            raise ForbiddenError("Only students can register for workshops")

        if email is not None and not isinstance(email, str):
            raise ValidationError("Invalid email format")
        email_value = (email or "").strip()
        if not email_value:
            raise ValidationError("Email is required")
        if not EMAIL_PATTERN.match(email_value):
            raise ValidationError("Invalid email format")
        normalized = email_value.lower()

        workshop = self.ledger.find_workshop(workshop_id)
        if not workshop:
            raise NotFoundError("Workshop not found")
        if workshop["mode"] != "online":
            raise ValidationError("Registration is only available for online workshops")
        if workshop["status"] != "upcoming":
            raise ValidationError("Cannot register for this workshop")

        existing = self.ledger.find_rsvp(workshop_id, user_id)
        if existing and existing["status"] != "cancelled":
            raise ConflictError("Already registered for this workshop")

        mode = workshop.get("registration_mode") or MODE_EMAIL_ONLY

        if mode == MODE_EXTERNAL_FORM:
            return RegistrationResult("redirect", link=workshop["meeting_link"])

        if mode == MODE_PUBLIC_LINK:
            self._save(existing, workshop_id, user_id, normalized, None, None)
            self._send_link(normalized, user_id, workshop, workshop["meeting_link"], mode)
            return RegistrationResult(
                "link",
                link=workshop["meeting_link"],
                message="Registration successful. Meeting link sent to your email.",
            )

        token = new_join_token()
        expires_at = self.clock() + timedelta(hours=self.settings.token_ttl_hours)
        self._save(existing, workshop_id, user_id, normalized, token, expires_at)
        self._send_link(normalized, user_id, workshop, self.join_url(token), MODE_EMAIL_ONLY)

        logging.info(f"[Workshops] Registered user {user_id} for workshop {workshop_id} (mode={mode})")
        return RegistrationResult("emailed", message="Link sent to provided email.")

    def redeem(self, token: str) -> str:
        """
        Exchange a join token for the workshop's meeting link.

        Raises:
            InvalidLinkError: For every failure cause alike.
        """
        token = (token or "").strip()
        if not token:
            raise InvalidLinkError()

        rsvp = self.ledger.find_rsvp_by_token(token)
        if not rsvp:
            raise InvalidLinkError()

        now = self.clock()
        if rsvp["token_expires_at"] and now > rsvp["token_expires_at"]:
            logging.info(f"[Workshops] Expired token for rsvp {rsvp['rsvp_id']}")
            raise InvalidLinkError()
        if rsvp["status"] == "cancelled":
            raise InvalidLinkError()
        if self.settings.single_use_tokens and rsvp["status"] == "used":
            raise InvalidLinkError()

        workshop = self.ledger.find_workshop(rsvp["workshop_id"])
        if (not workshop
                or workshop["status"] == "cancelled"
                or workshop["mode"] != "online"
                or not workshop["meeting_link"]):
            logging.info(f"[Workshops] Workshop for rsvp {rsvp['rsvp_id']} is not joinable")
            raise InvalidLinkError()

        if self.settings.single_use_tokens:
            self.ledger.mark_used(rsvp["rsvp_id"])

        return workshop["meeting_link"]

    def cancel(self, workshop_id: int, user_id: int) -> None:
        workshop = self.ledger.find_workshop(workshop_id)
        if not workshop:
            raise NotFoundError("Workshop not found")

        rsvp = self.ledger.find_rsvp(workshop_id, user_id)
        if not rsvp or rsvp["status"] == "cancelled":
            raise ValidationError("Not registered for this workshop")

        self.ledger.cancel_rsvp(rsvp["rsvp_id"])
        logging.info(f"[Workshops] User {user_id} cancelled registration for workshop {workshop_id}")

    def list_registrations(self, student_id: int, requester_id: int) -> List[Dict[str, Any]]:
        if student_id != requester_id:
            raise ForbiddenError("Not authorized to view these registrations")
        return self.ledger.list_for_student(student_id)
