"""
Password reset with emailed one-time codes.

Three operations: request a code, resend it, and verify it while setting a
new password. None of them reveals whether an account exists. Rate limits
and cooldowns are absorbed silently; the tagged OtpOutcome returned by
request_code/resend_code records what actually happened so it can be
logged and tested, while the HTTP layer always answers {"ok": true}.
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Optional

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

from backend.auth_service.users import normalize_email
from backend.config import ResetSettings
from backend.errors import InvalidCodeError, ValidationError

RATE_WINDOW = timedelta(hours=1)
MIN_PASSWORD_LENGTH = 8


class OtpOutcome(Enum):
    ISSUED = "issued"
    RESENT = "resent"
    FALLBACK = "fallback"  # resend found nothing active and issued a fresh code
    RATE_LIMITED = "rate_limited"
    COOLDOWN = "cooldown"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_otp() -> str:
    """Six ASCII digits, uniform over 100000-999999."""
    return f"{100000 + secrets.randbelow(900000):06d}"


class OtpFlow:
    """
    Orchestrates the reset-request ledger, the credential store and the
    notifier.

    Args:
        settings (ResetSettings): Rate limits, lifetimes and platform name.
        ledger: Reset-request ledger (see auth_service/ledger.py).
        users: Credential store (see auth_service/users.py).
        notifier: Object with password_reset()/password_changed() returning
            a DispatchResult.
        hasher (PasswordHasher, optional): One-way hash for stored codes.
        clock (callable, optional): Returns the current aware datetime.
    """

    def __init__(self, settings: ResetSettings, ledger, users, notifier,
                 hasher: Optional[PasswordHasher] = None,
                 clock: Callable[[], datetime] = utcnow):
        self.settings = settings
        self.ledger = ledger
        self.users = users
        self.notifier = notifier
        self.hasher = hasher or PasswordHasher()
        self.clock = clock

    # --- helpers ---
    def _notify(self, what: str, send: Callable[..., Any], *args) -> None:
        try:
            result = send(*args)
        except Exception:
            logging.exception(f"[OTP] {what} email raised")
            return
        if not result.success:
            logging.error(f"[OTP] {what} email failed: {result.error}")

    def _code_matches(self, otp_hash: str, code: str) -> bool:
        try:
            return self.hasher.verify(otp_hash, code)
        except (VerificationError, InvalidHashError):
            return False

    def _send_code(self, email: str, user: Optional[dict], otp: str) -> None:
        name = (user or {}).get("name") or ""
        self._notify("password reset", self.notifier.password_reset,
                     email, name, otp, self.settings.otp_ttl_minutes)

    # --- operations ---
    def request_code(self, email: str, ip: Optional[str] = None,
                     user_agent: Optional[str] = None) -> OtpOutcome:
        """
        Issue a new code for email, unless the hourly request ceiling is hit.

        The code is mailed to the normalized address whether or not a user
        owns it; only the owner of the mailbox can use it.
        """
        normalized = normalize_email(email)
        now = self.clock()
        self.ledger.purge_expired(now)

        user = self.users.find_by_email(normalized)
        logging.info(f"[OTP] Reset requested for {normalized} (user_found={user is not None})")

        recent = self.ledger.count_created_since(normalized, now - RATE_WINDOW)
        if recent >= self.settings.max_requests_per_hour:
            logging.warning(f"[OTP] Reset request rate limited for {normalized}")
            return OtpOutcome.RATE_LIMITED

        otp = generate_otp()
        self.ledger.create(
            email=normalized,
            user_id=user["user_id"] if user else None,
            otp_hash=self.hasher.hash(otp),
            created_at=now,
            expires_at=now + timedelta(minutes=self.settings.otp_ttl_minutes),
            ip=ip,
            user_agent=user_agent,
        )
        self._send_code(normalized, user, otp)
        return OtpOutcome.ISSUED

    def resend_code(self, email: str, ip: Optional[str] = None,
                    user_agent: Optional[str] = None) -> OtpOutcome:
        """
        Rotate the code of the latest active request, or fall back to a new
        request when there is none.
        """
        normalized = normalize_email(email)
        now = self.clock()
        self.ledger.purge_expired(now)

        latest = self.ledger.latest_unconsumed(normalized)
        if latest is None or latest["expires_at"] < now:
            outcome = self.request_code(normalized, ip, user_agent)
            return OtpOutcome.FALLBACK if outcome is OtpOutcome.ISSUED else outcome

        elapsed = (now - latest["created_at"]).total_seconds()
        if elapsed < self.settings.resend_cooldown_seconds:
            logging.warning(f"[OTP] Resend inside cooldown for {normalized} ({elapsed:.0f}s)")
            return OtpOutcome.COOLDOWN

        resends = self.ledger.count_resends_since(normalized, now - RATE_WINDOW)
        if resends >= self.settings.max_resend_per_hour:
            logging.warning(f"[OTP] Resend rate limited for {normalized}")
            return OtpOutcome.RATE_LIMITED

        otp = generate_otp()
        self.ledger.rotate(
            latest["reset_id"],
            otp_hash=self.hasher.hash(otp),
            expires_at=now + timedelta(minutes=self.settings.otp_ttl_minutes),
            now=now,
        )
        self._send_code(normalized, self.users.find_by_email(normalized), otp)
        return OtpOutcome.RESENT

    def verify_code(self, email: str, code: str, new_password: str) -> None:
        """
        Check code and, if it matches, set new_password.

        Raises:
            ValidationError: Missing inputs or a password shorter than 8.
            InvalidCodeError: Every other failure, indistinguishably.
        """
        if not email or not code or not new_password:
            raise ValidationError("Missing fields")
        if len(str(new_password)) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        normalized = normalize_email(email)
        now = self.clock()
        self.ledger.purge_expired(now)

        user = self.users.find_by_email(normalized)
        if not user:
            raise InvalidCodeError()

        reset = self.ledger.latest_unconsumed(normalized)
        if not reset or now > reset["expires_at"]:
            raise InvalidCodeError()

        if not self._code_matches(reset["otp_hash"], str(code)):
            locked = self.ledger.record_failed_attempt(reset["reset_id"], self.settings.max_verify_attempts)
            if locked:
                logging.warning(f"[OTP] Reset request {reset['reset_id']} locked after too many attempts")
            raise InvalidCodeError()

        # A concurrent verify may have consumed or locked the request since it was read
        if not self.ledger.mark_used(reset["reset_id"]):
            raise InvalidCodeError()
        self.users.set_password(user["user_id"], str(new_password))
        logging.info(f"[OTP] Password reset for user {user['user_id']}")

        self._notify("password changed", self.notifier.password_changed,
                     normalized, user.get("name") or "")
