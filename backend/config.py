"""
Settings for the password-reset and workshop-registration flows.

The flow controllers never read os.environ themselves; they receive one of
these objects, normally built with ``from_env``.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class ResetSettings:
    """
    OTP password-reset policy.

    Attributes:
        otp_ttl_minutes: Lifetime of an issued code.
        resend_cooldown_seconds: Minimum gap between a code and its resend.
        max_requests_per_hour: Reset requests allowed per email per hour.
        max_resend_per_hour: Resends allowed per email per hour.
        max_verify_attempts: Wrong guesses before a request is locked.
        platform_name: Name used in email subjects and bodies.
    """

    otp_ttl_minutes: int = 10
    resend_cooldown_seconds: int = 60
    max_requests_per_hour: int = 5
    max_resend_per_hour: int = 3
    max_verify_attempts: int = 5
    platform_name: str = "AlumniConnect"

    @classmethod
    def from_env(cls) -> "ResetSettings":
        return cls(
            otp_ttl_minutes=_env_int("RESET_OTP_TTL_MINUTES", 10),
            resend_cooldown_seconds=_env_int("RESET_OTP_RESEND_COOLDOWN_SECONDS", 60),
            max_requests_per_hour=_env_int("RESET_OTP_MAX_REQUESTS_PER_HOUR", 5),
            max_resend_per_hour=_env_int("RESET_OTP_MAX_RESEND_PER_HOUR", 3),
            max_verify_attempts=_env_int("RESET_OTP_MAX_VERIFY_ATTEMPTS", 5),
            platform_name=os.getenv("PLATFORM_NAME", "AlumniConnect"),
        )


@dataclass(frozen=True)
class RegistrationSettings:
    """
    Workshop registration policy.

    Attributes:
        token_ttl_hours: Lifetime of an emailed join token.
        single_use_tokens: Mark a registration 'used' on first redemption
            and refuse later redemptions.
        frontend_url: Base URL used to build join links.
    """

    token_ttl_hours: int = 72
    single_use_tokens: bool = False
    frontend_url: str = "http://localhost:3000"

    @classmethod
    def from_env(cls) -> "RegistrationSettings":
        return cls(
            token_ttl_hours=_env_int("WORKSHOP_TOKEN_TTL_HOURS", 72),
            single_use_tokens=_env_bool("WORKSHOP_SINGLE_USE_TOKENS", False),
            frontend_url=os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/"),
        )
