"""
Transactional email for AlumniConnect.

Sends password-reset codes, password-changed confirmations and workshop
join links over SMTP. Every send returns a DispatchResult and never raises:
callers log a failed result and carry on, so a mail outage can never fail
the request that triggered it.

Configuration (read from the environment / .env):
- EMAIL_HOST, EMAIL_PORT (587), EMAIL_SECURE ("true" for implicit TLS)
- EMAIL_USER, EMAIL_PASS
- EMAIL_FROM (defaults to EMAIL_USER)
- PLATFORM_NAME, PLATFORM_LOGO_URL
- PLATFORM_TIMEZONE (UTC): zone used to print workshop dates
"""

import logging
import os
import smtplib
from dataclasses import dataclass
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from typing import Optional

import pytz
from dotenv import load_dotenv
from jinja2 import Environment, FileSystemLoader, select_autoescape

load_dotenv()

TEMPLATE_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "templates")

_templates = Environment(
    loader=FileSystemLoader(TEMPLATE_DIR),
    autoescape=select_autoescape(["html"]),
)

GMAIL_HOST = "smtp.gmail.com"
DEFAULT_FROM = "noreply@alumniconnect.com"


@dataclass(frozen=True)
class DispatchResult:
    """Outcome of one send. Inspect for logging only."""

    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class SmtpSettings:
    host: Optional[str]
    port: int
    secure: bool
    user: Optional[str]
    password: Optional[str]
    sender: str

    @classmethod
    def from_env(cls) -> "SmtpSettings":
        user = os.getenv("EMAIL_USER")
        return cls(
            host=os.getenv("EMAIL_HOST"),
            port=int(os.getenv("EMAIL_PORT", "587")),
            secure=os.getenv("EMAIL_SECURE", "").lower() == "true",
            user=user,
            password=os.getenv("EMAIL_PASS"),
            sender=os.getenv("EMAIL_FROM") or user or DEFAULT_FROM,
        )

    @property
    def configured(self) -> bool:
        return bool((self.host or self.user) and self.password)


def platform_name() -> str:
    return os.getenv("PLATFORM_NAME", "AlumniConnect")


def format_local(dt: datetime) -> str:
    """
    Render dt in PLATFORM_TIMEZONE. Naive datetimes are taken as UTC.
    """
    if dt.tzinfo is None:
        dt = pytz.utc.localize(dt)
    tz = pytz.timezone(os.getenv("PLATFORM_TIMEZONE", "UTC"))
    return dt.astimezone(tz).strftime("%A, %B %d, %Y %I:%M %p %Z")


def _open_connection(settings: SmtpSettings) -> smtplib.SMTP:
    # No EMAIL_HOST but an EMAIL_USER means a Gmail account with an app password.
    host = settings.host or GMAIL_HOST
    if settings.secure:
        return smtplib.SMTP_SSL(host, settings.port, timeout=10)
    return smtplib.SMTP(host, settings.port, timeout=10)


def send_email(to: str, subject: str, text: str, html: str,
               settings: Optional[SmtpSettings] = None) -> DispatchResult:
    """
    Send one multipart (text + HTML) message.

    Args:
        to (str): Recipient address.
        subject (str): Subject line.
        text (str): Plain-text body.
        html (str): HTML body.
        settings (SmtpSettings, optional): Transport settings; read from env if omitted.

    Returns:
        DispatchResult: success flag plus message id or error description.
    """
    if not to or not to.strip():
        logging.error("[Email] Cannot send email: recipient is missing")
        return DispatchResult(False, error="Missing recipient")

    settings = settings or SmtpSettings.from_env()
    if not settings.configured:
        logging.warning(f"[Email] Transport not configured; dropping '{subject}' to {to}")
        return DispatchResult(False, error="Email service not configured")

    msg = MIMEMultipart("alternative")
    msg["From"] = settings.sender
    msg["To"] = to
    msg["Subject"] = subject
    msg["Message-ID"] = make_msgid(domain=settings.sender.split("@")[-1])
    msg.attach(MIMEText(text, "plain"))
    msg.attach(MIMEText(html, "html"))

    try:
        with _open_connection(settings) as server:
            if not settings.secure:
                server.starttls()
            if settings.user:
                server.login(settings.user, settings.password)
            server.sendmail(settings.sender, [to], msg.as_string())
    except smtplib.SMTPAuthenticationError as e:
        logging.error(f"[Email] Authentication failed for {settings.user}: {e}")
        return DispatchResult(False, error="Authentication failed. Check EMAIL_USER and EMAIL_PASS.")
    except (smtplib.SMTPException, OSError) as e:
        logging.error(f"[Email] Sending '{subject}' to {to} failed: {e}")
        return DispatchResult(False, error=str(e))

    logging.info(f"[Email] Sent '{subject}' to {to} ({msg['Message-ID']})")
    return DispatchResult(True, message_id=msg["Message-ID"])


def send_password_reset_email(to: str, user_name: str, otp: str, ttl_minutes: int,
                              platform: Optional[str] = None) -> DispatchResult:
    platform = platform or platform_name()
    subject = f"Your password reset code for {platform}"
    context = {
        "user_name": user_name or "User",
        "otp": otp,
        "ttl_minutes": ttl_minutes,
        "platform_name": platform,
        "logo_url": os.getenv("PLATFORM_LOGO_URL", ""),
    }
    text = _templates.get_template("password_reset.txt").render(**context)
    html = _templates.get_template("password_reset.html").render(**context)
    return send_email(to, subject, text, html)


def send_password_changed_email(to: str, user_name: str,
                                platform: Optional[str] = None) -> DispatchResult:
    platform = platform or platform_name()
    context = {
        "user_name": user_name or "",
        "changed_at": datetime.now().strftime("%Y-%m-%d %H:%M"),
        "platform_name": platform,
    }
    text = _templates.get_template("password_changed.txt").render(**context)
    html = _templates.get_template("password_changed.html").render(**context)
    return send_email(to, "Your password has been changed", text, html)


def send_workshop_email(to: str, student_name: str, workshop_title: str,
                        workshop_date: datetime, join_url: str,
                        registration_mode: str = "email-only",
                        platform: Optional[str] = None) -> DispatchResult:
    """
    Mail a workshop join link.

    For 'email-only' workshops join_url is the tokenized frontend link; for
    'public-link' workshops it is the raw meeting link.
    """
    platform = platform or platform_name()
    logging.info(f"[Email] Workshop link for '{workshop_title}' to {to} (mode={registration_mode})")

    context = {
        "student_name": student_name or "Student",
        "workshop_title": workshop_title,
        "date_time": format_local(workshop_date),
        "join_url": join_url,
        "platform_name": platform,
    }
    subject = f"Your access link for '{workshop_title}' ({workshop_date.strftime('%Y-%m-%d')})"
    text = _templates.get_template("workshop_link.txt").render(**context)
    html = _templates.get_template("workshop_link.html").render(**context)
    return send_email(to, subject, text, html)


class EmailNotifier:
    """
    Notifier handed to the flow controllers.

    Binds the platform name to the module-level send functions.
    """

    def __init__(self, platform: Optional[str] = None):
        self.platform = platform or platform_name()

    def password_reset(self, to: str, user_name: str, otp: str, ttl_minutes: int) -> DispatchResult:
        return send_password_reset_email(to, user_name, otp, ttl_minutes, self.platform)

    def password_changed(self, to: str, user_name: str) -> DispatchResult:
        return send_password_changed_email(to, user_name, self.platform)

    def workshop_link(self, to: str, student_name: str, workshop_title: str,
                      workshop_date: datetime, join_url: str, registration_mode: str) -> DispatchResult:
        return send_workshop_email(to, student_name, workshop_title, workshop_date,
                                   join_url, registration_mode, self.platform)
