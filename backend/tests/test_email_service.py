import smtplib
from datetime import datetime

import pytest

from backend.notifications import email_service
from backend.notifications.email_service import EmailNotifier, SmtpSettings, format_local, send_email

SETTINGS = SmtpSettings(
    host="smtp.example.com",
    port=587,
    secure=False,
    user="mailer@example.com",
    password="app-password",
    sender="mailer@example.com",
)


@pytest.fixture
def smtp(mocker):
    smtp_cls = mocker.patch("backend.notifications.email_service.smtplib.SMTP")
    server = smtp_cls.return_value
    server.__enter__.return_value = server
    return server


def test_send_email_success(smtp):
    result = send_email("ada@example.com", "Hello", "plain body", "<p>html body</p>", settings=SETTINGS)

    assert result.success
    assert result.message_id.endswith("@example.com>")
    smtp.starttls.assert_called_once()
    smtp.login.assert_called_once_with("mailer@example.com", "app-password")
    sender, recipients, raw = smtp.sendmail.call_args[0]
    assert recipients == ["ada@example.com"]
    assert "plain body" in raw


def test_send_email_not_configured(smtp):
    settings = SmtpSettings(host=None, port=587, secure=False, user=None, password=None,
                            sender="noreply@alumniconnect.com")

    result = send_email("ada@example.com", "Hello", "t", "h", settings=settings)

    assert not result.success
    assert result.error == "Email service not configured"
    smtp.sendmail.assert_not_called()


def test_send_email_missing_recipient(smtp):
    result = send_email("  ", "Hello", "t", "h", settings=SETTINGS)

    assert not result.success
    smtp.sendmail.assert_not_called()


def test_send_email_auth_failure(smtp):
    smtp.login.side_effect = smtplib.SMTPAuthenticationError(535, b"bad credentials")

    result = send_email("ada@example.com", "Hello", "t", "h", settings=SETTINGS)

    assert not result.success
    assert "Authentication failed" in result.error


def test_send_email_starttls_failure_closes_connection(smtp):
    smtp.starttls.side_effect = smtplib.SMTPNotSupportedError("STARTTLS extension not supported by server.")

    result = send_email("ada@example.com", "Hello", "t", "h", settings=SETTINGS)

    assert not result.success
    assert "STARTTLS" in result.error
    smtp.__exit__.assert_called_once()
    smtp.sendmail.assert_not_called()


def test_send_email_implicit_tls_skips_starttls(mocker):
    ssl_cls = mocker.patch("backend.notifications.email_service.smtplib.SMTP_SSL")
    server = ssl_cls.return_value
    server.__enter__.return_value = server
    settings = SmtpSettings(host="smtp.example.com", port=465, secure=True,
                            user="mailer@example.com", password="app-password",
                            sender="mailer@example.com")

    result = send_email("ada@example.com", "Hello", "t", "h", settings=settings)

    assert result.success
    ssl_cls.assert_called_once_with("smtp.example.com", 465, timeout=10)
    server.starttls.assert_not_called()


def test_send_email_connection_refused(mocker):
    mocker.patch("backend.notifications.email_service.smtplib.SMTP",
                 side_effect=ConnectionRefusedError("refused"))

    result = send_email("ada@example.com", "Hello", "t", "h", settings=SETTINGS)

    assert not result.success
    assert "refused" in result.error


def test_password_reset_email_renders_code(mocker):
    send = mocker.patch.object(email_service, "send_email",
                               return_value=email_service.DispatchResult(True))

    EmailNotifier("AlumniConnect").password_reset("ada@example.com", "Ada", "482913", 10)

    to, subject, text, html = send.call_args[0]
    assert subject == "Your password reset code for AlumniConnect"
    assert "482913" in text and "482913" in html
    assert "10 minutes" in text


def test_workshop_email_escapes_html(mocker):
    send = mocker.patch.object(email_service, "send_email",
                               return_value=email_service.DispatchResult(True))

    EmailNotifier("AlumniConnect").workshop_link(
        "ada@example.com", "Ada", "<b>Rust</b> 101", datetime(2025, 4, 1, 17, 0),
        "https://app.example.com/workshops/join/abc", "email-only",
    )

    _, subject, text, html = send.call_args[0]
    assert "2025-04-01" in subject
    assert "https://app.example.com/workshops/join/abc" in text
    assert "&lt;b&gt;Rust&lt;/b&gt;" in html
    assert "<b>Rust</b> 101" in text


def test_format_local_converts_zone(monkeypatch):
    monkeypatch.setenv("PLATFORM_TIMEZONE", "America/New_York")

    assert format_local(datetime(2025, 4, 1, 17, 0)) == "Tuesday, April 01, 2025 01:00 PM EDT"


def test_format_local_defaults_to_utc(monkeypatch):
    monkeypatch.delenv("PLATFORM_TIMEZONE", raising=False)

    assert format_local(datetime(2025, 4, 1, 17, 0)) == "Tuesday, April 01, 2025 05:00 PM UTC"
