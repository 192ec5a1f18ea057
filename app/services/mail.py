# app/services/mail.py
"""Outbound mail. Delivery is best-effort: callers get a MailResult, never an exception."""
from __future__ import annotations

import smtplib
import ssl
from dataclasses import dataclass
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import Optional, Protocol

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class MailResult:
    sent: bool
    skipped: bool = False
    error: Optional[str] = None


class Mailer(Protocol):
    def send(self, to: str, subject: str, html: str, text: Optional[str] = None) -> MailResult: ...


def redact_email(email: str) -> str:
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class SmtpMailer:
    def __init__(self, *, host: Optional[str], port: int = 587, user: Optional[str] = None,
                 password: Optional[str] = None, use_tls: bool = True,
                 from_email: Optional[str] = None, from_name: str = "TechSupport4",
                 timeout: float = 10.0) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.use_tls = use_tls
        self.from_email = from_email or user
        self.from_name = from_name
        self.timeout = timeout

    @property
    def is_configured(self) -> bool:
        return bool(self.host and self.from_email)

    def send(self, to: str, subject: str, html: str, text: Optional[str] = None) -> MailResult:
        if not self.is_configured:
            logger.info("mail_skipped", to=redact_email(to), subject=subject)
            return MailResult(sent=False, skipped=True)

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to
        if text:
            msg.attach(MIMEText(text, "plain", "utf-8"))
        msg.attach(MIMEText(html, "html", "utf-8"))

        try:
            if self.port == 465:
                with smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout,
                                      context=ssl.create_default_context()) as server:
                    self._deliver(server, to, msg)
            else:
                with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                    if self.use_tls:
                        server.starttls(context=ssl.create_default_context())
                    self._deliver(server, to, msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("mail_failed", to=redact_email(to), subject=subject, error=str(exc))
            return MailResult(sent=False, error=str(exc))
        logger.info("mail_sent", to=redact_email(to), subject=subject)
        return MailResult(sent=True)

    def _deliver(self, server: smtplib.SMTP, to: str, msg: MIMEMultipart) -> None:
        if self.user and self.password:
            server.login(self.user, self.password)
        server.sendmail(self.from_email, [to], msg.as_string())


def build_mailer() -> SmtpMailer:
    return SmtpMailer(
        host=settings.SMTP_HOST,
        port=settings.SMTP_PORT,
        user=settings.SMTP_USER,
        password=settings.SMTP_PASSWORD,
        use_tls=settings.SMTP_USE_TLS,
        from_email=settings.EMAIL_FROM,
        from_name=settings.COMPANY_NAME,
    )


# ---------------------------------------------------------------------------
# templates
# ---------------------------------------------------------------------------
def otp_message(name: str, code: str, ttl_minutes: int) -> tuple[str, str, str]:
    subject = f"{settings.COMPANY_NAME} CRM - Your Login OTP"
    html = (
        '<div style="font-family:sans-serif;max-width:480px;margin:auto">'
        '<h2 style="color:#1e40af">Login Verification</h2>'
        f"<p>Hi <strong>{escape(name)}</strong>,</p>"
        "<p>Your one-time login code is:</p>"
        f'<div style="font-size:36px;font-weight:bold;letter-spacing:8px;color:#1e40af;padding:16px 0">{escape(code)}</div>'
        f'<p style="color:#64748b;font-size:13px">This code expires in {ttl_minutes} minutes. Do not share it with anyone.</p>'
        '<hr/><p style="font-size:12px;color:#94a3b8">If you did not attempt to log in, please contact support immediately.</p>'
        "</div>"
    )
    text = f"Hi {name},\nYour one-time login code is {code}. It expires in {ttl_minutes} minutes."
    return subject, html, text


def login_alert_message(name: str, when: datetime, ip: str, location: str,
                        user_agent: Optional[str]) -> tuple[str, str, str]:
    subject = f"{settings.COMPANY_NAME} CRM - New Login Detected"
    stamp = when.strftime("%Y-%m-%d %H:%M:%S UTC")
    device = (user_agent or "unknown")[:100]
    html = (
        '<div style="font-family:sans-serif;max-width:480px;margin:auto">'
        '<h2 style="color:#1e40af">Login Alert</h2>'
        f"<p>Hi <strong>{escape(name)}</strong>, a successful login was recorded:</p>"
        '<table style="width:100%;border-collapse:collapse;font-size:14px">'
        f'<tr><td style="padding:6px;color:#64748b">Time</td><td>{escape(stamp)}</td></tr>'
        f'<tr><td style="padding:6px;color:#64748b">IP</td><td>{escape(ip)}</td></tr>'
        f'<tr><td style="padding:6px;color:#64748b">Location</td><td>{escape(location)}</td></tr>'
        f'<tr><td style="padding:6px;color:#64748b">Device</td><td style="font-size:12px">{escape(device)}</td></tr>'
        "</table>"
        '<p style="color:#ef4444;font-size:13px">If this wasn\'t you, contact admin immediately.</p>'
        "</div>"
    )
    text = f"Hi {name}, a login was recorded at {stamp} from {ip} ({location}). Device: {device}"
    return subject, html, text


def welcome_message(name: str, email: str, role: str) -> tuple[str, str, str]:
    """Account-created notice. Never carries the initial password."""
    subject = f"Welcome to {settings.COMPANY_NAME} CRM"
    html = (
        '<div style="font-family:sans-serif;max-width:480px;margin:auto">'
        f'<h2 style="color:#1e40af">Welcome, {escape(name)}!</h2>'
        "<p>Your CRM account has been created.</p>"
        '<table style="font-size:14px">'
        f'<tr><td style="color:#64748b;padding:4px 8px">Email</td><td>{escape(email)}</td></tr>'
        f'<tr><td style="color:#64748b;padding:4px 8px">Role</td><td>{escape(role)}</td></tr>'
        "</table>"
        '<p style="color:#64748b;font-size:13px">Your administrator will share your initial password. '
        "Please change it after your first login.</p>"
        "</div>"
    )
    text = (f"Welcome, {name}!\nYour {settings.COMPANY_NAME} CRM account has been created "
            f"for {email} with the {role} role. Please change your password after your first login.")
    return subject, html, text
