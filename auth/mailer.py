"""
auth/mailer.py -- Outbound verification email and the verify-email result pages.

Transport: stdlib smtplib with STARTTLS (or implicit TLS when
SMTP_USE_TLS=false). When SMTP_HOST is not configured the sender runs in dev
mode: the message is logged with a redacted recipient instead of sent, and
send_verification_email() still returns True so local flows work end to end.

Send failures are logged and reported as False. They never raise -- the
caller decides whether an unsent email fails the request.

Layer rule: no imports from api/, events/, or cache/.
"""

from __future__ import annotations

import html
import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from urllib.parse import urlencode

from core.config import Settings

logger = logging.getLogger("eventdesk.mail")

_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>{title}</title>
<style>
body {{ font-family: -apple-system, 'Segoe UI', sans-serif; background: #f4f4f4; color: #333; }}
.card {{ max-width: 560px; margin: 60px auto; background: #fff; border-radius: 8px; padding: 32px; }}
h1 {{ margin-top: 0; color: {accent}; }}
a.button {{ display: inline-block; padding: 12px 24px; background: #667eea; color: #fff;
            border-radius: 4px; text-decoration: none; }}
</style>
</head>
<body><div class="card"><h1>{title}</h1>{body}</div></body>
</html>
"""


def redact_email(email: str) -> str:
    """Redact an email address for logging ("jo***@example.com")."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


def verification_link(app_url: str, token: str) -> str:
    return f"{app_url.rstrip('/')}/verify-email?{urlencode({'token': token})}"


def verification_email_html(name: str, link: str) -> str:
    body = (
        f"<p>Hi {html.escape(name)},</p>"
        "<p>Confirm your email address to activate your EventDesk account. "
        "This link expires in 24 hours and can be used once.</p>"
        f'<p><a class="button" href="{html.escape(link, quote=True)}">Verify email</a></p>'
    )
    return _PAGE.format(title="Verify your email", accent="#667eea", body=body)


def verification_success_html(name: str) -> str:
    body = f"<p>Thanks {html.escape(name)}, your email is verified. You can now sign in.</p>"
    return _PAGE.format(title="Email verified", accent="#2e7d32", body=body)


def verification_expired_html() -> str:
    body = "<p>This verification link is invalid or has expired. Ask an administrator to send a new one.</p>"
    return _PAGE.format(title="Link expired", accent="#c62828", body=body)


class EmailSender:
    """SMTP sender for transactional email.

    Usage:
        sender = EmailSender.from_settings(get_settings())
        ok = sender.send_verification_email("a@x.io", "Asha", link)
    """

    def __init__(
        self,
        *,
        smtp_host: str = "",
        smtp_port: int = 587,
        smtp_user: str = "",
        smtp_password: str = "",
        smtp_use_tls: bool = True,
        from_email: str = "",
        from_name: str = "EventDesk",
        timeout: float = 30.0,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmailSender":
        return cls(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            smtp_user=settings.smtp_user,
            smtp_password=settings.smtp_password,
            smtp_use_tls=settings.smtp_use_tls,
            from_email=settings.email_from,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def send_verification_email(self, to_email: str, name: str, link: str) -> bool:
        text_body = f"Hi {name},\n\nVerify your EventDesk account (link valid for 24 hours):\n{link}\n"
        return self._send(to_email, "Verify your email address", verification_email_html(name, link), text_body)

    def _send(self, to_email: str, subject: str, html_body: str, text_body: str) -> bool:
        if not self.is_configured:
            logger.info("SMTP not configured -- not sending '%s' to %s", subject, redact_email(to_email))
            return True

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))

        context = ssl.create_default_context()
        try:
            if self.smtp_use_tls:
                with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                    server.starttls(context=context)
                    self._login(server)
                    server.sendmail(self.from_email, to_email, msg.as_string())
            else:
                with smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, context=context, timeout=self.timeout) as server:
                    self._login(server)
                    server.sendmail(self.from_email, to_email, msg.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Email to %s failed: %s", redact_email(to_email), exc)
            return False

        logger.info("Email '%s' sent to %s", subject, redact_email(to_email))
        return True

    def _login(self, server: smtplib.SMTP) -> None:
        if self.smtp_user and self.smtp_password:
            server.login(self.smtp_user, self.smtp_password)
