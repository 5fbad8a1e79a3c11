import logging
import smtplib
from email.message import EmailMessage
from html import escape
from typing import Protocol

from app.core.config import Settings

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def send(self, to: str, subject: str, text: str, html: str) -> None:
        ...


class SmtpNotifier:
    """Sends mail over SMTP. Without a configured host, mail is skipped."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def send(self, to: str, subject: str, text: str, html: str) -> None:
        if not self.settings.smtp_host:
            logger.info("Skipping email to %s: no SMTP host configured", to)
            return
        message = EmailMessage()
        message["From"] = self.settings.mail_from
        message["To"] = to
        message["Subject"] = subject
        message.set_content(text)
        message.add_alternative(html, subtype="html")

        with smtplib.SMTP(
            self.settings.smtp_host,
            self.settings.smtp_port,
            timeout=self.settings.mail_timeout_seconds,
        ) as smtp:
            if self.settings.smtp_use_tls:
                smtp.starttls()
            if self.settings.smtp_user:
                smtp.login(self.settings.smtp_user, self.settings.smtp_password)
            smtp.send_message(message)


def certificate_status_message(
    student_name: str, title: str, status: str, remarks: str | None
) -> tuple[str, str, str]:
    """Build (subject, text, html) for a verification outcome."""
    outcome = status.lower()
    note = remarks or "None"
    subject = f"Certificate {status}: {title}"
    text = (
        f"Hi {student_name},\n\n"
        f"Your certificate for {title} has been {outcome}.\n"
        f"Remarks: {note}"
    )
    html = (
        f"<h3>Hi {escape(student_name)},</h3>"
        f"<p>Your certificate for <b>{escape(title)}</b> has been <b>{outcome}</b>.</p>"
        f"<p>Remarks: {escape(note)}</p>"
    )
    return subject, text, html
