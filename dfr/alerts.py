from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from .settings import Settings, settings as default_settings

logger = logging.getLogger("dfr.alerts")


def send_email(subject: str, body: str, settings: Settings | None = None) -> bool:
    """Send an email if SMTP settings are configured.

    Environment variables:
      - DFR_ENABLE_EMAIL=true
      - DFR_SMTP_HOST / DFR_SMTP_PORT
      - DFR_SMTP_USER / DFR_SMTP_PASSWORD
      - DFR_EMAIL_FROM / DFR_EMAIL_TO
    """
    settings = settings or default_settings
    if not settings.enable_email:
        return False
    if not all(
        [
            settings.smtp_host,
            settings.smtp_port,
            settings.smtp_user,
            settings.smtp_password,
            settings.email_from,
            settings.email_to,
        ]
    ):
        logger.warning("Email alerts are enabled but SMTP settings are incomplete")
        return False

    try:
        msg = MIMEMultipart()
        msg["From"] = settings.email_from
        msg["To"] = settings.email_to
        msg["Subject"] = subject
        msg.attach(MIMEText(body, "plain"))

        server = smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=10)
        server.starttls()
        server.login(settings.smtp_user, settings.smtp_password)
        server.sendmail(settings.email_from, [settings.email_to], msg.as_string())
        server.quit()
        return True
    except (smtplib.SMTPException, OSError) as e:
        logger.error("Sending alert email %r failed: %s", subject, e)
        return False


def switch_alert(service: str, hostname: str, from_ip: str | None, to_ip: str, verdict: str) -> tuple[str, str]:
    """Subject and body for one DNS switch."""
    down = verdict == "down"
    subject = f"{'DOWN, failing over' if down else 'RECOVERED'}: {hostname} -> {to_ip}"
    body = (
        f"Service: {service}\n"
        f"Hostname: {hostname}\n"
        f"Verdict: {verdict.upper()}\n"
        f"Previous IP: {from_ip or '?'}\n"
        f"New IP: {to_ip}\n"
    )
    return subject, body
