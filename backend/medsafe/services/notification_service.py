"""Alert delivery sink: log every alert and email it when SMTP is configured."""

from __future__ import annotations

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from typing import Iterable

from fastapi import BackgroundTasks

from medsafe.core.config import get_settings
from medsafe.models.alert import Alert, AlertSeverity

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    AlertSeverity.LOW: logging.INFO,
    AlertSeverity.MEDIUM: logging.INFO,
    AlertSeverity.HIGH: logging.WARNING,
    AlertSeverity.CRITICAL: logging.ERROR,
}


def build_alert_email(alert: Alert) -> tuple[str, str]:
    severity = alert.severity.value.upper()
    subject = f"[{severity}] {alert.kind.value.replace('_', ' ')}"
    lines = [
        alert.message,
        "",
        f"Subject: {alert.subject_type} {alert.subject_id}",
        f"Raised: {alert.created_at.isoformat()}",
        f"Times fired: {alert.fire_count}",
    ]
    if alert.escalated_to:
        lines.append(f"Escalated to: {alert.escalated_to}")
    lines.extend(["", "Acknowledge this alert on the medication dashboard."])
    return subject, "\n".join(lines)


def dispatch_alert(
    alert: Alert, *, background_tasks: BackgroundTasks | None = None
) -> None:
    """Hand an alert to the delivery channels; the outcome is never reported back."""
    logger.log(
        _LOG_LEVELS.get(alert.severity, logging.INFO),
        "Alert %s (%s/%s) fire #%s on %s %s: %s",
        alert.id,
        alert.severity.value,
        alert.kind.value,
        alert.fire_count,
        alert.subject_type,
        alert.subject_id,
        alert.message,
    )
    settings = get_settings()
    recipients = [addr for addr in settings.alert_email_recipients if addr]
    if not recipients:
        return
    if not settings.smtp_host or not settings.smtp_port:
        logger.debug("SMTP disabled; skipping alert email to %s", recipients)
        return
    subject, body = build_alert_email(alert)
    schedule_email(
        background_tasks, recipients=recipients, subject=subject, body=body
    )


def schedule_email(
    background_tasks: BackgroundTasks | None,
    *,
    recipients: Iterable[str],
    subject: str,
    body: str,
) -> None:
    """Queue an email on the request's background tasks, or the loop's executor."""
    recipients_list = [addr for addr in recipients if addr]
    if not recipients_list:
        return
    if background_tasks is not None:
        background_tasks.add_task(_send_email, recipients_list, subject, body)
        return
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        _send_email(recipients_list, subject, body)
        return
    loop.run_in_executor(None, _send_email, recipients_list, subject, body)


def _send_email(recipients: list[str], subject: str, body: str) -> None:
    settings = get_settings()
    if not settings.smtp_host or not settings.smtp_port:
        logger.info("SMTP settings missing; skipping email delivery to %s", recipients)
        return

    message = EmailMessage()
    message["Subject"] = subject
    message["To"] = ", ".join(recipients)
    message["From"] = settings.smtp_from or settings.smtp_username or "alerts@medsafe.local"
    message.set_content(body)

    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port) as smtp:
            if settings.smtp_username and settings.smtp_password:
                smtp.starttls()
                smtp.login(settings.smtp_username, settings.smtp_password)
            smtp.send_message(message)
        logger.info("Alert email sent to %s", recipients)
    except Exception as exc:  # pragma: no cover - logging side-effect only
        logger.exception("Failed to send alert email to %s: %s", recipients, exc)
