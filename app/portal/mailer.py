"""
Outbound email over SMTP.

Sending is best-effort: every public function returns ``(ok, detail)`` and logs
failures instead of raising. Without SMTP credentials outside production the message
is logged rather than sent.
"""
from __future__ import annotations

import logging
import smtplib
import threading
from email.message import EmailMessage
from typing import Any

from flask import current_app, render_template

from app.portal.config import Settings, get_settings

logger = logging.getLogger(__name__)

SUGGESTION_STATUS_MESSAGES = {
    "en-revision": "Tu sugerencia está siendo revisada",
    "procesada": "Tu sugerencia ha sido procesada",
    "archivada": "Tu sugerencia ha sido archivada",
}


def _build_message(settings: Settings, to: str, subject: str, text: str, html: str | None) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = settings.email_from or f"UGT-CLM-UGR Granada <{settings.email_user or 'no-reply@localhost'}>"
    msg["To"] = to
    msg.set_content(text)
    if html:
        msg.add_alternative(html, subtype="html")
    return msg


def deliver(settings: Settings, msg: EmailMessage) -> tuple[bool, str]:
    """Hand one message to the SMTP server. Never raises."""
    if not settings.email_user or not settings.email_pass:
        if settings.is_production:
            logger.error("Email not sent to %s: SMTP credentials missing", msg["To"])
            return False, "smtp_not_configured"
        logger.info("[dev] Email to %s not sent (no SMTP credentials): %s", msg["To"], msg["Subject"])
        return True, "logged"
    try:
        if settings.email_secure:
            server: smtplib.SMTP = smtplib.SMTP_SSL(settings.email_host, settings.email_port, timeout=20)
        else:
            server = smtplib.SMTP(settings.email_host, settings.email_port, timeout=20)
        with server:
            if not settings.email_secure:
                server.starttls()
            server.login(settings.email_user, settings.email_pass)
            server.send_message(msg)
    except smtplib.SMTPAuthenticationError as e:
        logger.error("SMTP authentication failed sending to %s: %s", msg["To"], e)
        return False, f"SMTP authentication failed: {e}"
    except (smtplib.SMTPException, OSError) as e:
        logger.error("SMTP error sending to %s: %s", msg["To"], e)
        return False, f"SMTP error: {e}"
    logger.info("Email sent to %s: %s", msg["To"], msg["Subject"])
    return True, "sent"


def send_email(to: str | None, subject: str, template: str, **context: Any) -> tuple[bool, str]:
    """
    Render ``email/<template>.html`` and send it. With MAIL_BACKGROUND enabled the SMTP
    conversation happens on a daemon thread so the request is not held up.
    """
    if not to:
        return False, "no_recipient"
    try:
        html = render_template(f"email/{template}.html", subject=subject, **context)
        text = render_template(f"email/{template}.txt", subject=subject, **context)
        settings = get_settings()
        msg = _build_message(settings, to, subject, text, html)
    except Exception as e:
        logger.exception("Failed to render email %s for %s: %s", template, to, e)
        return False, f"render failed: {e}"

    if current_app.config.get("MAIL_BACKGROUND", True):
        threading.Thread(target=deliver, args=(settings, msg), name="mailer", daemon=True).start()
        return True, "queued"
    return deliver(settings, msg)


def admin_recipient() -> str | None:
    settings = get_settings()
    return settings.admin_notify_email or settings.admin_email or settings.email_user or None


def send_suggestion_confirmation(suggestion) -> tuple[bool, str]:
    if suggestion.is_anonymous or not suggestion.email:
        return False, "anonymous"
    return send_email(
        suggestion.email,
        f"Confirmación de sugerencia {suggestion.tracking_id}",
        "suggestion_confirmation",
        suggestion=suggestion,
    )


def send_suggestion_admin_notification(suggestion) -> tuple[bool, str]:
    prefix = "[URGENTE] " if suggestion.urgency == "alta" else ""
    return send_email(
        admin_recipient(),
        f"{prefix}Nueva {suggestion.suggestion_type}: {suggestion.subject}",
        "suggestion_admin",
        suggestion=suggestion,
    )


def send_suggestion_status_update(suggestion, new_status: str, admin_notes: str | None = None) -> tuple[bool, str]:
    if suggestion.is_anonymous or not suggestion.email:
        logger.info("Skipping status email for suggestion %s (anonymous or no email)", suggestion.id)
        return False, "anonymous"
    return send_email(
        suggestion.email,
        f"Actualización - Sugerencia {suggestion.tracking_id}",
        "suggestion_status",
        suggestion=suggestion,
        new_status=new_status,
        status_message=SUGGESTION_STATUS_MESSAGES.get(new_status, "Estado actualizado"),
        admin_notes=admin_notes or "",
    )


def send_contact_notification(contact: dict[str, Any]) -> tuple[bool, str]:
    return send_email(
        admin_recipient(),
        f"Nuevo mensaje de contacto: {contact.get('subject') or 'Sin asunto'}",
        "contact_admin",
        contact=contact,
    )


def send_affiliation_notification(application: dict[str, Any]) -> tuple[bool, str]:
    return send_email(
        admin_recipient(),
        f"Nueva solicitud de afiliación: {application.get('name')}",
        "affiliation_admin",
        application=application,
    )
