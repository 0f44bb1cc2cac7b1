"""Outgoing email: templates, queueing and SMTP delivery.

Request handlers never send mail themselves.  ``queue_email`` pushes a
``send_email`` task onto the email queue and returns; the worker renders
the template and delivers it over SMTP.  Email is best-effort end to end:
a queueing or delivery failure is logged and never fails the operation
that triggered it.

Without SMTP_HOST/SMTP_USER/SMTP_PASSWORD the worker runs in log mode and
writes the rendered message to the log instead of sending it.
"""

from __future__ import annotations

import logging
import smtplib
from collections.abc import Callable
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Any

from app.core.config import SETTINGS
from app.services.task_queue import EMAIL_QUEUE, task_queue

logger = logging.getLogger(__name__)

SEND_EMAIL_TASK = "send_email"


@dataclass(frozen=True, slots=True)
class RenderedEmail:
    to: str
    subject: str
    text: str
    html: str | None = None


# ---------------------------------------------------------------------------
# Templates: each returns (subject, text body, html body)
# ---------------------------------------------------------------------------


def _invitation(ctx: dict[str, Any]) -> tuple[str, str, str]:
    org = ctx["organization_name"]
    url = f"{SETTINGS.frontend_url}/accept-invitation?token={ctx['token']}"
    text = (
        f"{ctx.get('inviter_name') or 'A teammate'} invited you to join {org} "
        f"as {ctx['role']}.\n\nAccept the invitation: {url}\n\n"
        f"This invitation expires on {ctx['expires_at']}."
    )
    html = (
        f"<p>You have been invited to join <strong>{org}</strong> as "
        f"{ctx['role']}.</p><p><a href=\"{url}\">Accept invitation</a></p>"
    )
    return f"You're invited to join {org}", text, html


def _password_reset(ctx: dict[str, Any]) -> tuple[str, str, str]:
    url = f"{SETTINGS.frontend_url}/reset-password?token={ctx['token']}"
    text = (
        f"Hi {ctx.get('name') or 'there'},\n\n"
        f"Reset your password here: {url}\n\n"
        "The link is valid for one hour. If you did not ask for a reset, "
        "ignore this email."
    )
    html = f"<p><a href=\"{url}\">Reset your password</a> (valid for one hour)</p>"
    return "Reset your password", text, html


def _trial_warning(ctx: dict[str, Any]) -> tuple[str, str, str]:
    days = ctx["days_left"]
    unit = "day" if days == 1 else "days"
    url = f"{SETTINGS.frontend_url}/billing"
    text = (
        f"The free trial for {ctx['organization_name']} ends in {days} {unit}.\n\n"
        f"Choose a plan to keep access: {url}"
    )
    html = f"<p>Your trial ends in {days} {unit}. <a href=\"{url}\">Choose a plan</a></p>"
    return f"Your trial ends in {days} {unit}", text, html


def _trial_expired(ctx: dict[str, Any]) -> tuple[str, str, str]:
    url = f"{SETTINGS.frontend_url}/billing"
    text = (
        f"The free trial for {ctx['organization_name']} has ended and premium "
        f"features are now locked.\n\nUpgrade to restore access: {url}"
    )
    html = f"<p>Your trial has ended. <a href=\"{url}\">Upgrade now</a></p>"
    return "Your trial has expired", text, html


def _org_setup(ctx: dict[str, Any]) -> tuple[str, str, str]:
    url = f"{SETTINGS.frontend_url}/setup-account?token={ctx['token']}"
    text = (
        f"An organization named {ctx['organization_name']} was created for you.\n\n"
        f"Set your password to activate it: {url}"
    )
    html = f"<p><a href=\"{url}\">Set up {ctx['organization_name']}</a></p>"
    return f"Set up your {ctx['organization_name']} account", text, html


def _team_member_added(ctx: dict[str, Any]) -> tuple[str, str, str]:
    text = f"Hi {ctx.get('name') or 'there'}, you were added to the team {ctx['team_name']}."
    return f"You were added to {ctx['team_name']}", text, f"<p>{text}</p>"


def _manager_assigned(ctx: dict[str, Any]) -> tuple[str, str, str]:
    text = f"Hi {ctx.get('name') or 'there'}, you are now the manager of {ctx['team_name']}."
    return f"You now manage {ctx['team_name']}", text, f"<p>{text}</p>"


TEMPLATES: dict[str, Callable[[dict[str, Any]], tuple[str, str, str]]] = {
    "invitation": _invitation,
    "password_reset": _password_reset,
    "trial_warning": _trial_warning,
    "trial_expired": _trial_expired,
    "org_setup": _org_setup,
    "team_member_added": _team_member_added,
    "manager_assigned": _manager_assigned,
}


def render(template: str, to: str, context: dict[str, Any]) -> RenderedEmail:
    try:
        build = TEMPLATES[template]
    except KeyError:
        raise ValueError(f"unknown email template: {template}") from None
    subject, text, html = build(context)
    return RenderedEmail(to=to, subject=subject, text=text, html=html)


# ---------------------------------------------------------------------------
# Producer side (API)
# ---------------------------------------------------------------------------


async def queue_email(template: str, to: str, **context: Any) -> None:
    """Enqueue an email for the worker.  Never raises."""
    if template not in TEMPLATES:
        logger.error("Refusing to queue unknown email template %s", template)
        return
    try:
        await task_queue.enqueue(
            EMAIL_QUEUE,
            SEND_EMAIL_TASK,
            {"template": template, "to": to, "context": context},
        )
    except Exception:
        logger.exception("Failed to queue %s email to %s", template, to)
        return
    logger.info("Queued %s email to %s", template, to)


# ---------------------------------------------------------------------------
# Consumer side (worker)
# ---------------------------------------------------------------------------


def deliver(message: RenderedEmail) -> None:
    """Send over SMTP, or log the message when SMTP is not configured.

    Blocking; the worker runs it in a thread.
    """
    if not SETTINGS.smtp_enabled:
        logger.info(
            "Email (log mode) to=%s subject=%s\n%s",
            message.to,
            message.subject,
            message.text,
        )
        return

    msg = EmailMessage()
    msg["From"] = SETTINGS.email_from
    msg["To"] = message.to
    msg["Subject"] = message.subject
    msg.set_content(message.text)
    if message.html:
        msg.add_alternative(message.html, subtype="html")

    with smtplib.SMTP(SETTINGS.smtp_host, SETTINGS.smtp_port, timeout=10) as server:
        server.starttls()
        server.login(SETTINGS.smtp_user, SETTINGS.smtp_password)
        server.send_message(msg)
    logger.info("Email sent via SMTP to=%s subject=%s", message.to, message.subject)
