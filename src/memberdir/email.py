"""Email sending module with SMTP support.

Sends emails via SMTP with STARTTLS. Creates a new connection per request
(simple, no keep-alive complexity). When sending is disabled, messages are
written to the outbox directory instead. Also renders the birthday
notification email.
"""

import html
import logging
import smtplib
import time
from collections.abc import Sequence
from datetime import date
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, formatdate
from pathlib import Path

from memberdir.birthdays import (
    BirthdayProjection,
    days_until_birthday,
    format_birthday,
    format_weekday_date,
)
from memberdir.settings import SmtpConfig

logger = logging.getLogger("memberdir.email")

DEFAULT_SENDER = "noreply@localhost"


def build_message(
    sender_email: str,
    sender_name: str,
    to_email: str,
    subject: str,
    text_body: str,
    html_body: str,
) -> MIMEMultipart:
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["Date"] = formatdate(localtime=True)
    msg["From"] = formataddr((sender_name, sender_email))
    msg["To"] = to_email

    # Attach text and HTML parts
    msg.attach(MIMEText(text_body.strip(), "plain", "utf-8"))
    msg.attach(MIMEText(html_body.strip(), "html", "utf-8"))
    return msg


def sendmail(
    config: SmtpConfig,
    to_email: str,
    subject: str,
    text_body: str,
    html_body: str,
) -> None:
    """Send a multipart email via SMTP with STARTTLS.

    Creates a new connection per call (simple, no keep-alive).
    Raises exception on failure.
    """
    msg = build_message(
        config.sender_email, config.sender_name, to_email, subject, text_body, html_body
    )

    logger.debug(f"Connecting to SMTP server {config.host}:{config.port}")
    with smtplib.SMTP(config.host, config.port) as server:
        server.starttls()
        if config.username and config.password:
            server.login(config.username, config.password)
        server.sendmail(config.sender_email, [to_email], msg.as_string())

    logger.info(f"Email sent to {to_email}: {subject}")


def save_email(
    outbox_dir: Path,
    config: SmtpConfig | None,
    to_email: str,
    subject: str,
    text_body: str,
    html_body: str,
) -> Path:
    """Write the email to an .eml file in the outbox directory."""
    sender_email = config.sender_email if config else DEFAULT_SENDER
    sender_name = config.sender_name if config else ""
    msg = build_message(
        sender_email, sender_name, to_email, subject, text_body, html_body
    )

    outbox_dir.mkdir(parents=True, exist_ok=True)
    safe_recipient = "".join(c if c.isalnum() else "_" for c in to_email)
    path = outbox_dir / f"{time.time_ns()}_{safe_recipient}.eml"
    path.write_text(msg.as_string(), encoding="utf-8")

    logger.info(f"Email to {to_email} saved to {path}: {subject}")
    return path


def deliver(
    config: SmtpConfig | None,
    smtp_send: bool,
    outbox_dir: Path,
    to_email: str,
    subject: str,
    text_body: str,
    html_body: str,
) -> str:
    """Send via SMTP when enabled and configured, otherwise save to the outbox.

    Returns a short description of where the email went.
    """
    if smtp_send and config is not None:
        sendmail(config, to_email, subject, text_body, html_body)
        return f"smtp:{config.host}"

    if smtp_send:
        logger.warning("SMTP sending enabled but no SMTP config, saving to outbox")
    path = save_email(outbox_dir, config, to_email, subject, text_body, html_body)
    return f"file:{path}"


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'s' if count != 1 else ''}"


def birthday_subject(
    todays: Sequence[BirthdayProjection], upcoming: Sequence[BirthdayProjection]
) -> str:
    """Subject line; today's birthdays take precedence over upcoming ones."""
    if todays:
        return f"🎉 {_plural(len(todays), 'Birthday')} Today!"
    if upcoming:
        return f"📅 {_plural(len(upcoming), 'Upcoming Birthday')}"
    return "🎂 Birthday Reminders"


def _contact_lines(member: BirthdayProjection) -> list[str]:
    lines = [f"Phone: {member.phone}"]
    if member.email:
        lines.append(f"Email: {member.email}")
    return lines


def render_birthday_text(
    todays: Sequence[BirthdayProjection],
    upcoming: Sequence[BirthdayProjection],
    now: date,
    organization: str,
    days: int,
) -> str:
    lines = ["Birthday Reminders", format_weekday_date(now), ""]

    if todays:
        lines.append("Celebrating Today!")
        for member in todays:
            lines.append(
                f"- {member.full_name} ({format_birthday(member.date_of_birth)}, "
                f"turns {member.age})"
            )
            lines.extend(f"  {line}" for line in _contact_lines(member))
        lines.append("")

    if upcoming:
        lines.append(f"Coming Up (Next {days} Days)")
        for member in upcoming:
            days_until = days_until_birthday(member.date_of_birth, now)
            lines.append(
                f"- {member.full_name} ({format_birthday(member.date_of_birth)}, "
                f"in {_plural(days_until, 'day')})"
            )
            lines.extend(f"  {line}" for line in _contact_lines(member))
        lines.append("")

    if not todays and not upcoming:
        lines.append(f"No birthdays today or in the next {days} days.")
        lines.append("")

    lines.append(organization)
    lines.append("This is an automated reminder.")
    return "\n".join(lines)


def _html_member(member: BirthdayProjection, badge: str | None = None) -> str:
    contact = f"📞 {html.escape(member.phone)}"
    if member.email:
        contact += f"<br>📧 {html.escape(member.email)}"
    badge_html = (
        f'<span style="float: right; background: #1e3a8a; color: #ffffff; '
        f'padding: 4px 8px; border-radius: 6px; font-size: 12px;">{badge}</span>'
        if badge
        else ""
    )
    return f"""
<div style="background: #ffffff; padding: 15px; border-radius: 6px; margin-bottom: 12px;">
  {badge_html}
  <p style="margin: 0 0 8px 0; font-size: 18px; font-weight: bold;">{html.escape(member.full_name)}</p>
  <p style="margin: 0; font-size: 14px; color: #6b7280;">📅 {format_birthday(member.date_of_birth)}</p>
  <p style="margin: 8px 0 0 0; font-size: 14px; color: #6b7280;">{contact}</p>
</div>
"""


def render_birthday_html(
    todays: Sequence[BirthdayProjection],
    upcoming: Sequence[BirthdayProjection],
    now: date,
    organization: str,
    days: int,
) -> str:
    sections = []

    if todays:
        members_html = "".join(_html_member(m) for m in todays)
        sections.append(
            f"""
<div style="background: #fef3c7; padding: 20px; border-radius: 8px; margin-bottom: 20px;">
  <h2 style="margin: 0 0 15px 0; color: #78350f;">🎉 Celebrating Today!</h2>
  {members_html}
</div>
"""
        )

    if upcoming:
        members_html = "".join(
            _html_member(
                m, _plural(days_until_birthday(m.date_of_birth, now), "day")
            )
            for m in upcoming
        )
        sections.append(
            f"""
<div style="background: #dbeafe; padding: 20px; border-radius: 8px; margin-bottom: 20px;">
  <h2 style="margin: 0 0 15px 0; color: #1e3a8a;">📅 Coming Up (Next {days} Days)</h2>
  {members_html}
</div>
"""
        )

    if not todays and not upcoming:
        sections.append(
            f'<p style="color: #6b7280;">No birthdays today or in the next {days} days.</p>'
        )

    body = "".join(sections)
    return f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>Birthday Reminders</title>
</head>
<body style="margin: 0; padding: 30px; font-family: Arial, sans-serif; background-color: #f3f4f6;">
  <h1 style="margin: 0; color: #1e3a8a;">🎂 Birthday Reminders</h1>
  <p style="margin: 10px 0 20px 0; color: #6b7280;">{format_weekday_date(now)}</p>
  {body}
  <p style="font-size: 14px; color: #6b7280;">{html.escape(organization)}</p>
  <p style="font-size: 12px; color: #9ca3af;">This is an automated reminder. Please reach out to celebrate with your members!</p>
</body>
</html>
"""


def render_birthday_email(
    todays: Sequence[BirthdayProjection],
    upcoming: Sequence[BirthdayProjection],
    now: date,
    organization: str,
    days: int,
) -> tuple[str, str]:
    """Render the birthday notification as (text, html)."""
    return (
        render_birthday_text(todays, upcoming, now, organization, days),
        render_birthday_html(todays, upcoming, now, organization, days),
    )
