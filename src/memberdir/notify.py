"""Scheduled birthday notification.

Reads the roster, computes today's and upcoming birthdays and emails the
administrator when at least one of the lists is non-empty. Triggered by the
cron route of the server or by the `memberdir-notify` command.
"""

import json
import logging
from dataclasses import asdict, dataclass
from datetime import date
from pathlib import Path

from freetser import Storage, setup_logging, start_storage_thread
from freetser.server import StorageQueue

from memberdir.birthdays import (
    InvalidDate,
    get_todays_birthdays,
    get_upcoming_birthdays,
)
from memberdir.data import DB_TABLES
from memberdir.data.members import MemberRecord, list_members
from memberdir.email import birthday_subject, deliver, render_birthday_email
from memberdir.settings import Settings, load_settings_from_env, parse_args

logger = logging.getLogger("memberdir.notify")


class NotificationConfigError(Exception):
    """The notifier cannot run because required settings are missing."""


@dataclass
class NotificationResult:
    message: str
    today_count: int = 0
    upcoming_count: int = 0
    sent: bool = False
    recipient: str | None = None
    subject: str | None = None
    delivery: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


def notify_birthdays(
    roster: list[MemberRecord], settings: Settings, now: date
) -> NotificationResult:
    """Compute the birthday lists for `roster` and email them if non-empty."""
    if not settings.admin_email:
        raise NotificationConfigError("Admin email not configured")

    if not roster:
        logger.info("No members found in database")
        return NotificationResult(message="No members to check")

    days = settings.upcoming_days
    todays = get_todays_birthdays(roster, now)
    upcoming = get_upcoming_birthdays(roster, now, days)

    logger.info(f"Found {len(todays)} birthdays today")
    logger.info(f"Found {len(upcoming)} upcoming birthdays")

    if not todays and not upcoming:
        return NotificationResult(message="No birthdays to report")

    subject = birthday_subject(todays, upcoming)
    text_body, html_body = render_birthday_email(
        todays, upcoming, now, settings.organization, days
    )
    delivery = deliver(
        settings.smtp,
        settings.smtp_send,
        settings.outbox_dir,
        settings.admin_email,
        subject,
        text_body,
        html_body,
    )

    return NotificationResult(
        message="Birthday notifications sent",
        today_count=len(todays),
        upcoming_count=len(upcoming),
        sent=True,
        recipient=settings.admin_email,
        subject=subject,
        delivery=delivery,
    )


def run_birthday_notifications(
    store_queue: StorageQueue, settings: Settings, now: date
) -> NotificationResult:
    """Load the roster from storage and run the notifier.

    A stored member with an invalid date raises InvalidDate; the notifier does
    not skip such members silently.
    """

    def load_roster(store: Storage) -> list[MemberRecord] | InvalidDate:
        try:
            return list_members(store)
        except InvalidDate as e:
            return e

    roster = store_queue.execute(load_roster)
    if isinstance(roster, InvalidDate):
        raise roster
    return notify_birthdays(roster, settings, now)


def run():
    """Run the notifier once against the configured database (for cron)."""
    args = parse_args(
        prog="memberdir-notify", description="Send the birthday notification email"
    )
    settings = load_settings_from_env(Path(args.env_file))

    log_listener = setup_logging()
    log_listener.start()
    logging.getLogger().setLevel(logging.DEBUG if settings.debug_logs else logging.INFO)

    try:
        store_queue = start_storage_thread(
            db_file=str(settings.db_file),
            db_tables=DB_TABLES,
        )
        result = run_birthday_notifications(store_queue, settings, date.today())
        print(json.dumps(result.to_dict()))
    except NotificationConfigError as e:
        logger.error(str(e))
        raise SystemExit(1)
    finally:
        log_listener.stop()


if __name__ == "__main__":
    run()
