"""Birthday overview for the dashboard."""

import logging
from datetime import date

from freetser import Response, Storage
from freetser.server import StorageQueue

from memberdir.birthdays import (
    InvalidDate,
    days_until_birthday,
    format_birthday,
    get_todays_birthdays,
    get_upcoming_birthdays,
)
from memberdir.data.members import MemberRecord, list_members

logger = logging.getLogger("memberdir.handlers.birthdays")


def birthdays_handler(store_queue: StorageQueue, now: date, days: int) -> Response:
    """Handle /birthdays/ - member count, today's and upcoming birthdays."""

    def load_roster(store: Storage) -> list[MemberRecord] | InvalidDate:
        try:
            return list_members(store)
        except InvalidDate as e:
            return e

    roster = store_queue.execute(load_roster)
    try:
        if isinstance(roster, InvalidDate):
            raise roster
        todays = get_todays_birthdays(roster, now)
        upcoming = get_upcoming_birthdays(roster, now, days)
    except InvalidDate as e:
        logger.error(f"birthdays: Invalid member date: {e}")
        return Response.text(f"Invalid stored date: {e}", status_code=500)

    today_entries = []
    for p in todays:
        entry = p.to_dict()
        entry["birthday"] = format_birthday(p.date_of_birth)
        today_entries.append(entry)

    upcoming_entries = []
    for p in upcoming:
        entry = p.to_dict()
        entry["birthday"] = format_birthday(p.date_of_birth)
        entry["days_until"] = days_until_birthday(p.date_of_birth, now)
        upcoming_entries.append(entry)

    logger.info(
        f"birthdays: {len(today_entries)} today, {len(upcoming_entries)} upcoming"
    )
    return Response.json(
        {
            "date": now.isoformat(),
            "member_count": len(roster),
            "days": days,
            "today": today_entries,
            "upcoming": upcoming_entries,
        }
    )
