"""Birthday computations over a roster of members.

Every function takes the evaluation instant (`now`) explicitly, so results
only depend on their arguments. `now` may be a date or a datetime; datetimes
are truncated to their calendar date before any comparison.

February 29 birthdays are observed on March 1 in non-leap years, so every
member has exactly one birthday per year and the next one is never more than
366 days away.
"""

import calendar
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from memberdir.data.members import MemberRecord

__all__ = [
    "BirthdayProjection",
    "InvalidDate",
    "birthday_in_year",
    "calculate_age",
    "days_until_birthday",
    "format_birthday",
    "format_date",
    "format_weekday_date",
    "get_todays_birthdays",
    "get_upcoming_birthdays",
    "is_birthday_in_next_days",
    "is_birthday_today",
    "next_birthday",
    "parse_date",
    "project",
]

DEFAULT_UPCOMING_DAYS = 7

# Fixed English names, independent of the process locale
MONTH_NAMES = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)
WEEKDAY_NAMES = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)


class InvalidDate(ValueError):
    """A date could not be parsed or makes no sense for the computation."""

    def __init__(self, message: str, value: Any = None) -> None:
        super().__init__(message)
        self.value = value


@dataclass(frozen=True)
class BirthdayProjection:
    """Birthday-relevant view of a member, with the age at evaluation time."""

    id: str
    full_name: str
    phone: str
    email: str | None
    date_of_birth: date
    age: int
    profile_picture_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "full_name": self.full_name,
            "phone": self.phone,
            "email": self.email,
            "date_of_birth": self.date_of_birth.isoformat(),
            "age": self.age,
            "profile_picture_url": self.profile_picture_url,
        }


def parse_date(value: str | date) -> date:
    """Parse an ISO date (`YYYY-MM-DD`, optionally followed by a time part).

    Dates and datetimes are accepted as-is (datetimes lose their time part).
    Raises InvalidDate for anything else.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise InvalidDate(f"Expected a date string, got {type(value).__name__}", value)

    text = value.strip()
    if not text:
        raise InvalidDate("Empty date", value)
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        raise InvalidDate(f"Invalid date: {value!r}", value) from None


def _as_date(now: date) -> date:
    if isinstance(now, datetime):
        return now.date()
    return now


def calculate_age(date_of_birth: date, now: date) -> int:
    """Number of completed years between date_of_birth and now.

    A birth date after now has no meaningful age and raises InvalidDate.
    """
    today = _as_date(now)
    if date_of_birth > today:
        raise InvalidDate(
            f"Date of birth {date_of_birth.isoformat()} is after {today.isoformat()}",
            date_of_birth,
        )
    age = today.year - date_of_birth.year
    if (today.month, today.day) < (date_of_birth.month, date_of_birth.day):
        age -= 1
    return age


def _is_leap_day(d: date) -> bool:
    return d.month == 2 and d.day == 29  # noqa: PLR2004


def birthday_in_year(date_of_birth: date, year: int) -> date:
    """The day the birthday is observed in `year`.

    February 29 birthdays are observed on March 1 in non-leap years.
    """
    if _is_leap_day(date_of_birth) and not calendar.isleap(year):
        return date(year, 3, 1)
    return date_of_birth.replace(year=year)


def is_birthday_today(date_of_birth: date, now: date) -> bool:
    today = _as_date(now)
    return birthday_in_year(date_of_birth, today.year) == today


def next_birthday(date_of_birth: date, now: date) -> date:
    """First observed birthday on or after now."""
    today = _as_date(now)
    candidate = birthday_in_year(date_of_birth, today.year)
    if candidate < today:
        candidate = birthday_in_year(date_of_birth, today.year + 1)
    return candidate


def days_until_birthday(date_of_birth: date, now: date) -> int:
    """Whole days from now until the next birthday (0 when it is today)."""
    today = _as_date(now)
    return (next_birthday(date_of_birth, today) - today).days


def is_birthday_in_next_days(date_of_birth: date, now: date, days: int) -> bool:
    """True if the next birthday falls within [now, now + days], both inclusive."""
    if days < 0:
        raise ValueError(f"days must be non-negative, got {days}")
    return days_until_birthday(date_of_birth, now) <= days


def project(member: "MemberRecord", now: date) -> BirthdayProjection:
    return BirthdayProjection(
        id=member.id,
        full_name=member.full_name,
        phone=member.phone,
        email=member.email,
        date_of_birth=member.date_of_birth,
        age=calculate_age(member.date_of_birth, now),
        profile_picture_url=member.profile_picture_url,
    )


def get_todays_birthdays(
    roster: Iterable["MemberRecord"], now: date
) -> list[BirthdayProjection]:
    """Members whose birthday is today, in roster order."""
    return [
        project(member, now)
        for member in roster
        if is_birthday_today(member.date_of_birth, now)
    ]


def get_upcoming_birthdays(
    roster: Iterable["MemberRecord"], now: date, days: int = DEFAULT_UPCOMING_DAYS
) -> list[BirthdayProjection]:
    """Members with a birthday in the next `days` days, excluding today.

    Soonest first; members with the same distance keep their roster order.
    """
    upcoming = [
        project(member, now)
        for member in roster
        if not is_birthday_today(member.date_of_birth, now)
        and is_birthday_in_next_days(member.date_of_birth, now, days)
    ]
    # sorted() is stable, so ties keep roster order
    return sorted(
        upcoming, key=lambda p: days_until_birthday(p.date_of_birth, now)
    )


def format_birthday(date_of_birth: date) -> str:
    """Month name and day, without the year (e.g. "June 1")."""
    return f"{MONTH_NAMES[date_of_birth.month - 1]} {date_of_birth.day}"


def format_date(value: date) -> str:
    """Long display date (e.g. "June 1, 1990")."""
    return f"{MONTH_NAMES[value.month - 1]} {value.day}, {value.year}"


def format_weekday_date(value: date) -> str:
    """Display date with weekday (e.g. "Saturday, June 1, 2024")."""
    value = _as_date(value)
    return f"{WEEKDAY_NAMES[value.weekday()]}, {format_date(value)}"
