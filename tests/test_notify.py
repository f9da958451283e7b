"""Tests for the birthday notifier, run against an in-memory roster."""

from datetime import date

import pytest

from memberdir.birthdays import InvalidDate
from memberdir.data.members import MemberRecord
from memberdir.notify import NotificationConfigError, notify_birthdays
from memberdir.settings import Settings

NOW = date(2024, 6, 1)


def member(member_id: str, name: str, dob: str) -> MemberRecord:
    return MemberRecord(
        id=member_id,
        full_name=name,
        date_of_birth=date.fromisoformat(dob),
        phone="555-0100",
    )


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(admin_email="pastor@example.org", outbox_dir=tmp_path / "outbox")


def test_requires_admin_email(tmp_path):
    settings = Settings(outbox_dir=tmp_path)
    with pytest.raises(NotificationConfigError):
        notify_birthdays([member("a", "Ruth", "1990-06-01")], settings, NOW)


def test_empty_roster(settings):
    result = notify_birthdays([], settings, NOW)
    assert result.message == "No members to check"
    assert not result.sent
    assert not settings.outbox_dir.exists()


def test_no_birthdays_sends_nothing(settings):
    result = notify_birthdays([member("c", "Mary", "2000-12-25")], settings, NOW)
    assert result.message == "No birthdays to report"
    assert not result.sent
    assert not settings.outbox_dir.exists()


def test_sends_when_birthdays_found(settings):
    roster = [
        member("a", "Ruth", "1990-06-01"),
        member("b", "Boaz", "1985-06-05"),
        member("c", "Mary", "2000-12-25"),
    ]

    result = notify_birthdays(roster, settings, NOW)

    assert result.sent
    assert result.message == "Birthday notifications sent"
    assert result.today_count == 1
    assert result.upcoming_count == 1
    assert result.recipient == "pastor@example.org"
    assert result.subject == "🎉 1 Birthday Today!"
    assert result.delivery.startswith("file:")

    (eml,) = settings.outbox_dir.glob("*.eml")
    content = eml.read_text(encoding="utf-8")
    assert "pastor@example.org" in content


def test_upcoming_only_subject(settings):
    result = notify_birthdays([member("b", "Boaz", "1985-06-05")], settings, NOW)
    assert result.subject == "📅 1 Upcoming Birthday"
    assert result.today_count == 0


def test_uses_configured_window(tmp_path):
    settings = Settings(
        admin_email="pastor@example.org", outbox_dir=tmp_path, upcoming_days=3
    )
    result = notify_birthdays([member("b", "Boaz", "1985-06-05")], settings, NOW)
    assert result.message == "No birthdays to report"


def test_invalid_member_date_propagates(settings):
    with pytest.raises(InvalidDate):
        notify_birthdays([member("x", "Future", "2030-06-01")], settings, NOW)


def test_result_to_dict(settings):
    result = notify_birthdays([], settings, NOW)
    assert result.to_dict() == {
        "message": "No members to check",
        "today_count": 0,
        "upcoming_count": 0,
        "sent": False,
        "recipient": None,
        "subject": None,
        "delivery": None,
    }
