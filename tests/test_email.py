"""Tests for the birthday email rendering and outbox delivery."""

import email
from datetime import date
from email import policy

from memberdir.birthdays import BirthdayProjection
from memberdir.email import (
    birthday_subject,
    deliver,
    render_birthday_email,
    save_email,
)
from memberdir.settings import SmtpConfig

NOW = date(2024, 6, 1)


def projection(name: str, dob: date, age: int, email_address: str | None = None):
    return BirthdayProjection(
        id=name.lower(),
        full_name=name,
        phone="555-0100",
        email=email_address,
        date_of_birth=dob,
        age=age,
    )


RUTH = projection("Ruth", date(1990, 6, 1), 34, "ruth@example.org")
BOAZ = projection("Boaz", date(1985, 6, 5), 38)
NAOMI = projection("Naomi", date(1950, 6, 2), 73)


def test_subject_prefers_todays_birthdays():
    assert birthday_subject([RUTH], [BOAZ]) == "🎉 1 Birthday Today!"
    assert birthday_subject([RUTH, RUTH], []) == "🎉 2 Birthdays Today!"


def test_subject_upcoming_only():
    assert birthday_subject([], [BOAZ]) == "📅 1 Upcoming Birthday"
    assert birthday_subject([], [NAOMI, BOAZ]) == "📅 2 Upcoming Birthdays"


def test_subject_fallback():
    assert birthday_subject([], []) == "🎂 Birthday Reminders"


def test_render_text_sections():
    text, _ = render_birthday_email([RUTH], [NAOMI, BOAZ], NOW, "Grace Chapel", 7)

    assert "Saturday, June 1, 2024" in text
    assert "Celebrating Today!" in text
    assert "- Ruth (June 1, turns 34)" in text
    assert "Email: ruth@example.org" in text
    assert "Coming Up (Next 7 Days)" in text
    assert "- Naomi (June 2, in 1 day)" in text
    assert "- Boaz (June 5, in 4 days)" in text
    assert text.index("Naomi") < text.index("Boaz")
    assert "Grace Chapel" in text


def test_render_without_upcoming_section():
    text, html_body = render_birthday_email([RUTH], [], NOW, "Grace Chapel", 7)
    assert "Coming Up" not in text
    assert "Coming Up" not in html_body


def test_render_html_escapes_member_data():
    mallory = projection("<b>Mallory</b>", date(1990, 6, 1), 34)
    _, html_body = render_birthday_email([mallory], [], NOW, "A & B Church", 7)

    assert "<b>Mallory</b>" not in html_body
    assert "&lt;b&gt;Mallory&lt;/b&gt;" in html_body
    assert "A &amp; B Church" in html_body


def test_render_html_upcoming_badge():
    _, html_body = render_birthday_email([], [BOAZ], NOW, "Grace Chapel", 7)
    assert "4 days" in html_body
    assert "Coming Up (Next 7 Days)" in html_body


def test_save_email_writes_eml(tmp_path):
    outbox = tmp_path / "outbox"
    path = save_email(outbox, None, "pastor@example.org", "Hello", "Text", "<p>Html</p>")

    assert path.parent == outbox
    assert path.suffix == ".eml"
    msg = email.message_from_string(path.read_text(encoding="utf-8"), policy=policy.default)
    assert msg["To"] == "pastor@example.org"
    assert msg["Subject"] == "Hello"
    assert msg.get_body(preferencelist=("plain",)).get_content().strip() == "Text"


def test_save_email_uses_configured_sender(tmp_path):
    config = SmtpConfig(
        host="smtp.example.org",
        port=587,
        sender_email="office@example.org",
        sender_name="Church Office",
    )
    path = save_email(tmp_path, config, "pastor@example.org", "Hi", "Text", "<p>Html</p>")
    msg = email.message_from_string(path.read_text(encoding="utf-8"), policy=policy.default)
    assert msg["From"] == "Church Office <office@example.org>"


def test_deliver_without_smtp_saves_to_outbox(tmp_path):
    result = deliver(None, False, tmp_path, "pastor@example.org", "Hi", "Text", "Html")
    assert result.startswith("file:")
    assert len(list(tmp_path.glob("*.eml"))) == 1


def test_deliver_smtp_enabled_without_config_falls_back(tmp_path):
    result = deliver(None, True, tmp_path, "pastor@example.org", "Hi", "Text", "Html")
    assert result.startswith("file:")


def test_deliver_sends_over_smtp(tmp_path, monkeypatch):
    sent = []

    class FakeSMTP:
        def __init__(self, host, port):
            self.host = host
            self.port = port

        def __enter__(self):
            return self

        def __exit__(self, *args):
            return False

        def starttls(self):
            sent.append("starttls")

        def login(self, username, password):
            sent.append(("login", username, password))

        def sendmail(self, sender, recipients, message):
            sent.append(("sendmail", sender, recipients))

    monkeypatch.setattr("memberdir.email.smtplib.SMTP", FakeSMTP)
    config = SmtpConfig(
        host="smtp.example.org",
        port=587,
        sender_email="office@example.org",
        username="office",
        password="secret",
    )

    result = deliver(config, True, tmp_path, "pastor@example.org", "Hi", "Text", "Html")

    assert result == "smtp:smtp.example.org"
    assert sent == [
        "starttls",
        ("login", "office", "secret"),
        ("sendmail", "office@example.org", ["pastor@example.org"]),
    ]
    assert not list(tmp_path.glob("*.eml"))
