"""Member records in the key/value store.

Each member is a JSON document in the `members` table, keyed by member id.
"""

import json
import secrets
from dataclasses import dataclass
from datetime import date
from typing import Any

from freetser import Storage

from memberdir.birthdays import InvalidDate, calculate_age, format_birthday, parse_date
from memberdir.data.pictures import delete_picture

MEMBERS_TABLE = "members"


@dataclass
class MemberRecord:
    id: str
    full_name: str
    date_of_birth: date
    phone: str
    gender: str | None = None
    email: str | None = None
    address: str | None = None
    profile_picture_url: str | None = None
    created_at: int = 0
    updated_at: int = 0


@dataclass
class MemberNotFound:
    member_id: str


@dataclass
class MemberInput:
    """Validated member fields as submitted by the administrator."""

    full_name: str
    date_of_birth: date
    phone: str
    gender: str | None = None
    email: str | None = None
    address: str | None = None


class MemberInputError(ValueError):
    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


def serialize(member: MemberRecord) -> bytes:
    data = {
        "id": member.id,
        "full_name": member.full_name,
        "date_of_birth": member.date_of_birth.isoformat(),
        "phone": member.phone,
        "gender": member.gender,
        "email": member.email,
        "address": member.address,
        "profile_picture_url": member.profile_picture_url,
        "created_at": member.created_at,
        "updated_at": member.updated_at,
    }
    return json.dumps(data).encode("utf-8")


def deserialize(data: bytes) -> MemberRecord:
    """Parse a stored member. Raises InvalidDate if the stored date is broken."""
    d = json.loads(data.decode("utf-8"))
    return MemberRecord(
        id=d["id"],
        full_name=d["full_name"],
        date_of_birth=parse_date(d["date_of_birth"]),
        phone=d["phone"],
        gender=d.get("gender"),
        email=d.get("email"),
        address=d.get("address"),
        profile_picture_url=d.get("profile_picture_url"),
        created_at=int(d.get("created_at", 0) or 0),
        updated_at=int(d.get("updated_at", 0) or 0),
    )


def member_to_dict(member: MemberRecord, now: date) -> dict[str, Any]:
    """JSON view of a member, including the values derived at `now`."""
    return {
        "id": member.id,
        "full_name": member.full_name,
        "date_of_birth": member.date_of_birth.isoformat(),
        "phone": member.phone,
        "gender": member.gender,
        "email": member.email,
        "address": member.address,
        "profile_picture_url": member.profile_picture_url,
        "created_at": member.created_at,
        "updated_at": member.updated_at,
        "age": calculate_age(member.date_of_birth, now),
        "birthday": format_birthday(member.date_of_birth),
    }


def _optional_str(body: dict[str, Any], field: str) -> str | None:
    value = body.get(field)
    if value is None:
        return None
    if not isinstance(value, str):
        raise MemberInputError(field, "must be a string")
    value = value.strip()
    return value or None


def _required_str(body: dict[str, Any], field: str) -> str:
    value = _optional_str(body, field)
    if value is None:
        raise MemberInputError(field, "is required")
    return value


def parse_member_input(body: dict[str, Any], today: date) -> MemberInput:
    """Validate a member request body.

    Raises MemberInputError naming the first field that is missing or invalid.
    """
    full_name = _required_str(body, "full_name")
    phone = _required_str(body, "phone")

    raw_dob = body.get("date_of_birth")
    if raw_dob is None or raw_dob == "":
        raise MemberInputError("date_of_birth", "is required")
    try:
        date_of_birth = parse_date(raw_dob)
    except InvalidDate as e:
        raise MemberInputError("date_of_birth", str(e)) from e
    if date_of_birth > today:
        raise MemberInputError("date_of_birth", "cannot be in the future")

    email = _optional_str(body, "email")
    if email is not None and ("@" not in email or email.startswith("@")):
        raise MemberInputError("email", "invalid email address")

    return MemberInput(
        full_name=full_name,
        date_of_birth=date_of_birth,
        phone=phone,
        gender=_optional_str(body, "gender"),
        email=email,
        address=_optional_str(body, "address"),
    )


def list_members(store: Storage) -> list[MemberRecord]:
    """All members, sorted by full name (case-insensitive)."""
    members = []
    for key in store.list_keys(MEMBERS_TABLE):
        result = store.get(MEMBERS_TABLE, key)
        if result is not None:
            data_bytes, _ = result
            members.append(deserialize(data_bytes))
    members.sort(key=lambda m: (m.full_name.casefold(), m.id))
    return members


def search_members(store: Storage, term: str) -> list[MemberRecord]:
    """Members whose name, phone or email contains `term` (case-insensitive)."""
    members = list_members(store)
    needle = term.strip().casefold()
    if not needle:
        return members

    def matches(member: MemberRecord) -> bool:
        fields = (member.full_name, member.phone, member.email or "")
        return any(needle in f.casefold() for f in fields)

    return [m for m in members if matches(m)]


def get_member(store: Storage, member_id: str) -> MemberRecord | MemberNotFound:
    result = store.get(MEMBERS_TABLE, member_id)
    if result is None:
        return MemberNotFound(member_id=member_id)
    data_bytes, _ = result
    return deserialize(data_bytes)


def _deduplicated_name(store: Storage, data: MemberInput) -> str:
    """Append a counter when the same person seems to be registered already.

    Existing members count as duplicates when date of birth, phone and
    address match and their name starts with the new name. A member without
    an address never matches.
    """
    if data.address is None:
        return data.full_name
    prefix = data.full_name.casefold()
    duplicates = [
        m
        for m in list_members(store)
        if m.date_of_birth == data.date_of_birth
        and m.phone == data.phone
        and m.address == data.address
        and m.full_name.casefold().startswith(prefix)
    ]
    if not duplicates:
        return data.full_name
    return f"{data.full_name} {len(duplicates)}"


def add_member(store: Storage, data: MemberInput, timestamp: int) -> MemberRecord:
    """Insert a new member with a fresh id."""
    member_id = secrets.token_urlsafe(12)
    while store.get(MEMBERS_TABLE, member_id) is not None:
        member_id = secrets.token_urlsafe(12)

    member = MemberRecord(
        id=member_id,
        full_name=_deduplicated_name(store, data),
        date_of_birth=data.date_of_birth,
        phone=data.phone,
        gender=data.gender,
        email=data.email,
        address=data.address,
        created_at=timestamp,
        updated_at=timestamp,
    )
    # expires_at = 0 means no expiration
    store.add(MEMBERS_TABLE, member_id, serialize(member), expires_at=0)
    return member


def update_member(
    store: Storage, member_id: str, data: MemberInput, timestamp: int
) -> MemberRecord | MemberNotFound:
    """Replace the editable fields of a member."""
    result = store.get(MEMBERS_TABLE, member_id)
    if result is None:
        return MemberNotFound(member_id=member_id)

    data_bytes, counter = result
    member = deserialize(data_bytes)
    member.full_name = data.full_name
    member.date_of_birth = data.date_of_birth
    member.phone = data.phone
    member.gender = data.gender
    member.email = data.email
    member.address = data.address
    member.updated_at = timestamp

    store.update(MEMBERS_TABLE, member_id, serialize(member), counter, expires_at=0)
    return member


def set_profile_picture(
    store: Storage, member_id: str, reference: str | None, timestamp: int
) -> MemberRecord | MemberNotFound:
    result = store.get(MEMBERS_TABLE, member_id)
    if result is None:
        return MemberNotFound(member_id=member_id)

    data_bytes, counter = result
    member = deserialize(data_bytes)
    member.profile_picture_url = reference
    member.updated_at = timestamp

    store.update(MEMBERS_TABLE, member_id, serialize(member), counter, expires_at=0)
    return member


def delete_member(store: Storage, member_id: str) -> MemberNotFound | None:
    """Delete a member together with their profile picture."""
    if store.get(MEMBERS_TABLE, member_id) is None:
        return MemberNotFound(member_id=member_id)
    store.delete(MEMBERS_TABLE, member_id)
    delete_picture(store, member_id)
    return None
