"""Member administration handlers for the public API."""

import json
import logging
import time
from datetime import date
from typing import Any
from urllib.parse import parse_qs, urlparse

from freetser import Request, Response, Storage
from freetser.server import StorageQueue

from memberdir.birthdays import InvalidDate, format_date
from memberdir.data.members import (
    MemberInputError,
    MemberNotFound,
    MemberRecord,
    add_member,
    delete_member,
    get_member,
    member_to_dict,
    parse_member_input,
    search_members,
    set_profile_picture,
    update_member,
)
from memberdir.data.pictures import (
    InvalidPicture,
    Picture,
    get_picture,
    save_picture,
    validate_picture,
)

logger = logging.getLogger("memberdir.handlers.members")


def query_param(req: Request, name: str) -> str | None:
    """First value of a query string parameter, if present."""
    values = parse_qs(urlparse(req.path).query).get(name)
    if not values:
        return None
    return values[0]


def read_json_body(req: Request, handler_name: str) -> dict[str, Any] | Response:
    """Decode a JSON object body, or return a 400 response."""
    try:
        body = json.loads(req.body.decode("utf-8"))
    except (json.JSONDecodeError, ValueError) as e:
        logger.warning(f"{handler_name}: Invalid request: {e}")
        return Response.text(f"Invalid request: {e}", status_code=400)
    if not isinstance(body, dict):
        logger.warning(f"{handler_name}: Request body is not an object")
        return Response.text("Invalid request: expected a JSON object", status_code=400)
    return body


def invalid_stored_date(handler_name: str, e: InvalidDate) -> Response:
    logger.error(f"{handler_name}: Stored member has an invalid date: {e}")
    return Response.text(f"Invalid stored date: {e}", status_code=500)


def member_detail(member: MemberRecord, now: date) -> dict[str, Any]:
    detail = member_to_dict(member, now)
    detail["date_of_birth_display"] = format_date(member.date_of_birth)
    return detail


def list_members_handler(
    req: Request, store_queue: StorageQueue, now: date
) -> Response:
    """Handle GET /members/ - list members, optionally filtered with ?q=."""
    term = query_param(req, "q") or ""

    def do_list(store: Storage) -> list[MemberRecord] | InvalidDate:
        try:
            return search_members(store, term)
        except InvalidDate as e:
            return e

    members = store_queue.execute(do_list)
    if isinstance(members, InvalidDate):
        return invalid_stored_date("list_members", members)

    try:
        result = [member_to_dict(m, now) for m in members]
    except InvalidDate as e:
        return invalid_stored_date("list_members", e)

    logger.info(f"list_members: Returning {len(result)} members")
    return Response.json(result)


def create_member_handler(
    req: Request, store_queue: StorageQueue, now: date
) -> Response:
    """Handle POST /members/ - add a member."""
    body = read_json_body(req, "create_member")
    if isinstance(body, Response):
        return body

    try:
        data = parse_member_input(body, now)
    except MemberInputError as e:
        logger.warning(f"create_member: {e}")
        return Response.text(f"Invalid member: {e}", status_code=400)

    timestamp = int(time.time())

    def do_add(store: Storage) -> MemberRecord | InvalidDate:
        try:
            return add_member(store, data, timestamp)
        except InvalidDate as e:
            return e

    member = store_queue.execute(do_add)
    if isinstance(member, InvalidDate):
        return invalid_stored_date("create_member", member)

    logger.info(f"create_member: Added {member.id} ({member.full_name})")
    return Response.json(member_detail(member, now), status_code=201)


def get_member_handler(req: Request, store_queue: StorageQueue, now: date) -> Response:
    """Handle GET /members/get/?id= - member detail."""
    member_id = query_param(req, "id")
    if not member_id:
        logger.warning("get_member: Missing id")
        return Response.text("Missing id", status_code=400)

    def do_get(store: Storage) -> MemberRecord | MemberNotFound | InvalidDate:
        try:
            return get_member(store, member_id)
        except InvalidDate as e:
            return e

    result = store_queue.execute(do_get)
    if isinstance(result, MemberNotFound):
        logger.info(f"get_member: Member {member_id} not found")
        return Response.text(f"Member {member_id} not found", status_code=404)
    if isinstance(result, InvalidDate):
        return invalid_stored_date("get_member", result)

    try:
        return Response.json(member_detail(result, now))
    except InvalidDate as e:
        return invalid_stored_date("get_member", e)


def update_member_handler(
    req: Request, store_queue: StorageQueue, now: date
) -> Response:
    """Handle POST /members/update/ - replace the fields of a member."""
    body = read_json_body(req, "update_member")
    if isinstance(body, Response):
        return body

    member_id = body.get("id")
    if not member_id or not isinstance(member_id, str):
        logger.warning("update_member: Missing id")
        return Response.text("Missing id", status_code=400)

    try:
        data = parse_member_input(body, now)
    except MemberInputError as e:
        logger.warning(f"update_member: {e}")
        return Response.text(f"Invalid member: {e}", status_code=400)

    timestamp = int(time.time())

    def do_update(store: Storage) -> MemberRecord | MemberNotFound | InvalidDate:
        try:
            return update_member(store, member_id, data, timestamp)
        except InvalidDate as e:
            return e

    result = store_queue.execute(do_update)
    if isinstance(result, MemberNotFound):
        logger.warning(f"update_member: Member {member_id} not found")
        return Response.text(f"Member {member_id} not found", status_code=404)
    if isinstance(result, InvalidDate):
        return invalid_stored_date("update_member", result)

    logger.info(f"update_member: Updated {member_id}")
    return Response.json(member_detail(result, now))


def delete_member_handler(req: Request, store_queue: StorageQueue) -> Response:
    """Handle POST /members/delete/ - remove a member and their picture."""
    body = read_json_body(req, "delete_member")
    if isinstance(body, Response):
        return body

    member_id = body.get("id")
    if not member_id or not isinstance(member_id, str):
        logger.warning("delete_member: Missing id")
        return Response.text("Missing id", status_code=400)

    def do_delete(store: Storage) -> MemberNotFound | None:
        return delete_member(store, member_id)

    result = store_queue.execute(do_delete)
    if isinstance(result, MemberNotFound):
        logger.warning(f"delete_member: Member {member_id} not found")
        return Response.text(f"Member {member_id} not found", status_code=404)

    logger.info(f"delete_member: Deleted {member_id}")
    return Response.json({"success": True, "id": member_id})


def upload_picture_handler(
    req: Request, headers: dict[str, str], store_queue: StorageQueue, now: date
) -> Response:
    """Handle POST /members/picture/?id= - raw image body, type from Content-Type."""
    member_id = query_param(req, "id")
    if not member_id:
        logger.warning("upload_picture: Missing id")
        return Response.text("Missing id", status_code=400)

    try:
        content_type = validate_picture(req.body, headers.get("content-type"))
    except InvalidPicture as e:
        logger.warning(f"upload_picture: {e}")
        return Response.text(str(e), status_code=400)

    timestamp = int(time.time())

    def do_upload(store: Storage) -> MemberRecord | MemberNotFound | InvalidDate:
        try:
            member = get_member(store, member_id)
            if isinstance(member, MemberNotFound):
                return member
            reference = save_picture(store, member_id, req.body, content_type)
            return set_profile_picture(store, member_id, reference, timestamp)
        except InvalidDate as e:
            return e

    result = store_queue.execute(do_upload)
    if isinstance(result, MemberNotFound):
        logger.warning(f"upload_picture: Member {member_id} not found")
        return Response.text(f"Member {member_id} not found", status_code=404)
    if isinstance(result, InvalidDate):
        return invalid_stored_date("upload_picture", result)

    logger.info(f"upload_picture: Stored picture for {member_id}")
    return Response.json(member_detail(result, now))


def get_picture_handler(req: Request, store_queue: StorageQueue) -> Response:
    """Handle GET /members/picture/?id= - serve a stored profile picture."""
    member_id = query_param(req, "id")
    if not member_id:
        return Response.text("Missing id", status_code=400)

    def do_get(store: Storage) -> Picture | None:
        return get_picture(store, member_id)

    picture = store_queue.execute(do_get)
    if picture is None:
        logger.debug(f"get_picture: No picture for {member_id}")
        return Response.text("Picture not found", status_code=404)

    return Response(
        status_code=200,
        headers=[
            (b"Content-Type", picture.content_type.encode("utf-8")),
            (b"Cache-Control", b"no-cache"),
            (b"X-Content-Type-Options", b"nosniff"),
            (b"Content-Security-Policy", b"sandbox"),
        ],
        body=picture.content,
    )
