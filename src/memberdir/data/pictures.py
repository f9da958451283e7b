"""Profile picture storage.

Image bytes and their content type are stored under separate keys of the
`pictures` table: `<member_id>:data` and `<member_id>:type`.
"""

from dataclasses import dataclass

from freetser import Storage

PICTURES_TABLE = "pictures"
MAX_PICTURE_BYTES = 5 * 1024 * 1024
PICTURE_PATH = "/members/picture/"
# Raster formats only, no SVG
PICTURE_TYPES = frozenset(
    {
        "image/avif",
        "image/bmp",
        "image/gif",
        "image/jpeg",
        "image/png",
        "image/webp",
    }
)


@dataclass
class Picture:
    content: bytes
    content_type: str


class InvalidPicture(ValueError):
    pass


def picture_reference(member_id: str) -> str:
    """Public URL path under which the picture of a member is served."""
    return f"{PICTURE_PATH}?id={member_id}"


def validate_picture(content: bytes, content_type: str | None) -> str:
    """Check an upload and return its normalized content type."""
    if not content_type:
        raise InvalidPicture("Missing content type")
    content_type = content_type.split(";", 1)[0].strip().lower()
    if not content_type.startswith("image/"):
        raise InvalidPicture(f"File must be an image, got {content_type}")
    if content_type not in PICTURE_TYPES:
        raise InvalidPicture(f"Unsupported image type {content_type}")
    if not content:
        raise InvalidPicture("Empty file")
    if len(content) > MAX_PICTURE_BYTES:
        raise InvalidPicture(
            f"File too large ({len(content)} bytes, max {MAX_PICTURE_BYTES})"
        )
    return content_type


def save_picture(
    store: Storage, member_id: str, content: bytes, content_type: str | None
) -> str:
    """Store (or replace) the picture of a member and return its reference."""
    normalized_type = validate_picture(content, content_type)
    store.overwrite(PICTURES_TABLE, f"{member_id}:data", content, expires_at=0)
    store.overwrite(
        PICTURES_TABLE, f"{member_id}:type", normalized_type.encode("utf-8"), expires_at=0
    )
    return picture_reference(member_id)


def get_picture(store: Storage, member_id: str) -> Picture | None:
    data_result = store.get(PICTURES_TABLE, f"{member_id}:data")
    type_result = store.get(PICTURES_TABLE, f"{member_id}:type")
    if data_result is None or type_result is None:
        return None
    content, _ = data_result
    type_bytes, _ = type_result
    return Picture(content=content, content_type=type_bytes.decode("utf-8"))


def delete_picture(store: Storage, member_id: str) -> None:
    for key in (f"{member_id}:data", f"{member_id}:type"):
        if store.get(PICTURES_TABLE, key) is not None:
            store.delete(PICTURES_TABLE, key)
