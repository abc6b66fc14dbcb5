import html
import re

from pydantic import ValidationError

from relay.errors import FrameValidationError
from schemas.frames import Frame

ROOM_NAME_PATTERN = re.compile(r"[A-Za-z0-9\-_.]{1,50}")

_STRIPPED_TAGS = ("&lt;script&gt;", "&lt;/script&gt;")


def sanitize_input(text: str) -> str:
    sanitized = html.escape(text)
    for tag in _STRIPPED_TAGS:
        sanitized = sanitized.replace(tag, "")
    return sanitized


def validate_room_name(name: str) -> bool:
    """Room names are 1-50 characters of letters, digits, '-', '_' and '.'."""
    return ROOM_NAME_PATTERN.fullmatch(name) is not None


def decode_frame(raw: str) -> Frame:
    """Parse one inbound socket message into a sanitized Frame.

    Raises FrameValidationError when the payload is not a valid frame or when a
    room-scoped frame names an invalid room.
    """
    try:
        frame = Frame.model_validate_json(raw)
    except ValidationError as e:
        raise FrameValidationError(f"Malformed frame ({e.error_count()} error(s))") from e

    frame.username = sanitize_input(frame.username)
    frame.room = sanitize_input(frame.room)

    if frame.type != "ping" and not validate_room_name(frame.room):
        raise FrameValidationError(f"Invalid room name attempt: {frame.room}")
    return frame
