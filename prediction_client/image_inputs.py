import re
from typing import Optional

from yarl import URL

from prediction_client.exceptions import InvalidImageInputError

_DATA_URI = re.compile(r"^data:[^;,]+;base64,", re.IGNORECASE)
_BASE64_BODY = re.compile(r"^[A-Za-z0-9+/=]+$")
_WHITESPACE = re.compile(r"\s+")


def is_data_uri(value: str) -> bool:
    return bool(_DATA_URI.match(value))


def estimate_data_uri_bytes(value: str) -> Optional[int]:
    """Decoded size of a base64 data URI, or None if it is not one"""
    if not is_data_uri(value):
        return None

    payload = _WHITESPACE.sub("", value[value.index(",") + 1 :])
    if not payload:
        return 0
    if not _BASE64_BODY.match(payload):
        return None

    if payload.endswith("=="):
        padding = 2
    elif payload.endswith("="):
        padding = 1
    else:
        padding = 0
    size = (len(payload) * 3) // 4 - padding
    return size if size >= 0 else None


def normalize_image_input(value: str, field_name: str, max_bytes: int) -> str:
    """Validate an image reference before it goes into a prediction payload.

    Accepts an HTTPS URL (returned in canonical form) or a base64 data URI no
    larger than ``max_bytes`` once decoded.
    """
    trimmed = value.strip()
    if not trimmed:
        raise InvalidImageInputError(f"{field_name} is required")

    if is_data_uri(trimmed):
        size = estimate_data_uri_bytes(trimmed)
        if size is None:
            raise InvalidImageInputError(f"{field_name} must be a valid base64 Data URI")
        if size > max_bytes:
            raise InvalidImageInputError(
                f"{field_name} exceeds Data URI size limit ({max_bytes} bytes)"
            )
        return trimmed

    try:
        url = URL(trimmed)
    except ValueError:
        url = None
    if url is not None and url.scheme == "https" and url.host:
        return str(url)

    raise InvalidImageInputError(f"{field_name} must be a valid HTTPS URL or a Data URI")
