"""Helpers for the loosely-typed JSON envelopes returned by the prediction service.

Responses may carry their fields at the top level or nested under ``data`` and
use several different keys for the same concept. Everything in this module is
a pure function over plain JSON values (``dict``/``list``/``str``/numbers).
"""

import json
import math
from typing import Any, Optional

from yarl import URL

COMPLETED_STATUSES = frozenset({"completed", "success", "succeeded"})
FAILED_STATUSES = frozenset({"failed", "error", "cancelled", "canceled"})

# Checked in order at each level; direct keys always win over nested ones.
DIRECT_IMAGE_KEYS = ("url", "download_url", "image_url", "result_image_url", "output_url")
NESTED_IMAGE_KEYS = ("images", "output", "results", "data")


def try_parse_json(raw_body: str) -> Any:
    """Parse a response body, returning None for blank or malformed JSON"""
    if not raw_body.strip():
        return None
    try:
        return json.loads(raw_body)
    except ValueError:
        return None


def as_record(value: Any) -> Optional[dict]:
    return value if isinstance(value, dict) else None


def as_string(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def first_present(*values: Any) -> Any:
    """Return the first value that is not None"""
    for value in values:
        if value is not None:
            return value
    return None


def stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value)
    except (TypeError, ValueError):
        return str(value)


def normalize_status(status: Optional[str]) -> str:
    return (status or "").strip().lower()


def is_completed_status(status: Optional[str]) -> bool:
    return normalize_status(status) in COMPLETED_STATUSES


def is_present(value: Any) -> bool:
    """Empty containers count as present; only None, "", False and 0 do not"""
    if value is None or value is False:
        return False
    if isinstance(value, (int, float)) and value == 0:
        return False
    return value != ""


def is_failed_status(status: Optional[str], error: Any = None) -> bool:
    """A blank status counts as failed when an error payload is present.

    Some upstream responses omit ``status`` entirely on errors. This is a
    heuristic: a bare ``message`` without a status is also treated as terminal.
    """
    normalized = normalize_status(status)
    if normalized in FAILED_STATUSES:
        return True
    return not normalized and is_present(error)


def extract_error_message(payload: Any) -> Optional[str]:
    """Find a human readable message in an error body.

    Looks at ``message`` then ``error``, then recurses into a nested ``error``
    object and finally into ``data``. A list of messages is joined with commas.
    """
    if isinstance(payload, str):
        return payload.strip() or None

    record = as_record(payload)
    if record is None:
        return None

    message = record.get("message")
    if isinstance(message, str) and message.strip():
        return message
    if isinstance(message, list) and message:
        return ", ".join(stringify(item) for item in message)

    error = record.get("error")
    if isinstance(error, str) and error.strip():
        return error
    if isinstance(error, dict):
        nested = extract_error_message(error)
        if nested:
            return nested

    data = record.get("data")
    if isinstance(data, dict):
        nested = extract_error_message(data)
        if nested:
            return nested

    return None


def extract_error_code(payload: Any) -> Optional[int]:
    """Find a numeric ``code`` at the top level or nested in ``error``/``data``"""
    record = as_record(payload)
    if record is None:
        return None

    code = parse_leading_int(record.get("code"))
    if code is not None:
        return code

    for key in ("error", "data"):
        nested = extract_error_code(record.get(key))
        if nested is not None:
            return nested

    return None


def parse_leading_int(value: Any) -> Optional[int]:
    """Lenient integer parse: "1405", "1405 x" and "1.5" give 1405, 1405 and 1"""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None

    text = str(value).strip()
    digits = ""
    for index, char in enumerate(text):
        if char.isdigit() or (index == 0 and char in "+-"):
            digits += char
        else:
            break
    try:
        return int(digits)
    except ValueError:
        return None


def normalize_image_reference(value: str) -> Optional[str]:
    """Accept ``data:image/...`` URIs verbatim and http(s) URLs in canonical form"""
    trimmed = value.strip()
    if not trimmed:
        return None

    if trimmed.startswith("data:image/"):
        return trimmed

    if trimmed.startswith(("https://", "http://")):
        try:
            url = URL(trimmed)
        except ValueError:
            return None
        if url.scheme in ("http", "https") and url.host:
            if not url.raw_path:
                url = URL.build(
                    scheme=url.scheme,
                    authority=url.raw_authority,
                    path="/",
                    query_string=url.raw_query_string,
                    fragment=url.raw_fragment,
                    encoded=True,
                )
            return str(url)

    return None


def extract_image_url(data: Any) -> Optional[str]:
    """Depth-first search of a JSON value for the first valid image reference"""
    if isinstance(data, str):
        return normalize_image_reference(data)

    if isinstance(data, list):
        for item in data:
            found = extract_image_url(item)
            if found:
                return found
        return None

    record = as_record(data)
    if record is None:
        return None

    for key in DIRECT_IMAGE_KEYS:
        candidate = record.get(key)
        if isinstance(candidate, str) and candidate:
            normalized = normalize_image_reference(candidate)
            if normalized:
                return normalized

    for key in NESTED_IMAGE_KEYS:
        found = extract_image_url(record.get(key))
        if found:
            return found

    return None
