"""Advisory classifiers for errors raised while talking to the prediction service.

These match on vendor wording and are a heuristic, not a contract: if the
upstream service changes its messages, update the rule tables below.
"""

from typing import Any, Iterable

from prediction_client.envelope import stringify

MODEL_MISSING_MARKERS = (
    "product not found",
    "model not found",
    "[code 1405]",
    "code 1405",
)

PAYLOAD_SCHEMA_MARKERS = (
    "validation",
    "invalid",
    "required",
    "missing",
)

INPUT_IMAGE_FETCH_MARKERS = (
    "cannot fetch content from the provided url",
    "url is valid and accessible",
)


def extract_error_text(error: Any) -> str:
    if isinstance(error, BaseException):
        return str(error)
    return stringify(error)


def _matches(error: Any, markers: Iterable[str]) -> bool:
    text = extract_error_text(error).lower()
    return any(marker in text for marker in markers)


def is_model_missing_error(error: Any) -> bool:
    """The requested model path does not exist upstream; try another path"""
    return _matches(error, MODEL_MISSING_MARKERS)


def is_payload_schema_error(error: Any) -> bool:
    """The payload shape was rejected; try another payload layout"""
    return _matches(error, PAYLOAD_SCHEMA_MARKERS)


def is_input_image_fetch_error(error: Any) -> bool:
    """The service could not download one of the input images"""
    return _matches(error, INPUT_IMAGE_FETCH_MARKERS)
