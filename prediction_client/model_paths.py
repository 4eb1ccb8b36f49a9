import re
from typing import Iterable, List, Optional

from yarl import URL

TEXT_TO_IMAGE_SUFFIX = "/text-to-image"

_ROOTED_VERSION_PREFIX = re.compile(r"^/api/v\d+/")
_VERSION_PREFIX = re.compile(r"^api/v\d+/")


def normalize_model_path_candidate(value: Optional[str]) -> Optional[str]:
    """Reduce a model path or URL to a bare path relative to the API base.

    ``https://host/api/v3/foo/bar`` and ``/api/v3/foo/bar`` both become
    ``foo/bar``. Blank input gives None.
    """
    if not value:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if normalized.startswith(("http://", "https://")):
        try:
            normalized = URL(normalized).path
        except ValueError:
            return normalized

    normalized = _ROOTED_VERSION_PREFIX.sub("/", normalized, count=1)
    normalized = _VERSION_PREFIX.sub("", normalized, count=1)
    normalized = normalized.lstrip("/")

    return normalized or None


def _expand_candidate(value: Optional[str]) -> List[str]:
    normalized = normalize_model_path_candidate(value)
    if not normalized:
        return []

    candidates = [normalized]
    if normalized.endswith(TEXT_TO_IMAGE_SUFFIX):
        parent = normalized[: -len(TEXT_TO_IMAGE_SUFFIX)]
        if parent:
            candidates.append(parent)
    return candidates


def build_model_path_candidates(
    primary: Optional[str],
    fallback_csv: Optional[str],
    defaults: Optional[Iterable[str]] = None,
) -> List[str]:
    """Ordered, de-duplicated model paths to try for one submission"""
    configured = [primary, *(fallback_csv.split(",") if fallback_csv else [])]

    candidates: List[str] = []
    for value in configured:
        candidates.extend(_expand_candidate(value))
    candidates.extend(defaults or [])

    unique: List[str] = []
    for value in candidates:
        normalized = normalize_model_path_candidate(value)
        if normalized and normalized not in unique:
            unique.append(normalized)
    return unique
