from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from prediction_client.envelope import (
    as_record,
    as_string,
    extract_image_url,
    first_present,
    is_completed_status,
    is_failed_status,
)


class JobStatus(str, Enum):
    pending = "pending"
    completed = "completed"
    failed = "failed"


class NormalizedPrediction(BaseModel):
    """Canonical view of a prediction envelope, whichever way it was nested"""

    model_config = ConfigDict(frozen=True, extra="allow")

    id: Optional[str] = None
    status: Optional[str] = None
    outputs: Any = None
    urls: Any = None
    error: Any = None
    message: Any = None

    @property
    def failure_detail(self) -> Any:
        return first_present(self.error, self.message)

    @property
    def job_status(self) -> JobStatus:
        if is_completed_status(self.status):
            return JobStatus.completed
        if is_failed_status(self.status, self.failure_detail):
            return JobStatus.failed
        return JobStatus.pending

    @property
    def image_url(self) -> Optional[str]:
        return extract_image_url(self.outputs) or extract_image_url(self.urls)


def normalize_prediction(payload: Any) -> NormalizedPrediction:
    """Flatten an envelope, preferring fields under ``data`` over the root"""
    root = as_record(payload) or {}
    nested = as_record(root.get("data"))
    source = nested if nested is not None else root

    # Other keys of the preferred object are kept as extra fields.
    extras = {
        key: value
        for key, value in source.items()
        if isinstance(key, str) and not key.startswith("_")
    }
    extras.update(
        id=as_string(source.get("id")) or as_string(root.get("id")),
        status=as_string(source.get("status")) or as_string(root.get("status")),
        outputs=first_present(
            source.get("outputs"),
            source.get("output"),
            root.get("outputs"),
            root.get("output"),
        ),
        urls=first_present(source.get("urls"), root.get("urls")),
        error=first_present(
            source.get("error"),
            source.get("message"),
            root.get("error"),
            root.get("message"),
        ),
        message=first_present(source.get("message"), root.get("message")),
    )
    return NormalizedPrediction.model_validate(extras)


class PollState(BaseModel):
    job_id: str
    deadline: float
    poll_interval: float

    def expired(self, now: float) -> bool:
        return now >= self.deadline


class PollingConfig(BaseModel):
    timeout: float = Field(default=90.0, gt=0)  # seconds
    poll_interval: float = Field(default=1.5, gt=0)


class PredictionOutcome(BaseModel):
    model_path: str
    payload_index: int
    prediction: NormalizedPrediction
