from functools import lru_cache
from typing import Any, Iterable, List, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from prediction_client.envelope import parse_leading_int
from prediction_client.model_paths import build_model_path_candidates
from prediction_client.models import PollingConfig

DEFAULT_API_BASE_URL = "https://api.wavespeed.ai/api/v3"
DEFAULT_POLL_INTERVAL_MS = 1500
DEFAULT_TIMEOUT_MS = 90000


def parse_positive_int(raw_value: Any, fallback: int) -> int:
    """Lenient integer parse used for env overrides; bad or non-positive values give the fallback"""
    parsed = parse_leading_int(raw_value)
    if parsed is None or parsed <= 0:
        return fallback
    return parsed


class PredictionSettings(BaseSettings):
    """Runtime configuration for the prediction service client."""

    model_config = SettingsConfigDict(
        env_prefix="WAVESPEED_",
        env_file=".env",
        extra="ignore",
        protected_namespaces=(),
    )

    api_base_url: str = Field(
        default=DEFAULT_API_BASE_URL,
        description="Base URL that relative model paths are resolved against.",
    )

    api_key: Optional[SecretStr] = Field(
        default=None,
        description="Bearer token for the prediction service. Required to send requests.",
    )

    poll_interval_ms: int = Field(
        default=DEFAULT_POLL_INTERVAL_MS,
        description="Delay between result polls, in milliseconds.",
    )

    timeout_ms: int = Field(
        default=DEFAULT_TIMEOUT_MS,
        description="How long to poll a pending job before giving up, in milliseconds.",
    )

    model_path: Optional[str] = Field(
        default=None,
        description="Primary model path (or absolute URL) to submit jobs to.",
    )

    model_fallback_paths: Optional[str] = Field(
        default=None,
        description="Comma separated model paths tried when the primary one is missing.",
    )

    @field_validator("poll_interval_ms", mode="before")
    @classmethod
    def _poll_interval_or_default(cls, value: Any) -> int:
        return parse_positive_int(value, DEFAULT_POLL_INTERVAL_MS)

    @field_validator("timeout_ms", mode="before")
    @classmethod
    def _timeout_or_default(cls, value: Any) -> int:
        return parse_positive_int(value, DEFAULT_TIMEOUT_MS)

    @property
    def polling(self) -> PollingConfig:
        return PollingConfig(
            timeout=self.timeout_ms / 1000,
            poll_interval=self.poll_interval_ms / 1000,
        )

    def model_path_candidates(self, defaults: Optional[Iterable[str]] = None) -> List[str]:
        return build_model_path_candidates(
            self.model_path, self.model_fallback_paths, defaults
        )


@lru_cache
def get_settings() -> PredictionSettings:
    return PredictionSettings()
