from typing import Optional


class PredictionError(Exception):
    """Base class for every error raised by the prediction client"""


class ConfigurationError(PredictionError):
    """The client is misconfigured (e.g. no API key); retrying will not help"""


class ProtocolError(PredictionError):
    """The prediction service violated its response contract"""


class UpstreamError(PredictionError):
    """The prediction service reported a failure or could not be reached"""

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        status: Optional[int] = None,
    ):
        self.message = message
        self.code = code
        self.status = status
        super().__init__(message)

    def __str__(self) -> str:
        if self.code is not None:
            return f"[code {self.code}] {self.message}"
        return self.message


class PredictionTimeoutError(PredictionError, TimeoutError):
    """The job was still pending when the polling deadline passed"""

    def __init__(self, job_id: str, timeout: float):
        self.job_id = job_id
        self.timeout = timeout
        super().__init__(
            f"Prediction {job_id} did not complete within {timeout} seconds"
        )


class InvalidImageInputError(PredictionError, ValueError):
    pass
