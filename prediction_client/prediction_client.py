import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, Optional, Union

import aiohttp
from loguru import logger
from pydantic import SecretStr

from prediction_client.classification import (
    extract_error_text,
    is_model_missing_error,
    is_payload_schema_error,
)
from prediction_client.config import DEFAULT_API_BASE_URL, PredictionSettings, get_settings
from prediction_client.envelope import (
    extract_error_code,
    extract_error_message,
    stringify,
    try_parse_json,
)
from prediction_client.exceptions import (
    ConfigurationError,
    PredictionError,
    PredictionTimeoutError,
    ProtocolError,
    UpstreamError,
)
from prediction_client.models import (
    JobStatus,
    NormalizedPrediction,
    PollingConfig,
    PollState,
    PredictionOutcome,
    normalize_prediction,
)

StatusCallback = Callable[[NormalizedPrediction], Awaitable[Any]]


def _loop_time() -> float:
    return asyncio.get_running_loop().time()


class PredictionClient:
    """Submits generation jobs to the prediction service and polls them to completion.

    ``clock`` and ``sleep`` default to the event loop clock and ``asyncio.sleep``;
    tests swap them for fakes so timeouts can be simulated without waiting.
    Pass ``session`` to share one connection pool between concurrent calls.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_API_BASE_URL,
        api_key: Union[str, SecretStr, None] = None,
        config: Optional[PollingConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
        on_status_change: Optional[StatusCallback] = None,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key.get_secret_value() if isinstance(api_key, SecretStr) else api_key
        self.config = config or PollingConfig()
        self.session = session
        self.on_status_change = on_status_change
        self.clock = clock or _loop_time
        self.sleep = sleep or asyncio.sleep
        self.logger = logger

    @classmethod
    def from_settings(
        cls, settings: Optional[PredictionSettings] = None, **kwargs: Any
    ) -> "PredictionClient":
        settings = settings or get_settings()
        return cls(
            base_url=settings.api_base_url,
            api_key=settings.api_key,
            config=settings.polling,
            **kwargs,
        )

    def resolve_url(self, path_or_url: str) -> str:
        if path_or_url.startswith(("http://", "https://")):
            return path_or_url
        path = path_or_url if path_or_url.startswith("/") else f"/{path_or_url}"
        return f"{self.base_url}{path}"

    def _headers(self) -> dict:
        if not self.api_key:
            raise ConfigurationError("WAVESPEED_API_KEY is not configured")
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    @asynccontextmanager
    async def _session_scope(self) -> AsyncIterator[aiohttp.ClientSession]:
        if self.session is not None:
            yield self.session
            return
        async with aiohttp.ClientSession() as session:
            yield session

    async def _request(
        self,
        session: aiohttp.ClientSession,
        method: str,
        url: str,
        payload: Optional[dict] = None,
    ) -> dict:
        """Sends one request and returns the decoded JSON object body"""
        headers = self._headers()

        try:
            async with session.request(method, url, json=payload, headers=headers) as response:
                raw_body = await response.text(errors="replace")
                status = response.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.logger.error(f"{method} {url} failed: {e!r}")
            raise UpstreamError(f"Prediction request failed: {e!r}") from e

        body = try_parse_json(raw_body)

        if not 200 <= status < 300:
            message = extract_error_message(body) or f"HTTP {status}"
            code = extract_error_code(body)
            self.logger.error(f"HTTP error {status} at {url}: {message}")
            raise UpstreamError(message, code=code, status=status)

        if not isinstance(body, dict):
            raise ProtocolError(f"Prediction service returned invalid JSON from {url}")

        return body

    async def _fetch(
        self,
        session: aiohttp.ClientSession,
        method: str,
        url: str,
        payload: Optional[dict] = None,
    ) -> NormalizedPrediction:
        return normalize_prediction(await self._request(session, method, url, payload))

    async def _handle_status_change(
        self, prediction: NormalizedPrediction, last_status: Optional[str]
    ) -> None:
        """Invoke the status change callback if the status has changed"""
        if prediction.status != last_status:
            self.logger.debug(f"Prediction {prediction.id} status changed to {prediction.status}")
            if self.on_status_change is not None:
                await self.on_status_change(prediction)

    @staticmethod
    def _check_terminal(prediction: NormalizedPrediction) -> bool:
        """True when completed; raises on a failed status; False while pending"""
        job_status = prediction.job_status
        if job_status is JobStatus.completed:
            return True
        if job_status is JobStatus.failed:
            raise UpstreamError(stringify(prediction.failure_detail))
        return False

    async def submit_and_poll(
        self,
        model_url: str,
        payload: dict,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
    ) -> NormalizedPrediction:
        """Submit a job and wait for its terminal result.

        Returns the completed prediction. Raises ``ConfigurationError``,
        ``ProtocolError``, ``UpstreamError`` or ``PredictionTimeoutError``.
        """
        async with self._session_scope() as session:
            return await self._submit_and_poll(session, model_url, payload, timeout, poll_interval)

    async def _submit_and_poll(
        self,
        session: aiohttp.ClientSession,
        model_url: str,
        payload: dict,
        timeout: Optional[float],
        poll_interval: Optional[float],
    ) -> NormalizedPrediction:
        timeout = self.config.timeout if timeout is None else timeout
        poll_interval = self.config.poll_interval if poll_interval is None else poll_interval

        url = self.resolve_url(model_url)
        self.logger.debug(f"Submitting prediction to {url}")
        submission = await self._fetch(session, "POST", url, payload)
        await self._handle_status_change(submission, None)

        if self._check_terminal(submission):
            return submission

        if not submission.id:
            raise ProtocolError("Prediction service did not return a task id")

        return await self._poll_until_complete(session, submission, timeout, poll_interval)

    async def _poll_until_complete(
        self,
        session: aiohttp.ClientSession,
        submission: NormalizedPrediction,
        timeout: float,
        poll_interval: float,
    ) -> NormalizedPrediction:
        """Poll the result endpoint at a constant interval until a terminal status or the deadline"""
        state = PollState(
            job_id=submission.id,
            deadline=self.clock() + timeout,
            poll_interval=poll_interval,
        )
        result_url = self.resolve_url(f"/predictions/{state.job_id}/result")
        last_status = submission.status

        while not state.expired(self.clock()):
            self.logger.debug(
                f"Prediction {state.job_id} still pending, waiting {state.poll_interval:.2f}s"
            )
            await self.sleep(state.poll_interval)

            result = await self._fetch(session, "GET", result_url)
            await self._handle_status_change(result, last_status)
            last_status = result.status

            if self._check_terminal(result):
                return result

        raise PredictionTimeoutError(state.job_id, timeout)

    async def submit_with_fallback(
        self,
        model_paths: Iterable[str],
        payloads: Iterable[dict],
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
    ) -> PredictionOutcome:
        """Try each model path with each payload layout until one succeeds.

        A model-missing error moves on to the next model path and a
        payload-schema error moves on to the next payload. Anything else is
        raised straight away.
        """
        model_paths = list(model_paths)
        payloads = list(payloads)
        if not model_paths:
            raise ConfigurationError("No model paths configured for prediction")
        if not payloads:
            raise ConfigurationError("No payload candidates given for prediction")

        last_model_error: Optional[str] = None
        async with self._session_scope() as session:
            for model_path in model_paths:
                try:
                    return await self._submit_with_payloads(
                        session, model_path, payloads, timeout, poll_interval
                    )
                except ConfigurationError:
                    raise
                except PredictionError as error:
                    if not is_model_missing_error(error):
                        raise
                    last_model_error = extract_error_text(error)
                    self.logger.warning(f"Model {model_path} unavailable: {last_model_error}")

        raise UpstreamError(
            f"Prediction failed for all configured models. Last error: {last_model_error or 'unknown'}"
        )

    async def _submit_with_payloads(
        self,
        session: aiohttp.ClientSession,
        model_path: str,
        payloads: list,
        timeout: Optional[float],
        poll_interval: Optional[float],
    ) -> PredictionOutcome:
        last_payload_error: Optional[str] = None
        for index, payload in enumerate(payloads):
            try:
                prediction = await self._submit_and_poll(
                    session, model_path, payload, timeout, poll_interval
                )
            except ConfigurationError:
                raise
            except PredictionError as error:
                last_payload_error = extract_error_text(error)
                if not is_payload_schema_error(error):
                    raise
                self.logger.debug(
                    f"Payload {index} rejected by {model_path}: {last_payload_error}"
                )
                continue
            return PredictionOutcome(model_path=model_path, payload_index=index, prediction=prediction)

        raise UpstreamError(
            f'Prediction request failed for model "{model_path}". '
            f"Last error: {last_payload_error or 'unknown'}"
        )
