from __future__ import annotations

import logging
import math
import random
import re
import time
from typing import Any, Callable, Dict, List, Optional

import httpx
from tenacity import RetryCallState, RetryError, Retrying, retry_if_exception_type, stop_after_attempt

from stride_analyzer.clients.errors import ExhaustedRetries, RemoteServiceFault, TransientRateLimit
from stride_analyzer.models.model_config import ClientConfig
from stride_analyzer.observability.logger import EventLogger
from stride_analyzer.telemetry import span

logger = logging.getLogger(__name__)

RATE_LIMIT_STATUS = 429
DEFAULT_RATE_LIMIT_WAIT_SEC = 30.0
RETRY_BUFFER_SEC = 1.0
LINEAR_BACKOFF_SEC = 5.0

_RETRY_HINT_RE = re.compile(r"try again in (\d+(?:\.\d+)?)\s*(ms|s)\b", re.IGNORECASE)


def parse_retry_hint(message: str | None) -> Optional[float]:
    """Seconds from a "Please try again in 1.5s" / "in 20ms" style message."""
    if not message:
        return None
    match = _RETRY_HINT_RE.search(message)
    if not match:
        return None
    value = float(match.group(1))
    if match.group(2).lower() == "ms":
        value /= 1000.0
    return math.ceil(value * 1000) / 1000


def compute_backoff(hint_sec: Optional[float], retries: int, jitter: float) -> float:
    base = hint_sec if hint_sec is not None else DEFAULT_RATE_LIMIT_WAIT_SEC
    return base + RETRY_BUFFER_SEC + retries * LINEAR_BACKOFF_SEC + jitter


def _error_detail(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


def _error_message(detail: Any) -> str:
    if isinstance(detail, dict):
        error = detail.get("error")
        if isinstance(error, dict):
            return str(error.get("message") or error)
        if error:
            return str(error)
    return str(detail or "")


class OpenAIClient:
    """Chat-completion and embedding client with rate-limit aware retries.

    Only HTTP 429 responses are retried. Every other failure, including
    timeouts and transport errors, surfaces immediately as
    ``RemoteServiceFault``.
    """

    def __init__(
        self,
        config: ClientConfig,
        http_client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: Callable[[], float] = random.random,
        event_logger: EventLogger | None = None,
    ) -> None:
        if not config.api_key:
            raise ValueError("OpenAI API key is required")
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self.client = http_client or httpx.Client(timeout=config.timeout_sec)
        self.event_logger = event_logger
        self._sleep = sleep
        self._rng = rng

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.config.api_key}",
        }

    def _post(self, path: str, payload: Dict[str, Any]) -> httpx.Response:
        url = f"{self.base_url}{path}"
        with span("api.openai", tool_name="openai", http_method="POST", http_url=url, model=payload.get("model")) as sp:
            try:
                response = self.client.post(url, json=payload, headers=self._headers())
            except httpx.HTTPError as exc:
                raise RemoteServiceFault(f"Request to {url} failed: {exc}") from exc
            sp.set_attribute("http.status_code", response.status_code)

        if response.status_code == RATE_LIMIT_STATUS:
            detail = _error_detail(response)
            message = _error_message(detail)
            hint = parse_retry_hint(message)
            if hint is None:
                hint = _retry_after_header(response)
            raise TransientRateLimit(message or "rate limited", wait_hint_sec=hint)
        if response.is_error:
            detail = _error_detail(response)
            raise RemoteServiceFault(
                _error_message(detail) or f"HTTP {response.status_code}",
                status_code=response.status_code,
                detail=detail,
            )
        return response

    def call(
        self,
        payload: Dict[str, Any],
        max_retries: Optional[int] = None,
        path: str = "/chat/completions",
    ) -> httpx.Response:
        if max_retries is None:
            max_retries = self.config.max_retries

        def log_retry(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception()
            wait_sec = retry_state.next_action.sleep
            logger.warning("Rate limit hit. Retrying in %.1f seconds...", wait_sec)
            if self.event_logger:
                self.event_logger.log(
                    "api.rate_limited",
                    path=path,
                    retry=retry_state.attempt_number,
                    wait_sec=round(wait_sec, 3),
                    hint_sec=getattr(exc, "wait_hint_sec", None),
                )

        retrying = Retrying(
            retry=retry_if_exception_type(TransientRateLimit),
            stop=stop_after_attempt(max_retries + 1),
            wait=self._rate_limit_wait,
            sleep=self._sleep,
            before_sleep=log_retry,
        )
        try:
            return retrying(self._post, path, payload)
        except RetryError as exc:
            raise ExhaustedRetries(max_retries, last_detail=str(exc.last_attempt.exception())) from None

    def _rate_limit_wait(self, retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception()
        return compute_backoff(getattr(exc, "wait_hint_sec", None), retry_state.attempt_number - 1, self._rng())

    def complete(self, system_prompt: str, user_content: str, model: Optional[str] = None) -> str:
        payload = {
            "model": model or self.config.segment_model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_content},
            ],
            "stream": False,
        }
        response = self.call(payload)
        return _extract_text(_json_body(response), response.status_code)

    def embed(self, text: str) -> List[float]:
        payload = {"model": self.config.embedding_model, "input": text}
        response = self.call(payload, path="/embeddings")
        data = _json_body(response)
        try:
            return [float(x) for x in data["data"][0]["embedding"]]
        except (KeyError, IndexError, TypeError) as exc:
            raise RemoteServiceFault(
                "Embedding response contained no vector",
                status_code=response.status_code,
                detail=data,
            ) from exc

    def close(self) -> None:
        self.client.close()


def _retry_after_header(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("retry-after")
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _json_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise RemoteServiceFault(
            f"Response from {response.request.url} was not JSON",
            status_code=response.status_code,
            detail=response.text,
        ) from exc


def _extract_text(payload: Any, status_code: int) -> str:
    choices = payload.get("choices") if isinstance(payload, dict) else None
    for choice in choices or []:
        if not isinstance(choice, dict):
            continue
        content = (choice.get("message") or {}).get("content")
        if content:
            return content
    raise RemoteServiceFault(
        "Chat completion response contained no text",
        status_code=status_code,
        detail=payload,
    )
