from __future__ import annotations

from typing import Any, Optional


class RemoteCallError(Exception):
    """Base class for failures talking to the analysis/embedding service."""


class TransientRateLimit(RemoteCallError):
    def __init__(self, message: str, wait_hint_sec: Optional[float] = None) -> None:
        super().__init__(message)
        self.wait_hint_sec = wait_hint_sec


class ExhaustedRetries(RemoteCallError):
    def __init__(self, max_retries: int, last_detail: Any = None) -> None:
        super().__init__(f"Failed after {max_retries} retries")
        self.max_retries = max_retries
        self.last_detail = last_detail


class RemoteServiceFault(RemoteCallError):
    """Non-retryable remote failure (auth, bad request, server fault, transport)."""

    def __init__(self, message: str, status_code: Optional[int] = None, detail: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class PipelineCancelled(Exception):
    pass


class PipelineError(Exception):
    def __init__(self, stage: str, cause: Exception) -> None:
        super().__init__(f"{stage} failed: {cause}")
        self.stage = stage
        self.cause = cause
