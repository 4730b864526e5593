import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx
import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_exponential

from src.config import Settings
from src.core.exceptions import ProviderError

logger = structlog.get_logger()

Sleep = Callable[[float], Awaitable[None]]

NON_RETRYABLE_AUTH_STATUSES = (401, 403)


@dataclass(frozen=True)
class BackoffPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    backoff_factor: float = 2.0
    max_delay: float = 8.0

    @classmethod
    def from_settings(cls, settings: Settings, max_attempts: int | None = None) -> "BackoffPolicy":
        return cls(
            max_attempts=max_attempts if max_attempts is not None else settings.http_max_attempts,
            base_delay=settings.http_base_delay,
            backoff_factor=settings.http_backoff_factor,
            max_delay=settings.http_max_delay,
        )

    def wait(self) -> Callable[[RetryCallState], float]:
        """Exponential backoff, doubled (and capped) after a 429."""
        exponential = wait_exponential(multiplier=self.base_delay, exp_base=self.backoff_factor, max=self.max_delay)

        def _wait(retry_state: RetryCallState) -> float:
            delay = exponential(retry_state)
            error = retry_state.outcome.exception() if retry_state.outcome else None
            if isinstance(error, ProviderError) and error.upstream_status == 429:
                delay = min(delay * 2, self.max_delay)
            return delay

        return _wait


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, ProviderError) and error.retryable


def error_message(response: httpx.Response) -> str:
    """Pull the most useful message out of an error response body."""
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if error:
            return str(error)
        if data.get("message"):
            return str(data["message"])
    text = response.text.strip()
    return text[:500] if text else f"HTTP {response.status_code}"


async def _send_once(client: httpx.AsyncClient, method: str, url: str, attempt: int, max_attempts: int, **kwargs: Any) -> httpx.Response:
    try:
        response = await client.request(method, url, **kwargs)
    except httpx.TransportError as e:
        logger.warning(
            "http_transport_error",
            method=method,
            url=url,
            attempt=attempt,
            max_attempts=max_attempts,
            error=str(e),
        )
        raise ProviderError(f"{method} {url} failed: {e}") from e

    if response.is_success:
        return response

    message = error_message(response)
    logger.error(
        "http_request_failed",
        method=method,
        url=url,
        status=response.status_code,
        attempt=attempt,
        max_attempts=max_attempts,
        error=message,
    )
    if response.status_code in NON_RETRYABLE_AUTH_STATUSES:
        raise ProviderError(f"Authentication failed ({response.status_code}): {message}", response.status_code)
    raise ProviderError(message, response.status_code)


async def send_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    policy: BackoffPolicy,
    sleep: Sleep = asyncio.sleep,
    **kwargs: Any,
) -> httpx.Response:
    """Send a request, retrying transport errors, 429 and 5xx with backoff.

    Returns the first 2xx response. Raises ProviderError straight away for
    401/403 and other client errors, and after the last attempt otherwise.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=policy.wait(),
        retry=retry_if_exception(_is_retryable),
        sleep=sleep,
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            return await _send_once(
                client, method, url, attempt.retry_state.attempt_number, policy.max_attempts, **kwargs
            )
    raise ProviderError(f"{method} {url} was never attempted")
