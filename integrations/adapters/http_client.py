"""HTTP client with tenacity retry for Fitbit API calls.

Retry policy:
- Retry on transient errors (429, 500, 502, 503, 504, timeouts)
- Do NOT retry on 400, 401, 403 (client errors / auth failures)
- Honour Retry-After on 429 (Fitbit's hourly rate limit), capped
- Otherwise exponential backoff with jitter
- Max attempts from settings

Never use this for the authorization-code exchange: the code is single-use.
"""

import httpx
import structlog
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from shared.config import settings

logger = structlog.get_logger()

TRANSIENT_STATUS_CODES = {429, 500, 502, 503, 504}

_backoff = wait_exponential_jitter(initial=1, max=settings.retry_max_wait_seconds, jitter=2)


class TransientHTTPError(Exception):
    """Raised for HTTP errors that are safe to retry."""

    def __init__(self, status_code: int, detail: str = "", retry_after: float | None = None):
        self.status_code = status_code
        self.detail = detail
        self.retry_after = retry_after
        super().__init__(f"HTTP {status_code}: {detail}")


def _retry_after_seconds(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


def _wait(retry_state: RetryCallState) -> float:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    if isinstance(exc, TransientHTTPError) and exc.retry_after is not None:
        return min(exc.retry_after, settings.retry_max_wait_seconds)
    return _backoff(retry_state)


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "provider_request_retry",
        attempt=retry_state.attempt_number,
        error=str(exc),
    )


@retry(
    retry=retry_if_exception_type((TransientHTTPError, httpx.TimeoutException)),
    wait=_wait,
    stop=stop_after_attempt(settings.retry_max_attempts),
    before_sleep=_log_retry,
    reraise=True,
)
async def fetch_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    **kwargs,
) -> httpx.Response:
    """Make an HTTP request with retry on transient failures."""
    response = await client.request(method, url, **kwargs)

    if response.status_code in TRANSIENT_STATUS_CODES:
        raise TransientHTTPError(
            response.status_code, response.text[:200], _retry_after_seconds(response)
        )

    response.raise_for_status()
    return response
