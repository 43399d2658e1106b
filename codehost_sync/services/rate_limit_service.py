"""Retry with exponential backoff and rate limit header handling."""

from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional, Any, Awaitable, Callable, FrozenSet, Mapping, TypeVar
import asyncio
import logging

from pydantic import BaseModel, Field
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from codehost_sync.core.config import get_settings
from codehost_sync.integrations.base import RemoteAPIError, NetworkError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})
RETRYABLE_NETWORK_CODES = frozenset({"ECONNRESET", "ETIMEDOUT"})


class RetryOptions(BaseModel):
    """Per-call retry configuration. Delays are in seconds."""
    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    retryable_status_codes: FrozenSet[int] = RETRYABLE_STATUS_CODES


class RateLimitInfo(BaseModel):
    remaining: Optional[int] = None
    limit: Optional[int] = None
    reset_at: Optional[datetime] = None


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[float]:
    """Seconds to wait from a Retry-After value, or None when absent or not positive."""
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        seconds = float(int(value))
        return seconds if seconds > 0 else None
    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)
    delay = (retry_at - (now or datetime.now(timezone.utc))).total_seconds()
    return delay if delay > 0 else None


class RateLimitService:
    """Runs remote operations with bounded retries.

    Backoff follows ``initial_delay * 2 ** attempt`` capped at ``max_delay``,
    so the defaults wait 1s, 2s and 4s before giving up on the fourth
    failure. A positive ``Retry-After`` on the error replaces the computed
    delay. Only ``RemoteAPIError`` with a retryable status and
    ``NetworkError`` with a reset or timeout code are retried; anything else
    propagates on the first failure.
    """

    def __init__(
        self,
        default_options: Optional[RetryOptions] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if default_options is None:
            settings = get_settings()
            default_options = RetryOptions(
                max_retries=settings.retry_max_retries,
                initial_delay=settings.retry_initial_delay,
                max_delay=settings.retry_max_delay,
            )
        self.default_options = default_options
        self.sleep = sleep

    @staticmethod
    def is_retryable(
        error: BaseException,
        retryable_status_codes: FrozenSet[int] = RETRYABLE_STATUS_CODES,
    ) -> bool:
        if isinstance(error, RemoteAPIError):
            return error.status_code in retryable_status_codes
        if isinstance(error, NetworkError):
            return error.code in RETRYABLE_NETWORK_CODES
        return False

    def _wait_strategy(self, options: RetryOptions) -> Callable[[RetryCallState], float]:
        backoff = wait_exponential(multiplier=options.initial_delay, max=options.max_delay)

        def wait(retry_state: RetryCallState) -> float:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            if isinstance(error, RemoteAPIError):
                retry_after = parse_retry_after(error.retry_after)
                if retry_after is not None:
                    return retry_after
            return backoff(retry_state)

        return wait

    @staticmethod
    def _log_retry(max_attempts: int) -> Callable[[RetryCallState], None]:
        def before_sleep(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception()
            delay = retry_state.next_action.sleep if retry_state.next_action else 0
            logger.warning(
                f"Request failed (attempt {retry_state.attempt_number}/{max_attempts}), "
                f"retrying in {delay:.1f}s: {error}"
            )

        return before_sleep

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        options: Optional[RetryOptions] = None,
    ) -> T:
        """Await ``operation`` and retry it on retryable failures."""
        options = options or self.default_options
        max_attempts = options.max_retries + 1
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            wait=self._wait_strategy(options),
            retry=retry_if_exception(
                lambda e: self.is_retryable(e, options.retryable_status_codes)
            ),
            before_sleep=self._log_retry(max_attempts),
            sleep=self.sleep,
            reraise=True,
        )
        return await retrying(operation)

    def parse_rate_limit_headers(self, headers: Mapping[str, str]) -> RateLimitInfo:
        """Read GitHub style ``x-ratelimit-*`` headers, falling back to ``ratelimit-*``."""
        lowered = {k.lower(): v for k, v in headers.items()}

        for prefix in ("x-ratelimit-", "ratelimit-"):
            remaining = lowered.get(f"{prefix}remaining")
            if remaining is None:
                continue
            limit = lowered.get(f"{prefix}limit")
            reset = lowered.get(f"{prefix}reset")
            return RateLimitInfo(
                remaining=_to_int(remaining),
                limit=_to_int(limit),
                reset_at=(
                    datetime.fromtimestamp(int(reset), tz=timezone.utc)
                    if _to_int(reset) is not None
                    else None
                ),
            )

        return RateLimitInfo()

    def should_slow_down(self, headers: Mapping[str, str], threshold: float = 0.1) -> bool:
        info = self.parse_rate_limit_headers(headers)
        if info.remaining is not None and info.limit:
            return info.remaining / info.limit < threshold
        return False

    async def wait_if_approaching_limit(
        self,
        headers: Mapping[str, str],
        threshold: float = 0.1,
        delay: float = 1.0,
    ) -> None:
        """Pause briefly when less than ``threshold`` of the quota is left."""
        if not self.should_slow_down(headers, threshold):
            return

        info = self.parse_rate_limit_headers(headers)
        logger.warning(
            f"Approaching rate limit ({info.remaining}/{info.limit} remaining), "
            f"waiting {delay}s"
        )
        if info.reset_at:
            seconds = (info.reset_at - datetime.now(timezone.utc)).total_seconds()
            logger.info(f"Rate limit resets in {max(int(seconds), 0)}s")

        await self.sleep(delay)


def _to_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None
