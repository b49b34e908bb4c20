"""Retry policy shared by the sender and the poller.

The policy is a pure decision function: the same (status, attempt, elapsed,
retry_after, method) always yields the same (retry, delay). Jitter and clock
reads live with the caller.
"""

from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import FrozenSet, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, field_validator

RETRYABLE_STATUS_CODES: FrozenSet[int] = frozenset({408, 429, 500, 502, 503, 504})
IDEMPOTENT_METHODS: FrozenSet[str] = frozenset(
    {"GET", "HEAD", "OPTIONS", "PUT", "PATCH", "DELETE"}
)


class RetryDecision(NamedTuple):
    retry: bool
    delay: float


class RetryPolicy(BaseModel):
    """Bounded retry with exponential backoff"""

    model_config = ConfigDict(frozen=True)

    max_attempts: int = 4
    initial_delay: float = 1.0
    backoff_factor: float = 2.0
    max_delay: float = 30.0
    max_elapsed: Optional[float] = 300.0
    retry_status_codes: FrozenSet[int] = RETRYABLE_STATUS_CODES
    non_idempotent_retry_status_codes: FrozenSet[int] = frozenset({429})
    retry_connection_errors: bool = True
    idempotent_methods: FrozenSet[str] = IDEMPOTENT_METHODS

    @field_validator("max_attempts")
    @classmethod
    def _at_least_one_attempt(cls, value: int) -> int:
        if value < 1:
            raise ValueError("max_attempts must be >= 1")
        return value

    @field_validator("initial_delay", "backoff_factor", "max_delay")
    @classmethod
    def _not_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("delays and factors must be >= 0")
        return value

    def backoff(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt, without Retry-After"""
        return min(
            self.initial_delay * (self.backoff_factor ** max(0, attempt - 1)),
            self.max_delay,
        )

    def is_idempotent(self, method: str) -> bool:
        return method.upper() in self.idempotent_methods

    def decide(
        self,
        status: Optional[int],
        attempt: int,
        elapsed: float,
        retry_after: Optional[float] = None,
        method: str = "GET",
    ) -> RetryDecision:
        """Decide whether to issue another attempt.

        ``status`` is None for a connection-level failure. ``attempt`` counts
        the attempts already made, starting at 1.
        """
        if attempt >= self.max_attempts:
            return RetryDecision(False, 0.0)

        idempotent = self.is_idempotent(method)
        if status is None:
            # A lost POST may or may not have reached the server.
            if not self.retry_connection_errors or not idempotent:
                return RetryDecision(False, 0.0)
        elif idempotent:
            if status not in self.retry_status_codes:
                return RetryDecision(False, 0.0)
        elif status not in self.non_idempotent_retry_status_codes:
            return RetryDecision(False, 0.0)

        delay = retry_after if retry_after is not None else self.backoff(attempt)
        if self.max_elapsed is not None and elapsed + delay > self.max_elapsed:
            return RetryDecision(False, 0.0)
        return RetryDecision(True, delay)


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[float]:
    """Parse a Retry-After header given as delta-seconds or an HTTP-date"""
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        pass
    else:
        return seconds if seconds >= 0 else None

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0.0, (when - now).total_seconds())
