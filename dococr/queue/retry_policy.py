"""
Политика повторов: экспоненциальный backoff.

delay = base_delay * 2^attempt_count, т.е. при базе 5 с: 10 с, 20 с, 40 с ...
"""

from datetime import datetime, timedelta

from config.settings import QUEUE_MAX_ATTEMPTS, QUEUE_RETRY_BASE_DELAY_SECONDS


class RetryPolicy:
    """Решает, будет ли повтор, и когда."""

    def __init__(
        self,
        base_delay_seconds: float = QUEUE_RETRY_BASE_DELAY_SECONDS,
        max_attempts: int = QUEUE_MAX_ATTEMPTS
    ) -> None:
        if base_delay_seconds < 0:
            raise ValueError(f"base_delay_seconds должен быть >= 0: {base_delay_seconds}")
        if max_attempts < 1:
            raise ValueError(f"max_attempts должен быть >= 1: {max_attempts}")
        self.base_delay_seconds = base_delay_seconds
        self.max_attempts = max_attempts

    def delay(self, attempt_count: int) -> timedelta:
        return timedelta(seconds=self.base_delay_seconds * (2 ** attempt_count))

    def should_retry(self, attempt_count: int, max_attempts: int, recoverable: bool) -> bool:
        """attempt_count: уже после увеличения за текущую неудачу."""
        return recoverable and attempt_count < max_attempts

    def next_retry_at(self, now: datetime, attempt_count: int) -> datetime:
        return now + self.delay(attempt_count)
