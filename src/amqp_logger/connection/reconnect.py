"""Backoff policy for broker connect retries."""


def calculate_backoff(attempt: int, initial_delay_ms: int, multiplier: float = 2.0) -> float:
    """
    Delay to wait after a failed attempt.

    Args:
        attempt: Index of the failed attempt (0-based)
        initial_delay_ms: Delay after the first failed attempt, in milliseconds
        multiplier: Growth factor per attempt

    Returns:
        Delay in milliseconds (``initial_delay_ms * multiplier ** attempt``)
    """
    if attempt < 0:
        raise ValueError(f"attempt must be >= 0, got {attempt}")
    return initial_delay_ms * (multiplier ** attempt)


class ExponentialBackoff:
    """Bounded retry schedule with exponential backoff, without jitter or cap."""

    def __init__(self, max_attempts: int, initial_delay_ms: int, multiplier: float = 2.0):
        """
        Initialize the backoff schedule.

        Args:
            max_attempts: Total number of connect attempts (at least 1)
            initial_delay_ms: Delay after the first failure, in milliseconds
            multiplier: Growth factor per attempt
        """
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
        self._max_attempts = max_attempts
        self._initial_delay_ms = initial_delay_ms
        self._multiplier = multiplier

    @property
    def max_attempts(self) -> int:
        """Get maximum number of connect attempts."""
        return self._max_attempts

    def calculate_delay(self, attempt: int) -> float:
        """
        Calculate the delay in milliseconds after the given failed attempt.

        Args:
            attempt: Index of the failed attempt (0-based)
        """
        return calculate_backoff(attempt, self._initial_delay_ms, self._multiplier)

    def has_next(self, attempt: int) -> bool:
        """Check whether another attempt follows the given (0-based) attempt."""
        return attempt < self._max_attempts - 1
