"""
Retry backoff schedule for failed webhook deliveries.

The delay before attempt N+1 is looked up in a fixed minute table using the
number of attempts already made (1-indexed). Counts past the end of the table
reuse the last entry.
"""
import random
from datetime import datetime, timedelta

from app.models.base import utcnow


#: Minutes to wait after attempt 1, 2, 3, ... (1 min up to 4 h).
DEFAULT_BACKOFF_MINUTES: list[int] = [1, 5, 15, 30, 60, 120, 240]


class BackoffSchedule:
    """
    Escalating retry schedule with optional jitter.

    ``jitter`` is a fraction: 0.2 scales each delay by a random factor in
    [0.8, 1.2]. The default of 0 gives exact table offsets.
    """

    def __init__(self, minutes: list[int] | None = None, jitter: float = 0.0):
        self.minutes = list(minutes) if minutes else list(DEFAULT_BACKOFF_MINUTES)
        if jitter < 0 or jitter >= 1:
            raise ValueError("jitter must be in [0, 1)")
        self.jitter = jitter

    def delay_for(self, attempt_count: int) -> timedelta:
        """Delay that follows the given (1-indexed) attempt."""
        index = min(max(attempt_count - 1, 0), len(self.minutes) - 1)
        minutes = float(self.minutes[index])
        if self.jitter:
            # Not cryptographic; only spreads retries of events that failed together.
            minutes *= 1.0 + random.uniform(-self.jitter, self.jitter)  # noqa: S311
        return timedelta(minutes=minutes)

    def next_retry_time(self, attempt_count: int, now: datetime | None = None) -> datetime:
        """Timestamp at which the next attempt becomes eligible."""
        return (now or utcnow()) + self.delay_for(attempt_count)
