"""Progress snapshot value type and write throttling for workers."""

import time
from collections.abc import Callable
from dataclasses import dataclass


def percentage_of(processed: int, total: int) -> int:
    """Integer completion percentage in 0..100.

    Floors rather than rounds so 100% is only reached when every record
    has been processed.
    """
    if total <= 0:
        return 0
    return max(0, min(100, (processed * 100) // total))


@dataclass(frozen=True)
class ExportProgress:
    """Point-in-time progress of an export job."""

    total_records: int
    processed_records: int
    percentage: int
    message: str | None = None

    @classmethod
    def from_counts(cls, processed: int, total: int, message: str | None = None) -> "ExportProgress":
        return cls(
            total_records=total,
            processed_records=processed,
            percentage=percentage_of(processed, total),
            message=message,
        )


class ProgressThrottle:
    """Bounds the cadence of progress writes.

    A report is allowed only when at least ``min_interval`` seconds have
    elapsed AND the percentage advanced by at least ``min_step`` since the
    last report, so the coarser of the two limits wins. The first report
    and the final 100% report are always allowed.

    Args:
        min_interval: Minimum seconds between reports.
        min_step: Minimum percentage advance between reports.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        min_interval: float = 1.0,
        min_step: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._min_interval = min_interval
        self._min_step = min_step
        self._clock = clock
        self._last_time: float | None = None
        self._last_percentage = 0

    @property
    def last_percentage(self) -> int:
        return self._last_percentage

    def should_report(self, percentage: int) -> bool:
        """Return True (and record the report) if ``percentage`` may be written now."""
        now = self._clock()
        if self._last_time is None:
            allowed = True
        elif percentage >= 100 > self._last_percentage:
            allowed = True
        else:
            allowed = (
                now - self._last_time >= self._min_interval
                and percentage - self._last_percentage >= self._min_step
            )
        if allowed:
            self._last_time = now
            self._last_percentage = max(self._last_percentage, percentage)
        return allowed
