"""Restoration result contracts."""

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class LaunchResult:
    """Outcome of relaunching one application.

    retry_count is the number of attempts consumed.
    """

    app_name: str
    success: bool
    launch_time: datetime
    pid: int | None = None
    retry_count: int = 0
    error_msg: str | None = None


@dataclass(frozen=True)
class LaunchSummary:
    """Aggregation over one restoration run's results."""

    success_count: int
    fail_count: int
    failed_names: tuple[str, ...] = ()

    @property
    def total(self) -> int:
        return self.success_count + self.fail_count

    @property
    def all_failed(self) -> bool:
        return self.total > 0 and self.success_count == 0

    @classmethod
    def from_results(cls, results: "list[LaunchResult] | tuple[LaunchResult, ...]") -> "LaunchSummary":
        failed = tuple(r.app_name for r in results if not r.success)
        return cls(
            success_count=len(results) - len(failed),
            fail_count=len(failed),
            failed_names=failed,
        )


@dataclass
class RestartPolicy:
    """Backoff policy for restarting the whole daemon after a crash."""

    max_retries: int = 3
    backoff_seconds: tuple[float, ...] = (5.0, 10.0, 30.0)
    current_retry: int = 0
    last_crash_time: datetime | None = None

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        if not self.backoff_seconds:
            raise ValueError("backoff_seconds must not be empty")

    def delay_for(self, retry_index: int) -> float:
        """Backoff for a retry; the last interval repeats past the end."""
        return self.backoff_seconds[min(retry_index, len(self.backoff_seconds) - 1)]
