# src/respawn/engine/retry.py
"""RetryManager: bounded fixed-delay retries with tenacity.

Used by the ApplicationLauncher around each single launch attempt:
- Fixed pause between attempts (1 second by default)
- Max attempts is the TOTAL number of tries
- Optional overall time bound per operation
- Retry is driven by the attempt's result, not by exceptions; an
  exception escaping the operation is a bug and propagates immediately

Sleeping and elapsed time go through the injected Clock so tests never
block.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, TypeVar

from tenacity import RetryCallState, RetryError, Retrying, retry_if_result, stop_after_attempt, stop_any, wait_fixed

from respawn.engine.clock import DEFAULT_CLOCK, Clock

if TYPE_CHECKING:
    from respawn.core.config import RestoreSettings

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior.

    max_attempts is the TOTAL number of tries, not the number of retries.
    So max_attempts=3 means: try, retry, retry (3 total).
    """

    max_attempts: int = 3
    delay_seconds: float = 1.0
    timeout_seconds: float | None = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.delay_seconds < 0:
            raise ValueError("delay_seconds must be >= 0")
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")

    @classmethod
    def from_settings(cls, settings: "RestoreSettings") -> "RetryConfig":
        return cls(
            max_attempts=settings.max_retry_attempts,
            delay_seconds=settings.retry_delay_seconds,
            timeout_seconds=settings.launch_timeout_seconds,
        )


@dataclass(frozen=True)
class RetryOutcome(Generic[T]):
    """Last result of a retried operation and the attempts it consumed."""

    result: T
    attempts: int
    succeeded: bool


class RetryManager:
    """Runs an operation until its result is accepted or attempts run out.

    Example:
        manager = RetryManager(RetryConfig(max_attempts=3), clock=clock)

        outcome = manager.execute_until(
            operation=lambda attempt: launcher.attempt_launch(record),
            is_success=lambda result: result.success,
            on_retry=lambda attempt, result: log_failed_attempt(attempt, result),
        )
    """

    def __init__(self, config: RetryConfig, *, clock: Clock = DEFAULT_CLOCK) -> None:
        self._config = config
        self._clock = clock

    @property
    def config(self) -> RetryConfig:
        return self._config

    def execute_until(
        self,
        operation: Callable[[int], T],
        *,
        is_success: Callable[[T], bool],
        on_retry: Callable[[int, T], None] | None = None,
    ) -> RetryOutcome[T]:
        """Execute operation with retry on unaccepted results.

        Args:
            operation: Called with the 1-based attempt number
            is_success: Accepts or rejects a result
            on_retry: Called with (attempt, result) for each rejected
                attempt that will be retried

        Returns:
            RetryOutcome with the last result and attempts consumed
        """
        started = self._clock.monotonic()
        stop = stop_after_attempt(self._config.max_attempts)
        timeout = self._config.timeout_seconds
        if timeout is not None:
            stop = stop_any(stop, lambda _: self._clock.monotonic() - started >= timeout)

        def before_sleep(retry_state: RetryCallState) -> None:
            if on_retry is not None and retry_state.outcome is not None:
                on_retry(retry_state.attempt_number, retry_state.outcome.result())

        attempts = 0
        last: T | None = None
        try:
            for attempt_state in Retrying(
                stop=stop,
                wait=wait_fixed(self._config.delay_seconds),
                retry=retry_if_result(lambda result: not is_success(result)),
                before_sleep=before_sleep,
                sleep=self._clock.sleep,
                reraise=False,  # RetryError is caught below and the last result returned
            ):
                with attempt_state:
                    attempts = attempt_state.retry_state.attempt_number
                    last = operation(attempts)
                if attempt_state.retry_state.outcome is not None and not attempt_state.retry_state.outcome.failed:
                    attempt_state.retry_state.set_result(last)
        except RetryError:
            # Attempts exhausted: the last rejected result is the outcome
            pass

        # At least one attempt always runs before Retrying stops
        assert attempts >= 1, "Retrying stopped before the first attempt"
        result: T = last  # type: ignore[assignment]
        return RetryOutcome(result=result, attempts=attempts, succeeded=is_success(result))
