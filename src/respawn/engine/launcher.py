# src/respawn/engine/launcher.py
"""ApplicationLauncher: relaunch the applications recorded in a checkpoint.

Applications are started one at a time, heaviest (by recorded memory)
first. Each launch is retried with a fixed pause and independently
verified through a process lookup; the activation call returning is never
taken as proof that the application is running.

Results are appended strictly in launch order and describe only the
applications that were actually launched: applications already running
are skipped without a result entry.
"""

from dataclasses import replace

import structlog

from respawn.contracts import (
    ApplicationActivator,
    LaunchFailure,
    LaunchResult,
    LaunchSummary,
    ProcessLookup,
    ProcessRecord,
    RespawnError,
    WindowManager,
    WindowState,
)
from respawn.core.config import RestoreSettings
from respawn.core.logging import get_logger
from respawn.engine.clock import DEFAULT_CLOCK, Clock
from respawn.engine.retry import RetryConfig, RetryManager


class ApplicationLauncher:
    """Turns ProcessRecords back into running applications.

    One launcher instance serves one restoration run; the accumulated
    result list is reset at the start of every restore_applications() call.
    """

    def __init__(
        self,
        activator: ApplicationActivator,
        lookup: ProcessLookup,
        window_manager: WindowManager,
        settings: RestoreSettings,
        *,
        clock: Clock = DEFAULT_CLOCK,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        """Initialize launcher.

        Args:
            activator: OS application-open mechanism
            lookup: Independent process lookup used for the skip rule and
                launch verification
            window_manager: Best-effort window state application
            settings: Retry count, delays and optional per-app time bound
            clock: Time source for sleeps and timestamps
            logger: Injected logger (defaults to the module logger)
        """
        self._activator = activator
        self._lookup = lookup
        self._window_manager = window_manager
        self._settings = settings
        self._clock = clock
        self._logger = logger if logger is not None else get_logger(__name__)
        self._retry = RetryManager(RetryConfig.from_settings(settings), clock=clock)
        self._results: list[LaunchResult] = []

    @property
    def results(self) -> tuple[LaunchResult, ...]:
        """Results of the current (or last) restoration run, in launch order."""
        return tuple(self._results)

    def restore_applications(self, processes: list[ProcessRecord]) -> list[LaunchResult]:
        """Relaunch every recorded application that is not already running.

        Per-application failures are recorded in the results, never raised.

        Returns:
            LaunchResults in launch order (memory descending)
        """
        self._results = []
        ordered = order_by_memory(processes)

        self._logger.info("Restoring applications", app_count=len(ordered))

        for record in ordered:
            running_pid = self._lookup.find_pid(record.process_name)
            if running_pid is not None:
                self._logger.info("Application already running, skipping", app=record.name, pid=running_pid)
                continue

            result = self.launch_with_retry(record)
            self._results.append(result)

            if result.success:
                self._restore_window_state(record)
                if self._settings.launch_delay_ms > 0:
                    self._clock.sleep(self._settings.launch_delay_ms / 1000)

        summary = self.get_launch_summary()
        self._logger.info(
            "Restoration run finished",
            success_count=summary.success_count,
            fail_count=summary.fail_count,
            failed=list(summary.failed_names),
        )
        return list(self._results)

    def launch_with_retry(self, record: ProcessRecord) -> LaunchResult:
        """Launch one application, retrying up to the configured attempt count.

        retry_count on the returned result is the number of attempts
        consumed: the successful attempt's number, or every attempt made
        on total failure.
        """

        def log_failed_attempt(attempt: int, result: LaunchResult) -> None:
            self._logger.warning(
                "Launch attempt failed",
                app=record.name,
                attempt=attempt,
                max_attempts=self._retry.config.max_attempts,
                error=result.error_msg,
            )

        outcome = self._retry.execute_until(
            lambda attempt: self._attempt_launch(record),
            is_success=lambda result: result.success,
            on_retry=log_failed_attempt,
        )

        if outcome.succeeded:
            self._logger.info(
                "Application launched",
                app=record.name,
                pid=outcome.result.pid,
                attempts=outcome.attempts,
            )
            return replace(outcome.result, retry_count=outcome.attempts)

        self._logger.error(
            "Application launch failed",
            app=record.name,
            attempts=outcome.attempts,
            error=outcome.result.error_msg,
        )
        return LaunchResult(
            app_name=record.name,
            success=False,
            launch_time=self._clock.now(),
            retry_count=outcome.attempts,
            error_msg=f"Failed after {outcome.attempts} attempts: {outcome.result.error_msg}",
        )

    def get_launch_summary(self) -> LaunchSummary:
        """Success/failure tally over the current run's results."""
        return LaunchSummary.from_results(self._results)

    def _attempt_launch(self, record: ProcessRecord) -> LaunchResult:
        launch_time = self._clock.now()
        try:
            self._activator.open_application(record.process_name)
        except LaunchFailure as e:
            return LaunchResult(app_name=record.name, success=False, launch_time=launch_time, error_msg=e.reason)

        if self._settings.settle_delay_ms > 0:
            self._clock.sleep(self._settings.settle_delay_ms / 1000)

        pid = self._lookup.find_pid(record.process_name)
        if pid is None:
            return LaunchResult(
                app_name=record.name,
                success=False,
                launch_time=launch_time,
                error_msg="application not running after launch",
            )
        return LaunchResult(app_name=record.name, success=True, launch_time=launch_time, pid=pid)

    def _restore_window_state(self, record: ProcessRecord) -> None:
        if record.window_state == WindowState.NORMAL:
            return
        try:
            self._window_manager.set_window_state(record.process_name, record.window_state)
        except (RespawnError, OSError) as e:
            self._logger.warning(
                "Window state not restored",
                app=record.name,
                window_state=record.window_state.value,
                error=str(e),
            )


def order_by_memory(processes: list[ProcessRecord]) -> list[ProcessRecord]:
    """Heaviest first; equal memory keeps the recorded order."""
    return sorted(processes, key=lambda p: p.memory_mb, reverse=True)
