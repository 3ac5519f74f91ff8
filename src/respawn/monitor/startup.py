# src/respawn/monitor/startup.py
"""StartupManager: daemon lifecycle around the SystemMonitor.

- Single-instance lock (respawn.lock + respawn.pid)
- Bounded initialization (config, permissions, logging)
- Crash accounting that turns auto-start off after repeated failures
- Auto-start install/enable/disable through the OS registrar
- Restart of the whole daemon with a bounded backoff loop
"""

import queue
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

import structlog

from respawn.contracts import (
    AutoStartError,
    AutoStartRegistrar,
    InitializationError,
    InitializationTimeout,
    InstanceAlreadyRunningError,
    NotificationKind,
    Notifier,
    PermissionChecker,
    PermissionNotGrantedError,
    RestartExhaustedError,
    RestartPolicy,
    SystemProbe,
)
from respawn.core.config import RespawnSettings
from respawn.core.logging import get_logger
from respawn.core.persistence import write_atomic
from respawn.engine.clock import DEFAULT_CLOCK, Clock
from respawn.monitor.crash import CrashTracker
from respawn.monitor.heartbeat import PidFile

T = TypeVar("T")


class InstanceLock:
    """Lock file plus pid file. A lock whose pid is dead is stale and replaced."""

    def __init__(
        self,
        lock_file: Path,
        pid_file: Path,
        probe: SystemProbe,
        pid: int,
        *,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._lock_file = lock_file
        self._pid_file = PidFile(pid_file)
        self._probe = probe
        self._pid = pid
        self._logger = logger if logger is not None else get_logger(__name__)
        self._held = False

    @property
    def is_held(self) -> bool:
        return self._held

    def acquire(self) -> None:
        """Take the lock.

        Raises:
            InstanceAlreadyRunningError: If a live process holds the lock
            InitializationError: If the lock files cannot be written
        """
        if self._lock_file.exists():
            owner = self._pid_file.read()
            if owner is not None and owner != self._pid and self._probe.is_pid_alive(owner):
                raise InstanceAlreadyRunningError(owner)
            self._logger.debug("Removing stale lock file", lock_file=str(self._lock_file), stale_pid=owner)
            self._lock_file.unlink(missing_ok=True)
            self._pid_file.clear()

        try:
            write_atomic(self._lock_file, str(self._pid).encode("utf-8"))
            self._pid_file.write(self._pid)
        except OSError as e:
            raise InitializationError(f"Failed to create lock file: {e}") from e

        self._held = True
        self._logger.info("Single instance lock acquired", pid=self._pid)

    def release(self) -> None:
        if not self._held:
            return
        self._lock_file.unlink(missing_ok=True)
        self._pid_file.clear()
        self._held = False
        self._logger.debug("Instance lock released")


class StartupManager:
    """Starts the daemon safely and manages login auto-start."""

    def __init__(
        self,
        settings: RespawnSettings,
        registrar: AutoStartRegistrar,
        notifier: Notifier,
        probe: SystemProbe,
        *,
        clock: Clock = DEFAULT_CLOCK,
        logger: structlog.stdlib.BoundLogger | None = None,
        pid: int,
    ) -> None:
        paths = settings.paths
        self._settings = settings
        self._registrar = registrar
        self._notifier = notifier
        self._clock = clock
        self._logger = logger if logger is not None else get_logger(__name__)
        self._crash_tracker = CrashTracker(paths.crash_state_file, settings.crash, clock=clock, logger=self._logger)
        self._lock = InstanceLock(paths.lock_file, paths.pid_file, probe, pid, logger=self._logger)

    @property
    def crash_tracker(self) -> CrashTracker:
        return self._crash_tracker

    @property
    def instance_lock(self) -> InstanceLock:
        return self._lock

    # ------------------------------------------------------------------
    # Auto-start
    # ------------------------------------------------------------------

    def install(self) -> bool:
        """Install and enable auto-start. Returns False if it was already installed.

        Raises:
            AutoStartError: If the registrar fails
        """
        if self._registrar.is_installed():
            self._logger.info("Auto-start already installed")
            return False
        self._registrar.install()
        self._registrar.enable()
        self._logger.info("Auto-start installed")
        return True

    def uninstall(self) -> bool:
        """Remove auto-start. Returns False if it was not installed."""
        if not self._registrar.is_installed():
            self._logger.info("Auto-start not installed")
            return False
        self._registrar.uninstall()
        self._logger.info("Auto-start uninstalled")
        return True

    def enable_auto_start(self) -> None:
        """Enable auto-start and lift a crash-triggered disable.

        Raises:
            AutoStartError: If auto-start is not installed or cannot be enabled
        """
        if not self._registrar.is_installed():
            raise AutoStartError("Auto-start not installed, run: respawn install")
        self._registrar.enable()
        self._crash_tracker.clear()
        self._logger.info("Auto-start enabled")

    def disable_auto_start(self) -> None:
        """Raises AutoStartError if auto-start is not installed."""
        if not self._registrar.is_installed():
            raise AutoStartError("Auto-start not installed")
        self._registrar.disable()
        self._logger.info("Auto-start disabled")

    def is_enabled(self) -> bool:
        return self._registrar.is_enabled()

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    def check_permissions(self, checker: PermissionChecker) -> None:
        """Raises PermissionNotGrantedError (after asking the user to grant it) if anything is missing."""
        missing = checker.missing_permissions()
        if not missing:
            return
        self._logger.warning("Required permissions not granted", missing=missing)
        accepted = self._notifier.ask(
            "Permission Required",
            "Respawn needs " + ", ".join(missing) + " permission.\n\n"
            "Grant access in System Settings > Privacy & Security, then start respawn again.",
        )
        if not accepted:
            self._logger.warning("User declined permission request")
        raise PermissionNotGrantedError(f"Permission not granted: {', '.join(missing)}")

    def start_with_policy(self, initialize: Callable[[], T]) -> T:
        """Acquire the instance lock and run initialize within the time bound.

        Raises:
            AutoStartError: If repeated crashes disabled auto-start
            InstanceAlreadyRunningError: If another instance is running
            InitializationTimeout: If initialize exceeds the bound
            InitializationError: If initialize fails (a crash is recorded)
        """
        started = self._clock.monotonic()
        self._logger.info("Starting respawn with restart policy")

        if self._crash_tracker.should_disable_auto_start():
            self._logger.warning("Respawn has crashed too many times, auto-start disabled")
            self._notifier.notify(
                "Respawn auto-start disabled",
                f"Respawn crashed {self._settings.crash.max_crashes} times within "
                f"{self._settings.crash.window_minutes:g} minutes. Run 'respawn enable-autostart' to re-enable.",
                NotificationKind.ERROR,
            )
            raise AutoStartError("Auto-start disabled due to repeated crashes")

        self._lock.acquire()

        timeout = self._settings.monitor.init_timeout_seconds
        try:
            result = self._run_bounded(initialize, timeout)
        except InitializationTimeout:
            self._lock.release()
            self._logger.error("Initialization timeout exceeded", timeout_seconds=timeout)
            raise
        except Exception as e:
            self._lock.release()
            self._logger.error("Initialization failed", error=str(e), error_type=type(e).__name__)
            self.record_crash()
            self._notifier.notify("Respawn initialization failed", str(e), NotificationKind.ERROR)
            raise InitializationError(f"Initialization failed: {e}") from e

        self._logger.info(
            "Respawn started",
            duration_seconds=round(self._clock.monotonic() - started, 3),
        )
        return result

    def restart_with_backoff(self, policy: RestartPolicy, spawn: Callable[[], Any]) -> None:
        """Respawn the daemon process, waiting out the policy's backoff between tries.

        Raises:
            RestartExhaustedError: If every remaining retry fails to spawn
        """
        while policy.current_retry < policy.max_retries:
            delay = policy.delay_for(policy.current_retry)
            self._logger.info(
                "Restarting respawn",
                delay_seconds=delay,
                attempt=policy.current_retry + 1,
                max_retries=policy.max_retries,
            )
            self._clock.sleep(delay)
            policy.current_retry += 1
            policy.last_crash_time = self._clock.now()
            try:
                spawn()
            except OSError as e:
                self._logger.error("Failed to restart respawn", error=str(e), attempt=policy.current_retry)
                continue
            self._logger.info("Respawn restart initiated")
            return

        self._logger.error("Max restart retries exceeded", max_retries=policy.max_retries)
        raise RestartExhaustedError(policy.max_retries)

    def release(self) -> None:
        self._lock.release()

    def record_crash(self) -> None:
        """Record a daemon crash and disable auto-start once the limit is hit."""
        self._crash_tracker.record_crash()
        if not self._crash_tracker.should_disable_auto_start():
            return
        self._logger.error(
            "Crash threshold exceeded, disabling auto-start",
            max_crashes=self._settings.crash.max_crashes,
            window_minutes=self._settings.crash.window_minutes,
        )
        try:
            if self._registrar.is_installed():
                self._registrar.disable()
        except AutoStartError as e:
            self._logger.warning("Could not disable auto-start", error=str(e))

    def _run_bounded(self, initialize: Callable[[], T], timeout: float) -> T:
        # Daemon thread: a hung initializer must not keep the process alive
        result_queue: queue.Queue[tuple[bool, Any]] = queue.Queue()

        def worker() -> None:
            try:
                result_queue.put((True, initialize()))
            except BaseException as exc:
                result_queue.put((False, exc))

        thread = threading.Thread(target=worker, daemon=True, name="respawn-init")
        thread.start()

        try:
            ok, value = result_queue.get(timeout=timeout)
        except queue.Empty:
            raise InitializationTimeout(timeout) from None

        if not ok:
            assert isinstance(value, BaseException)
            raise value
        result: T = value
        return result
