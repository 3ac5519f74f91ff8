# src/respawn/monitor/state.py
"""SystemStateDetector: classify the environment transition at startup.

Inputs are the OS uptime, the time since the last recorded heartbeat, and
whether the previously recorded monitor pid is still alive. Rules, in
priority order:

1. No heartbeat record            -> FIRST_RUN
2. Heartbeat unreadable           -> RESTART
3. Uptime unknown                 -> UNKNOWN
4. Uptime < heartbeat gap         -> RESTART (machine rebooted)
5. Gap > sleep threshold and
   uptime > gap                   -> SLEEP (no reboot, gap is suspend)
6. Previous pid dead and
   gap > crash threshold          -> CRASH
7. Otherwise                      -> NORMAL
"""

from datetime import timedelta

import structlog

from respawn.contracts import CorruptRecordError, SystemProbe, SystemState
from respawn.core.config import MonitorSettings
from respawn.core.logging import get_logger
from respawn.engine.clock import DEFAULT_CLOCK, Clock
from respawn.monitor.heartbeat import HeartbeatStore, PidFile


def classify_transition(
    *,
    uptime: timedelta,
    heartbeat_gap: timedelta,
    previous_pid_alive: bool,
    sleep_threshold: timedelta,
    crash_threshold: timedelta,
) -> SystemState:
    """Apply rules 4-7 to measured inputs."""
    if uptime < heartbeat_gap:
        return SystemState.RESTART
    if heartbeat_gap > sleep_threshold and uptime > heartbeat_gap:
        return SystemState.SLEEP
    if not previous_pid_alive and heartbeat_gap > crash_threshold:
        return SystemState.CRASH
    return SystemState.NORMAL


class SystemStateDetector:
    """Reads the heartbeat, pid file and OS signals and classifies them."""

    def __init__(
        self,
        heartbeat: HeartbeatStore,
        pid_file: PidFile,
        probe: SystemProbe,
        settings: MonitorSettings,
        *,
        clock: Clock = DEFAULT_CLOCK,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._heartbeat = heartbeat
        self._pid_file = pid_file
        self._probe = probe
        self._sleep_threshold = timedelta(minutes=settings.sleep_threshold_minutes)
        self._crash_threshold = timedelta(minutes=settings.crash_threshold_minutes)
        self._clock = clock
        self._logger = logger if logger is not None else get_logger(__name__)

    def detect_system_state(self) -> SystemState:
        try:
            last_heartbeat = self._heartbeat.read()
        except CorruptRecordError as e:
            self._logger.warning("Heartbeat unreadable, treating as restart", error=str(e))
            return SystemState.RESTART

        if last_heartbeat is None:
            self._logger.info("No previous heartbeat found")
            return SystemState.FIRST_RUN

        uptime_seconds = self._probe.uptime_seconds()
        if uptime_seconds is None:
            self._logger.warning("System uptime unavailable, state unknown")
            return SystemState.UNKNOWN

        # Clock adjustments can put the heartbeat in the future
        gap = max(self._clock.now() - last_heartbeat, timedelta(0))
        uptime = timedelta(seconds=uptime_seconds)

        previous_pid = self._pid_file.read()
        previous_alive = previous_pid is not None and self._probe.is_pid_alive(previous_pid)

        state = classify_transition(
            uptime=uptime,
            heartbeat_gap=gap,
            previous_pid_alive=previous_alive,
            sleep_threshold=self._sleep_threshold,
            crash_threshold=self._crash_threshold,
        )
        self._logger.info(
            "System state detected",
            state=state.value,
            uptime_seconds=round(uptime.total_seconds()),
            heartbeat_gap_seconds=round(gap.total_seconds()),
            previous_pid=previous_pid,
            previous_pid_alive=previous_alive,
        )
        return state
