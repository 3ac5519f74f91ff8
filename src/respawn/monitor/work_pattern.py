# src/respawn/monitor/work_pattern.py
"""Learned usage statistics and optimization metrics.

Both documents are persisted as JSON under the data directory
(work-pattern.json, metrics.json) and validated with Pydantic on load; an
unreadable document is replaced with a fresh one.

Learning runs for LEARNING_PERIOD after the first start: hourly CPU
averages and app usage counts are accumulated, then the top three apps are
fixed and the dynamic checkpoint interval is enabled.
"""

from datetime import datetime, timedelta
from pathlib import Path
from typing import TypeVar

import structlog
from pydantic import BaseModel, Field, ValidationError

from respawn.contracts import UserActivity
from respawn.core.persistence import read_json, write_atomic

LEARNING_PERIOD = timedelta(days=30)
TOP_APP_COUNT = 3
MAX_RECORDED_DURATIONS = 100

# CPU percent at or above which each activity level starts
INTENSIVE_CPU_PERCENT = 70.0
WORKING_CPU_PERCENT = 25.0
LIGHT_CPU_PERCENT = 5.0

ModelT = TypeVar("ModelT", bound=BaseModel)


def activity_from_cpu(cpu_percent: float | None) -> UserActivity:
    """Derive user activity from CPU load; unknown load stays unknown."""
    if cpu_percent is None:
        return UserActivity.UNKNOWN
    if cpu_percent >= INTENSIVE_CPU_PERCENT:
        return UserActivity.INTENSIVE
    if cpu_percent >= WORKING_CPU_PERCENT:
        return UserActivity.WORKING
    if cpu_percent >= LIGHT_CPU_PERCENT:
        return UserActivity.LIGHT
    return UserActivity.IDLE


class WorkPattern(BaseModel):
    """Learned work hours and application usage.

    Work hours may wrap midnight (default 21:00 to 05:59).
    """

    start_hour: int = Field(default=21, ge=0, le=23)
    end_hour: int = Field(default=5, ge=0, le=23)
    active_app_threshold: int = Field(default=3, ge=1)
    cpu_patterns: dict[int, float] = Field(default_factory=dict, description="Hour -> average CPU percent")
    cpu_samples: dict[int, int] = Field(default_factory=dict, description="Hour -> samples behind the average")
    app_usage_frequency: dict[str, int] = Field(default_factory=dict)
    top_three_apps: list[str] = Field(default_factory=list)
    learning_start_date: datetime
    is_learning_complete: bool = False

    def is_work_hours(self, hour: int) -> bool:
        if self.start_hour <= self.end_hour:
            return self.start_hour <= hour <= self.end_hour
        return hour >= self.start_hour or hour <= self.end_hour

    def record_cpu(self, hour: int, cpu_percent: float) -> None:
        """Fold one sample into the running average for an hour."""
        samples = self.cpu_samples.get(hour, 0)
        average = self.cpu_patterns.get(hour, 0.0)
        self.cpu_patterns[hour] = (average * samples + cpu_percent) / (samples + 1)
        self.cpu_samples[hour] = samples + 1

    def record_app_usage(self, app_names: list[str]) -> None:
        for name in app_names:
            self.app_usage_frequency[name] = self.app_usage_frequency.get(name, 0) + 1

    def learning_due(self, now: datetime) -> bool:
        return not self.is_learning_complete and now - self.learning_start_date >= LEARNING_PERIOD

    def complete_learning(self) -> None:
        """Fix the top apps (most used first, ties by name) and stop learning."""
        ranked = sorted(self.app_usage_frequency.items(), key=lambda item: (-item[1], item[0]))
        self.top_three_apps = [name for name, _ in ranked[:TOP_APP_COUNT]]
        self.is_learning_complete = True


class OptimizationMetrics(BaseModel):
    """Checkpoint and restore performance history."""

    checkpoint_durations: list[float] = Field(default_factory=list, description="Seconds, most recent last")
    restore_attempts: int = Field(default=0, ge=0)
    restore_successes: int = Field(default=0, ge=0)
    last_optimization: datetime | None = None
    last_maintenance: datetime | None = None

    @property
    def restore_success_rate(self) -> float:
        if self.restore_attempts == 0:
            return 1.0
        return self.restore_successes / self.restore_attempts

    @property
    def average_checkpoint_duration(self) -> float | None:
        if not self.checkpoint_durations:
            return None
        return sum(self.checkpoint_durations) / len(self.checkpoint_durations)

    def record_checkpoint_duration(self, seconds: float) -> None:
        self.checkpoint_durations.append(seconds)
        del self.checkpoint_durations[:-MAX_RECORDED_DURATIONS]

    def record_restore(self, success_count: int, fail_count: int) -> None:
        self.restore_attempts += success_count + fail_count
        self.restore_successes += success_count


def optimal_interval(
    base: timedelta,
    pattern: WorkPattern,
    hour: int,
    activity: UserActivity,
) -> timedelta:
    """Checkpoint interval for the current hour and activity.

    The base interval applies while learning, outside learned work hours,
    and whenever activity is light, idle or unknown.
    """
    if not pattern.is_learning_complete or not pattern.is_work_hours(hour):
        return base
    if activity == UserActivity.INTENSIVE:
        return base * 2
    if activity == UserActivity.WORKING:
        return base + timedelta(minutes=30)
    return base


def recommendations(metrics: OptimizationMetrics) -> list[str]:
    """Human-readable tuning suggestions derived from metrics."""
    found: list[str] = []
    if metrics.restore_attempts and metrics.restore_success_rate < 0.8:
        found.append(
            f"Restore success rate is {metrics.restore_success_rate:.0%}; "
            "consider raising restore.max_retry_attempts or restore.launch_delay_ms"
        )
    average = metrics.average_checkpoint_duration
    if average is not None and average > 5.0:
        found.append(
            f"Average checkpoint takes {average:.1f}s; consider monitoring fewer applications "
            "or raising checkpoint.interval_minutes"
        )
    return found


def load_model(
    path: Path,
    model: type[ModelT],
    default: ModelT,
    logger: structlog.stdlib.BoundLogger,
) -> ModelT:
    """Load a persisted document, falling back to default when absent or invalid."""
    try:
        return model.model_validate(read_json(path))
    except FileNotFoundError:
        return default
    except (OSError, ValueError, ValidationError) as e:
        logger.warning("Persisted state invalid, starting fresh", path=str(path), error=str(e))
        return default


def save_model(path: Path, document: BaseModel) -> None:
    """Atomically write a document as indented JSON.

    Raises:
        OSError: If the file cannot be written
    """
    write_atomic(path, document.model_dump_json(indent=2).encode("utf-8"))
