# src/respawn/core/config.py
"""
Configuration schema and loading for respawn.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction and injected into each
component; there is no process-wide configuration singleton.
"""

from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

import yaml
from dynaconf.vendor.ruamel.yaml.parser import ParserError as YamlParserError
from dynaconf.vendor.ruamel.yaml.scanner import ScannerError as YamlScannerError
from pydantic import BaseModel, Field, ValidationError, field_validator

from respawn.contracts.platform import MonitoredApp
from respawn.core.logging import get_logger

logger = get_logger(__name__)

CONFIG_FILE_NAME = "config.yaml"
BROKEN_CONFIG_SUFFIX = ".broken"


def default_data_dir() -> Path:
    """Private data directory: ~/.respawn."""
    return Path.home() / ".respawn"


def default_config_path() -> Path:
    return default_data_dir() / CONFIG_FILE_NAME


class ApplicationSettings(BaseModel):
    """One monitored application.

    Example YAML:
        applications:
          - name: Google Chrome
            process_name: Google Chrome
            enabled: true
    """

    model_config = {"frozen": True}

    name: str = Field(min_length=1, description="Display name recorded in checkpoints")
    process_name: str = Field(min_length=1, description="OS process name used for lookup and launch")
    enabled: bool = True


def _default_applications() -> list[ApplicationSettings]:
    return [
        ApplicationSettings(name=name, process_name=name)
        for name in (
            "Google Chrome",
            "Safari",
            "Brave Browser",
            "TextEdit",
            "Firefox",
            "Claude",
            "Preview",
        )
    ]


class CheckpointSettings(BaseModel):
    """Checkpoint creation and retention."""

    model_config = {"frozen": True}

    interval_minutes: float = Field(default=15, gt=0, description="Base interval between checkpoints")
    retention_days: int = Field(default=7, gt=0, description="Checkpoints older than this are deleted")
    compression_age_hours: float = Field(
        default=24,
        gt=0,
        description="Compress checkpoints this much older than the last used (or newest) checkpoint",
    )

    @property
    def interval(self) -> timedelta:
        return timedelta(minutes=self.interval_minutes)


class RestoreSettings(BaseModel):
    """Restoration (application relaunch) behavior."""

    model_config = {"frozen": True}

    auto_restore: bool = Field(default=True, description="Restore the latest checkpoint after a detected restart")
    max_retry_attempts: int = Field(default=3, gt=0, description="Total launch attempts per application")
    retry_delay_seconds: float = Field(default=1.0, ge=0, description="Fixed pause between launch attempts")
    launch_delay_ms: int = Field(default=7000, ge=0, description="Pause after each successful launch")
    settle_delay_ms: int = Field(default=500, ge=0, description="Wait before verifying a launched application")
    launch_timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Stop retrying an application once this much time has passed",
    )


class MonitorSettings(BaseModel):
    """Background loop cadence and state-detection thresholds."""

    model_config = {"frozen": True}

    cycle_minutes: float = Field(default=10, gt=0)
    heartbeat_seconds: float = Field(default=60, gt=0)
    learning_minutes: float = Field(default=60, gt=0)
    sleep_threshold_minutes: float = Field(default=120, gt=0, description="Heartbeat gap treated as sleep")
    crash_threshold_minutes: float = Field(default=5, gt=0, description="Heartbeat gap treated as crash if pid is dead")
    maintenance_interval_hours: float = Field(default=6, gt=0)
    init_timeout_seconds: float = Field(default=8, gt=0)
    disk_usage_threshold_percent: float = Field(default=75, gt=0, le=100)
    cpu_busy_percent: float = Field(default=70, gt=0, le=100, description="Skip checkpoints above this CPU load")
    low_battery_percent: float = Field(default=15, ge=0, le=100, description="Skip checkpoints at or below this on battery")


class CrashSettings(BaseModel):
    """Sliding-window crash limit for auto-start."""

    model_config = {"frozen": True}

    max_crashes: int = Field(default=3, gt=0)
    window_minutes: float = Field(default=60, gt=0)

    @property
    def window(self) -> timedelta:
        return timedelta(minutes=self.window_minutes)


class LoggingSettings(BaseModel):
    model_config = {"frozen": True}

    level: str = Field(default="INFO")
    json_output: bool = False

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        normalized = v.upper()
        if normalized not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v!r}")
        return normalized


@dataclass(frozen=True)
class RespawnPaths:
    """Persisted-state layout under the private data directory."""

    data_dir: Path

    @property
    def checkpoints_dir(self) -> Path:
        return self.data_dir / "checkpoints"

    @property
    def metadata_dir(self) -> Path:
        return self.checkpoints_dir / "metadata"

    @property
    def last_used_file(self) -> Path:
        return self.checkpoints_dir / "last_used.json"

    @property
    def heartbeat_file(self) -> Path:
        return self.data_dir / "heartbeat"

    @property
    def monitor_pid_file(self) -> Path:
        return self.data_dir / "monitor.pid"

    @property
    def lock_file(self) -> Path:
        return self.data_dir / "respawn.lock"

    @property
    def pid_file(self) -> Path:
        return self.data_dir / "respawn.pid"

    @property
    def work_pattern_file(self) -> Path:
        return self.data_dir / "work-pattern.json"

    @property
    def metrics_file(self) -> Path:
        return self.data_dir / "metrics.json"

    @property
    def crash_state_file(self) -> Path:
        return self.data_dir / "crash_state.json"

    @property
    def pause_file(self) -> Path:
        return self.data_dir / "paused"

    @property
    def log_dir(self) -> Path:
        return self.data_dir / "logs"

    @property
    def config_file(self) -> Path:
        return self.data_dir / CONFIG_FILE_NAME

    def ensure(self) -> None:
        """Create the directories the daemon writes into."""
        for directory in (self.data_dir, self.checkpoints_dir, self.metadata_dir, self.log_dir):
            directory.mkdir(parents=True, exist_ok=True)


class RespawnSettings(BaseModel):
    """Top-level respawn configuration.

    All settings are validated and frozen after construction.
    """

    model_config = {"frozen": True}

    applications: list[ApplicationSettings] = Field(
        default_factory=_default_applications,
        description="Applications to snapshot and restore",
    )
    data_dir: Path = Field(default_factory=default_data_dir, description="Private data directory")
    checkpoint: CheckpointSettings = Field(default_factory=CheckpointSettings)
    restore: RestoreSettings = Field(default_factory=RestoreSettings)
    monitor: MonitorSettings = Field(default_factory=MonitorSettings)
    crash: CrashSettings = Field(default_factory=CrashSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @field_validator("applications")
    @classmethod
    def validate_applications(cls, v: list[ApplicationSettings]) -> list[ApplicationSettings]:
        """At least one application; display names unique."""
        if not v:
            raise ValueError("applications list cannot be empty")
        names = [app.name for app in v]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate application name(s): {duplicates}")
        return v

    @field_validator("data_dir")
    @classmethod
    def expand_data_dir(cls, v: Path) -> Path:
        return v.expanduser()

    @property
    def paths(self) -> RespawnPaths:
        return RespawnPaths(self.data_dir)

    def monitored_apps(self) -> list[MonitoredApp]:
        """Enabled applications only."""
        return [MonitoredApp(name=app.name, process_name=app.process_name) for app in self.applications if app.enabled]


def load_settings(config_path: Path) -> RespawnSettings:
    """Load settings from YAML file with environment variable overrides.

    Uses Dynaconf for multi-source loading with precedence:
    1. Environment variables (RESPAWN_*) - highest priority
    2. Config file (config.yaml)
    3. Defaults from Pydantic schema - lowest priority

    Environment variable format: RESPAWN_RESTORE__MAX_RETRY_ATTEMPTS for nested keys.

    Raises:
        ValidationError: If configuration fails Pydantic validation
        FileNotFoundError: If config file doesn't exist
    """
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="RESPAWN",
        settings_files=[str(config_path)],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    # Dynaconf returns uppercase keys; convert to lowercase for Pydantic
    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {k.lower(): v for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}

    return RespawnSettings(**raw_config)


def save_settings(settings: RespawnSettings, config_path: Path) -> None:
    """Write settings as YAML (creates parent directories)."""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    data = settings.model_dump(mode="json")
    config_path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")


def load_or_create_settings(config_path: Path | None = None) -> RespawnSettings:
    """Load settings, creating or repairing the file when needed.

    - Missing file: defaults are written and returned.
    - Invalid file (YAML syntax, or content that fails validation on its
      own): the file is moved aside to ``config.yaml.broken`` and defaults
      are written and returned.
    - Valid file made invalid by a ``RESPAWN_*`` override: the
      ValidationError propagates and the file is left untouched.

    A defaults object is created with data_dir next to the config file when
    the config lives outside the default data directory.
    """
    path = config_path if config_path is not None else default_config_path()

    if not path.exists():
        settings = _defaults_for(path)
        save_settings(settings, path)
        logger.info("Created default configuration", config_path=str(path))
        return settings

    try:
        return load_settings(path)
    except ValidationError as e:
        if _file_content_valid(path):
            raise
        error: Exception = e
    except (YamlParserError, YamlScannerError) as e:
        error = e

    backup = path.with_name(path.name + BROKEN_CONFIG_SUFFIX)
    path.replace(backup)
    logger.warning(
        "Configuration invalid, reset to defaults",
        config_path=str(path),
        backup_path=str(backup),
        error=str(error),
    )
    settings = _defaults_for(path)
    save_settings(settings, path)
    return settings


def _file_content_valid(config_path: Path) -> bool:
    """Validate the YAML file by itself, without environment overrides."""
    try:
        data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError:
        return False
    if not isinstance(data, dict):
        return False
    try:
        RespawnSettings(**{str(k).lower(): v for k, v in data.items()})
    except ValidationError:
        return False
    return True


def _defaults_for(config_path: Path) -> RespawnSettings:
    if config_path == default_config_path():
        return RespawnSettings()
    return RespawnSettings(data_dir=config_path.parent)
