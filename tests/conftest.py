# tests/conftest.py
"""Shared test fixtures.

OS collaborators are replaced by the in-memory fakes in tests/fakes.py and
time by MockClock, so no test sleeps, launches applications or touches the
real home directory.

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/property/
"""

import logging
import os
from collections.abc import Callable, Iterator
from datetime import UTC, datetime
from pathlib import Path

import pytest
from hypothesis import Phase, Verbosity, settings

from respawn.core.checkpoint import CheckpointManager, CheckpointStorage
from respawn.core.config import ApplicationSettings, RespawnSettings, RestoreSettings
from respawn.engine.clock import MockClock
from respawn.engine.launcher import ApplicationLauncher
from tests.fakes import FakeActivator, FakeProbe, FakeProcessTable, FakeWindowManager, RecordingNotifier

settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,  # Disable deadline for CI (timing varies)
)

settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))

START = datetime(2024, 1, 1, 9, 0, tzinfo=UTC)

TEST_APPLICATIONS = [
    ApplicationSettings(name="Safari", process_name="Safari"),
    ApplicationSettings(name="Google Chrome", process_name="Google Chrome"),
    ApplicationSettings(name="Preview", process_name="Preview"),
]


@pytest.fixture(autouse=True)
def _reset_root_logging() -> Iterator[None]:
    """Drop handlers configure_logging() attached to a now-closed stream."""
    yield
    root = logging.getLogger()
    for handler in root.handlers:
        handler.close()
    root.handlers = []


@pytest.fixture
def clock() -> MockClock:
    return MockClock(start=START)


@pytest.fixture
def respawn_settings(tmp_path: Path) -> RespawnSettings:
    return RespawnSettings(
        applications=TEST_APPLICATIONS,
        data_dir=tmp_path / "respawn",
        restore=RestoreSettings(launch_delay_ms=7000, settle_delay_ms=500),
    )


@pytest.fixture
def storage(respawn_settings: RespawnSettings) -> CheckpointStorage:
    return CheckpointStorage(respawn_settings.paths.checkpoints_dir)


@pytest.fixture
def process_table() -> FakeProcessTable:
    return FakeProcessTable()


@pytest.fixture
def activator(process_table: FakeProcessTable) -> FakeActivator:
    return FakeActivator(process_table)


@pytest.fixture
def window_manager() -> FakeWindowManager:
    return FakeWindowManager()


@pytest.fixture
def probe() -> FakeProbe:
    return FakeProbe()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def launcher_factory(
    process_table: FakeProcessTable,
    activator: FakeActivator,
    window_manager: FakeWindowManager,
    respawn_settings: RespawnSettings,
    clock: MockClock,
) -> Callable[[], ApplicationLauncher]:
    def factory() -> ApplicationLauncher:
        return ApplicationLauncher(activator, process_table, window_manager, respawn_settings.restore, clock=clock)

    return factory


@pytest.fixture
def manager(
    storage: CheckpointStorage,
    process_table: FakeProcessTable,
    respawn_settings: RespawnSettings,
    launcher_factory: Callable[[], ApplicationLauncher],
    clock: MockClock,
) -> CheckpointManager:
    return CheckpointManager(
        storage,
        process_table,
        respawn_settings.monitored_apps(),
        respawn_settings.checkpoint,
        launcher_factory,
        clock=clock,
    )
