# tests/contracts/test_checkpoint_contracts.py
"""Tests for checkpoint, launch and restart-policy contracts."""

from datetime import UTC, datetime

import pytest

from respawn.contracts import (
    Checkpoint,
    CheckpointList,
    LaunchResult,
    LaunchSummary,
    ProcessRecord,
    RestartPolicy,
    WindowState,
    checkpoint_id_for,
)

NOW = datetime(2024, 1, 2, 9, 30, 5, tzinfo=UTC)


class TestProcessRecord:
    def test_process_name_defaults_to_name(self) -> None:
        record = ProcessRecord(name="Safari", pid=10, memory_mb=200)

        assert record.process_name == "Safari"
        assert record.window_state == WindowState.NORMAL
        assert record.is_running is True

    def test_explicit_process_name_kept(self) -> None:
        record = ProcessRecord(name="Chrome", pid=10, memory_mb=200, process_name="Google Chrome")

        assert record.process_name == "Google Chrome"

    def test_empty_name_rejected(self) -> None:
        with pytest.raises(ValueError, match="name"):
            ProcessRecord(name="", pid=10, memory_mb=1)

    def test_negative_memory_rejected(self) -> None:
        with pytest.raises(ValueError, match="memory_mb"):
            ProcessRecord(name="Safari", pid=10, memory_mb=-1)

    def test_records_are_immutable(self) -> None:
        record = ProcessRecord(name="Safari", pid=10, memory_mb=200)

        with pytest.raises(AttributeError):
            record.pid = 11  # type: ignore[misc]


class TestCheckpointIdentity:
    def test_identifier_format(self) -> None:
        assert checkpoint_id_for(NOW) == "2024-01-02_09-30-05"

    def test_identifiers_sort_like_timestamps(self) -> None:
        earlier = checkpoint_id_for(datetime(2024, 1, 1, 23, 59, 59, tzinfo=UTC))
        later = checkpoint_id_for(datetime(2024, 1, 2, 0, 0, 0, tzinfo=UTC))

        assert earlier < later

    def test_from_processes_copies_app_names(self) -> None:
        processes = [
            ProcessRecord(name="Safari", pid=1, memory_mb=300),
            ProcessRecord(name="Preview", pid=2, memory_mb=50),
        ]

        checkpoint = Checkpoint.from_processes(NOW, processes)

        assert checkpoint.checkpoint_id == "2024-01-02_09-30-05"
        assert checkpoint.app_names == ["Safari", "Preview"]
        assert checkpoint.file_path == ""
        assert checkpoint.file_size == 0
        assert checkpoint.is_compressed is False

    def test_display_name(self) -> None:
        checkpoint = Checkpoint.from_processes(NOW, [ProcessRecord(name="Safari", pid=1, memory_mb=3)])
        empty = Checkpoint.from_processes(NOW, [])

        assert checkpoint.display_name == "2024-01-02_09-30-05 (Safari)"
        assert empty.display_name == "2024-01-02_09-30-05 (No applications)"


class TestCheckpointList:
    def _checkpoint(self, checkpoint_id: str, *, compressed: bool = False) -> Checkpoint:
        return Checkpoint(checkpoint_id=checkpoint_id, timestamp=NOW, is_compressed=compressed)

    def test_empty_list(self) -> None:
        listing = CheckpointList(checkpoints=())

        assert listing.latest is None
        assert listing.total_count == 0
        assert listing.find("anything") is None

    def test_counts_and_lookup(self) -> None:
        listing = CheckpointList(
            checkpoints=(
                self._checkpoint("2024-01-02_00-00-00"),
                self._checkpoint("2024-01-01_00-00-00", compressed=True),
            ),
            last_used="2024-01-01_00-00-00",
        )

        assert listing.total_count == 2
        assert listing.compressed_count == 1
        assert listing.latest is not None
        assert listing.latest.checkpoint_id == "2024-01-02_00-00-00"
        found = listing.find("2024-01-01_00-00-00")
        assert found is not None and found.is_compressed


class TestLaunchSummary:
    def _result(self, name: str, success: bool) -> LaunchResult:
        return LaunchResult(app_name=name, success=success, launch_time=NOW)

    def test_tally(self) -> None:
        summary = LaunchSummary.from_results(
            [self._result("Safari", True), self._result("Preview", False), self._result("TextEdit", True)]
        )

        assert summary.success_count == 2
        assert summary.fail_count == 1
        assert summary.failed_names == ("Preview",)
        assert summary.total == 3
        assert summary.all_failed is False

    def test_all_failed(self) -> None:
        summary = LaunchSummary.from_results([self._result("Safari", False)])

        assert summary.all_failed is True

    def test_empty_run_is_not_a_failure(self) -> None:
        summary = LaunchSummary.from_results([])

        assert summary.total == 0
        assert summary.all_failed is False


class TestRestartPolicy:
    def test_defaults(self) -> None:
        policy = RestartPolicy()

        assert policy.max_retries == 3
        assert policy.backoff_seconds == (5.0, 10.0, 30.0)
        assert policy.current_retry == 0
        assert policy.last_crash_time is None

    def test_delay_for_repeats_last_interval(self) -> None:
        policy = RestartPolicy(max_retries=5)

        assert [policy.delay_for(i) for i in range(5)] == [5.0, 10.0, 30.0, 30.0, 30.0]

    @pytest.mark.parametrize(
        ("kwargs", "message"),
        [
            ({"max_retries": 0}, "max_retries"),
            ({"backoff_seconds": ()}, "backoff_seconds"),
        ],
    )
    def test_invalid_policy_rejected(self, kwargs: dict[str, object], message: str) -> None:
        with pytest.raises(ValueError, match=message):
            RestartPolicy(**kwargs)  # type: ignore[arg-type]
