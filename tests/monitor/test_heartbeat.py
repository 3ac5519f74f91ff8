# tests/monitor/test_heartbeat.py
"""Tests for heartbeat and pid files."""

from datetime import UTC, datetime
from pathlib import Path

import pytest

from respawn.contracts import CorruptRecordError
from respawn.monitor.heartbeat import HeartbeatStore, PidFile


class TestHeartbeatStore:
    def test_missing_heartbeat_is_none(self, tmp_path: Path) -> None:
        store = HeartbeatStore(tmp_path / "heartbeat")

        assert store.read() is None

    def test_write_then_read(self, tmp_path: Path) -> None:
        store = HeartbeatStore(tmp_path / "heartbeat")
        now = datetime(2024, 1, 1, 9, 0, 30, 123456, tzinfo=UTC)

        store.write(now)

        # Second resolution on disk
        assert store.read() == datetime(2024, 1, 1, 9, 0, 30, tzinfo=UTC)
        assert (tmp_path / "heartbeat").read_text() == "2024-01-01T09:00:30+00:00"

    def test_naive_timestamp_read_as_utc(self, tmp_path: Path) -> None:
        path = tmp_path / "heartbeat"
        path.write_text("2024-01-01T09:00:00\n")

        assert HeartbeatStore(path).read() == datetime(2024, 1, 1, 9, 0, tzinfo=UTC)

    def test_garbage_is_corrupt(self, tmp_path: Path) -> None:
        path = tmp_path / "heartbeat"
        path.write_text("yesterday-ish")

        with pytest.raises(CorruptRecordError):
            HeartbeatStore(path).read()


class TestPidFile:
    def test_round_trip_and_clear(self, tmp_path: Path) -> None:
        pid_file = PidFile(tmp_path / "monitor.pid")

        pid_file.write(4242)
        assert pid_file.read() == 4242

        pid_file.clear()
        assert pid_file.read() is None

    def test_malformed_pid_is_none(self, tmp_path: Path) -> None:
        path = tmp_path / "monitor.pid"
        path.write_text("not-a-pid")

        assert PidFile(path).read() is None

    def test_clear_missing_file(self, tmp_path: Path) -> None:
        PidFile(tmp_path / "absent.pid").clear()
