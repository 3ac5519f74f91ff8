# tests/adapters/test_macos.py
"""Tests for the AppleScript and LaunchAgent adapters.

subprocess.run is replaced with a recorder, so these run on any platform.
"""

import plistlib
import subprocess
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from respawn.contracts import AutoStartError, NotificationKind, PlatformCommandError, WindowState
from respawn.platform import macos
from respawn.platform.macos import (
    AccessibilityPermissionChecker,
    AppleScriptNotifier,
    AppleScriptWindowManager,
    LaunchAgentAutoStart,
    applescript_string,
    run_osascript,
)


class FakeRun:
    """Records subprocess.run calls and answers from a queue of results."""

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self.kwargs: list[dict[str, Any]] = []
        self._results: list[subprocess.CompletedProcess[str] | BaseException] = []

    def returns(self, stdout: str = "", *, returncode: int = 0, stderr: str = "") -> "FakeRun":
        self._results.append(subprocess.CompletedProcess([], returncode, stdout=stdout, stderr=stderr))
        return self

    def raises(self, error: BaseException) -> "FakeRun":
        self._results.append(error)
        return self

    def __call__(self, args: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
        self.calls.append(list(args))
        self.kwargs.append(kwargs)
        result = self._results.pop(0) if self._results else subprocess.CompletedProcess(args, 0, stdout="", stderr="")
        if isinstance(result, BaseException):
            raise result
        return result

    @property
    def scripts(self) -> list[str]:
        return [call[2] for call in self.calls if call[0] == "osascript"]


@pytest.fixture
def fake_run(monkeypatch: pytest.MonkeyPatch) -> FakeRun:
    fake = FakeRun()
    monkeypatch.setattr(macos.subprocess, "run", fake)
    return fake


class TestAppleScriptString:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("Safari", '"Safari"'),
            ('Say "hi"', '"Say \\"hi\\""'),
            ("C:\\path", '"C:\\\\path"'),
            ("two\nlines", '"two\\nlines"'),
        ],
    )
    def test_quoting(self, value: str, expected: str) -> None:
        assert applescript_string(value) == expected


class TestRunOsascript:
    def test_returns_stripped_stdout(self, fake_run: FakeRun) -> None:
        fake_run.returns("  minimized\n")

        assert run_osascript("return 1") == "minimized"
        assert fake_run.calls == [["osascript", "-e", "return 1"]]
        assert fake_run.kwargs[0]["timeout"] == macos.OSASCRIPT_TIMEOUT_SECONDS

    def test_nonzero_exit(self, fake_run: FakeRun) -> None:
        fake_run.returns(returncode=1, stderr="execution error: not allowed\n")

        with pytest.raises(PlatformCommandError, match="not allowed"):
            run_osascript("return 1")

    def test_nonzero_exit_without_stderr(self, fake_run: FakeRun) -> None:
        fake_run.returns(returncode=2)

        with pytest.raises(PlatformCommandError, match="exit code 2"):
            run_osascript("return 1")

    def test_timeout(self, fake_run: FakeRun) -> None:
        fake_run.raises(subprocess.TimeoutExpired(["osascript"], 10.0))

        with pytest.raises(PlatformCommandError, match="timed out after 10s"):
            run_osascript("return 1")

    def test_missing_binary(self, fake_run: FakeRun) -> None:
        fake_run.raises(FileNotFoundError("osascript"))

        with pytest.raises(PlatformCommandError):
            run_osascript("return 1")


class TestWindowManager:
    @pytest.mark.parametrize(
        ("output", "expected"),
        [
            ("normal", WindowState.NORMAL),
            ("minimized", WindowState.MINIMIZED),
            ("maximized", WindowState.MAXIMIZED),
            ("something odd", WindowState.NORMAL),
        ],
    )
    def test_get_window_state(self, fake_run: FakeRun, output: str, expected: WindowState) -> None:
        fake_run.returns(output)

        assert AppleScriptWindowManager().get_window_state(4321) == expected
        assert "unix id is 4321" in fake_run.scripts[0]

    def test_set_normal_is_noop(self, fake_run: FakeRun) -> None:
        AppleScriptWindowManager().set_window_state("Safari", WindowState.NORMAL)

        assert fake_run.calls == []

    @pytest.mark.parametrize(
        ("state", "attribute"),
        [(WindowState.MINIMIZED, "AXMinimized"), (WindowState.MAXIMIZED, "AXFullScreen")],
    )
    def test_set_window_state(self, fake_run: FakeRun, state: WindowState, attribute: str) -> None:
        AppleScriptWindowManager().set_window_state("Google Chrome", state)

        (script,) = fake_run.scripts
        assert 'application process "Google Chrome"' in script
        assert attribute in script

    def test_set_failure_raises(self, fake_run: FakeRun) -> None:
        fake_run.returns(returncode=1, stderr="no such process")

        with pytest.raises(PlatformCommandError):
            AppleScriptWindowManager().set_window_state("Safari", WindowState.MINIMIZED)


class TestNotifier:
    def test_banner(self, fake_run: FakeRun) -> None:
        AppleScriptNotifier().notify("Respawn", 'Restored "3" apps')

        (script,) = fake_run.scripts
        assert script.startswith('display notification "Restored \\"3\\" apps"')
        assert 'sound name "Glass"' in script

    @pytest.mark.parametrize("kind", list(NotificationKind))
    def test_every_kind_is_bounded_banner(self, fake_run: FakeRun, kind: NotificationKind) -> None:
        AppleScriptNotifier().notify("Respawn", "Broken", kind)

        (script,) = fake_run.scripts
        assert script.startswith("display notification")
        assert fake_run.kwargs[0]["timeout"] == macos.OSASCRIPT_TIMEOUT_SECONDS

    def test_error_uses_alert_sound(self, fake_run: FakeRun) -> None:
        AppleScriptNotifier().notify("Respawn", "Broken", NotificationKind.ERROR)

        assert 'sound name "Basso"' in fake_run.scripts[0]

    def test_failure_swallowed(self, fake_run: FakeRun) -> None:
        fake_run.returns(returncode=1, stderr="denied")

        AppleScriptNotifier().notify("Respawn", "Hello", NotificationKind.WARNING)

    @pytest.mark.parametrize(
        ("prepare", "expected"),
        [
            (lambda run: run.returns("button returned:OK"), True),
            (lambda run: run.returns(returncode=1, stderr="User canceled. (-128)"), False),
        ],
    )
    def test_ask(self, fake_run: FakeRun, prepare: Callable[[FakeRun], object], expected: bool) -> None:
        prepare(fake_run)

        assert AppleScriptNotifier().ask("Permission Required", "Grant access?") is expected
        assert '{"Cancel", "OK"}' in fake_run.scripts[0]


class TestAccessibilityChecker:
    def test_granted(self, fake_run: FakeRun) -> None:
        fake_run.returns("true")

        assert AccessibilityPermissionChecker().missing_permissions() == []

    def test_refused(self, fake_run: FakeRun) -> None:
        fake_run.returns("false")

        assert AccessibilityPermissionChecker().missing_permissions() == ["Accessibility"]

    def test_osascript_failure_counts_as_missing(self, fake_run: FakeRun) -> None:
        fake_run.returns(returncode=1, stderr="not authorized")

        assert AccessibilityPermissionChecker().missing_permissions() == ["Accessibility"]


class TestLaunchAgent:
    ARGS = ["/usr/bin/python3", "-m", "respawn", "--config", "/tmp/config.yaml", "start"]

    @pytest.fixture
    def agent(self, tmp_path: Path) -> LaunchAgentAutoStart:
        return LaunchAgentAutoStart(
            self.ARGS,
            tmp_path / "logs",
            plist_path=tmp_path / "LaunchAgents" / "com.respawn.agent.plist",
        )

    def test_install_writes_plist(self, agent: LaunchAgentAutoStart, tmp_path: Path) -> None:
        assert not agent.is_installed()

        agent.install()

        assert agent.is_installed()
        assert (tmp_path / "logs").is_dir()
        definition = plistlib.loads(agent.plist_path.read_bytes())
        assert definition["Label"] == "com.respawn.agent"
        assert definition["ProgramArguments"] == self.ARGS
        assert definition["RunAtLoad"] is True
        assert definition["KeepAlive"] == {"SuccessfulExit": False, "Crashed": True}
        assert definition["StandardErrorPath"] == str(tmp_path / "logs" / "respawn_stderr.log")

    def test_enable_and_disable_call_launchctl(self, agent: LaunchAgentAutoStart, fake_run: FakeRun) -> None:
        agent.enable()
        agent.disable()

        assert fake_run.calls == [
            ["launchctl", "load", "-w", str(agent.plist_path)],
            ["launchctl", "unload", "-w", str(agent.plist_path)],
        ]

    def test_launchctl_failure(self, agent: LaunchAgentAutoStart, fake_run: FakeRun) -> None:
        fake_run.returns(returncode=1, stderr="Load failed: 5: Input/output error")

        with pytest.raises(AutoStartError, match="launchctl load failed: Load failed"):
            agent.enable()

    def test_launchctl_missing(self, agent: LaunchAgentAutoStart, fake_run: FakeRun) -> None:
        fake_run.raises(FileNotFoundError("launchctl"))

        with pytest.raises(AutoStartError, match="launchctl unload failed"):
            agent.disable()

    def test_is_enabled(self, agent: LaunchAgentAutoStart, fake_run: FakeRun) -> None:
        assert not agent.is_enabled()
        assert fake_run.calls == []

        agent.install()
        fake_run.returns().returns(returncode=113)

        assert agent.is_enabled()
        assert not agent.is_enabled()
        assert fake_run.calls[0] == ["launchctl", "list", "com.respawn.agent"]

    def test_uninstall_unloads_then_removes(self, agent: LaunchAgentAutoStart, fake_run: FakeRun) -> None:
        agent.install()

        agent.uninstall()

        assert not agent.is_installed()
        assert fake_run.calls == [
            ["launchctl", "list", "com.respawn.agent"],
            ["launchctl", "unload", "-w", str(agent.plist_path)],
        ]

    def test_install_failure(self, tmp_path: Path) -> None:
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        agent = LaunchAgentAutoStart(self.ARGS, tmp_path / "logs", plist_path=blocker / "agent.plist")

        with pytest.raises(AutoStartError, match="Failed to write LaunchAgent plist"):
            agent.install()
