from __future__ import annotations

from pathlib import Path
from typing import List

import pytest

from src.local.errors import (
    ArchitectureMismatchError,
    BinaryNotFoundError,
    ProcessFaultError,
)
from src.local.supervisor import KeyListenerSupervisor, SupervisorState
from tests.helpers import FakeLauncher, FakeTimerFactory, write_macho

RESTART_DELAY = 1.0
RESET_DELAY = 10.0


def _make_supervisor(binary: Path, launcher: FakeLauncher, timers: FakeTimerFactory, **kwargs) -> KeyListenerSupervisor:
    options = dict(
        platform="darwin",
        arch="arm64",
        candidates=[binary],
        launcher=launcher,
        timer_factory=timers,
        max_restart_attempts=3,
        restart_delay_seconds=RESTART_DELAY,
        restart_reset_seconds=RESET_DELAY,
    )
    options.update(kwargs)
    return KeyListenerSupervisor(**options)


def _collect_errors(supervisor: KeyListenerSupervisor) -> List[Exception]:
    errors: List[Exception] = []
    supervisor.on("error", errors.append)
    return errors


def _zero_exit_and_restart(launcher: FakeLauncher, timers: FakeTimerFactory) -> None:
    launcher.last.on_exit(0, None)
    pending = timers.pending(RESTART_DELAY)
    assert len(pending) == 1
    pending[0].fire()


def test_start_is_noop_on_unsupported_platform(listener_binary, launcher, timers) -> None:
    supervisor = _make_supervisor(listener_binary, launcher, timers, platform="linux")

    supervisor.start()

    assert launcher.processes == []
    assert supervisor.get_status()["supported"] is False
    assert supervisor.get_status()["running"] is False


def test_start_twice_spawns_a_single_process(listener_binary, launcher, timers) -> None:
    supervisor = _make_supervisor(listener_binary, launcher, timers)

    supervisor.start()
    supervisor.start()

    assert len(launcher.processes) == 1
    status = supervisor.get_status()
    assert status["running"] is True
    assert status["pid"] == launcher.last.pid
    assert status["state"] == SupervisorState.RUNNING.value


def test_stdout_lines_are_emitted_as_typed_events(listener_binary, launcher, timers) -> None:
    supervisor = _make_supervisor(listener_binary, launcher, timers)
    received = []
    supervisor.on("globe-down", lambda: received.append(("globe-down",)))
    supervisor.on("globe-up", lambda: received.append(("globe-up",)))
    supervisor.on("right-modifier-down", lambda v: received.append(("right-modifier-down", v)))
    supervisor.on("right-modifier-up", lambda v: received.append(("right-modifier-up", v)))
    supervisor.on("modifier-up", lambda v: received.append(("modifier-up", v)))
    supervisor.start()

    for line in ("FN_DOWN", "FN_UP", "RIGHT_MOD_DOWN:RightCommand", "RIGHT_MOD_UP:RightCommand",
                 "MODIFIER_UP:Shift", "HELLO", "RIGHT_MOD_DOWN:"):
        launcher.last.on_stdout(line)

    assert received == [
        ("globe-down",),
        ("globe-up",),
        ("right-modifier-down", "RightCommand"),
        ("right-modifier-up", "RightCommand"),
        ("modifier-up", "shift"),
    ]


def test_zero_exit_restarts_three_times_then_fails_once(listener_binary, launcher, timers) -> None:
    supervisor = _make_supervisor(listener_binary, launcher, timers)
    errors = _collect_errors(supervisor)
    supervisor.start()

    for attempt in range(1, 4):
        launcher.last.on_exit(0, None)
        assert supervisor.restart_count == attempt
        assert supervisor.state is SupervisorState.RESTARTING
        timers.pending(RESTART_DELAY)[0].fire()
        assert supervisor.state is SupervisorState.RUNNING

    assert len(launcher.processes) == 4
    launcher.last.on_exit(0, None)

    assert len(launcher.processes) == 4
    assert timers.pending(RESTART_DELAY) == []
    assert supervisor.state is SupervisorState.FAILED
    assert len(errors) == 1
    assert isinstance(errors[0], ProcessFaultError)
    assert "3 restarts failed" in str(errors[0])


def test_sustained_uptime_resets_restart_counter(listener_binary, launcher, timers) -> None:
    supervisor = _make_supervisor(listener_binary, launcher, timers)
    supervisor.start()

    _zero_exit_and_restart(launcher, timers)
    _zero_exit_and_restart(launcher, timers)
    assert supervisor.restart_count == 2

    reset_timers = timers.pending(RESET_DELAY)
    assert len(reset_timers) == 1
    reset_timers[0].fire()
    assert supervisor.restart_count == 0

    launcher.last.on_exit(0, None)
    assert supervisor.restart_count == 1
    assert supervisor.state is SupervisorState.RESTARTING


def test_exit_cancels_uptime_timer(listener_binary, launcher, timers) -> None:
    supervisor = _make_supervisor(listener_binary, launcher, timers)
    supervisor.start()
    reset_timer = timers.pending(RESET_DELAY)[0]

    launcher.last.on_exit(0, None)

    assert reset_timer.cancelled


def test_stop_then_sigterm_exit_is_intentional(listener_binary, launcher, timers) -> None:
    supervisor = _make_supervisor(listener_binary, launcher, timers)
    errors = _collect_errors(supervisor)
    supervisor.start()
    process = launcher.last

    supervisor.stop()
    assert process.terminated
    assert supervisor.get_status()["running"] is False

    process.on_exit(None, "SIGTERM")

    assert errors == []
    assert timers.pending(RESTART_DELAY) == []
    assert len(launcher.processes) == 1
    assert supervisor.state is SupervisorState.STOPPED


def test_termination_signal_exit_without_stop_is_not_restarted(listener_binary, launcher, timers) -> None:
    supervisor = _make_supervisor(listener_binary, launcher, timers)
    errors = _collect_errors(supervisor)
    supervisor.start()

    launcher.last.on_exit(None, "SIGINT")

    assert errors == []
    assert timers.pending(RESTART_DELAY) == []
    assert supervisor.state is SupervisorState.STOPPED


def test_stop_cancels_pending_restart(listener_binary, launcher, timers) -> None:
    supervisor = _make_supervisor(listener_binary, launcher, timers)
    supervisor.start()
    launcher.last.on_exit(0, None)
    restart_timer = timers.pending(RESTART_DELAY)[0]

    supervisor.stop()

    assert restart_timer.cancelled
    # A timer that already fired when stop() ran must not respawn either.
    restart_timer.function()
    assert len(launcher.processes) == 1


def test_nonzero_exit_reports_error_without_restart(listener_binary, launcher, timers) -> None:
    supervisor = _make_supervisor(listener_binary, launcher, timers)
    errors = _collect_errors(supervisor)
    supervisor.start()

    launcher.last.on_exit(2, None)

    assert len(errors) == 1
    assert "exited with code 2" in str(errors[0])
    assert timers.pending(RESTART_DELAY) == []
    assert supervisor.state is SupervisorState.FAILED


def test_fatal_stderr_reports_error_and_kills_process(listener_binary, launcher, timers) -> None:
    supervisor = _make_supervisor(listener_binary, launcher, timers)
    errors = _collect_errors(supervisor)
    supervisor.start()
    process = launcher.last

    process.on_stderr("Failed to create event tap. Grant Input Monitoring permission.")
    process.on_stderr("Failed to create event tap. Grant Input Monitoring permission.")
    process.on_exit(None, "SIGTERM")

    assert len(errors) == 1
    assert "Failed to create event tap" in str(errors[0])
    assert process.terminated
    assert supervisor.get_status()["running"] is False


def test_non_fatal_stderr_is_only_logged(listener_binary, launcher, timers, caplog) -> None:
    supervisor = _make_supervisor(listener_binary, launcher, timers)
    errors = _collect_errors(supervisor)
    supervisor.start()

    with caplog.at_level("WARNING"):
        launcher.last.on_stderr("Accessibility API is slow today")

    assert errors == []
    assert supervisor.get_status()["running"] is True
    assert "Accessibility API is slow today" in caplog.text


def test_error_is_reported_once_until_next_start(listener_binary, launcher, timers) -> None:
    supervisor = _make_supervisor(listener_binary, launcher, timers)
    errors = _collect_errors(supervisor)
    supervisor.start()

    supervisor.report_error(ProcessFaultError("first"))
    supervisor.report_error(ProcessFaultError("second"))
    assert [str(e) for e in errors] == ["first"]

    supervisor.start()
    supervisor.report_error(ProcessFaultError("third"))
    assert [str(e) for e in errors] == ["first", "third"]


def test_missing_binary_reports_not_found(tmp_path, launcher, timers) -> None:
    supervisor = _make_supervisor(tmp_path / "missing", launcher, timers)
    errors = _collect_errors(supervisor)

    supervisor.start()

    assert launcher.processes == []
    assert len(errors) == 1
    assert isinstance(errors[0], BinaryNotFoundError)
    assert "swiftc" in str(errors[0])


def test_architecture_mismatch_names_both_architectures(tmp_path, launcher, timers) -> None:
    binary = write_macho(tmp_path / "macos-globe-listener", "x64")
    supervisor = _make_supervisor(binary, launcher, timers, arch="arm64")
    errors = _collect_errors(supervisor)

    supervisor.start()

    assert launcher.processes == []
    assert len(errors) == 1
    assert isinstance(errors[0], ArchitectureMismatchError)
    message = str(errors[0])
    assert "binary is x86_64" in message
    assert "requires arm64" in message


def test_spawn_failure_reports_process_fault(listener_binary, launcher, timers) -> None:
    launcher.error = OSError("exec format error")
    supervisor = _make_supervisor(listener_binary, launcher, timers)
    errors = _collect_errors(supervisor)

    supervisor.start()

    assert len(errors) == 1
    assert isinstance(errors[0], ProcessFaultError)
    assert "exec format error" in str(errors[0])
    assert supervisor.state is SupervisorState.FAILED
    assert timers.pending(RESET_DELAY) == []


def test_exit_of_replaced_process_is_ignored(listener_binary, launcher, timers) -> None:
    supervisor = _make_supervisor(listener_binary, launcher, timers)
    errors = _collect_errors(supervisor)
    supervisor.start()
    old = launcher.last
    supervisor.stop()
    supervisor.start()

    old.on_exit(1, None)
    old.on_stdout("FN_DOWN")

    assert errors == []
    assert supervisor.get_status()["pid"] == launcher.last.pid
    assert supervisor.state is SupervisorState.RUNNING


@pytest.mark.parametrize("code", [0, 1])
def test_start_after_failure_spawns_again(listener_binary, launcher, timers, code) -> None:
    supervisor = _make_supervisor(listener_binary, launcher, timers, max_restart_attempts=0)
    supervisor.start()
    launcher.last.on_exit(code, None)
    assert supervisor.state is SupervisorState.FAILED

    supervisor.start()

    assert len(launcher.processes) == 2
    assert supervisor.state is SupervisorState.RUNNING
