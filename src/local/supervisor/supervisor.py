import sys
import logging
import threading
from enum import Enum
from pathlib import Path
from functools import partial
from typing import Any, Callable, Dict, List, Optional

from src.local.config import effective_settings as config
from src.local.errors import HelperError, ProcessFaultError
from src.local.supervisor import binary, events
from src.local.supervisor.process_utils import ListenerProcess, spawn_listener

log = logging.getLogger(__name__)

INTENTIONAL_SIGNALS = {"SIGINT", "SIGTERM"}


class SupervisorState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    RESTARTING = "restarting"
    FAILED = "failed"


class KeyListenerSupervisor(events.EventEmitter):
    """
    Owns the lifecycle of the macOS Globe key listener process.

    The listener reports key events as lines on stdout; they are re-emitted
    as `globe-down`, `globe-up`, `right-modifier-down`, `right-modifier-up`
    and `modifier-up` events. Failures are emitted once as `error`.

    A clean exit (code 0) that was not requested is treated as the OS having
    invalidated the listener's event tap, e.g. after sleep/wake, and is
    retried up to `max_restart_attempts` times. The counter is forgiven
    after `restart_reset_seconds` of sustained uptime.
    """

    def __init__(
        self,
        platform: Optional[str] = None,
        arch: Optional[str] = None,
        candidates: Optional[List[Path]] = None,
        launcher: Callable[..., ListenerProcess] = spawn_listener,
        timer_factory: Callable[..., Any] = threading.Timer,
        max_restart_attempts: Optional[int] = None,
        restart_delay_seconds: Optional[float] = None,
        restart_reset_seconds: Optional[float] = None,
    ) -> None:
        """
        :param platform: Host platform as in `sys.platform`; only 'darwin' is supported.
        :param arch: Host architecture ('arm64' or 'x64'); detected when omitted.
        :param candidates: Binary locations to probe instead of the defaults.
        :param launcher: Callable spawning the binary, see `process_utils.spawn_listener`.
        :param timer_factory: `threading.Timer` compatible factory.
        """
        super().__init__()
        self.is_supported = (platform or sys.platform) == "darwin"
        self.arch = arch or binary.host_arch()
        self._candidates = candidates
        self._launcher = launcher
        self._timer_factory = timer_factory
        self.max_restart_attempts = max_restart_attempts if max_restart_attempts is not None else config.MAX_RESTART_ATTEMPTS
        self.restart_delay_seconds = restart_delay_seconds if restart_delay_seconds is not None else config.RESTART_DELAY_SECONDS
        self.restart_reset_seconds = restart_reset_seconds if restart_reset_seconds is not None else config.RESTART_RESET_SECONDS

        self.process: Optional[ListenerProcess] = None
        self.state = SupervisorState.STOPPED
        self.restart_count = 0
        self.has_reported_error = False
        self._is_stopping = False
        # Identifies the current spawn; callbacks from older spawns are ignored.
        self._incarnation: Optional[object] = None
        self._restart_reset_timer = None
        self._restart_timer = None
        self._lock = threading.RLock()
        self._proc_log = logging.getLogger(f"proc.{config.LISTENER_PROCESS_NAME}")

    def _get_candidates(self) -> List[Path]:
        if self._candidates is not None:
            return self._candidates
        return binary.candidate_paths(config.LISTENER_BINARY_NAME, config.HELPER_RESOURCES_PATH)

    def start(self) -> None:
        """Resolves, verifies and spawns the listener. No-op if unsupported or already running."""
        with self._lock:
            if not self.is_supported:
                log.info("Key listener skipped: not macOS.")
                return
            if self.process is not None:
                log.debug("Key listener skipped: already running.")
                return

            self._is_stopping = False
            self.has_reported_error = False

            try:
                listener_path = binary.resolve_listener_binary(self._get_candidates(), self.arch)
                log.info(f"Key listener binary found at '{listener_path}'.")
                binary.verify_architecture(listener_path, self.arch)
                binary.ensure_executable(listener_path)
            except HelperError as e:
                self.report_error(e)
                return

            incarnation = object()
            self._incarnation = incarnation
            try:
                self.process = self._launcher(
                    listener_path,
                    config.LISTENER_PROCESS_NAME,
                    partial(self._on_stdout_line, incarnation),
                    partial(self._on_stderr_line, incarnation),
                    partial(self._on_exit, incarnation),
                )
            except OSError as e:
                log.error(f"Failed to spawn key listener: {e}")
                self._incarnation = None
                self.report_error(ProcessFaultError(f"Failed to start the Globe key listener: {e}"))
                return

            self.state = SupervisorState.RUNNING
            self._arm_restart_reset_timer(incarnation)

    def stop(self) -> None:
        """Stops the listener. The resulting exit is treated as intentional."""
        with self._lock:
            self._is_stopping = True
            self._cancel_timers()
            process, self.process = self.process, None
            self._incarnation = None
            self.state = SupervisorState.STOPPED
        if process is not None:
            log.info(f"Stopping key listener (PID {process.pid}).")
            process.terminate()

    def get_status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "supported": self.is_supported,
                "running": self.process is not None,
                "pid": self.process.pid if self.process is not None else None,
                "state": self.state.value,
                "restart_count": self.restart_count,
            }

    def report_error(self, error: Exception) -> None:
        """Emits `error` once per incarnation and kills a still-running listener."""
        with self._lock:
            if self.has_reported_error:
                log.debug(f"Suppressed duplicate key listener error: {error}")
                return
            self.has_reported_error = True
            self.state = SupervisorState.FAILED
            self._cancel_timers()
            process, self.process = self.process, None
            self._incarnation = None
            if process is not None:
                process.terminate()
            log.error(f"Key listener error: {error}")
            self.emit(events.ERROR, error)

    #* --- Process Callbacks ---
    def _on_stdout_line(self, incarnation: object, line: str) -> None:
        if incarnation is not self._incarnation:
            return
        parsed = events.parse_listener_line(line)
        if parsed is None:
            return
        event, value = parsed
        if value is None:
            self.emit(event)
        else:
            self.emit(event, value)

    def _on_stderr_line(self, incarnation: object, line: str) -> None:
        if incarnation is not self._incarnation:
            return
        if any(signature in line for signature in config.LISTENER_FATAL_STDERR):
            self.report_error(ProcessFaultError(line))
        else:
            self._proc_log.warning(line)

    def _on_exit(self, incarnation: object, code: Optional[int], signal_name: Optional[str]) -> None:
        with self._lock:
            if incarnation is not self._incarnation:
                log.debug(f"Ignoring exit of a replaced key listener (code={code}, signal={signal_name}).")
                return
            log.info(f"Key listener exited (code={code}, signal={signal_name}).")
            self.process = None
            self._incarnation = None
            self._cancel_timers()

            if self._is_stopping or signal_name in INTENTIONAL_SIGNALS:
                self.state = SupervisorState.STOPPED
                return

            if code != 0:
                self.report_error(ProcessFaultError(
                    f"Globe key listener exited with code {code} signal {signal_name}"
                ))
                return

            # Exit code 0 without a stop request: the event tap was likely invalidated.
            if self.restart_count < self.max_restart_attempts:
                self.restart_count += 1
                log.warning(
                    f"Key listener exited unexpectedly (code 0), restarting "
                    f"(attempt {self.restart_count}/{self.max_restart_attempts})."
                )
                self.state = SupervisorState.RESTARTING
                self._schedule_restart()
            else:
                log.critical(f"Key listener exhausted {self.max_restart_attempts} restart attempts.")
                self.report_error(ProcessFaultError(
                    f"Globe key listener keeps exiting unexpectedly ({self.max_restart_attempts} restarts failed). "
                    "Try restarting the application."
                ))

    #* --- Timers ---
    def _start_timer(self, delay: float, callback: Callable) -> Any:
        timer = self._timer_factory(delay, callback)
        timer.daemon = True
        timer.start()
        return timer

    def _arm_restart_reset_timer(self, incarnation: object) -> None:
        if self._restart_reset_timer is not None:
            self._restart_reset_timer.cancel()
        self._restart_reset_timer = self._start_timer(
            self.restart_reset_seconds, partial(self._on_sustained_uptime, incarnation)
        )

    def _on_sustained_uptime(self, incarnation: object) -> None:
        with self._lock:
            if incarnation is not self._incarnation:
                return
            self._restart_reset_timer = None
            if self.restart_count > 0:
                log.info("Key listener sustained uptime, restart counter reset.")
                self.restart_count = 0

    def _schedule_restart(self) -> None:
        if self._restart_timer is not None:
            self._restart_timer.cancel()
        self._restart_timer = self._start_timer(self.restart_delay_seconds, self._restart)

    def _restart(self) -> None:
        with self._lock:
            self._restart_timer = None
            if self._is_stopping or self.process is not None:
                return
            self.start()

    def _cancel_timers(self) -> None:
        for timer in (self._restart_reset_timer, self._restart_timer):
            if timer is not None:
                timer.cancel()
        self._restart_reset_timer = None
        self._restart_timer = None
