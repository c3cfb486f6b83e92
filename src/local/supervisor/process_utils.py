import sys
import signal
import psutil
import logging
import threading
import subprocess
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

log = logging.getLogger(__name__)

LineHandler = Callable[[str], None]
ExitHandler = Callable[[Optional[int], Optional[str]], None]


#* --- Exit Status ---
def describe_returncode(returncode: int) -> tuple:
    """
    Splits a Popen return code into (exit code, signal name).

    A negative return code means the process was killed by that signal.
    """
    if returncode < 0:
        try:
            return None, signal.Signals(-returncode).name
        except ValueError:
            return None, f"SIG{-returncode}"
    return returncode, None


#* --- Process Creation ---
def _get_popen_creation_flags() -> Dict[str, Any]:
    """Returns platform-specific creation flags for subprocess.Popen."""
    if sys.platform == "win32":
        return {"creationflags": subprocess.CREATE_NO_WINDOW}
    return {}


def _read_pipe(pipe, process_name: str, line_handler: LineHandler):
    """Target function for reader threads. Hands each non-empty line to `line_handler`."""
    try:
        for line_bytes in iter(pipe.readline, b""):
            line = line_bytes.decode("utf-8", errors="replace").strip()
            if not line:
                continue
            line_handler(line)
    except (OSError, ValueError) as e:
        log.debug(f"Pipe reader for {process_name} stream exited: {e}")
    finally:
        pipe.close()


class ListenerProcess:
    """
    A spawned helper process together with the threads draining its pipes.

    The exit handler runs once, after both pipes reached EOF, so every
    stdout line is delivered before the exit is reported.
    """

    def __init__(self, popen: subprocess.Popen, name: str) -> None:
        self.popen = popen
        self.name = name
        self.pid: int = popen.pid
        self._readers: List[threading.Thread] = []

    def attach(self, on_stdout: LineHandler, on_stderr: LineHandler, on_exit: ExitHandler) -> None:
        """Starts the pipe reader threads and the exit waiter."""
        for pipe, handler, label in ((self.popen.stdout, on_stdout, "stdout"), (self.popen.stderr, on_stderr, "stderr")):
            if pipe is None:
                continue
            reader = threading.Thread(
                target=_read_pipe,
                args=(pipe, self.name, handler),
                daemon=True,
                name=f"{self.name}-{label}",
            )
            reader.start()
            self._readers.append(reader)

        threading.Thread(target=self._wait, args=(on_exit,), daemon=True, name=f"{self.name}-waiter").start()

    def _wait(self, on_exit: ExitHandler) -> None:
        returncode = self.popen.wait()
        for reader in self._readers:
            reader.join(timeout=2)
        code, sig = describe_returncode(returncode)
        on_exit(code, sig)

    def is_running(self) -> bool:
        return self.popen.poll() is None

    def terminate(self) -> None:
        """Sends SIGTERM (TerminateProcess on Windows) if the process is still alive."""
        if not self.is_running():
            return
        try:
            log.debug(f"Sending SIGTERM to {self.name} (PID {self.pid})")
            psutil.Process(self.pid).terminate()
        except psutil.NoSuchProcess:
            log.debug(f"Process {self.pid} no longer exists, skipping termination.")


def spawn_listener(binary_path: Path, name: str, on_stdout: LineHandler,
                   on_stderr: LineHandler, on_exit: ExitHandler) -> ListenerProcess:
    """
    Launches a helper binary with piped output.

    :param binary_path: The executable to run.
    :param name: Logical name used for thread and logger names.
    :raises OSError: If the process cannot be spawned.
    :return: The running process with its readers attached.
    """
    log.info(f"Starting process: {name}...")
    popen_kwargs = _get_popen_creation_flags()
    popen = subprocess.Popen(
        [str(binary_path)],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        stdin=subprocess.DEVNULL,
        **popen_kwargs,
    )
    process = ListenerProcess(popen, name)
    process.attach(on_stdout, on_stderr, on_exit)
    log.info(f"{name} started with PID: {process.pid}")
    return process
