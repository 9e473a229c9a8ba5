"""
Engine subprocess management.

The engine runs detached in its own process group (its own session on POSIX,
a new process group on Windows) so teardown can terminate the whole tree it
starts, not only the direct child. Standard output is drained to the log;
standard error is collected because any error output before the engine
connects means startup failed.
"""

import logging
import os
import signal
import subprocess
import sys
import threading
from typing import IO, List, Optional

from py2matlab.core.errors import ErrorCodes, SpawnError

logger = logging.getLogger(__name__)


class EngineProcess:
    """
    A long-lived engine subprocess.

    Example:
        >>> process = EngineProcess(["matlab", "-nosplash", "-batch", "..."])
        >>> process.start()
        >>> process.terminate_group(timeout=10.0)
    """

    def __init__(self, command: List[str], cwd: Optional[str] = None):
        self.command = list(command)
        self.cwd = cwd
        self._process: Optional[subprocess.Popen] = None
        self._stderr_lines: List[str] = []
        self._stderr_lock = threading.Lock()
        self._drain_threads: List[threading.Thread] = []

    def start(self):
        """
        Spawn the engine detached from this process group.

        Raises:
            SpawnError: If the executable cannot be started
        """
        kwargs = {}
        if sys.platform == 'win32':
            kwargs['creationflags'] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            kwargs['start_new_session'] = True

        logger.info(f"Starting engine: {self.command[0]}")
        logger.debug(f"Engine command: {self.command}")
        try:
            self._process = subprocess.Popen(
                self.command,
                cwd=self.cwd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding='utf-8',
                errors='replace',
                **kwargs
            )
        except OSError as e:
            raise SpawnError(
                f"Failed to start engine process: {e}",
                executable=self.command[0],
                error_code=ErrorCodes.SPAWN_FAILED,
                cause=e
            )

        self._drain(self._process.stdout, self._log_stdout, "EngineStdout")
        self._drain(self._process.stderr, self._collect_stderr, "EngineStderr")
        logger.info(f"Engine process started (pid {self._process.pid})")

    def _drain(self, stream: IO[str], handler, name: str):
        def run():
            for line in stream:
                handler(line.rstrip('\r\n'))
            stream.close()

        thread = threading.Thread(target=run, name=name, daemon=True)
        thread.start()
        self._drain_threads.append(thread)

    def _log_stdout(self, line: str):
        if line.strip():
            logger.debug(f"[engine] {line}")

    def _collect_stderr(self, line: str):
        if not line.strip():
            return
        with self._stderr_lock:
            self._stderr_lines.append(line)
        logger.warning(f"[engine stderr] {line}")

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    @property
    def error_output(self) -> str:
        with self._stderr_lock:
            return '\n'.join(self._stderr_lines)

    @property
    def returncode(self) -> Optional[int]:
        return self._process.poll() if self._process else None

    def has_exited(self) -> bool:
        return self._process is not None and self._process.poll() is not None

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        """Wait for the process to exit. Returns None on timeout."""
        if self._process is None:
            return None
        try:
            return self._process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return None

    def terminate_group(self, timeout: float = 10.0) -> str:
        """
        Terminate the engine's whole process group and wait for it to exit.

        Sends SIGTERM to the group, escalating to SIGKILL if the process is
        still alive after ``timeout`` seconds.

        Returns:
            One of "not_started", "already_exited", "terminated", "killed",
            "kill_failed"
        """
        if self._process is None:
            return "not_started"
        if self._process.poll() is not None:
            self._join_drains()
            return "already_exited"

        logger.info(f"Terminating engine process group (pid {self._process.pid})")
        if not self._signal_group(graceful=True):
            self._join_drains()
            return "already_exited"

        if self.wait(timeout) is not None:
            self._join_drains()
            return "terminated"

        logger.warning(f"Engine did not exit within {timeout}s, killing process group")
        self._signal_group(graceful=False)
        if self.wait(timeout) is not None:
            self._join_drains()
            return "killed"
        logger.error(f"Engine process {self._process.pid} survived SIGKILL")
        return "kill_failed"

    def _signal_group(self, graceful: bool) -> bool:
        process = self._process
        if sys.platform == 'win32':
            try:
                if graceful:
                    process.send_signal(signal.CTRL_BREAK_EVENT)
                else:
                    process.kill()
            except OSError:
                return process.poll() is None
            return True

        try:
            pgid = os.getpgid(process.pid)
            os.killpg(pgid, signal.SIGTERM if graceful else signal.SIGKILL)
        except ProcessLookupError:
            return False
        except OSError as e:
            logger.warning(f"Process group signal failed ({e}), signalling child only")
            try:
                if graceful:
                    process.terminate()
                else:
                    process.kill()
            except OSError:
                return False
        return True

    def _join_drains(self, timeout: float = 1.0):
        for thread in self._drain_threads:
            thread.join(timeout=timeout)
