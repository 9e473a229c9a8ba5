"""
One-shot engine execution.

Each item runs a fresh engine process: the serialized item is URI-encoded
into a ``-batch`` statement that calls the script function and prints the
JSON result, which is parsed from standard output. Calls share no state.
"""

import json
import logging
import subprocess
import threading
from concurrent.futures import Future
from typing import Any, Optional

from py2matlab.core.errors import (
    CommandFailedError,
    ErrorCodes,
    ProtocolError,
    RequestTimeoutError,
    wrap_external_error,
)
from py2matlab.core.wire_codec import build_one_shot_command, parse_one_shot_output
from py2matlab.serialization import DataSerializer
from py2matlab.services.script_materializer import MaterializedScript

logger = logging.getLogger(__name__)


class OneShotRunner:
    """Runs one engine process per item."""

    def __init__(self, executable: str, script: MaterializedScript,
                 serializer: DataSerializer, timeout: Optional[float] = None):
        """
        Args:
            executable: Engine executable
            script: Script whose function processes each item
            serializer: Converts items to and from structured values
            timeout: Seconds allowed per invocation (None = unlimited)
        """
        self.executable = executable
        self.script = script
        self.serializer = serializer
        self.timeout = timeout

    def submit(self, item: Any) -> Future:
        """Run ``item`` on a background thread and return its future."""
        future: Future = Future()
        future.set_running_or_notify_cancel()

        def work():
            try:
                future.set_result(self.run(item))
            except Exception as e:
                future.set_exception(e)

        threading.Thread(target=work, name="OneShotRunner", daemon=True).start()
        return future

    def run(self, item: Any) -> Any:
        """
        Process one item in a fresh engine process (blocking).

        Raises:
            CommandFailedError: If the engine exits non-zero or writes to stderr
            ProtocolError: If the output is not valid JSON
            RequestTimeoutError: If the invocation exceeds the timeout
        """
        data = self.serializer.serialize(item)
        command = build_one_shot_command(
            self.executable,
            str(self.script.directory),
            self.script.function_name,
            data,
        )

        logger.debug(f"One-shot call to {self.script.function_name} in {self.script.directory}")
        try:
            result = subprocess.run(
                command,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise RequestTimeoutError(
                f"Engine command timed out after {self.timeout}s",
                error_code=ErrorCodes.COMMAND_TIMEOUT,
                timeout_seconds=self.timeout,
                cause=e
            )
        except OSError as e:
            raise wrap_external_error(e, f"Failed to run engine: {e}", CommandFailedError,
                                      executable=self.executable)

        stderr = result.stderr.strip()
        if result.returncode != 0 or stderr:
            raise CommandFailedError(
                stderr or f"Engine exited with code {result.returncode}",
                context={'returncode': result.returncode}
            )

        try:
            output = parse_one_shot_output(result.stdout)
        except (ValueError, json.JSONDecodeError) as e:
            raise ProtocolError(
                f"Unreadable engine output: {e}",
                error_code=ErrorCodes.RESPONSE_PARSE_ERROR,
                cause=e,
                context={'stdout': result.stdout[:500]}
            )
        return self.serializer.deserialize(output)
