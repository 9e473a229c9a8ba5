"""
Engine script generation.

Produces the script a session runs:

- one-shot mode with an existing script file: the file is used as is
- one-shot mode with inline source: a ``process.m`` function file is written
- persistent mode: a socket driver (``py2matlab_session.m``) is written whose
  local ``py2matlab_process`` function holds the inline source or calls the
  script file

Generated files live in a fresh temporary directory per build, so
concurrent sessions never share a file.
"""

import logging
import re
import shutil
import tempfile
import textwrap
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from py2matlab.core.errors import ErrorCodes, ScriptError
from py2matlab.core.wire_codec import matlab_string
from py2matlab.models.engine import SCRIPT_EXTENSION, ScriptSource

logger = logging.getLogger(__name__)

SESSION_FUNCTION = 'py2matlab_session'
PROCESS_FUNCTION = 'process'
DRIVER_PROCESS_FUNCTION = 'py2matlab_process'
TEMP_PREFIX = 'py2matlab-'

_FUNCTION_NAME = re.compile(r'^[A-Za-z][A-Za-z0-9_]*$')

_PROCESS_TEMPLATE = """\
function frame = {name}(frame)
{body}
end
"""

_SESSION_TEMPLATE = """\
function {session}(host, port)
%{session_upper} Socket driver generated by py2matlab.
%   Reads one JSON request per line, passes its data to {process_name} and
%   writes the result back under the same id until a quit message arrives.
persistent started
if ~isempty(started)
    return;
end
started = true;
if nargin < 1
    host = {host};
end
if nargin < 2
    port = {port};
end
{setup}client = tcpclient(host, port);
configureTerminator(client, "LF");
running = true;
while running
    if client.NumBytesAvailable == 0
        pause(0.005);
        continue;
    end
    message = jsondecode(readline(client));
    switch message.action
        case 'process'
            reply = struct('id', message.id, 'action', 'process');
            try
                reply.data = {process_name}(message.data);
            catch err
                reply.action = 'error';
                reply.data = err.message;
            end
            writeline(client, jsonencode(reply));
        case 'quit'
            running = false;
    end
end
clear client;
exit;
end

{process}"""


@dataclass(frozen=True)
class MaterializedScript:
    """
    A script ready to run.

    Attributes:
        path: Absolute path of the script file
        generated: True when the file lives in a temporary directory owned
            by the session
    """
    path: Path
    generated: bool

    @property
    def directory(self) -> Path:
        return self.path.parent

    @property
    def function_name(self) -> str:
        """Function the engine calls: the file name without its extension."""
        return self.path.stem

    def cleanup(self):
        """Remove the generated directory (best effort; user files are never touched)."""
        if not self.generated:
            return
        shutil.rmtree(self.directory, ignore_errors=True)
        logger.debug(f"Removed temporary script directory {self.directory}")


def _indent_body(content: str) -> str:
    body = textwrap.dedent(content).strip('\n')
    return textwrap.indent(body, '    ') if body.strip() else ''


def _validate_script_file(path: Path) -> str:
    if path.suffix != SCRIPT_EXTENSION:
        raise ScriptError(
            f"Engine scripts must end in {SCRIPT_EXTENSION}: {path}",
            file_path=str(path)
        )
    if not path.is_file():
        raise ScriptError(
            f"Engine script not found: {path}",
            file_path=str(path),
            error_code=ErrorCodes.FILE_NOT_FOUND
        )
    if not _FUNCTION_NAME.match(path.stem):
        raise ScriptError(
            f"'{path.stem}' is not a valid engine function name",
            file_path=str(path)
        )
    return path.stem


class ScriptMaterializer:
    """Turns a ScriptSource into a script file on disk."""

    def __init__(self, temp_root: Optional[str] = None):
        """
        Args:
            temp_root: Directory to create temporary script directories in
                (defaults to the system temporary directory)
        """
        self.temp_root = temp_root

    def render_process_function(self, source: ScriptSource,
                                name: str = PROCESS_FUNCTION) -> str:
        """Render the function that transforms one item."""
        if source.is_file:
            function_name = _validate_script_file(source.path)
            body = f"    frame = {function_name}(frame);"
        else:
            body = _indent_body(source.content)
        return _PROCESS_TEMPLATE.format(name=name, body=body)

    def render_session_driver(self, source: ScriptSource, host: str, port: int) -> str:
        """
        Render the persistent-mode socket driver.

        Raises:
            ScriptError: If the script file is named after one of the
                driver's own functions
        """
        setup = ''
        if source.is_file:
            stem = _validate_script_file(source.path)
            if stem in (SESSION_FUNCTION, DRIVER_PROCESS_FUNCTION):
                raise ScriptError(
                    f"'{stem}' is reserved for the session driver; rename {source.path.name}",
                    file_path=str(source.path)
                )
            setup = f"addpath({matlab_string(str(source.path.parent))});\n"
        return _SESSION_TEMPLATE.format(
            session=SESSION_FUNCTION,
            session_upper=SESSION_FUNCTION.upper(),
            host=matlab_string(host),
            port=int(port),
            setup=setup,
            process_name=DRIVER_PROCESS_FUNCTION,
            process=self.render_process_function(source, DRIVER_PROCESS_FUNCTION),
        )

    def materialize(self, source: ScriptSource, persistent: bool,
                    host: str = '127.0.0.1', port: int = 0) -> MaterializedScript:
        """
        Produce the script for a session.

        Args:
            source: Script file or inline source
            persistent: Wrap the script in the socket driver
            host: Default host baked into the driver
            port: Default port baked into the driver

        Returns:
            The script to run

        Raises:
            ScriptError: If the source script is invalid or the file cannot be written
        """
        if persistent:
            content = self.render_session_driver(source, host, port)
            file_name = SESSION_FUNCTION + SCRIPT_EXTENSION
        elif source.is_file:
            _validate_script_file(source.path)
            logger.info(f"Using engine script {source.path}")
            return MaterializedScript(path=source.path, generated=False)
        else:
            content = self.render_process_function(source)
            file_name = PROCESS_FUNCTION + SCRIPT_EXTENSION

        return self._write(file_name, content)

    def _write(self, file_name: str, content: str) -> MaterializedScript:
        try:
            directory = Path(tempfile.mkdtemp(prefix=TEMP_PREFIX, dir=self.temp_root))
            path = directory / file_name
            path.write_text(content, encoding='utf-8')
        except OSError as e:
            raise ScriptError(
                f"Failed to write engine script: {e}",
                error_code=ErrorCodes.FILE_WRITE_ERROR,
                cause=e
            )
        logger.info(f"Wrote engine script {path}")
        return MaterializedScript(path=path.resolve(), generated=True)
