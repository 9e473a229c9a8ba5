"""
Wire codec for the engine session protocol.

Persistent sessions exchange one JSON object per line (UTF-8, terminated by
a line feed) over the session socket:

    Request:   {"id": "<uuid>", "action": "process", "data": ..., "options": ...}
    Response:  {"id": "<uuid>", "action": "process", "data": ...}
    Failure:   {"id": "<uuid>", "action": "error", "data": "<message>"}
    Teardown:  {"id": "<uuid>", "action": "quit"}

The engine's JSON decoder cannot hold struct fields that start with an
underscore, so the serializer's type tag field travels as ``x__type`` and is
restored on receipt.

One-shot mode instead builds a ``-batch`` command line that decodes a
URI-encoded payload, calls the script function and prints the JSON result.
"""

import json
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

logger = logging.getLogger(__name__)

# Serializer type tag field and the alias it travels under
TYPE_FIELD = '__type'
ESCAPED_TYPE_FIELD = 'x__type'

LINE_TERMINATOR = b'\n'

ACTION_PROCESS = 'process'
ACTION_ERROR = 'error'
ACTION_QUIT = 'quit'


def _rename_field(value: Any, source: str, target: str) -> Any:
    if isinstance(value, dict):
        return {
            (target if key == source else key): _rename_field(item, source, target)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [_rename_field(item, source, target) for item in value]
    return value


def escape_fields(value: Any) -> Any:
    """Rename the type tag field to its transport alias, recursively."""
    return _rename_field(value, TYPE_FIELD, ESCAPED_TYPE_FIELD)


def unescape_fields(value: Any) -> Any:
    """Restore the type tag field from its transport alias, recursively."""
    return _rename_field(value, ESCAPED_TYPE_FIELD, TYPE_FIELD)


def matlab_string(text: str) -> str:
    """Quote text as a single-quoted engine character literal."""
    return "'" + str(text).replace("'", "''") + "'"


class ProtocolEncoder:
    """
    Frames session messages as JSON lines.

    Example:
        >>> encoder = ProtocolEncoder()
        >>> encoder.encode_quit("42")
        b'{"id":"42","action":"quit"}\\n'
    """

    def encode_message(self, message: Dict[str, Any]) -> bytes:
        """Encode one message as a single JSON line."""
        text = json.dumps(message, separators=(',', ':'), ensure_ascii=False)
        return text.encode('utf-8') + LINE_TERMINATOR

    def encode_process(self, request_id: str, data: Any,
                       options: Optional[Dict[str, Any]] = None) -> bytes:
        """
        Encode a process request.

        Args:
            request_id: Correlation id of the request
            data: Serialized item (already in structured form)
            options: Opaque per-call options forwarded to the engine
        """
        return self.encode_message({
            'id': request_id,
            'action': ACTION_PROCESS,
            'data': escape_fields(data),
            'options': escape_fields(options if options is not None else {}),
        })

    def encode_quit(self, request_id: str) -> bytes:
        """Encode the teardown message."""
        return self.encode_message({'id': request_id, 'action': ACTION_QUIT})


class LineDecoder:
    """
    Incrementally decodes the inbound byte stream into messages.

    Bytes are buffered until a full line is available, so messages split
    across reads (or several messages in one read) decode correctly.
    Malformed lines are logged and dropped.
    """

    def __init__(self, encoding: str = 'utf-8'):
        self._buffer = bytearray()
        self._encoding = encoding
        self.parse_errors = 0

    def feed(self, chunk: bytes) -> List[Dict[str, Any]]:
        """
        Add received bytes and return every complete message.

        Args:
            chunk: Bytes read from the socket

        Returns:
            Decoded messages in arrival order
        """
        self._buffer.extend(chunk)
        messages = []
        while True:
            index = self._buffer.find(LINE_TERMINATOR)
            if index < 0:
                break
            line = bytes(self._buffer[:index])
            del self._buffer[:index + 1]
            message = self._decode_line(line)
            if message is not None:
                messages.append(message)
        return messages

    @property
    def pending_bytes(self) -> int:
        return len(self._buffer)

    def _decode_line(self, line: bytes) -> Optional[Dict[str, Any]]:
        text = line.decode(self._encoding, errors='replace').strip()
        if not text:
            return None
        try:
            message = json.loads(text)
        except json.JSONDecodeError as e:
            self.parse_errors += 1
            logger.warning(f"Dropping malformed message ({e}): {text[:200]}")
            return None
        if not isinstance(message, dict):
            self.parse_errors += 1
            logger.warning(f"Dropping non-object message: {text[:200]}")
            return None
        return unescape_fields(message)


def encode_one_shot_input(data: Any) -> str:
    """JSON-encode a serialized item and URI-encode it for the command line."""
    text = json.dumps(escape_fields(data), separators=(',', ':'), ensure_ascii=False)
    return quote(text, safe='')


def build_one_shot_command(executable: str, directory: str, function_name: str,
                           data: Any) -> List[str]:
    """
    Build the argument list for a one-shot engine invocation.

    Args:
        executable: Engine executable
        directory: Directory holding the script
        function_name: Function to call with the decoded item
        data: Serialized item

    Returns:
        Argument list suitable for subprocess without a shell
    """
    statement = (
        f"cd({matlab_string(directory)}); "
        f"disp(jsonencode({function_name}(jsondecode(urldecode("
        f"{matlab_string(encode_one_shot_input(data))}))))); "
        f"exit;"
    )
    return [executable, '-nosplash', '-batch', statement]


def parse_one_shot_output(stdout: str) -> Any:
    """
    Parse the JSON payload printed by a one-shot invocation.

    Literal backslash-n sequences are turned back into line breaks before
    parsing.

    Raises:
        ValueError: If the output is not valid JSON
    """
    text = stdout.replace('\\n', '\n').strip()
    if not text:
        raise ValueError("Engine produced no output")
    return unescape_fields(json.loads(text, strict=False))
