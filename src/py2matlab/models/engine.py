"""
Engine models for py2matlab.

This module provides the data structures describing how an engine session
is configured and which script it runs.

Classes:
    EngineOptions: Immutable configuration captured at construction
    ScriptSource: Either a path to an existing script or inline function text
    EngineVersion: Normalized major.minor engine version
    SessionState: Enumeration of session lifecycle states
"""

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple


# Engine script file extension
SCRIPT_EXTENSION = '.m'


@dataclass(frozen=True)
class EngineOptions:
    """
    Immutable configuration for an engine session.

    Attributes:
        executable: Engine executable name or path (default: "matlab")
        persistent: Keep one engine process alive and talk over a socket
            (default: True). When False every item runs a fresh process.
        host: Address the session listener binds to
        port: Port the session listener binds to (0 picks a free port)
        connect_timeout: Seconds to wait for the engine to connect back
        request_timeout: Seconds before an unanswered request is rejected
            (None waits forever)
        shutdown_timeout: Seconds to wait for the engine to exit on destroy
        probe_timeout: Seconds allowed for the version probe
        node_options: Opaque base options for the host processing node

    Example:
        >>> options = EngineOptions(executable="/opt/matlab/bin/matlab", port=5555)
        >>> valid, errors = options.validate()
    """

    executable: str = 'matlab'
    persistent: bool = True
    host: str = '127.0.0.1'
    port: int = 0
    connect_timeout: float = 120.0
    request_timeout: Optional[float] = None
    shutdown_timeout: float = 10.0
    probe_timeout: float = 60.0
    node_options: Dict[str, Any] = field(default_factory=dict)

    def validate(self) -> Tuple[bool, List[str]]:
        """
        Validate the options.

        Returns:
            Tuple of (is_valid, list_of_error_messages)
        """
        errors = []

        if not isinstance(self.executable, str) or not self.executable.strip():
            errors.append(f"Executable must be a non-empty string: {self.executable!r}")

        if not isinstance(self.host, str) or not self.host.strip():
            errors.append(f"Host must be a non-empty string: {self.host!r}")

        if not isinstance(self.port, int) or isinstance(self.port, bool) \
                or not (0 <= self.port <= 65535):
            errors.append(f"Port out of range (0-65535): {self.port}")

        for name in ('connect_timeout', 'shutdown_timeout', 'probe_timeout'):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or value <= 0:
                errors.append(f"{name} must be positive: {value}")

        if self.request_timeout is not None and (
                not isinstance(self.request_timeout, (int, float)) or self.request_timeout <= 0):
            errors.append(f"request_timeout must be positive or None: {self.request_timeout}")

        if not isinstance(self.node_options, dict):
            errors.append(f"node_options must be a mapping: {self.node_options!r}")

        return (len(errors) == 0, errors)

    def replace(self, **changes) -> 'EngineOptions':
        """Return a copy with the given fields changed."""
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON/YAML serialization."""
        data = dataclasses.asdict(self)
        data['node_options'] = dict(self.node_options)
        return data

    @classmethod
    def field_names(cls) -> List[str]:
        return [f.name for f in dataclasses.fields(cls)]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EngineOptions':
        """
        Create from a dictionary loaded from a configuration file.

        Raises:
            KeyError: If the dictionary holds an unknown setting
        """
        known = set(cls.field_names())
        unknown = sorted(set(data) - known)
        if unknown:
            raise KeyError(f"Unknown engine option(s): {', '.join(unknown)}")
        return cls(**data)


@dataclass(frozen=True)
class ScriptSource:
    """
    The script an engine session runs.

    Exactly one of ``path`` and ``content`` is set. A path refers to an
    existing engine script whose main function transforms one item; content
    is the body of a ``process`` function that is generated at build time.
    """

    path: Optional[Path] = None
    content: Optional[str] = None

    def __post_init__(self):
        if (self.path is None) == (self.content is None):
            raise ValueError("ScriptSource needs exactly one of path or content")
        if self.path is not None:
            object.__setattr__(self, 'path', Path(self.path).resolve())

    @classmethod
    def from_file(cls, path) -> 'ScriptSource':
        return cls(path=Path(path))

    @classmethod
    def from_content(cls, content: str) -> 'ScriptSource':
        return cls(content=content)

    @classmethod
    def parse(cls, file_or_content: str) -> 'ScriptSource':
        """Treat text ending in the script extension as a path, anything else as inline source."""
        if file_or_content.strip().endswith(SCRIPT_EXTENSION):
            return cls.from_file(file_or_content.strip())
        return cls.from_content(file_or_content)

    @property
    def is_file(self) -> bool:
        return self.path is not None


@dataclass(frozen=True, order=True)
class EngineVersion:
    """
    Two-part engine version used for the minimum-version gate.

    The normalized text zero-pads both parts to two digits and reads the
    result as a decimal, so 9.6 becomes "9.06" and 10.11 stays "10.11".
    """

    major: int
    minor: int

    @property
    def value(self) -> float:
        return float(f"{self.major:02d}.{self.minor:02d}")

    def __str__(self) -> str:
        return f"{self.value:.2f}"


# Oldest engine release (R2019a) with the scripting features the driver uses
MINIMUM_ENGINE_VERSION = EngineVersion(9, 6)


class SessionState(Enum):
    """
    Lifecycle states of an engine session.

    One-shot sessions go straight from SCRIPT_READY to ACTIVE.
    """

    UNBUILT = "unbuilt"
    LOCATING = "locating"
    VERSION_CHECKING = "version_checking"
    SCRIPT_READY = "script_ready"
    LISTENER_STARTING = "listener_starting"
    SUBPROCESS_STARTING = "subprocess_starting"
    CONNECTED = "connected"
    ACTIVE = "active"
    DESTROYING = "destroying"
    DESTROYED = "destroyed"
    FAILED = "failed"
