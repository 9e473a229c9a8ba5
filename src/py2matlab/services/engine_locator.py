"""
Engine discovery and version gating.

The engine must be on the search path and at least release 9.6 (R2019a):
the generated driver relies on scripting features introduced there.
"""

import logging
import re
import shutil
import subprocess
from typing import Optional

from py2matlab.core.errors import (
    EngineNotFoundError,
    EngineVersionError,
    ErrorCodes,
    VersionProbeError,
)
from py2matlab.models.engine import EngineVersion, MINIMUM_ENGINE_VERSION

logger = logging.getLogger(__name__)

_VERSION_PATTERN = re.compile(r'Version:(.*),')


def parse_version_output(output: str) -> EngineVersion:
    """
    Extract the engine version from ``-help`` output.

    The version is read from the last non-empty line, which carries
    ``Version:<major>.<minor>.<patch>,``. The patch component (and anything
    after it) is discarded.

    Args:
        output: Text printed by the engine's help command

    Returns:
        Parsed version

    Raises:
        VersionProbeError: If no version can be found
    """
    lines = [line.strip() for line in (output or '').strip().splitlines() if line.strip()]
    if not lines:
        raise VersionProbeError(
            "Engine printed no version information",
            error_code=ErrorCodes.VERSION_PROBE_FAILED
        )

    last_line = lines[-1]
    match = _VERSION_PATTERN.search(last_line)
    if not match:
        raise VersionProbeError(
            f"No version found in engine output: {last_line!r}",
            error_code=ErrorCodes.VERSION_PROBE_FAILED
        )

    tokens = match.group(1).strip().split()
    parts = tokens[0].split('.') if tokens else []
    if len(parts) < 3 or not parts[0].isdigit() or not parts[1].isdigit():
        raise VersionProbeError(
            f"Malformed engine version: {match.group(1).strip()!r}",
            error_code=ErrorCodes.VERSION_PROBE_FAILED
        )

    return EngineVersion(int(parts[0]), int(parts[1]))


class EngineLocator:
    """Finds the engine executable and checks that it is recent enough."""

    def __init__(self, executable: str, probe_timeout: float = 60.0,
                 minimum_version: EngineVersion = MINIMUM_ENGINE_VERSION):
        self.executable = executable
        self.probe_timeout = probe_timeout
        self.minimum_version = minimum_version
        self.resolved_path: Optional[str] = None

    def locate(self) -> str:
        """
        Look the executable up on the search path.

        Returns:
            Full path of the executable

        Raises:
            EngineNotFoundError: If it is not found
        """
        path = shutil.which(self.executable)
        if path is None:
            raise EngineNotFoundError(
                f"Engine executable not found: {self.executable}",
                executable=self.executable,
                suggestions=[
                    "Add the engine's bin directory to PATH",
                    "Set 'executable' to the full path of the engine",
                ]
            )
        self.resolved_path = path
        logger.info(f"Found engine executable at {path}")
        return path

    def probe_version(self) -> EngineVersion:
        """
        Run the engine's help command and parse its version.

        Raises:
            VersionProbeError: If the probe cannot run or its output has no version
        """
        command = [self.resolved_path or self.executable, '-help']
        try:
            result = subprocess.run(
                command,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                timeout=self.probe_timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise VersionProbeError(
                f"Engine version probe timed out after {self.probe_timeout}s",
                executable=self.executable,
                cause=e
            )
        except OSError as e:
            raise VersionProbeError(
                f"Engine version probe failed: {e}",
                executable=self.executable,
                cause=e
            )

        version = parse_version_output(result.stdout)
        logger.info(f"Engine version {version}")
        return version

    def check_version(self, version: EngineVersion):
        """
        Raises:
            EngineVersionError: If the version is below the minimum
        """
        if version.value < self.minimum_version.value:
            raise EngineVersionError(
                f"Engine version {version} is too old; "
                f"version {self.minimum_version} (R2019a) or later is required",
                executable=self.executable,
                context={'version': str(version), 'minimum': str(self.minimum_version)}
            )

    def verify(self) -> EngineVersion:
        """Locate the engine, probe its version and apply the minimum-version gate."""
        self.locate()
        version = self.probe_version()
        self.check_version(version)
        return version
