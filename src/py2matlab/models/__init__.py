"""Data models for engine configuration and session state."""

from .engine import (
    EngineOptions,
    ScriptSource,
    EngineVersion,
    SessionState,
    MINIMUM_ENGINE_VERSION,
    SCRIPT_EXTENSION,
)

__all__ = [
    'EngineOptions',
    'ScriptSource',
    'EngineVersion',
    'SessionState',
    'MINIMUM_ENGINE_VERSION',
    'SCRIPT_EXTENSION',
]
