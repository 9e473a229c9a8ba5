"""Services that locate, prepare and drive the engine."""

from .engine_locator import EngineLocator, parse_version_output
from .script_materializer import ScriptMaterializer, MaterializedScript
from .one_shot_runner import OneShotRunner
from .session_manager import EngineSession
from .configuration_manager import ConfigurationManager

__all__ = [
    'EngineLocator',
    'parse_version_output',
    'ScriptMaterializer',
    'MaterializedScript',
    'OneShotRunner',
    'EngineSession',
    'ConfigurationManager',
]
