# py2matlab package
# Bridge that runs pipeline items through a MATLAB engine

__version__ = "0.1.0"

from .models.engine import EngineOptions, ScriptSource, EngineVersion, SessionState
from .serialization import DataSerializer, default_serializer
from .services.session_manager import EngineSession
from .pipeline.matlab_node import MatlabProcessingNode

__all__ = [
    "EngineOptions",
    "ScriptSource",
    "EngineVersion",
    "SessionState",
    "DataSerializer",
    "default_serializer",
    "EngineSession",
    "MatlabProcessingNode",
]
