"""
Core layer for engine communication.

This package contains the low-level protocol, socket and process handling
used by engine sessions.
"""

from .wire_codec import ProtocolEncoder, LineDecoder
from .request_correlator import RequestCorrelator, PendingRequest
from .socket_reader import SocketReader, PeerConnection
from .socket_listener import SocketListener
from .engine_process import EngineProcess

__all__ = [
    'ProtocolEncoder',
    'LineDecoder',
    'RequestCorrelator',
    'PendingRequest',
    'SocketReader',
    'PeerConnection',
    'SocketListener',
    'EngineProcess',
]
