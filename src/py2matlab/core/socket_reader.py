"""
Background socket reader for the engine session protocol.

Architecture:
    PeerConnection
        └── send(): serialized, complete writes (sendall)
        └── SocketReader (background thread)
            └── Continuously drains the socket into a LineDecoder
            └── Hands each decoded message to the session
            └── Calls the idle hook between reads (request deadlines)
            └── Reports the disconnect exactly once
"""

import logging
import select
import socket
import threading
from typing import Any, Callable, Dict, Optional

from py2matlab.core.wire_codec import LineDecoder

logger = logging.getLogger(__name__)


class SocketReader:
    """
    Background thread that continuously reads from the peer socket.

    Uses a short select timeout so the loop can notice shutdown requests and
    run the idle hook; the socket itself stays blocking for writes.
    """

    POLL_INTERVAL = 0.5
    RECV_SIZE = 65536

    def __init__(self, peer_socket: socket.socket,
                 on_message: Callable[[Dict[str, Any]], None],
                 on_closed: Callable[[], None],
                 on_idle: Optional[Callable[[], Any]] = None,
                 name: str = "SocketReader"):
        """
        Initialize the socket reader.

        Args:
            peer_socket: Connected socket to read from
            on_message: Called with every decoded message
            on_closed: Called once when the read loop ends
            on_idle: Called on every poll interval without data
            name: Thread name
        """
        self._socket = peer_socket
        self._on_message = on_message
        self._on_closed = on_closed
        self._on_idle = on_idle
        self._decoder = LineDecoder()
        self._name = name
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

        self._stats = {
            'messages_read': 0,
            'bytes_read': 0,
            'handler_errors': 0,
        }

    def start(self):
        """Start the background reader thread."""
        with self._lock:
            if self._running:
                logger.warning(f"{self._name} already running")
                return

            self._running = True
            self._thread = threading.Thread(
                target=self._read_loop,
                name=self._name,
                daemon=True
            )
            self._thread.start()
            logger.debug(f"{self._name} background thread started")

    def stop(self, timeout: float = 2.0):
        """
        Stop the background reader thread.

        Args:
            timeout: Seconds to wait for thread to stop
        """
        with self._lock:
            if not self._running:
                return
            self._running = False

        thread = self._thread
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning(f"{self._name} thread did not stop cleanly")

    def is_running(self) -> bool:
        """Check if reader is running."""
        return self._running

    def _read_loop(self):
        """Main read loop - runs in background thread."""
        try:
            while self._running:
                try:
                    readable, _, _ = select.select([self._socket], [], [], self.POLL_INTERVAL)
                except (OSError, ValueError) as e:
                    if self._running:
                        logger.info(f"{self._name} socket no longer readable: {e}")
                    break

                if not readable:
                    self._idle()
                    continue

                try:
                    chunk = self._socket.recv(self.RECV_SIZE)
                except OSError as e:
                    if self._running:
                        logger.error(f"Socket error in {self._name}: {e}")
                    break

                if not chunk:
                    logger.info(f"Peer closed the connection - {self._name} stopping")
                    break

                self._stats['bytes_read'] += len(chunk)
                for message in self._decoder.feed(chunk):
                    self._stats['messages_read'] += 1
                    self._handle(message)
        finally:
            self._running = False
            logger.debug(f"{self._name} read loop exiting. Stats: {self.get_stats()}")
            self._on_closed()

    def _handle(self, message: Dict[str, Any]):
        try:
            self._on_message(message)
        except Exception as e:
            self._stats['handler_errors'] += 1
            logger.error(f"Message handler error in {self._name}: {e}", exc_info=True)

    def _idle(self):
        if self._on_idle is None:
            return
        try:
            self._on_idle()
        except Exception as e:
            logger.error(f"Idle handler error in {self._name}: {e}", exc_info=True)

    def get_stats(self) -> Dict[str, int]:
        """Get reader statistics."""
        stats = self._stats.copy()
        stats['parse_errors'] = self._decoder.parse_errors
        return stats


class PeerConnection:
    """
    One connected engine peer: a socket, its reader thread and a send lock.
    """

    def __init__(self, peer_socket: socket.socket, address: Any,
                 on_message: Callable[[Dict[str, Any]], None],
                 on_closed: Callable[['PeerConnection'], None],
                 on_idle: Optional[Callable[[], Any]] = None):
        """
        Args:
            peer_socket: Accepted socket
            address: Remote address, for logging
            on_message: Called with every decoded message
            on_closed: Called with this connection once its reader stops
            on_idle: Called on every idle poll interval
        """
        self._socket = peer_socket
        self.address = address
        self._send_lock = threading.Lock()  # Serialize writes
        self._closed = threading.Event()
        self._on_closed = on_closed
        self._reader = SocketReader(
            peer_socket,
            on_message=on_message,
            on_closed=self._reader_closed,
            on_idle=on_idle,
            name=f"SocketReader-{address}"
        )

    def start(self):
        """Start the background reader."""
        self._reader.start()

    def send(self, payload: bytes):
        """
        Write a complete framed message.

        Raises:
            OSError: If the socket is closed or the write fails
        """
        if self._closed.is_set():
            raise OSError("Peer connection is closed")
        with self._send_lock:
            self._socket.sendall(payload)

    def close(self):
        """Close the socket and stop the reader. Safe to call more than once."""
        if self._closed.is_set():
            return
        self._closed.set()
        try:
            self._socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # Already disconnected
        self._socket.close()
        self._reader.stop()

    def is_open(self) -> bool:
        return not self._closed.is_set() and self._reader.is_running()

    def _reader_closed(self):
        if not self._closed.is_set():
            self._closed.set()
            self._socket.close()
        self._on_closed(self)

    def get_stats(self) -> Dict[str, int]:
        return self._reader.get_stats()
