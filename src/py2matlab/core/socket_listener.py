"""
Listening socket for engine sessions.

The listener is bound before the engine process is spawned so the engine's
connection attempt always finds it ready. Every accepted connection is
handed to the session, which makes it the current peer.
"""

import errno
import logging
import socket
import threading
from typing import Callable, Optional, Tuple

from py2matlab.core.errors import ErrorCodes, ListenerError

logger = logging.getLogger(__name__)


class SocketListener:
    """
    Accepts engine connections on a background thread.

    Example:
        >>> listener = SocketListener("127.0.0.1", 0, on_connection=handle)
        >>> host, port = listener.start()
        >>> listener.stop()
    """

    ACCEPT_TIMEOUT = 0.5

    def __init__(self, host: str, port: int,
                 on_connection: Callable[[socket.socket, Tuple], None]):
        """
        Args:
            host: Address to bind
            port: Port to bind (0 picks a free port)
            on_connection: Called with (socket, address) for each connection
        """
        self._host = host
        self._port = port
        self._on_connection = on_connection
        self._socket: Optional[socket.socket] = None
        self._thread: Optional[threading.Thread] = None
        self._running = False
        self._lock = threading.Lock()
        self.connections_accepted = 0

    def start(self) -> Tuple[str, int]:
        """
        Bind, listen and start accepting.

        Returns:
            The bound (host, port)

        Raises:
            ListenerError: If the address cannot be bound
        """
        with self._lock:
            if self._running:
                raise ListenerError("Listener already started")

            server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            try:
                server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                server.bind((self._host, self._port))
                server.listen(1)
                server.settimeout(self.ACCEPT_TIMEOUT)
            except OSError as e:
                server.close()
                code = ErrorCodes.PORT_IN_USE if e.errno in _ADDRESS_IN_USE \
                    else ErrorCodes.LISTENER_FAILED
                raise ListenerError(
                    f"Cannot listen on {self._host}:{self._port}: {e}",
                    error_code=code,
                    cause=e,
                    context={'host': self._host, 'port': self._port},
                    suggestions=["Choose another port or use port 0 for a free one"]
                )

            self._socket = server
            self._running = True
            self._thread = threading.Thread(
                target=self._accept_loop,
                name="SocketListener",
                daemon=True
            )
            self._thread.start()

        address = self.address
        logger.info(f"Listening for engine connections on {address[0]}:{address[1]}")
        return address

    @property
    def address(self) -> Tuple[str, int]:
        if self._socket is None:
            return (self._host, self._port)
        host, port = self._socket.getsockname()[:2]
        return (host, port)

    def is_running(self) -> bool:
        return self._running

    def _accept_loop(self):
        server = self._socket
        while self._running:
            try:
                client, addr = server.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if self._running:
                    logger.error(f"Listener accept failed: {e}")
                break

            client.settimeout(None)
            self.connections_accepted += 1
            logger.info(f"Engine connected from {addr[0]}:{addr[1]}")
            try:
                self._on_connection(client, addr)
            except Exception as e:
                logger.error(f"Connection handler failed for {addr}: {e}", exc_info=True)
                client.close()

        logger.debug("Listener accept loop exiting")

    def stop(self, timeout: float = 2.0):
        """Stop accepting and close the listening socket."""
        with self._lock:
            if not self._running and self._socket is None:
                return
            self._running = False
            server, self._socket = self._socket, None

        if server is not None:
            server.close()
        if self._thread and self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Listener thread did not stop cleanly")
        logger.info("Listener stopped")


_ADDRESS_IN_USE = {errno.EADDRINUSE, getattr(errno, 'WSAEADDRINUSE', errno.EADDRINUSE)}
