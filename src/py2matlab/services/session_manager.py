"""
Engine session lifecycle.

An EngineSession owns everything one engine interaction needs: the script,
the listener, the engine subprocess, the current peer connection and the
pending-request table.

Build order (persistent mode):
    locate executable -> check version -> write script
    -> bind listener -> spawn engine -> wait for the engine to connect

The listener is always bound before the engine starts, so the engine's
connection attempt cannot race it.

Destroy order:
    quit message to the peer (best effort) -> close listener
    -> terminate the engine process group and wait for it to exit
"""

import logging
import threading
import time
import uuid
from concurrent.futures import Future
from typing import Any, Dict, Optional

from py2matlab.core.engine_process import EngineProcess
from py2matlab.core.error_formatting import log_error
from py2matlab.core.errors import (
    ConnectionLostError,
    ErrorCodes,
    NoPeerError,
    Py2MatlabError,
    SessionStateError,
    SpawnError,
    TimeoutError,
    ValidationError,
)
from py2matlab.core.request_correlator import RequestCorrelator
from py2matlab.core.socket_listener import SocketListener
from py2matlab.core.socket_reader import PeerConnection
from py2matlab.core.wire_codec import ProtocolEncoder, matlab_string
from py2matlab.models.engine import EngineOptions, EngineVersion, ScriptSource, SessionState
from py2matlab.serialization import DataSerializer, default_serializer, ensure_map_rule
from py2matlab.services.engine_locator import EngineLocator
from py2matlab.services.one_shot_runner import OneShotRunner
from py2matlab.services.script_materializer import (
    SESSION_FUNCTION,
    MaterializedScript,
    ScriptMaterializer,
)


def _failed_future(error: BaseException) -> Future:
    future: Future = Future()
    future.set_running_or_notify_cancel()
    future.set_exception(error)
    return future


class EngineSession:
    """
    Runtime state of one engine interaction.

    Example:
        >>> session = EngineSession(ScriptSource.from_content("frame.value = frame.value * 2;"))
        >>> session.build()
        >>> result = session.send(item).result()
        >>> session.destroy()
    """

    WAIT_INTERVAL = 0.1

    def __init__(self, source: ScriptSource, options: Optional[EngineOptions] = None,
                 serializer: Optional[DataSerializer] = None,
                 materializer: Optional[ScriptMaterializer] = None):
        """
        Args:
            source: Script the engine runs
            options: Engine options (defaults to EngineOptions())
            serializer: Item serializer (defaults to the shared serializer)
            materializer: Script materializer (defaults to a new one)

        Raises:
            ValidationError: If the options are invalid
        """
        self.options = options or EngineOptions()
        valid, errors = self.options.validate()
        if not valid:
            raise ValidationError(
                f"Invalid engine options: {'; '.join(errors)}",
                context={'errors': errors}
            )

        self.source = source
        self.serializer = serializer or default_serializer
        ensure_map_rule(self.serializer)
        self.materializer = materializer or ScriptMaterializer()
        self.locator = EngineLocator(self.options.executable, self.options.probe_timeout)
        self.logger = logging.getLogger(__name__)

        self._lock = threading.RLock()
        self._state = SessionState.UNBUILT
        self._encoder = ProtocolEncoder()
        self._correlator = RequestCorrelator(decode=self.serializer.deserialize)
        self._connected = threading.Event()

        self.version: Optional[EngineVersion] = None
        self.script: Optional[MaterializedScript] = None
        self._listener: Optional[SocketListener] = None
        self._process: Optional[EngineProcess] = None
        self._peer: Optional[PeerConnection] = None
        self._one_shot: Optional[OneShotRunner] = None

    # ---- State ----

    @property
    def state(self) -> SessionState:
        return self._state

    def _set_state(self, state: SessionState):
        with self._lock:
            previous, self._state = self._state, state
        self.logger.debug(f"Session state {previous.value} -> {state.value}")

    def is_active(self) -> bool:
        return self._state == SessionState.ACTIVE

    def is_connected(self) -> bool:
        with self._lock:
            return self._peer is not None

    @property
    def listen_address(self):
        return self._listener.address if self._listener else None

    @property
    def correlator(self) -> RequestCorrelator:
        return self._correlator

    # ---- Build ----

    def build(self):
        """
        Prepare the engine so it can accept requests.

        Blocks until the engine is connected (persistent mode) or the script
        is ready (one-shot mode).

        Raises:
            SessionStateError: If the session was already built
            Py2MatlabError: On any setup failure; the session is left FAILED
                and every resource acquired so far is released
        """
        with self._lock:
            if self._state != SessionState.UNBUILT:
                raise SessionStateError(
                    f"Session cannot be built from state {self._state.value}",
                    state=self._state.value
                )
            self._set_state(SessionState.LOCATING)

        try:
            self._build()
        except Py2MatlabError as e:
            self.logger.error(f"Engine session build failed: {e}")
            self._release()
            self._set_state(SessionState.FAILED)
            raise

    def _build(self):
        self.locator.locate()
        self._set_state(SessionState.VERSION_CHECKING)
        self.version = self.locator.probe_version()
        self.locator.check_version(self.version)

        options = self.options
        self.script = self.materializer.materialize(
            self.source, options.persistent, options.host, options.port
        )
        self._set_state(SessionState.SCRIPT_READY)

        if not options.persistent:
            self._one_shot = OneShotRunner(
                self.locator.resolved_path or options.executable,
                self.script,
                self.serializer,
                timeout=options.request_timeout,
            )
            self._set_state(SessionState.ACTIVE)
            self.logger.info("Engine session ready (one-shot mode)")
            return

        self._set_state(SessionState.LISTENER_STARTING)
        self._listener = SocketListener(options.host, options.port, self._on_connection)
        host, port = self._listener.start()

        self._set_state(SessionState.SUBPROCESS_STARTING)
        self._process = EngineProcess(self._session_command(host, port),
                                      cwd=str(self.script.directory))
        self._process.start()

        self._wait_for_peer()
        self._set_state(SessionState.CONNECTED)
        self._set_state(SessionState.ACTIVE)
        self.logger.info(f"Engine session ready on {host}:{port}")

    def _session_command(self, host: str, port: int):
        statement = (
            f"cd({matlab_string(str(self.script.directory))}); "
            f"{SESSION_FUNCTION}({matlab_string(host)}, {int(port)});"
        )
        return [self.locator.resolved_path or self.options.executable,
                '-nosplash', '-batch', statement]

    def _wait_for_peer(self):
        deadline = time.monotonic() + self.options.connect_timeout
        while not self._connected.wait(self.WAIT_INTERVAL):
            process = self._process
            if process.error_output:
                raise SpawnError(
                    f"Engine reported an error during startup: {process.error_output}",
                    executable=self.options.executable
                )
            if process.has_exited():
                raise SpawnError(
                    f"Engine exited with code {process.returncode} before connecting",
                    executable=self.options.executable,
                    error_code=ErrorCodes.ENGINE_EXITED
                )
            if time.monotonic() >= deadline:
                raise TimeoutError(
                    f"Engine did not connect within {self.options.connect_timeout}s",
                    error_code=ErrorCodes.CONNECT_TIMEOUT,
                    timeout_seconds=self.options.connect_timeout
                )

    # ---- Peer handling ----

    def _on_connection(self, client, address):
        peer = PeerConnection(
            client, address,
            on_message=self._correlator.dispatch,
            on_closed=self._on_peer_closed,
            on_idle=self._correlator.expire_overdue,
        )
        with self._lock:
            if self._state in (SessionState.DESTROYING, SessionState.DESTROYED,
                               SessionState.FAILED):
                previous, peer = peer, None
            else:
                previous, self._peer = self._peer, peer
                if previous is not None:
                    # Responses to requests sent on the old peer can no longer arrive
                    self._correlator.reject_all(ConnectionLostError(
                        "Engine peer was replaced by a new connection"
                    ))

        if previous is not None:
            self.logger.warning(f"Closing previous engine connection {previous.address}")
            previous.close()
        if peer is not None:
            peer.start()
            self._connected.set()

    def _on_peer_closed(self, peer: PeerConnection):
        with self._lock:
            if self._peer is not peer:
                return
            self._peer = None
            self._correlator.reject_all(ConnectionLostError(
                "Engine disconnected before responding",
                error_code=ErrorCodes.CONNECTION_LOST
            ))
        self.logger.warning(f"Engine peer {peer.address} disconnected")

    # ---- Requests ----

    def send(self, item: Any, options: Optional[Dict[str, Any]] = None) -> Future:
        """
        Send one item to the engine.

        Args:
            item: Pipeline item
            options: Opaque per-call options forwarded with the request

        Returns:
            Future completed with the processed item, or with the error for
            this call only
        """
        with self._lock:
            state = self._state
            peer = self._peer
            one_shot = self._one_shot

        if state != SessionState.ACTIVE:
            return _failed_future(SessionStateError(
                f"Session is not active (state: {state.value})",
                state=state.value
            ))
        if one_shot is not None:
            return one_shot.submit(item)
        if peer is None:
            return _failed_future(NoPeerError(
                "No connected engine peer",
                suggestions=["The engine disconnected; rebuild the session"]
            ))

        request_id = str(uuid.uuid4())
        try:
            payload = self._encoder.encode_process(
                request_id, self.serializer.serialize(item), options
            )
        except (Py2MatlabError, TypeError, ValueError) as e:
            return _failed_future(e)

        future = self._correlator.register(request_id, timeout=self.options.request_timeout)
        try:
            peer.send(payload)
        except OSError as e:
            self._correlator.reject(request_id, ConnectionLostError(
                f"Failed to send request to engine: {e}",
                error_code=ErrorCodes.SOCKET_ERROR,
                cause=e
            ))
        else:
            self.logger.debug(f"Sent request {request_id} ({len(payload)} bytes)")
        return future

    # ---- Destroy ----

    def destroy(self):
        """
        Shut the engine down.

        Returns once the engine process has exited. Failures along the way
        are logged and teardown continues.
        """
        with self._lock:
            if self._state in (SessionState.DESTROYING, SessionState.DESTROYED):
                return
            self._set_state(SessionState.DESTROYING)

        self._release()
        self._set_state(SessionState.DESTROYED)
        self.logger.info("Engine session destroyed")

    def _release(self):
        with self._lock:
            peer, self._peer = self._peer, None
            listener, self._listener = self._listener, None
            process, self._process = self._process, None
            self._one_shot = None

        if peer is not None:
            try:
                peer.send(self._encoder.encode_quit(str(uuid.uuid4())))
            except OSError as e:
                self.logger.warning(f"Could not deliver quit message to engine: {e}")

        self._correlator.reject_all(SessionStateError(
            "Engine session closed",
            error_code=ErrorCodes.SESSION_CLOSED
        ))

        if listener is not None:
            try:
                listener.stop()
            except OSError as e:
                log_error(e, level=logging.WARNING,
                          extra_context={'step': 'close listener'})

        if process is not None:
            outcome = process.terminate_group(timeout=self.options.shutdown_timeout)
            self.logger.info(f"Engine process {outcome}")

        if peer is not None:
            peer.close()

        if self.script is not None:
            self.script.cleanup()

    def get_stats(self) -> Dict[str, Any]:
        """Get session, correlation and connection statistics."""
        with self._lock:
            peer = self._peer
        return {
            'state': self._state.value,
            'connected': peer is not None,
            'pending': self._correlator.pending_count,
            'correlator': self._correlator.get_stats(),
            'peer': peer.get_stats() if peer else None,
        }
