"""
Request correlation for the engine session protocol.

Every outbound request gets a correlation id and a pending future. Inbound
responses are matched by id, not by arrival order, and each pending future
is completed exactly once: the entry is removed from the table under the
lock before it is completed, so a duplicate response finds nothing.

Architecture:
    EngineSession.send()
        └── register(id) -> Future    (before the socket write)
    SocketReader (background thread)
        └── dispatch(message)         (resolve / reject the matching future)
        └── expire_overdue()          (on idle ticks, for request deadlines)
"""

import logging
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from py2matlab.core.errors import (
    EngineProcessingError,
    ErrorCodes,
    RequestTimeoutError,
)
from py2matlab.core.wire_codec import ACTION_ERROR, ACTION_PROCESS

logger = logging.getLogger(__name__)


@dataclass
class PendingRequest:
    """An outstanding request waiting for its response."""
    request_id: str
    future: Future
    created: float = field(default_factory=time.monotonic)
    deadline: Optional[float] = None

    def is_overdue(self, now: float) -> bool:
        return self.deadline is not None and now >= self.deadline


class RequestCorrelator:
    """
    Tracks pending requests and routes responses to them.

    - Responses go to the pending future registered under their id
    - Responses for unknown (or already completed) ids are dropped
    - Engine-side failures reject the matching future
    """

    def __init__(self, decode: Optional[Callable[[Any], Any]] = None):
        """
        Args:
            decode: Converts a response's ``data`` into the result handed to
                the caller (the session passes the item deserializer)
        """
        self._lock = threading.Lock()
        self._pending: Dict[str, PendingRequest] = {}
        self._decode = decode or (lambda data: data)

        self._stats = {
            'registered': 0,
            'resolved': 0,
            'rejected': 0,
            'expired': 0,
            'unmatched': 0,
        }

    def register(self, request_id: str, timeout: Optional[float] = None) -> Future:
        """
        Register a pending request and return the future to wait on.

        Args:
            request_id: Correlation id of the request
            timeout: Seconds until the request is rejected (None = never)

        Raises:
            ValueError: If the id is already pending
        """
        future: Future = Future()
        # Running futures cannot be cancelled, so only this class completes them
        future.set_running_or_notify_cancel()
        deadline = time.monotonic() + timeout if timeout is not None else None

        with self._lock:
            if request_id in self._pending:
                raise ValueError(f"Request {request_id} is already pending")
            self._pending[request_id] = PendingRequest(request_id, future, deadline=deadline)
            self._stats['registered'] += 1
        return future

    def _pop(self, request_id: Any) -> Optional[PendingRequest]:
        with self._lock:
            return self._pending.pop(request_id, None)

    def dispatch(self, message: Dict[str, Any]) -> bool:
        """
        Route a decoded message to its pending request.

        Args:
            message: Decoded protocol message

        Returns:
            True if the message completed a pending request
        """
        request_id = message.get('id')
        pending = self._pop(request_id)
        if pending is None:
            with self._lock:
                self._stats['unmatched'] += 1
            logger.debug(f"No pending request for id {request_id!r} (late or duplicate response?)")
            return False

        action = message.get('action')
        if action == ACTION_ERROR:
            self._fail(pending, EngineProcessingError(
                f"Engine failed to process request: {message.get('data')}",
                context={'request_id': request_id}
            ))
            return True
        if action != ACTION_PROCESS:
            logger.warning(f"Unexpected action {action!r} in response to {request_id}")

        try:
            result = self._decode(message.get('data'))
        except Exception as e:
            self._fail(pending, e)
            return True

        pending.future.set_result(result)
        with self._lock:
            self._stats['resolved'] += 1
        logger.debug(f"Resolved request {request_id}")
        return True

    def reject(self, request_id: str, error: BaseException) -> bool:
        """Reject one pending request. Returns False if it was not pending."""
        pending = self._pop(request_id)
        if pending is None:
            return False
        self._fail(pending, error)
        return True

    def reject_all(self, error: BaseException) -> int:
        """
        Reject every pending request with the same error.

        Returns:
            Number of requests rejected
        """
        with self._lock:
            drained = list(self._pending.values())
            self._pending.clear()
        for pending in drained:
            self._fail(pending, error)
        if drained:
            logger.info(f"Rejected {len(drained)} pending request(s): {error}")
        return len(drained)

    def expire_overdue(self, now: Optional[float] = None) -> int:
        """Reject requests whose deadline has passed."""
        now = time.monotonic() if now is None else now
        with self._lock:
            overdue = [p for p in self._pending.values() if p.is_overdue(now)]
            for pending in overdue:
                del self._pending[pending.request_id]
        for pending in overdue:
            waited = now - pending.created
            self._fail(pending, RequestTimeoutError(
                f"No response to request {pending.request_id} after {waited:.1f}s",
                error_code=ErrorCodes.REQUEST_TIMEOUT,
                timeout_seconds=round(waited, 3)
            ), stat='expired')
        return len(overdue)

    def _fail(self, pending: PendingRequest, error: BaseException, stat: str = 'rejected'):
        pending.future.set_exception(error)
        with self._lock:
            self._stats[stat] += 1

    def is_pending(self, request_id: str) -> bool:
        with self._lock:
            return request_id in self._pending

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def get_stats(self) -> Dict[str, int]:
        """Get correlation statistics."""
        with self._lock:
            return self._stats.copy()
