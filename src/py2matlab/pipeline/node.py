"""
ProcessingNode: base class for pipeline nodes that transform items.

A node has two one-time lifecycle hooks. ``build()`` prepares whatever the
node needs and ``destroy()`` releases it; both run on a worker thread and
return a future, so a host pipeline can start several nodes at once and
wait on all of them. ``process()`` transforms a single item and also
returns a future.
"""

import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import Future
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class ProcessingNode(ABC):
    """Base class for item-processing nodes.

    Subclasses implement `on_build()`, `on_destroy()` and `process()`.
    """

    def __init__(self, name: Optional[str] = None,
                 options: Optional[Dict[str, Any]] = None):
        """
        Args:
            name: Display name used in logs (defaults to the class name)
            options: Base options merged into every process call
        """
        self.name = name or type(self).__name__
        self.options: Dict[str, Any] = dict(options or {})
        self._lock = threading.Lock()
        self._build_future: Optional[Future] = None
        self._destroy_future: Optional[Future] = None

    def build(self) -> Future:
        """Run the build hook once. Later calls return the same future."""
        with self._lock:
            if self._build_future is None:
                self._build_future = self._run_hook('build', self.on_build)
            return self._build_future

    def destroy(self) -> Future:
        """Run the destroy hook once. Later calls return the same future."""
        with self._lock:
            if self._destroy_future is None:
                self._destroy_future = self._run_hook('destroy', self.on_destroy)
            return self._destroy_future

    @property
    def is_built(self) -> bool:
        future = self._build_future
        return (future is not None and future.done()
                and future.exception() is None)

    def merge_options(self, options: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """Combine the node's base options with per-call options."""
        merged = dict(self.options)
        merged.update(options or {})
        return merged

    def _run_hook(self, phase: str, hook) -> Future:
        future: Future = Future()
        future.set_running_or_notify_cancel()

        def work():
            logger.info(f"Node '{self.name}': {phase} started")
            try:
                hook()
            except Exception as e:
                logger.error(f"Node '{self.name}': {phase} failed: {e}")
                future.set_exception(e)
            else:
                logger.info(f"Node '{self.name}': {phase} complete")
                future.set_result(None)

        threading.Thread(target=work, name=f"{self.name}-{phase}", daemon=True).start()
        return future

    @abstractmethod
    def on_build(self) -> None:
        """Prepare the node (blocking). Raise to fail the build."""
        ...

    @abstractmethod
    def on_destroy(self) -> None:
        """Release the node's resources (blocking)."""
        ...

    @abstractmethod
    def process(self, item: Any, options: Optional[Dict[str, Any]] = None) -> Future:
        """Transform one item.

        Returns:
            Future completed with the transformed item, or with the error
            for this item only
        """
        ...
