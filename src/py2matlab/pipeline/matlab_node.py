"""
MatlabProcessingNode: a pipeline node whose transform runs in MATLAB.

Config:
    file_or_content (str): path to an existing ``.m`` function file, or the
        body of a ``process`` function operating on ``frame``
    options (EngineOptions): executable, persistent mode, host/port, timeouts
        and ``node_options`` (base options for every process call)

Example:
    >>> node = MatlabProcessingNode("frame.value = frame.value * 2;")
    >>> node.build().result()
    >>> node.process({'value': 21}).result()
    {'value': 42}
    >>> node.destroy().result()
"""

import logging
from concurrent.futures import Future
from typing import Any, Dict, Optional

from py2matlab.models.engine import EngineOptions, ScriptSource
from py2matlab.pipeline.node import ProcessingNode
from py2matlab.serialization import DataSerializer
from py2matlab.services.session_manager import EngineSession

logger = logging.getLogger(__name__)


class MatlabProcessingNode(ProcessingNode):
    """Processing node backed by an EngineSession."""

    def __init__(self, file_or_content, options: Optional[EngineOptions] = None,
                 serializer: Optional[DataSerializer] = None):
        options = options or EngineOptions()
        node_options = dict(options.node_options)
        super().__init__(name=node_options.pop('name', None), options=node_options)

        if isinstance(file_or_content, ScriptSource):
            source = file_or_content
        else:
            source = ScriptSource.parse(str(file_or_content))
        self.session = EngineSession(source, options, serializer=serializer)

    @property
    def engine_options(self) -> EngineOptions:
        return self.session.options

    def on_build(self) -> None:
        self.session.build()
        logger.info(
            f"Node '{self.name}': engine {self.session.version} ready "
            f"({'persistent' if self.engine_options.persistent else 'one-shot'} mode)"
        )

    def on_destroy(self) -> None:
        self.session.destroy()

    def process(self, item: Any, options: Optional[Dict[str, Any]] = None) -> Future:
        return self.session.send(item, self.merge_options(options))

    def get_stats(self) -> Dict[str, Any]:
        return self.session.get_stats()
