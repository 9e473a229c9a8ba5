"""
Pipeline nodes - Item-processing nodes with build/destroy lifecycles.
"""

from .node import ProcessingNode
from .matlab_node import MatlabProcessingNode

__all__ = ['ProcessingNode', 'MatlabProcessingNode']
