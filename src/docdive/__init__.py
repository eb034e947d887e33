"""Recursive document decomposition and text extraction."""

from .processing.reconciler import scan
from .processing.models import OutputRecord, LeafDescriptor

__version__ = "0.1.0"

__all__ = [
    'scan',
    'OutputRecord',
    'LeafDescriptor',
]
