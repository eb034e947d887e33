"""Decomposition, text extraction and reconciliation."""

from .classifier import classify
from .config import ExtractTextConfig, ScanConfig, ToolsConfig
from .decomposer import Decomposer, decompose
from .errors import (
    ScanError, ScanErrorKind, MalformedMessageError, UnknownAttachmentError,
    ExternalToolError, ToolNotFoundError, FileMetadataError, classify_error
)
from .external_tools import ExternalTools, check_required_tools, check_tool_availability
from .models import LeafDescriptor, OutputRecord, dump_records, load_records
from .reconciler import Reconciler, scan
from .text_extraction import detect_encoding, extract_leaf_text, read_text_from_file
from .workspace import TempWorkspace

__all__ = [
    'classify',
    'ExtractTextConfig',
    'ScanConfig',
    'ToolsConfig',
    'Decomposer',
    'decompose',
    'ScanError',
    'ScanErrorKind',
    'MalformedMessageError',
    'UnknownAttachmentError',
    'ExternalToolError',
    'ToolNotFoundError',
    'FileMetadataError',
    'classify_error',
    'ExternalTools',
    'check_required_tools',
    'check_tool_availability',
    'LeafDescriptor',
    'OutputRecord',
    'dump_records',
    'load_records',
    'Reconciler',
    'scan',
    'detect_encoding',
    'extract_leaf_text',
    'read_text_from_file',
    'TempWorkspace',
]
