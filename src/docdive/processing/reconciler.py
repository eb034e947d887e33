"""Incremental reconciliation of decomposed leaves against prior results."""

import logging
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple

from docdive.common import LogContext, compute_crc64
from .config import ScanConfig, ToolsConfig
from .decomposer import Decomposer
from .errors import FileMetadataError
from .external_tools import ExternalTools
from .models import LeafDescriptor, OutputRecord
from .text_extraction import extract_leaf_text
from .workspace import TempWorkspace

logger = logging.getLogger(__name__)

RecordKey = Tuple[str, Tuple[str, ...]]


class Reconciler:
    """Turns leaf descriptors into output records.

    A leaf whose name, lineage and fingerprint all match a prior result
    is not extracted again; its record carries text=None.

    Args:
        workspace: The scan's workspace, materialized leaves are released
            through it once processed
        prior_results: Records of an earlier scan of the same input
        config: Scan settings
        tools: External tool runner used for OCR
        cancel_event: Set by another thread to stop between leaves
    """

    def __init__(
        self,
        workspace: TempWorkspace,
        prior_results: Iterable[OutputRecord] = (),
        config: Optional[ScanConfig] = None,
        tools: Optional[ExternalTools] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.workspace = workspace
        self.config = config or ScanConfig()
        self.tools = tools or ExternalTools(ocr_language=self.config.ocr_language)
        self.cancel_event = cancel_event
        self._prior: Dict[RecordKey, Set[int]] = {}
        for record in prior_results:
            self._prior.setdefault(record.key, set()).add(record.content_fingerprint)

    def is_unchanged(self, display_name: str, lineage: Tuple[str, ...], fingerprint: int) -> bool:
        if self.config.force_reextract:
            return False
        return fingerprint in self._prior.get((display_name, lineage), ())

    def reconcile(self, leaves: Iterable[LeafDescriptor]) -> List[OutputRecord]:
        """
        Produce one record per leaf, in order, until cancelled.
        
        Args:
            leaves: Leaf descriptors in discovery order
            
        Returns:
            Records for every leaf processed before cancellation
            
        Raises:
            FileMetadataError: If a leaf's size cannot be read
            ScanError: If text extraction hits a scan-aborting error
        """
        records: List[OutputRecord] = []
        for leaf in leaves:
            if self.cancel_event is not None and self.cancel_event.is_set():
                logger.info(f"Scan cancelled after {len(records)} record(s)")
                break

            try:
                records.append(self.process(leaf))
            finally:
                if leaf.depth >= 1:
                    self.workspace.release(leaf.path)
        return records

    def process(self, leaf: LeafDescriptor) -> OutputRecord:
        """Fingerprint one leaf and extract its text unless unchanged."""
        try:
            byte_size = leaf.path.stat().st_size
        except OSError as e:
            raise FileMetadataError(
                f"Error getting metadata for {leaf.path}: {e}", file=str(leaf.path)
            ) from e

        if byte_size == 0:
            return OutputRecord(
                display_name=leaf.display_name,
                lineage=leaf.lineage,
                content_fingerprint=0,
                byte_size=0,
                text="",
            )

        fingerprint = compute_crc64(leaf.path)
        logger.debug(
            f"Leaf {leaf.display_name} at depth {leaf.depth} {list(leaf.lineage)}: "
            f"{byte_size} bytes, crc {fingerprint}"
        )

        if self.is_unchanged(leaf.display_name, leaf.lineage, fingerprint):
            logger.info(f"Unchanged since prior scan, skipping: {leaf.display_name} {list(leaf.lineage)}")
            text = None
        else:
            text = extract_leaf_text(leaf, config=self.config, tools=self.tools)

        return OutputRecord(
            display_name=leaf.display_name,
            lineage=leaf.lineage,
            content_fingerprint=fingerprint,
            byte_size=byte_size,
            text=text,
        )


def scan(
    path: Path,
    prior_results: Iterable[OutputRecord] = (),
    cancel_event: Optional[threading.Event] = None,
    config: Optional[ScanConfig] = None,
    tools_config: Optional[ToolsConfig] = None,
) -> List[OutputRecord]:
    """
    Decompose a file and return a record for every leaf inside it.
    
    The file itself is never modified or deleted. Every scratch directory
    the scan creates is removed when it returns or raises, unless
    config.delete_temp_files is False.
    
    Args:
        path: File to scan
        prior_results: Records of an earlier scan, used to skip unchanged leaves
        cancel_event: Set (from any thread) to stop; checked between leaves only
        config: Scan settings
        tools_config: External tool executables
        
    Returns:
        Output records in depth-first discovery order, truncated if cancelled
        
    Raises:
        ScanError: On a scan-aborting condition
    """
    path = Path(path)
    config = config or ScanConfig()
    tools = ExternalTools(tools_config, ocr_language=config.ocr_language)

    workspace = TempWorkspace(Path(config.temp_root), delete_on_cleanup=config.delete_temp_files)

    with LogContext(input_file=str(path)):
        logger.info(f"Scanning {path}")
        try:
            leaves = Decomposer(workspace, config=config, tools=tools).decompose(path)
            logger.debug(f"Decomposed {path} into {len(leaves)} leaf item(s)")

            reconciler = Reconciler(
                workspace,
                prior_results=prior_results,
                config=config,
                tools=tools,
                cancel_event=cancel_event,
            )
            records = reconciler.reconcile(leaves)
        finally:
            workspace.cleanup()

        skipped = sum(1 for r in records if r.text is None)
        logger.info(f"Scanned {path}: {len(records)} record(s), {skipped} unchanged")
        return records
