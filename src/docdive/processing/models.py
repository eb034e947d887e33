"""Leaf descriptors and output records."""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass
class LeafDescriptor:
    """One unit discovered by decomposition.

    path is the caller's file at depth 0 and a file inside the scan's
    workspace at depth >= 1. lineage holds ancestor display names,
    outermost first, and its length always equals depth.
    """
    path: Path
    depth: int
    lineage: Tuple[str, ...] = ()
    extractable: bool = False

    @property
    def display_name(self) -> str:
        return self.path.name

    def child_lineage(self) -> Tuple[str, ...]:
        """Lineage of anything this unit contains."""
        return self.lineage + (self.display_name,)


@dataclass(frozen=True)
class OutputRecord:
    """Final per-leaf result handed back to the caller.

    text is None only when the leaf was skipped because a prior result
    had the same name, lineage and fingerprint.
    """
    display_name: str
    lineage: Tuple[str, ...] = field(default_factory=tuple)
    content_fingerprint: int = 0
    byte_size: int = 0
    text: Optional[str] = ""

    def __post_init__(self):
        object.__setattr__(self, "lineage", tuple(self.lineage))

    @property
    def key(self) -> Tuple[str, Tuple[str, ...]]:
        """Identity across scans."""
        return (self.display_name, self.lineage)

    def to_dict(self) -> Dict[str, Any]:
        """Serialized record shape used for persistence."""
        return {
            'filename': self.display_name,
            'parent_files': list(self.lineage),
            'crc': self.content_fingerprint,
            'size': self.byte_size,
            'text_contents': self.text,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'OutputRecord':
        return cls(
            display_name=data['filename'],
            lineage=tuple(data.get('parent_files') or ()),
            content_fingerprint=int(data['crc']),
            byte_size=int(data['size']),
            text=data.get('text_contents'),
        )


def dump_records(records: Iterable[OutputRecord], path: Path) -> None:
    """Write records as a JSON array."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump([r.to_dict() for r in records], f, indent=2, ensure_ascii=False)
    logger.debug(f"Saved records to {path}")


def load_records(path: Path) -> List[OutputRecord]:
    """Read records written by dump_records."""
    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)
    return [OutputRecord.from_dict(item) for item in data]
