"""Scratch storage for materialized nested files."""

import logging
import shutil
import uuid
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)


class TempWorkspace:
    """Collision-free scratch directories owned by one scan.

    Every expansion node gets its own randomly named directory, so two
    scans sharing a root, or two siblings in one scan, never write to
    the same place.
    """

    def __init__(self, root: Path, delete_on_cleanup: bool = True):
        self.root = Path(root)
        self.delete_on_cleanup = delete_on_cleanup
        self._allocated: List[Path] = []

    @staticmethod
    def _new_id() -> str:
        return uuid.uuid4().hex

    def allocate(self, parent: Optional[Path] = None) -> Path:
        """Create a fresh directory under the root, or under parent.

        Args:
            parent: A directory previously returned by allocate()

        Returns:
            The new, empty directory
        """
        base = Path(parent) if parent is not None else self.root
        directory = base / self._new_id()
        directory.mkdir(parents=True, exist_ok=False)
        if parent is None:
            self._allocated.append(directory)
        logger.debug(f"Allocated scratch directory {directory}")
        return directory

    def place(self, directory: Path, name: str) -> Path:
        """Path for a file called name inside directory.

        If that name is already taken, the file goes into a new
        subdirectory instead so it keeps its name.
        """
        target = directory / name
        if target.exists():
            target = self.allocate(parent=directory) / name
            logger.debug(f"Name collision for '{name}', using {target.parent}")
        return target

    def owns(self, path: Path) -> bool:
        """Whether path lies inside a directory this workspace allocated."""
        return any(
            allocated == path or allocated in path.parents
            for allocated in self._allocated
        )

    def release(self, path: Path) -> None:
        """Delete one materialized file once it has been processed."""
        if not self.delete_on_cleanup or not self.owns(path):
            return
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not delete temp file {path}: {e}")

    def cleanup(self) -> None:
        """Remove every directory allocated by this workspace."""
        if not self.delete_on_cleanup:
            logger.info(f"Keeping {len(self._allocated)} scratch director(ies) under {self.root}")
            return
        for directory in self._allocated:
            shutil.rmtree(directory, ignore_errors=True)
        logger.debug(f"Removed {len(self._allocated)} scratch director(ies)")
        self._allocated.clear()
