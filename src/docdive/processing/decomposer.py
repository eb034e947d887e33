"""Recursive decomposition of containers into a flat list of leaves.

Every file visited gets exactly one LeafDescriptor of its own. Containers
then materialize what they hold into the scan's TempWorkspace and
decompose each materialized file one level deeper, so the resulting list
is in depth-first discovery order.

Damaged containers are logged and simply produce no children. Errors
that mean the environment is broken (external tool failures, malformed
compound messages, unreadable file metadata) propagate and end the scan.
"""

import email
import email.errors
import functools
import gzip
import logging
import lzma
import os
import shutil
import tarfile
import zipfile
import zlib
from email import policy
from email.message import EmailMessage
from pathlib import Path, PurePosixPath
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import py7zr
from py7zr.exceptions import ArchiveError, PasswordRequired

from docdive.common import CorruptedFileError, safe_member_path, sanitize_filename
from .classifier import classify
from .config import ScanConfig
from .errors import FileMetadataError
from .external_tools import ExternalTools
from .models import LeafDescriptor
from .msg_walker import MsgWalker
from .workbook import WORKBOOK_FORMATS, Workbook, sheet_to_text
from .workspace import TempWorkspace

logger = logging.getLogger(__name__)

# Embedded images that are worth running OCR on
EMBEDDED_IMAGE_EXTENSIONS = frozenset({'.png', '.jpeg', '.jpg'})
WORD_MEDIA_FOLDER = 'word/media/'
ODF_PICTURES_FOLDER = 'Pictures/'

MESSAGE_BODY_FILENAME = 'body.txt'
VBA_MODULE_PREFIX = 'VBA_'

# Containers whose own bytes are also run through text extraction
EXTRACTABLE_CONTAINERS = frozenset({'docx', 'docm', 'odt'})

_ZIP_MEMBER_ERRORS = (
    zipfile.BadZipFile,
    zipfile.LargeZipFile,
    OSError,
    EOFError,
    RuntimeError,  # encrypted member
    NotImplementedError,  # unsupported compression method
    zlib.error,
    lzma.LZMAError,
)

_SEVENZIP_ERRORS = (
    ArchiveError,
    PasswordRequired,
    lzma.LZMAError,
    OSError,
    EOFError,
    ValueError,
)

_MIME_ERRORS = (
    email.errors.MessageError,
    LookupError,  # unknown charset
    ValueError,
    TypeError,
)


class Decomposer:
    """Walks one input file and collects its leaves.

    Args:
        workspace: Scratch storage for materialized children
        config: Scan settings (archive password)
        tools: External tool runner for PDFs
        accumulator: List receiving LeafDescriptors, a new one if omitted
    """

    def __init__(
        self,
        workspace: TempWorkspace,
        config: Optional[ScanConfig] = None,
        tools: Optional[ExternalTools] = None,
        accumulator: Optional[List[LeafDescriptor]] = None,
    ):
        self.workspace = workspace
        self.config = config or ScanConfig()
        self.tools = tools or ExternalTools(ocr_language=self.config.ocr_language)
        self.leaves: List[LeafDescriptor] = accumulator if accumulator is not None else []

        self._expanders: Dict[str, Callable[[Path, Tuple[str, ...]], None]] = {
            '7z': self._expand_7z,
            'zip': self._expand_zip,
            'tar': self._expand_tar,
            'tgz': self._expand_tar,
            'gz': self._expand_gzip,
            'gzip': self._expand_gzip,
            'docx': self._expand_word_media,
            'docm': self._expand_word_media,
            'odt': self._expand_odf_pictures,
            'eml': self._expand_eml,
            'msg': self._expand_msg,
            'pdf': self._expand_pdf,
        }
        for file_format in WORKBOOK_FORMATS:
            self._expanders[file_format] = functools.partial(self._expand_workbook, file_format=file_format)

    def add_leaf(self, leaf: LeafDescriptor) -> None:
        self.leaves.append(leaf)

    def descend(self, path: Path, lineage: Tuple[str, ...]) -> None:
        """Decompose a materialized child whose ancestors are lineage."""
        self.decompose(path, len(lineage), lineage)

    def decompose(self, path: Path, depth: int = 0, lineage: Sequence[str] = ()) -> List[LeafDescriptor]:
        """
        Record path and, if it is a container, everything inside it.
        
        Args:
            path: File to decompose
            depth: Nesting depth of path, 0 for the caller's file
            lineage: Display names of the containers holding path
            
        Returns:
            The accumulated leaf list
            
        Raises:
            FileMetadataError: If path's metadata cannot be read
            ScanError: For any other scan-aborting condition below path
        """
        path = Path(path)
        lineage = tuple(lineage)
        if depth != len(lineage):
            raise ValueError(f"Depth {depth} does not match lineage {list(lineage)}")

        try:
            file_format = classify(path)
        except OSError as e:
            raise FileMetadataError(
                f"Cannot read metadata of {path}: {e}", file=str(path)
            ) from e

        logger.debug(f"Decomposing {path} as '{file_format or '<none>'}' at depth {depth}")

        expander = self._expanders.get(file_format)
        extractable = expander is None or file_format in EXTRACTABLE_CONTAINERS
        leaf = LeafDescriptor(path=path, depth=depth, lineage=lineage, extractable=extractable)
        self.leaves.append(leaf)

        if expander is not None:
            expander(path, leaf.child_lineage())
        return self.leaves

    def _member_target(self, directory: Path, member_path: PurePosixPath) -> Path:
        """Where to write an archive member, keeping its relative path."""
        parent = directory.joinpath(*member_path.parts[:-1])
        parent.mkdir(parents=True, exist_ok=True)
        return self.workspace.place(parent, member_path.name)

    @staticmethod
    def _discard_partial(target: Optional[Path]) -> None:
        if target is not None and target.exists():
            target.unlink()

    def _expand_zip(self, path: Path, lineage: Tuple[str, ...]) -> None:
        try:
            archive = zipfile.ZipFile(path, 'r')
        except _ZIP_MEMBER_ERRORS as e:
            logger.warning(f"Cannot open zip archive {path}: {e}")
            return

        with archive:
            members = archive.infolist()
            logger.debug(f"Extracting {len(members)} entries from {path}")
            directory = self.workspace.allocate()

            for info in members:
                if info.is_dir():
                    continue
                member_path = safe_member_path(info.filename)
                if member_path is None:
                    logger.warning(f"Skipping unusable member name '{info.filename}' in {path}")
                    continue

                target = None
                try:
                    target = self._member_target(directory, member_path)
                    with archive.open(info) as source, open(target, 'wb') as dest:
                        shutil.copyfileobj(source, dest)
                except _ZIP_MEMBER_ERRORS as e:
                    logger.warning(f"Failed to extract '{info.filename}' from {path}: {e}")
                    self._discard_partial(target)
                    continue

                self.descend(target, lineage)

    def _expand_7z(self, path: Path, lineage: Tuple[str, ...]) -> None:
        directory = self.workspace.allocate()
        try:
            with py7zr.SevenZipFile(path, mode='r', password=self.config.archive_password) as archive:
                archive.extractall(path=directory)
        except _SEVENZIP_ERRORS as e:
            # Whatever was written before the failure is still decomposed
            logger.warning(f"Failed to extract 7z archive {path}: {e}")

        for root, dirs, files in os.walk(directory):
            dirs.sort()
            for name in sorted(files):
                self.descend(Path(root) / name, lineage)

    def _expand_tar(self, path: Path, lineage: Tuple[str, ...]) -> None:
        try:
            archive = tarfile.open(path, 'r:*')
        except (tarfile.TarError, OSError, EOFError, zlib.error, lzma.LZMAError) as e:
            logger.warning(f"Cannot open tar archive {path}: {e}")
            return

        with archive:
            try:
                members = archive.getmembers()
            except (tarfile.TarError, OSError, EOFError, zlib.error, lzma.LZMAError) as e:
                # Keep the members read before the damage
                logger.warning(f"Tar archive {path} is truncated or damaged: {e}")
                members = list(archive.members)

            logger.debug(f"Extracting {len(members)} entries from {path}")
            directory = self.workspace.allocate()

            for member in members:
                if not member.isfile():
                    continue
                member_path = safe_member_path(member.name)
                if member_path is None:
                    logger.warning(f"Skipping unusable member name '{member.name}' in {path}")
                    continue

                target = None
                try:
                    source = archive.extractfile(member)
                    if source is None:
                        continue
                    target = self._member_target(directory, member_path)
                    with source, open(target, 'wb') as dest:
                        shutil.copyfileobj(source, dest)
                except (tarfile.TarError, OSError, EOFError, zlib.error, lzma.LZMAError) as e:
                    logger.warning(f"Failed to extract '{member.name}' from {path}: {e}")
                    self._discard_partial(target)
                    continue

                self.descend(target, lineage)

    def _expand_gzip(self, path: Path, lineage: Tuple[str, ...]) -> None:
        # foo.tar.gz inflates to foo.tar, which is then decomposed as a tar
        name = sanitize_filename(path.stem, fallback='data')
        target = self.workspace.place(self.workspace.allocate(), name)
        try:
            with gzip.open(path, 'rb') as source, open(target, 'wb') as dest:
                shutil.copyfileobj(source, dest)
        except (OSError, EOFError, zlib.error) as e:
            logger.warning(f"Failed to inflate gzip file {path}: {e}")
            self._discard_partial(target)
            return

        self.descend(target, lineage)

    def _expand_embedded_images(self, path: Path, lineage: Tuple[str, ...], folder: str) -> None:
        """Materialize png/jpeg images stored under folder in a zip-based document."""
        try:
            archive = zipfile.ZipFile(path, 'r')
        except _ZIP_MEMBER_ERRORS as e:
            logger.warning(f"Cannot open document container {path}: {e}")
            return

        with archive:
            images = [
                info for info in archive.infolist()
                if info.filename.startswith(folder)
                and not info.is_dir()
                and PurePosixPath(info.filename).suffix.lower() in EMBEDDED_IMAGE_EXTENSIONS
            ]
            if not images:
                return

            directory = self.workspace.allocate()
            for info in images:
                name = sanitize_filename(PurePosixPath(info.filename).name, fallback='image')
                target = self.workspace.place(directory, name)
                try:
                    with archive.open(info) as source, open(target, 'wb') as dest:
                        shutil.copyfileobj(source, dest)
                except _ZIP_MEMBER_ERRORS as e:
                    logger.error(f"Error writing embedded image '{info.filename}' from {path}: {e}")
                    self._discard_partial(target)
                    continue

                self.descend(target, lineage)

    def _expand_word_media(self, path: Path, lineage: Tuple[str, ...]) -> None:
        self._expand_embedded_images(path, lineage, WORD_MEDIA_FOLDER)

    def _expand_odf_pictures(self, path: Path, lineage: Tuple[str, ...]) -> None:
        self._expand_embedded_images(path, lineage, ODF_PICTURES_FOLDER)

    def _expand_eml(self, path: Path, lineage: Tuple[str, ...]) -> None:
        try:
            with open(path, 'rb') as f:
                message = email.message_from_binary_file(f, policy=policy.default)
            body_text = self._mime_body_text(message)
        except (OSError, *_MIME_ERRORS) as e:
            logger.warning(f"Cannot parse e-mail message {path}: {e}")
            return

        directory = self.workspace.allocate()
        body_path = self.workspace.place(directory, MESSAGE_BODY_FILENAME)
        body_path.write_text(body_text, encoding='utf-8')
        self.descend(body_path, lineage)

        for index, part in enumerate(message.iter_attachments(), start=1):
            try:
                name, data = self._mime_attachment(part, index)
            except _MIME_ERRORS as e:
                logger.warning(f"Skipping unreadable attachment {index} in {path}: {e}")
                continue
            if data is None:
                logger.debug(f"Attachment {index} in {path} has no payload")
                continue

            target = self.workspace.place(directory, name)
            target.write_bytes(data)
            self.descend(target, lineage)

    @staticmethod
    def _mime_body_text(message: EmailMessage) -> str:
        subject = str(message.get('subject', '') or '')
        body_part = message.get_body(preferencelist=('plain', 'html'))
        body = body_part.get_content() if body_part is not None else ''
        return subject + "\n\n" + body

    @staticmethod
    def _mime_attachment(part: EmailMessage, index: int) -> Tuple[str, Optional[bytes]]:
        """Name and decoded bytes of one MIME attachment.

        Unnamed attachments are numbered so repeated scans name them
        identically. Attached messages are kept whole as .eml files.
        """
        filename = part.get_filename()
        name = sanitize_filename(filename, fallback='') if filename else ''
        if not name:
            name = f"attachment_{index}"

        if part.get_content_type() == 'message/rfc822':
            if not name.lower().endswith('.eml'):
                name += '.eml'
            payload = part.get_payload()
            inner = payload[0] if isinstance(payload, list) and payload else None
            return name, inner.as_bytes() if inner is not None else None

        return name, part.get_payload(decode=True)

    def _expand_msg(self, path: Path, lineage: Tuple[str, ...]) -> None:
        MsgWalker(self).walk(path, lineage)

    def _expand_workbook(self, path: Path, lineage: Tuple[str, ...], file_format: str) -> None:
        try:
            workbook = Workbook(path, file_format)
            workbook.open()
        except CorruptedFileError as e:
            logger.warning(f"Cannot decompose workbook: {e}")
            return

        with workbook:
            directory = self.workspace.allocate()

            for module_name, code in workbook.vba_modules():
                name = VBA_MODULE_PREFIX + sanitize_filename(module_name, fallback='module')
                target = self.workspace.place(directory, name)
                target.write_text(code, encoding='utf-8')
                self.descend(target, lineage)

            for sheet_name, rows in workbook.worksheets():
                text = sheet_to_text(rows)
                if not text:
                    logger.debug(f"Sheet '{sheet_name}' in {path} is empty")
                    continue
                target = self.workspace.place(directory, sanitize_filename(sheet_name, fallback='sheet'))
                target.write_text(text, encoding='utf-8')
                self.descend(target, lineage)

    def _expand_pdf(self, path: Path, lineage: Tuple[str, ...]) -> None:
        page_count = self.tools.pdf_page_count(path)
        logger.debug(f"PDF {path} has {page_count} page(s)")
        directory = self.workspace.allocate()

        for page in range(1, page_count + 1):
            text_path = directory / f"page {page}"
            self.tools.pdf_page_text(path, page, text_path)
            if text_path.exists():
                self.descend(text_path, lineage)
            else:
                logger.warning(f"pdftotext wrote no output for page {page} of {path}")

            for image_path in self.tools.pdf_page_images(path, page, directory / f"page {page} image"):
                if image_path.exists():
                    self.descend(image_path, lineage)
                else:
                    logger.warning(f"pdfimages listed missing image {image_path}")


def decompose(
    path: Path,
    depth: int,
    lineage: Sequence[str],
    accumulator: List[LeafDescriptor],
    *,
    workspace: TempWorkspace,
    config: Optional[ScanConfig] = None,
    tools: Optional[ExternalTools] = None,
) -> None:
    """
    Append the leaves of path, and of everything nested in it, to accumulator.
    
    Args:
        path: File to decompose
        depth: Nesting depth of path
        lineage: Display names of path's containers, outermost first
        accumulator: List receiving LeafDescriptors in depth-first order
        workspace: Scratch storage for materialized children
        config: Scan settings
        tools: External tool runner
    """
    Decomposer(workspace, config=config, tools=tools, accumulator=accumulator).decompose(path, depth, lineage)
