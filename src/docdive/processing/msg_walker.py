"""Walker for legacy Outlook .msg files (compound file binary format).

An .msg file is a tree of storages and streams. The message's own
properties live in streams named __substg1.0_<tag><type>; each attachment
is a child storage named __attach_version1.0_#<n>. An attachment either
carries its bytes in a binary stream or, when it is itself a message,
holds a whole nested message in an object storage.
"""

import logging
from contextlib import closing
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional, Sequence, Tuple

import olefile

from docdive.common import sanitize_filename
from .errors import MalformedMessageError, UnknownAttachmentError
from .models import LeafDescriptor

if TYPE_CHECKING:
    from .decomposer import Decomposer

logger = logging.getLogger(__name__)

# Property streams; type 001F is UTF-16LE text, 0102 binary, 000D object
SUBJECT_STREAM = '__substg1.0_0037001F'
BODY_STREAM = '__substg1.0_1000001F'
DISPLAY_NAME_STREAM = '__substg1.0_3001001F'
ATTACH_DATA_BINARY = '__substg1.0_37010102'
ATTACH_DATA_OBJECT = '__substg1.0_3701000D'
ATTACH_LONG_FILENAME_STREAM = '__substg1.0_3707001F'
ATTACH_FILENAME_STREAM = '__substg1.0_3704001F'

ATTACHMENT_STORAGE_PREFIX = '__attach_'

BODY_FILENAME = 'body.txt'
EMBEDDED_MESSAGE_SUFFIX = '.msg'

StoragePath = Tuple[str, ...]


@dataclass
class MessageContents:
    """Subject, body and attachment storages of one (possibly nested) message."""
    subject: str
    body: str
    attachments: List[StoragePath] = field(default_factory=list)

    def body_text(self) -> str:
        return self.subject + "\n\n" + self.body


def open_compound_file(path: Path) -> olefile.OleFileIO:
    """Open a compound file for reading."""
    return olefile.OleFileIO(str(path))


def _stream_path(storage: StoragePath, name: str) -> List[str]:
    return list(storage) + [name]


def read_unicode_stream(ole: olefile.OleFileIO, storage: StoragePath, name: str) -> Optional[str]:
    """Decode a UTF-16LE property stream, or None if it does not exist."""
    stream_path = _stream_path(storage, name)
    if not ole.exists(stream_path):
        return None
    data = ole.openstream(stream_path).read()
    return data.decode('utf-16-le', errors='replace').rstrip('\x00')


def list_attachment_storages(ole: olefile.OleFileIO, storage: StoragePath) -> List[StoragePath]:
    """Direct child storages of storage that hold attachments."""
    depth = len(storage)
    attachments = []
    for entry in ole.listdir(streams=False, storages=True):
        if len(entry) != depth + 1 or tuple(entry[:depth]) != tuple(storage):
            continue
        if entry[-1].lower().startswith(ATTACHMENT_STORAGE_PREFIX):
            attachments.append(tuple(entry))
    return attachments


def read_message(ole: olefile.OleFileIO, storage: StoragePath, source: Path) -> MessageContents:
    """
    Read subject, body and attachment list of the message at storage.
    
    Args:
        ole: Open compound file
        storage: Storage path of the message, () for the top-level one
        source: File being walked, for error context
        
    Returns:
        MessageContents
        
    Raises:
        MalformedMessageError: If the subject or body stream is missing
    """
    subject = read_unicode_stream(ole, storage, SUBJECT_STREAM)
    if subject is None:
        raise MalformedMessageError(
            f"Subject stream not found in {source}", file=str(source), storage='/'.join(storage)
        )

    body = read_unicode_stream(ole, storage, BODY_STREAM)
    if body is None:
        raise MalformedMessageError(
            f"Body stream not found in {source}", file=str(source), storage='/'.join(storage)
        )

    return MessageContents(
        subject=subject,
        body=body,
        attachments=list_attachment_storages(ole, storage),
    )


class MsgWalker:
    """Turns one .msg file into body and attachment files for decomposition.

    Nested messages are flattened with an explicit work-list instead of
    recursion, so arbitrarily deep chains of forwarded messages do not
    grow the call stack. Each embedded message leaves an empty
    "<display name>.msg" placeholder entry; its body and attachments are
    attributed to the lineage running through that placeholder.
    """

    def __init__(self, decomposer: 'Decomposer'):
        self.decomposer = decomposer
        self.workspace = decomposer.workspace

    def walk(self, path: Path, lineage: Tuple[str, ...]) -> None:
        """Materialize and decompose everything inside the message at path.

        Args:
            path: The .msg file
            lineage: Lineage of anything contained in the message
        """
        try:
            ole = open_compound_file(path)
        except OSError as e:
            logger.warning(f"Not a readable compound file {path}: {e}")
            return

        with closing(ole):
            self._walk(ole, path, lineage)

    def _walk(self, ole: olefile.OleFileIO, path: Path, lineage: Tuple[str, ...]) -> None:
        message = read_message(ole, (), path)
        message_dir = self.workspace.allocate()

        body_path = self.workspace.place(message_dir, BODY_FILENAME)
        body_path.write_text(message.body_text(), encoding='utf-8')
        self.decomposer.descend(body_path, lineage)

        # (lineage below the message file, attachment storages to visit)
        pending: List[Tuple[Tuple[str, ...], Sequence[StoragePath]]] = []
        if message.attachments:
            pending.append(((), message.attachments))

        while pending:
            sub_lineage, storages = pending.pop()
            batch_dir = self.workspace.allocate(parent=message_dir)
            attachment_lineage = lineage + sub_lineage
            logger.debug(f"Walking {len(storages)} attachment(s) at {list(attachment_lineage)}")

            for storage in storages:
                if ole.exists(_stream_path(storage, ATTACH_DATA_BINARY)):
                    self._extract_binary_attachment(ole, storage, path, batch_dir, attachment_lineage)
                elif ole.exists(_stream_path(storage, ATTACH_DATA_OBJECT)):
                    nested = self._extract_embedded_message(
                        ole, storage, path, batch_dir, lineage, sub_lineage
                    )
                    if nested is not None:
                        pending.append(nested)
                else:
                    raise UnknownAttachmentError(
                        f"Unknown attachment type at {'/'.join(storage)} in {path}",
                        file=str(path),
                        storage='/'.join(storage),
                    )

    def _attachment_filename(self, ole: olefile.OleFileIO, storage: StoragePath, path: Path) -> str:
        filename = read_unicode_stream(ole, storage, ATTACH_LONG_FILENAME_STREAM)
        if filename is None:
            filename = read_unicode_stream(ole, storage, ATTACH_FILENAME_STREAM)
        if filename is None:
            raise MalformedMessageError(
                f"Attachment filename stream not found in {path}",
                file=str(path),
                storage='/'.join(storage),
            )
        return sanitize_filename(filename, fallback='attachment')

    def _extract_binary_attachment(
        self,
        ole: olefile.OleFileIO,
        storage: StoragePath,
        path: Path,
        batch_dir: Path,
        attachment_lineage: Tuple[str, ...],
    ) -> None:
        filename = self._attachment_filename(ole, storage, path)
        data = ole.openstream(_stream_path(storage, ATTACH_DATA_BINARY)).read()

        out_path = self.workspace.place(batch_dir, filename)
        out_path.write_bytes(data)
        self.decomposer.descend(out_path, attachment_lineage)

    def _extract_embedded_message(
        self,
        ole: olefile.OleFileIO,
        storage: StoragePath,
        path: Path,
        batch_dir: Path,
        lineage: Tuple[str, ...],
        sub_lineage: Tuple[str, ...],
    ) -> Optional[Tuple[Tuple[str, ...], List[StoragePath]]]:
        """Record the placeholder and body of an embedded message.

        Returns:
            Work-list entry for the nested message's attachments, if any
        """
        display_name = read_unicode_stream(ole, storage, DISPLAY_NAME_STREAM)
        if display_name is None:
            raise MalformedMessageError(
                f"Embedded message display name not found in {path}",
                file=str(path),
                storage='/'.join(storage),
            )

        placeholder_name = sanitize_filename(display_name, fallback='message') + EMBEDDED_MESSAGE_SUFFIX
        placeholder = self.workspace.place(batch_dir, placeholder_name)
        placeholder.write_bytes(b'')

        placeholder_lineage = lineage + sub_lineage
        self.decomposer.add_leaf(LeafDescriptor(
            path=placeholder,
            depth=len(placeholder_lineage),
            lineage=placeholder_lineage,
            extractable=False,
        ))

        nested_sub_lineage = sub_lineage + (placeholder_name,)
        nested = read_message(ole, storage + (ATTACH_DATA_OBJECT,), path)

        body_path = self.workspace.place(placeholder.parent, BODY_FILENAME)
        body_path.write_text(nested.body_text(), encoding='utf-8')
        self.decomposer.descend(body_path, lineage + nested_sub_lineage)

        if nested.attachments:
            return (nested_sub_lineage, nested.attachments)
        return None
