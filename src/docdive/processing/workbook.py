"""Read-only access to spreadsheet workbooks of every supported format.

Each backend library exposes sheets and cells differently. Workbook
hides that behind two iterators: worksheets() yields (name, rows) for
real worksheets only (chart and dialog sheets are skipped) and
vba_modules() yields (module name, source code) for embedded macros.
"""

import datetime
import logging
import zipfile
from pathlib import Path
from typing import Any, Iterable, Iterator, List, Optional, Sequence, Tuple

import openpyxl
import pyxlsb
import xlrd
from odf import teletype
from odf.opendocument import load as load_odf
from odf.table import Table, TableCell, TableRow
from openpyxl.utils.exceptions import InvalidFileException
from xlrd.compdoc import CompDocError
from oletools.olevba import OlevbaBaseException, VBA_Parser

from docdive.common import CorruptedFileError

logger = logging.getLogger(__name__)

# Format tag -> backend
OPENPYXL_FORMATS = frozenset({'xlsx', 'xlsm', 'xlam'})
XLRD_FORMATS = frozenset({'xls'})
PYXLSB_FORMATS = frozenset({'xlsb'})
ODF_FORMATS = frozenset({'ods'})
WORKBOOK_FORMATS = OPENPYXL_FORMATS | XLRD_FORMATS | PYXLSB_FORMATS | ODF_FORMATS

# Errors the backends raise for damaged or mislabelled files
_BACKEND_ERRORS = (
    OSError,
    ValueError,
    KeyError,
    IndexError,
    zipfile.BadZipFile,
    InvalidFileException,
    xlrd.XLRDError,
    CompDocError,
)

Row = Sequence[Any]


def format_cell(value: Any) -> str:
    """Render one cell value the way it reads in the sheet.

    Whole floats lose their ".0" (spreadsheets store all numbers as
    floats), None is the empty string.
    """
    if value is None:
        return ''
    if isinstance(value, bool):
        return 'TRUE' if value else 'FALSE'
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    return str(value)


def sheet_to_text(rows: Iterable[Row]) -> str:
    """Flatten rows to tab-separated lines, dropping rows with no content."""
    lines = []
    for row in rows:
        line = '\t'.join(format_cell(value) for value in row)
        if line.strip():
            lines.append(line + '\n')
    return ''.join(lines)


class Workbook:
    """A workbook opened with the backend matching its format tag.

    Usage:
        with Workbook(path, 'xlsx') as workbook:
            for name, rows in workbook.worksheets():
                ...
    """

    def __init__(self, path: Path, file_format: str):
        if file_format not in WORKBOOK_FORMATS:
            raise ValueError(f"Not a workbook format: {file_format}")
        self.path = Path(path)
        self.file_format = file_format
        self._book: Any = None
        self._stream = None

    def __enter__(self) -> 'Workbook':
        if self._book is None:
            self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def open(self) -> None:
        """Open the workbook.

        Raises:
            CorruptedFileError: If the backend cannot read the file
        """
        try:
            if self.file_format in OPENPYXL_FORMATS:
                # A file object skips openpyxl's extension check, which
                # rejects .xlam and extensionless files
                self._stream = open(self.path, 'rb')
                self._book = openpyxl.load_workbook(self._stream, read_only=True, data_only=True)
            elif self.file_format in XLRD_FORMATS:
                self._book = xlrd.open_workbook(str(self.path), on_demand=True)
            elif self.file_format in PYXLSB_FORMATS:
                self._book = pyxlsb.open_workbook(str(self.path))
            else:
                self._book = load_odf(str(self.path))
        except _BACKEND_ERRORS as e:
            self.close()
            raise CorruptedFileError(
                f"Cannot open workbook {self.path}: {e}",
                file=str(self.path),
                format=self.file_format,
            ) from e

    def close(self) -> None:
        book, self._book = self._book, None
        if book is not None:
            if self.file_format in OPENPYXL_FORMATS:
                book.close()
            elif self.file_format in XLRD_FORMATS:
                book.release_resources()
            elif self.file_format in PYXLSB_FORMATS:
                book.close()
        if self._stream is not None:
            self._stream.close()
            self._stream = None

    def worksheets(self) -> Iterator[Tuple[str, List[Row]]]:
        """Yield (sheet name, rows) for every worksheet, in workbook order.

        A sheet that fails to read is logged and skipped.
        """
        if self._book is None:
            raise RuntimeError("Workbook is not open")

        if self.file_format in OPENPYXL_FORMATS:
            # .worksheets excludes chartsheets
            sheets = [(ws.title, ws) for ws in self._book.worksheets]
            reader = self._openpyxl_rows
        elif self.file_format in XLRD_FORMATS:
            # xlrd never loads chart or macro sheets
            sheets = [(name, name) for name in self._book.sheet_names()]
            reader = self._xlrd_rows
        elif self.file_format in PYXLSB_FORMATS:
            sheets = [(name, name) for name in self._book.sheets]
            reader = self._pyxlsb_rows
        else:
            sheets = [
                (table.getAttribute('name') or '', table)
                for table in self._book.spreadsheet.getElementsByType(Table)
            ]
            reader = self._odf_rows

        for name, handle in sheets:
            try:
                rows = reader(handle)
            except _BACKEND_ERRORS as e:
                logger.warning(f"Skipping unreadable sheet '{name}' in {self.path}: {e}")
                continue
            yield name, rows

    def _openpyxl_rows(self, worksheet) -> List[Row]:
        return list(worksheet.iter_rows(values_only=True))

    def _xlrd_rows(self, name: str) -> List[Row]:
        sheet = self._book.sheet_by_name(name)
        try:
            return [
                [None if cell.ctype == xlrd.XL_CELL_EMPTY else cell.value for cell in row]
                for row in sheet.get_rows()
            ]
        finally:
            self._book.unload_sheet(name)

    def _pyxlsb_rows(self, name: str) -> List[Row]:
        with self._book.get_sheet(name) as sheet:
            return [[cell.v for cell in row] for row in sheet.rows()]

    def _odf_rows(self, table) -> List[Row]:
        rows = []
        for table_row in table.getElementsByType(TableRow):
            values: List[Any] = []
            pending_empty = 0
            for cell in table_row.getElementsByType(TableCell):
                repeat = int(cell.getAttribute('numbercolumnsrepeated') or 1)
                text = teletype.extractText(cell)
                if not text:
                    # Trailing blank cells are often repeated thousands of
                    # times, only materialize blanks followed by content
                    pending_empty += repeat
                    continue
                values.extend([None] * pending_empty)
                pending_empty = 0
                values.extend([text] * repeat)
            if not values:
                # Blank rows pad sheets out to their full height, keep one
                rows.append(values)
                continue
            repeat_rows = int(table_row.getAttribute('numberrowsrepeated') or 1)
            rows.extend(list(values) for _ in range(repeat_rows))
        return rows

    def vba_modules(self) -> Iterator[Tuple[str, str]]:
        """Yield (module name, source code) for each embedded VBA module.

        Workbooks without a VBA project yield nothing; an unreadable VBA
        project is logged and yields nothing.
        """
        try:
            parser = VBA_Parser(str(self.path))
        except (OlevbaBaseException, OSError) as e:
            logger.debug(f"No VBA project readable in {self.path}: {e}")
            return

        try:
            if not parser.detect_vba_macros():
                return
            modules = list(parser.extract_macros())
        except (OlevbaBaseException, OSError) as e:
            logger.warning(f"Failed to extract VBA from {self.path}: {e}")
            return
        finally:
            parser.close()

        for _, _, vba_filename, vba_code in modules:
            if isinstance(vba_code, bytes):
                vba_code = vba_code.decode('utf-8', errors='replace')
            module_name = vba_filename.rsplit('.', 1)[0] if '.' in vba_filename else vba_filename
            yield module_name, vba_code
