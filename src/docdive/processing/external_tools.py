"""External command-line tools: poppler/xpdf PDF utilities and tesseract."""

import logging
import shutil
import subprocess
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .config import ToolsConfig
from .errors import ExternalToolError, ToolNotFoundError

logger = logging.getLogger(__name__)

PDF_TOOLS = ('pdfinfo', 'pdftotext', 'pdfimages')
OCR_TOOLS = ('tesseract',)

# Lines of table header printed by poppler's `pdfimages -list`
PDFIMAGES_LIST_HEADER_LINES = 2


class ExternalTools:
    """Runs the external tools the decomposer and OCR depend on.

    Tools run synchronously without a timeout. A tool that cannot be
    launched always raises ExternalToolError; for the PDF tools any
    output on stderr does too.
    """

    def __init__(self, config: Optional[ToolsConfig] = None, ocr_language: str = "eng"):
        self.config = config or ToolsConfig()
        self.ocr_language = ocr_language

    def run(self, args: Sequence[str], fail_on_stderr: bool = True) -> subprocess.CompletedProcess:
        """Run a command to completion.

        Args:
            args: Executable followed by its arguments
            fail_on_stderr: Treat any stderr output as a failure

        Returns:
            The completed process with bytes stdout/stderr

        Raises:
            ExternalToolError: If the tool cannot be launched, or wrote to
                stderr while fail_on_stderr is set
        """
        args = [str(a) for a in args]
        logger.debug(f"Running {args}")
        try:
            result = subprocess.run(args, capture_output=True)
        except OSError as e:
            raise ExternalToolError(
                f"Failed to execute {args[0]}: {e}", command=args
            ) from e

        if fail_on_stderr and result.stderr:
            stderr = result.stderr.decode('utf-8', errors='replace').strip()
            raise ExternalToolError(
                f"Error returned from {args[0]}: {stderr}",
                command=args,
                returncode=result.returncode,
            )
        return result

    def pdf_page_count(self, pdf_path: Path) -> int:
        """Number of pages reported by pdfinfo.

        Raises:
            ExternalToolError: If pdfinfo fails or reports no pages
        """
        result = self.run([self.config.pdfinfo, pdf_path])
        output = result.stdout.decode('utf-8', errors='replace')

        page_count = 0
        for line in output.splitlines():
            if line.startswith('Pages:'):
                fields = line.split()
                try:
                    page_count = int(fields[-1])
                except (IndexError, ValueError) as e:
                    raise ExternalToolError(
                        f"Unparseable page count from pdfinfo: {line!r}", file=str(pdf_path)
                    ) from e

        if page_count == 0:
            raise ExternalToolError("pdfinfo reported no pages", file=str(pdf_path))
        return page_count

    def pdf_page_text(self, pdf_path: Path, page: int, output_path: Path) -> None:
        """Render one page's text to output_path."""
        self.run([
            self.config.pdftotext,
            '-f', page, '-l', page,
            pdf_path, output_path,
        ])

    def pdf_page_images(self, pdf_path: Path, page: int, prefix: Path) -> List[Path]:
        """Extract the raster images of one page.

        Args:
            pdf_path: PDF file
            page: 1-based page number
            prefix: Output path prefix; the tool appends its own suffixes

        Returns:
            Image files written, in the order the tool produced them
        """
        if sys.platform == 'win32':
            return self._pdf_page_images_single_pass(pdf_path, page, prefix)
        return self._pdf_page_images_two_pass(pdf_path, page, prefix)

    def _pdf_page_images_single_pass(self, pdf_path: Path, page: int, prefix: Path) -> List[Path]:
        # xpdf writes the images and lists "<file>: <details>" per image
        result = self.run([
            self.config.pdfimages,
            '-f', page, '-l', page, '-list',
            pdf_path, prefix,
        ])
        images = []
        for line in result.stdout.decode('utf-8', errors='replace').splitlines():
            image_name, sep, _ = line.partition(': ')
            if sep:
                images.append(Path(image_name))
        return images

    def _pdf_page_images_two_pass(self, pdf_path: Path, page: int, prefix: Path) -> List[Path]:
        # poppler: list first, extract only if the page has images
        listing = self.run([
            self.config.pdfimages,
            '-f', page, '-l', page, '-list',
            pdf_path,
        ])
        lines = listing.stdout.decode('utf-8', errors='replace').splitlines()
        image_count = max(0, len(lines) - PDFIMAGES_LIST_HEADER_LINES)
        if image_count == 0:
            return []

        self.run([
            self.config.pdfimages,
            '-f', page, '-l', page,
            pdf_path, prefix,
        ])
        return sorted(prefix.parent.glob(f"{prefix.name}-*"))

    def ocr(self, image_path: Path, output_prefix: Path) -> Optional[Path]:
        """Run tesseract on an image.

        tesseract reports progress on stderr, so only a failed launch is
        an error here.

        Returns:
            The text file tesseract wrote, or None if it wrote nothing
        """
        result = self.run(
            [self.config.tesseract, '-l', self.ocr_language, image_path, output_prefix],
            fail_on_stderr=False,
        )
        output_path = output_prefix.with_name(output_prefix.name + '.txt')
        if output_path.exists():
            return output_path

        logger.warning(
            f"tesseract produced no output for {image_path} (exit code {result.returncode})"
        )
        return None


def check_tool_availability(config: Optional[ToolsConfig] = None) -> Dict[str, bool]:
    """
    Check availability of the external tools.
    
    Returns:
        Dictionary mapping tool names to availability status:
        - 'pdfinfo', 'pdftotext', 'pdfimages': PDF decomposition
        - 'tesseract': OCR of raster images
    """
    config = config or ToolsConfig()
    return {
        name: shutil.which(getattr(config, name)) is not None
        for name in PDF_TOOLS + OCR_TOOLS
    }


def check_required_tools(
    config: Optional[ToolsConfig] = None,
    require_pdf: bool = True,
    require_ocr: bool = True,
) -> None:
    """
    Check that the tools a scan may need are installed.
    
    Logs availability of every tool at INFO level.
    
    Args:
        config: Tool executable configuration
        require_pdf: Whether the PDF utilities are required
        require_ocr: Whether tesseract is required
        
    Raises:
        ToolNotFoundError: If a required tool is not available
    """
    tools = check_tool_availability(config)
    required = (PDF_TOOLS if require_pdf else ()) + (OCR_TOOLS if require_ocr else ())

    missing = []
    for name, available in tools.items():
        if available:
            logger.info(f"Tool available: {{'tool': '{name}'}}")
        elif name in required:
            logger.error(f"Tool not found: {{'tool': '{name}', 'required': True}}")
            missing.append(name)
        else:
            logger.info(f"Tool not found: {{'tool': '{name}', 'required': False}}")

    if missing:
        instructions = "\n\n".join(_get_installation_instructions(name) for name in missing)
        raise ToolNotFoundError(
            f"Required tool(s) not available: {', '.join(missing)}\n\n{instructions}",
            tools=missing,
        )


def _get_installation_instructions(tool_name: str) -> str:
    """Get installation instructions for a missing tool."""
    poppler = (
        f"{tool_name} is part of poppler-utils (or xpdf). Install it:\n"
        "  - Windows: Download xpdf tools from https://www.xpdfreader.com/download.html\n"
        "  - macOS: brew install poppler\n"
        "  - Linux: sudo apt-get install poppler-utils (Debian/Ubuntu)"
    )
    instructions = {
        'pdfinfo': poppler,
        'pdftotext': poppler,
        'pdfimages': poppler,
        'tesseract': (
            "Tesseract OCR with English traineddata is required. Install it:\n"
            "  - Windows: https://github.com/UB-Mannheim/tesseract/wiki\n"
            "  - macOS: brew install tesseract\n"
            "  - Linux: sudo apt-get install tesseract-ocr tesseract-ocr-eng"
        ),
    }
    
    return instructions.get(tool_name, f"Please install {tool_name}")
