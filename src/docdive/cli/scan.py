"""CLI command for scanning a file."""

import argparse
import json
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import List, Optional

from docdive.common import ConfigLoader, setup_logging
from docdive.processing.config import ExtractTextConfig
from docdive.processing.errors import ScanError, ToolNotFoundError, classify_error
from docdive.processing.external_tools import check_required_tools
from docdive.processing.models import OutputRecord, dump_records, load_records
from docdive.processing.reconciler import scan

APP_NAME = "docdive"


def install_signal_handlers(cancel_event: threading.Event) -> None:
    """Set cancel_event on SIGINT/SIGTERM so the scan stops between leaves."""
    def handler(signum, frame):
        logging.getLogger(__name__).warning(
            f"Received {signal.Signals(signum).name}, stopping after the current item"
        )
        cancel_event.set()

    signal.signal(signal.SIGINT, handler)
    if hasattr(signal, 'SIGTERM'):
        signal.signal(signal.SIGTERM, handler)


def scan_command(
    config: ExtractTextConfig,
    input_path: Path,
    prior_path: Optional[Path] = None,
    output_path: Optional[Path] = None,
    cancel_event: Optional[threading.Event] = None,
) -> int:
    """Scan one file and write its records.
    
    Args:
        config: Configuration object
        input_path: File to scan
        prior_path: Records from an earlier scan of the same file
        output_path: Where to write records (stdout if None)
        cancel_event: Cancellation flag
    
    Returns:
        Exit code (0 for success, including cancellation)
    """
    logger = logging.getLogger(__package__ or __name__)

    if not input_path.is_file():
        logger.error(f"Input file does not exist: {input_path}")
        return 1

    prior: List[OutputRecord] = []
    if prior_path is not None:
        try:
            prior = load_records(prior_path)
        except (OSError, ValueError, KeyError) as e:
            logger.error(f"Cannot read prior results {prior_path}: {e}")
            return 1
        logger.info(f"Loaded {len(prior)} prior record(s) from {prior_path}")

    try:
        records = scan(
            input_path,
            prior_results=prior,
            cancel_event=cancel_event,
            config=config.scan,
            tools_config=config.tools,
        )
    except ScanError as e:
        logger.error(
            f"Scan failed ({e.kind.value}, {classify_error(e)} problem): {e.message}"
        )
        return 1

    if output_path is not None:
        dump_records(records, output_path)
        logger.info(f"Wrote {len(records)} record(s) to {output_path}")
    else:
        json.dump([r.to_dict() for r in records], sys.stdout, indent=2, ensure_ascii=False)
        sys.stdout.write("\n")
    return 0


def check_tools_command(config: ExtractTextConfig) -> int:
    """Report which external tools are installed.
    
    Returns:
        Exit code (0 if every tool is available)
    """
    logger = logging.getLogger(__package__ or __name__)
    try:
        check_required_tools(config.tools)
    except ToolNotFoundError as e:
        logger.error(e.message)
        return 1
    logger.info("All external tools are available")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for scan command."""
    parser = argparse.ArgumentParser(
        description="Recursively decompose a document or archive and extract its text"
    )
    parser.add_argument(
        "input",
        type=Path,
        nargs="?",
        help="File to scan"
    )
    parser.add_argument(
        "--prior",
        type=Path,
        help="JSON records from an earlier scan; unchanged items are not extracted again"
    )
    parser.add_argument(
        "--output",
        type=Path,
        help="Write records to this JSON file instead of stdout"
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to config file (defaults.toml)"
    )
    parser.add_argument(
        "--keep-temp",
        action="store_true",
        help="Keep materialized temp files for inspection"
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Extract text even for items unchanged since the prior scan"
    )
    parser.add_argument(
        "--check-tools",
        action="store_true",
        help="Check that pdfinfo, pdftotext, pdfimages and tesseract are installed, then exit"
    )

    args = parser.parse_args(argv)
    if args.input is None and not args.check_tools:
        parser.error("the input file is required unless --check-tools is given")

    loader = ConfigLoader(
        app_name=APP_NAME,
        config_class=ExtractTextConfig
    )
    config = loader.load(defaults_path=args.config)

    if args.keep_temp:
        config.scan.delete_temp_files = False
    if args.force:
        config.scan.force_reextract = True

    setup_logging(
        level=config.logging.level,
        format=config.logging.format,
        log_file=Path(config.logging.file) if config.logging.file else None,
        max_file_size_mb=config.logging.max_file_size_mb,
        backup_count=config.logging.backup_count,
    )
    logging.getLogger(__name__).debug(
        f"Configuration files: {[str(p) for p in loader.sources] or 'none'}"
    )

    if args.check_tools:
        return check_tools_command(config)

    cancel_event = threading.Event()
    install_signal_handlers(cancel_event)

    return scan_command(
        config=config,
        input_path=args.input,
        prior_path=args.prior,
        output_path=args.output,
        cancel_event=cancel_event,
    )


if __name__ == "__main__":
    sys.exit(main())
