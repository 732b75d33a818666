import argparse
import logging
import sys
from datetime import timedelta
from pathlib import Path
from typing import Optional, Set

from tqdm.contrib.logging import logging_redirect_tqdm

from . import config
from .core import TakeoutFixerApp
from .exceptions import SourceRootError
from .progress import TqdmProgress


def setup_logging(log_file: Path, verbose: bool):
    """Sets up logging to both console and a log file."""
    log_level = logging.DEBUG if verbose else logging.INFO

    log_file.parent.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[
            logging.FileHandler(log_file, encoding='utf-8'),
            logging.StreamHandler(sys.stdout)
        ]
    )

    # Silence chatty libraries
    logging.getLogger("exifread").setLevel(logging.ERROR)
    logging.getLogger("PIL").setLevel(logging.WARNING)


def parse_args(argv=None):
    p = argparse.ArgumentParser(
        description="Takeout Fixer: match Google Photos sidecars and restore timestamps and GPS"
    )

    p.add_argument("src", type=Path, help="Takeout source directory")
    p.add_argument("dest", type=Path, nargs="?", default=None,
                   help=f"Destination root (default: <parent of src>/{config.DEFAULT_DEST_DIRNAME})")

    p.add_argument("--dry-run", action="store_true", help="Match and plan without copying or writing")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    p.add_argument("--log-file", type=Path, default=None,
                   help=f"Log file path (default: dest/{config.LOG_FILENAME})")

    p.add_argument("--workers", type=int, default=None, help="Parallel workers (default: CPU count)")
    p.add_argument("--batch-size", type=int, default=config.DEFAULT_BATCH_SIZE,
                   help="Files per exiftool invocation")
    p.add_argument("--recent-window-hours", type=float,
                   default=config.RECENT_UPLOAD_WINDOW.total_seconds() / 3600,
                   help="Skip files without an embedded date whose sidecar time is this recent")
    p.add_argument("--keep-within-hours", type=float, default=None,
                   help="Keep embedded timestamps within this many hours of the sidecar's "
                        f"(e.g. {config.KEEP_EXISTING_TOLERANCE.total_seconds() / 3600:g}); "
                        "default always overwrites")

    p.add_argument("--skip-dirs-file", type=Path, default=None, help="File containing paths to ignore")
    p.add_argument("--report-csv", type=Path, default=None, help="Write a per-file CSV report here")

    args = p.parse_args(argv)
    if args.batch_size < 1:
        p.error("--batch-size must be at least 1")
    if args.workers is not None and args.workers < 1:
        p.error("--workers must be at least 1")
    return args


def load_skip_dirs(skip_file: Optional[Path]) -> Set[Path]:
    if not skip_file or not skip_file.exists():
        return set()

    skips = set()
    with skip_file.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith("#"):
                skips.add(Path(line).resolve())
    return skips


def main(argv=None) -> int:
    args = parse_args(argv)

    # 1. Setup
    src_root = args.src.resolve()
    dest_root = (args.dest or src_root.parent / config.DEFAULT_DEST_DIRNAME).resolve()
    log_file = args.log_file or dest_root / config.LOG_FILENAME

    setup_logging(log_file, args.verbose)

    logging.info("=== Takeout Fixer Started ===")
    logging.info(f"Source: {src_root}")
    logging.info(f"Dest:   {dest_root}")

    keep_within = timedelta(hours=args.keep_within_hours) if args.keep_within_hours is not None else None

    # 2. Execution
    app = TakeoutFixerApp()
    try:
        with logging_redirect_tqdm():
            app.fix(
                src_root=src_root,
                dest_root=dest_root,
                dry_run=args.dry_run,
                max_workers=args.workers,
                batch_size=args.batch_size,
                recent_window=timedelta(hours=args.recent_window_hours),
                keep_within=keep_within,
                report_csv=args.report_csv,
                skip_dirs=load_skip_dirs(args.skip_dirs_file),
                progress=TqdmProgress(),
            )
    except SourceRootError as e:
        logging.error(str(e))
        return 1
    except KeyboardInterrupt:
        logging.warning("Operation cancelled by user.")
        return 1

    logging.info("=== Takeout Fixer Finished ===")
    return 0


if __name__ == "__main__":
    sys.exit(main())
