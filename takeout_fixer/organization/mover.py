import os
import shutil
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, Optional, Set, Tuple

from ..exceptions import FileOperationError
from ..progress import ProgressReporter


def set_file_times(path: Path, dt: datetime):
    """Sets both access and modification time."""
    ts = dt.timestamp()
    try:
        os.utime(path, (ts, ts))
    except (OSError, OverflowError, ValueError) as e:
        raise FileOperationError(f"Failed to set file times on {path}: {e}") from e


class FileMover:
    """
    Mirrors media files from the source tree into the destination tree.
    Existing destination files are overwritten so a re-run starts from the
    original bytes.
    """
    def __init__(self, source_root: Path, dest_root: Path):
        self.source_root = source_root
        self.dest_root = dest_root

    def destination_for(self, src: Path) -> Path:
        return self.dest_root / src.relative_to(self.source_root)

    def copy_file(self, src: Path, dry_run: bool = False) -> Path:
        dest = self.destination_for(src)
        if dry_run:
            logging.info(f"[DRY RUN] Copy {src} -> {dest}")
            return dest

        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(str(src), str(dest))
        except OSError as e:
            raise FileOperationError(f"Failed to copy {src} -> {dest}: {e}") from e
        return dest

    def copy_all(self,
                 sources: Iterable[Path],
                 dry_run: bool = False,
                 progress: Optional[ProgressReporter] = None) -> Tuple[Dict[Path, Path], Set[Path]]:
        """
        Returns:
            (source -> destination for every successful copy, failed sources)
        """
        progress = progress or ProgressReporter()
        sources = sorted(sources)
        copied: Dict[Path, Path] = {}
        failed: Set[Path] = set()

        logging.info(f"Copying {len(sources)} files to {self.dest_root} (DryRun={dry_run})...")
        progress.start("Copying", len(sources))
        try:
            for src in sources:
                try:
                    copied[src] = self.copy_file(src, dry_run=dry_run)
                except FileOperationError as e:
                    logging.error(str(e))
                    failed.add(src)
                progress.advance()
        finally:
            progress.finish()
        return copied, failed
