import os
import logging
from pathlib import Path
from typing import Iterator, List, Optional, Set, Tuple

from .. import config
from ..exceptions import SourceRootError
from ..models import MediaRecord


def classify_kind(path: Path) -> str:
    return config.EXT_TO_KIND.get(path.suffix.lower(), 'other')


def is_sidecar(path: Path) -> bool:
    return path.suffix.lower() == config.SIDECAR_EXT


class DiskScanner:
    def scan(self,
             root: Path,
             skip_dirs: Optional[Set[Path]] = None) -> Tuple[List[MediaRecord], List[Path]]:
        """
        Lists the source tree.

        Returns:
            (media candidates, sidecar paths), both in stable traversal order.
        """
        if not root.is_dir():
            raise SourceRootError(f"Source directory {root} does not exist or is not a directory")
        try:
            with os.scandir(root):
                pass
        except OSError as e:
            raise SourceRootError(f"Cannot list source directory {root}: {e}") from e

        media: List[MediaRecord] = []
        sidecars: List[Path] = []
        ignored = 0

        for path in self._iter_files(root, skip_dirs or set()):
            name = path.name.lower()

            if name in config.IGNORED_FILENAMES or path.name.startswith("._"):
                ignored += 1
                continue

            if is_sidecar(path):
                if name in config.IGNORED_SIDECAR_NAMES:
                    logging.debug(f"Ignoring non-media JSON {path}")
                    ignored += 1
                    continue
                sidecars.append(path)
            else:
                media.append(MediaRecord(path=path, kind=classify_kind(path)))

        logging.info(f"Scanned {root}: {len(media)} media files, {len(sidecars)} sidecars, {ignored} ignored")
        return media, sidecars

    def _iter_files(self, root: Path, skip_dirs: Set[Path]) -> Iterator[Path]:
        """Depth-first walker using os.scandir for speed."""
        stack = [root]
        while stack:
            current = stack.pop()
            if skip_dirs and any(sd == current or sd in current.parents for sd in skip_dirs):
                continue

            try:
                with os.scandir(current) as it:
                    entries = list(it)
            except OSError:
                logging.warning(f"Permission denied: {current}")
                continue

            # Sort for stable traversal order
            entries.sort(key=lambda e: e.name.lower())

            dirs = []
            files = []
            for e in entries:
                if e.is_dir(follow_symlinks=False):
                    dirs.append(Path(e.path))
                elif e.is_file(follow_symlinks=False):
                    files.append(Path(e.path))

            # Push dirs to stack (reversed so we process A before Z)
            for d in reversed(dirs):
                stack.append(d)

            for f in files:
                yield f
