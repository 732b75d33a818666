import logging
import os
import re
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

from .. import config
from ..exceptions import SidecarParseError
from ..models import MatchResult, MediaRecord, SidecarRecord
from ..progress import ProgressReporter
from ..scanning.filesystem import DiskScanner
from .sidecar import read_sidecar


@dataclass
class MatchState:
    """
    Everything the matching passes read and write.

    Each pass takes the state and returns it; nothing else holds a reference
    while the passes run.
    """
    media: Dict[Path, MediaRecord]
    sidecars: Dict[Path, SidecarRecord]

    # directory -> file name -> media path
    names_by_dir: Dict[Path, Dict[str, Path]] = field(default_factory=dict)

    mapping: Dict[Path, Path] = field(default_factory=dict)
    match_pass: Dict[Path, str] = field(default_factory=dict)
    resolved_sidecars: Set[Path] = field(default_factory=set)

    title_matches: Dict[Path, Path] = field(default_factory=dict)
    duplicate_sidecars: List[Path] = field(default_factory=list)
    deferred: List[Path] = field(default_factory=list)

    ambiguous: Dict[Path, List[Path]] = field(default_factory=dict)
    conflicts: List[Tuple[Path, Path, Path]] = field(default_factory=list)
    dangling: Set[Path] = field(default_factory=set)

    def __post_init__(self):
        for path in sorted(self.media):
            self.names_by_dir.setdefault(path.parent, {})[path.name] = path

    def lookup(self, directory: Path, name: str) -> Optional[Path]:
        """Exact name only; case mismatches are left to the prefix pass."""
        return self.names_by_dir.get(directory, {}).get(name)

    def unclaimed_in(self, directory: Path) -> List[Path]:
        return [p for _, p in sorted(self.names_by_dir.get(directory, {}).items())
                if p not in self.mapping]

    def register(self, media: Path, sidecar: Path, how: str) -> bool:
        """First registration wins; later claims are recorded as conflicts."""
        existing = self.mapping.get(media)
        if existing is not None:
            if existing != sidecar:
                logging.warning(f"Conflict for {media}: keeping {existing}, rejecting {sidecar}")
                self.conflicts.append((media, existing, sidecar))
            self.resolved_sidecars.add(sidecar)
            return False

        self.mapping[media] = sidecar
        self.match_pass[media] = how
        self.resolved_sidecars.add(sidecar)
        logging.debug(f"Matched {media.name} -> {sidecar.name} ({how})")
        return True


# --- Name helpers ---

def split_duplicate_suffix(sidecar_name: str) -> Tuple[str, Optional[int]]:
    """'X.supplemental-metadata(2).json' -> ('X.supplemental-metadata', 2)"""
    m = config.DUPLICATE_SIDECAR_RE.match(sidecar_name)
    if m:
        return m.group('base'), int(m.group('counter'))
    return sidecar_name[:-len(config.SIDECAR_EXT)], None


def strip_partial_suffix(value: str, suffix: str, allow_partial: bool) -> str:
    """
    Removes `suffix` from the end of `value`. With allow_partial, a truncated
    leading part of the suffix (at least the dot) is removed as well.
    """
    lowered = value.lower()
    suffix = suffix.lower()
    if lowered.endswith(suffix):
        return value[:-len(suffix)]
    if allow_partial:
        for k in range(len(suffix) - 1, 0, -1):
            if lowered.endswith(suffix[:k]):
                return value[:-k]
    return value


def sidecar_base(sidecar_name: str) -> Tuple[str, Optional[int]]:
    """
    Sidecar file name without duplicate counter, '.json' and marker remnant.
    """
    base, counter = split_duplicate_suffix(sidecar_name)
    truncated = len(base) >= config.MAX_SIDECAR_STEM_LENGTH
    base = strip_partial_suffix(base, '.' + config.SIDECAR_MARKER, allow_partial=truncated)
    return base, counter


_EDITED_RE = re.compile('|'.join(re.escape(m) for m in config.EDITED_MARKERS), re.IGNORECASE)


def strip_edited_marker(name: str) -> Optional[str]:
    stripped, count = _EDITED_RE.subn('', name, count=1)
    return stripped if count else None


def _ext(name: str) -> str:
    return os.path.splitext(name)[1].lower()


def _stem(name: str) -> str:
    return os.path.splitext(name)[0]


# --- Passes ---

def title_pass(state: MatchState) -> MatchState:
    for sc_path in sorted(state.sidecars):
        _, counter = split_duplicate_suffix(sc_path.name)
        if counter is not None:
            state.duplicate_sidecars.append(sc_path)
            continue

        title = state.sidecars[sc_path].title
        media = state.lookup(sc_path.parent, title) if title else None
        if media is None:
            state.deferred.append(sc_path)
            continue

        if state.register(media, sc_path, 'title'):
            state.title_matches[media] = sc_path
    return state


def _original_of(state: MatchState, media: Path) -> Optional[Path]:
    original_name = strip_edited_marker(media.name)
    if original_name is None:
        return None
    return state.lookup(media.parent, original_name)


def _inherit_edited(state: MatchState, matched: Dict[Path, Path]):
    for media in sorted(state.media):
        if media in state.mapping:
            continue
        original = _original_of(state, media)
        if original is not None and original in matched:
            state.register(media, matched[original], 'edited')


def edited_pass(state: MatchState) -> MatchState:
    _inherit_edited(state, state.title_matches)
    return state


def late_edited_pass(state: MatchState) -> MatchState:
    """Edited copies whose original was only matched by a later pass."""
    matched = {m: sc for m, sc in state.mapping.items() if state.match_pass[m] != 'ambiguous'}
    _inherit_edited(state, matched)
    return state


def duplicate_pass(state: MatchState) -> MatchState:
    for sc_path in state.duplicate_sidecars:
        media = _resolve_duplicate(state, sc_path)
        if media is None:
            state.deferred.append(sc_path)
        else:
            state.register(media, sc_path, 'duplicate')
    return state


def _resolve_duplicate(state: MatchState, sc_path: Path) -> Optional[Path]:
    title = state.sidecars[sc_path].title
    base, counter = sidecar_base(sc_path.name)
    if not title:
        return None

    suffix = f"({counter})"
    stem, ext = os.path.splitext(title)

    # (a) title already carries the counter
    if stem.endswith(suffix):
        media = state.lookup(sc_path.parent, title)
        if media is not None:
            return media

    # (b) counter inserted before the extension
    media = state.lookup(sc_path.parent, f"{stem}{suffix}{ext}")
    if media is not None:
        return media

    # (c) own base name against a unique media file with the same counter and extension
    truncated = len(base) >= config.MAX_SIDECAR_STEM_LENGTH
    prefix = strip_partial_suffix(base, ext, allow_partial=truncated).lower() if ext else base.lower()
    hits = [
        p for p in state.unclaimed_in(sc_path.parent)
        if p.name.lower().startswith(prefix)
        and _stem(p.name).endswith(suffix)
        and _ext(p.name) == ext.lower()
    ]
    if len(hits) == 1:
        return hits[0]
    return None


def _prefix_candidates(state: MatchState, sc_path: Path) -> List[Path]:
    base, counter = sidecar_base(sc_path.name)
    title = state.sidecars[sc_path].title
    title_ext = _ext(title) if title else ''

    prefix = base
    if counter is not None and title_ext:
        truncated = len(base) >= config.MAX_SIDECAR_STEM_LENGTH
        prefix = strip_partial_suffix(base, title_ext, allow_partial=truncated)
    prefix = prefix.lower()
    if not prefix:
        return []

    candidates = [p for p in state.unclaimed_in(sc_path.parent) if p.name.lower().startswith(prefix)]

    # An edited copy follows its original rather than competing with it
    candidates = [p for p in candidates if _original_of(state, p) not in candidates]

    # Each narrowing only applies if something survives it
    if title_ext:
        narrowed = [p for p in candidates if _ext(p.name) == title_ext]
        if narrowed:
            candidates = narrowed
    if counter is not None:
        narrowed = [p for p in candidates if _stem(p.name).endswith(f"({counter})")]
        if narrowed:
            candidates = narrowed
    return candidates


def prefix_pass(state: MatchState) -> MatchState:
    pending = sorted(state.deferred)

    # Round 1: settle every sidecar with a single candidate first
    remaining = []
    for sc_path in pending:
        candidates = _prefix_candidates(state, sc_path)
        if len(candidates) == 1:
            state.register(candidates[0], sc_path, 'prefix')
        else:
            remaining.append(sc_path)

    # Round 2: re-evaluate the rest against what is left
    for sc_path in remaining:
        candidates = _prefix_candidates(state, sc_path)
        if len(candidates) == 1:
            state.register(candidates[0], sc_path, 'prefix')
        elif len(candidates) > 1:
            names = ", ".join(p.name for p in candidates)
            logging.warning(f"Ambiguous sidecar {sc_path} applied to {len(candidates)} files: {names}")
            state.ambiguous[sc_path] = candidates
            for media in candidates:
                state.register(media, sc_path, 'ambiguous')
        else:
            logging.warning(f"No media file found for sidecar {sc_path}")
            state.dangling.add(sc_path)
    return state


def find_motion_companions(state: MatchState) -> Set[Path]:
    """Unmatched videos sitting next to a still image with the same stem."""
    companions = set()
    for media in sorted(state.media):
        if media in state.mapping or state.media[media].kind != 'video':
            continue
        stem = _stem(media.name).lower()
        for other in state.names_by_dir.get(media.parent, {}).values():
            if other != media and state.media[other].kind == 'image' and _stem(other.name).lower() == stem:
                logging.info(f"Skipping motion image {media.name} - corresponding image file exists")
                companions.add(media)
                break
    return companions


class SidecarMatcher:
    """
    Pairs every media file in a Takeout tree with its JSON sidecar.

    Passes run in a fixed order over one MatchState:
      1. title       - '<dir>/<title>' exists
      2. edited      - '-edited' copies inherit their original's sidecar
      3. duplicate   - '(N).json' sidecars against '(N)' media
      4. prefix      - truncated sidecar names as a filename prefix
      5. edited      - '-edited' copies of originals matched in passes 3 and 4
    """

    def __init__(self, scanner: Optional[DiskScanner] = None, workers: Optional[int] = None):
        self.scanner = scanner or DiskScanner()
        self.workers = workers or os.cpu_count() or 4

    def match(self, source_root: Path, progress: Optional[ProgressReporter] = None,
              skip_dirs: Optional[Set[Path]] = None) -> MatchResult:
        progress = progress or ProgressReporter()
        media_list, sidecar_paths = self.scanner.scan(source_root, skip_dirs)

        sidecars, unreadable = self._read_sidecars(sidecar_paths, progress)
        state = MatchState(media={m.path: m for m in media_list}, sidecars=sidecars)

        state = title_pass(state)
        state = edited_pass(state)
        state = duplicate_pass(state)
        state = prefix_pass(state)
        state = late_edited_pass(state)
        companions = find_motion_companions(state)

        result = MatchResult(
            media=state.media,
            sidecars=state.sidecars,
            mapping=state.mapping,
            match_pass=state.match_pass,
            dangling=state.dangling,
            unreadable=unreadable,
            motion_companions=companions,
            ambiguous=state.ambiguous,
            conflicts=state.conflicts,
        )
        for media in sorted(state.media):
            if media not in state.mapping and media not in companions:
                logging.warning(f"No JSON file found for {media}, copying to destination as-is")
                result.orphans.add(media)

        logging.info(
            f"Matching complete: {len(result.mapping)} matched, {len(result.orphans)} orphans, "
            f"{len(result.dangling)} dangling, {len(result.ambiguous)} ambiguous, "
            f"{len(result.conflicts)} conflicts, {len(result.unreadable)} unreadable"
        )
        return result

    def _read_sidecars(self, paths: List[Path],
                       progress: ProgressReporter) -> Tuple[Dict[Path, SidecarRecord], Set[Path]]:
        records: Dict[Path, SidecarRecord] = {}
        unreadable: Set[Path] = set()

        progress.start("Reading sidecars", len(paths))
        try:
            with ThreadPoolExecutor(max_workers=self.workers) as executor:
                futures = {executor.submit(read_sidecar, p): p for p in paths}
                for future in as_completed(futures):
                    path = futures[future]
                    try:
                        records[path] = future.result()
                    except SidecarParseError as e:
                        logging.warning(str(e))
                        unreadable.add(path)
                    progress.advance()
        finally:
            progress.finish()
        return records, unreadable
