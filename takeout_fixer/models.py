from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple, Union


@dataclass(frozen=True)
class GeoPoint:
    latitude: float
    longitude: float
    altitude: Optional[float] = None

    def is_valid(self) -> bool:
        """In range and not the (0, 0) placeholder."""
        if not (-90.0 <= self.latitude <= 90.0 and -180.0 <= self.longitude <= 180.0):
            return False
        return not (self.latitude == 0 and self.longitude == 0)


@dataclass(frozen=True)
class MediaRecord:
    """
    A media candidate found in the source tree.
    """
    path: Path
    kind: str               # image/video/other


@dataclass(frozen=True)
class SidecarRecord:
    """
    A decoded Takeout JSON sidecar.
    """
    path: Path
    title: Optional[str] = None
    photo_taken_time: Optional[datetime] = None
    creation_time: Optional[datetime] = None
    geo: Optional[GeoPoint] = None
    geo_exif: Optional[GeoPoint] = None

    def best_geo(self) -> Optional[GeoPoint]:
        for candidate in (self.geo, self.geo_exif):
            if candidate is not None and candidate.is_valid():
                return candidate
        return None


@dataclass
class MatchResult:
    media: Dict[Path, MediaRecord] = field(default_factory=dict)
    sidecars: Dict[Path, SidecarRecord] = field(default_factory=dict)

    # media path -> sidecar path
    mapping: Dict[Path, Path] = field(default_factory=dict)
    # media path -> which pass matched it (title/edited/duplicate/prefix/ambiguous)
    match_pass: Dict[Path, str] = field(default_factory=dict)

    orphans: Set[Path] = field(default_factory=set)
    dangling: Set[Path] = field(default_factory=set)
    unreadable: Set[Path] = field(default_factory=set)
    motion_companions: Set[Path] = field(default_factory=set)

    # sidecar path -> every media path it was applied to
    ambiguous: Dict[Path, List[Path]] = field(default_factory=dict)
    # (media, kept sidecar, rejected sidecar)
    conflicts: List[Tuple[Path, Path, Path]] = field(default_factory=list)


@dataclass
class ReconciledMetadata:
    """
    Everything known about one matched pair before a correction is decided.
    """
    media_path: Path
    sidecar_path: Path
    kind: str

    media_timestamp: Optional[datetime] = None
    media_timestamp_source: Optional[str] = None   # embedded/filesystem
    media_geo: Optional[GeoPoint] = None

    sidecar_taken_time: Optional[datetime] = None
    sidecar_creation_time: Optional[datetime] = None
    sidecar_geo: Optional[GeoPoint] = None

    # Populated by the Reconciler
    target_timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class Skip:
    reason: str
    is_error: bool = True


@dataclass(frozen=True)
class Apply:
    timestamp: datetime
    geo: Optional[GeoPoint] = None
    used_creation_time: bool = False


CorrectionDecision = Union[Skip, Apply]


@dataclass(frozen=True)
class CorrectionTask:
    dest_path: Path
    timestamp: datetime
    kind: str
    geo: Optional[GeoPoint] = None
    source_path: Optional[Path] = None


@dataclass(frozen=True)
class WriteResult:
    success: bool
    stdout: str = ""
    stderr: str = ""


@dataclass
class RunSummary:
    """
    Counters aggregated across the whole run.
    """
    media_found: int = 0
    sidecars_found: int = 0
    matched: int = 0
    orphans: int = 0
    dangling: int = 0
    unreadable_sidecars: int = 0
    ambiguous: int = 0
    conflicts: int = 0
    motion_companions: int = 0

    copied: int = 0
    copy_failures: int = 0

    corrected: int = 0
    geo_added: int = 0
    timestamp_kept: int = 0
    skipped_errors: int = 0
    write_failures: int = 0
    planned: int = 0

    dry_run: bool = False
