import csv
import logging
from pathlib import Path
from typing import Dict, List, Tuple

from .models import MatchResult

HEADERS = [
    "Source Path",
    "Status",
    "Sidecar",
    "Match Pass",
    "Destination Path",
    "Correction",
    "Notes",
]


class ReportGenerator:
    """
    Writes one CSV row per file the run looked at: every media file plus every
    sidecar that ended up dangling or unreadable.
    """
    def __init__(self,
                 match: MatchResult,
                 copied: Dict[Path, Path],
                 copy_failures,
                 corrections: Dict[Path, Tuple[str, str]]):
        self.match = match
        self.copied = copied
        self.copy_failures = copy_failures
        # media path -> (correction status, note)
        self.corrections = corrections

    def rows(self) -> List[list]:
        rows = []
        ambiguous_media = {m for members in self.match.ambiguous.values() for m in members}

        for media in sorted(self.match.media):
            sidecar = self.match.mapping.get(media)
            if media in self.copy_failures:
                status = "Copy Failed"
            elif sidecar is not None:
                status = "Matched"
            elif media in self.match.motion_companions:
                status = "Motion Companion"
            else:
                status = "Orphan"

            correction, note = self.corrections.get(media, ("", ""))
            if media in ambiguous_media:
                note = "; ".join(filter(None, ["Ambiguous prefix match", note]))

            rows.append([
                str(media),
                status,
                str(sidecar) if sidecar else "",
                self.match.match_pass.get(media, ""),
                str(self.copied[media]) if media in self.copied else "",
                correction,
                note,
            ])

        for sidecar in sorted(self.match.dangling):
            rows.append([str(sidecar), "Dangling Sidecar", "", "", "", "", "No media file found"])
        for sidecar in sorted(self.match.unreadable):
            rows.append([str(sidecar), "Unreadable Sidecar", "", "", "", "", "Could not decode JSON"])
        for media, kept, rejected in self.match.conflicts:
            rows.append([str(rejected), "Conflict", str(kept), "", "", "", f"Lost claim on {media}"])
        return rows

    def write(self, output_csv: Path):
        output_csv.parent.mkdir(parents=True, exist_ok=True)
        rows = self.rows()
        with open(output_csv, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(HEADERS)
            writer.writerows(rows)
        logging.info(f"Report written to {output_csv} ({len(rows)} rows)")
