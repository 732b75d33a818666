import logging
import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import timedelta
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

from . import config
from .exceptions import SourceRootError
from .metadata.extract import MetadataExtractor
from .metadata.linking import SidecarMatcher
from .metadata.writer import ExifToolWriter, MetadataWriter
from .models import Apply, CorrectionTask, MatchResult, ReconciledMetadata, RunSummary
from .organization.mover import FileMover
from .organization.rules import Reconciler
from .organization.scheduler import BatchScheduler
from .progress import ProgressReporter
from .reporting import ReportGenerator


class TakeoutFixerApp:
    def __init__(self,
                 writer: Optional[MetadataWriter] = None,
                 extractor: Optional[MetadataExtractor] = None):
        self.writer = writer or ExifToolWriter()
        self.extractor = extractor or MetadataExtractor()

    def fix(self,
            src_root: Path,
            dest_root: Path,
            dry_run: bool = False,
            max_workers: Optional[int] = None,
            batch_size: int = config.DEFAULT_BATCH_SIZE,
            recent_window: timedelta = config.RECENT_UPLOAD_WINDOW,
            keep_within: Optional[timedelta] = None,
            report_csv: Optional[Path] = None,
            skip_dirs: Optional[Set[Path]] = None,
            progress: Optional[ProgressReporter] = None) -> RunSummary:
        """
        Runs the whole pipeline.
        1. Match media to sidecars
        2. Read embedded metadata of matched media
        3. Mirror every media file into dest_root
        4. Reconcile each matched pair
        5. Write corrections in batches
        6. Report

        Raises:
            SourceRootError: src_root is missing or unreadable, or is dest_root.
        """
        progress = progress or ProgressReporter()
        max_workers = max_workers or os.cpu_count() or 4
        summary = RunSummary(dry_run=dry_run)

        if dest_root.resolve() == src_root.resolve():
            raise SourceRootError(f"Destination {dest_root} is the source tree itself")

        skip_dirs = set(skip_dirs or set())
        if src_root in dest_root.parents:
            # Never feed our own output back into matching
            skip_dirs.add(dest_root)

        # --- Step 1: Matching ---
        logging.info(f"Matching sidecars in {src_root}...")
        matcher = SidecarMatcher(workers=max_workers)
        match = matcher.match(src_root, progress, skip_dirs=skip_dirs)

        summary.media_found = len(match.media)
        summary.sidecars_found = len(match.sidecars) + len(match.unreadable)
        summary.matched = len(match.mapping)
        summary.orphans = len(match.orphans)
        summary.dangling = len(match.dangling)
        summary.unreadable_sidecars = len(match.unreadable)
        summary.ambiguous = len(match.ambiguous)
        summary.conflicts = len(match.conflicts)
        summary.motion_companions = len(match.motion_companions)

        # --- Step 2: Extraction ---
        pairs = self._extract_all(match, max_workers, progress)

        # --- Step 3: Copy ---
        mover = FileMover(src_root, dest_root)
        copied, copy_failures = mover.copy_all(match.media.keys(), dry_run=dry_run, progress=progress)
        summary.copied = 0 if dry_run else len(copied)
        summary.copy_failures = len(copy_failures)

        # --- Step 4: Reconcile ---
        reconciler = Reconciler(recent_window=recent_window, keep_within=keep_within)
        corrections: Dict[Path, Tuple[str, str]] = {}
        tasks: List[CorrectionTask] = []

        for media in sorted(match.mapping):
            record = match.media[media]
            if record.kind == 'other':
                corrections[media] = ("Not Applicable", "Unsupported file type")
                continue

            meta = pairs[media]
            decision = reconciler.reconcile(meta)

            if not isinstance(decision, Apply):
                if decision.is_error:
                    summary.skipped_errors += 1
                    corrections[media] = ("Skipped", decision.reason)
                else:
                    summary.timestamp_kept += 1
                    corrections[media] = ("Kept", decision.reason)
                continue

            note = "used creationTime" if decision.used_creation_time else ""
            if dry_run:
                logging.info(
                    f"[DRY RUN] Would set {media.name} to {decision.timestamp}"
                    f"{' and add GPS' if decision.geo else ''}"
                )
                summary.planned += 1
                corrections[media] = ("Planned", note)
                continue

            if media not in copied:
                corrections[media] = ("Skipped", "copy failed")
                continue

            tasks.append(CorrectionTask(
                dest_path=copied[media],
                timestamp=decision.timestamp,
                kind=record.kind,
                geo=decision.geo,
                source_path=media,
            ))
            corrections[media] = ("Pending", note)

        # --- Step 5: Correction ---
        if tasks:
            scheduler = BatchScheduler(self.writer, batch_size=batch_size, max_workers=max_workers)
            outcomes = scheduler.apply(tasks, progress)
            for task in tasks:
                ok = outcomes.get(task.dest_path, False)
                _, note = corrections[task.source_path]
                if ok:
                    summary.corrected += 1
                    if task.geo is not None:
                        summary.geo_added += 1
                    corrections[task.source_path] = ("Corrected", note)
                else:
                    summary.write_failures += 1
                    corrections[task.source_path] = ("Failed", note or "metadata write failed")

        # --- Step 6: Report ---
        if report_csv is not None:
            ReportGenerator(match, {} if dry_run else copied, copy_failures, corrections).write(report_csv)

        self._log_summary(summary)
        return summary

    def _extract_all(self, match: MatchResult, max_workers: int,
                     progress: ProgressReporter) -> Dict[Path, ReconciledMetadata]:
        pairs: Dict[Path, ReconciledMetadata] = {}
        for media, sidecar_path in match.mapping.items():
            sidecar = match.sidecars[sidecar_path]
            pairs[media] = ReconciledMetadata(
                media_path=media,
                sidecar_path=sidecar_path,
                kind=match.media[media].kind,
                sidecar_taken_time=sidecar.photo_taken_time,
                sidecar_creation_time=sidecar.creation_time,
                sidecar_geo=sidecar.best_geo(),
            )

        to_read = [match.media[m] for m in sorted(pairs) if match.media[m].kind != 'other']
        progress.start("Reading metadata", len(to_read))
        try:
            with ThreadPoolExecutor(max_workers=max_workers) as executor:
                futures = {executor.submit(self.extractor.extract, rec): rec for rec in to_read}
                for future in as_completed(futures):
                    rec = futures[future]
                    try:
                        dt, source, geo = future.result()
                    except Exception as e:
                        # Proceed with what the sidecar knows
                        logging.warning(f"Failed to read metadata from {rec.path}: {e}")
                        dt, source, geo = None, None, None
                    meta = pairs[rec.path]
                    meta.media_timestamp = dt
                    meta.media_timestamp_source = source
                    meta.media_geo = geo
                    progress.advance()
        finally:
            progress.finish()
        return pairs

    def _log_summary(self, s: RunSummary):
        logging.info("=== Summary ===")
        logging.info(f"Media found: {s.media_found}, sidecars found: {s.sidecars_found}")
        logging.info(
            f"Matched: {s.matched}, orphans: {s.orphans}, dangling: {s.dangling}, "
            f"ambiguous: {s.ambiguous}, conflicts: {s.conflicts}, "
            f"unreadable: {s.unreadable_sidecars}, motion companions: {s.motion_companions}"
        )
        if s.dry_run:
            logging.info(f"[DRY RUN] Planned corrections: {s.planned}, kept: {s.timestamp_kept}, "
                         f"skipped: {s.skipped_errors}")
            return
        logging.info(f"Copied: {s.copied}, copy failures: {s.copy_failures}")
        logging.info(
            f"Corrected: {s.corrected} (GPS added: {s.geo_added}), kept: {s.timestamp_kept}, "
            f"skipped: {s.skipped_errors}, write failures: {s.write_failures}"
        )
