import os
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .. import config
from ..exceptions import FileOperationError
from ..metadata.writer import MetadataWriter
from ..models import CorrectionTask
from ..progress import ProgressReporter
from .mover import set_file_times

SUPPORTED_KINDS = ('image', 'video')


class BatchScheduler:
    """
    Applies CorrectionTasks through a MetadataWriter.

    Tasks are partitioned by media kind and cut into batches; each batch is a
    single writer invocation. A failed batch is retried file by file so one
    bad file only costs itself.
    """

    def __init__(self,
                 writer: MetadataWriter,
                 batch_size: int = config.DEFAULT_BATCH_SIZE,
                 max_workers: Optional[int] = None):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.writer = writer
        self.batch_size = batch_size
        self.max_workers = max_workers or os.cpu_count() or 4

    def apply(self, tasks: Sequence[CorrectionTask],
              progress: Optional[ProgressReporter] = None) -> Dict[Path, bool]:
        """
        Returns:
            dest path -> whether the correction landed
        """
        progress = progress or ProgressReporter()
        outcomes: Dict[Path, bool] = {}

        runnable: List[CorrectionTask] = []
        for task in tasks:
            if not task.dest_path.exists():
                logging.error(f"Destination {task.dest_path} no longer exists, skipping correction")
                continue
            if task.kind not in SUPPORTED_KINDS:
                logging.error(f"Unsupported media kind '{task.kind}' for {task.dest_path}")
                outcomes[task.dest_path] = False
                continue
            runnable.append(task)

        progress.start("Writing metadata", len(runnable))
        try:
            for kind in SUPPORTED_KINDS:
                partition = sorted((t for t in runnable if t.kind == kind), key=lambda t: str(t.dest_path))
                if not partition:
                    continue
                batches = [partition[i:i + self.batch_size]
                           for i in range(0, len(partition), self.batch_size)]
                logging.info(f"Writing {len(partition)} {kind} corrections in {len(batches)} batches")

                with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                    futures = [executor.submit(self._run_batch, batch, progress) for batch in batches]
                    for future in as_completed(futures):
                        outcomes.update(future.result())
        finally:
            progress.finish()

        failed = sum(1 for ok in outcomes.values() if not ok)
        logging.info(f"Metadata written: {len(outcomes) - failed} succeeded, {failed} failed")
        return outcomes

    def _run_batch(self, batch: List[CorrectionTask], progress: ProgressReporter) -> Dict[Path, bool]:
        outcomes: Dict[Path, bool] = {}

        result = self.writer.write_batch(batch)
        if result.success:
            for task in batch:
                outcomes[task.dest_path] = True
        else:
            logging.warning(
                f"Batch of {len(batch)} failed ({result.stderr.strip() or 'no diagnostics'}), "
                f"retrying files individually"
            )
            for task in batch:
                single = self.writer.write_one(task)
                if single.success:
                    logging.info(f"Retry succeeded for {task.dest_path}")
                else:
                    logging.error(f"Failed to write metadata to {task.dest_path}: {single.stderr.strip()}")
                outcomes[task.dest_path] = single.success

        for task in batch:
            try:
                set_file_times(task.dest_path, task.timestamp)
            except FileOperationError as e:
                logging.error(str(e))
                outcomes[task.dest_path] = False

        progress.advance(len(batch))
        return outcomes
