"""
Progress reporting for long-running steps.

Callers pass a reporter into the matcher, extractor and scheduler instead of
relying on a process-wide active bar. Worker threads only ever enqueue
increments; a single consumer thread owns the tqdm bar.
"""
import queue
import threading
from typing import Optional

from tqdm import tqdm

_STOP = object()


class ProgressReporter:
    """No-op reporter. Also the interface every reporter implements."""

    def start(self, step: str, total: int):
        pass

    def advance(self, n: int = 1):
        pass

    def finish(self):
        pass


class TqdmProgress(ProgressReporter):
    def __init__(self, disable: bool = False):
        self.disable = disable
        self.completed = 0
        self._queue: "queue.SimpleQueue" = queue.SimpleQueue()
        self._consumer: Optional[threading.Thread] = None
        self._bar: Optional[tqdm] = None

    def start(self, step: str, total: int):
        if self._consumer is not None:
            self.finish()

        self.completed = 0
        self._bar = tqdm(total=total, desc=step, unit="file", disable=self.disable)
        self._consumer = threading.Thread(target=self._drain, name=f"progress-{step}", daemon=True)
        self._consumer.start()

    def advance(self, n: int = 1):
        # Safe from any thread; SimpleQueue.put never blocks
        if self._consumer is not None:
            self._queue.put(n)

    def finish(self):
        if self._consumer is None:
            return
        self._queue.put(_STOP)
        self._consumer.join()
        self._consumer = None
        if self._bar is not None:
            self._bar.close()
            self._bar = None

    def _drain(self):
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            self.completed += item
            if self._bar is not None:
                self._bar.update(item)
