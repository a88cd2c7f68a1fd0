"""
Progress tracker - Counters shared by all invocations of an engine.
"""

import threading
from dataclasses import asdict, dataclass
from typing import Dict

import structlog


@dataclass
class ProgressStats:
    """Progress counters"""
    items: int = 0     # work items scheduled
    requests: int = 0  # requests sent
    matched: int = 0   # results found
    errors: int = 0    # work items that failed


class ProgressTracker:
    """
    Thread-safe progress counters.

    Counting is a no-op when the tracker is disabled.
    """

    def __init__(self, enabled: bool = False):
        self.enabled = enabled
        self.stats = ProgressStats()
        self._lock = threading.Lock()
        self.logger = structlog.get_logger(__name__)

    def _add(self, name: str, count: int):
        if not self.enabled:
            return
        with self._lock:
            setattr(self.stats, name, getattr(self.stats, name) + count)

    def add_items(self, count: int = 1):
        self._add("items", count)

    def increment_requests(self, count: int = 1):
        self._add("requests", count)

    def increment_matched(self, count: int = 1):
        self._add("matched", count)

    def increment_errors(self, count: int = 1):
        self._add("errors", count)

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return asdict(self.stats)

    def log_summary(self):
        if self.enabled:
            self.logger.info("progress_summary", **self.snapshot())
