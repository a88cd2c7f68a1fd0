"""
Host error cache - Skips hosts that keep failing.

Shared by all invocations: a host that times out for one scan is just as
unreachable for the next.
"""

import threading
from collections import defaultdict
from typing import Dict
from urllib.parse import urlparse

import structlog


def normalize_host(target: str) -> str:
    """Reduce a target to ``host[:port]``"""
    parsed = urlparse(target if "://" in target else f"//{target}")
    return (parsed.netloc or target).lower()


class HostErrorCache:
    """
    Thread-safe per-host error counter.

    Example:
        >>> cache = HostErrorCache(max_errors=3)
        >>> cache.mark_failed("https://example.com/a")
        >>> cache.check("https://example.com/b")
        False
    """

    def __init__(self, max_errors: int = 30):
        """
        Args:
            max_errors: Errors after which a host is skipped (0 = never skip)
        """
        self.max_errors = max_errors
        self._errors: Dict[str, int] = defaultdict(int)
        self._lock = threading.Lock()
        self.logger = structlog.get_logger(__name__)

    def mark_failed(self, target: str):
        """Count one error for the target's host"""
        host = normalize_host(target)
        with self._lock:
            self._errors[host] += 1
            count = self._errors[host]

        if self.max_errors > 0 and count == self.max_errors:
            self.logger.warning("host_skipped", host=host, errors=count)

    def check(self, target: str) -> bool:
        """Return True if the target's host should be skipped"""
        if self.max_errors <= 0:
            return False
        host = normalize_host(target)
        with self._lock:
            return self._errors.get(host, 0) >= self.max_errors

    def error_count(self, target: str) -> int:
        with self._lock:
            return self._errors.get(normalize_host(target), 0)

    def purge(self):
        with self._lock:
            self._errors.clear()

    def close(self):
        self.purge()
