"""
Interaction client - Out-of-band callback URLs.

Templates reference ``{{interactsh-url}}`` to make a target call back to an
interaction server. The client hands out one unique URL per request and
keeps the interactions recorded for each correlation id. Only the most
recent ``max_tracked`` correlation ids are kept; older ones are forgotten
along with their interactions. Polling the server itself is not done here;
interactions are fed in through ``record``.
"""

import threading
import uuid
from collections import OrderedDict, defaultdict
from typing import Any, Dict, List

import structlog

from ..core.exceptions import EngineClosedError


DEFAULT_MAX_TRACKED = 10000


class InteractionClient:
    """Thread-safe generator of correlation URLs"""

    def __init__(self, server: str, max_tracked: int = DEFAULT_MAX_TRACKED):
        """
        Args:
            server: Domain of the interaction server (e.g. "oast.example")
            max_tracked: Correlation ids remembered before the oldest is dropped
        """
        if max_tracked < 1:
            raise ValueError("max_tracked must be at least 1")
        self.server = server.strip().strip(".")
        self._interactions: Dict[str, List[Any]] = defaultdict(list)
        self.max_tracked = max_tracked
        self._issued: "OrderedDict[str, None]" = OrderedDict()
        self._lock = threading.Lock()
        self._closed = False

        self.logger = structlog.get_logger(__name__)
        self.logger.info("interaction_client_initialized", server=self.server)

    def new_url(self) -> str:
        """Return a fresh ``<correlation-id>.<server>`` host name"""
        correlation_id = uuid.uuid4().hex[:20]
        with self._lock:
            if self._closed:
                raise EngineClosedError("interaction client is closed")
            self._issued[correlation_id] = None
            while len(self._issued) > self.max_tracked:
                expired, _ = self._issued.popitem(last=False)
                self._interactions.pop(expired, None)
        return f"{correlation_id}.{self.server}"

    def record(self, correlation_id: str, data: Any):
        """Store an interaction received for ``correlation_id``"""
        with self._lock:
            if correlation_id not in self._issued:
                self.logger.debug("unknown_correlation_id", correlation_id=correlation_id)
                return
            self._interactions[correlation_id].append(data)

    def interactions(self, correlation_id: str) -> List[Any]:
        with self._lock:
            return list(self._interactions.get(correlation_id, []))

    def close(self):
        with self._lock:
            self._closed = True
            self._interactions.clear()
            self._issued.clear()
        self.logger.info("interaction_client_closed", server=self.server)
