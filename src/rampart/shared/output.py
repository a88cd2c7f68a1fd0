"""
Output writer - Result sink shared by all invocations of an engine.

Results are appended to a JSON lines file (if configured), echoed to the
console, and handed to every registered result callback. Many invocations
write concurrently, so file access is serialized with a lock.
"""

import json
import threading
from pathlib import Path
from typing import Callable, List, Optional, TextIO

import structlog
from rich.console import Console

from ..scanners.base_scanner import ResultEvent, SeverityLevel


ResultCallback = Callable[[ResultEvent], None]

SEVERITY_STYLES = {
    SeverityLevel.CRITICAL: "bold magenta",
    SeverityLevel.HIGH: "bold red",
    SeverityLevel.MEDIUM: "yellow",
    SeverityLevel.LOW: "green",
    SeverityLevel.INFO: "cyan",
    SeverityLevel.UNKNOWN: "dim",
}


class OutputWriter:
    """
    Thread-safe result writer.

    The callback list is read through ``callbacks`` on every write, so
    replacing the engine's callbacks takes effect for later results without
    rebuilding the writer.

    Example:
        >>> writer = OutputWriter(path="results.jsonl", callbacks=lambda: [print])
        >>> writer.write(event)
        >>> writer.close()
    """

    def __init__(
        self,
        path: Optional[str] = None,
        callbacks: Callable[[], List[ResultCallback]] = list,
        console: Optional[Console] = None,
    ):
        """
        Initialize the writer.

        Args:
            path: JSON lines output file (None = no file)
            callbacks: Returns the current result callbacks
            console: Console for matched results (None = no console output)
        """
        self.path = path
        self.callbacks = callbacks
        self.console = console

        self.result_count = 0
        self.error_count = 0

        self._lock = threading.Lock()
        self._file: Optional[TextIO] = None
        self._closed = False

        self.logger = structlog.get_logger(__name__)

        if path:
            output_path = Path(path)
            output_path.parent.mkdir(parents=True, exist_ok=True)
            self._file = open(output_path, "a", encoding="utf-8")
            self.logger.info("output_file_opened", path=str(output_path))

    def write(self, event: ResultEvent):
        """Record one result and notify callbacks"""
        with self._lock:
            if self._closed:
                self.logger.warning("write_after_close", template_id=event.template_id)
                return
            if event.matched:
                self.result_count += 1
            else:
                self.error_count += 1
            if self._file is not None:
                self._file.write(json.dumps(event.to_dict()) + "\n")
                self._file.flush()

        if self.console is not None and event.matched:
            style = SEVERITY_STYLES[event.severity]
            self.console.print(
                f"[bold]\\[{event.template_id}][/bold] "
                f"[{style}]\\[{event.severity.value}][/{style}] "
                f"{event.matched_at or event.target}"
            )

        self._notify_callbacks(event)

    def _notify_callbacks(self, event: ResultEvent):
        """Invoke every callback; a failing callback does not stop the others"""
        for callback in self.callbacks():
            try:
                callback(event)
            except Exception as e:
                self.logger.error(
                    "result_callback_error",
                    callback=getattr(callback, "__name__", repr(callback)),
                    error=str(e),
                )

    def close(self):
        """Close the output file"""
        with self._lock:
            self._closed = True
            if self._file is not None:
                self._file.close()
                self._file = None

    def get_statistics(self) -> dict:
        with self._lock:
            return {"results": self.result_count, "errors": self.error_count}
