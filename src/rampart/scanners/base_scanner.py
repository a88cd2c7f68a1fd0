"""
Base Runner - Abstract base class for template runners.

A runner evaluates one template (or one cluster of templates sharing the
same request) against one target and returns result events. The scan
executor schedules runners; runners know nothing about concurrency or other
invocations.

Design Pattern: Strategy Pattern
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import structlog

if TYPE_CHECKING:
    from ..catalog.templates import Template
    from ..core.context import ExecutorOptions


class SeverityLevel(Enum):
    """Severity levels based on CVSS"""
    CRITICAL = "critical"  # 9.0-10.0
    HIGH = "high"          # 7.0-8.9
    MEDIUM = "medium"      # 4.0-6.9
    LOW = "low"            # 0.1-3.9
    INFO = "info"          # 0.0
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "SeverityLevel":
        try:
            return cls((value or "unknown").lower())
        except ValueError:
            return cls.UNKNOWN


@dataclass
class ResultEvent:
    """
    A single result delivered to the output writer and result callbacks.

    Matches and per-item failures share this record; failures carry
    ``matched=False`` and an ``error`` message.
    """

    template_id: str
    target: str
    template_name: Optional[str] = None
    severity: SeverityLevel = SeverityLevel.UNKNOWN

    # Match details
    matched: bool = True
    matched_at: Optional[str] = None
    matcher_name: Optional[str] = None
    extracted: List[str] = field(default_factory=list)
    request_method: str = "GET"
    status_code: Optional[int] = None

    # Metadata
    workflow_id: Optional[str] = None
    invocation_id: Optional[str] = None
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)

    @classmethod
    def from_error(
        cls,
        template: "Template",
        target: str,
        error: BaseException,
        workflow_id: Optional[str] = None,
    ) -> "ResultEvent":
        """Build a non-fatal failure record for a work item"""
        return cls(
            template_id=template.id,
            template_name=template.info.name,
            severity=SeverityLevel.parse(template.info.severity),
            target=target,
            matched=False,
            workflow_id=workflow_id,
            error=str(error) or type(error).__name__,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        return {
            "template_id": self.template_id,
            "template_name": self.template_name,
            "severity": self.severity.value,
            "target": self.target,
            "matched": self.matched,
            "matched_at": self.matched_at,
            "matcher_name": self.matcher_name,
            "extracted": self.extracted,
            "request_method": self.request_method,
            "status_code": self.status_code,
            "workflow_id": self.workflow_id,
            "invocation_id": self.invocation_id,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }


class TemplateRunner(ABC):
    """
    Abstract base class for template runners.

    Example:
        >>> class EchoRunner(TemplateRunner):
        ...     async def execute(self, templates, target, ctx):
        ...         return [ResultEvent(template_id=t.id, target=target) for t in templates]
    """

    def __init__(self, runner_name: str):
        """
        Initialize the base runner.

        Args:
            runner_name: Name of the runner (e.g., "HttpTemplateRunner")
        """
        self.runner_name = runner_name

        # Statistics
        self.executed_count = 0
        self.result_count = 0

        self.logger = structlog.get_logger(__name__, runner=self.runner_name)

    @abstractmethod
    async def execute(
        self,
        templates: List["Template"],
        target: str,
        ctx: "ExecutorOptions",
    ) -> List[ResultEvent]:
        """
        Evaluate templates against a target.

        All templates in ``templates`` share the same request; the runner
        sends it once and evaluates every template's matchers.

        Args:
            templates: Non-empty list of templates with identical requests
            target: Target URL or host
            ctx: Execution options of the calling invocation

        Returns:
            Matched results (empty if nothing matched)

        Raises:
            ScannerError: If the target could not be evaluated
        """
        pass

    async def close(self):
        """Release resources held by the runner"""
        pass

    def record(self, results: List[ResultEvent]):
        """Update statistics after one execution"""
        self.executed_count += 1
        self.result_count += len(results)

    def get_statistics(self) -> Dict[str, int]:
        """
        Get runner statistics.

        Returns:
            Dictionary with executed count and result count
        """
        return {
            "executed": self.executed_count,
            "results": self.result_count,
        }

    def reset_statistics(self):
        """Reset runner statistics"""
        self.executed_count = 0
        self.result_count = 0

    def __repr__(self) -> str:
        return (
            f"{self.runner_name}("
            f"executed={self.executed_count}, "
            f"results={self.result_count})"
        )


class ScannerError(Exception):
    """Base exception for runner errors"""
    pass


class ScannerTimeoutError(ScannerError):
    """Raised when a request times out"""
    pass
