"""
Template runners.

Each runner inherits from TemplateRunner and implements execute().

Available runners:
- HttpTemplateRunner: HTTP templates over aiohttp
"""

from .base_scanner import (
    TemplateRunner,
    ResultEvent,
    SeverityLevel,
    ScannerError,
    ScannerTimeoutError,
)

from .http_runner import HttpTemplateRunner


__all__ = [
    # Base classes
    "TemplateRunner",
    "ResultEvent",
    "SeverityLevel",
    # Exceptions
    "ScannerError",
    "ScannerTimeoutError",
    # Runners
    "HttpTemplateRunner",
]
