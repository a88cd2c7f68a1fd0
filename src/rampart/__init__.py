"""
RAMPART - Concurrent template scanning engine

Runs YAML vulnerability templates against many targets, with any number of
independent scans sharing one long-lived engine.

Licensed under MIT License
"""

__version__ = "1.0.0"
__author__ = "RAMPART Team"
__status__ = "Development"

from .core import (
    EngineBuilder,
    ThreadSafeEngine,
    ScanEngine,
    EngineOptions,
    RampartError,
    ConfigurationError,
    NoTemplatesAvailableError,
    NoTargetsAvailableError,
)
from .scanners import ResultEvent


__all__ = [
    "EngineBuilder",
    "ThreadSafeEngine",
    "ScanEngine",
    "EngineOptions",
    "RampartError",
    "ConfigurationError",
    "NoTemplatesAvailableError",
    "NoTargetsAvailableError",
    "ResultEvent",
]
