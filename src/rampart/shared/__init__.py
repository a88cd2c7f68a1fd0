"""
Shared handles - Long-lived objects used by every invocation of an engine.

All of them are internally synchronized.
"""

from .output import OutputWriter, ResultCallback
from .progress import ProgressTracker, ProgressStats
from .hosterrors import HostErrorCache, normalize_host
from .interactsh import InteractionClient


__all__ = [
    "OutputWriter",
    "ResultCallback",
    "ProgressTracker",
    "ProgressStats",
    "HostErrorCache",
    "normalize_host",
    "InteractionClient",
]
