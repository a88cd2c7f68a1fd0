"""
Core module - Engine lifecycle, isolation and execution.

This package contains the concurrency facade and the pieces it builds per
invocation: options, rate limiter, input provider and scan executor.
"""

from .exceptions import (
    RampartError,
    ConfigurationError,
    OptionNotSupportedError,
    EngineFrozenError,
    EngineClosedError,
    TemplateLoadError,
    NoTemplatesAvailableError,
    NoTargetsAvailableError,
)
from .options import (
    EngineOptions,
    OptionFn,
    apply_options,
    with_config_file,
    with_template_dir,
    with_templates,
    with_workflows,
    with_template_filters,
    with_rate_limit,
    with_concurrency,
    with_network_config,
    with_headers,
    with_interactsh,
    with_output_file,
    enable_stats,
    with_verbosity,
    disable_color,
)
from .rate_limiter import RateLimiter, UnlimitedRateLimiter, build_rate_limiter
from .inputs import SimpleInputProvider
from .context import (
    EngineMode,
    ExecutorOptions,
    ResumeState,
    SharedEngineContext,
    create_ephemeral_context,
)
from .executor import ScanExecutor, WorkPool, cluster_templates
from .engine import EngineBuilder, ThreadSafeEngine, ScanEngine, InvocationState
from .log_config import configure_logging


__all__ = [
    # Errors
    "RampartError",
    "ConfigurationError",
    "OptionNotSupportedError",
    "EngineFrozenError",
    "EngineClosedError",
    "TemplateLoadError",
    "NoTemplatesAvailableError",
    "NoTargetsAvailableError",
    # Options
    "EngineOptions",
    "OptionFn",
    "apply_options",
    "with_config_file",
    "with_template_dir",
    "with_templates",
    "with_workflows",
    "with_template_filters",
    "with_rate_limit",
    "with_concurrency",
    "with_network_config",
    "with_headers",
    "with_interactsh",
    "with_output_file",
    "enable_stats",
    "with_verbosity",
    "disable_color",
    # Rate limiting
    "RateLimiter",
    "UnlimitedRateLimiter",
    "build_rate_limiter",
    # Execution
    "SimpleInputProvider",
    "EngineMode",
    "ExecutorOptions",
    "ResumeState",
    "SharedEngineContext",
    "create_ephemeral_context",
    "ScanExecutor",
    "WorkPool",
    "cluster_templates",
    # Engines
    "EngineBuilder",
    "ThreadSafeEngine",
    "ScanEngine",
    "InvocationState",
    "configure_logging",
]
