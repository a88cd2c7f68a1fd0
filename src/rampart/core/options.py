"""
Engine options - Configuration value and option functions.

EngineOptions is a plain value: every invocation works on its own deep copy
of the engine's base options, so changes made by one invocation can never be
observed by another.

Option functions take the options value and mutate it in place, raising on
invalid input. They are applied in order and the first failure stops the
chain.

Example:
    >>> opts = EngineOptions()
    >>> apply_options(opts, [with_rate_limit(10), with_concurrency(5)])
    >>> opts.rate_limit
    10
"""

from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

import structlog
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .exceptions import ConfigurationError


OptionFn = Callable[["EngineOptions"], None]

# Options consumed once to build the shared engine handles. Invocations
# cannot change them.
SHARED_HANDLE_FIELDS = (
    "template_dir",
    "output_file",
    "interactsh_server",
    "max_host_error",
    "stats",
)

SEVERITIES = ("info", "low", "medium", "high", "critical", "unknown")

logger = structlog.get_logger(__name__)


class EngineOptions(BaseModel):
    """Configuration for the scanning engine"""

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    # Template catalog
    template_dir: str = "templates"
    templates: List[str] = Field(default_factory=list)
    workflows: List[str] = Field(default_factory=list)

    # Template filters
    tags: List[str] = Field(default_factory=list)
    exclude_tags: List[str] = Field(default_factory=list)
    ids: List[str] = Field(default_factory=list)
    exclude_ids: List[str] = Field(default_factory=list)
    authors: List[str] = Field(default_factory=list)
    severities: List[str] = Field(default_factory=list)

    # Rate limiting
    rate_limit: int = Field(default=150, ge=0)  # requests per second
    rate_limit_minute: int = Field(default=0, ge=0)  # requests per minute

    # Execution
    concurrency: int = Field(default=25, ge=1)
    timeout: float = Field(default=10.0, gt=0)
    retries: int = Field(default=1, ge=0)
    max_host_error: int = Field(default=30, ge=0)
    headers: Dict[str, str] = Field(default_factory=dict)
    follow_redirects: bool = False

    # Shared handles
    interactsh_server: Optional[str] = None
    output_file: Optional[str] = None
    stats: bool = False

    # Output
    verbose: bool = False
    silent: bool = False
    no_color: bool = False

    def clone(self) -> "EngineOptions":
        """Return an independent copy of these options"""
        return self.model_copy(deep=True)

    @classmethod
    def from_yaml(cls, path: str) -> "EngineOptions":
        """
        Load options from a YAML file.

        Keys may be written in snake_case or kebab-case.

        Raises:
            ConfigurationError: If the file cannot be read or is invalid
        """
        try:
            raw = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"could not read config file {path}: {e}") from e

        if not isinstance(raw, dict):
            raise ConfigurationError(f"config file {path} must contain a mapping")

        data = {str(key).replace("-", "_"): value for key, value in raw.items()}
        try:
            options = cls.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"invalid config file {path}: {e}") from e

        logger.debug("config_file_loaded", path=path, keys=sorted(data))
        return options


def apply_options(options: EngineOptions, option_fns: Iterable[OptionFn]) -> EngineOptions:
    """
    Apply option functions in order, stopping at the first failure.

    Mutations made by functions applied before the failing one remain on
    ``options``.

    Raises:
        ConfigurationError: Wrapping whatever the failing function raised
    """
    for option in option_fns:
        try:
            option(options)
        except ConfigurationError:
            raise
        except Exception as e:
            name = getattr(option, "__name__", repr(option))
            raise ConfigurationError(f"could not apply option {name}: {e}") from e
    return options


def changed_shared_fields(base: EngineOptions, options: EngineOptions) -> List[str]:
    """Names of shared-handle fields whose value differs from ``base``"""
    return [
        name for name in SHARED_HANDLE_FIELDS
        if getattr(base, name) != getattr(options, name)
    ]


def _require(condition: bool, message: str):
    if not condition:
        raise ConfigurationError(message)


def with_config_file(path: str) -> OptionFn:
    """Apply every option set in a YAML config file"""
    def option(opts: EngineOptions):
        loaded = EngineOptions.from_yaml(path)
        for name in loaded.model_fields_set:
            setattr(opts, name, getattr(loaded, name))
    return option


def with_template_dir(path: str) -> OptionFn:
    """Set the root directory of the template catalog"""
    def option(opts: EngineOptions):
        _require(bool(path), "template directory cannot be empty")
        opts.template_dir = str(path)
    return option


def with_templates(*paths: str) -> OptionFn:
    """Restrict loading to the given template files or directories"""
    def option(opts: EngineOptions):
        opts.templates = [*opts.templates, *paths]
    return option


def with_workflows(*paths: str) -> OptionFn:
    """Load the given workflow files"""
    def option(opts: EngineOptions):
        opts.workflows = [*opts.workflows, *paths]
    return option


def with_template_filters(
    tags: Optional[List[str]] = None,
    exclude_tags: Optional[List[str]] = None,
    ids: Optional[List[str]] = None,
    exclude_ids: Optional[List[str]] = None,
    authors: Optional[List[str]] = None,
    severities: Optional[List[str]] = None,
) -> OptionFn:
    """
    Set template filters.

    Only the filters that are passed are replaced; the rest keep their
    current value.
    """
    def option(opts: EngineOptions):
        if severities is not None:
            unknown = [s for s in severities if s.lower() not in SEVERITIES]
            _require(not unknown, f"unknown severities: {', '.join(unknown)}")
            opts.severities = [s.lower() for s in severities]
        if tags is not None:
            opts.tags = list(tags)
        if exclude_tags is not None:
            opts.exclude_tags = list(exclude_tags)
        if ids is not None:
            opts.ids = list(ids)
        if exclude_ids is not None:
            opts.exclude_ids = list(exclude_ids)
        if authors is not None:
            opts.authors = list(authors)
    return option


def with_rate_limit(count: int, per: str = "second") -> OptionFn:
    """
    Limit requests per second or per minute.

    A count of 0 disables that limit. Setting one window resets the other.
    """
    def option(opts: EngineOptions):
        _require(count >= 0, "rate limit cannot be negative")
        if per == "second":
            opts.rate_limit = count
            opts.rate_limit_minute = 0
        elif per == "minute":
            opts.rate_limit_minute = count
            opts.rate_limit = 0
        else:
            raise ConfigurationError(f"unsupported rate limit window: {per}")
    return option


def with_concurrency(concurrency: int) -> OptionFn:
    """Set the number of work items one invocation runs at a time"""
    def option(opts: EngineOptions):
        _require(concurrency >= 1, "concurrency must be at least 1")
        opts.concurrency = concurrency
    return option


def with_network_config(
    timeout: Optional[float] = None,
    retries: Optional[int] = None,
    max_host_error: Optional[int] = None,
    follow_redirects: Optional[bool] = None,
) -> OptionFn:
    """Set network related options"""
    def option(opts: EngineOptions):
        if timeout is not None:
            opts.timeout = timeout
        if retries is not None:
            opts.retries = retries
        if max_host_error is not None:
            opts.max_host_error = max_host_error
        if follow_redirects is not None:
            opts.follow_redirects = follow_redirects
    return option


def with_headers(headers: Dict[str, str]) -> OptionFn:
    """Add headers sent with every request"""
    def option(opts: EngineOptions):
        opts.headers = {**opts.headers, **headers}
    return option


def with_interactsh(server: str) -> OptionFn:
    """Enable the out-of-band interaction client"""
    def option(opts: EngineOptions):
        _require(bool(server), "interaction server cannot be empty")
        opts.interactsh_server = server
    return option


def with_output_file(path: str) -> OptionFn:
    """Write results as JSON lines to ``path``"""
    def option(opts: EngineOptions):
        opts.output_file = str(path)
    return option


def enable_stats() -> OptionFn:
    """Track request and result counters"""
    def option(opts: EngineOptions):
        opts.stats = True
    return option


def with_verbosity(verbose: bool = False, silent: bool = False) -> OptionFn:
    """Set console verbosity"""
    def option(opts: EngineOptions):
        _require(not (verbose and silent), "verbose and silent are mutually exclusive")
        opts.verbose = verbose
        opts.silent = silent
    return option


def disable_color() -> OptionFn:
    """Disable colored console output"""
    def option(opts: EngineOptions):
        opts.no_color = True
    return option
