"""
Engine contexts - Shared engine state and per-invocation execution state.

SharedEngineContext lives as long as the engine and is read by every
invocation. It is only mutated during the setup phase (loading templates,
replacing result callbacks), before concurrent use starts; no locks guard
its fields.

ExecutorOptions is the ephemeral context of one invocation. It references
the shared, internally synchronized handles and owns fresh instances of
everything that is not safe to share: rate limiter, runner, resume state
and colorizer.
"""

import threading
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Callable, List, Optional, Set, Tuple

import structlog
from rich.console import Console

from ..catalog import DiskCatalog, LoaderConfig, TemplateStore, WorkflowLoader
from ..scanners.base_scanner import TemplateRunner
from ..scanners.http_runner import HttpTemplateRunner
from ..shared import HostErrorCache, InteractionClient, OutputWriter, ProgressTracker, ResultCallback
from .exceptions import TemplateLoadError
from .options import EngineOptions
from .rate_limiter import RateLimiter, build_rate_limiter

if TYPE_CHECKING:
    from .executor import ScanExecutor


RunnerFactory = Callable[[EngineOptions], TemplateRunner]
LoaderFactory = Callable[[LoaderConfig], TemplateStore]
ExecutorFactory = Callable[["ExecutorOptions"], "ScanExecutor"]


class EngineMode(Enum):
    """How an engine is used"""
    SINGLE_SHOT = "single_shot"
    THREAD_SAFE = "thread_safe"


class ResumeState:
    """Work items already completed by one invocation"""

    def __init__(self):
        self._done: Set[Tuple[str, str]] = set()
        self._lock = threading.Lock()

    def is_done(self, item_id: str, target: str) -> bool:
        with self._lock:
            return (item_id, target) in self._done

    def mark_done(self, item_id: str, target: str):
        with self._lock:
            self._done.add((item_id, target))

    def __len__(self) -> int:
        with self._lock:
            return len(self._done)


@dataclass
class ExecutorOptions:
    """Everything a scan executor needs for one invocation"""
    options: EngineOptions
    output: OutputWriter
    progress: ProgressTracker
    catalog: DiskCatalog
    host_errors: HostErrorCache
    interaction: Optional[InteractionClient]
    rate_limiter: RateLimiter
    runner: TemplateRunner
    colorizer: Console
    resume: ResumeState = field(default_factory=ResumeState)
    workflow_loader: Optional[WorkflowLoader] = None
    invocation_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])


def _default_executor_factory(executor_options: ExecutorOptions) -> "ScanExecutor":
    from .executor import ScanExecutor

    return ScanExecutor(executor_options)


class SharedEngineContext:
    """
    Process-lifetime state of an engine.

    Example:
        >>> shared = SharedEngineContext(EngineOptions(), EngineMode.THREAD_SAFE)
        >>> shared.load_all_templates()
        >>> shared.close()
    """

    def __init__(
        self,
        options: EngineOptions,
        mode: EngineMode,
        runner_factory: Optional[RunnerFactory] = None,
        loader_factory: Optional[LoaderFactory] = None,
        executor_factory: Optional[ExecutorFactory] = None,
    ):
        """
        Build the shared handles from fully resolved options.

        Args:
            options: Base options (not copied, must not be mutated afterwards)
            mode: Engine mode tag
            runner_factory: Creates the template runner of an invocation
            loader_factory: Creates the template store of an invocation
            executor_factory: Creates the scan executor of an invocation
        """
        self.options = options
        self.mode = mode
        self.runner_factory: RunnerFactory = runner_factory or HttpTemplateRunner
        self.loader_factory: LoaderFactory = loader_factory or TemplateStore
        self.executor_factory: ExecutorFactory = executor_factory or _default_executor_factory

        self.result_callbacks: List[ResultCallback] = []
        self.store: Optional[TemplateStore] = None
        self.closed = False

        self.catalog = DiskCatalog(options.template_dir)
        self.output = OutputWriter(
            path=options.output_file,
            callbacks=lambda: self.result_callbacks,
            console=None if options.silent else Console(stderr=True, no_color=options.no_color),
        )
        self.progress = ProgressTracker(enabled=options.stats)
        self.host_errors = HostErrorCache(max_errors=options.max_host_error)
        self.interaction = (
            InteractionClient(options.interactsh_server) if options.interactsh_server else None
        )

        self.logger = structlog.get_logger(__name__)
        self.logger.info(
            "engine_context_initialized",
            mode=mode.value,
            template_dir=options.template_dir,
            output_file=options.output_file,
            interactsh=bool(self.interaction),
        )

    def load_all_templates(self) -> TemplateStore:
        """
        Load templates for the default execution path.

        Not safe to call concurrently with itself or with invocations that
        rely on the result.

        Raises:
            TemplateLoadError: If the loader fails
        """
        executor_options = create_ephemeral_context(self, self.options)
        executor_options.workflow_loader = WorkflowLoader(self.catalog)
        try:
            store = self.loader_factory(LoaderConfig(self.options, self.catalog, executor_options))
            store.load()
        except TemplateLoadError:
            raise
        except Exception as e:
            raise TemplateLoadError(f"could not load templates: {e}") from e

        self.store = store
        return store

    def set_result_callback(self, callback: ResultCallback):
        """Replace the result callbacks with ``callback``"""
        self.result_callbacks = [callback]

    def close(self):
        """Release every shared handle"""
        if self.closed:
            return
        self.closed = True

        self.progress.log_summary()
        self.output.close()
        self.catalog.close()
        self.host_errors.close()
        if self.interaction is not None:
            self.interaction.close()

        self.logger.info("engine_context_closed", mode=self.mode.value)


def create_ephemeral_context(
    shared: SharedEngineContext,
    options: EngineOptions,
    invocation_id: Optional[str] = None,
) -> ExecutorOptions:
    """
    Build the execution options of one invocation.

    Shared handles are passed by reference; the rate limiter, runner,
    resume state and colorizer are new instances derived from ``options``
    only.
    """
    return ExecutorOptions(
        options=options,
        output=shared.output,
        progress=shared.progress,
        catalog=shared.catalog,
        host_errors=shared.host_errors,
        interaction=shared.interaction,
        rate_limiter=build_rate_limiter(options),
        runner=shared.runner_factory(options),
        colorizer=Console(stderr=True, no_color=options.no_color, quiet=options.silent),
        resume=ResumeState(),
        invocation_id=invocation_id or uuid.uuid4().hex[:12],
    )
