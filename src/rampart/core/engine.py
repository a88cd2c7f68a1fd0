"""
Scan engines - Public entry points.

Two ways to run scans:

1. ``EngineBuilder`` -> ``ThreadSafeEngine``: configure once, then serve any
   number of concurrent ``execute`` calls. Setup operations exist only on
   the builder; ``build()`` freezes it and returns a handle that exposes only
   the concurrency-safe operations.
2. ``ScanEngine``: single-shot engine for one scan at a time, reusing one
   execution context.

Isolation model: every ``ThreadSafeEngine.execute`` call clones the base
options, builds its own rate limiter, runner, template store and executor,
and waits only for its own work. The shared handles (catalog, output,
progress, host-error cache, interaction client) are internally synchronized.
The engine itself takes no locks.

Example:
    >>> builder = EngineBuilder(with_template_dir("templates"))
    >>> builder.set_result_callback(print)
    >>> engine = builder.build()
    >>> await asyncio.gather(
    ...     engine.execute(["https://a.example"], with_rate_limit(10)),
    ...     engine.execute(["https://b.example"], with_template_filters(tags=["cve"])),
    ... )
    >>> engine.close()
"""

import asyncio
from enum import Enum
from typing import Iterable, List, Optional, Tuple, Union

import structlog

from ..catalog import LoaderConfig, TemplateStore, WorkflowLoader
from ..shared import ResultCallback
from .context import (
    EngineMode,
    ExecutorFactory,
    ExecutorOptions,
    LoaderFactory,
    RunnerFactory,
    SharedEngineContext,
    create_ephemeral_context,
)
from .exceptions import (
    ConfigurationError,
    EngineClosedError,
    EngineFrozenError,
    NoTargetsAvailableError,
    NoTemplatesAvailableError,
    OptionNotSupportedError,
    RampartError,
    TemplateLoadError,
)
from .inputs import SimpleInputProvider
from .options import EngineOptions, OptionFn, apply_options, changed_shared_fields


class InvocationState(Enum):
    """Lifecycle of one execute() call"""
    CONFIGURING = "configuring"
    LOADING = "loading"
    VALIDATING = "validating"
    EXECUTING = "executing"
    DRAINING = "draining"
    DONE = "done"
    FAILED = "failed"


def _build_shared_context(
    option_fns: Iterable[OptionFn],
    mode: EngineMode,
    runner_factory: Optional[RunnerFactory],
    loader_factory: Optional[LoaderFactory],
    executor_factory: Optional[ExecutorFactory],
) -> SharedEngineContext:
    """Apply construction options to the defaults and build the shared context"""
    options = apply_options(EngineOptions(), option_fns)
    try:
        return SharedEngineContext(
            options,
            mode,
            runner_factory=runner_factory,
            loader_factory=loader_factory,
            executor_factory=executor_factory,
        )
    except OSError as e:
        raise ConfigurationError(f"could not initialize engine: {e}") from e


def _validate_inputs(store: TemplateStore, provider: SimpleInputProvider):
    if provider.count() == 0:
        raise NoTargetsAvailableError()
    if not store.templates() and not store.workflows():
        raise NoTemplatesAvailableError()


def _as_target_list(targets: Union[str, Iterable[str]]) -> List[str]:
    # A single string is one target, not a sequence of characters
    if isinstance(targets, str):
        return [targets]
    return list(targets)


def _new_provider(targets: Union[str, Iterable[str]]) -> SimpleInputProvider:
    provider = SimpleInputProvider()
    for target in _as_target_list(targets):
        provider.set(target)
    return provider


class EngineBuilder:
    """
    Setup phase of a thread-safe engine.

    The builder owns the shared engine context while it is being
    configured. Its setup operations are not safe to call concurrently.

    Example:
        >>> builder = EngineBuilder(with_template_dir("templates"), enable_stats())
        >>> builder.load_all_templates()
        >>> engine = builder.build()
    """

    def __init__(
        self,
        *option_fns: OptionFn,
        runner_factory: Optional[RunnerFactory] = None,
        loader_factory: Optional[LoaderFactory] = None,
        executor_factory: Optional[ExecutorFactory] = None,
    ):
        """
        Apply construction options and create the shared handles.

        Args:
            option_fns: Option functions applied in order to the defaults
            runner_factory: Creates the template runner of an invocation
            loader_factory: Creates the template store of an invocation
            executor_factory: Creates the scan executor of an invocation

        Raises:
            ConfigurationError: If an option function fails
        """
        self._shared = _build_shared_context(
            option_fns,
            EngineMode.THREAD_SAFE,
            runner_factory,
            loader_factory,
            executor_factory,
        )
        self._frozen = False

    @property
    def options(self) -> EngineOptions:
        """Copy of the base options"""
        return self._shared.options.clone()

    def _check_not_frozen(self):
        if self._frozen:
            raise EngineFrozenError("engine was already built")

    def load_all_templates(self) -> TemplateStore:
        """Load the templates selected by the construction options"""
        self._check_not_frozen()
        return self._shared.load_all_templates()

    def set_result_callback(self, callback: ResultCallback):
        """Replace the result callbacks with ``callback``"""
        self._check_not_frozen()
        self._shared.set_result_callback(callback)

    def build(self) -> "ThreadSafeEngine":
        """Freeze the builder and return the concurrent handle"""
        self._check_not_frozen()
        self._frozen = True
        return ThreadSafeEngine(self._shared)

    def close(self):
        """Release the shared handles of a builder that is never built"""
        if not self._frozen:
            self._frozen = True
            self._shared.close()


class ThreadSafeEngine:
    """
    Concurrency-safe engine handle.

    ``execute`` may be called concurrently, from several asyncio tasks or
    (through ``execute_blocking``) from several threads. ``close`` must not
    be called while invocations are still running; their outcome is
    undefined.
    """

    def __init__(self, shared: SharedEngineContext):
        self._shared = shared
        self.logger = structlog.get_logger(__name__)

    @property
    def options(self) -> EngineOptions:
        """Copy of the base options"""
        return self._shared.options.clone()

    @property
    def mode(self) -> EngineMode:
        return self._shared.mode

    @property
    def closed(self) -> bool:
        return self._shared.closed

    def _prepare(
        self,
        targets: Iterable[str],
        option_fns: Tuple[OptionFn, ...],
        log,
    ) -> Tuple[ExecutorOptions, TemplateStore, SimpleInputProvider]:
        """Configuring, loading and validating steps of one invocation"""
        shared = self._shared

        log.debug("invocation_state", state=InvocationState.CONFIGURING.value)
        options = apply_options(shared.options.clone(), option_fns)
        changed = changed_shared_fields(shared.options, options)
        if changed:
            raise OptionNotSupportedError(
                f"options cannot be changed per invocation: {', '.join(changed)}"
            )
        executor_options = create_ephemeral_context(shared, options)

        log.debug("invocation_state", state=InvocationState.LOADING.value)
        try:
            executor_options.workflow_loader = WorkflowLoader(shared.catalog)
        except Exception as e:
            raise TemplateLoadError(f"could not create workflow loader: {e}") from e
        try:
            store = shared.loader_factory(LoaderConfig(options, shared.catalog, executor_options))
            store.load()
        except Exception as e:
            raise TemplateLoadError(f"could not create loader client: {e}") from e

        log.debug("invocation_state", state=InvocationState.VALIDATING.value)
        provider = _new_provider(targets)
        _validate_inputs(store, provider)

        return executor_options, store, provider

    async def execute(self, targets: Iterable[str], *option_fns: OptionFn):
        """
        Run the selected templates against ``targets`` and wait for completion.

        Args:
            targets: Target URLs or hosts (a single string is one target)
            option_fns: Options applied to a copy of the base options

        Raises:
            EngineClosedError: If the engine was closed
            ConfigurationError: If an option function fails
            TemplateLoadError: If templates cannot be resolved
            NoTargetsAvailableError: If ``targets`` is empty
            NoTemplatesAvailableError: If no template or workflow was selected
        """
        if self._shared.closed:
            raise EngineClosedError("engine is closed")

        log = self.logger
        try:
            executor_options, store, provider = self._prepare(targets, option_fns, log)
        except RampartError as e:
            log.warning(
                "invocation_state",
                state=InvocationState.FAILED.value,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise

        log = log.bind(invocation_id=executor_options.invocation_id)
        executor = self._shared.executor_factory(executor_options)

        log.debug("invocation_state", state=InvocationState.EXECUTING.value)
        try:
            await executor.run_scan(store.templates(), store.workflows(), provider, False)

            log.debug("invocation_state", state=InvocationState.DRAINING.value)
            await executor.wait()
        finally:
            await executor.close()

        log.info(
            "invocation_state",
            state=InvocationState.DONE.value,
            targets=provider.count(),
            templates=len(store.templates()),
            workflows=len(store.workflows()),
        )

    def execute_blocking(self, targets: Iterable[str], *option_fns: OptionFn):
        """Run ``execute`` on a private event loop; for use from plain threads"""
        asyncio.run(self.execute(_as_target_list(targets), *option_fns))

    def close(self):
        """Release all shared handles"""
        self._shared.close()


class ScanEngine:
    """
    Single-shot engine.

    Templates are loaded once onto the shared context and every scan reuses
    the same execution context. Not safe for concurrent ``execute`` calls
    and must be driven from one event loop; use ``EngineBuilder`` for
    concurrent scans.

    Example:
        >>> engine = ScanEngine(with_template_dir("templates"))
        >>> engine.load_all_templates()
        >>> await engine.execute(["https://example.com"], callback=print)
        >>> engine.close()
    """

    def __init__(
        self,
        *option_fns: OptionFn,
        runner_factory: Optional[RunnerFactory] = None,
        loader_factory: Optional[LoaderFactory] = None,
        executor_factory: Optional[ExecutorFactory] = None,
    ):
        self._shared = _build_shared_context(
            option_fns,
            EngineMode.SINGLE_SHOT,
            runner_factory,
            loader_factory,
            executor_factory,
        )
        self._executor_options = create_ephemeral_context(self._shared, self._shared.options)
        self._executor_options.workflow_loader = WorkflowLoader(self._shared.catalog)
        self._executor = self._shared.executor_factory(self._executor_options)

        self.logger = structlog.get_logger(__name__)

    @property
    def options(self) -> EngineOptions:
        return self._shared.options.clone()

    @property
    def mode(self) -> EngineMode:
        return self._shared.mode

    @property
    def store(self) -> Optional[TemplateStore]:
        return self._shared.store

    def load_all_templates(self) -> TemplateStore:
        """Load the templates selected by the engine options"""
        return self._shared.load_all_templates()

    def set_result_callback(self, callback: ResultCallback):
        """Replace the result callbacks with ``callback``"""
        self._shared.set_result_callback(callback)

    async def execute(self, targets: Iterable[str], callback: Optional[ResultCallback] = None):
        """
        Run the loaded templates against ``targets``.

        Templates are loaded on first use if load_all_templates() was not
        called.

        Raises:
            EngineClosedError: If the engine was closed
            TemplateLoadError: If templates cannot be loaded
            NoTargetsAvailableError: If ``targets`` is empty
            NoTemplatesAvailableError: If no template or workflow was loaded
        """
        if self._shared.closed:
            raise EngineClosedError("engine is closed")
        if callback is not None:
            self.set_result_callback(callback)

        store = self._shared.store or self.load_all_templates()
        provider = _new_provider(targets)
        _validate_inputs(store, provider)

        try:
            await self._executor.run_scan(store.templates(), store.workflows(), provider, False)
            await self._executor.wait()
        finally:
            await self._executor.close()

        self.logger.info(
            "scan_complete",
            targets=provider.count(),
            templates=len(store.templates()),
            workflows=len(store.workflows()),
        )

    def close(self):
        """Release all shared handles"""
        self._shared.close()
