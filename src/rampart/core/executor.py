"""
Scan Executor - Runs templates and workflows against targets.

One executor belongs to one invocation. It fans work items out to a bounded
pool of asyncio tasks and exposes wait() as the point where the invocation
blocks until its own work has drained.

Errors of individual work items never escape the executor: they are written
to the output channel as failure records and the scan goes on.

Design Pattern: Worker Pool + Observer (result callbacks via the output writer)
"""

import asyncio
from typing import Awaitable, Dict, List, Optional, Set, Tuple

import structlog

from ..catalog.templates import CompiledStep, CompiledWorkflow, Template
from ..scanners.base_scanner import ResultEvent, ScannerError
from .context import ExecutorOptions
from .inputs import SimpleInputProvider


def cluster_templates(templates: List[Template]) -> List[List[Template]]:
    """
    Group templates that send identical requests.

    Order is preserved: clusters appear in the order of their first template.
    """
    clusters: Dict[Tuple, List[Template]] = {}
    for template in templates:
        clusters.setdefault(template.request_signature(), []).append(template)
    return list(clusters.values())


class WorkPool:
    """
    Bounded pool of asyncio tasks.

    At most ``size`` submitted coroutines run at the same time. wait()
    returns once every submitted task, including tasks submitted while
    waiting, has finished.

    Example:
        >>> pool = WorkPool(size=10)
        >>> pool.submit(do_work(item))
        >>> await pool.wait()
    """

    def __init__(self, size: int):
        if size < 1:
            raise ValueError("pool size must be at least 1")
        self.size = size
        self._semaphore = asyncio.Semaphore(size)
        self._tasks: Set[asyncio.Task] = set()
        self.logger = structlog.get_logger(__name__)

    async def _run(self, work: Awaitable):
        async with self._semaphore:
            await work

    def submit(self, work: Awaitable) -> asyncio.Task:
        """Schedule ``work`` on the pool"""
        task = asyncio.create_task(self._run(work))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def wait(self):
        """Block until every submitted task has finished"""
        while self._tasks:
            outcomes = await asyncio.gather(*list(self._tasks), return_exceptions=True)
            for outcome in outcomes:
                if isinstance(outcome, BaseException) and not isinstance(outcome, asyncio.CancelledError):
                    self.logger.error("work_item_crashed", error=repr(outcome))


class ScanExecutor:
    """
    Executes templates and workflows for one invocation.

    Example:
        >>> executor = ScanExecutor(executor_options)
        >>> await executor.run_scan(templates, workflows, provider)
        >>> await executor.wait()
        >>> await executor.close()
    """

    def __init__(self, executor_options: ExecutorOptions):
        """
        Initialize the executor.

        Args:
            executor_options: Execution options of the owning invocation
        """
        self.executor_options = executor_options
        self.options = executor_options.options
        self.invocation_id = executor_options.invocation_id
        self.work_pool = WorkPool(self.options.concurrency)

        self.scheduled_count = 0
        self.result_count = 0
        self.error_count = 0

        self.logger = structlog.get_logger(__name__).bind(invocation_id=self.invocation_id)

    async def run_scan(
        self,
        templates: List[Template],
        workflows: List[CompiledWorkflow],
        input_provider: SimpleInputProvider,
        dedupe: bool = False,
    ) -> bool:
        """
        Schedule every template and workflow against every target.

        Args:
            templates: Templates to run
            workflows: Compiled workflows to run
            input_provider: Targets of the invocation
            dedupe: Send identical requests of different templates only once

        Returns:
            True if any work item was scheduled
        """
        clusters = cluster_templates(templates) if dedupe else [[t] for t in templates]
        scheduled = 0

        for target in input_provider:
            for cluster in clusters:
                self.work_pool.submit(self._execute_cluster(cluster, target))
                scheduled += 1
            for workflow in workflows:
                self.work_pool.submit(self._execute_workflow(workflow, target))
                scheduled += 1

        self.scheduled_count += scheduled
        self.executor_options.progress.add_items(scheduled)

        self.logger.info(
            "scan_scheduled",
            templates=len(templates),
            clusters=len(clusters),
            workflows=len(workflows),
            targets=input_provider.count(),
            work_items=scheduled,
            concurrency=self.work_pool.size,
        )
        return scheduled > 0

    async def wait(self):
        """Block until every work item of this executor has finished"""
        await self.work_pool.wait()
        self.logger.info(
            "scan_drained",
            work_items=self.scheduled_count,
            results=self.result_count,
            errors=self.error_count,
        )

    async def close(self):
        """Release the runner of this invocation"""
        await self.executor_options.runner.close()

    async def _execute_workflow(self, workflow: CompiledWorkflow, target: str):
        for step in workflow.steps:
            await self._execute_step(step, target, workflow.id)

    async def _execute_step(self, step: CompiledStep, target: str, workflow_id: str):
        matched = await self._execute_cluster([step.template], target, workflow_id)
        if not matched:
            return
        for subtemplate in step.subtemplates:
            await self._execute_step(subtemplate, target, workflow_id)

    async def _execute_cluster(
        self,
        cluster: List[Template],
        target: str,
        workflow_id: Optional[str] = None,
    ) -> bool:
        """
        Run one work item.

        Returns:
            True if any template of the cluster matched
        """
        ctx = self.executor_options
        item_id = "+".join(template.id for template in cluster)

        if ctx.host_errors.check(target):
            self.logger.debug("host_skipped", target=target, item=item_id)
            return False

        try:
            results = await ctx.runner.execute(cluster, target, ctx)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._report_failure(cluster, target, e, workflow_id)
            return False

        for result in results:
            result.invocation_id = self.invocation_id
            result.workflow_id = workflow_id
            ctx.output.write(result)

        self.result_count += len(results)
        ctx.progress.increment_matched(len(results))
        ctx.resume.mark_done(item_id, target)

        if self.options.verbose:
            ctx.colorizer.print(
                f"[dim]\\[{self.invocation_id}] {item_id} -> {target}: "
                f"{len(results)} result(s)[/dim]"
            )
        return bool(results)

    def _report_failure(
        self,
        cluster: List[Template],
        target: str,
        error: Exception,
        workflow_id: Optional[str],
    ):
        ctx = self.executor_options
        if isinstance(error, ScannerError):
            ctx.host_errors.mark_failed(target)

        self.error_count += 1
        ctx.progress.increment_errors()

        self.logger.warning(
            "work_item_failed",
            target=target,
            templates=[template.id for template in cluster],
            error=str(error),
        )

        for template in cluster:
            event = ResultEvent.from_error(template, target, error, workflow_id)
            event.invocation_id = self.invocation_id
            ctx.output.write(event)
