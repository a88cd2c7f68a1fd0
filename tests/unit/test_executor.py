"""
Unit tests for the work pool and scan executor.

Run with: pytest tests/unit/test_executor.py -v
"""

import asyncio

import pytest

from rampart.catalog import CompiledStep, CompiledWorkflow, parse_document
from rampart.core import (
    EngineMode,
    EngineOptions,
    ScanExecutor,
    SharedEngineContext,
    SimpleInputProvider,
    WorkPool,
    cluster_templates,
    create_ephemeral_context,
)


def make_template(template_id: str, path: str = "{{BaseURL}}/", severity: str = "info"):
    return parse_document({
        "id": template_id,
        "info": {"name": template_id.title(), "severity": severity},
        "http": [{"path": path, "matchers": [{"type": "status", "status": [200]}]}],
    })


@pytest.fixture
def make_executor(tmp_path):
    """Build an executor with a fake runner and a recording result callback"""
    contexts = []

    def build(runner_factory, **overrides):
        options = EngineOptions(template_dir=str(tmp_path), silent=True, **overrides)
        shared = SharedEngineContext(options, EngineMode.THREAD_SAFE, runner_factory=runner_factory)
        results = []
        shared.set_result_callback(results.append)
        contexts.append(shared)
        executor_options = create_ephemeral_context(shared, shared.options)
        return ScanExecutor(executor_options), results

    yield build

    for shared in contexts:
        shared.close()


class TestClusterTemplates:
    """Test suite for request clustering"""

    def test_identical_requests_grouped(self):
        first = make_template("a", "{{BaseURL}}/")
        second = make_template("b", "{{BaseURL}}/")
        other = make_template("c", "{{BaseURL}}/admin")

        clusters = cluster_templates([first, other, second])

        assert [[t.id for t in cluster] for cluster in clusters] == [["a", "b"], ["c"]]

    def test_empty(self):
        assert cluster_templates([]) == []


class TestWorkPool:
    """Test suite for WorkPool class"""

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            WorkPool(0)

    @pytest.mark.asyncio
    async def test_bounds_concurrency(self):
        """Test no more than size tasks run at once"""
        pool = WorkPool(size=2)
        running = 0
        peak = 0

        async def work():
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.02)
            running -= 1

        for _ in range(6):
            pool.submit(work())
        await pool.wait()

        assert peak == 2
        assert pool.pending == 0

    @pytest.mark.asyncio
    async def test_wait_includes_tasks_submitted_while_waiting(self):
        pool = WorkPool(size=4)
        done = []

        async def child():
            await asyncio.sleep(0.01)
            done.append("child")

        async def parent():
            pool.submit(child())
            done.append("parent")

        pool.submit(parent())
        await pool.wait()

        assert sorted(done) == ["child", "parent"]

    @pytest.mark.asyncio
    async def test_crashing_task_does_not_break_wait(self):
        pool = WorkPool(size=2)
        done = []

        async def crash():
            raise RuntimeError("boom")

        async def ok():
            done.append(True)

        pool.submit(crash())
        pool.submit(ok())
        await pool.wait()

        assert done == [True]


class TestScanExecutor:
    """Test suite for ScanExecutor class"""

    @pytest.mark.asyncio
    async def test_runs_every_template_against_every_target(self, make_executor, runner_factory):
        recorder = runner_factory(matching={"a"})
        executor, results = make_executor(recorder)
        templates = [make_template("a"), make_template("b", "{{BaseURL}}/b")]

        scheduled = await executor.run_scan(
            templates, [], SimpleInputProvider(["x.example", "y.example"])
        )
        await executor.wait()

        runner = executor.executor_options.runner
        assert scheduled is True
        assert executor.scheduled_count == 4
        assert len(runner.calls) == 4
        assert sorted(r.target for r in results) == ["x.example", "y.example"]
        assert all(r.template_id == "a" for r in results)

    @pytest.mark.asyncio
    async def test_results_carry_invocation_id(self, make_executor, runner_factory):
        executor, results = make_executor(runner_factory(matching={"a"}))

        await executor.run_scan([make_template("a")], [], SimpleInputProvider(["x.example"]))
        await executor.wait()

        assert results[0].invocation_id == executor.invocation_id
        assert results[0].workflow_id is None

    @pytest.mark.asyncio
    async def test_nothing_scheduled_without_targets(self, make_executor, runner_factory):
        executor, _ = make_executor(runner_factory())

        scheduled = await executor.run_scan([make_template("a")], [], SimpleInputProvider())

        assert scheduled is False

    @pytest.mark.asyncio
    async def test_failure_becomes_result_record(self, make_executor, runner_factory):
        """Test a failing work item is reported and the scan goes on"""
        executor, results = make_executor(runner_factory(matching={"b"}, failing={"a"}))
        templates = [make_template("a"), make_template("b", "{{BaseURL}}/b")]

        await executor.run_scan(templates, [], SimpleInputProvider(["x.example"]))
        await executor.wait()

        failures = [r for r in results if not r.matched]
        matches = [r for r in results if r.matched]
        assert [r.template_id for r in failures] == ["a"]
        assert "connection refused" in failures[0].error
        assert failures[0].invocation_id == executor.invocation_id
        assert [r.template_id for r in matches] == ["b"]
        assert executor.error_count == 1
        assert executor.executor_options.host_errors.error_count("x.example") == 1

    @pytest.mark.asyncio
    async def test_failing_host_is_skipped(self, make_executor, runner_factory):
        """Test a host over the error threshold is not scanned further"""
        recorder = runner_factory(failing={"a"})
        executor, _ = make_executor(recorder, max_host_error=1, concurrency=1)
        templates = [make_template("a"), make_template("b", "{{BaseURL}}/b")]

        await executor.run_scan(templates, [], SimpleInputProvider(["x.example"]))
        await executor.wait()

        assert executor.executor_options.runner.calls == [(("a",), "x.example")]

    @pytest.mark.asyncio
    async def test_dedupe_sends_shared_request_once(self, make_executor, runner_factory):
        executor, results = make_executor(runner_factory(matching={"a", "b"}))
        templates = [make_template("a"), make_template("b")]

        await executor.run_scan(templates, [], SimpleInputProvider(["x.example"]), dedupe=True)
        await executor.wait()

        assert executor.executor_options.runner.calls == [(("a", "b"), "x.example")]
        assert sorted(r.template_id for r in results) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_workflow_runs_subtemplates_after_match(self, make_executor, runner_factory):
        executor, results = make_executor(runner_factory(matching={"detect", "panel"}))
        workflow = CompiledWorkflow(
            id="chain",
            info=make_template("detect").info,
            steps=(CompiledStep(
                template=make_template("detect"),
                subtemplates=(CompiledStep(template=make_template("panel", "{{BaseURL}}/p")),),
            ),),
        )

        await executor.run_scan([], [workflow], SimpleInputProvider(["x.example"]))
        await executor.wait()

        assert [c[0] for c in executor.executor_options.runner.calls] == [("detect",), ("panel",)]
        assert [r.template_id for r in results] == ["detect", "panel"]
        assert all(r.workflow_id == "chain" for r in results)

    @pytest.mark.asyncio
    async def test_workflow_stops_without_match(self, make_executor, runner_factory):
        executor, results = make_executor(runner_factory(matching={"panel"}))
        workflow = CompiledWorkflow(
            id="chain",
            info=make_template("detect").info,
            steps=(CompiledStep(
                template=make_template("detect"),
                subtemplates=(CompiledStep(template=make_template("panel", "{{BaseURL}}/p")),),
            ),),
        )

        await executor.run_scan([], [workflow], SimpleInputProvider(["x.example"]))
        await executor.wait()

        assert executor.executor_options.runner.calls == [(("detect",), "x.example")]
        assert results == []

    @pytest.mark.asyncio
    async def test_progress_counters(self, make_executor, runner_factory):
        executor, _ = make_executor(runner_factory(matching={"a"}), stats=True)

        await executor.run_scan(
            [make_template("a"), make_template("b", "{{BaseURL}}/b")],
            [],
            SimpleInputProvider(["x.example"]),
        )
        await executor.wait()

        snapshot = executor.executor_options.progress.snapshot()
        assert snapshot == {"items": 2, "requests": 2, "matched": 1, "errors": 0}

    @pytest.mark.asyncio
    async def test_resume_state_records_completed_items(self, make_executor, runner_factory):
        executor, _ = make_executor(runner_factory())

        await executor.run_scan([make_template("a")], [], SimpleInputProvider(["x.example"]))
        await executor.wait()

        assert executor.executor_options.resume.is_done("a", "x.example")
        assert not executor.executor_options.resume.is_done("a", "y.example")

    @pytest.mark.asyncio
    async def test_close_releases_runner(self, make_executor, runner_factory):
        executor, _ = make_executor(runner_factory())

        await executor.close()

        assert executor.executor_options.runner.closed is True


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
