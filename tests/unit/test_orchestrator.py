"""Tests for the test orchestrator."""

import asyncio

import pytest

from ciengine.test_engine.analytics.store import InMemoryResultStore
from ciengine.test_engine.cancellation import CancellationToken
from ciengine.test_engine.models.config import EngineConfiguration
from ciengine.test_engine.models.test_case import (
    SuiteConfiguration,
    TestCase,
    TestSuite,
)
from ciengine.test_engine.models.test_result import CaseOutcome
from ciengine.test_engine.orchestrator import TestOrchestrator


def passing(name: str, log: list[str] | None = None, coverage: float = 0.0):
    """Create a passing test case that records its name when run."""

    async def operation(token: CancellationToken) -> CaseOutcome:
        if log is not None:
            log.append(name)
        return CaseOutcome(coverage=coverage)

    return TestCase(name=name, operation=operation)


def failing(name: str, priority: str = "medium") -> TestCase:
    """Create a test case that always fails."""

    async def operation(token: CancellationToken) -> None:
        raise AssertionError(f"{name} failed")

    return TestCase(name=name, operation=operation, priority=priority)


def make_suite(*tests: TestCase, name: str = "unit", **config) -> TestSuite:
    """Create a unit suite from test cases."""
    return TestSuite(
        name=name,
        type="unit",
        tests=list(tests),
        configuration=SuiteConfiguration(**config),
    )


@pytest.fixture
def orchestrator() -> TestOrchestrator:
    """Create an orchestrator without retry delays."""
    return TestOrchestrator(EngineConfiguration(retry_base_delay=0))


async def test_execute_test_suite_all_passed(orchestrator: TestOrchestrator) -> None:
    """execute_test_suite aggregates passing results."""
    suite = make_suite(passing("a", coverage=0.5), passing("b", coverage=1.0))

    result = await orchestrator.execute_test_suite(suite)

    assert result.status == "passed"
    assert result.suite_name == "unit"
    assert result.suite_type == "unit"
    assert result.passed_count == 2
    assert result.coverage == 0.75
    assert orchestrator.active_executions() == ()


async def test_execute_test_suite_with_failure(orchestrator: TestOrchestrator) -> None:
    """A suite with one failed test is failed and keeps the other results."""
    suite = make_suite(passing("a"), failing("b"))

    result = await orchestrator.execute_test_suite(suite)

    assert result.status == "failed"
    assert [r.status for r in result.results] == ["passed", "failed"]
    assert result.results[1].error == "b failed"


async def test_execute_test_suite_uses_given_execution_id(
    orchestrator: TestOrchestrator,
) -> None:
    """execute_test_suite registers the run under a provided id."""
    result = await orchestrator.execute_test_suite(
        make_suite(passing("a")), execution_id="run-1"
    )

    assert result.execution_id == "run-1"


async def test_sequential_order_is_stable(orchestrator: TestOrchestrator) -> None:
    """Sequential suites run and report tests in declaration order every time."""
    log: list[str] = []
    suite = make_suite(
        *(passing(name, log) for name in ["c", "a", "d", "b"]),
        parallel_execution=False,
    )

    first = await orchestrator.execute_test_suite(suite)
    second = await orchestrator.execute_test_suite(suite)

    assert log == ["c", "a", "d", "b", "c", "a", "d", "b"]
    assert [r.test_name for r in first.results] == ["c", "a", "d", "b"]
    assert [r.test_name for r in second.results] == ["c", "a", "d", "b"]


async def test_parallel_results_follow_declaration_order(
    orchestrator: TestOrchestrator,
) -> None:
    """Parallel results are reported in declaration order, not completion order."""

    def delayed(name: str, delay: float) -> TestCase:
        async def operation(token: CancellationToken) -> None:
            await asyncio.sleep(delay)

        return TestCase(name=name, operation=operation)

    suite = make_suite(delayed("slow", 0.05), delayed("fast", 0.0))

    result = await orchestrator.execute_test_suite(suite)

    assert [r.test_name for r in result.results] == ["slow", "fast"]


async def test_parallel_respects_max_concurrency() -> None:
    """No more than max_concurrency tests run at once."""
    orchestrator = TestOrchestrator(EngineConfiguration(max_concurrency=2))
    running = 0
    peak = 0

    def tracked(name: str) -> TestCase:
        async def operation(token: CancellationToken) -> None:
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1

        return TestCase(name=name, operation=operation)

    await orchestrator.execute_test_suite(
        make_suite(*(tracked(f"t{i}") for i in range(6)))
    )

    assert peak == 2


async def test_engine_disables_parallel_execution() -> None:
    """parallel_execution=False on the engine forces sequential suites."""
    orchestrator = TestOrchestrator(EngineConfiguration(parallel_execution=False))
    log: list[str] = []

    await orchestrator.execute_test_suite(
        make_suite(passing("x", log), passing("y", log))
    )

    assert log == ["x", "y"]


async def test_suite_retry_count_overrides_engine() -> None:
    """A suite retry_count takes precedence over the engine default."""
    orchestrator = TestOrchestrator(
        EngineConfiguration(max_retries=5, retry_base_delay=0)
    )
    calls = 0

    async def operation(token: CancellationToken) -> None:
        nonlocal calls
        calls += 1
        raise RuntimeError("flaky")

    suite = make_suite(TestCase(name="t", operation=operation), retry_count=1)

    result = await orchestrator.execute_test_suite(suite)

    assert calls == 2
    assert result.results[0].attempts == 2


async def test_test_timeout_overrides_suite_timeout(
    orchestrator: TestOrchestrator,
) -> None:
    """A test timeout replaces the suite timeout."""

    async def operation(token: CancellationToken) -> None:
        await asyncio.sleep(10)

    suite = make_suite(
        TestCase(name="hang", operation=operation, timeout=0.02), timeout=60
    )

    result = await orchestrator.execute_test_suite(suite)

    assert result.results[0].timed_out
    assert result.status == "failed"


async def test_stop_on_critical_failure_skips_rest(
    orchestrator: TestOrchestrator,
) -> None:
    """A failed critical test skips the remaining tests of a sequential suite."""
    suite = make_suite(
        passing("first"),
        failing("critical", priority="critical"),
        passing("after"),
        parallel_execution=False,
        stop_on_critical_failure=True,
    )

    result = await orchestrator.execute_test_suite(suite)

    assert [r.status for r in result.results] == ["passed", "failed", "skipped"]
    assert result.results[2].error == "Skipped after critical test critical failed"


async def test_critical_failure_without_stop_runs_rest(
    orchestrator: TestOrchestrator,
) -> None:
    """Without stop_on_critical_failure every test still runs."""
    suite = make_suite(
        failing("critical", priority="critical"),
        passing("after"),
        parallel_execution=False,
    )

    result = await orchestrator.execute_test_suite(suite)

    assert [r.status for r in result.results] == ["failed", "passed"]


async def test_cancelled_token_schedules_nothing(
    orchestrator: TestOrchestrator,
) -> None:
    """Tests are not started once the parent token is cancelled."""
    token = CancellationToken()
    token.cancel()
    log: list[str] = []

    result = await orchestrator.execute_test_suite(
        make_suite(passing("a", log), parallel_execution=False), token=token
    )

    assert log == []
    assert result.results == ()


async def test_cancel_execution_stops_scheduling(
    orchestrator: TestOrchestrator,
) -> None:
    """Cancelling a running suite stops the tests not yet started."""
    log: list[str] = []

    async def cancel_self(token: CancellationToken) -> None:
        execution = orchestrator.active_executions()[0]
        await orchestrator.cancel_execution(execution.id)

    suite = make_suite(
        TestCase(name="canceller", operation=cancel_self),
        passing("never", log),
        parallel_execution=False,
    )

    result = await orchestrator.execute_test_suite(suite)

    assert log == []
    assert result.status == "cancelled"
    assert [r.test_name for r in result.results] == ["canceller"]


async def test_execute_all_filters_by_type(orchestrator: TestOrchestrator) -> None:
    """execute_all runs registered suites of the requested type in order."""
    orchestrator.add_test_suite(make_suite(passing("a"), name="first"))
    orchestrator.add_test_suite(
        TestSuite(name="api", type="integration", tests=[passing("b")])
    )
    orchestrator.add_test_suite(make_suite(passing("c"), name="second"))

    results = await orchestrator.execute_all("unit")

    assert [r.suite_name for r in results] == ["first", "second"]


def test_add_and_remove_suites(orchestrator: TestOrchestrator) -> None:
    """Suites are replaced by name and can be removed."""
    orchestrator.add_test_suite(make_suite(passing("a")))
    orchestrator.add_test_suite(make_suite(passing("a"), passing("b")))

    assert len(orchestrator.suites) == 1
    assert len(orchestrator.suites[0].tests) == 2
    assert orchestrator.suites_of_type("unit") == list(orchestrator.suites)

    assert orchestrator.remove_test_suite("unit")
    assert not orchestrator.remove_test_suite("unit")
    assert orchestrator.suites == ()


async def test_results_are_appended_to_store() -> None:
    """Every suite result is appended to the result store."""
    store = InMemoryResultStore()
    orchestrator = TestOrchestrator(result_store=store)

    result = await orchestrator.execute_test_suite(make_suite(passing("a")))

    assert store.suite_results() == [result]
