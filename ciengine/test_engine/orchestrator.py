"""Test orchestrator for executing registered test suites."""

import asyncio
import logging
import time

from ciengine.test_engine.analytics.store import ResultStore
from ciengine.test_engine.cancellation import CancellationToken
from ciengine.test_engine.execution_registry import ExecutionRegistry
from ciengine.test_engine.executor import run_with_retry
from ciengine.test_engine.models.config import EngineConfiguration
from ciengine.test_engine.models.execution import TestExecution
from ciengine.test_engine.models.test_case import SuiteType, TestCase, TestSuite
from ciengine.test_engine.models.test_result import TestResult, TestSuiteResult

logger = logging.getLogger(__name__)


class TestOrchestrator:
    """Runs test suites concurrently or sequentially under retry policy."""

    __test__ = False

    def __init__(
        self,
        config: EngineConfiguration | None = None,
        result_store: ResultStore | None = None,
    ) -> None:
        """Initialize orchestrator.

        Args:
            config: Engine configuration, defaults when None
            result_store: History receiving every suite result

        """
        self.config = config or EngineConfiguration()
        self.result_store = result_store
        self.registry = ExecutionRegistry()
        self._suites: dict[str, TestSuite] = {}

    def add_test_suite(self, suite: TestSuite) -> None:
        """Register a suite, replacing any suite with the same name."""
        if suite.name in self._suites:
            logger.info(f"Replacing registered suite {suite.name}")
        self._suites[suite.name] = suite
        logger.info(f"Registered suite {suite.name} ({len(suite.tests)} tests)")

    def remove_test_suite(self, name: str) -> bool:
        """Unregister a suite by name.

        Returns:
            True if a suite was removed

        """
        removed = self._suites.pop(name, None)
        if removed is not None:
            logger.info(f"Removed suite {name}")
        return removed is not None

    @property
    def suites(self) -> tuple[TestSuite, ...]:
        """Registered suites in registration order."""
        return tuple(self._suites.values())

    def suites_of_type(self, *suite_types: SuiteType) -> list[TestSuite]:
        """Registered suites of the given types."""
        return [s for s in self._suites.values() if s.type in suite_types]

    def active_executions(self) -> tuple[TestExecution, ...]:
        """Snapshot of executions in flight."""
        return self.registry.snapshot()

    async def cancel_execution(self, execution_id: str) -> bool:
        """Stop scheduling further tests for an execution."""
        return await self.registry.cancel(execution_id)

    async def execute_all(
        self,
        suite_type: SuiteType | None = None,
        token: CancellationToken | None = None,
    ) -> list[TestSuiteResult]:
        """Execute registered suites one after another."""
        suites = [
            s
            for s in self._suites.values()
            if suite_type is None or s.type == suite_type
        ]
        results = []
        for suite in suites:
            if token is not None and token.cancelled:
                break
            results.append(await self.execute_test_suite(suite, token=token))
        return results

    async def execute_test_suite(
        self,
        suite: TestSuite,
        token: CancellationToken | None = None,
        execution_id: str | None = None,
    ) -> TestSuiteResult:
        """Execute every test of a suite and aggregate the results.

        Args:
            suite: Suite to execute
            token: Parent cancellation token
            execution_id: Identifier to register the run under, generated if None

        Returns:
            Aggregated suite result

        """
        execution = TestExecution(name=suite.name, kind="suite")
        if execution_id is not None:
            execution.id = execution_id
        suite_token = token.child() if token is not None else CancellationToken()
        await self.registry.register(execution, suite_token)

        parallel = (
            suite.configuration.parallel_execution and self.config.parallel_execution
        )
        mode = "parallel" if parallel else "sequential"
        logger.info(
            f"Executing suite {suite.name} ({len(suite.tests)} tests, {mode})",
            extra={"execution_id": execution.id, "suite": suite.name},
        )

        start = time.monotonic()
        try:
            if parallel:
                results = await self._run_parallel(suite, suite_token)
            else:
                results = await self._run_sequential(suite, suite_token)
        except BaseException:
            await self.registry.complete(execution.id, "cancelled")
            raise

        failed = any(r.status == "failed" for r in results)
        finished = await self.registry.complete(
            execution.id, "failed" if failed else "passed"
        )

        suite_result = TestSuiteResult(
            execution_id=execution.id,
            suite_name=suite.name,
            suite_type=suite.type,
            status=finished.status,
            results=tuple(results),
            duration=time.monotonic() - start,
        )
        logger.info(
            f"Suite {suite.name} {suite_result.status}: "
            f"{suite_result.passed_count} passed, {suite_result.failed_count} failed, "
            f"{suite_result.skipped_count} skipped"
        )
        if self.result_store is not None:
            self.result_store.append_suite_result(suite_result)
        return suite_result

    async def _run_parallel(
        self, suite: TestSuite, token: CancellationToken
    ) -> list[TestResult]:
        """Run all tests concurrently, bounded by the worker pool size."""
        semaphore = asyncio.Semaphore(self.config.max_concurrency)

        async def bounded(case: TestCase) -> TestResult | None:
            async with semaphore:
                if token.cancelled:
                    return None
                return await self._run_single_test(suite, case, token)

        results = await asyncio.gather(
            *(bounded(case) for case in suite.tests), return_exceptions=True
        )
        return self._process_results(suite, list(results))

    async def _run_sequential(
        self, suite: TestSuite, token: CancellationToken
    ) -> list[TestResult]:
        """Run tests one at a time in declaration order."""
        stop_on_critical = (
            suite.configuration.stop_on_critical_failure
            or self.config.stop_on_critical_failure
        )
        results: list[TestResult] = []
        for index, case in enumerate(suite.tests):
            if token.cancelled:
                logger.info(f"Suite {suite.name} cancelled, not scheduling {case.name}")
                break

            result = await self._run_single_test(suite, case, token)
            results.append(result)

            critical_failure = case.priority == "critical" and result.status == "failed"
            if stop_on_critical and critical_failure:
                remaining = suite.tests[index + 1 :]
                logger.warning(
                    f"Critical test {case.name} failed, skipping {len(remaining)} tests"
                )
                results.extend(
                    TestResult(
                        test_name=skipped.name,
                        status="skipped",
                        duration=0.0,
                        error=f"Skipped after critical test {case.name} failed",
                    )
                    for skipped in remaining
                )
                break
        return results

    def _process_results(
        self, suite: TestSuite, results: list[TestResult | BaseException | None]
    ) -> list[TestResult]:
        """Turn gathered outcomes into results, one failing test at a time."""
        final_results: list[TestResult] = []
        for case, result in zip(suite.tests, results, strict=True):
            if isinstance(result, TestResult):
                final_results.append(result)
            elif isinstance(result, BaseException):
                logger.error(
                    f"Test execution error: {type(result).__name__}: {result}",
                    exc_info=result,
                )
                final_results.append(
                    TestResult(
                        test_name=case.name,
                        status="failed",
                        duration=0.0,
                        error=str(result) or type(result).__name__,
                        error_kind=(
                            "cancelled"
                            if isinstance(result, asyncio.CancelledError)
                            else "failure"
                        ),
                    )
                )
        return final_results

    async def _run_single_test(
        self, suite: TestSuite, case: TestCase, token: CancellationToken
    ) -> TestResult:
        """Run one test with the suite's timeout and retry settings."""
        timeout = case.timeout or suite.configuration.timeout
        max_retries = (
            suite.configuration.retry_count
            if suite.configuration.retry_count is not None
            else self.config.max_retries
        )
        logger.info(f"Running test {suite.name}/{case.name}")
        try:
            result = await run_with_retry(
                case,
                timeout=timeout,
                max_retries=max_retries,
                base_delay=self.config.retry_base_delay,
                retry_on_timeout=self.config.retry_on_timeout,
                token=token,
            )
        except Exception as e:
            logger.exception(f"Unexpected error running {case.name}")
            result = TestResult(
                test_name=case.name,
                status="failed",
                duration=0.0,
                error=str(e) or type(e).__name__,
                error_kind="failure",
            )
        logger.info(f"Test result: {suite.name}/{case.name} = {result.status}")
        return result
