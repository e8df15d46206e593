"""Timeout-guarded, retryable execution of a single test case."""

import asyncio
import logging
import time

from ciengine.test_engine.cancellation import CancellationToken
from ciengine.test_engine.errors import TestSkipped
from ciengine.test_engine.models.test_case import TestCase
from ciengine.test_engine.models.test_result import CaseOutcome, TestResult

logger = logging.getLogger(__name__)


async def run_with_timeout(
    case: TestCase,
    timeout: float,
    token: CancellationToken | None = None,
) -> TestResult:
    """Run a test case once, racing it against a timer.

    The operation runs under an ``asyncio.timeout`` deadline. If the deadline
    fires first the operation is cancelled and the case token is tripped, and
    the result is a failure with ``error_kind="timeout"``. A ``TimeoutError``
    raised by the operation itself is an ordinary failure.

    Cancellation is cooperative: an operation that blocks the event loop or
    never awaits cannot be stopped this way. Such code should run through
    ``command_operation`` in its own process.

    Args:
        case: Test case to execute
        timeout: Seconds before the attempt is abandoned
        token: Parent cancellation token

    Returns:
        Result of this single attempt, never raises for test failures

    """
    case_token = token.child() if token is not None else CancellationToken()
    start = time.monotonic()
    deadline = asyncio.timeout(timeout)

    try:
        async with deadline:
            outcome = await case.operation(case_token)
    except TimeoutError as e:
        if not deadline.expired():
            return _failure(case, start, e)
        case_token.cancel("timeout")
        logger.warning(f"Test {case.name} timed out after {timeout}s")
        return TestResult(
            test_name=case.name,
            status="failed",
            duration=time.monotonic() - start,
            error=f"Test {case.name} did not complete within {timeout} seconds",
            error_kind="timeout",
        )
    except asyncio.CancelledError:
        current = asyncio.current_task()
        task_cancelled = current is not None and current.cancelling() > 0
        if token is not None and token.cancelled and not task_cancelled:
            return TestResult(
                test_name=case.name,
                status="failed",
                duration=time.monotonic() - start,
                error=f"Test {case.name} was cancelled",
                error_kind="cancelled",
            )
        raise
    except TestSkipped as e:
        return TestResult(
            test_name=case.name,
            status="skipped",
            duration=time.monotonic() - start,
            error=str(e) or None,
        )
    except Exception as e:
        return _failure(case, start, e)

    if not isinstance(outcome, CaseOutcome):
        outcome = CaseOutcome()

    return TestResult(
        test_name=case.name,
        status="passed",
        duration=time.monotonic() - start,
        coverage=outcome.coverage,
        metrics=outcome.metrics,
    )


def _failure(case: TestCase, start: float, e: Exception) -> TestResult:
    logger.info(f"Test {case.name} failed: {type(e).__name__}: {e}")
    return TestResult(
        test_name=case.name,
        status="failed",
        duration=time.monotonic() - start,
        error=str(e) or type(e).__name__,
        error_kind="failure",
    )


async def run_with_retry(
    case: TestCase,
    timeout: float,
    max_retries: int = 0,
    base_delay: float = 1.0,
    retry_on_timeout: bool = False,
    token: CancellationToken | None = None,
) -> TestResult:
    """Run a test case, retrying failures with linear-in-attempt backoff.

    The delay before retry ``n`` is ``n * base_delay``. Timeouts are retried
    only when ``retry_on_timeout`` is set, since repeating a hung operation
    without a hard kill can repeat the hang. Only the final attempt's result
    is returned; earlier attempts contribute their error messages.

    Args:
        case: Test case to execute
        timeout: Per-attempt timeout in seconds
        max_retries: Additional attempts allowed after the first
        base_delay: Backoff unit in seconds
        retry_on_timeout: Whether timed out attempts are retried
        token: Cancellation token; no new attempt starts once it is tripped

    Returns:
        Result of the final attempt

    """
    previous_errors: list[str] = []
    attempt = 0

    while True:
        attempt += 1
        result = await run_with_timeout(case, timeout, token)

        retryable = result.status == "failed" and result.error_kind != "cancelled"
        if result.timed_out and not retry_on_timeout:
            retryable = False

        if not retryable or attempt > max_retries:
            break
        if token is not None and token.cancelled:
            break

        previous_errors.append(result.error or "failed")
        delay = attempt * base_delay
        logger.info(
            f"Retrying {case.name} in {delay:.2f}s "
            f"(attempt {attempt + 1}/{max_retries + 1})"
        )
        await asyncio.sleep(delay)

    return result.model_copy(
        update={"attempts": attempt, "previous_errors": tuple(previous_errors)}
    )
