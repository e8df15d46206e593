"""HTTP drivers for load generation and deployment health checks."""

import asyncio
import logging
import time

import aiohttp
import psutil

from ciengine.test_engine.cancellation import CancellationToken
from ciengine.test_engine.drivers.base import DeploymentValidator, LoadDriver
from ciengine.test_engine.models.drivers import CheckResult, LoadTestReport

logger = logging.getLogger(__name__)


def _percentile(values: list[float], percentile: float) -> float:
    if not values:
        return 0.0
    ordered = sorted(values)
    index = min(len(ordered) - 1, max(0, round(percentile * len(ordered)) - 1))
    return ordered[index]


class HttpLoadDriver(LoadDriver):
    """Sends a fixed number of requests with bounded concurrency."""

    def __init__(
        self,
        url: str,
        requests: int = 100,
        concurrency: int = 10,
        method: str = "GET",
        timeout: float = 10.0,
    ) -> None:
        """Initialize load driver for one target URL."""
        self.url = url
        self.requests = requests
        self.concurrency = concurrency
        self.method = method.upper()
        self.timeout = timeout

    async def run_load(self, token: CancellationToken) -> LoadTestReport:
        """Run the load test and collect latency statistics.

        Memory usage is the higher system-wide reading taken before and after
        the run. CPU usage is the system-wide average over the run. Both are
        fractions.

        """
        logger.info(
            f"Load testing {self.method} {self.url} "
            f"({self.requests} requests, concurrency {self.concurrency})"
        )
        semaphore = asyncio.Semaphore(self.concurrency)
        latencies: list[float] = []
        errors = 0
        client_timeout = aiohttp.ClientTimeout(total=self.timeout)
        psutil.cpu_percent(None)
        memory_before = psutil.virtual_memory().percent

        async with aiohttp.ClientSession(timeout=client_timeout) as session:

            async def send() -> None:
                nonlocal errors
                async with semaphore:
                    if token.cancelled:
                        return
                    start = time.monotonic()
                    try:
                        async with session.request(self.method, self.url) as response:
                            await response.read()
                            if response.status >= 400:
                                errors += 1
                    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                        logger.debug(f"Load request failed: {e}")
                        errors += 1
                    latencies.append(time.monotonic() - start)

            await asyncio.gather(*(send() for _ in range(self.requests)))

        cpu = psutil.cpu_percent(None)
        memory = max(memory_before, psutil.virtual_memory().percent)
        report = LoadTestReport(
            requests=len(latencies),
            errors=errors,
            average_response_time=sum(latencies) / len(latencies) if latencies else 0.0,
            p95_response_time=_percentile(latencies, 0.95),
            max_response_time=max(latencies, default=0.0),
            memory_usage=min(memory / 100, 1.0),
            cpu_usage=min(cpu / 100, 1.0),
        )
        logger.info(
            f"Load test finished: p95 {report.p95_response_time:.3f}s, "
            f"error rate {report.error_rate:.2%}"
        )
        return report


class HttpHealthValidator(DeploymentValidator):
    """Checks that a health endpoint answers with the expected status."""

    def __init__(
        self, url: str, expected_status: int = 200, timeout: float = 10.0
    ) -> None:
        """Initialize validator for one health URL."""
        self.url = url
        self.expected_status = expected_status
        self.timeout = timeout

    async def validate(self, token: CancellationToken) -> CheckResult:
        """Request the health URL once."""
        client_timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            async with aiohttp.ClientSession(timeout=client_timeout) as session:
                async with session.get(self.url) as response:
                    if response.status != self.expected_status:
                        text = await response.text()
                        return CheckResult(
                            name=self.url,
                            passed=False,
                            message=f"Unexpected status {response.status}: {text}",
                        )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            return CheckResult(
                name=self.url, passed=False, message=f"Health check failed: {e}"
            )
        return CheckResult(name=self.url, passed=True)
