"""Default work performed by each pipeline stage."""

import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from ciengine.test_engine.cancellation import CancellationToken
from ciengine.test_engine.drivers.base import (
    BuildVerifier,
    CodeQualityAnalyzer,
    DeploymentValidator,
    LoadDriver,
    VulnerabilityScanner,
)
from ciengine.test_engine.models.config import EngineConfiguration
from ciengine.test_engine.models.drivers import LoadTestReport, SecurityReport
from ciengine.test_engine.models.pipeline import PipelineStage, StageResult
from ciengine.test_engine.models.test_case import SuiteType
from ciengine.test_engine.models.test_result import TestSuiteResult
from ciengine.test_engine.orchestrator import TestOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class StageContext:
    """What a stage handler may read while it runs."""

    config: EngineConfiguration
    orchestrator: TestOrchestrator
    token: CancellationToken
    completed: list[StageResult] = field(default_factory=list)

    def result_of(self, stage: PipelineStage) -> StageResult | None:
        """Result of an earlier stage of this run."""
        for result in self.completed:
            if result.stage == stage:
                return result
        return None


StageHandler = Callable[[StageContext], Awaitable[StageResult]]


def summarize_suites(results: Sequence[TestSuiteResult]) -> dict[str, Any]:
    """Counts, pass rate and coverage over several suite results."""
    all_results = [r for suite in results for r in suite.results]
    passed = sum(1 for r in all_results if r.status == "passed")
    failed = sum(1 for r in all_results if r.status == "failed")
    skipped = sum(1 for r in all_results if r.status == "skipped")
    executed = [r.coverage for r in all_results if r.status != "skipped"]
    return {
        "suites": [suite.summary() for suite in results],
        "total": len(all_results),
        "passed": passed,
        "failed": failed,
        "skipped": skipped,
        "pass_rate": passed / (passed + failed) if passed + failed else 1.0,
        "coverage": sum(executed) / len(executed) if executed else 0.0,
        "failed_tests": [r.test_name for r in all_results if r.status == "failed"],
    }


class DefaultStageHandlers:
    """Stage implementations delegating to the orchestrator and drivers."""

    def __init__(
        self,
        build_verifiers: Sequence[BuildVerifier] = (),
        load_driver: LoadDriver | None = None,
        scanners: Sequence[VulnerabilityScanner] = (),
        quality_analyzer: CodeQualityAnalyzer | None = None,
        deployment_validators: Sequence[DeploymentValidator] = (),
    ) -> None:
        """Initialize handlers with the capability drivers to use."""
        self.build_verifiers = list(build_verifiers)
        self.load_driver = load_driver
        self.scanners = list(scanners)
        self.quality_analyzer = quality_analyzer
        self.deployment_validators = list(deployment_validators)

    def handlers(self) -> dict[PipelineStage, StageHandler]:
        """Handler per stage."""
        return {
            PipelineStage.PREPARATION: self.preparation,
            PipelineStage.UNIT_TESTING: self.unit_testing,
            PipelineStage.INTEGRATION_TESTING: self.integration_testing,
            PipelineStage.PERFORMANCE_TESTING: self.performance_testing,
            PipelineStage.SECURITY_TESTING: self.security_testing,
            PipelineStage.CODE_QUALITY: self.code_quality,
            PipelineStage.DEPLOYMENT_VALIDATION: self.deployment_validation,
        }

    async def preparation(self, ctx: StageContext) -> StageResult:
        """Run build verifiers in order."""
        start = time.monotonic()
        checks = []
        for verifier in self.build_verifiers:
            checks.append(await verifier.verify(ctx.token))

        failures = [c for c in checks if not c.passed]
        return StageResult(
            stage=PipelineStage.PREPARATION,
            success=not failures,
            duration=time.monotonic() - start,
            details={"checks": [c.model_dump() for c in checks]},
            error="; ".join(c.message or c.name for c in failures) or None,
        )

    async def unit_testing(self, ctx: StageContext) -> StageResult:
        """Run unit suites."""
        return await self._run_test_stage(
            ctx, PipelineStage.UNIT_TESTING, ("unit",), "unit_tests_failed"
        )

    async def integration_testing(self, ctx: StageContext) -> StageResult:
        """Run integration and UI suites."""
        return await self._run_test_stage(
            ctx,
            PipelineStage.INTEGRATION_TESTING,
            ("integration", "ui"),
            "integration_tests_failed",
        )

    async def _run_test_stage(
        self,
        ctx: StageContext,
        stage: PipelineStage,
        suite_types: tuple[SuiteType, ...],
        error_kind: str,
    ) -> StageResult:
        start = time.monotonic()
        suites = ctx.orchestrator.suites_of_type(*suite_types)
        if not suites:
            return _nothing_to_run(stage, start, f"no {'/'.join(suite_types)} suites")

        results = []
        for suite in suites:
            results.append(await ctx.orchestrator.execute_test_suite(suite, ctx.token))

        details = summarize_suites(results)
        cancelled = any(r.status == "cancelled" for r in results)
        success = not cancelled and details["pass_rate"] >= ctx.config.min_pass_rate
        return StageResult(
            stage=stage,
            success=success,
            duration=time.monotonic() - start,
            details=details,
            error=None if success else error_kind,
        )

    async def performance_testing(self, ctx: StageContext) -> StageResult:
        """Run performance suites and the load driver against thresholds."""
        start = time.monotonic()
        suites = ctx.orchestrator.suites_of_type("performance")
        if not suites and self.load_driver is None:
            return _nothing_to_run(
                PipelineStage.PERFORMANCE_TESTING, start, "no performance suites"
            )

        results = []
        for suite in suites:
            results.append(await ctx.orchestrator.execute_test_suite(suite, ctx.token))
        details = summarize_suites(results)

        metrics = [
            r.metrics for suite in results for r in suite.results if r.metrics
        ]
        response_times = [
            m.response_time for m in metrics if m.response_time is not None
        ]
        memory_usages = [m.memory_usage for m in metrics if m.memory_usage is not None]

        load_report: LoadTestReport | None = None
        if self.load_driver is not None:
            load_report = await self.load_driver.run_load(ctx.token)
            details["load"] = load_report.model_dump()
            response_times.append(load_report.p95_response_time)
            if load_report.memory_usage is not None:
                memory_usages.append(load_report.memory_usage)

        max_response = max(response_times, default=0.0)
        max_memory = max(memory_usages, default=0.0)
        details["max_response_time"] = max_response
        details["max_memory_usage"] = max_memory

        problems = []
        if details["pass_rate"] < ctx.config.min_pass_rate:
            problems.append(f"pass rate {details['pass_rate']:.2%} below minimum")
        if max_response > ctx.config.max_response_time:
            problems.append(
                f"response time {max_response:.3f}s exceeds "
                f"{ctx.config.max_response_time:.3f}s"
            )
        if max_memory > ctx.config.max_memory_usage:
            problems.append(
                f"memory usage {max_memory:.2%} exceeds "
                f"{ctx.config.max_memory_usage:.2%}"
            )

        return StageResult(
            stage=PipelineStage.PERFORMANCE_TESTING,
            success=not problems,
            duration=time.monotonic() - start,
            details=details,
            error="; ".join(problems) or None,
        )

    async def security_testing(self, ctx: StageContext) -> StageResult:
        """Run security suites and scanners; weigh findings by severity."""
        start = time.monotonic()
        suites = ctx.orchestrator.suites_of_type("security")
        if not suites and not self.scanners:
            return _nothing_to_run(
                PipelineStage.SECURITY_TESTING, start, "no security suites or scanners"
            )

        results = []
        for suite in suites:
            results.append(await ctx.orchestrator.execute_test_suite(suite, ctx.token))
        details = summarize_suites(results)

        findings = []
        for scanner in self.scanners:
            scanned = await scanner.scan(ctx.token)
            logger.info(f"Scanner {scanner.name} reported {len(scanned)} findings")
            findings.extend(scanned)

        report = SecurityReport(
            findings=findings,
            checks=details["total"] + len(self.scanners),
            failed_tests=details["failed"],
        )
        details["security_report"] = report.model_dump()
        details["security_score"] = report.score
        details["by_severity"] = report.count_by_severity()

        problems = []
        if report.failed_tests:
            problems.append(f"{report.failed_tests} security tests failed")
        if report.blocking_findings:
            problems.append(f"{len(report.blocking_findings)} high/critical findings")

        return StageResult(
            stage=PipelineStage.SECURITY_TESTING,
            success=not problems,
            duration=time.monotonic() - start,
            details=details,
            error="; ".join(problems) or None,
        )

    async def code_quality(self, ctx: StageContext) -> StageResult:
        """Check the quality score and unit test coverage gates."""
        start = time.monotonic()
        details: dict[str, Any] = {}
        problems = []

        if self.quality_analyzer is not None:
            report = await self.quality_analyzer.analyze(ctx.token)
            details["quality"] = report.model_dump()
            if report.score < ctx.config.min_code_quality_score:
                problems.append(
                    f"quality score {report.score:.2f} below "
                    f"{ctx.config.min_code_quality_score:.2f}"
                )

        unit = ctx.result_of(PipelineStage.UNIT_TESTING)
        if ctx.config.coverage_threshold > 0 and unit is not None:
            coverage = float(unit.details.get("coverage", 0.0))
            details["coverage"] = coverage
            if coverage < ctx.config.coverage_threshold:
                problems.append(
                    f"coverage {coverage:.2%} below {ctx.config.coverage_threshold:.2%}"
                )

        if not details:
            return _nothing_to_run(
                PipelineStage.CODE_QUALITY,
                start,
                "no quality analyzer or coverage gate",
            )

        return StageResult(
            stage=PipelineStage.CODE_QUALITY,
            success=not problems,
            duration=time.monotonic() - start,
            details=details,
            error="; ".join(problems) or None,
        )

    async def deployment_validation(self, ctx: StageContext) -> StageResult:
        """Require passing gating stages and deployment validators."""
        start = time.monotonic()
        failed_gates = [
            r.stage.value for r in ctx.completed if r.stage.is_gating and not r.success
        ]
        checks = []
        for validator in self.deployment_validators:
            checks.append(await validator.validate(ctx.token))

        problems = []
        if failed_gates:
            problems.append(f"gating stages failed: {', '.join(failed_gates)}")
        problems.extend(c.message or c.name for c in checks if not c.passed)

        return StageResult(
            stage=PipelineStage.DEPLOYMENT_VALIDATION,
            success=not problems,
            duration=time.monotonic() - start,
            details={
                "checks": [c.model_dump() for c in checks],
                "failed_gates": failed_gates,
            },
            error="; ".join(problems) or None,
        )


def _nothing_to_run(stage: PipelineStage, start: float, reason: str) -> StageResult:
    logger.info(f"Stage {stage.value}: nothing to run ({reason})")
    return StageResult(
        stage=stage,
        success=True,
        duration=time.monotonic() - start,
        details={"skipped_reason": reason},
    )
