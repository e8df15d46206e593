"""Tests for the default stage handlers."""

import pytest

from ciengine.test_engine.cancellation import CancellationToken
from ciengine.test_engine.drivers.base import (
    BuildVerifier,
    CodeQualityAnalyzer,
    DeploymentValidator,
    LoadDriver,
    VulnerabilityScanner,
)
from ciengine.test_engine.models.config import EngineConfiguration
from ciengine.test_engine.models.drivers import (
    CheckResult,
    LoadTestReport,
    QualityReport,
    SecurityFinding,
)
from ciengine.test_engine.models.pipeline import PipelineStage, StageResult
from ciengine.test_engine.models.test_case import TestCase, TestSuite
from ciengine.test_engine.models.test_result import CaseOutcome, PerformanceMetrics
from ciengine.test_engine.orchestrator import TestOrchestrator
from ciengine.test_engine.stages import DefaultStageHandlers, StageContext


class StaticVerifier(BuildVerifier):
    """Verifier returning a fixed check."""

    def __init__(self, check: CheckResult) -> None:
        self.check = check

    async def verify(self, token: CancellationToken) -> CheckResult:
        return self.check


class StaticLoadDriver(LoadDriver):
    """Load driver returning a fixed report."""

    def __init__(self, report: LoadTestReport) -> None:
        self.report = report

    async def run_load(self, token: CancellationToken) -> LoadTestReport:
        return self.report


class StaticScanner(VulnerabilityScanner):
    """Scanner returning fixed findings."""

    name = "static"

    def __init__(self, findings: list[SecurityFinding]) -> None:
        self.findings = findings

    async def scan(self, token: CancellationToken) -> list[SecurityFinding]:
        return self.findings


class StaticAnalyzer(CodeQualityAnalyzer):
    """Analyzer returning a fixed score."""

    def __init__(self, score: float) -> None:
        self.score = score

    async def analyze(self, token: CancellationToken) -> QualityReport:
        return QualityReport(score=self.score)


class StaticValidator(DeploymentValidator):
    """Validator returning a fixed check."""

    def __init__(self, check: CheckResult) -> None:
        self.check = check

    async def validate(self, token: CancellationToken) -> CheckResult:
        return self.check


def make_ctx(
    orchestrator: TestOrchestrator | None = None,
    completed: list[StageResult] | None = None,
    **config,
) -> StageContext:
    """Create a stage context."""
    engine = EngineConfiguration(**config)
    return StageContext(
        config=engine,
        orchestrator=orchestrator or TestOrchestrator(engine),
        token=CancellationToken(),
        completed=completed or [],
    )


def case_with_metrics(name: str, metrics: PerformanceMetrics) -> TestCase:
    """Create a passing test case reporting metrics."""

    async def operation(token: CancellationToken) -> CaseOutcome:
        return CaseOutcome(metrics=metrics)

    return TestCase(name=name, operation=operation)


async def test_preparation_collects_failed_checks() -> None:
    """preparation fails with the messages of failed checks."""
    handlers = DefaultStageHandlers(
        build_verifiers=[
            StaticVerifier(CheckResult(name="git", passed=True)),
            StaticVerifier(CheckResult(name="env", passed=False, message="no HOME")),
        ]
    )

    result = await handlers.preparation(make_ctx())

    assert not result.success
    assert result.error == "no HOME"
    assert len(result.details["checks"]) == 2


async def test_preparation_without_verifiers_passes() -> None:
    """preparation passes when there is nothing to verify."""
    result = await DefaultStageHandlers().preparation(make_ctx())

    assert result.success
    assert result.error is None


async def test_unit_testing_without_suites_is_skipped() -> None:
    """A test stage with no suites succeeds with a skipped reason."""
    result = await DefaultStageHandlers().unit_testing(make_ctx())

    assert result.success
    assert result.details == {"skipped_reason": "no unit suites"}


async def test_integration_testing_includes_ui_suites() -> None:
    """integration_testing runs integration and UI suites."""
    orchestrator = TestOrchestrator()

    async def ok(token: CancellationToken) -> None:
        return None

    orchestrator.add_test_suite(
        TestSuite(name="ui", type="ui", tests=[TestCase(name="login", operation=ok)])
    )

    result = await DefaultStageHandlers().integration_testing(make_ctx(orchestrator))

    assert result.success
    assert result.details["total"] == 1
    assert result.details["suites"][0]["suite"] == "ui"


async def test_performance_thresholds() -> None:
    """performance_testing fails when response time or memory exceed limits."""
    orchestrator = TestOrchestrator()
    orchestrator.add_test_suite(
        TestSuite(
            name="perf",
            type="performance",
            tests=[
                case_with_metrics(
                    "search", PerformanceMetrics(response_time=3.0, memory_usage=0.5)
                )
            ],
        )
    )
    handlers = DefaultStageHandlers(
        load_driver=StaticLoadDriver(
            LoadTestReport(requests=10, p95_response_time=0.4, memory_usage=0.9)
        )
    )

    result = await handlers.performance_testing(make_ctx(orchestrator))

    assert not result.success
    assert result.details["max_response_time"] == 3.0
    assert result.details["max_memory_usage"] == 0.9
    assert "response time 3.000s exceeds 2.000s" in result.error
    assert "memory usage 90.00% exceeds 80.00%" in result.error


async def test_performance_within_thresholds() -> None:
    """performance_testing passes with only a load driver within limits."""
    handlers = DefaultStageHandlers(
        load_driver=StaticLoadDriver(LoadTestReport(requests=10, p95_response_time=0.1))
    )

    result = await handlers.performance_testing(make_ctx())

    assert result.success
    assert result.details["load"]["requests"] == 10


async def test_security_blocking_findings_fail() -> None:
    """security_testing fails on high or critical findings."""
    handlers = DefaultStageHandlers(
        scanners=[
            StaticScanner(
                [
                    SecurityFinding(id="1", title="XSS", severity="high"),
                    SecurityFinding(id="2", title="Banner", severity="low"),
                ]
            )
        ]
    )

    result = await handlers.security_testing(make_ctx())

    assert not result.success
    assert result.error == "1 high/critical findings"
    assert result.details["by_severity"] == {
        "low": 1,
        "medium": 0,
        "high": 1,
        "critical": 0,
    }
    assert 0 <= result.details["security_score"] < 1


async def test_security_low_findings_pass() -> None:
    """Low and medium findings lower the score without failing the stage."""
    handlers = DefaultStageHandlers(
        scanners=[StaticScanner([SecurityFinding(id="1", title="x", severity="low")])]
    )

    result = await handlers.security_testing(make_ctx())

    assert result.success
    assert result.details["security_score"] == pytest.approx(0.75)


async def test_code_quality_score_gate() -> None:
    """code_quality fails when the score is below the minimum."""
    handlers = DefaultStageHandlers(quality_analyzer=StaticAnalyzer(0.5))

    result = await handlers.code_quality(make_ctx())

    assert not result.success
    assert result.error == "quality score 0.50 below 0.80"


async def test_code_quality_coverage_gate() -> None:
    """code_quality fails when unit coverage is below the threshold."""
    unit = StageResult(
        stage=PipelineStage.UNIT_TESTING,
        success=True,
        duration=0.0,
        details={"coverage": 0.6},
    )

    result = await DefaultStageHandlers().code_quality(
        make_ctx(completed=[unit], coverage_threshold=0.8)
    )

    assert not result.success
    assert result.details["coverage"] == 0.6
    assert result.error == "coverage 60.00% below 80.00%"


async def test_code_quality_nothing_to_check() -> None:
    """code_quality passes when no analyzer or coverage gate is configured."""
    result = await DefaultStageHandlers().code_quality(make_ctx())

    assert result.success
    assert "skipped_reason" in result.details


async def test_deployment_validation_requires_gates() -> None:
    """deployment_validation fails when a gating stage failed."""
    completed = [
        StageResult(stage=PipelineStage.UNIT_TESTING, success=False, duration=0.0),
        StageResult(
            stage=PipelineStage.PERFORMANCE_TESTING, success=False, duration=0.0
        ),
    ]
    handlers = DefaultStageHandlers(
        deployment_validators=[StaticValidator(CheckResult(name="health", passed=True))]
    )

    result = await handlers.deployment_validation(make_ctx(completed=completed))

    assert not result.success
    assert result.details["failed_gates"] == ["unit-testing"]
    assert result.error == "gating stages failed: unit-testing"


async def test_deployment_validation_failed_check() -> None:
    """deployment_validation reports failed validator checks."""
    handlers = DefaultStageHandlers(
        deployment_validators=[
            StaticValidator(CheckResult(name="health", passed=False, message="503"))
        ]
    )

    result = await handlers.deployment_validation(make_ctx())

    assert not result.success
    assert result.error == "503"
