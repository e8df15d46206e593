"""Data models for test cases, results, pipelines, test data and analytics."""

from ciengine.test_engine.models.analytics import (
    AnalyticsConfig,
    AnalyticsReport,
    FlakyTest,
    Recommendation,
)
from ciengine.test_engine.models.config import EngineConfiguration, PipelineConfig
from ciengine.test_engine.models.drivers import (
    CheckResult,
    LoadTestReport,
    QualityReport,
    SecurityFinding,
    SecurityReport,
)
from ciengine.test_engine.models.execution import TestExecution
from ciengine.test_engine.models.pipeline import (
    PipelineResult,
    PipelineStage,
    PipelineState,
    StageResult,
)
from ciengine.test_engine.models.test_case import (
    SuiteConfiguration,
    TestCase,
    TestSuite,
)
from ciengine.test_engine.models.test_data import (
    FieldSpecification,
    TestDataSet,
    TestDataSpecification,
)
from ciengine.test_engine.models.test_result import (
    CaseOutcome,
    PerformanceMetrics,
    TestResult,
    TestSuiteResult,
)

__all__ = [
    "AnalyticsConfig",
    "AnalyticsReport",
    "CaseOutcome",
    "CheckResult",
    "EngineConfiguration",
    "FieldSpecification",
    "FlakyTest",
    "LoadTestReport",
    "PerformanceMetrics",
    "PipelineConfig",
    "PipelineResult",
    "PipelineStage",
    "PipelineState",
    "QualityReport",
    "Recommendation",
    "SecurityFinding",
    "SecurityReport",
    "StageResult",
    "SuiteConfiguration",
    "TestCase",
    "TestDataSet",
    "TestDataSpecification",
    "TestExecution",
    "TestResult",
    "TestSuite",
    "TestSuiteResult",
]
