"""Models produced by the analytics engine."""

from typing import Literal

from pydantic import BaseModel, Field

Trend = Literal["improving", "stable", "degrading"]
RecommendationPriority = Literal["critical", "high", "medium", "low"]

PRIORITY_ORDER: dict[str, int] = {"critical": 0, "high": 1, "medium": 2, "low": 3}


class FlakyTest(BaseModel):
    """A test whose failures are neither rare nor near-universal."""

    name: str
    failure_rate: float = Field(..., ge=0, le=1)
    run_count: int = Field(..., ge=1)
    severity: Literal["medium", "high"]


class Recommendation(BaseModel):
    """A prioritised remediation suggestion."""

    priority: RecommendationPriority
    category: str
    title: str
    description: str
    actions: list[str] = Field(default_factory=list)


class AnalyticsConfig(BaseModel):
    """Thresholds of the analytics engine."""

    window_size: int = Field(default=50, ge=1, description="Runs considered")
    trend_window: int = Field(default=5, ge=1, description="Runs per trend side")
    trend_threshold: float = Field(default=0.1, ge=0)
    flaky_min_runs: int = Field(default=5, ge=1)
    flaky_lower_bound: float = Field(default=0.2, ge=0, le=1)
    flaky_upper_bound: float = Field(default=0.8, ge=0, le=1)
    flaky_high_severity_rate: float = Field(default=0.5, ge=0, le=1)
    coverage_threshold: float = Field(default=0.0, ge=0, le=1)
    memory_growth_threshold: float = Field(default=0.1, ge=0)
    memory_usage_threshold: float = Field(default=0.8, ge=0, le=1)
    cpu_usage_threshold: float = Field(default=0.8, ge=0, le=1)
    network_latency_threshold: float = Field(default=1.0, ge=0, description="Seconds")


class AnalyticsReport(BaseModel):
    """Aggregates, trends, flaky tests and recommendations over a window."""

    runs: int = Field(..., ge=0)
    success_rate: float = Field(default=0.0, ge=0, le=1)
    average_duration: float = Field(default=0.0, ge=0)
    average_coverage: float = Field(default=0.0, ge=0, le=1)
    trends: dict[str, Trend] = Field(default_factory=dict)
    flaky_tests: list[FlakyTest] = Field(default_factory=list)
    recommendations: list[Recommendation] = Field(default_factory=list)
