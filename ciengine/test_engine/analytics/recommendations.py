"""Prioritised remediation recommendations from analytics findings."""

from collections.abc import Mapping, Sequence

from ciengine.test_engine.models.analytics import (
    PRIORITY_ORDER,
    AnalyticsConfig,
    FlakyTest,
    Recommendation,
    Trend,
)
from ciengine.test_engine.models.test_result import TestResult

ACCESS_CONTROL_KEYWORDS = ("access", "auth", "permission", "privilege", "role")


class RecommendationEngine:
    """Turns findings into recommendations ordered by priority.

    Failing security tests and memory leaks are critical, broken access
    control and stability regressions are high, resource inefficiencies and
    missing coverage are medium.
    """

    def __init__(self, config: AnalyticsConfig | None = None) -> None:
        """Initialize engine with its thresholds."""
        self.config = config or AnalyticsConfig()

    def generate(
        self,
        recent_results: Sequence[TestResult] = (),
        security_failures: Sequence[str] = (),
        trends: Mapping[str, Trend] | None = None,
        flaky_tests: Sequence[FlakyTest] = (),
        coverage: float | None = None,
    ) -> list[Recommendation]:
        """Build recommendations.

        Args:
            recent_results: Test results of the most recent runs
            security_failures: Names of currently failing security checks
            trends: Trend per metric name
            flaky_tests: Detected flaky tests
            coverage: Average coverage, None when unknown

        Returns:
            Recommendations, most urgent first

        """
        trends = trends or {}
        recommendations: list[Recommendation] = []

        if security_failures:
            recommendations.append(
                Recommendation(
                    priority="critical",
                    category="security",
                    title="Failing security tests",
                    description=(
                        f"{len(security_failures)} security checks are failing: "
                        f"{', '.join(security_failures)}"
                    ),
                    actions=[
                        "Block deployment until the failures are fixed",
                        "Review the findings with the security owners",
                    ],
                )
            )
            access = [
                name
                for name in security_failures
                if any(k in name.lower() for k in ACCESS_CONTROL_KEYWORDS)
            ]
            if access:
                recommendations.append(
                    Recommendation(
                        priority="high",
                        category="access_control",
                        title="Broken access control",
                        description=(
                            f"Access control checks are failing: {', '.join(access)}"
                        ),
                        actions=[
                            "Audit authorization rules on the affected endpoints",
                            "Add regression tests for every role",
                        ],
                    )
                )

        recommendations.extend(self._resource_recommendations(recent_results))

        if trends.get("success_rate") == "degrading":
            recommendations.append(
                Recommendation(
                    priority="high",
                    category="stability",
                    title="Success rate is degrading",
                    description="Recent runs pass less often than earlier runs.",
                    actions=["Bisect recent changes for the regression"],
                )
            )
        if flaky_tests:
            names = ", ".join(t.name for t in flaky_tests)
            recommendations.append(
                Recommendation(
                    priority="high",
                    category="stability",
                    title="Flaky tests detected",
                    description=f"Tests failing intermittently: {names}",
                    actions=[
                        "Quarantine flaky tests until they are stabilised",
                        "Look for timing, ordering and shared state dependencies",
                    ],
                )
            )

        threshold = self.config.coverage_threshold
        if coverage is not None and threshold > 0 and coverage < threshold:
            recommendations.append(
                Recommendation(
                    priority="medium",
                    category="coverage",
                    title="Coverage below threshold",
                    description=f"Coverage {coverage:.1%} is below {threshold:.1%}.",
                    actions=["Add tests for uncovered code paths"],
                )
            )

        return sorted(recommendations, key=lambda r: PRIORITY_ORDER[r.priority])

    def _resource_recommendations(
        self, results: Sequence[TestResult]
    ) -> list[Recommendation]:
        metrics = [r.metrics for r in results if r.metrics is not None]
        recommendations = []

        growth = [m.memory_growth for m in metrics if m.memory_growth is not None]
        if growth and max(growth) > self.config.memory_growth_threshold:
            recommendations.append(
                Recommendation(
                    priority="critical",
                    category="memory",
                    title="Memory leak suspected",
                    description=(
                        f"Memory grew by {max(growth):.1%} during a test run, above "
                        f"{self.config.memory_growth_threshold:.1%}."
                    ),
                    actions=[
                        "Profile allocations of the affected tests",
                        "Check caches and listeners for missing cleanup",
                    ],
                )
            )

        usage = [m.memory_usage for m in metrics if m.memory_usage is not None]
        if usage and max(usage) > self.config.memory_usage_threshold:
            recommendations.append(
                Recommendation(
                    priority="medium",
                    category="memory",
                    title="High memory usage",
                    description=f"Peak memory usage reached {max(usage):.1%}.",
                    actions=["Reduce working set size or stream large data"],
                )
            )

        cpu = [m.cpu_usage for m in metrics if m.cpu_usage is not None]
        if cpu and max(cpu) > self.config.cpu_usage_threshold:
            recommendations.append(
                Recommendation(
                    priority="medium",
                    category="cpu",
                    title="High CPU usage",
                    description=f"Peak CPU usage reached {max(cpu):.1%}.",
                    actions=["Profile hot paths", "Move heavy work off the main path"],
                )
            )

        latency = [m.network_latency for m in metrics if m.network_latency is not None]
        if latency and max(latency) > self.config.network_latency_threshold:
            recommendations.append(
                Recommendation(
                    priority="medium",
                    category="network",
                    title="Slow network calls",
                    description=f"Network latency reached {max(latency):.3f}s.",
                    actions=["Batch requests", "Add caching for repeated calls"],
                )
            )

        return recommendations
