"""Trend, flakiness and aggregate analysis over historical results."""

import logging
from collections import defaultdict
from collections.abc import Sequence

from ciengine.test_engine.analytics.recommendations import RecommendationEngine
from ciengine.test_engine.analytics.store import ResultStore
from ciengine.test_engine.models.analytics import (
    AnalyticsConfig,
    AnalyticsReport,
    FlakyTest,
    Trend,
)
from ciengine.test_engine.models.pipeline import PipelineResult, PipelineStage
from ciengine.test_engine.models.test_result import TestSuiteResult

logger = logging.getLogger(__name__)


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


class TestAnalytics:
    """Computes analytics reports over a rolling window of runs."""

    __test__ = False

    def __init__(
        self,
        config: AnalyticsConfig | None = None,
        recommendation_engine: RecommendationEngine | None = None,
    ) -> None:
        """Initialize analytics with its thresholds."""
        self.config = config or AnalyticsConfig()
        self.recommendation_engine = recommendation_engine or RecommendationEngine(
            self.config
        )

    def classify_trend(
        self,
        values: Sequence[float],
        higher_is_better: bool = True,
        relative: bool = False,
    ) -> Trend:
        """Compare the most recent runs of a series with the oldest ones.

        Both sides hold ``trend_window`` values, fewer when the series is
        shorter than twice the window so that they never overlap.

        Args:
            values: Metric per run, oldest first
            higher_is_better: Direction in which the metric improves
            relative: Compare the relative change instead of the difference

        Returns:
            ``improving`` or ``degrading`` when the change exceeds the
            threshold, ``stable`` otherwise

        """
        size = min(self.config.trend_window, len(values) // 2)
        if size == 0:
            return "stable"

        oldest = _mean(values[:size])
        recent = _mean(values[-size:])
        delta = recent - oldest
        if relative:
            delta = delta / oldest if oldest else 0.0
        if not higher_is_better:
            delta = -delta

        if delta > self.config.trend_threshold:
            return "improving"
        if delta < -self.config.trend_threshold:
            return "degrading"
        return "stable"

    def detect_flaky_tests(self, results: Sequence[TestSuiteResult]) -> list[FlakyTest]:
        """Tests whose failure rate lies strictly between the flaky bounds.

        Skipped results do not count as runs. Tests observed fewer than
        ``flaky_min_runs`` times are ignored.
        """
        runs: dict[str, int] = defaultdict(int)
        failures: dict[str, int] = defaultdict(int)
        for suite in results:
            for result in suite.results:
                if result.status == "skipped":
                    continue
                runs[result.test_name] += 1
                if result.status == "failed":
                    failures[result.test_name] += 1

        flaky = []
        for name, count in runs.items():
            if count < self.config.flaky_min_runs:
                continue
            rate = failures[name] / count
            if self.config.flaky_lower_bound < rate < self.config.flaky_upper_bound:
                severity = (
                    "high" if rate > self.config.flaky_high_severity_rate else "medium"
                )
                flaky.append(
                    FlakyTest(
                        name=name, failure_rate=rate, run_count=count, severity=severity
                    )
                )

        return sorted(flaky, key=lambda t: (-t.failure_rate, t.name))

    def analyze_suite_history(
        self, results: Sequence[TestSuiteResult]
    ) -> AnalyticsReport:
        """Aggregate suite runs of the window into a report.

        Args:
            results: Suite results, any order

        Returns:
            Success rate, averages, trends, flaky tests and recommendations

        """
        window = sorted(results, key=lambda r: r.timestamp)[-self.config.window_size :]
        if not window:
            return AnalyticsReport(runs=0)

        success = [1.0 if r.passed else 0.0 for r in window]
        coverage = [r.coverage for r in window]
        durations = [r.duration for r in window]
        trends: dict[str, Trend] = {
            "success_rate": self.classify_trend(success),
            "coverage": self.classify_trend(coverage),
            "duration": self.classify_trend(
                durations, higher_is_better=False, relative=True
            ),
        }
        flaky = self.detect_flaky_tests(window)

        recent = window[-self.config.trend_window :]
        latest_by_suite = {r.suite_name: r for r in window}
        security_failures = [
            result.test_name
            for suite in latest_by_suite.values()
            if suite.suite_type == "security"
            for result in suite.results
            if result.status == "failed"
        ]

        report = AnalyticsReport(
            runs=len(window),
            success_rate=_mean(success),
            average_duration=_mean(durations),
            average_coverage=_mean(coverage),
            trends=trends,
            flaky_tests=flaky,
            recommendations=self.recommendation_engine.generate(
                recent_results=[r for suite in recent for r in suite.results],
                security_failures=security_failures,
                trends=trends,
                flaky_tests=flaky,
                coverage=_mean(coverage),
            ),
        )
        logger.info(
            f"Analyzed {report.runs} suite runs: success rate "
            f"{report.success_rate:.2%}, {len(flaky)} flaky tests"
        )
        return report

    def analyze_pipeline_history(
        self, results: Sequence[PipelineResult]
    ) -> AnalyticsReport:
        """Aggregate pipeline runs of the window into a report.

        Coverage comes from the unit-testing stage details of each run that
        reached it.
        """
        window = sorted(results, key=lambda r: r.timestamp)[-self.config.window_size :]
        if not window:
            return AnalyticsReport(runs=0)

        success = [1.0 if r.success else 0.0 for r in window]
        durations = [r.duration for r in window]
        scores = [r.score for r in window]
        coverage = []
        for result in window:
            unit = result.stage_result(PipelineStage.UNIT_TESTING)
            if unit is not None and "coverage" in unit.details:
                coverage.append(float(unit.details["coverage"]))

        trends: dict[str, Trend] = {
            "success_rate": self.classify_trend(success),
            "score": self.classify_trend(scores),
            "duration": self.classify_trend(
                durations, higher_is_better=False, relative=True
            ),
        }
        if coverage:
            trends["coverage"] = self.classify_trend(coverage)

        security_failures: list[str] = []
        security = window[-1].stage_result(PipelineStage.SECURITY_TESTING)
        if security is not None and not security.success:
            security_failures = list(security.details.get("failed_tests", [])) or [
                PipelineStage.SECURITY_TESTING.value
            ]

        return AnalyticsReport(
            runs=len(window),
            success_rate=_mean(success),
            average_duration=_mean(durations),
            average_coverage=_mean(coverage),
            trends=trends,
            recommendations=self.recommendation_engine.generate(
                security_failures=security_failures,
                trends=trends,
                coverage=_mean(coverage) if coverage else None,
            ),
        )

    def analyze_store(self, store: ResultStore) -> dict[str, AnalyticsReport]:
        """Reports for the suite and pipeline history of a store."""
        limit = self.config.window_size
        return {
            "suites": self.analyze_suite_history(store.suite_results(limit)),
            "pipelines": self.analyze_pipeline_history(store.pipeline_results(limit)),
        }
