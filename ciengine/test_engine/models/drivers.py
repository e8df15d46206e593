"""Reports produced by pluggable capability drivers."""

from typing import Literal

from pydantic import BaseModel, Field

Severity = Literal["low", "medium", "high", "critical"]

SEVERITY_WEIGHTS: dict[str, int] = {"low": 1, "medium": 2, "high": 3, "critical": 4}


class CheckResult(BaseModel):
    """Outcome of a verification or validation check."""

    name: str = Field(..., description="Check name")
    passed: bool = Field(..., description="Whether the check passed")
    message: str | None = Field(default=None)


class SecurityFinding(BaseModel):
    """A vulnerability reported by a scanner."""

    id: str = Field(..., description="Finding identifier")
    title: str = Field(..., description="Short description")
    severity: Severity = Field(..., description="Finding severity")
    category: str = Field(default="general", description="e.g. access-control")
    location: str | None = Field(default=None)


class SecurityReport(BaseModel):
    """Severity-weighted summary of security findings."""

    findings: list[SecurityFinding] = Field(default_factory=list)
    checks: int = Field(default=0, ge=0, description="Number of checks performed")
    failed_tests: int = Field(default=0, ge=0, description="Failed security tests")

    @property
    def weighted_risk(self) -> int:
        """Sum of severity weights of all findings."""
        return sum(SEVERITY_WEIGHTS[f.severity] for f in self.findings)

    @property
    def score(self) -> float:
        """1.0 with no findings, decreasing with weighted risk."""
        max_weight = SEVERITY_WEIGHTS["critical"]
        denominator = max_weight * max(self.checks, len(self.findings), 1)
        return max(0.0, 1.0 - self.weighted_risk / denominator)

    @property
    def blocking_findings(self) -> list[SecurityFinding]:
        """High and critical findings."""
        return [f for f in self.findings if f.severity in {"high", "critical"}]

    def count_by_severity(self) -> dict[str, int]:
        """Number of findings per severity."""
        counts = dict.fromkeys(SEVERITY_WEIGHTS, 0)
        for finding in self.findings:
            counts[finding.severity] += 1
        return counts


class LoadTestReport(BaseModel):
    """Latency and error statistics of a load run."""

    requests: int = Field(..., ge=0)
    errors: int = Field(default=0, ge=0)
    average_response_time: float = Field(default=0.0, ge=0)
    p95_response_time: float = Field(default=0.0, ge=0)
    max_response_time: float = Field(default=0.0, ge=0)
    memory_usage: float | None = Field(default=None, ge=0, le=1)
    cpu_usage: float | None = Field(default=None, ge=0, le=1)

    @property
    def error_rate(self) -> float:
        """Failed over total requests."""
        if self.requests == 0:
            return 0.0
        return self.errors / self.requests


class QualityReport(BaseModel):
    """Code quality analysis summary."""

    score: float = Field(..., ge=0, le=1, description="Overall quality score")
    issues: int = Field(default=0, ge=0)
    metrics: dict[str, float] = Field(default_factory=dict)
