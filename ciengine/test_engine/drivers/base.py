"""Abstract capability interfaces consumed by pipeline stages."""

from abc import ABC, abstractmethod

from ciengine.test_engine.cancellation import CancellationToken
from ciengine.test_engine.models.drivers import (
    CheckResult,
    LoadTestReport,
    QualityReport,
    SecurityFinding,
)


class BuildVerifier(ABC):
    """Checks that the environment is ready before tests run."""

    @abstractmethod
    async def verify(self, token: CancellationToken) -> CheckResult:
        """Verify the environment.

        Args:
            token: Cancellation token of the pipeline run

        Returns:
            Check result; a failed check fails the preparation stage

        Raises:
            InfrastructureError: If the check itself could not be performed

        """


class LoadDriver(ABC):
    """Generates load against a running system."""

    @abstractmethod
    async def run_load(self, token: CancellationToken) -> LoadTestReport:
        """Run a load test and report latency statistics."""


class VulnerabilityScanner(ABC):
    """Scans the project for security findings."""

    name: str = "scanner"

    @abstractmethod
    async def scan(self, token: CancellationToken) -> list[SecurityFinding]:
        """Run the scan and return its findings."""


class CodeQualityAnalyzer(ABC):
    """Computes a code quality score."""

    @abstractmethod
    async def analyze(self, token: CancellationToken) -> QualityReport:
        """Analyze the project."""


class DeploymentValidator(ABC):
    """Validates that a build is deployable."""

    @abstractmethod
    async def validate(self, token: CancellationToken) -> CheckResult:
        """Run the validation check."""
