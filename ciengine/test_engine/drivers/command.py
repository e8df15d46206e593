"""Drivers backed by external commands."""

import asyncio
import json
import logging
from collections.abc import Sequence
from pathlib import Path

from pydantic import ValidationError

from ciengine.test_engine.cancellation import CancellationToken
from ciengine.test_engine.drivers.base import (
    BuildVerifier,
    CodeQualityAnalyzer,
    VulnerabilityScanner,
)
from ciengine.test_engine.errors import InfrastructureError
from ciengine.test_engine.models.drivers import (
    CheckResult,
    QualityReport,
    SecurityFinding,
)
from ciengine.test_engine.process import run_command

logger = logging.getLogger(__name__)


async def _run(
    command: Sequence[str],
    token: CancellationToken,
    timeout: float,
    cwd: Path | None,
) -> tuple[int, str]:
    """Run a driver command, mapping launch errors and timeouts."""
    try:
        return await asyncio.wait_for(
            run_command(command, token.child(), cwd=cwd), timeout=timeout
        )
    except FileNotFoundError as e:
        raise InfrastructureError(f"Command not found: {command[0]}") from e
    except asyncio.TimeoutError as e:
        raise InfrastructureError(
            f"Command {' '.join(command)} did not complete within {timeout} seconds"
        ) from e


def _parse_json(command: Sequence[str], output: str) -> object:
    try:
        return json.loads(output)
    except json.JSONDecodeError as e:
        raise InfrastructureError(
            f"Invalid JSON from {' '.join(command)}: {e}"
        ) from e


class CommandBuildVerifier(BuildVerifier):
    """Runs setup commands; the first non-zero exit fails verification."""

    def __init__(
        self,
        commands: Sequence[Sequence[str]],
        timeout: float = 300.0,
        cwd: Path | None = None,
    ) -> None:
        """Initialize verifier with setup commands."""
        self.commands = [list(c) for c in commands]
        self.timeout = timeout
        self.cwd = cwd

    async def verify(self, token: CancellationToken) -> CheckResult:
        """Run each setup command in order."""
        for command in self.commands:
            logger.info(f"Running setup command: {' '.join(command)}")
            returncode, output = await _run(command, token, self.timeout, self.cwd)
            if returncode != 0:
                tail = "\n".join(output.strip().splitlines()[-5:])
                return CheckResult(
                    name="setup",
                    passed=False,
                    message=(
                        f"{' '.join(command)} exited with code {returncode}"
                        + (f": {tail}" if tail else "")
                    ),
                )
        return CheckResult(name="setup", passed=True)


class CommandQualityAnalyzer(CodeQualityAnalyzer):
    """Reads a quality report printed as JSON by a command.

    Expected output: ``{"score": 0.91, "issues": 4, "metrics": {...}}``.
    """

    def __init__(
        self, command: Sequence[str], timeout: float = 600.0, cwd: Path | None = None
    ) -> None:
        """Initialize analyzer with the command to run."""
        self.command = list(command)
        self.timeout = timeout
        self.cwd = cwd

    async def analyze(self, token: CancellationToken) -> QualityReport:
        """Run the command and parse its report."""
        returncode, output = await _run(self.command, token, self.timeout, self.cwd)
        if returncode != 0:
            raise InfrastructureError(
                f"Quality analyzer exited with code {returncode}"
            )
        data = _parse_json(self.command, output)
        try:
            return QualityReport.model_validate(data)
        except ValidationError as e:
            raise InfrastructureError(f"Invalid quality report: {e}") from e


class CommandVulnerabilityScanner(VulnerabilityScanner):
    """Reads findings printed as JSON by a scanner command.

    Accepts either a list of findings or ``{"findings": [...]}``. Scanners
    commonly exit non-zero when they report findings, so the exit code is
    ignored as long as the output parses.
    """

    def __init__(
        self,
        command: Sequence[str],
        timeout: float = 600.0,
        cwd: Path | None = None,
        name: str = "command-scanner",
    ) -> None:
        """Initialize scanner with the command to run."""
        self.command = list(command)
        self.timeout = timeout
        self.cwd = cwd
        self.name = name

    async def scan(self, token: CancellationToken) -> list[SecurityFinding]:
        """Run the scanner and parse its findings."""
        _, output = await _run(self.command, token, self.timeout, self.cwd)
        data = _parse_json(self.command, output)
        raw = data.get("findings", []) if isinstance(data, dict) else data
        if not isinstance(raw, list):
            raise InfrastructureError(f"Unexpected scanner output from {self.name}")
        try:
            return [SecurityFinding.model_validate(item) for item in raw]
        except ValidationError as e:
            raise InfrastructureError(f"Invalid finding from {self.name}: {e}") from e
