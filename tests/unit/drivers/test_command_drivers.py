"""Tests for command-backed drivers."""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import pytest

from ciengine.test_engine.cancellation import CancellationToken
from ciengine.test_engine.drivers.command import (
    CommandBuildVerifier,
    CommandQualityAnalyzer,
    CommandVulnerabilityScanner,
)
from ciengine.test_engine.errors import InfrastructureError

RUN_COMMAND = "ciengine.test_engine.drivers.command.run_command"


async def test_build_verifier_runs_commands_in_order() -> None:
    """CommandBuildVerifier passes when every setup command exits 0."""
    verifier = CommandBuildVerifier([["make", "deps"], ["make", "build"]])

    with patch(RUN_COMMAND, AsyncMock(return_value=(0, "ok"))) as mock_run:
        check = await verifier.verify(CancellationToken())

    assert check.passed
    assert [c.args[0] for c in mock_run.await_args_list] == [
        ["make", "deps"],
        ["make", "build"],
    ]


async def test_build_verifier_stops_at_first_failure() -> None:
    """CommandBuildVerifier reports the failing command and its output tail."""
    verifier = CommandBuildVerifier([["make", "deps"], ["make", "build"]])

    with patch(
        RUN_COMMAND, AsyncMock(side_effect=[(0, ""), (2, "line1\nno rule\n")])
    ) as mock_run:
        check = await verifier.verify(CancellationToken())

    assert not check.passed
    assert check.message == "make build exited with code 2: line1\nno rule"
    assert mock_run.await_count == 2


async def test_build_verifier_missing_command() -> None:
    """A missing program is an infrastructure error."""
    verifier = CommandBuildVerifier([["nope"]])

    with (
        patch(RUN_COMMAND, AsyncMock(side_effect=FileNotFoundError("nope"))),
        pytest.raises(InfrastructureError, match="Command not found: nope"),
    ):
        await verifier.verify(CancellationToken())


async def test_build_verifier_timeout() -> None:
    """A setup command exceeding its timeout is an infrastructure error."""
    verifier = CommandBuildVerifier([["sleep", "60"]], timeout=0.01)

    async def hang(*args, **kwargs) -> tuple[int, str]:
        await asyncio.sleep(10)
        return 0, ""

    with (
        patch(RUN_COMMAND, side_effect=hang),
        pytest.raises(InfrastructureError, match="did not complete within 0.01"),
    ):
        await verifier.verify(CancellationToken())


async def test_quality_analyzer_parses_report() -> None:
    """CommandQualityAnalyzer reads the JSON report."""
    analyzer = CommandQualityAnalyzer(["quality"])
    output = json.dumps({"score": 0.91, "issues": 4, "metrics": {"complexity": 3}})

    with patch(RUN_COMMAND, AsyncMock(return_value=(0, output))):
        report = await analyzer.analyze(CancellationToken())

    assert report.score == 0.91
    assert report.issues == 4
    assert report.metrics == {"complexity": 3.0}


@pytest.mark.parametrize(
    ("returncode", "output", "message"),
    [
        (1, "{}", "exited with code 1"),
        (0, "not json", "Invalid JSON from quality"),
        (0, '{"score": 3}', "Invalid quality report"),
    ],
)
async def test_quality_analyzer_errors(
    returncode: int, output: str, message: str
) -> None:
    """CommandQualityAnalyzer rejects failed runs and malformed reports."""
    analyzer = CommandQualityAnalyzer(["quality"])

    with (
        patch(RUN_COMMAND, AsyncMock(return_value=(returncode, output))),
        pytest.raises(InfrastructureError, match=message),
    ):
        await analyzer.analyze(CancellationToken())


@pytest.mark.parametrize(
    "output",
    [
        '[{"id": "CVE-1", "title": "RCE", "severity": "critical"}]',
        '{"findings": [{"id": "CVE-1", "title": "RCE", "severity": "critical"}]}',
    ],
)
async def test_scanner_parses_findings(output: str) -> None:
    """CommandVulnerabilityScanner accepts a list or a findings object."""
    scanner = CommandVulnerabilityScanner(["scan"])

    with patch(RUN_COMMAND, AsyncMock(return_value=(1, output))):
        findings = await scanner.scan(CancellationToken())

    assert len(findings) == 1
    assert findings[0].severity == "critical"
    assert findings[0].category == "general"


async def test_scanner_rejects_unexpected_output() -> None:
    """CommandVulnerabilityScanner rejects output that is not findings."""
    scanner = CommandVulnerabilityScanner(["scan"], name="trivy")

    with (
        patch(RUN_COMMAND, AsyncMock(return_value=(0, '{"findings": "none"}'))),
        pytest.raises(
            InfrastructureError, match="Unexpected scanner output from trivy"
        ),
    ):
        await scanner.scan(CancellationToken())


async def test_scanner_rejects_invalid_finding() -> None:
    """A finding with an unknown severity is an infrastructure error."""
    scanner = CommandVulnerabilityScanner(["scan"], name="trivy")
    output = '[{"id": "1", "title": "x", "severity": "urgent"}]'

    with (
        patch(RUN_COMMAND, AsyncMock(return_value=(0, output))),
        pytest.raises(InfrastructureError, match="Invalid finding from trivy"),
    ):
        await scanner.scan(CancellationToken())
