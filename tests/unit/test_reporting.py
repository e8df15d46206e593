"""Tests for pipeline report rendering."""

import json
import xml.etree.ElementTree as ET
from pathlib import Path

import pytest

from ciengine.test_engine.models.pipeline import (
    PipelineResult,
    PipelineStage,
    StageResult,
)
from ciengine.test_engine.reporting import render_report, write_report


@pytest.fixture
def failed_result() -> PipelineResult:
    """Create a pipeline result stopped after a unit test failure."""
    return PipelineResult(
        id="run-1",
        trigger="pull_request",
        duration=4.2,
        success=False,
        score=0.5,
        planned_stages=(
            PipelineStage.PREPARATION,
            PipelineStage.UNIT_TESTING,
            PipelineStage.INTEGRATION_TESTING,
        ),
        stage_results=(
            StageResult(stage=PipelineStage.PREPARATION, success=True, duration=0.1),
            StageResult(
                stage=PipelineStage.UNIT_TESTING,
                success=False,
                duration=4.0,
                details={"failed_tests": ["divides", "rounds"], "pass_rate": 0.5},
                error="unit_tests_failed",
            ),
        ),
        recommendations=("Fix failing unit tests.", "Not <attempted>"),
    )


def test_render_json(failed_result: PipelineResult) -> None:
    """JSON reports round-trip the pipeline result."""
    document = json.loads(render_report(failed_result, "json"))

    assert document["id"] == "run-1"
    assert document["success"] is False
    assert document["stage_results"][1]["stage"] == "unit-testing"
    assert PipelineResult.model_validate(document) == failed_result


def test_render_xml(failed_result: PipelineResult) -> None:
    """XML reports carry stages, details, skipped stages and recommendations."""
    document = render_report(failed_result, "xml")
    root = ET.fromstring(document.split("\n", 1)[1])

    assert document.startswith('<?xml version="1.0" encoding="UTF-8"?>')
    assert root.tag == "pipelineResult"
    assert root.get("success") == "false"
    stages = root.findall("stages/stage")
    assert [s.get("name") for s in stages] == ["preparation", "unit-testing"]
    assert stages[1].find("error").text == "unit_tests_failed"
    details = {d.get("name"): d.text for d in stages[1].findall("detail")}
    assert json.loads(details["failed_tests"]) == ["divides", "rounds"]
    assert [s.get("name") for s in root.findall("notAttempted/stage")] == [
        "integration-testing"
    ]
    assert root.findall("recommendations/recommendation")[1].text == "Not <attempted>"


def test_render_junit(failed_result: PipelineResult) -> None:
    """JUnit reports map stages to test cases."""
    document = render_report(failed_result, "junit")
    root = ET.fromstring(document.split("\n", 1)[1])

    suite = root.find("testsuite")
    assert suite.get("name") == "pipeline-pull_request"
    assert suite.get("tests") == "3"
    assert suite.get("failures") == "1"
    assert suite.get("skipped") == "1"

    cases = {c.get("name"): c for c in suite.findall("testcase")}
    failure = cases["unit-testing"].find("failure")
    assert failure.get("message") == "unit_tests_failed"
    assert failure.text == "divides\nrounds"
    assert cases["preparation"].find("failure") is None
    assert cases["integration-testing"].find("skipped").get("message") == (
        "Not attempted"
    )
    properties = {p.get("name"): p.get("value") for p in suite.iter("property")}
    assert properties == {"id": "run-1", "score": "0.5000", "success": "false"}


def test_render_html_escapes(failed_result: PipelineResult) -> None:
    """HTML reports show the verdict and escape text."""
    document = render_report(failed_result, "html")

    assert "<h1>Pipeline FAILED</h1>" in document
    assert '<tr class="failed"><td>unit-testing</td>' in document
    assert '<tr class="not-attempted"><td>integration-testing</td>' in document
    assert "<li>Not &lt;attempted&gt;</li>" in document


def test_render_unknown_format(failed_result: PipelineResult) -> None:
    """render_report rejects unknown formats."""
    with pytest.raises(ValueError, match="Unsupported report format: pdf"):
        render_report(failed_result, "pdf")


@pytest.mark.parametrize(
    ("fmt", "name"),
    [
        ("json", "pipeline-run-1.json"),
        ("xml", "pipeline-run-1.xml"),
        ("junit", "pipeline-run-1.junit.xml"),
        ("html", "pipeline-run-1.html"),
    ],
)
def test_write_report(
    failed_result: PipelineResult, tmp_path: Path, fmt: str, name: str
) -> None:
    """write_report creates the directory and names the file by format."""
    path = write_report(failed_result, fmt, tmp_path / "reports")

    assert path == tmp_path / "reports" / name
    assert path.read_text(encoding="utf-8") == render_report(failed_result, fmt)
