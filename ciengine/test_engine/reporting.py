"""Render pipeline results in the configured report format."""

import html
import json
import logging
import xml.etree.ElementTree as ET
from pathlib import Path

from ciengine.test_engine.models.config import ReportFormat
from ciengine.test_engine.models.pipeline import PipelineResult

logger = logging.getLogger(__name__)

XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>\n'

EXTENSIONS: dict[str, str] = {
    "json": "json",
    "xml": "xml",
    "junit": "junit.xml",
    "html": "html",
}


def render_report(result: PipelineResult, fmt: ReportFormat = "json") -> str:
    """Serialize a pipeline result.

    Args:
        result: Pipeline result to render
        fmt: One of json, xml, junit, html

    Returns:
        Report document

    Raises:
        ValueError: If the format is unknown

    """
    if fmt == "json":
        return result.model_dump_json(indent=2)
    if fmt == "xml":
        return _render_xml(result)
    if fmt == "junit":
        return _render_junit(result)
    if fmt == "html":
        return _render_html(result)
    raise ValueError(f"Unsupported report format: {fmt}")


def write_report(
    result: PipelineResult, fmt: ReportFormat, directory: Path
) -> Path:
    """Render a report into ``directory`` and return its path."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"pipeline-{result.id}.{EXTENSIONS[fmt]}"
    path.write_text(render_report(result, fmt), encoding="utf-8")
    logger.info(f"Wrote {fmt} report to {path}")
    return path


def _render_xml(result: PipelineResult) -> str:
    root = ET.Element("pipelineResult")
    root.set("id", result.id)
    root.set("timestamp", result.timestamp.isoformat())
    root.set("trigger", result.trigger)
    root.set("duration", f"{result.duration:.3f}")
    root.set("success", str(result.success).lower())
    root.set("score", f"{result.score:.4f}")

    stages = ET.SubElement(root, "stages")
    for stage_result in result.stage_results:
        stage = ET.SubElement(stages, "stage")
        stage.set("name", stage_result.stage.value)
        stage.set("success", str(stage_result.success).lower())
        stage.set("duration", f"{stage_result.duration:.3f}")
        if stage_result.error:
            ET.SubElement(stage, "error").text = stage_result.error
        for key, value in stage_result.details.items():
            detail = ET.SubElement(stage, "detail")
            detail.set("name", key)
            detail.text = (
                value if isinstance(value, str) else json.dumps(value, default=str)
            )

    not_attempted = ET.SubElement(root, "notAttempted")
    for skipped in result.not_attempted:
        ET.SubElement(not_attempted, "stage").set("name", skipped.value)

    recommendations = ET.SubElement(root, "recommendations")
    for text in result.recommendations:
        ET.SubElement(recommendations, "recommendation").text = text

    ET.indent(root)
    return XML_DECLARATION + ET.tostring(root, encoding="unicode")


def _render_junit(result: PipelineResult) -> str:
    failures = sum(1 for r in result.stage_results if not r.success)

    testsuites = ET.Element("testsuites")
    testsuite = ET.SubElement(testsuites, "testsuite")
    testsuite.set("name", f"pipeline-{result.trigger}")
    testsuite.set("tests", str(len(result.planned_stages or result.stage_results)))
    testsuite.set("failures", str(failures))
    testsuite.set("errors", "0")
    testsuite.set("skipped", str(len(result.not_attempted)))
    testsuite.set("time", str(result.duration))
    testsuite.set("timestamp", result.timestamp.isoformat())

    for stage_result in result.stage_results:
        testcase = ET.SubElement(testsuite, "testcase")
        testcase.set("classname", "pipeline")
        testcase.set("name", stage_result.stage.value)
        testcase.set("time", str(stage_result.duration))
        if not stage_result.success:
            failure = ET.SubElement(testcase, "failure")
            failure.set("message", stage_result.error or "Stage failed")
            failed_tests = stage_result.details.get("failed_tests") or []
            failure.text = "\n".join(failed_tests) or "No error details available"

    for stage in result.not_attempted:
        testcase = ET.SubElement(testsuite, "testcase")
        testcase.set("classname", "pipeline")
        testcase.set("name", stage.value)
        testcase.set("time", "0")
        skipped = ET.SubElement(testcase, "skipped")
        skipped.set("message", "Not attempted")

    properties = ET.SubElement(testsuite, "properties")
    for name, value in (
        ("id", result.id),
        ("score", f"{result.score:.4f}"),
        ("success", str(result.success).lower()),
    ):
        prop = ET.SubElement(properties, "property")
        prop.set("name", name)
        prop.set("value", value)

    ET.indent(testsuites)
    return XML_DECLARATION + ET.tostring(testsuites, encoding="unicode")


def _render_html(result: PipelineResult) -> str:
    verdict = "PASSED" if result.success else "FAILED"
    rows = []
    for stage_result in result.stage_results:
        status = "passed" if stage_result.success else "failed"
        rows.append(
            f'<tr class="{status}"><td>{html.escape(stage_result.stage.value)}</td>'
            f"<td>{status}</td><td>{stage_result.duration:.2f}s</td>"
            f"<td>{html.escape(stage_result.error or '')}</td></tr>"
        )
    for stage in result.not_attempted:
        rows.append(
            f'<tr class="not-attempted"><td>{html.escape(stage.value)}</td>'
            "<td>not attempted</td><td></td><td></td></tr>"
        )
    table_rows = "\n".join(rows)
    items = "".join(
        f"<li>{html.escape(text)}</li>" for text in result.recommendations
    )

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>Pipeline {html.escape(result.id)}</title>
<style>
body {{ font-family: sans-serif; margin: 2em; }}
table {{ border-collapse: collapse; }}
td, th {{ border: 1px solid #ccc; padding: 4px 8px; }}
tr.passed td:nth-child(2) {{ color: #1a7f37; }}
tr.failed td:nth-child(2) {{ color: #cf222e; }}
tr.not-attempted td {{ color: #6e7781; }}
</style>
</head>
<body>
<h1>Pipeline {verdict}</h1>
<p>Trigger: {html.escape(result.trigger)} | Score: {result.score:.2f} |
Duration: {result.duration:.2f}s | {html.escape(result.timestamp.isoformat())}</p>
<table>
<tr><th>Stage</th><th>Status</th><th>Duration</th><th>Error</th></tr>
{table_rows}
</table>
<h2>Recommendations</h2>
<ul>{items}</ul>
</body>
</html>
"""
