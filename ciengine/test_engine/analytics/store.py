"""Append-only stores of historical suite and pipeline results."""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import BaseModel, ValidationError

from ciengine.test_engine.models.pipeline import PipelineResult
from ciengine.test_engine.models.test_result import TestSuiteResult

logger = logging.getLogger(__name__)


class ResultStore(ABC):
    """Append-only history read by the analytics engine.

    Listing methods return results oldest first; ``limit`` keeps the most
    recent ones.
    """

    @abstractmethod
    def append_suite_result(self, result: TestSuiteResult) -> None:
        """Persist one suite result."""

    @abstractmethod
    def append_pipeline_result(self, result: PipelineResult) -> None:
        """Persist one pipeline result."""

    @abstractmethod
    def suite_results(self, limit: int | None = None) -> list[TestSuiteResult]:
        """Stored suite results, oldest first."""

    @abstractmethod
    def pipeline_results(self, limit: int | None = None) -> list[PipelineResult]:
        """Stored pipeline results, oldest first."""


def _tail(items: list, limit: int | None) -> list:
    if limit is None:
        return list(items)
    return items[-limit:] if limit > 0 else []


class InMemoryResultStore(ResultStore):
    """Keeps results in process memory."""

    def __init__(self) -> None:
        """Initialize empty history."""
        self._suites: list[TestSuiteResult] = []
        self._pipelines: list[PipelineResult] = []

    def append_suite_result(self, result: TestSuiteResult) -> None:
        """Persist one suite result."""
        self._suites.append(result)

    def append_pipeline_result(self, result: PipelineResult) -> None:
        """Persist one pipeline result."""
        self._pipelines.append(result)

    def suite_results(self, limit: int | None = None) -> list[TestSuiteResult]:
        """Stored suite results, oldest first."""
        return _tail(self._suites, limit)

    def pipeline_results(self, limit: int | None = None) -> list[PipelineResult]:
        """Stored pipeline results, oldest first."""
        return _tail(self._pipelines, limit)


class JsonLinesResultStore(ResultStore):
    """One JSON document per line, tagged with its kind.

    Lines that cannot be parsed, or whose document does not match its kind,
    are logged and skipped so one corrupt entry does not hide the rest of the
    history.
    """

    def __init__(self, path: Path) -> None:
        """Initialize store backed by a file, created on first append."""
        self.path = path

    def append_suite_result(self, result: TestSuiteResult) -> None:
        """Persist one suite result."""
        self._append("suite", result.model_dump(mode="json"))

    def append_pipeline_result(self, result: PipelineResult) -> None:
        """Persist one pipeline result."""
        self._append("pipeline", result.model_dump(mode="json"))

    def suite_results(self, limit: int | None = None) -> list[TestSuiteResult]:
        """Stored suite results, oldest first."""
        return _tail(self._read("suite", TestSuiteResult), limit)

    def pipeline_results(self, limit: int | None = None) -> list[PipelineResult]:
        """Stored pipeline results, oldest first."""
        return _tail(self._read("pipeline", PipelineResult), limit)

    def _append(self, kind: str, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a") as f:
            f.write(json.dumps({"kind": kind, "data": data}) + "\n")

    def _read(self, kind: str, model: type[BaseModel]) -> list:
        if not self.path.exists():
            return []

        results = []
        with self.path.open() as f:
            for number, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError as e:
                    logger.warning(
                        f"Skipping invalid line {number} of {self.path}: {e}"
                    )
                    continue
                if not isinstance(entry, dict):
                    logger.warning(
                        f"Skipping line {number} of {self.path}: not an object"
                    )
                    continue
                if entry.get("kind") != kind:
                    continue
                try:
                    results.append(model.model_validate(entry.get("data")))
                except ValidationError as e:
                    logger.warning(
                        f"Skipping invalid {kind} on line {number} of {self.path}: "
                        f"{e.error_count()} validation errors"
                    )
        return results
