"""Error taxonomy for the test engine.

Specification errors are raised before any work starts. Test failures are
never raised, they are recorded as results. Infrastructure errors and
pipeline errors are raised and handled by the pipeline runner.
"""

from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from ciengine.test_engine.models.pipeline import PipelineResult

PipelineErrorKind = Literal["preparation_failed", "timeout"]


class SpecificationError(ValueError):
    """Invalid configuration or specification, detected before execution."""


class TestDataSpecificationError(SpecificationError):
    """A test data specification failed validation."""

    __test__ = False

    def __init__(self, spec_id: str, problems: list[str]) -> None:
        """Build the error from the list of validation problems."""
        self.spec_id = spec_id
        self.problems = problems
        super().__init__(
            f"Invalid test data specification '{spec_id}': " + "; ".join(problems)
        )


class InfrastructureError(RuntimeError):
    """Environment setup failed or a dependency is unavailable."""


class ExecutionStateError(RuntimeError):
    """Illegal state transition of a test execution."""


class TestSkipped(Exception):  # noqa: N818
    """Raised by a test operation to mark itself as skipped."""

    __test__ = False


class PipelineError(RuntimeError):
    """Pipeline-level error surfaced to the caller."""

    kind: PipelineErrorKind

    def __init__(
        self, message: str, result: "PipelineResult | None" = None
    ) -> None:
        """Attach the partial pipeline result collected before the error."""
        super().__init__(message)
        self.result = result


class PreparationFailedError(PipelineError):
    """Preparation stage failed under fail-fast."""

    kind: PipelineErrorKind = "preparation_failed"

    def __init__(self, reason: str, result: "PipelineResult | None" = None) -> None:
        """Record the failure reason."""
        super().__init__(f"Preparation failed: {reason}", result)
        self.reason = reason


class PipelineTimeoutError(PipelineError):
    """The pipeline exceeded its global timeout."""

    kind: PipelineErrorKind = "timeout"
