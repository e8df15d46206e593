"""Models for pipeline stages and results."""

from datetime import datetime
from enum import Enum
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from ciengine.test_engine.models.test_result import utcnow

Trigger = Literal["manual", "commit", "pull_request", "scheduled", "deployment"]


class PipelineStage(str, Enum):
    """Pipeline stages in their fixed execution order."""

    PREPARATION = "preparation"
    UNIT_TESTING = "unit-testing"
    INTEGRATION_TESTING = "integration-testing"
    PERFORMANCE_TESTING = "performance-testing"
    SECURITY_TESTING = "security-testing"
    CODE_QUALITY = "code-quality"
    DEPLOYMENT_VALIDATION = "deployment-validation"
    COMPLETED = "completed"

    @property
    def order(self) -> int:
        """Position of the stage in the pipeline."""
        return list(PipelineStage).index(self)

    @property
    def is_gating(self) -> bool:
        """Gating stages stop the pipeline under fail-fast when they fail."""
        return self in GATING_STAGES


GATING_STAGES = frozenset(
    {
        PipelineStage.PREPARATION,
        PipelineStage.UNIT_TESTING,
        PipelineStage.INTEGRATION_TESTING,
        PipelineStage.DEPLOYMENT_VALIDATION,
    }
)


class StageResult(BaseModel):
    """Outcome of one pipeline stage."""

    model_config = ConfigDict(frozen=True)

    stage: PipelineStage = Field(..., description="Stage identity")
    success: bool = Field(..., description="Whether the stage passed")
    duration: float = Field(..., ge=0, description="Stage wall time in seconds")
    details: dict[str, Any] = Field(default_factory=dict)
    error: str | None = Field(default=None, description="Error kind or message")


class PipelineResult(BaseModel):
    """Top-level aggregate of a pipeline run."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid4().hex)
    timestamp: datetime = Field(default_factory=utcnow)
    trigger: Trigger = Field(..., description="What started the run")
    duration: float = Field(..., ge=0, description="Overall wall time in seconds")
    success: bool = Field(..., description="Overall verdict")
    stage_results: tuple[StageResult, ...] = Field(default=())
    planned_stages: tuple[PipelineStage, ...] = Field(default=())
    score: float = Field(..., ge=0, le=1, description="Successful/attempted stages")
    recommendations: tuple[str, ...] = Field(default=())

    @property
    def not_attempted(self) -> list[PipelineStage]:
        """Planned stages that did not run."""
        ran = {result.stage for result in self.stage_results}
        return [stage for stage in self.planned_stages if stage not in ran]

    def stage_result(self, stage: PipelineStage) -> StageResult | None:
        """Result of a given stage, if it ran."""
        for result in self.stage_results:
            if result.stage == stage:
                return result
        return None


class PipelineState(BaseModel):
    """Read-only snapshot of a pipeline run in progress."""

    model_config = ConfigDict(frozen=True)

    running: bool = False
    execution_id: str | None = None
    current_stage: PipelineStage | None = None
    progress: float = Field(default=0.0, ge=0, le=1)
    completed_stages: tuple[PipelineStage, ...] = ()
