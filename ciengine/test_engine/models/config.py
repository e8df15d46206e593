"""Configuration models for the engine and the on-disk pipeline document."""

from typing import Literal

from pydantic import BaseModel, Field, field_validator

ReportFormat = Literal["html", "json", "xml", "junit"]

STAGE_NAMES = (
    "preparation",
    "unit-testing",
    "integration-testing",
    "performance-testing",
    "security-testing",
    "code-quality",
    "deployment-validation",
)


class EngineConfiguration(BaseModel):
    """Recognised engine options."""

    fail_fast: bool = Field(default=True, description="Stop on failed gating stage")
    min_pass_rate: float = Field(
        default=1.0, ge=0, le=1, description="Minimum pass rate for test stages"
    )
    max_response_time: float = Field(
        default=2.0, gt=0, description="Maximum response time in seconds"
    )
    max_memory_usage: float = Field(
        default=0.8, ge=0, le=1, description="Maximum memory usage fraction"
    )
    min_code_quality_score: float = Field(
        default=0.8, ge=0, le=1, description="Minimum code quality score"
    )
    include_deployment_validation: bool = Field(
        default=False, description="Run the deployment-validation stage"
    )
    parallel_execution: bool = Field(
        default=True, description="Allow suites to run tests concurrently"
    )
    max_concurrency: int = Field(
        default=8, ge=1, description="Worker pool size for parallel suites"
    )
    timeout_minutes: int = Field(
        default=30, ge=1, description="Global pipeline timeout in minutes"
    )
    max_retries: int = Field(default=0, ge=0, description="Retries per failed test")
    retry_base_delay: float = Field(
        default=1.0, ge=0, description="Backoff unit in seconds"
    )
    retry_on_timeout: bool = Field(
        default=False, description="Also retry tests that timed out"
    )
    stop_on_critical_failure: bool = Field(
        default=False, description="Skip remaining tests after a critical failure"
    )
    coverage_threshold: float = Field(
        default=0.0, ge=0, le=1, description="Minimum unit test coverage"
    )
    report_format: ReportFormat = Field(default="json", description="Report format")


class PreparationConfig(BaseModel):
    """Environment requirements checked by the preparation stage."""

    required_commands: list[str] = Field(default_factory=list)
    required_env: list[str] = Field(default_factory=list)
    setup_commands: list[list[str]] = Field(default_factory=list)
    command_timeout: float = Field(default=300.0, gt=0)


class CommandDriverConfig(BaseModel):
    """A command that prints a JSON report on stdout."""

    command: list[str] = Field(..., min_length=1)
    timeout: float = Field(default=600.0, gt=0)


class LoadConfig(BaseModel):
    """HTTP load target for the performance stage."""

    url: str = Field(..., description="Target URL")
    requests: int = Field(default=100, ge=1)
    concurrency: int = Field(default=10, ge=1)
    method: str = Field(default="GET")
    timeout: float = Field(default=10.0, gt=0)


class DeploymentConfig(BaseModel):
    """Health checks run by the deployment-validation stage."""

    health_urls: list[str] = Field(default_factory=list)
    expected_status: int = Field(default=200)
    timeout: float = Field(default=10.0, gt=0)


class PipelineConfig(BaseModel):
    """Pipeline document loaded from pipeline.yaml."""

    version: str = Field(..., description="Pipeline document schema version")
    engine: EngineConfiguration = Field(default_factory=EngineConfiguration)
    stages: list[str] = Field(
        default_factory=lambda: list(STAGE_NAMES),
        description="Stages to plan, run in fixed order",
    )
    suites_dir: str | None = Field(default=None, description="Suite files folder")
    preparation: PreparationConfig = Field(default_factory=PreparationConfig)
    quality: CommandDriverConfig | None = Field(default=None)
    security: CommandDriverConfig | None = Field(default=None)
    load: LoadConfig | None = Field(default=None)
    deployment: DeploymentConfig | None = Field(default=None)

    @field_validator("stages")
    @classmethod
    def _known_stages(cls, value: list[str]) -> list[str]:
        unknown = [stage for stage in value if stage not in STAGE_NAMES]
        if unknown:
            raise ValueError(f"Unknown pipeline stages: {', '.join(unknown)}")
        return value
