"""Models for test suites declared in YAML suite files."""

import shlex

from pydantic import BaseModel, Field, field_validator

from ciengine.test_engine.models.test_case import Priority, SuiteType


class CommandTest(BaseModel):
    """A test executed as a command in its own process."""

    name: str = Field(..., min_length=1, description="Human-readable test name")
    command: list[str] = Field(
        ..., min_length=1, description="Program and arguments, or a shell-like string"
    )
    priority: Priority = Field(default="medium", description="Test priority")
    tags: list[str] = Field(default_factory=list, description="Free-form tags")
    timeout: str | float | None = Field(
        default=None, description="Test timeout (e.g., '300s', '5m')"
    )
    coverage_pattern: str | None = Field(
        default=None, description="Regex whose first group is a coverage percentage"
    )
    cwd: str | None = Field(default=None, description="Working directory")
    env: dict[str, str] | None = Field(
        default=None, description="Extra environment variables"
    )

    @field_validator("command", mode="before")
    @classmethod
    def _split_command(cls, value: object) -> object:
        if isinstance(value, str):
            return shlex.split(value)
        return value


class SuiteFileConfiguration(BaseModel):
    """Suite settings as written in a suite file."""

    timeout: str | float = Field(
        default="5m", description="Per-test timeout (e.g., '300s', '5m')"
    )
    retry_count: int | None = Field(default=None, ge=0)
    parallel_execution: bool = Field(default=True)
    stop_on_critical_failure: bool = Field(default=False)


class SuiteDefinition(BaseModel):
    """Complete suite definition loaded from a suite file."""

    version: str = Field(..., description="Suite file schema version")
    name: str = Field(..., min_length=1, description="Suite name")
    type: SuiteType = Field(..., description="Kind of tests in the suite")
    configuration: SuiteFileConfiguration = Field(
        default_factory=SuiteFileConfiguration
    )
    tests: list[CommandTest] = Field(default_factory=list, description="Tests")
