"""Load pipeline configuration and test suites from YAML files."""

import logging
import os
import re
from pathlib import Path
from typing import TypeVar

import yaml
from pydantic import BaseModel, ValidationError

from ciengine.test_engine.drivers.base import BuildVerifier
from ciengine.test_engine.drivers.command import (
    CommandBuildVerifier,
    CommandQualityAnalyzer,
    CommandVulnerabilityScanner,
)
from ciengine.test_engine.drivers.environment import EnvironmentVerifier
from ciengine.test_engine.drivers.http import HttpHealthValidator, HttpLoadDriver
from ciengine.test_engine.errors import SpecificationError
from ciengine.test_engine.models.config import PipelineConfig
from ciengine.test_engine.models.suite_file import SuiteDefinition
from ciengine.test_engine.models.test_case import (
    SuiteConfiguration,
    TestCase,
    TestSuite,
)
from ciengine.test_engine.models.test_data import TestDataSpecification
from ciengine.test_engine.process import command_operation
from ciengine.test_engine.stages import DefaultStageHandlers

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

DURATION_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: str | float | int) -> float:
    """Convert ``"300s"``, ``"5m"``, ``"1h"`` or a number of seconds to seconds.

    Raises:
        SpecificationError: If the value is not a positive duration

    """
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = float(value)
    else:
        match = DURATION_PATTERN.match(str(value))
        if not match:
            raise SpecificationError(f"Invalid duration: {value!r}")
        seconds = float(match.group(1)) * DURATION_UNITS[match.group(2) or "s"]
    if seconds <= 0:
        raise SpecificationError(f"Duration must be positive: {value!r}")
    return seconds


def _load_yaml_model(path: Path, model: type[ModelT], kind: str) -> ModelT:
    if not path.exists():
        raise FileNotFoundError(f"{kind.capitalize()} file not found: {path}")

    try:
        with path.open() as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise SpecificationError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        raise SpecificationError(f"Empty {kind} file: {path}")

    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise SpecificationError(f"Invalid {kind} schema in {path}: {e}") from e


async def load_pipeline_config(path: Path) -> PipelineConfig:
    """Load the pipeline document.

    Args:
        path: Path to pipeline.yaml

    Returns:
        Parsed pipeline configuration

    Raises:
        FileNotFoundError: If the file doesn't exist
        SpecificationError: If YAML is invalid or doesn't match schema

    """
    return _load_yaml_model(path, PipelineConfig, "pipeline")


async def load_suite_definition(path: Path) -> SuiteDefinition:
    """Load one suite file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        SpecificationError: If YAML is invalid or doesn't match schema

    """
    return _load_yaml_model(path, SuiteDefinition, "suite")


async def load_data_specification(path: Path) -> TestDataSpecification:
    """Load a test data specification.

    Raises:
        FileNotFoundError: If the file doesn't exist
        SpecificationError: If YAML is invalid or doesn't match schema

    """
    return _load_yaml_model(path, TestDataSpecification, "data specification")


def build_suite(definition: SuiteDefinition, base_dir: Path) -> TestSuite:
    """Turn a suite definition into a suite of command test cases.

    Relative working directories are resolved against ``base_dir``. Test
    environments extend the current process environment.

    Raises:
        SpecificationError: If a duration is invalid or test names repeat

    """
    config = definition.configuration
    suite = TestSuite(
        name=definition.name,
        type=definition.type,
        configuration=SuiteConfiguration(
            timeout=parse_duration(config.timeout),
            retry_count=config.retry_count,
            parallel_execution=config.parallel_execution,
            stop_on_critical_failure=config.stop_on_critical_failure,
        ),
    )

    for test in definition.tests:
        cwd = base_dir / test.cwd if test.cwd else base_dir
        env = {**os.environ, **test.env} if test.env else None
        case = TestCase(
            name=test.name,
            operation=command_operation(
                test.command, cwd=cwd, env=env, coverage_pattern=test.coverage_pattern
            ),
            priority=test.priority,
            tags=tuple(test.tags),
            timeout=parse_duration(test.timeout) if test.timeout is not None else None,
        )
        try:
            suite.add_test(case)
        except ValueError as e:
            raise SpecificationError(str(e)) from e

    return suite


async def load_suites(suites_dir: Path) -> list[TestSuite]:
    """Load every ``*.yaml``/``*.yml`` suite file of a directory, sorted by name.

    Raises:
        FileNotFoundError: If the directory doesn't exist
        SpecificationError: If any suite file is invalid or names repeat

    """
    if not suites_dir.is_dir():
        raise FileNotFoundError(f"Suites directory not found: {suites_dir}")

    paths = sorted([*suites_dir.glob("*.yaml"), *suites_dir.glob("*.yml")])
    suites: list[TestSuite] = []
    for path in paths:
        definition = await load_suite_definition(path)
        if any(s.name == definition.name for s in suites):
            raise SpecificationError(
                f"Duplicate suite name {definition.name} in {path}"
            )
        suites.append(build_suite(definition, suites_dir))
        logger.info(
            f"Loaded suite {definition.name} ({definition.type}) "
            f"with {len(definition.tests)} tests from {path.name}"
        )
    return suites


def build_stage_handlers(
    config: PipelineConfig, base_dir: Path
) -> DefaultStageHandlers:
    """Create the stage drivers described by the pipeline document."""
    preparation = config.preparation
    verifiers: list[BuildVerifier] = []
    if preparation.required_commands or preparation.required_env:
        verifiers.append(
            EnvironmentVerifier(preparation.required_commands, preparation.required_env)
        )
    if preparation.setup_commands:
        verifiers.append(
            CommandBuildVerifier(
                preparation.setup_commands,
                timeout=preparation.command_timeout,
                cwd=base_dir,
            )
        )

    load_driver = None
    if config.load is not None:
        load_driver = HttpLoadDriver(
            config.load.url,
            requests=config.load.requests,
            concurrency=config.load.concurrency,
            method=config.load.method,
            timeout=config.load.timeout,
        )

    scanners = []
    if config.security is not None:
        scanners.append(
            CommandVulnerabilityScanner(
                config.security.command, timeout=config.security.timeout, cwd=base_dir
            )
        )

    quality_analyzer = None
    if config.quality is not None:
        quality_analyzer = CommandQualityAnalyzer(
            config.quality.command, timeout=config.quality.timeout, cwd=base_dir
        )

    validators = []
    if config.deployment is not None:
        validators = [
            HttpHealthValidator(
                url,
                expected_status=config.deployment.expected_status,
                timeout=config.deployment.timeout,
            )
            for url in config.deployment.health_urls
        ]

    return DefaultStageHandlers(
        build_verifiers=verifiers,
        load_driver=load_driver,
        scanners=scanners,
        quality_analyzer=quality_analyzer,
        deployment_validators=validators,
    )
