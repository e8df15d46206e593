"""Tests for execution handle state transitions."""

import pytest

from ciengine.test_engine.errors import ExecutionStateError
from ciengine.test_engine.models.execution import TestExecution


def test_execution_defaults() -> None:
    """A new execution is pending with a generated id."""
    execution = TestExecution(name="unit")

    assert execution.status == "pending"
    assert execution.kind == "suite"
    assert len(execution.id) == 32
    assert not execution.is_terminal


def test_execution_ids_are_unique() -> None:
    """Every execution gets its own id."""
    assert TestExecution(name="a").id != TestExecution(name="a").id


def test_start_then_finish() -> None:
    """An execution moves pending -> running -> terminal."""
    execution = TestExecution(name="unit")

    execution.start()
    execution.finish("passed")

    assert execution.status == "passed"
    assert execution.is_terminal
    assert execution.start_time <= execution.end_time


def test_start_twice_fails() -> None:
    """start is only allowed from pending."""
    execution = TestExecution(name="unit")
    execution.start()

    with pytest.raises(ExecutionStateError, match="cannot start"):
        execution.start()


def test_finish_twice_fails() -> None:
    """A terminal status is reached exactly once."""
    execution = TestExecution(name="unit")
    execution.start()
    execution.finish("cancelled")

    with pytest.raises(ExecutionStateError, match="already finished"):
        execution.finish("passed")


def test_finish_requires_terminal_status() -> None:
    """finish rejects non-terminal statuses."""
    execution = TestExecution(name="unit")

    with pytest.raises(ExecutionStateError, match="not a terminal status"):
        execution.finish("running")
