"""Registry of suite and pipeline runs in flight."""

import asyncio
import logging

from ciengine.test_engine.cancellation import CancellationToken
from ciengine.test_engine.models.execution import TestExecution
from ciengine.test_engine.models.test_result import ExecutionStatus

logger = logging.getLogger(__name__)


class ExecutionRegistry:
    """Owns the set of active executions.

    All mutations go through one lock, so there is a single writer at any
    time. Readers receive copies and never see a handle being mutated.
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._lock = asyncio.Lock()
        self._executions: dict[str, TestExecution] = {}
        self._tokens: dict[str, CancellationToken] = {}

    async def register(
        self, execution: TestExecution, token: CancellationToken
    ) -> TestExecution:
        """Add an execution and mark it running."""
        async with self._lock:
            if execution.id in self._executions:
                raise ValueError(f"Execution {execution.id} is already registered")
            execution.start()
            self._executions[execution.id] = execution
            self._tokens[execution.id] = token
            logger.debug(f"Registered execution {execution.id} ({execution.name})")
            return execution.model_copy()

    async def cancel(self, execution_id: str) -> bool:
        """Mark an execution cancelled and trip its token.

        Returns:
            False when the execution is unknown or already finished

        """
        async with self._lock:
            execution = self._executions.get(execution_id)
            if execution is None or execution.is_terminal:
                return False
            execution.finish("cancelled")
            self._tokens[execution_id].cancel("execution cancelled")
            logger.info(f"Cancelled execution {execution_id} ({execution.name})")
            return True

    async def complete(
        self, execution_id: str, status: ExecutionStatus
    ) -> TestExecution:
        """Finish an execution and drop it from the active set.

        A cancelled execution keeps its cancelled status.
        """
        async with self._lock:
            execution = self._executions.pop(execution_id)
            self._tokens.pop(execution_id, None)
            if not execution.is_terminal:
                execution.finish(status)
            logger.debug(f"Execution {execution_id} finished: {execution.status}")
            return execution

    def snapshot(self) -> tuple[TestExecution, ...]:
        """Copies of the active executions."""
        return tuple(e.model_copy() for e in self._executions.values())

    def get(self, execution_id: str) -> TestExecution | None:
        """Copy of one active execution."""
        execution = self._executions.get(execution_id)
        return execution.model_copy() if execution is not None else None
