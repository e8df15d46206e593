"""Run-time handle for an in-flight suite or pipeline run."""

from datetime import datetime
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, Field

from ciengine.test_engine.errors import ExecutionStateError
from ciengine.test_engine.models.test_result import ExecutionStatus, utcnow

TERMINAL_STATUSES: frozenset[str] = frozenset({"passed", "failed", "cancelled"})


class TestExecution(BaseModel):
    """Mutable execution handle owned by the execution registry."""

    __test__ = False

    id: str = Field(default_factory=lambda: uuid4().hex)
    kind: Literal["suite", "pipeline"] = Field(default="suite")
    name: str = Field(..., description="Suite or pipeline name")
    status: ExecutionStatus = Field(default="pending")
    start_time: datetime | None = Field(default=None)
    end_time: datetime | None = Field(default=None)

    @property
    def is_terminal(self) -> bool:
        """Whether the execution reached a terminal status."""
        return self.status in TERMINAL_STATUSES

    def start(self) -> None:
        """Move from pending to running."""
        if self.status != "pending":
            raise ExecutionStateError(
                f"Execution {self.id} cannot start from status {self.status}"
            )
        self.status = "running"
        self.start_time = utcnow()

    def finish(self, status: ExecutionStatus) -> None:
        """Transition exactly once to a terminal status."""
        if status not in TERMINAL_STATUSES:
            raise ExecutionStateError(f"{status} is not a terminal status")
        if self.is_terminal:
            raise ExecutionStateError(
                f"Execution {self.id} already finished with status {self.status}"
            )
        self.status = status
        self.end_time = utcnow()
