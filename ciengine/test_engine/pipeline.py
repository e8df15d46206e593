"""Pipeline stage machine driving stages in their fixed order."""

import asyncio
import logging
import time
from collections.abc import Mapping, Sequence

from ciengine.test_engine.cancellation import CancellationToken
from ciengine.test_engine.errors import PipelineTimeoutError, PreparationFailedError
from ciengine.test_engine.events import (
    EventBus,
    PipelineCompleted,
    PipelineProgress,
    PipelineStarted,
    StageCompleted,
    StageStarted,
)
from ciengine.test_engine.models.config import EngineConfiguration
from ciengine.test_engine.models.execution import TestExecution
from ciengine.test_engine.models.pipeline import (
    PipelineResult,
    PipelineStage,
    PipelineState,
    StageResult,
    Trigger,
)
from ciengine.test_engine.orchestrator import TestOrchestrator
from ciengine.test_engine.recommendations import generate_recommendations
from ciengine.test_engine.stages import DefaultStageHandlers, StageContext, StageHandler

logger = logging.getLogger(__name__)


def compute_score(stage_results: Sequence[StageResult]) -> float:
    """Successful stages over attempted stages, 1.0 when nothing ran."""
    if not stage_results:
        return 1.0
    return sum(1 for r in stage_results if r.success) / len(stage_results)


class PipelineRunner:
    """Runs planned stages, applying fail-fast and the global timeout.

    The runner is the single owner of run-time pipeline state; callers read
    it through ``state`` snapshots or by subscribing to the event bus.
    """

    def __init__(
        self,
        config: EngineConfiguration | None = None,
        orchestrator: TestOrchestrator | None = None,
        stage_handlers: Mapping[PipelineStage, StageHandler] | None = None,
        stages: Sequence[PipelineStage] | None = None,
        event_bus: EventBus | None = None,
        timeout: float | None = None,
    ) -> None:
        """Initialize the runner.

        Args:
            config: Engine configuration, the orchestrator's when None
            orchestrator: Orchestrator holding the registered suites
            stage_handlers: Handlers overriding the default stage work
            stages: Stages to plan, every stage when None
            event_bus: Bus receiving progress and completion events
            timeout: Global timeout in seconds, overrides timeout_minutes

        """
        if config is None:
            config = orchestrator.config if orchestrator else EngineConfiguration()
        self.config = config
        self.orchestrator = orchestrator or TestOrchestrator(config)
        self.handlers: dict[PipelineStage, StageHandler] = (
            DefaultStageHandlers().handlers()
        )
        if stage_handlers:
            self.handlers.update(stage_handlers)
        self.stages = list(stages) if stages is not None else None
        self.event_bus = event_bus or EventBus()
        self.timeout = timeout if timeout is not None else config.timeout_minutes * 60
        self._state = PipelineState()
        self._execution_id: str | None = None

    @property
    def state(self) -> PipelineState:
        """Snapshot of the current run."""
        return self._state

    def planned_stages(self) -> list[PipelineStage]:
        """Stages this runner will attempt, in pipeline order."""
        candidates = self.stages if self.stages is not None else list(PipelineStage)
        planned = {
            stage
            for stage in candidates
            if stage != PipelineStage.COMPLETED
            and (
                stage != PipelineStage.DEPLOYMENT_VALIDATION
                or self.config.include_deployment_validation
            )
        }
        return sorted(planned, key=lambda stage: stage.order)

    async def cancel(self) -> bool:
        """Cancel the run in progress; stages not yet started do not run."""
        if self._execution_id is None:
            return False
        return await self.orchestrator.registry.cancel(self._execution_id)

    async def run_pipeline(self, trigger: Trigger = "manual") -> PipelineResult:
        """Run every planned stage and aggregate a pipeline result.

        Raises:
            PreparationFailedError: Preparation failed under fail-fast
            PipelineTimeoutError: The global timeout was exceeded

        """
        planned = self.planned_stages()
        execution = TestExecution(kind="pipeline", name=f"pipeline:{trigger}")
        token = CancellationToken()
        await self.orchestrator.registry.register(execution, token)
        self._execution_id = execution.id
        self._state = PipelineState(running=True, execution_id=execution.id)

        logger.info(
            f"Pipeline {execution.id} started by {trigger}: "
            f"{', '.join(s.value for s in planned)}"
        )
        await self.event_bus.publish(
            PipelineStarted(
                execution_id=execution.id,
                trigger=trigger,
                planned_stages=tuple(planned),
            )
        )

        stage_results: list[StageResult] = []
        start = time.monotonic()
        try:
            await asyncio.wait_for(
                self._run_stages(execution.id, planned, stage_results, token),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            token.cancel("pipeline timeout")
            result = await self._finish(
                execution.id, trigger, start, planned, stage_results
            )
            logger.error(f"Pipeline {execution.id} timed out after {self.timeout}s")
            raise PipelineTimeoutError(
                f"Pipeline did not complete within {self.timeout} seconds", result
            ) from None
        except PreparationFailedError as e:
            e.result = await self._finish(
                execution.id, trigger, start, planned, stage_results
            )
            raise
        except BaseException:
            token.cancel("pipeline aborted")
            await self.orchestrator.registry.complete(execution.id, "cancelled")
            self._state = self._state.model_copy(update={"running": False})
            raise

        return await self._finish(execution.id, trigger, start, planned, stage_results)

    async def _run_stages(
        self,
        execution_id: str,
        planned: list[PipelineStage],
        stage_results: list[StageResult],
        token: CancellationToken,
    ) -> None:
        for index, stage in enumerate(planned):
            if token.cancelled:
                logger.warning(f"Pipeline cancelled before stage {stage.value}")
                return

            self._state = self._state.model_copy(update={"current_stage": stage})
            await self.event_bus.publish(
                StageStarted(execution_id=execution_id, stage=stage)
            )
            logger.info(f"Stage {stage.value} started")

            result, raised = await self._run_stage(stage, stage_results, token)
            stage_results.append(result)

            progress = max(self._state.progress, (index + 1) / len(planned))
            self._state = self._state.model_copy(
                update={
                    "progress": progress,
                    "completed_stages": (*self._state.completed_stages, stage),
                }
            )
            await self.event_bus.publish(
                StageCompleted(execution_id=execution_id, result=result)
            )
            await self.event_bus.publish(
                PipelineProgress(execution_id=execution_id, progress=progress)
            )
            status = "passed" if result.success else "failed"
            logger.info(f"Stage {stage.value} {status} in {result.duration:.2f}s")

            if result.success or not self.config.fail_fast:
                continue
            if stage == PipelineStage.PREPARATION:
                raise PreparationFailedError(result.error or "preparation failed")
            if stage.is_gating or raised:
                logger.warning(f"Fail-fast: stopping after failed stage {stage.value}")
                return

    async def _run_stage(
        self,
        stage: PipelineStage,
        completed: list[StageResult],
        token: CancellationToken,
    ) -> tuple[StageResult, bool]:
        """Run one handler; an exception becomes a failed stage result."""
        handler = self.handlers.get(stage)
        if handler is None:
            return (
                StageResult(
                    stage=stage,
                    success=True,
                    duration=0.0,
                    details={"skipped_reason": "no handler"},
                ),
                False,
            )

        ctx = StageContext(
            config=self.config,
            orchestrator=self.orchestrator,
            token=token,
            completed=list(completed),
        )
        start = time.monotonic()
        try:
            return await handler(ctx), False
        except Exception as e:
            logger.exception(f"Stage {stage.value} raised {type(e).__name__}")
            return (
                StageResult(
                    stage=stage,
                    success=False,
                    duration=time.monotonic() - start,
                    error=f"{type(e).__name__}: {e}",
                ),
                True,
            )

    async def _finish(
        self,
        execution_id: str,
        trigger: Trigger,
        start: float,
        planned: list[PipelineStage],
        stage_results: list[StageResult],
    ) -> PipelineResult:
        all_ran = len(stage_results) == len(planned)
        success = all_ran and all(r.success for r in stage_results)
        result = PipelineResult(
            id=execution_id,
            trigger=trigger,
            duration=time.monotonic() - start,
            success=success,
            stage_results=tuple(stage_results),
            planned_stages=tuple(planned),
            score=compute_score(stage_results),
            recommendations=tuple(generate_recommendations(stage_results, planned)),
        )

        await self.orchestrator.registry.complete(
            execution_id, "passed" if success else "failed"
        )
        if self.orchestrator.result_store is not None:
            self.orchestrator.result_store.append_pipeline_result(result)
        update: dict[str, object] = {"running": False}
        if all_ran:
            update["current_stage"] = PipelineStage.COMPLETED
            update["progress"] = 1.0
        self._state = self._state.model_copy(update=update)
        self._execution_id = None

        logger.info(
            f"Pipeline {execution_id} {'succeeded' if success else 'failed'} "
            f"with score {result.score:.2f}"
        )
        await self.event_bus.publish(
            PipelineCompleted(execution_id=execution_id, result=result)
        )
        return result
