"""Remediation messages derived from stage results."""

from collections.abc import Sequence

from ciengine.test_engine.models.pipeline import PipelineStage, StageResult

STAGE_REMEDIATIONS: dict[PipelineStage, str] = {
    PipelineStage.PREPARATION: (
        "Fix environment preparation: check required tools, variables and "
        "setup commands."
    ),
    PipelineStage.UNIT_TESTING: "Fix failing unit tests.",
    PipelineStage.INTEGRATION_TESTING: (
        "Fix failing integration tests and check service dependencies."
    ),
    PipelineStage.PERFORMANCE_TESTING: (
        "Address performance regressions: response time or memory usage "
        "exceeded thresholds."
    ),
    PipelineStage.SECURITY_TESTING: (
        "Resolve security findings before deployment."
    ),
    PipelineStage.CODE_QUALITY: (
        "Improve code quality: raise the quality score and test coverage."
    ),
    PipelineStage.DEPLOYMENT_VALIDATION: (
        "Fix deployment validation failures before releasing."
    ),
}

READY_MESSAGE = "All stages passed. Ready for deployment."


def generate_recommendations(
    stage_results: Sequence[StageResult],
    planned_stages: Sequence[PipelineStage] = (),
) -> list[str]:
    """Map failed stages to remediation strings.

    Stages that were planned but never ran are reported separately as not
    attempted, so they are not mistaken for failures.

    Args:
        stage_results: Results of the stages that ran, in order
        planned_stages: Stages the pipeline intended to run

    Returns:
        Recommendation strings, a single ready message when nothing failed

    """
    recommendations = [
        STAGE_REMEDIATIONS[result.stage]
        for result in stage_results
        if not result.success and result.stage in STAGE_REMEDIATIONS
    ]

    ran = {result.stage for result in stage_results}
    not_attempted = [stage.value for stage in planned_stages if stage not in ran]
    if not_attempted:
        recommendations.append(
            "Not attempted (pipeline stopped before these stages ran, they did "
            "not fail): "
            + ", ".join(not_attempted)
            + "."
        )

    if not recommendations:
        return [READY_MESSAGE]
    return recommendations
