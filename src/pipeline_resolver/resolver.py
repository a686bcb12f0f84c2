"""Resolution passes: the entry points the CLI drives.

Chains the individual resolvers in the order a run needs them: params,
then run context, then workspaces when a run starts, and result
aggregation when it ends.
"""

from __future__ import annotations

from pipeline_resolver import pipeline_logger
from pipeline_resolver.context import (
    apply_contexts,
    apply_parameters_to_workspace_bindings,
    apply_workspaces,
)
from pipeline_resolver.loader import TaskResults, validate_run_params
from pipeline_resolver.matrix import ResultsCache
from pipeline_resolver.models import (
    AggregatedResults,
    PipelineRun,
    PipelineSpec,
    ResolvedPipeline,
)
from pipeline_resolver.params import resolve_parameters
from pipeline_resolver.results import (
    aggregate_results,
    custom_runs_results,
    task_runs_results,
    task_statuses,
)


def resolve_pipeline(
    spec: PipelineSpec,
    pipeline_name: str,
    run: PipelineRun,
) -> ResolvedPipeline:
    """Resolve everything a pipeline run knows before any task has run.

    1. Checks object run params against their declared properties.
    2. Applies declared defaults overridden by run params.
    3. Applies run context (``context.pipelineRun.*``, ``context.pipeline.name``).
    4. Applies ``workspaces.<name>.bound``.
    5. Applies run params to the run's own workspace bindings.

    Result references stay in place for later passes.

    Raises:
        ValidationError: If an object run param lacks a declared property.
    """
    validate_run_params(spec, run)

    name = pipeline_name or run.pipeline_name
    resolved = resolve_parameters(spec, run)

    pipeline_logger.log_resolution_start("context", run.name, len(resolved.all_tasks()))
    resolved = apply_contexts(resolved, name, run)
    resolved = apply_workspaces(resolved, run)
    bound = apply_parameters_to_workspace_bindings(run)
    pipeline_logger.log_resolution_complete("context", run.name)

    return ResolvedPipeline(pipeline_name=name, spec=resolved, workspaces=bound.workspaces)


def resolve_pipeline_results(
    spec: PipelineSpec,
    task_results: TaskResults,
    pipeline_run: str = "",
) -> AggregatedResults:
    """Fold completed task results into the pipeline's declared results.

    When *task_results* carries run state, the aggregator inputs are
    gathered from it; otherwise they are used as given.
    """
    if task_results.state is not None:
        state = task_results.state
        run_results = task_runs_results(state, ResultsCache(state))
        custom_results = custom_runs_results(state)
        statuses = task_statuses(state)
    else:
        run_results = task_results.task_results
        custom_results = task_results.custom_results
        statuses = task_results.statuses

    pipeline_logger.log_resolution_start("results", pipeline_run, len(spec.all_tasks()))
    results, error = aggregate_results(spec.results, run_results, custom_results, statuses)
    pipeline_logger.log_resolution_complete("results", pipeline_run)

    if error is None:
        return AggregatedResults(results=results)
    return AggregatedResults(
        results=results,
        invalid=list(dict.fromkeys(error.invalid)),
        errors={
            name: [str(cause) for cause in causes]
            for name, causes in error.causes.items()
        },
    )
