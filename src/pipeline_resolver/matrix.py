"""Pipeline task context and matrix fan-out resolution.

Resolves ``$(context.pipelineTask.retries)``, the combination count
``$(tasks.<name>.matrix.length)`` and the result fan-out length
``$(tasks.<name>.matrix.<result>.length)`` for one pipeline task.
"""

from __future__ import annotations

from collections.abc import Iterable

from pipeline_resolver import pipeline_logger
from pipeline_resolver.models import (
    Matrix,
    Param,
    PipelineRunState,
    PipelineRunStatus,
    PipelineTask,
    RunStateEntry,
)
from pipeline_resolver.references import (
    is_matrix_context_reference,
    parse_matrix_reference,
    value_references,
)
from pipeline_resolver.substitution import (
    Replacements,
    apply_replacements,
    replace_params,
)


class ResultsCache:
    """Per-pass memo of each task's results across its matrixed runs.

    Maps task name -> result name -> the values that result took in
    every task run of that task, in run order. A task's entry is built
    on first access and reused for the rest of the pass. Create a new
    cache for every resolution pass; it is not safe to share one
    between threads.
    """

    def __init__(self, state: PipelineRunState) -> None:
        self._state = state
        self._by_task: dict[str, dict[str, list[str]]] = {}

    def _entry(self, task_name: str) -> RunStateEntry | None:
        for entry in self._state:
            if entry.pipeline_task is not None and entry.pipeline_task.name == task_name:
                return entry
        return None

    def results(self, task_name: str) -> dict[str, list[str]] | None:
        """Result name -> values for *task_name*, or None if no such task."""
        if task_name in self._by_task:
            return self._by_task[task_name]
        entry = self._entry(task_name)
        if entry is None:
            return None
        gathered: dict[str, list[str]] = {}
        for task_run in entry.task_runs:
            for result in task_run.results:
                gathered.setdefault(result.name, []).append(result.value.string_val)
        self._by_task[task_name] = gathered
        return gathered

    def result_length(self, task_name: str, result_name: str) -> int | None:
        results = self.results(task_name)
        if results is None or result_name not in results:
            return None
        return len(results[result_name])


def count_combinations(matrix: Matrix | None) -> int:
    """Number of task instances a matrix fans out into.

    The product of every axis length, plus one for each include entry
    that introduces a value not already on its axis. Without axes every
    include entry is its own combination.
    """
    if matrix is None:
        return 0
    count = 0
    if matrix.has_params():
        count = 1
        for param in matrix.params:
            count *= len(param.value.array_val)
    if matrix.has_include():
        if not matrix.has_params():
            return len(matrix.include)
        axes = {p.name: p.value.array_val for p in matrix.params}
        for include in matrix.include:
            if any(
                p.name in axes and p.value.string_val not in axes[p.name]
                for p in include.params
            ):
                count += 1
    return count


def filter_matrix_context_params(params: Iterable[Param]) -> list[Param]:
    """Params that reference a matrix length or a matrix result length."""
    return [
        p
        for p in params
        if any(is_matrix_context_reference(ref) for ref in value_references(p.value))
    ]


def _find_task(run_status: PipelineRunStatus, task_name: str) -> PipelineTask | None:
    if run_status.pipeline_spec is None:
        return None
    for task in run_status.pipeline_spec.tasks:
        if task.name == task_name:
            return task
    return None


def pipeline_task_context_replacements(
    task: PipelineTask,
    run_status: PipelineRunStatus,
    cache: ResultsCache,
) -> dict[str, str]:
    replacements = {"context.pipelineTask.retries": str(task.retries)}

    for param in filter_matrix_context_params(task.params):
        for reference in value_references(param.value):
            if not is_matrix_context_reference(reference):
                continue
            task_name, result_name = parse_matrix_reference(reference)
            if not task_name:
                continue
            if result_name:
                length = cache.result_length(task_name, result_name)
                if length is not None:
                    replacements[reference] = str(length)
                    continue
            else:
                producer = _find_task(run_status, task_name)
                if producer is not None:
                    replacements[reference] = str(count_combinations(producer.matrix))
                    continue
            # Forward reference to a task that hasn't run yet.
            pipeline_logger.log_matrix_reference_unresolved(task.name, reference)
    return replacements


def apply_pipeline_task_contexts(
    task: PipelineTask,
    run_status: PipelineRunStatus,
    state: PipelineRunState,
    cache: ResultsCache | None = None,
) -> PipelineTask:
    """Return a copy of *task* with its task-level context resolved.

    Pass the same *cache* to every call of one resolution pass so each
    producing task's results are gathered only once.
    """
    if cache is None:
        cache = ResultsCache(state)
    task = task.model_copy(deep=True)
    strings = pipeline_task_context_replacements(task, run_status, cache)
    replacements = Replacements(strings, {}, {})

    task.params = replace_params(task.params, replacements)
    if task.is_matrixed():
        task.matrix.params = replace_params(task.matrix.params, replacements)
        for include in task.matrix.include:
            include.params = replace_params(include.params, replacements)
    task.display_name = apply_replacements(task.display_name, strings)
    return task
