"""Task result propagation and pipeline result aggregation.

Two entry points share the same reference-shape rules:

* ``apply_task_results`` feeds results that are already available into
  tasks that haven't started yet. Unknown references stay in place so
  a later pass can fill them in.
* ``apply_task_results_to_pipeline_results`` folds task results into the
  pipeline's declared results once the run completes. Every reference
  must resolve, otherwise the declared result is rejected.
"""

from __future__ import annotations

import json
from collections.abc import Mapping

from pipeline_resolver import pipeline_logger
from pipeline_resolver.errors import (
    ArrayIndexOutOfBoundsError,
    ArtifactSerializationError,
    InvalidPipelineResultsError,
    InvalidReferenceError,
    MissingResultError,
    ResultReferenceError,
)
from pipeline_resolver.matrix import ResultsCache
from pipeline_resolver.models import (
    CustomRunResult,
    ParamType,
    ParamValue,
    PipelineResult,
    PipelineRun,
    PipelineRunResult,
    PipelineRunState,
    PipelineTask,
    ResolvedResultRef,
    ResultReference,
    RunStateEntry,
    TaskRunResult,
)
from pipeline_resolver.references import (
    RESULT_FINALLY_PART,
    RESULT_RESULT_PART,
    RESULT_TASK_PART,
    normalize,
    split_index,
    strip_star,
    value_references,
)
from pipeline_resolver.substitution import (
    Replacements,
    apply_replacements,
    apply_to_value,
    replace_params,
    replace_task_spec,
    replace_when,
    replace_workspace_bindings,
)

PIPELINE_TASK_STATUS_PREFIX = "tasks."
PIPELINE_TASK_STATUS_SUFFIX = ".status"
PIPELINE_TASKS_AGGREGATE_STATUS = "tasks.status"

TASK_RUN_REASON_SUCCESSFUL = "Succeeded"
TASK_RUN_REASON_FAILED = "Failed"
TASK_RUN_REASON_COMPLETED = "Completed"
TASK_RUN_REASON_NONE = "None"

# tasks.<taskName>.results.<resultName>
_RESULTS_PARSE_NUMBER = 4
# tasks.<taskName>.results.<objectResultName>.<individualAttribute>
_OBJECT_ELEMENT_RESULTS_PARSE_NUMBER = 5


# ── Replacement maps from resolved result references ─────────────


def _targets(ref: ResultReference) -> list[str]:
    t, r = ref.pipeline_task, ref.result
    return [
        f"{RESULT_TASK_PART}.{t}.{RESULT_RESULT_PART}.{r}",
        f'{RESULT_TASK_PART}.{t}.{RESULT_RESULT_PART}["{r}"]',
        f"{RESULT_TASK_PART}.{t}.{RESULT_RESULT_PART}['{r}']",
    ]


def _index_targets(ref: ResultReference, index: int) -> list[str]:
    return [f"{target}[{index}]" for target in _targets(ref)]


def _key_targets(ref: ResultReference, key: str) -> list[str]:
    t, r = ref.pipeline_task, ref.result
    return [
        f"{RESULT_TASK_PART}.{t}.{RESULT_RESULT_PART}.{r}.{key}",
        f'{RESULT_TASK_PART}.{t}.{RESULT_RESULT_PART}["{r}"]["{key}"]',
        f"{RESULT_TASK_PART}.{t}.{RESULT_RESULT_PART}['{r}']['{key}']",
    ]


def string_replacements(refs: list[ResolvedResultRef]) -> dict[str, str]:
    replacements: dict[str, str] = {}
    for ref in refs:
        match ref.value.type:
            case ParamType.ARRAY:
                for i, item in enumerate(ref.value.array_val):
                    for target in _index_targets(ref.reference, i):
                        replacements[target] = item
            case ParamType.OBJECT:
                for key, item in ref.value.object_val.items():
                    for target in _key_targets(ref.reference, key):
                        replacements[target] = item
            case _:
                for target in _targets(ref.reference):
                    replacements[target] = ref.value.string_val
    return replacements


def array_replacements(refs: list[ResolvedResultRef]) -> dict[str, list[str]]:
    replacements: dict[str, list[str]] = {}
    for ref in refs:
        if ref.value.type == ParamType.ARRAY:
            for target in _targets(ref.reference):
                replacements[target] = list(ref.value.array_val)
    return replacements


def object_replacements(refs: list[ResolvedResultRef]) -> dict[str, dict[str, str]]:
    replacements: dict[str, dict[str, str]] = {}
    for ref in refs:
        if ref.value.type == ParamType.OBJECT:
            for target in _targets(ref.reference):
                replacements[target] = dict(ref.value.object_val)
    return replacements


def result_replacements(refs: list[ResolvedResultRef]) -> Replacements:
    return Replacements(
        string_replacements(refs),
        array_replacements(refs),
        object_replacements(refs),
    )


# ── Gathering results from run state ─────────────────────────────


def _entry_status(entry: RunStateEntry) -> str:
    statuses = [r.status for r in entry.task_runs] + [r.status for r in entry.custom_runs]
    if not statuses:
        return TASK_RUN_REASON_NONE
    if any(s == TASK_RUN_REASON_FAILED for s in statuses):
        return TASK_RUN_REASON_FAILED
    if all(s == TASK_RUN_REASON_SUCCESSFUL for s in statuses):
        return TASK_RUN_REASON_SUCCESSFUL
    return TASK_RUN_REASON_NONE


def _is_successful(entry: RunStateEntry) -> bool:
    return _entry_status(entry) == TASK_RUN_REASON_SUCCESSFUL


def task_statuses(state: PipelineRunState) -> dict[str, str]:
    """Status-key map: ``tasks.<name>.status`` plus the ``tasks.status`` aggregate.

    A task that never ran (skipped or still pending) has status
    ``"None"``. The aggregate is ``Failed`` if any task failed,
    ``Succeeded`` if all succeeded, ``Completed`` if the rest were
    skipped, and ``None`` otherwise.
    """
    statuses: dict[str, str] = {}
    for entry in state:
        if entry.pipeline_task is None:
            continue
        key = PIPELINE_TASK_STATUS_PREFIX + entry.name + PIPELINE_TASK_STATUS_SUFFIX
        statuses[key] = _entry_status(entry)

    values = list(statuses.values())
    if any(v == TASK_RUN_REASON_FAILED for v in values):
        aggregate = TASK_RUN_REASON_FAILED
    elif all(v == TASK_RUN_REASON_SUCCESSFUL for v in values):
        aggregate = TASK_RUN_REASON_SUCCESSFUL
    elif any(v == TASK_RUN_REASON_SUCCESSFUL for v in values):
        aggregate = TASK_RUN_REASON_COMPLETED
    else:
        aggregate = TASK_RUN_REASON_NONE
    statuses[PIPELINE_TASKS_AGGREGATE_STATUS] = aggregate
    return statuses


def task_runs_results(
    state: PipelineRunState, cache: ResultsCache | None = None
) -> dict[str, list[TaskRunResult]]:
    """Results of every successful, non-custom task keyed by task name.

    A matrixed task reports each result as an array of the values it
    took across all of its runs.
    """
    if cache is None:
        cache = ResultsCache(state)
    results: dict[str, list[TaskRunResult]] = {}
    for entry in state:
        if entry.pipeline_task is None or entry.is_custom_task():
            continue
        if not _is_successful(entry):
            continue
        if entry.pipeline_task.is_matrixed():
            fanned = cache.results(entry.name) or {}
            if fanned:
                results[entry.name] = [
                    TaskRunResult(name=name, value=ParamValue.of(values))
                    for name, values in fanned.items()
                ]
        else:
            results[entry.name] = [
                r.model_copy(deep=True) for r in entry.task_runs[0].results
            ]
    return results


def custom_runs_results(state: PipelineRunState) -> dict[str, list[CustomRunResult]]:
    results: dict[str, list[CustomRunResult]] = {}
    for entry in state:
        if entry.pipeline_task is None or not entry.is_custom_task():
            continue
        if _is_successful(entry):
            results[entry.name] = [
                r.model_copy(deep=True) for r in entry.custom_runs[0].results
            ]
    return results


def resolved_result_refs(
    state: PipelineRunState, cache: ResultsCache | None = None
) -> list[ResolvedResultRef]:
    """Every result produced so far, ready for ``apply_task_results``."""
    refs: list[ResolvedResultRef] = []
    for task_name, results in task_runs_results(state, cache).items():
        entry = next(e for e in state if e.name == task_name)
        for result in results:
            refs.append(
                ResolvedResultRef(
                    value=result.value,
                    reference=ResultReference(pipeline_task=task_name, result=result.name),
                    from_task_run=entry.task_runs[0].name,
                )
            )
    for task_name, custom_results in custom_runs_results(state).items():
        entry = next(e for e in state if e.name == task_name)
        for result in custom_results:
            refs.append(
                ResolvedResultRef(
                    value=ParamValue.of(result.value),
                    reference=ResultReference(pipeline_task=task_name, result=result.name),
                    from_run=entry.custom_runs[0].name,
                )
            )
    return refs


# ── Propagation into not-yet-started tasks ───────────────────────


def _has_started(entry: RunStateEntry) -> bool:
    return bool(entry.task_runs or entry.custom_runs)


def _apply_results_to_task(task: PipelineTask, replacements: Replacements) -> PipelineTask:
    strings = replacements.strings
    task = task.model_copy(deep=True)
    task.params = replace_params(task.params, replacements)
    if task.is_matrixed():
        # Matrix params take string and array results; include params
        # can only be strings.
        task.matrix.params = replace_params(
            task.matrix.params, replacements.without_objects()
        )
        for include in task.matrix.include:
            include.params = replace_params(include.params, replacements.string_only())
    task.when = replace_when(task.when, replacements)
    if task.task_ref is not None:
        if task.task_ref.params is not None:
            task.task_ref.params = replace_params(task.task_ref.params, replacements)
        task.task_ref.name = apply_replacements(task.task_ref.name, strings)
    task.display_name = apply_replacements(task.display_name, strings)
    for ws in task.workspaces:
        ws.sub_path = apply_replacements(ws.sub_path, strings)
    return task


def apply_task_results(
    state: PipelineRunState, refs: list[ResolvedResultRef]
) -> PipelineRunState:
    """Substitute resolved results into every task that hasn't started.

    Returns a new state; entries that already have runs are copied
    unchanged.
    """
    replacements = result_replacements(refs)
    new_state: PipelineRunState = []
    for entry in state:
        entry = entry.model_copy(deep=True)
        if entry.pipeline_task is not None and not _has_started(entry):
            entry.pipeline_task = _apply_results_to_task(entry.pipeline_task, replacements)
        new_state.append(entry)
    return new_state


def apply_pipeline_task_state_context(
    state: PipelineRunState, replacements: Mapping[str, str]
) -> PipelineRunState:
    """Substitute execution-status variables such as ``tasks.<name>.status``."""
    strings = Replacements(dict(replacements))
    new_state: PipelineRunState = []
    for entry in state:
        entry = entry.model_copy(deep=True)
        task = entry.pipeline_task
        if task is not None:
            task.params = replace_params(task.params, strings)
            task.when = replace_when(task.when, strings)
            if task.task_ref is not None:
                if task.task_ref.params is not None:
                    task.task_ref.params = replace_params(task.task_ref.params, strings)
                task.task_ref.name = apply_replacements(task.task_ref.name, replacements)
            task.display_name = apply_replacements(task.display_name, replacements)
        new_state.append(entry)
    return new_state


def propagate_results(entry: RunStateEntry, state: PipelineRunState) -> RunStateEntry:
    """Substitute completed task results into *entry*'s resolved task spec.

    Covers results the task uses directly in its steps instead of
    receiving them through params.
    """
    entry = entry.model_copy(deep=True)
    if entry.resolved_task is None:
        return entry
    strings: dict[str, str] = {}
    arrays: dict[str, list[str]] = {}
    for task_name, results in task_runs_results(state).items():
        for result in results:
            key = f"{RESULT_TASK_PART}.{task_name}.{RESULT_RESULT_PART}.{result.name}"
            match result.type:
                case ParamType.STRING:
                    strings[key] = result.value.string_val
                case ParamType.ARRAY:
                    arrays[key] = list(result.value.array_val)
                case ParamType.OBJECT:
                    for k, v in result.value.object_val.items():
                        strings[f"{key}.{k}"] = v
    entry.resolved_task = replace_task_spec(
        entry.resolved_task, Replacements(strings, arrays, {})
    )
    return entry


def _encode(task_name: str, artifact_name: str, values: list) -> str:
    try:
        return json.dumps(values, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        raise ArtifactSerializationError(task_name, artifact_name, cause=e) from e


def propagate_artifacts(entry: RunStateEntry, state: PipelineRunState) -> RunStateEntry:
    """Substitute JSON-encoded artifact values into *entry*'s resolved task spec.

    ``tasks.<t>.inputs.<name>`` and ``tasks.<t>.outputs.<name>`` hold the
    encoded values; the first artifact of each kind also fills the bare
    ``tasks.<t>.inputs`` / ``tasks.<t>.outputs`` key.

    Raises:
        ArtifactSerializationError: If any artifact value can't be encoded.
    """
    entry = entry.model_copy(deep=True)
    if entry.resolved_task is None:
        return entry
    strings: dict[str, str] = {}
    for producer in state:
        if producer.pipeline_task is None or producer.is_custom_task():
            continue
        if not _is_successful(producer) or producer.pipeline_task.is_matrixed():
            continue
        artifacts = producer.task_runs[0].artifacts
        if artifacts is None:
            continue
        for kind, items in (("inputs", artifacts.inputs), ("outputs", artifacts.outputs)):
            for i, artifact in enumerate(items):
                encoded = _encode(producer.name, artifact.name, artifact.values)
                strings[f"{RESULT_TASK_PART}.{producer.name}.{kind}.{artifact.name}"] = encoded
                if i == 0:
                    strings[f"{RESULT_TASK_PART}.{producer.name}.{kind}"] = encoded
    entry.resolved_task = replace_task_spec(entry.resolved_task, Replacements(strings, {}, {}))
    return entry


def apply_results_to_workspace_bindings(
    task_results: Mapping[str, list[TaskRunResult]], run: PipelineRun
) -> PipelineRun:
    """Substitute string and object-attribute results into workspace bindings."""
    strings: dict[str, str] = {}
    for task_name, results in task_results.items():
        for result in results:
            key = f"{RESULT_TASK_PART}.{task_name}.{RESULT_RESULT_PART}.{result.name}"
            match result.type:
                case ParamType.STRING:
                    strings[key] = result.value.string_val
                case ParamType.OBJECT:
                    for k, v in result.value.object_val.items():
                        strings[f"{key}.{k}"] = v
    run = run.model_copy(deep=True)
    run.workspaces = replace_workspace_bindings(run.workspaces, strings)
    return run


# ── Folding into declared pipeline results ───────────────────────


def _task_result_value(
    task_name: str, result_name: str, results: Mapping[str, list[TaskRunResult]]
) -> ParamValue | None:
    for result in results.get(task_name, []):
        if result.name == result_name:
            return result.value
    return None


def _custom_result_value(
    task_name: str, result_name: str, results: Mapping[str, list[CustomRunResult]]
) -> str | None:
    for result in results.get(task_name, []):
        if result.name == result_name:
            return result.value
    return None


def _skipped_status(task_name: str, statuses: Mapping[str, str]) -> str | None:
    """The producer's status if it completed without succeeding."""
    status = statuses.get(
        PIPELINE_TASK_STATUS_PREFIX + task_name + PIPELINE_TASK_STATUS_SUFFIX
    )
    if status is not None and status != TASK_RUN_REASON_SUCCESSFUL:
        return status
    return None


def aggregate_results(
    results: list[PipelineResult],
    task_run_results: Mapping[str, list[TaskRunResult]],
    custom_task_results: Mapping[str, list[CustomRunResult]],
    statuses: Mapping[str, str],
) -> tuple[list[PipelineRunResult], InvalidPipelineResultsError | None]:
    """Resolve declared pipeline results against task results.

    Returns the results that resolved, plus an error naming every
    declared result that did not, or None. A result whose producer
    completed without succeeding (skipped or failed) is dropped without
    being reported. Declared results without any reference are not
    emitted.
    """
    run_results: list[PipelineRunResult] = []
    invalid: list[str] = []
    causes: dict[str, list[ResultReferenceError]] = {}

    strings: dict[str, str] = {}
    arrays: dict[str, list[str]] = {}
    objects: dict[str, dict[str, str]] = {}

    def reject(result_name: str, error: ResultReferenceError) -> None:
        invalid.append(result_name)
        causes.setdefault(result_name, []).append(error)
        pipeline_logger.log_result_invalid(result_name, error.reference, str(error))

    for pipeline_result in results:
        variables = value_references(pipeline_result.value)
        if not variables:
            continue
        valid = True
        for variable in variables:
            if variable in strings or variable in arrays or variable in objects:
                continue
            parts = normalize(variable).split(".")
            if (
                len(parts) < 3
                or parts[0] not in (RESULT_TASK_PART, RESULT_FINALLY_PART)
                or parts[2] != RESULT_RESULT_PART
            ):
                valid = False
                reject(
                    pipeline_result.name,
                    InvalidReferenceError(variable, "not a task result reference"),
                )
                continue

            match len(parts):
                case 4:
                    task_name = parts[1]
                    result_name, index = split_index(parts[3])
                    value = _task_result_value(task_name, result_name, task_run_results)
                    custom = _custom_result_value(task_name, result_name, custom_task_results)
                    if value is not None:
                        match value.type:
                            case ParamType.STRING:
                                strings[variable] = value.string_val
                            case ParamType.ARRAY:
                                if index and index != "*":
                                    position = int(index)
                                    if position < len(value.array_val):
                                        strings[variable] = value.array_val[position]
                                    else:
                                        valid = False
                                        reject(
                                            pipeline_result.name,
                                            ArrayIndexOutOfBoundsError(
                                                variable, position, len(value.array_val)
                                            ),
                                        )
                                else:
                                    arrays[strip_star(variable)] = list(value.array_val)
                            case ParamType.OBJECT:
                                objects[strip_star(variable)] = dict(value.object_val)
                    elif custom is not None:
                        strings[variable] = custom
                    else:
                        status = _skipped_status(task_name, statuses)
                        if status is not None:
                            valid = False
                            pipeline_logger.log_result_dropped(
                                pipeline_result.name, task_name, status
                            )
                            continue
                        valid = False
                        reject(
                            pipeline_result.name,
                            MissingResultError(variable, "referenced result doesn't exist"),
                        )
                case 5:
                    task_name, key = parts[1], parts[4]
                    result_name, _ = split_index(parts[3])
                    value = _task_result_value(task_name, result_name, task_run_results)
                    if value is not None:
                        if key in value.object_val:
                            strings[variable] = value.object_val[key]
                        else:
                            valid = False
                            reject(
                                pipeline_result.name,
                                MissingResultError(variable, f"object key '{key}' doesn't exist"),
                            )
                    else:
                        status = _skipped_status(task_name, statuses)
                        if status is not None:
                            valid = False
                            pipeline_logger.log_result_dropped(
                                pipeline_result.name, task_name, status
                            )
                            continue
                        valid = False
                        reject(
                            pipeline_result.name,
                            MissingResultError(variable, "referenced result doesn't exist"),
                        )
                case _:
                    valid = False
                    reject(
                        pipeline_result.name,
                        InvalidReferenceError(variable, "unsupported reference shape"),
                    )

        if valid:
            final_value = apply_to_value(
                pipeline_result.value, Replacements(strings, arrays, objects)
            )
            run_results.append(
                PipelineRunResult(name=pipeline_result.name, value=final_value)
            )

    if invalid:
        return run_results, InvalidPipelineResultsError(invalid, run_results, causes)
    return run_results, None


def apply_task_results_to_pipeline_results(
    results: list[PipelineResult],
    task_run_results: Mapping[str, list[TaskRunResult]],
    custom_task_results: Mapping[str, list[CustomRunResult]],
    statuses: Mapping[str, str],
) -> list[PipelineRunResult]:
    """Like ``aggregate_results`` but raises when any result is invalid.

    Raises:
        InvalidPipelineResultsError: Names every invalid declared result;
            its ``results`` attribute holds the ones that did resolve.
    """
    run_results, error = aggregate_results(
        results, task_run_results, custom_task_results, statuses
    )
    if error is not None:
        raise error
    return run_results
