"""Parameter resolution for pipeline specifications.

Builds the string/array/object replacement maps from declared parameter
defaults overridden by run-supplied values, and applies any set of
replacement maps to every task of a pipeline spec.
"""

from __future__ import annotations

from collections.abc import Iterable

from pipeline_resolver import pipeline_logger
from pipeline_resolver.models import (
    Param,
    ParamSpec,
    ParamType,
    ParamValue,
    PipelineRun,
    PipelineSpec,
    PipelineTask,
)
from pipeline_resolver.substitution import (
    Replacements,
    apply_replacements,
    replace_params,
    replace_task_spec,
    replace_when,
)

# The three spellings of a parameter reference. All of them must be
# populated for every parameter.
PARAM_PATTERNS: tuple[str, ...] = (
    "params.{}",
    'params["{}"]',
    "params['{}']",
)

# params.<object_param_name>.<key_name>
OBJECT_ATTRIBUTE_PATTERN = "params.{}.{}"


def _add_value(
    name: str,
    value: ParamValue,
    strings: dict[str, str],
    arrays: dict[str, list[str]],
    objects: dict[str, dict[str, str]],
) -> None:
    match value.type:
        case ParamType.ARRAY:
            for pattern in PARAM_PATTERNS:
                key = pattern.format(name)
                for i, item in enumerate(value.array_val):
                    strings[f"{key}[{i}]"] = item
                arrays[key] = list(value.array_val)
        case ParamType.OBJECT:
            for pattern in PARAM_PATTERNS:
                objects[pattern.format(name)] = dict(value.object_val)
            for k, v in value.object_val.items():
                strings[OBJECT_ATTRIBUTE_PATTERN.format(name, k)] = v
        case _:
            for pattern in PARAM_PATTERNS:
                strings[pattern.format(name)] = value.string_val


def values_replacements(values: dict[str, ParamValue]) -> Replacements:
    """Replacement maps for a name -> value mapping."""
    strings: dict[str, str] = {}
    arrays: dict[str, list[str]] = {}
    objects: dict[str, dict[str, str]] = {}
    for name, value in values.items():
        _add_value(name, value, strings, arrays, objects)
    return Replacements(strings, arrays, objects)


def param_replacements(params: Iterable[Param]) -> Replacements:
    """Replacement maps for supplied parameters (run or task params)."""
    return values_replacements({p.name: p.value for p in params})


def default_replacements(specs: Iterable[ParamSpec]) -> Replacements:
    """Replacement maps for the declared defaults of *specs*."""
    return values_replacements(
        {s.name: s.default for s in specs if s.default is not None}
    )


def resolve_parameters(spec: PipelineSpec, run: PipelineRun) -> PipelineSpec:
    """Apply declared defaults overridden by run params to a pipeline spec.

    A run value replaces the default of the same name outright, even
    when its type differs: the type of the value decides which map it
    lands in. The input spec is not modified.
    """
    values: dict[str, ParamValue] = {
        s.name: s.default for s in spec.params if s.default is not None
    }
    for param in run.params:
        values[param.name] = param.value

    pipeline_logger.log_resolution_start("params", run.name, len(spec.all_tasks()))
    resolved = apply_pipeline_replacements(spec, values_replacements(values))
    pipeline_logger.log_resolution_complete("params", run.name)
    return resolved


def apply_pipeline_replacements(
    spec: PipelineSpec, replacements: Replacements
) -> PipelineSpec:
    """Apply *replacements* to every task and finally task of *spec*."""
    spec = spec.model_copy(deep=True)
    spec.tasks = [_replace_in_task(t, replacements) for t in spec.tasks]
    spec.finally_ = [_replace_in_task(t, replacements) for t in spec.finally_]
    return spec


def _replace_in_task(task: PipelineTask, replacements: Replacements) -> PipelineTask:
    strings = replacements.strings
    task.params = replace_params(task.params, replacements)
    if task.is_matrixed():
        task.matrix.params = replace_params(
            task.matrix.params, replacements.without_objects()
        )
        # matrix include params can only be strings
        for include in task.matrix.include:
            include.params = replace_params(include.params, replacements.string_only())
    else:
        task.display_name = apply_replacements(task.display_name, strings)
    for ws in task.workspaces:
        ws.sub_path = apply_replacements(ws.sub_path, strings)
    task.when = replace_when(task.when, replacements)
    if task.task_ref is not None:
        if task.task_ref.params is not None:
            task.task_ref.params = replace_params(task.task_ref.params, replacements)
        task.task_ref.name = apply_replacements(task.task_ref.name, strings)
    task.on_error = apply_replacements(task.on_error, strings)
    if task.task_spec is not None:
        task.task_spec = replace_task_spec(
            task.task_spec, scoped_replacements(task, replacements)
        )
    return task


def scoped_replacements(task: PipelineTask, replacements: Replacements) -> Replacements:
    """Let a task's own params shadow same-named pipeline params.

    Only keys the pipeline already supplies are overridden; the result
    is a fresh set of maps and *replacements* is left untouched.
    """
    if not task.params:
        return replacements

    strings = dict(replacements.strings)
    arrays = dict(replacements.arrays) if replacements.arrays is not None else None
    objects = dict(replacements.objects) if replacements.objects is not None else None
    for param in task.params:
        for pattern in PARAM_PATTERNS:
            key = pattern.format(param.name)
            if key in strings:
                strings[key] = param.value.string_val
            if arrays is not None and key in arrays:
                arrays[key] = list(param.value.array_val)
            if objects is not None and key in objects:
                objects[key] = dict(param.value.object_val)
                for k, v in param.value.object_val.items():
                    strings[OBJECT_ATTRIBUTE_PATTERN.format(param.name, k)] = v
    return Replacements(strings, arrays, objects)
