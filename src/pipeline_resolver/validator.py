"""Pre-flight reference lint for pipeline specs.

Statically checks the ``$(...)`` references a pipeline uses without
resolving anything. Catches typos in parameter, workspace and task
names, malformed result references, and declared pipeline results the
aggregator can never resolve, before a run is submitted.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from pipeline_resolver.models import PipelineSpec, PipelineTask
from pipeline_resolver.references import (
    ReferenceKind,
    classify_reference,
    normalize,
    ordered_references,
    parse_matrix_reference,
    parse_result_reference,
    split_index,
    value_references,
)

# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class Diagnostic:
    """A single validation finding."""

    severity: Severity
    task_name: str
    message: str
    field: str  # "name", "params", "when", "results", ...


@dataclass(frozen=True)
class ValidationResult:
    """Aggregate result of pipeline validation."""

    diagnostics: list[Diagnostic]

    @property
    def ok(self) -> bool:
        """True when there are no error-severity diagnostics."""
        return not any(d.severity == Severity.ERROR for d in self.diagnostics)

    @property
    def errors(self) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.severity == Severity.ERROR]

    @property
    def warnings(self) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.severity == Severity.WARNING]


# Context variables the resolvers know how to fill in.
KNOWN_CONTEXT: frozenset[str] = frozenset({
    "context.pipelineRun.name",
    "context.pipelineRun.namespace",
    "context.pipelineRun.uid",
    "context.pipeline.name",
    "context.pipelineTask.retries",
})

# ---------------------------------------------------------------------------
# 1. Name uniqueness
# ---------------------------------------------------------------------------


def _check_name_uniqueness(tasks: list[PipelineTask]) -> list[Diagnostic]:
    """Detect duplicate task names across ``tasks`` and ``finally``."""
    diagnostics: list[Diagnostic] = []
    seen: dict[str, int] = {}

    for i, task in enumerate(tasks):
        if task.name in seen:
            diagnostics.append(
                Diagnostic(
                    severity=Severity.ERROR,
                    task_name=task.name,
                    message=(
                        f"Duplicate task name '{task.name}' "
                        f"(first at index {seen[task.name]})"
                    ),
                    field="name",
                )
            )
        else:
            seen[task.name] = i

    return diagnostics


# ---------------------------------------------------------------------------
# 2. Collecting the templated fields of a task
# ---------------------------------------------------------------------------


def _task_fields(task: PipelineTask) -> list[tuple[str, str]]:
    """Every templated string of *task* with the field it came from."""
    fields: list[tuple[str, str]] = [("displayName", task.display_name)]
    for p in task.params:
        fields.extend(("params", s) for s in p.value.strings())
    if task.matrix is not None:
        for p in task.matrix.params:
            fields.extend(("matrix", s) for s in p.value.strings())
        for include in task.matrix.include:
            for p in include.params:
                fields.extend(("matrix", s) for s in p.value.strings())
    for we in task.when:
        fields.append(("when", we.input))
        fields.extend(("when", v) for v in we.values)
        if we.cel is not None:
            fields.append(("when", we.cel))
    if task.task_ref is not None:
        fields.append(("taskRef", task.task_ref.name))
        for p in task.task_ref.params or []:
            fields.extend(("taskRef", s) for s in p.value.strings())
    fields.extend(("workspaces", ws.sub_path) for ws in task.workspaces)
    fields.append(("onError", task.on_error))
    return fields


def _task_spec_fields(task: PipelineTask) -> list[tuple[str, str]]:
    if task.task_spec is None:
        return []
    fields: list[tuple[str, str]] = []
    for step in task.task_spec.steps:
        fields.extend(
            ("taskSpec", s)
            for s in (step.image, step.script, step.working_dir, *step.command, *step.args)
        )
        fields.extend(("taskSpec", env.value) for env in step.env)
    fields.extend(("taskSpec", ws.mount_path) for ws in task.task_spec.workspaces)
    return fields


def _param_name(expression: str) -> str:
    parts = normalize(expression).split(".")
    if len(parts) < 2:
        return ""
    return split_index(parts[1])[0]


# ---------------------------------------------------------------------------
# 3. Reference checks
# ---------------------------------------------------------------------------


def _check_reference(
    expression: str,
    task_name: str,
    field: str,
    params: set[str],
    workspaces: set[str],
    tasks: set[str],
) -> Diagnostic | None:
    def warn(message: str) -> Diagnostic:
        return Diagnostic(Severity.WARNING, task_name, message, field)

    match classify_reference(expression):
        case ReferenceKind.PARAM:
            name = _param_name(expression)
            if name not in params:
                return warn(f"Reference '{expression}' names undeclared param '{name}'")
        case ReferenceKind.CONTEXT:
            if expression not in KNOWN_CONTEXT:
                return warn(f"Unknown context variable '{expression}'")
        case ReferenceKind.WORKSPACE:
            parts = expression.split(".")
            if len(parts) != 3 or parts[2] != "bound":
                return warn(f"Unsupported workspace reference '{expression}'")
            if parts[1] not in workspaces:
                return warn(f"Reference '{expression}' names undeclared workspace '{parts[1]}'")
        case ReferenceKind.RESULT:
            ref = parse_result_reference(expression)
            if ref is None:
                return warn(f"Malformed result reference '{expression}'")
            if ref.task not in tasks:
                return warn(f"Reference '{expression}' names unknown task '{ref.task}'")
        case ReferenceKind.MATRIX:
            producer, _ = parse_matrix_reference(expression)
            if not producer:
                return warn(f"Malformed matrix reference '{expression}'")
            if producer not in tasks:
                return warn(f"Reference '{expression}' names unknown task '{producer}'")
        case ReferenceKind.STATUS | ReferenceKind.ARTIFACT:
            producer = expression.split(".")[1]
            if producer != "status" and producer not in tasks:
                return warn(f"Reference '{expression}' names unknown task '{producer}'")
        case _:
            return warn(f"Unknown reference '{expression}'")
    return None


def _check_task_references(spec: PipelineSpec) -> list[Diagnostic]:
    """Verify every reference in every task names something declared."""
    diagnostics: list[Diagnostic] = []
    params = {p.name for p in spec.params}
    workspaces = {ws.name for ws in spec.workspaces}
    tasks = {t.name for t in spec.all_tasks()}

    for task in spec.all_tasks():
        for field, text in _task_fields(task):
            for expression in ordered_references(text):
                diagnostic = _check_reference(
                    expression, task.name, field, params, workspaces, tasks
                )
                if diagnostic is not None:
                    diagnostics.append(diagnostic)

        # Steps of an embedded task also see the task's own params.
        scoped = params | {p.name for p in task.params}
        if task.task_spec is not None:
            scoped |= {p.name for p in task.task_spec.params}
        for field, text in _task_spec_fields(task):
            for expression in ordered_references(text):
                diagnostic = _check_reference(
                    expression, task.name, field, scoped, workspaces, tasks
                )
                if diagnostic is not None:
                    diagnostics.append(diagnostic)

    return diagnostics


def _check_pipeline_results(spec: PipelineSpec) -> list[Diagnostic]:
    """Declared results may only reference task results."""
    diagnostics: list[Diagnostic] = []
    tasks = {t.name for t in spec.all_tasks()}

    for result in spec.results:
        for expression in value_references(result.value):
            ref = parse_result_reference(expression)
            if ref is None:
                diagnostics.append(
                    Diagnostic(
                        severity=Severity.ERROR,
                        task_name="",
                        message=(
                            f"Pipeline result '{result.name}' references "
                            f"'{expression}', which is not a task result"
                        ),
                        field="results",
                    )
                )
            elif ref.task not in tasks:
                diagnostics.append(
                    Diagnostic(
                        severity=Severity.WARNING,
                        task_name="",
                        message=(
                            f"Pipeline result '{result.name}' references "
                            f"unknown task '{ref.task}'"
                        ),
                        field="results",
                    )
                )
    return diagnostics


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def validate_pipeline(spec: PipelineSpec) -> ValidationResult:
    """Statically validate a pipeline spec's references.

    Checks:
    - Task name uniqueness across ``tasks`` and ``finally``
    - Every task reference names a declared param, workspace or task
    - Declared pipeline results only reference task results

    Returns a ``ValidationResult``. The pipeline is considered valid
    when ``result.ok`` is True (no error-severity diagnostics).
    """
    diagnostics: list[Diagnostic] = []
    diagnostics.extend(_check_name_uniqueness(spec.all_tasks()))
    diagnostics.extend(_check_task_references(spec))
    diagnostics.extend(_check_pipeline_results(spec))
    return ValidationResult(diagnostics=diagnostics)


def load_and_validate_pipeline(
    path: str | Path,
) -> tuple[PipelineSpec, ValidationResult]:
    """Load a pipeline from YAML and validate it.

    Convenience wrapper: calls ``load_pipeline`` then ``validate_pipeline``.
    Raises ``PipelineLoadError`` if YAML/Pydantic parsing fails.
    """
    from pipeline_resolver.loader import load_pipeline

    spec = load_pipeline(path)
    result = validate_pipeline(spec)
    return spec, result
