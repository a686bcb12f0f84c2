"""YAML document loading and JSON Schema validation of run params."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from pipeline_resolver.errors import PipelineLoadError, ValidationError
from pipeline_resolver.models import (
    CustomRunResult,
    ParamType,
    PipelineRun,
    PipelineRunState,
    PipelineSpec,
    RunStateEntry,
    TaskRunResult,
)

_TASK_RESULTS = TypeAdapter(dict[str, list[TaskRunResult]])
_CUSTOM_RESULTS = TypeAdapter(dict[str, list[CustomRunResult]])
_RUN_STATE = TypeAdapter(list[RunStateEntry])


@dataclass
class TaskResults:
    """Everything the aggregator needs, as read from a results document."""

    task_results: dict[str, list[TaskRunResult]] = field(default_factory=dict)
    custom_results: dict[str, list[CustomRunResult]] = field(default_factory=dict)
    statuses: dict[str, str] = field(default_factory=dict)
    state: PipelineRunState | None = None


def _read_mapping(path: str | Path, kind: str) -> dict[str, Any]:
    path = Path(path)
    if not path.is_file():
        raise PipelineLoadError(f"{kind} file not found: {path}")

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise PipelineLoadError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(raw, dict):
        raise PipelineLoadError(
            f"{kind} YAML must be a mapping, got {type(raw).__name__}"
        )
    return raw


def load_pipeline_document(path: str | Path) -> tuple[str, PipelineSpec]:
    """Load a pipeline and its name from a YAML file.

    Accepts either a bare pipeline spec or a resource document with
    ``metadata.name`` and ``spec``. A bare spec has an empty name.

    Raises:
        PipelineLoadError: If the file doesn't exist, YAML is invalid,
            or the structure doesn't match the expected schema.
    """
    raw = _read_mapping(path, "Pipeline")
    name = ""
    if "spec" in raw:
        name = str((raw.get("metadata") or {}).get("name", ""))
        raw = raw["spec"] or {}

    try:
        return name, PipelineSpec.model_validate(raw)
    except PydanticValidationError as e:
        raise PipelineLoadError(f"Pipeline structure invalid: {e}") from e


def load_pipeline(path: str | Path) -> PipelineSpec:
    """Load a pipeline spec from a YAML file.

    Raises:
        PipelineLoadError: See ``load_pipeline_document``.
    """
    return load_pipeline_document(path)[1]


def load_pipeline_run(path: str | Path) -> PipelineRun:
    """Load a pipeline run from a YAML file.

    A resource document has its identity under ``metadata``, the
    pipeline name under ``spec.pipelineRef.name`` and params and
    workspaces under ``spec``. A flat document uses the ``PipelineRun``
    fields directly.

    Raises:
        PipelineLoadError: If the file can't be read or doesn't describe
            a run.
    """
    raw = _read_mapping(path, "PipelineRun")
    if "spec" in raw:
        metadata = raw.get("metadata") or {}
        spec = raw["spec"] or {}
        raw = {
            "name": metadata.get("name", ""),
            "namespace": metadata.get("namespace", ""),
            "uid": metadata.get("uid", ""),
            "pipelineName": (spec.get("pipelineRef") or {}).get("name", ""),
            "params": spec.get("params") or [],
            "workspaces": spec.get("workspaces") or [],
        }

    try:
        return PipelineRun.model_validate(raw)
    except PydanticValidationError as e:
        raise PipelineLoadError(f"PipelineRun structure invalid: {e}") from e


def load_task_results(path: str | Path) -> TaskResults:
    """Load task results for aggregation.

    The document either lists run state under ``state`` (entries with a
    pipeline task and its task runs or custom runs), or gives the
    aggregator inputs directly under ``taskResults``, ``customRunResults``
    and ``statuses``.

    Raises:
        PipelineLoadError: If the file can't be read or any section has
            the wrong shape.
    """
    raw = _read_mapping(path, "Task results")
    try:
        if "state" in raw:
            return TaskResults(state=_RUN_STATE.validate_python(raw["state"] or []))
        return TaskResults(
            task_results=_TASK_RESULTS.validate_python(raw.get("taskResults") or {}),
            custom_results=_CUSTOM_RESULTS.validate_python(
                raw.get("customRunResults") or {}
            ),
            statuses={str(k): str(v) for k, v in (raw.get("statuses") or {}).items()},
        )
    except PydanticValidationError as e:
        raise PipelineLoadError(f"Task results structure invalid: {e}") from e


def object_param_schema(properties: dict[str, dict[str, Any]]) -> dict[str, Any]:
    """JSON Schema for an object param with the declared *properties*.

    Every declared key is required. Undeclared keys are allowed.
    """
    return {
        "type": "object",
        "properties": {k: v or {"type": "string"} for k, v in properties.items()},
        "required": sorted(properties),
    }


def validate_run_params(spec: PipelineSpec, run: PipelineRun) -> None:
    """Validate object run params against their declared properties.

    A supplied value is accepted whatever its type; only object values
    for params that declare ``properties`` are checked, and each must
    carry every declared key.

    Raises:
        ValidationError: On the first object param missing a declared key.
    """
    declared = {p.name: p for p in spec.params}
    for param in run.params:
        param_spec = declared.get(param.name)
        if param_spec is None or not param_spec.properties:
            continue
        if param.value.type != ParamType.OBJECT:
            continue
        try:
            jsonschema.validate(
                instance=param.value.object_val,
                schema=object_param_schema(param_spec.properties),
            )
        except jsonschema.ValidationError as e:
            raise ValidationError(
                f"Param '{param.name}' validation failed: {e.message}"
            ) from e
