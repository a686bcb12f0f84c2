"""Pydantic models for pipeline specifications, runs, and results.

All data structures live here. No resolution logic, just shapes.
YAML documents use camelCase keys (``displayName``, ``taskRef``,
``subPath``); Python code uses the snake_case attribute names. Both
spellings are accepted when parsing.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    model_serializer,
    model_validator,
)
from pydantic.alias_generators import to_camel


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Parameter values ─────────────────────────────────────────────


class ParamType(str, Enum):
    STRING = "string"
    ARRAY = "array"
    OBJECT = "object"


def _scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class ParamValue(BaseModel):
    """A string, array, or object value.

    Serializes to the raw YAML shape: a string, a list, or a mapping.
    Use ``ParamValue.of`` (or a ``RawParamValue`` field) to parse one
    from that shape.
    """

    type: ParamType = ParamType.STRING
    string_val: str = ""
    array_val: list[str] = Field(default_factory=list)
    object_val: dict[str, str] = Field(default_factory=dict)

    @model_serializer
    def _to_raw(self) -> Any:
        if self.type == ParamType.ARRAY:
            return list(self.array_val)
        if self.type == ParamType.OBJECT:
            return dict(self.object_val)
        return self.string_val

    @classmethod
    def of(cls, raw: Any) -> ParamValue:
        """Parse a raw YAML value: scalar -> string, list -> array, mapping -> object."""
        if isinstance(raw, ParamValue):
            return raw
        if isinstance(raw, dict):
            return cls(
                type=ParamType.OBJECT,
                object_val={str(k): _scalar(v) for k, v in raw.items()},
            )
        if isinstance(raw, (list, tuple)):
            return cls(type=ParamType.ARRAY, array_val=[_scalar(v) for v in raw])
        if raw is None:
            return cls(type=ParamType.STRING)
        return cls(type=ParamType.STRING, string_val=_scalar(raw))

    def strings(self) -> list[str]:
        """Every string held by this value, whatever its shape."""
        if self.type == ParamType.ARRAY:
            return list(self.array_val)
        if self.type == ParamType.OBJECT:
            return list(self.object_val.values())
        return [self.string_val]


# A ParamValue field that accepts the raw YAML shape. A mapping is always
# an object value, even when its keys look like ParamValue's own fields.
RawParamValue = Annotated[ParamValue, BeforeValidator(ParamValue.of)]


class Param(_Model):
    """A supplied parameter: run params, task params, matrix params."""

    name: str
    value: RawParamValue


class ParamSpec(_Model):
    """A declared parameter, optionally with a default value."""

    name: str
    type: ParamType = ParamType.STRING
    description: str | None = None
    default: RawParamValue | None = None
    properties: dict[str, dict[str, Any]] | None = None

    @model_validator(mode="after")
    def _type_from_default(self) -> ParamSpec:
        # Without an explicit type the default's shape decides.
        if "type" not in self.model_fields_set and self.default is not None:
            self.type = self.default.type
        return self


# ── Pipeline tasks ───────────────────────────────────────────────


class IncludeParams(_Model):
    name: str = ""
    params: list[Param] = Field(default_factory=list)


class Matrix(_Model):
    params: list[Param] = Field(default_factory=list)
    include: list[IncludeParams] = Field(default_factory=list)

    def has_params(self) -> bool:
        return len(self.params) > 0

    def has_include(self) -> bool:
        return len(self.include) > 0


class WhenExpression(_Model):
    input: str = ""
    operator: str = "in"
    values: list[str] = Field(default_factory=list)
    cel: str | None = None


class TaskRef(_Model):
    name: str = ""
    kind: str | None = None
    api_version: str | None = None
    params: list[Param] | None = None


class EnvVar(_Model):
    name: str
    value: str = ""


class Step(_Model):
    name: str = ""
    image: str = ""
    command: list[str] = Field(default_factory=list)
    args: list[str] = Field(default_factory=list)
    script: str = ""
    working_dir: str = ""
    env: list[EnvVar] = Field(default_factory=list)


class WorkspaceDeclaration(_Model):
    name: str
    description: str | None = None
    mount_path: str = ""
    optional: bool = False


class EmbeddedTask(_Model):
    """An inline task specification carried by a pipeline task."""

    description: str = ""
    params: list[ParamSpec] = Field(default_factory=list)
    steps: list[Step] = Field(default_factory=list)
    workspaces: list[WorkspaceDeclaration] = Field(default_factory=list)


class WorkspacePipelineTaskBinding(_Model):
    name: str
    workspace: str | None = None
    sub_path: str = ""


class PipelineTask(_Model):
    """One node of the pipeline DAG, optionally fanned out by a matrix."""

    name: str
    display_name: str = ""
    task_ref: TaskRef | None = None
    task_spec: EmbeddedTask | None = None
    params: list[Param] = Field(default_factory=list)
    matrix: Matrix | None = None
    when: list[WhenExpression] = Field(default_factory=list)
    workspaces: list[WorkspacePipelineTaskBinding] = Field(default_factory=list)
    retries: int = 0
    on_error: str = ""
    run_after: list[str] = Field(default_factory=list)

    def is_matrixed(self) -> bool:
        return self.matrix is not None and (
            self.matrix.has_params() or self.matrix.has_include()
        )


# ── Pipeline definition ──────────────────────────────────────────


class PipelineWorkspaceDeclaration(_Model):
    name: str
    description: str | None = None
    optional: bool = False


class PipelineResult(_Model):
    """A declared pipeline result, computed from task results at run end."""

    name: str
    type: ParamType = ParamType.STRING
    description: str | None = None
    value: RawParamValue


class PipelineSpec(_Model):
    description: str = ""
    params: list[ParamSpec] = Field(default_factory=list)
    tasks: list[PipelineTask] = Field(default_factory=list)
    finally_: list[PipelineTask] = Field(default_factory=list, alias="finally")
    workspaces: list[PipelineWorkspaceDeclaration] = Field(default_factory=list)
    results: list[PipelineResult] = Field(default_factory=list)

    def all_tasks(self) -> list[PipelineTask]:
        return [*self.tasks, *self.finally_]


# ── Runs ─────────────────────────────────────────────────────────


class PersistentVolumeClaimSource(_Model):
    claim_name: str = ""
    read_only: bool = False


class ConfigMapSource(_Model):
    name: str = ""


class SecretSource(_Model):
    secret_name: str = ""


class WorkspaceBinding(_Model):
    name: str
    sub_path: str = ""
    persistent_volume_claim: PersistentVolumeClaimSource | None = None
    config_map: ConfigMapSource | None = None
    secret: SecretSource | None = None
    empty_dir: dict[str, Any] | None = None


class PipelineRun(_Model):
    """A single execution request: concrete params and workspace bindings."""

    name: str = ""
    namespace: str = ""
    uid: str = ""
    pipeline_name: str = ""
    params: list[Param] = Field(default_factory=list)
    workspaces: list[WorkspaceBinding] = Field(default_factory=list)


class PipelineRunStatus(_Model):
    pipeline_spec: PipelineSpec | None = None


# ── Task execution state ─────────────────────────────────────────


class TaskRunResult(_Model):
    name: str
    value: RawParamValue

    @property
    def type(self) -> ParamType:
        return self.value.type


class CustomRunResult(_Model):
    name: str
    value: str = ""


class Artifact(_Model):
    name: str
    values: list[Any] = Field(default_factory=list)


class Artifacts(_Model):
    inputs: list[Artifact] = Field(default_factory=list)
    outputs: list[Artifact] = Field(default_factory=list)


class TaskRun(_Model):
    name: str
    status: str = ""
    results: list[TaskRunResult] = Field(default_factory=list)
    artifacts: Artifacts | None = None


class CustomRun(_Model):
    name: str
    status: str = ""
    results: list[CustomRunResult] = Field(default_factory=list)


class RunStateEntry(_Model):
    """Execution state of one pipeline task within a run.

    A matrixed task owns one task run per matrix combination, in
    execution order.
    """

    pipeline_task: PipelineTask | None = None
    task_runs: list[TaskRun] = Field(default_factory=list)
    custom_runs: list[CustomRun] = Field(default_factory=list)
    resolved_task: EmbeddedTask | None = None

    @property
    def name(self) -> str:
        return self.pipeline_task.name if self.pipeline_task else ""

    def is_custom_task(self) -> bool:
        return len(self.custom_runs) > 0


PipelineRunState = list[RunStateEntry]


# ── Result references and final results ──────────────────────────


class ResultReference(_Model):
    pipeline_task: str
    result: str
    property: str = ""


class ResolvedResultRef(_Model):
    value: RawParamValue
    reference: ResultReference
    from_task_run: str = ""
    from_run: str = ""


class PipelineRunResult(_Model):
    name: str
    value: RawParamValue


# ── Resolution outputs ───────────────────────────────────────────


class ResolvedPipeline(_Model):
    """A pipeline spec with run params, context and workspaces applied."""

    pipeline_name: str = ""
    spec: PipelineSpec
    workspaces: list[WorkspaceBinding] = Field(default_factory=list)


class AggregatedResults(_Model):
    """Final pipeline results plus the declared results that were rejected."""

    results: list[PipelineRunResult] = Field(default_factory=list)
    invalid: list[str] = Field(default_factory=list)
    errors: dict[str, list[str]] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.invalid
