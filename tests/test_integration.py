"""End-to-end resolution of the hello pipeline through a whole run.

Loads the real YAML fixtures, resolves the pipeline against a run,
propagates results between tasks as they finish, and aggregates the
final pipeline results.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from pipeline_resolver import (
    ParamType,
    load_pipeline_document,
    load_pipeline_run,
    load_task_results,
    resolve_pipeline,
    resolve_pipeline_results,
)
from pipeline_resolver.matrix import ResultsCache, apply_pipeline_task_contexts
from pipeline_resolver.models import (
    Param,
    PipelineRun,
    PipelineRunStatus,
    PipelineSpec,
    RunStateEntry,
)
from pipeline_resolver.results import apply_task_results, resolved_result_refs

FIXTURES = Path(__file__).parent / "fixtures"


@pytest.fixture
def resolved():
    name, spec = load_pipeline_document(FIXTURES / "hello_pipeline.yaml")
    run = load_pipeline_run(FIXTURES / "hello_run.yaml")
    return resolve_pipeline(spec, name, run)


def _task(resolved, name):
    return next(t for t in resolved.spec.tasks if t.name == name)


def _param(task, name):
    return next(p for p in task.params if p.name == name).value


# ── Run start ────────────────────────────────────────────────────


def test_pipeline_name(resolved):
    assert resolved.pipeline_name == "hello-pipeline"


def test_params_and_context_applied(resolved):
    greet = _task(resolved, "greet")
    assert _param(greet, "message").string_val == "hello, world"
    assert _param(greet, "run-id").string_val == "1234-abcd"
    assert greet.display_name == "Greet from hello-run-1"


def test_embedded_steps_keep_task_scoped_params(resolved):
    greet = _task(resolved, "greet")
    assert greet.task_spec.steps[0].script == 'echo "$(params.message)"'


def test_object_default_and_unbound_workspace(resolved):
    build = _task(resolved, "build")
    assert _param(build, "image-url").string_val == "registry.example.com/app"
    assert _param(build, "use-cache").string_val == "false"


def test_matrix_array_expanded(resolved):
    build = _task(resolved, "build")
    platform = build.matrix.params[0].value
    assert platform.type == ParamType.ARRAY
    assert platform.array_val == ["linux", "darwin"]


def test_workspace_sub_path_uses_pipeline_name(resolved):
    assert _task(resolved, "build").workspaces[0].sub_path == "hello-pipeline"


def test_result_references_left_in_place(resolved):
    deploy = _task(resolved, "deploy")
    assert _param(deploy, "digest").string_val == "$(tasks.build.results.digest)"
    assert _param(deploy, "builds").string_val == "$(tasks.build.matrix.length)"
    assert deploy.when[0].input == "hello"


def test_run_workspace_bindings_resolved(resolved):
    claim = resolved.workspaces[0].persistent_volume_claim
    assert claim.claim_name == "pvc-hello"


# ── Mid-run propagation ──────────────────────────────────────────


def _state(resolved):
    """Pair the resolved tasks with the recorded run state."""
    recorded = load_task_results(FIXTURES / "run_state.yaml").state
    state = []
    for entry in recorded:
        task = _task(resolved, entry.name)
        state.append(
            RunStateEntry(
                pipeline_task=task,
                task_runs=entry.task_runs,
                custom_runs=entry.custom_runs,
            )
        )
    return state


def test_matrix_length_resolved_for_waiting_task(resolved):
    state = _state(resolved)
    run_status = PipelineRunStatus(pipeline_spec=resolved.spec)
    deploy = apply_pipeline_task_contexts(
        _task(resolved, "deploy"), run_status, state, ResultsCache(state)
    )
    assert _param(deploy, "builds").string_val == "2"


def test_fanned_in_result_propagates_as_array(resolved):
    state = _state(resolved)
    refs = resolved_result_refs(state, ResultsCache(state))
    updated = apply_task_results(state, refs)

    deploy = updated[2].pipeline_task
    digest = _param(deploy, "digest")
    assert digest.type == ParamType.ARRAY
    assert digest.array_val == ["sha256:aaa", "sha256:bbb"]

    # Started tasks are untouched, and the input state is not modified.
    assert updated[1].pipeline_task == state[1].pipeline_task
    assert _param(state[2].pipeline_task, "digest").string_val == (
        "$(tasks.build.results.digest)"
    )


# ── Run end ──────────────────────────────────────────────────────


def test_pipeline_results_from_run_state(resolved):
    aggregated = resolve_pipeline_results(
        resolved.spec, load_task_results(FIXTURES / "run_state.yaml"), "hello-run-1"
    )
    assert aggregated.ok
    values = {r.name: r.value for r in aggregated.results}
    assert values["image-digest"].array_val == ["sha256:aaa", "sha256:bbb"]
    assert values["greeting"].string_val == "hello, world"


def test_pipeline_results_from_task_results(resolved):
    aggregated = resolve_pipeline_results(
        resolved.spec, load_task_results(FIXTURES / "task_results.yaml")
    )
    assert [(r.name, r.value.string_val) for r in aggregated.results] == [
        ("image-digest", "sha256:abc"),
        ("greeting", "hello, world"),
    ]


def test_pipeline_results_with_missing_producer(resolved):
    aggregated = resolve_pipeline_results(
        resolved.spec, load_task_results(FIXTURES / "task_results_missing.yaml")
    )
    assert not aggregated.ok
    assert aggregated.invalid == ["image-digest"]
    assert "image-digest" in aggregated.errors
    assert [r.name for r in aggregated.results] == ["greeting"]


# ── Run values override declared params ─────────────────────────


def _targets_pipeline(declared: dict):
    return PipelineSpec.model_validate({
        "params": [declared],
        "tasks": [
            {"name": "fan", "params": [{"name": "targets", "value": "$(params.targets)"}]},
        ],
    })


def test_run_value_overrides_default_of_other_type():
    spec = _targets_pipeline({"name": "targets", "type": "string", "default": "single"})
    run = PipelineRun(name="r", params=[Param(name="targets", value=["a", "b"])])
    fan = resolve_pipeline(spec, "p", run).spec.tasks[0]
    value = _param(fan, "targets")
    assert value.type == ParamType.ARRAY
    assert value.array_val == ["a", "b"]


def test_untyped_array_default_accepts_array_run_value():
    spec = _targets_pipeline({"name": "targets", "default": ["x"]})
    assert spec.params[0].type == ParamType.ARRAY
    run = PipelineRun(name="r", params=[Param(name="targets", value=["a", "b"])])
    fan = resolve_pipeline(spec, "p", run).spec.tasks[0]
    assert _param(fan, "targets").array_val == ["a", "b"]
