"""Tests for task context and matrix fan-out resolution."""

from __future__ import annotations

import logging

import pytest

from pipeline_resolver.matrix import (
    ResultsCache,
    apply_pipeline_task_contexts,
    count_combinations,
    filter_matrix_context_params,
)
from pipeline_resolver.models import (
    IncludeParams,
    Matrix,
    Param,
    PipelineRunStatus,
    PipelineSpec,
    PipelineTask,
    RunStateEntry,
    TaskRun,
    TaskRunResult,
)


def _axes(**axes: str | list[str]) -> list[Param]:
    return [Param(name=k, value=v) for k, v in axes.items()]


def _build_task() -> PipelineTask:
    return PipelineTask(
        name="build",
        matrix=Matrix(params=_axes(os=["a", "b"], arch=["x", "y", "z"])),
    )


def _state() -> list[RunStateEntry]:
    return [
        RunStateEntry(
            pipeline_task=_build_task(),
            task_runs=[
                TaskRun(
                    name=f"build-{i}",
                    status="Succeeded",
                    results=[TaskRunResult(name="digest", value=f"sha256:{i}")],
                )
                for i in range(3)
            ],
        )
    ]


def _status() -> PipelineRunStatus:
    return PipelineRunStatus(pipeline_spec=PipelineSpec(tasks=[_build_task()]))


# ── count_combinations ───────────────────────────────────────────


def test_count_combinations_product():
    assert count_combinations(Matrix(params=_axes(os=["a", "b"], arch=["x", "y", "z"]))) == 6


def test_count_combinations_none():
    assert count_combinations(None) == 0
    assert count_combinations(Matrix()) == 0


def test_count_combinations_include_only():
    matrix = Matrix(
        include=[
            IncludeParams(name="one", params=_axes(os="linux")),
            IncludeParams(name="two", params=_axes(os="mac")),
        ]
    )
    assert count_combinations(matrix) == 2


def test_count_combinations_include_new_value_adds_one():
    matrix = Matrix(
        params=_axes(os=["a", "b"]),
        include=[IncludeParams(name="c", params=_axes(os="c"))],
    )
    assert count_combinations(matrix) == 3


def test_count_combinations_include_existing_value_adds_nothing():
    matrix = Matrix(
        params=_axes(os=["a", "b"]),
        include=[IncludeParams(name="extra", params=_axes(os="a", flag="on"))],
    )
    assert count_combinations(matrix) == 2


# ── ResultsCache ─────────────────────────────────────────────────


def test_results_cache_gathers_in_run_order():
    cache = ResultsCache(_state())
    assert cache.results("build") == {"digest": ["sha256:0", "sha256:1", "sha256:2"]}
    assert cache.result_length("build", "digest") == 3


def test_results_cache_unknown_task_or_result():
    cache = ResultsCache(_state())
    assert cache.results("missing") is None
    assert cache.result_length("missing", "digest") is None
    assert cache.result_length("build", "missing") is None


def test_results_cache_memoizes_per_task():
    cache = ResultsCache(_state())
    first = cache.results("build")
    assert cache.results("build") is first


# ── filter_matrix_context_params ─────────────────────────────────


def test_filter_matrix_context_params():
    params = [
        Param(name="count", value="$(tasks.build.matrix.length)"),
        Param(name="digests", value="$(tasks.build.matrix.digest.length)"),
        Param(name="other", value="$(params.x)"),
    ]
    assert [p.name for p in filter_matrix_context_params(params)] == ["count", "digests"]


# ── apply_pipeline_task_contexts ─────────────────────────────────


def test_retries_always_resolved():
    task = PipelineTask(
        name="t",
        retries=3,
        params=[Param(name="r", value="$(context.pipelineTask.retries)")],
    )
    resolved = apply_pipeline_task_contexts(task, PipelineRunStatus(), [])
    assert resolved.params[0].value.string_val == "3"


def test_matrix_length_substituted():
    task = PipelineTask(
        name="report",
        params=[Param(name="n", value="$(tasks.build.matrix.length)")],
    )
    resolved = apply_pipeline_task_contexts(task, _status(), _state())
    assert resolved.params[0].value.string_val == "6"


def test_matrix_result_length_substituted():
    task = PipelineTask(
        name="report",
        params=[Param(name="n", value="$(tasks.build.matrix.digest.length) digests")],
    )
    resolved = apply_pipeline_task_contexts(task, _status(), _state())
    assert resolved.params[0].value.string_val == "3 digests"


def test_unresolved_matrix_reference_left_in_place(caplog):
    task = PipelineTask(
        name="report",
        params=[
            Param(name="a", value="$(tasks.later.matrix.length)"),
            Param(name="b", value="$(tasks.build.matrix.missing.length)"),
        ],
    )
    with caplog.at_level(logging.DEBUG, logger="pipeline_resolver"):
        resolved = apply_pipeline_task_contexts(task, _status(), _state())
    assert resolved.params[0].value.string_val == "$(tasks.later.matrix.length)"
    assert resolved.params[1].value.string_val == "$(tasks.build.matrix.missing.length)"
    assert sum("matrix_reference_unresolved" in r.message for r in caplog.records) == 2


def test_matrix_params_includes_and_display_name():
    task = PipelineTask(
        name="report",
        display_name="attempt $(context.pipelineTask.retries)",
        retries=1,
        matrix=Matrix(
            params=[Param(name="n", value=["$(tasks.build.matrix.length)"])],
            include=[
                IncludeParams(
                    name="i",
                    params=[Param(name="r", value="$(context.pipelineTask.retries)")],
                )
            ],
        ),
    )
    resolved = apply_pipeline_task_contexts(task, _status(), _state())
    assert resolved.display_name == "attempt 1"
    assert resolved.matrix.include[0].params[0].value.string_val == "1"
    # only plain params are scanned for matrix references
    assert resolved.matrix.params[0].value.array_val == ["$(tasks.build.matrix.length)"]


def test_does_not_mutate_input():
    task = PipelineTask(
        name="t",
        params=[Param(name="r", value="$(context.pipelineTask.retries)")],
    )
    apply_pipeline_task_contexts(task, PipelineRunStatus(), [])
    assert task.params[0].value.string_val == "$(context.pipelineTask.retries)"


def test_shared_cache_across_tasks():
    cache = ResultsCache(_state())
    for name in ("a", "b"):
        task = PipelineTask(
            name=name,
            params=[Param(name="n", value="$(tasks.build.matrix.digest.length)")],
        )
        resolved = apply_pipeline_task_contexts(task, _status(), _state(), cache)
        assert resolved.params[0].value.string_val == "3"


@pytest.mark.parametrize("retries", [0, 2])
def test_retries_value(retries):
    task = PipelineTask(
        name="t",
        retries=retries,
        display_name="$(context.pipelineTask.retries)",
    )
    assert apply_pipeline_task_contexts(task, PipelineRunStatus(), []).display_name == str(retries)
