"""Run context and workspace resolution.

Replaces ``$(context.pipelineRun.*)``, ``$(context.pipeline.name)`` and
``$(workspaces.<name>.bound)`` references with values taken from the
run, and substitutes run parameters into the run's workspace bindings.
"""

from __future__ import annotations

from pipeline_resolver.models import PipelineRun, PipelineSpec
from pipeline_resolver.params import apply_pipeline_replacements, param_replacements
from pipeline_resolver.substitution import (
    Replacements,
    apply_replacements,
    replace_workspace_bindings,
)


def context_replacements(pipeline_name: str, run: PipelineRun) -> dict[str, str]:
    """Identity replacements for a run. Missing fields become ``""``."""
    return {
        "context.pipelineRun.name": run.name or "",
        "context.pipeline.name": pipeline_name or "",
        "context.pipelineRun.namespace": run.namespace or "",
        "context.pipelineRun.uid": run.uid or "",
    }


def apply_contexts(
    spec: PipelineSpec, pipeline_name: str, run: PipelineRun
) -> PipelineSpec:
    """Substitute run context into display names, then the whole spec."""
    strings = context_replacements(pipeline_name, run)
    spec = spec.model_copy(deep=True)
    for task in spec.all_tasks():
        task.display_name = apply_replacements(task.display_name, strings)
    return apply_pipeline_replacements(spec, Replacements(strings, {}, {}))


def workspace_replacements(spec: PipelineSpec, run: PipelineRun) -> dict[str, str]:
    """``workspaces.<name>.bound`` for every declared and every bound workspace.

    Declared workspaces start as ``"false"``; a binding in the run flips
    them to ``"true"``. Bindings for undeclared workspaces are kept too.
    """
    replacements = {
        f"workspaces.{ws.name}.bound": "false" for ws in spec.workspaces
    }
    for binding in run.workspaces:
        replacements[f"workspaces.{binding.name}.bound"] = "true"
    return replacements


def apply_workspaces(spec: PipelineSpec, run: PipelineRun) -> PipelineSpec:
    return apply_pipeline_replacements(
        spec, Replacements(workspace_replacements(spec, run), {}, {})
    )


def apply_parameters_to_workspace_bindings(run: PipelineRun) -> PipelineRun:
    """Substitute the run's own string params into its workspace bindings."""
    strings = param_replacements(run.params).strings
    run = run.model_copy(deep=True)
    run.workspaces = replace_workspace_bindings(run.workspaces, strings)
    return run
