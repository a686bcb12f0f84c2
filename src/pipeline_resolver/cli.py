"""Command-line interface for pipeline-resolver.

Enables a plain ``pipeline-resolver`` command after install.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

# ── Human-readable help strings ──────────────────────────────────────────────

_TOP_DESCRIPTION = """\
Variable resolution for declarative CI/CD pipelines.

Substitutes $(...) references in a pipeline spec with concrete values taken
from a run (params, run context, workspace bindings) and folds completed
task results into the pipeline's declared results.

Use this tool when you need to see what a pipeline looks like for a given
run, compute a finished run's pipeline results, or lint a pipeline's
references. It does NOT schedule or execute tasks.
"""

_TOP_EPILOG = """\
For a machine-readable JSON description of this CLI:

  pipeline-resolver schema

Quick examples:
  pipeline-resolver resolve pipeline.yaml run.yaml
  pipeline-resolver results pipeline.yaml task-results.yaml --output out.json
  pipeline-resolver validate pipeline.yaml
"""

_RESOLVE_DESCRIPTION = """\
Resolve a pipeline against a run and emit the resolved spec as JSON.

Applies declared param defaults overridden by the run's params, then the
run context (context.pipelineRun.name/namespace/uid, context.pipeline.name),
then workspaces.<name>.bound. Task result references are left in place.
"""

_RESOLVE_EPILOG = """\
Output schema (JSON written to stdout, or to the --output file):

  {
    "pipelineName": <str>,   -- metadata.name of the pipeline, else the run's pipelineRef
    "spec":        <object>, -- the resolved pipeline spec
    "workspaces":  [<object>] -- the run's workspace bindings, params applied
  }

Common errors:
  PipelineLoadError -- a YAML file was not found or its structure is invalid
  ValidationError   -- an object run param lacks one of its declared properties
"""

_RESULTS_DESCRIPTION = """\
Compute a finished run's pipeline results from its task results.

Every declared pipeline result is resolved against the task results.
Results whose references can't be resolved are reported as invalid; results
whose producing task was skipped or failed are dropped silently.
"""

_RESULTS_EPILOG = """\
Task results file, either aggregator inputs:

  taskResults:       {<task>: [{name: <str>, value: <str|list|map>}]}
  customRunResults:  {<task>: [{name: <str>, value: <str>}]}
  statuses:          {"tasks.<task>.status": Succeeded|Failed|None}

or run state:

  state:
    - pipelineTask: {name: <task>, ...}
      taskRuns: [{name: <str>, status: Succeeded, results: [...]}]

Output schema:

  {
    "results": [{"name": <str>, "value": <str|list|map>}],
    "invalid": [<str>],            -- names of rejected declared results
    "errors":  {<str>: [<str>]}    -- why each was rejected
  }

Exit codes:
  0 -- every declared result resolved or was dropped
  1 -- at least one declared result is invalid (valid results are still emitted)
"""

_VALIDATE_DESCRIPTION = """\
Statically lint a pipeline's references without resolving anything.

Checks for: duplicate task names, references to undeclared params,
workspaces or tasks, malformed result references, and declared pipeline
results that reference anything other than task results.
"""

_VALIDATE_EPILOG = """\
Diagnostic output format (written to stderr on failure):
  [error]   task_name.field: message  -- the pipeline can't resolve correctly
  [warning] task_name.field: message  -- likely a typo

Exit codes:
  0 -- no errors
  1 -- one or more errors found
"""

_SCHEMA_DESCRIPTION = """\
Print a machine-readable JSON description of this CLI to stdout.
"""


# ── Structured JSON schema (for `pipeline-resolver schema`) ──────────────────

def _file_arg(description: str) -> dict[str, Any]:
    return {
        "type": "string",
        "format": "file path",
        "required": True,
        "description": description,
    }


_OUTPUT_ARG = {
    "short": "-o",
    "type": "string",
    "format": "file path",
    "required": False,
    "description": "Write the JSON result to this file instead of stdout.",
}

_LOG_DIR_ARG = {
    "type": "string",
    "format": "directory path",
    "required": False,
    "description": (
        "Directory for JSONL resolution logs (resolver.log). Each line is a "
        "JSON event: resolution_start, resolution_complete, result_invalid, "
        "result_dropped or matrix_reference_unresolved."
    ),
}


def _cli_schema() -> dict[str, Any]:
    """Return a structured JSON description of the entire CLI."""
    return {
        "tool": "pipeline-resolver",
        "description": (
            "Resolves $(...) references in declarative CI/CD pipeline specs "
            "and aggregates task results into pipeline results."
        ),
        "commands": [
            {
                "name": "resolve",
                "description": "Apply a run's params, context and workspaces to a pipeline.",
                "arguments": {
                    "pipeline": _file_arg("Path to the pipeline YAML file."),
                    "run": _file_arg("Path to the pipeline run YAML file."),
                    "--output": _OUTPUT_ARG,
                    "--log-dir": _LOG_DIR_ARG,
                },
                "output": {
                    "channel": "stdout (or the file given by --output)",
                    "format": "JSON object",
                    "schema": {
                        "pipelineName": "<string>",
                        "spec": "<object> resolved pipeline spec",
                        "workspaces": "<array> run workspace bindings",
                    },
                },
                "exit_codes": {
                    "0": "success",
                    "1": "load error or run param validation error",
                },
            },
            {
                "name": "results",
                "description": "Aggregate task results into declared pipeline results.",
                "arguments": {
                    "pipeline": _file_arg("Path to the pipeline YAML file."),
                    "results": _file_arg("Path to the task results YAML or JSON file."),
                    "--output": _OUTPUT_ARG,
                    "--log-dir": _LOG_DIR_ARG,
                },
                "output": {
                    "channel": "stdout (or the file given by --output)",
                    "format": "JSON object",
                    "schema": {
                        "results": [{"name": "<string>", "value": "<string|array|object>"}],
                        "invalid": ["<string>"],
                        "errors": {"<string>": ["<string>"]},
                    },
                },
                "exit_codes": {
                    "0": "all declared results resolved or were dropped",
                    "1": "at least one declared result is invalid, or a load error",
                },
            },
            {
                "name": "validate",
                "description": "Lint a pipeline's references without resolving them.",
                "arguments": {
                    "pipeline": _file_arg("Path to the pipeline YAML file to validate."),
                },
                "output": {
                    "stdout_on_success": "Pipeline is valid (<N> tasks)",
                    "stderr_on_failure": "[error|warning] task_name.field: message",
                    "format": "human-readable text",
                },
                "exit_codes": {"0": "no errors", "1": "one or more errors"},
            },
            {
                "name": "schema",
                "description": "Print this machine-readable JSON schema to stdout.",
                "arguments": {},
                "output": {"channel": "stdout", "format": "JSON object"},
                "exit_codes": {"0": "always succeeds"},
            },
        ],
        "reference_grammar": [
            "params.<name>",
            'params["<name>"]',
            "params['<name>']",
            "params.<name>[<index>]",
            "params.<name>[*]",
            "params.<name>.<key>",
            "context.pipelineRun.name",
            "context.pipelineRun.namespace",
            "context.pipelineRun.uid",
            "context.pipeline.name",
            "context.pipelineTask.retries",
            "tasks.<task>.results.<result>",
            "tasks.<task>.results.<result>[<index>]",
            "tasks.<task>.results.<result>.<key>",
            "tasks.<task>.matrix.length",
            "tasks.<task>.matrix.<result>.length",
            "tasks.<task>.status",
            "workspaces.<name>.bound",
        ],
    }


# ── Argument parser ───────────────────────────────────────────────────────────

def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--output", "-o",
        type=Path,
        metavar="FILE",
        help="Write JSON output to FILE instead of stdout.",
    )
    p.add_argument(
        "--log-dir",
        type=Path,
        metavar="DIR",
        help=(
            "Write JSONL resolution logs to DIR/resolver.log. Useful for "
            "seeing which pipeline results were dropped or rejected."
        ),
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pipeline-resolver",
        description=_TOP_DESCRIPTION,
        epilog=_TOP_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command")

    # ── resolve ──────────────────────────────────────────────────────────────
    res_p = sub.add_parser(
        "resolve",
        help="Apply a run to a pipeline and emit the resolved spec as JSON",
        description=_RESOLVE_DESCRIPTION,
        epilog=_RESOLVE_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    res_p.add_argument("pipeline", type=Path, help="Path to the pipeline YAML file")
    res_p.add_argument("run", type=Path, help="Path to the pipeline run YAML file")
    _add_common(res_p)

    # ── results ──────────────────────────────────────────────────────────────
    out_p = sub.add_parser(
        "results",
        help="Aggregate task results into pipeline results",
        description=_RESULTS_DESCRIPTION,
        epilog=_RESULTS_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    out_p.add_argument("pipeline", type=Path, help="Path to the pipeline YAML file")
    out_p.add_argument("results", type=Path, help="Path to the task results file")
    _add_common(out_p)

    # ── validate ─────────────────────────────────────────────────────────────
    val_p = sub.add_parser(
        "validate",
        help="Lint a pipeline's references without resolving them",
        description=_VALIDATE_DESCRIPTION,
        epilog=_VALIDATE_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    val_p.add_argument(
        "pipeline",
        type=Path,
        help="Path to the pipeline YAML file to validate",
    )

    # ── schema ───────────────────────────────────────────────────────────────
    sub.add_parser(
        "schema",
        help="Print a machine-readable JSON schema of this CLI to stdout",
        description=_SCHEMA_DESCRIPTION,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    return parser


# ── Command handlers ──────────────────────────────────────────────────────────

def _emit(obj: Any, output: Path | None) -> None:
    text = json.dumps(obj, indent=2)
    if output:
        output.write_text(text)
        print(f"Output written to {output}", file=sys.stderr)
    else:
        print(text)


def _cmd_resolve(args: argparse.Namespace) -> int:
    from pipeline_resolver import (
        configure_logging,
        load_pipeline_document,
        load_pipeline_run,
        resolve_pipeline,
    )

    if args.log_dir:
        configure_logging(args.log_dir)

    name, spec = load_pipeline_document(args.pipeline)
    run = load_pipeline_run(args.run)
    resolved = resolve_pipeline(spec, name, run)

    _emit(resolved.model_dump(mode="json", by_alias=True, exclude_none=True), args.output)
    return 0


def _cmd_results(args: argparse.Namespace) -> int:
    from pipeline_resolver import (
        configure_logging,
        load_pipeline,
        load_task_results,
        resolve_pipeline_results,
    )

    if args.log_dir:
        configure_logging(args.log_dir)

    spec = load_pipeline(args.pipeline)
    task_results = load_task_results(args.results)
    aggregated = resolve_pipeline_results(spec, task_results)

    _emit(aggregated.model_dump(mode="json", by_alias=True), args.output)

    if aggregated.ok:
        return 0
    print(
        f"{len(aggregated.invalid)} invalid pipeline result(s): "
        f"{', '.join(aggregated.invalid)}",
        file=sys.stderr,
    )
    return 1


def _cmd_validate(args: argparse.Namespace) -> int:
    from pipeline_resolver import load_and_validate_pipeline

    spec, result = load_and_validate_pipeline(args.pipeline)

    if result.ok:
        print(f"Pipeline is valid ({len(spec.all_tasks())} tasks)")
        for d in result.warnings:
            print(f"[{d.severity.value}] {d.task_name}.{d.field}: {d.message}", file=sys.stderr)
        return 0

    for d in result.diagnostics:
        print(f"[{d.severity.value}] {d.task_name}.{d.field}: {d.message}", file=sys.stderr)

    error_count = len(result.errors)
    warning_count = len(result.warnings)
    print(f"\n{error_count} error(s), {warning_count} warning(s)", file=sys.stderr)
    return 1


def _cmd_schema() -> int:
    print(json.dumps(_cli_schema(), indent=2))
    return 0


# ── Entry point ───────────────────────────────────────────────────────────────

def main(argv: list[str] | None = None) -> None:
    from pipeline_resolver.errors import PipelineError

    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    try:
        if args.command == "resolve":
            sys.exit(_cmd_resolve(args))
        elif args.command == "results":
            sys.exit(_cmd_results(args))
        elif args.command == "validate":
            sys.exit(_cmd_validate(args))
        elif args.command == "schema":
            sys.exit(_cmd_schema())
    except PipelineError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
