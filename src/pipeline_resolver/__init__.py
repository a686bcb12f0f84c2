"""pipeline-resolver: variable resolution and result aggregation for CI/CD pipelines."""

from pipeline_resolver.errors import (
    ArrayIndexOutOfBoundsError,
    ArtifactSerializationError,
    InvalidPipelineResultsError,
    InvalidReferenceError,
    MissingResultError,
    PipelineError,
    PipelineLoadError,
    ResultReferenceError,
    ValidationError,
)
from pipeline_resolver.loader import (
    TaskResults,
    load_pipeline,
    load_pipeline_document,
    load_pipeline_run,
    load_task_results,
    validate_run_params,
)
from pipeline_resolver.models import (
    AggregatedResults,
    ParamType,
    ParamValue,
    PipelineRun,
    PipelineRunResult,
    PipelineSpec,
    ResolvedPipeline,
)
from pipeline_resolver.pipeline_logger import configure_logging
from pipeline_resolver.resolver import resolve_pipeline, resolve_pipeline_results
from pipeline_resolver.validator import (
    Diagnostic,
    Severity,
    ValidationResult,
    load_and_validate_pipeline,
    validate_pipeline,
)

__all__ = [
    "configure_logging",
    "Diagnostic",
    "load_and_validate_pipeline",
    "load_pipeline",
    "load_pipeline_document",
    "load_pipeline_run",
    "load_task_results",
    "resolve_pipeline",
    "resolve_pipeline_results",
    "Severity",
    "validate_pipeline",
    "validate_run_params",
    "ValidationResult",
    "AggregatedResults",
    "ArrayIndexOutOfBoundsError",
    "ArtifactSerializationError",
    "InvalidPipelineResultsError",
    "InvalidReferenceError",
    "MissingResultError",
    "ParamType",
    "ParamValue",
    "PipelineError",
    "PipelineLoadError",
    "PipelineRun",
    "PipelineRunResult",
    "PipelineSpec",
    "ResolvedPipeline",
    "ResultReferenceError",
    "TaskResults",
    "ValidationError",
]
