"""Custom exception hierarchy for pipeline-resolver.

All exceptions inherit from PipelineError so callers can catch broadly
or narrowly as needed.
"""

from __future__ import annotations

from typing import Any


class PipelineError(Exception):
    """Base for all pipeline-resolver errors."""


class PipelineLoadError(PipelineError):
    """YAML parsing or pipeline/run structure validation failed."""


class ValidationError(PipelineError):
    """Run parameter values don't satisfy the declared parameter schema."""


class ResultReferenceError(PipelineError):
    """A reference inside a declared pipeline result could not be resolved."""

    def __init__(self, reference: str, message: str) -> None:
        self.reference = reference
        super().__init__(f"Reference '{reference}': {message}")


class InvalidReferenceError(ResultReferenceError):
    """Malformed or unsupported reference shape."""


class ArrayIndexOutOfBoundsError(ResultReferenceError):
    """Array index points past the end of the referenced array."""

    def __init__(self, reference: str, index: int, length: int) -> None:
        self.index = index
        self.length = length
        super().__init__(
            reference,
            f"index {index} out of bounds for array of length {length}",
        )


class MissingResultError(ResultReferenceError):
    """Referenced task or result doesn't exist and no status was recorded."""


class ArtifactSerializationError(PipelineError):
    """An artifact value could not be JSON-encoded."""

    def __init__(
        self,
        task_name: str,
        artifact_name: str,
        cause: Exception | None = None,
    ) -> None:
        self.task_name = task_name
        self.artifact_name = artifact_name
        self.cause = cause
        super().__init__(
            f"Artifact '{artifact_name}' of task '{task_name}' "
            f"cannot be serialized: {cause}"
        )


class InvalidPipelineResultsError(PipelineError):
    """One or more declared pipeline results referenced invalid results.

    ``results`` holds the pipeline results that did resolve, so a caller
    can still publish the partial set.
    """

    def __init__(
        self,
        invalid: list[str],
        results: list[Any],
        causes: dict[str, list[ResultReferenceError]] | None = None,
    ) -> None:
        self.invalid = invalid
        self.results = results
        self.causes = causes or {}
        super().__init__(
            f"invalid pipeline results {invalid}, "
            f"the referenced results don't exist"
        )
