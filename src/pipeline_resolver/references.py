"""Reference extraction for ``$(...)`` variable expressions.

Discovers which variables a templated field uses without evaluating
them, and parses the shapes the resolvers care about: result
references, matrix context references, index and splat suffixes.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from pipeline_resolver.models import ParamValue

VARIABLE_PATTERN = re.compile(r"\$\(([^()]+)\)")
_EXACT_VARIABLE_PATTERN = re.compile(r"^\$\(([^()]+)\)$")
_INDEX_SUFFIX = re.compile(r"^(.+?)\[(\d+|\*)\]$")
_QUOTED_SEGMENT = re.compile(r"""\[(?:"([^"]*)"|'([^']*)')\]""")

RESULT_TASK_PART = "tasks"
RESULT_FINALLY_PART = "finally"
RESULT_RESULT_PART = "results"


class ReferenceKind(str, Enum):
    PARAM = "param"
    CONTEXT = "context"
    RESULT = "result"
    MATRIX = "matrix"
    WORKSPACE = "workspace"
    STATUS = "status"
    ARTIFACT = "artifact"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ResultRef:
    """A parsed ``{tasks|finally}.<task>.results.<result>`` reference."""

    producer: str
    task: str
    result: str
    index: str = ""
    key: str = ""


def extract_references(text: str) -> set[str]:
    """Return the set of reference expressions used in *text*.

    ``"$(params.a)-$(tasks.b.results.c[0])"`` yields
    ``{"params.a", "tasks.b.results.c[0]"}``.
    """
    if "$(" not in text:
        return set()
    return {m.group(1) for m in VARIABLE_PATTERN.finditer(text)}


def ordered_references(text: str) -> list[str]:
    """Like ``extract_references`` but deduplicated in order of appearance."""
    if "$(" not in text:
        return []
    return list(dict.fromkeys(m.group(1) for m in VARIABLE_PATTERN.finditer(text)))


def value_references(value: ParamValue) -> list[str]:
    refs: list[str] = []
    for s in value.strings():
        refs.extend(ordered_references(s))
    return list(dict.fromkeys(refs))


def exact_reference(text: str) -> str | None:
    """If *text* is exactly one ``$(...)`` reference, return its expression."""
    m = _EXACT_VARIABLE_PATTERN.match(text)
    return m.group(1) if m else None


def strip_star(expression: str) -> str:
    """``$(params.a[*])`` or ``params.a[*]`` -> ``params.a``."""
    if expression.startswith("$(") and expression.endswith(")"):
        expression = expression[2:-1]
    return expression.removesuffix("[*]")


def split_index(expression: str) -> tuple[str, str]:
    """Split a trailing ``[<int>]`` or ``[*]`` off an expression.

    Returns ``(base, index)``; *index* is ``""`` when there is none.
    """
    m = _INDEX_SUFFIX.match(expression)
    if not m:
        return expression, ""
    return m.group(1), m.group(2)


def normalize(expression: str) -> str:
    """Rewrite bracket-quoted segments to dotted form.

    ``params["a"]`` and ``params['a']`` both become ``params.a``.
    Numeric and splat indexes are left alone.
    """
    return _QUOTED_SEGMENT.sub(
        lambda m: "." + (m.group(1) if m.group(1) is not None else m.group(2)),
        expression,
    )


def parse_result_reference(expression: str) -> ResultRef | None:
    """Parse a task result reference, or return None for any other shape."""
    parts = normalize(expression).split(".")
    if len(parts) not in (4, 5):
        return None
    if parts[0] not in (RESULT_TASK_PART, RESULT_FINALLY_PART):
        return None
    if parts[2] != RESULT_RESULT_PART:
        return None
    result, index = split_index(parts[3])
    key = parts[4] if len(parts) == 5 else ""
    if not parts[1] or not result:
        return None
    return ResultRef(
        producer=parts[0], task=parts[1], result=result, index=index, key=key
    )


def is_matrix_context_reference(expression: str) -> bool:
    """Match ``tasks.<t>.matrix.length`` and ``tasks.<t>.matrix.<r>.length``."""
    parts = expression.split(".")
    return (
        len(parts) >= 4
        and parts[0] == RESULT_TASK_PART
        and parts[2] == "matrix"
        and parts[-1] == "length"
    )


def parse_matrix_reference(expression: str) -> tuple[str, str]:
    """Return ``(task, result)`` for a matrix context reference.

    *result* is ``""`` for the combination-count form. Anything else
    yields ``("", "")``.
    """
    if not is_matrix_context_reference(expression):
        return "", ""
    parts = expression.split(".")
    if len(parts) == 4:
        return parts[1], ""
    if len(parts) == 5:
        return parts[1], parts[3]
    return "", ""


def classify_reference(expression: str) -> ReferenceKind:
    parts = normalize(expression).split(".")
    head = parts[0]
    if head == "params":
        return ReferenceKind.PARAM
    if head == "context":
        return ReferenceKind.CONTEXT
    if head == "workspaces":
        return ReferenceKind.WORKSPACE
    if head in (RESULT_TASK_PART, RESULT_FINALLY_PART):
        if is_matrix_context_reference(expression):
            return ReferenceKind.MATRIX
        if len(parts) >= 3 and parts[2] == RESULT_RESULT_PART:
            return ReferenceKind.RESULT
        if parts[-1] == "status":
            return ReferenceKind.STATUS
        if len(parts) >= 3 and parts[2] in ("inputs", "outputs"):
            return ReferenceKind.ARTIFACT
    return ReferenceKind.UNKNOWN
