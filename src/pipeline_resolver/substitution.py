"""Placeholder substitution for ``$(...)`` references.

Pure functions, no state. Every function returns a new value and
leaves its arguments untouched. References that no replacement map
knows about are left in place as literal text so a later pass can
resolve them.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from pipeline_resolver.errors import ArrayIndexOutOfBoundsError
from pipeline_resolver.models import (
    EmbeddedTask,
    Param,
    ParamType,
    ParamValue,
    WhenExpression,
    WorkspaceBinding,
)
from pipeline_resolver.references import (
    VARIABLE_PATTERN,
    exact_reference,
    normalize,
    split_index,
    strip_star,
)


@dataclass(frozen=True)
class Replacements:
    """The three replacement maps for one substitution call.

    ``arrays`` and ``objects`` are tri-state: ``None`` means the shape
    is not supplied and is skipped entirely, while an empty mapping
    means it is supplied and simply matches nothing.
    """

    strings: Mapping[str, str] = field(default_factory=dict)
    arrays: Mapping[str, list[str]] | None = None
    objects: Mapping[str, Mapping[str, str]] | None = None

    def string_only(self) -> Replacements:
        return Replacements(self.strings)

    def without_objects(self) -> Replacements:
        return Replacements(self.strings, self.arrays)


def apply_replacements(text: str, strings: Mapping[str, str]) -> str:
    """Replace every ``$(key)`` whose key is in *strings*."""
    if not strings or "$(" not in text:
        return text
    return VARIABLE_PATTERN.sub(
        lambda m: strings.get(m.group(1), m.group(0)), text
    )


def apply_array_replacements(
    text: str,
    strings: Mapping[str, str],
    arrays: Mapping[str, list[str]] | None,
) -> list[str]:
    """Substitute *text* in a list-producing context.

    A text that is exactly ``$(key)`` or ``$(key[*])`` for an array key
    expands to that whole array. Anything else yields a one-element
    list holding the string-substituted text.
    """
    if arrays:
        expression = exact_reference(text)
        if expression is not None:
            base = strip_star(expression)
            if base in arrays:
                return list(arrays[base])
    return [apply_replacements(text, strings)]


def _split_attribute(expression: str) -> tuple[str, str]:
    base, sep, key = expression.rpartition(".")
    if sep:
        return base, key
    return expression, ""


def _lookup(expression: str, replacements: Replacements) -> str | None:
    strings = replacements.strings
    if expression in strings:
        return strings[expression]

    arrays = replacements.arrays
    if arrays is not None:
        base, index = split_index(expression)
        if index and base in arrays:
            if index == "*":
                # Splats only expand where the field itself is a list.
                return None
            position = int(index)
            values = arrays[base]
            if position >= len(values):
                raise ArrayIndexOutOfBoundsError(expression, position, len(values))
            return values[position]

    objects = replacements.objects
    if objects is not None:
        for candidate in (expression, normalize(expression)):
            base, key = _split_attribute(candidate)
            if key and base in objects and key in objects[base]:
                return objects[base][key]
    return None


def substitute(text: str, replacements: Replacements) -> str:
    """Substitute every reference in a scalar string field.

    Raises:
        ArrayIndexOutOfBoundsError: An indexed reference points past the
            end of an array that *replacements* supplies.
    """
    if "$(" not in text:
        return text

    def repl(m: re.Match[str]) -> str:
        value = _lookup(m.group(1), replacements)
        return m.group(0) if value is None else value

    return VARIABLE_PATTERN.sub(repl, text)


def apply_to_value(value: ParamValue, replacements: Replacements) -> ParamValue:
    """Return a substituted copy of *value*.

    A string value that is exactly one reference to an array or object
    changes shape to that array or object.
    """
    match value.type:
        case ParamType.ARRAY:
            expanded: list[str] = []
            for item in value.array_val:
                expression = exact_reference(item)
                base = strip_star(expression) if expression is not None else None
                if replacements.arrays and base in replacements.arrays:
                    expanded.extend(replacements.arrays[base])
                else:
                    expanded.append(substitute(item, replacements))
            return ParamValue(type=ParamType.ARRAY, array_val=expanded)
        case ParamType.OBJECT:
            return ParamValue(
                type=ParamType.OBJECT,
                object_val={
                    k: substitute(v, replacements)
                    for k, v in value.object_val.items()
                },
            )
        case _:
            expression = exact_reference(value.string_val)
            if expression is not None:
                base = strip_star(expression)
                if replacements.arrays is not None and base in replacements.arrays:
                    return ParamValue(
                        type=ParamType.ARRAY,
                        array_val=list(replacements.arrays[base]),
                    )
                if replacements.objects is not None and base in replacements.objects:
                    return ParamValue(
                        type=ParamType.OBJECT,
                        object_val=dict(replacements.objects[base]),
                    )
            return ParamValue(
                type=ParamType.STRING,
                string_val=substitute(value.string_val, replacements),
            )


# ── Structural helpers ───────────────────────────────────────────


def replace_params(params: Iterable[Param], replacements: Replacements) -> list[Param]:
    return [
        Param(name=p.name, value=apply_to_value(p.value, replacements))
        for p in params
    ]


def replace_when(
    expressions: Iterable[WhenExpression], replacements: Replacements
) -> list[WhenExpression]:
    replaced: list[WhenExpression] = []
    for we in expressions:
        values: list[str] = []
        for v in we.values:
            values.extend(
                apply_array_replacements(v, replacements.strings, replacements.arrays)
            )
        replaced.append(
            WhenExpression(
                input=apply_replacements(we.input, replacements.strings),
                operator=we.operator,
                values=values,
                cel=(
                    apply_replacements(we.cel, replacements.strings)
                    if we.cel is not None
                    else None
                ),
            )
        )
    return replaced


def _expand_list(items: Iterable[str], replacements: Replacements) -> list[str]:
    out: list[str] = []
    for item in items:
        out.extend(
            apply_array_replacements(item, replacements.strings, replacements.arrays)
        )
    return out


def replace_task_spec(task_spec: EmbeddedTask, replacements: Replacements) -> EmbeddedTask:
    """Substitute an embedded task spec's steps and workspace mount paths."""
    spec = task_spec.model_copy(deep=True)
    for step in spec.steps:
        step.image = substitute(step.image, replacements)
        step.script = substitute(step.script, replacements)
        step.working_dir = substitute(step.working_dir, replacements)
        step.command = _expand_list(step.command, replacements)
        step.args = _expand_list(step.args, replacements)
        for env in step.env:
            env.value = substitute(env.value, replacements)
    for ws in spec.workspaces:
        ws.mount_path = substitute(ws.mount_path, replacements)
    return spec


def replace_workspace_bindings(
    bindings: Iterable[WorkspaceBinding], strings: Mapping[str, str]
) -> list[WorkspaceBinding]:
    replaced: list[WorkspaceBinding] = []
    for binding in bindings:
        b = binding.model_copy(deep=True)
        b.sub_path = apply_replacements(b.sub_path, strings)
        if b.persistent_volume_claim is not None:
            b.persistent_volume_claim.claim_name = apply_replacements(
                b.persistent_volume_claim.claim_name, strings
            )
        if b.config_map is not None:
            b.config_map.name = apply_replacements(b.config_map.name, strings)
        if b.secret is not None:
            b.secret.secret_name = apply_replacements(b.secret.secret_name, strings)
        replaced.append(b)
    return replaced
