"""Tests for ``$(...)`` substitution.

Covers the three replacement shapes, the tri-state (absent vs empty)
maps, and the guarantee that inputs are never mutated.
"""

from __future__ import annotations

import pytest

from pipeline_resolver.errors import ArrayIndexOutOfBoundsError
from pipeline_resolver.models import (
    EmbeddedTask,
    EnvVar,
    Param,
    ParamType,
    ParamValue,
    PersistentVolumeClaimSource,
    SecretSource,
    Step,
    WhenExpression,
    WorkspaceBinding,
    WorkspaceDeclaration,
)
from pipeline_resolver.substitution import (
    Replacements,
    apply_array_replacements,
    apply_replacements,
    apply_to_value,
    replace_params,
    replace_task_spec,
    replace_when,
    replace_workspace_bindings,
    substitute,
)

ARRAYS = {"params.a": ["a", "b", "c"]}
OBJECTS = {"params.image": {"url": "registry/app", "digest": "sha256:1"}}


# ── apply_replacements ───────────────────────────────────────────


def test_apply_replacements_basic():
    assert apply_replacements("$(params.x), world", {"params.x": "hello"}) == "hello, world"


def test_apply_replacements_leaves_unknown_in_place():
    text = "$(params.x) $(tasks.later.results.r)"
    assert apply_replacements(text, {"params.x": "1"}) == "1 $(tasks.later.results.r)"


def test_apply_replacements_multiple_occurrences():
    assert apply_replacements("$(params.x)-$(params.x)", {"params.x": "v"}) == "v-v"


def test_apply_replacements_without_refs():
    assert apply_replacements("plain", {"params.x": "v"}) == "plain"
    assert apply_replacements("$(params.x)", {}) == "$(params.x)"


def test_apply_replacements_is_idempotent():
    strings = {"params.x": "hello", "params.y": "world"}
    once = apply_replacements("$(params.x) $(params.y) $(params.z)", strings)
    assert apply_replacements(once, strings) == once


# ── apply_array_replacements ─────────────────────────────────────


def test_array_expansion_with_splat():
    assert apply_array_replacements("$(params.a[*])", {}, ARRAYS) == ["a", "b", "c"]


def test_array_expansion_bare_reference():
    assert apply_array_replacements("$(params.a)", {}, ARRAYS) == ["a", "b", "c"]


def test_array_expansion_only_for_whole_field():
    assert apply_array_replacements("x $(params.a[*])", {}, ARRAYS) == ["x $(params.a[*])"]


def test_array_expansion_falls_back_to_strings():
    assert apply_array_replacements("$(params.s)", {"params.s": "v"}, ARRAYS) == ["v"]


def test_array_expansion_without_array_map():
    assert apply_array_replacements("$(params.a[*])", {}, None) == ["$(params.a[*])"]


# ── substitute ───────────────────────────────────────────────────


def test_substitute_array_index():
    r = Replacements({}, ARRAYS)
    assert substitute("$(params.a[1])", r) == "b"
    assert substitute("$(params.a[0])-$(params.a[2])", r) == "a-c"


def test_substitute_array_index_out_of_bounds_raises():
    with pytest.raises(ArrayIndexOutOfBoundsError) as exc:
        substitute("$(params.a[5])", Replacements({}, ARRAYS))
    assert exc.value.index == 5
    assert exc.value.length == 3
    assert "out of bounds" in str(exc.value)


def test_substitute_splat_left_in_scalar_field():
    assert substitute("$(params.a[*])", Replacements({}, ARRAYS)) == "$(params.a[*])"


def test_substitute_absent_array_map_skips_shape():
    assert substitute("$(params.a[1])", Replacements({})) == "$(params.a[1])"


def test_substitute_empty_array_map_matches_nothing():
    assert substitute("$(params.a[1])", Replacements({}, {})) == "$(params.a[1])"


def test_substitute_object_attribute():
    r = Replacements({}, None, OBJECTS)
    assert substitute("$(params.image.url)", r) == "registry/app"
    assert substitute('$(params["image"]["digest"])', r) == "sha256:1"


def test_substitute_object_missing_key_left_in_place():
    r = Replacements({}, None, OBJECTS)
    assert substitute("$(params.image.tag)", r) == "$(params.image.tag)"


def test_substitute_prefers_strings():
    r = Replacements({"params.a[1]": "from-strings"}, ARRAYS)
    assert substitute("$(params.a[1])", r) == "from-strings"


# ── apply_to_value ───────────────────────────────────────────────


def test_apply_to_value_string():
    v = apply_to_value(ParamValue.of("$(params.x)!"), Replacements({"params.x": "hi"}))
    assert v.type == ParamType.STRING
    assert v.string_val == "hi!"


def test_apply_to_value_string_becomes_array():
    v = apply_to_value(ParamValue.of("$(params.a[*])"), Replacements({}, ARRAYS))
    assert v.type == ParamType.ARRAY
    assert v.array_val == ["a", "b", "c"]


def test_apply_to_value_string_becomes_object():
    v = apply_to_value(ParamValue.of("$(params.image[*])"), Replacements({}, None, OBJECTS))
    assert v.type == ParamType.OBJECT
    assert v.object_val["url"] == "registry/app"


def test_apply_to_value_array_elements_expand():
    v = apply_to_value(
        ParamValue.of(["first", "$(params.a[*])", "$(params.x)"]),
        Replacements({"params.x": "last"}, ARRAYS),
    )
    assert v.array_val == ["first", "a", "b", "c", "last"]


def test_apply_to_value_object_values():
    v = apply_to_value(
        ParamValue.of({"greeting": "$(params.x)", "fixed": "y"}),
        Replacements({"params.x": "hi"}),
    )
    assert v.object_val == {"greeting": "hi", "fixed": "y"}


def test_apply_to_value_does_not_mutate_input():
    original = ParamValue.of(["$(params.a[*])"])
    apply_to_value(original, Replacements({}, ARRAYS))
    assert original.array_val == ["$(params.a[*])"]


# ── Structural helpers ───────────────────────────────────────────


def test_replace_params():
    params = [Param(name="p", value="$(params.x)")]
    replaced = replace_params(params, Replacements({"params.x": "v"}))
    assert replaced[0].value.string_val == "v"
    assert params[0].value.string_val == "$(params.x)"


def test_replace_when_expands_values_and_input():
    when = [
        WhenExpression(
            input="$(params.x)",
            operator="in",
            values=["$(params.a[*])", "literal"],
        )
    ]
    replaced = replace_when(when, Replacements({"params.x": "b"}, ARRAYS))
    assert replaced[0].input == "b"
    assert replaced[0].values == ["a", "b", "c", "literal"]
    assert replaced[0].operator == "in"


def test_replace_when_cel():
    when = [WhenExpression(cel="'$(params.x)' == 'b'")]
    replaced = replace_when(when, Replacements({"params.x": "b"}))
    assert replaced[0].cel == "'b' == 'b'"


def test_replace_task_spec():
    spec = EmbeddedTask(
        steps=[
            Step(
                name="s",
                image="$(params.image.url)",
                command=["run"],
                args=["$(params.a[*])", "--flag=$(params.x)"],
                script="echo $(params.x)",
                working_dir="/ws/$(params.x)",
                env=[EnvVar(name="E", value="$(params.a[2])")],
            )
        ],
        workspaces=[WorkspaceDeclaration(name="src", mount_path="/mnt/$(params.x)")],
    )
    r = Replacements(
        {"params.x": "v", "params.image.url": "registry/app"}, ARRAYS, OBJECTS
    )
    replaced = replace_task_spec(spec, r)
    step = replaced.steps[0]
    assert step.image == "registry/app"
    assert step.args == ["a", "b", "c", "--flag=v"]
    assert step.script == "echo v"
    assert step.working_dir == "/ws/v"
    assert step.env[0].value == "c"
    assert replaced.workspaces[0].mount_path == "/mnt/v"
    assert spec.steps[0].script == "echo $(params.x)"


def test_replace_workspace_bindings():
    bindings = [
        WorkspaceBinding(
            name="src",
            sub_path="$(params.dir)",
            persistent_volume_claim=PersistentVolumeClaimSource(claim_name="pvc-$(params.x)"),
        ),
        WorkspaceBinding(name="creds", secret=SecretSource(secret_name="$(params.x)")),
    ]
    replaced = replace_workspace_bindings(bindings, {"params.dir": "d", "params.x": "v"})
    assert replaced[0].sub_path == "d"
    assert replaced[0].persistent_volume_claim.claim_name == "pvc-v"
    assert replaced[1].secret.secret_name == "v"
    assert bindings[0].sub_path == "$(params.dir)"
