"""Tests for value tagging, rendering and scope snapshots."""

from backend.pysim.values import (
    FunctionRef,
    ValueType,
    describe_scope,
    snapshot,
    to_text,
    type_of,
)


def test_type_of_tags_every_value_kind():
    assert type_of("a") is ValueType.STRING
    assert type_of(1) is ValueType.NUMBER
    assert type_of(1.5) is ValueType.NUMBER
    assert type_of(True) is ValueType.BOOLEAN
    assert type_of([1]) is ValueType.LIST
    assert type_of(None) is ValueType.NONE
    assert type_of(FunctionRef("f")) is ValueType.FUNCTION


def test_to_text_matches_print():
    assert to_text("plain") == "plain"
    assert to_text(2.0) == "2.0"
    assert to_text(False) == "False"
    assert to_text(["a", 1, None]) == "['a', 1, None]"
    assert to_text(FunctionRef("greet")) == "<function greet>"


def test_snapshot_is_a_shallow_copy():
    scope = {"x": 1, "items": [1]}
    copy = snapshot(scope)
    scope["x"] = 2
    scope["items"].append(2)
    assert copy["x"] == 1
    # list values are shared between the scope and its snapshot
    assert copy["items"] == [1, 2]


def test_describe_scope():
    assert describe_scope({"n": 3, "f": FunctionRef("f")}) == {
        "n": {"type": "number", "value": "3"},
        "f": {"type": "function", "value": "<function f>"},
    }
