"""Runtime values and scopes for the PySim interpreter.

Interpreted programs work with plain Python values (str, int/float, bool,
list, None). The only value without a native counterpart is the placeholder a
`def` statement installs under the function's name; it is represented by
`FunctionRef`. `type_of` maps any value to its tag so callers and the service
layer can describe a scope without inspecting Python types themselves.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List

Scope = Dict[str, Any]


class ValueType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    LIST = "list"
    NONE = "none"
    FUNCTION = "function"


class FunctionRef:
    """Placeholder bound to a function's name in the defining scope.

    It only marks the name as known; the callable body lives in the
    interpreter's function registry.
    """

    __slots__ = ("name",)

    def __init__(self, name: str):
        self.name = name

    def __eq__(self, other):
        return isinstance(other, FunctionRef) and other.name == self.name

    def __hash__(self):
        return hash(("function", self.name))

    def __repr__(self):
        return f"<function {self.name}>"


@dataclass
class FunctionDefinition:
    """A user-defined function recorded by `def`.

    Attributes:
        name: function name as written in the header.
        params: ordered parameter names.
        body: raw source lines of the body (blank lines removed).
        scope: shallow snapshot of the defining scope taken at definition time.
    """

    name: str
    params: List[str]
    body: List[str]
    scope: Scope = field(default_factory=dict)


def type_of(value: Any) -> ValueType:
    # bool is a subclass of int, check it first
    if isinstance(value, bool):
        return ValueType.BOOLEAN
    if isinstance(value, (int, float)):
        return ValueType.NUMBER
    if isinstance(value, (list, tuple)):
        return ValueType.LIST
    if value is None:
        return ValueType.NONE
    if isinstance(value, FunctionRef):
        return ValueType.FUNCTION
    return ValueType.STRING


def to_text(value: Any) -> str:
    """Render a value the way Python's print() would."""
    if isinstance(value, str):
        return value
    return str(value)


def snapshot(scope: Scope) -> Scope:
    """Copy a scope by value. The copy is shallow: list values still alias."""
    return dict(scope)


def describe_scope(scope: Scope) -> Dict[str, Dict[str, str]]:
    """Return a JSON-friendly view of a scope: name -> {type, value}."""
    return {
        name: {"type": type_of(value).value, "value": to_text(value)}
        for name, value in scope.items()
    }
