"""Expression evaluation for the PySim interpreter.

Source-level expressions are turned into values in a fixed order: quoted
string literals, keyword literals, bare names, `range(...)`, list literals,
and finally a whitelisted AST evaluator for everything else. The AST step is
the only one that can fail; when it does the caller gets the original text
back as the value (degrade-in-place) together with a `fallback` flag, so the
decision to accept raw text stays visible at every call site.

Nothing here ever hands source text to Python's own `eval`. `eval_expr`
parses with `ast.parse(mode="eval")`, rejects every node outside a small
whitelist and walks the tree with `SafeEvaluator`.
"""

import ast
import logging
import operator
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from .values import FunctionRef, Scope, to_text, type_of

logger = logging.getLogger(__name__)

# Largest exponent accepted by `**`; keeps `9 ** 9 ** 9` from pinning a worker.
MAX_EXPONENT = 1000
# Largest integer `**` result, in bits. The exponent cap alone does not bound
# chains such as `((7 ** 999) ** 999) ** 40`.
MAX_POWER_BITS = 100_000

_KEYWORD_LITERALS = {"True": True, "False": False, "None": None}
_FSTRING_RE = re.compile(r"^[fF](['\"])(.*)\1$", re.S)
_PLACEHOLDER_RE = re.compile(r"\{\{|\}\}|\{([^{}]*)\}")
_PRINT_KEYWORD_RE = re.compile(r"^(sep|end)\s*=(?!=)(.*)$", re.S)
_CONVERSIONS: Dict[str, Callable[[Any], str]] = {"r": repr, "s": to_text, "a": ascii}


class EvalError(Exception):
    """Raised when expression evaluation fails or a disallowed AST element is seen.

    Expression-level failures never escape `evaluate_expression`; they are
    turned into a fallback `Evaluated` result there.

    Attributes:
        column: optional 1-based column where the error occurred within the expression
        text: optional original expression text (single line)
    """

    def __init__(self, message: str, *, column: Optional[int] = None, text: Optional[str] = None):
        super().__init__(message)
        self.column = column
        self.text = text


class InterpreterError(Exception):
    """Program-level failure that aborts a run.

    `code` is one of RUNTIME_ERROR, SYNTAX_ERROR, OUTPUT_LIMIT or CALL_DEPTH
    and ends up in the structured error returned to callers.
    """

    def __init__(self, message: str, *, code: str = "RUNTIME_ERROR"):
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class Evaluated:
    """Result of `evaluate_expression`.

    `fallback` is True when evaluation failed and `value` holds the original
    expression text instead of a computed value.
    """

    value: Any
    fallback: bool = False


def _materialize(values) -> List[Any]:
    return list(values)


_SAFE_CALLS: Dict[str, Callable[..., Any]] = {
    "len": len,
    "str": to_text,
    "int": int,
    "float": float,
    "bool": bool,
    "abs": abs,
    "min": min,
    "max": max,
    "sum": sum,
    "round": round,
    "sorted": sorted,
    "list": _materialize,
    "range": lambda *args: list(range(*args)),
}

_COMPARISONS: Dict[type, Callable[[Any, Any], bool]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
}


class SafeEvaluator(ast.NodeVisitor):
    """Minimal AST evaluator for the expression subset PySim supports.

    Names resolve directly against the active scope, which is the AST-level
    equivalent of substituting each variable's value into the source text.
    Anything not handled by a `visit_*` method is rejected.

    Args:
        env: the active scope.
    """

    def __init__(self, env: Scope):
        self.env = env

    def visit_Expression(self, node):
        return self.visit(node.body)

    def visit_BinOp(self, node):
        left = self.visit(node.left)
        right = self.visit(node.right)
        if isinstance(node.op, ast.Add):
            return left + right
        if isinstance(node.op, ast.Sub):
            return left - right
        if isinstance(node.op, ast.Mult):
            return left * right
        if isinstance(node.op, ast.Div):
            return left / right
        if isinstance(node.op, ast.Mod):
            return left % right
        if isinstance(node.op, ast.FloorDiv):
            return left // right
        if isinstance(node.op, ast.Pow):
            if isinstance(right, (int, float)) and abs(right) > MAX_EXPONENT:
                raise EvalError(f"Exponent too large; max {MAX_EXPONENT}")
            if (
                isinstance(left, int)
                and isinstance(right, int)
                and right > 0
                and abs(left) > 1
                and right * abs(left).bit_length() > MAX_POWER_BITS
            ):
                raise EvalError(f"Power result too large; max {MAX_POWER_BITS} bits")
            return left ** right
        raise EvalError(f"Unsupported binary op {type(node.op).__name__}")

    def visit_Compare(self, node):
        left = self.visit(node.left)
        for op, comparator in zip(node.ops, node.comparators):
            compare = _COMPARISONS.get(type(op))
            if compare is None:
                raise EvalError(f"Unsupported comparison {type(op).__name__}")
            right = self.visit(comparator)
            if not compare(left, right):
                return False
            left = right
        return True

    def visit_UnaryOp(self, node):
        operand = self.visit(node.operand)
        if isinstance(node.op, ast.UAdd):
            return +operand
        if isinstance(node.op, ast.USub):
            return -operand
        if isinstance(node.op, ast.Not):
            return not operand
        raise EvalError("Unsupported unary op")

    def visit_BoolOp(self, node):
        # Python semantics: short-circuit and return the deciding operand
        result = None
        for value in node.values:
            result = self.visit(value)
            if isinstance(node.op, ast.And) and not result:
                return result
            if isinstance(node.op, ast.Or) and result:
                return result
        return result

    def visit_IfExp(self, node):
        if self.visit(node.test):
            return self.visit(node.body)
        return self.visit(node.orelse)

    def visit_Constant(self, node):
        if isinstance(node.value, (bytes, complex)) or node.value is Ellipsis:
            raise EvalError(f"Unsupported literal {node.value!r}")
        return node.value

    def visit_JoinedStr(self, node):
        return "".join(to_text(self.visit(part)) for part in node.values)

    def visit_FormattedValue(self, node):
        value = self.visit(node.value)
        if node.conversion > 0:
            value = _CONVERSIONS[chr(node.conversion)](value)
        spec = self.visit(node.format_spec) if node.format_spec is not None else ""
        return format(value, spec)

    def visit_List(self, node):
        return [self.visit(e) for e in node.elts]

    def visit_Tuple(self, node):
        return tuple(self.visit(e) for e in node.elts)

    def visit_Subscript(self, node):
        if isinstance(node.slice, ast.Slice):
            raise EvalError("Slicing is not supported")
        container = self.visit(node.value)
        index = self.visit(node.slice)
        if not isinstance(container, (list, tuple, str)):
            raise EvalError(f"'{type_of(container).value}' object is not subscriptable")
        if isinstance(index, bool) or not isinstance(index, int):
            raise EvalError("Indices must be integers")
        return container[index]

    def visit_Name(self, node):
        if node.id in self.env:
            return self.env[node.id]
        raise EvalError(f"name '{node.id}' is not defined")

    def visit_Call(self, node):
        if not isinstance(node.func, ast.Name):
            raise EvalError("Unsupported call target")
        name = node.func.id
        if isinstance(self.env.get(name), FunctionRef):
            # return values never reach the call site, so there is nothing to evaluate to
            raise EvalError(f"Function '{name}' can only be called as a statement")
        func = _SAFE_CALLS.get(name)
        if func is None:
            raise EvalError("Unsupported function call")
        args = [self.visit(a) for a in node.args]
        kwargs = {}
        for keyword in node.keywords:
            if keyword.arg is None:
                raise EvalError("Unsupported keyword unpacking")
            kwargs[keyword.arg] = self.visit(keyword.value)
        return func(*args, **kwargs)

    def generic_visit(self, node):
        raise EvalError(f"Unsupported expression: {type(node).__name__}")


def eval_expr(expr: str, env: Scope):
    """Parse and safely evaluate a single expression string.

    The expression is parsed into an AST, checked against the list of
    disallowed constructs, then evaluated by `SafeEvaluator` against `env`.

    Args:
        expr: expression source text (e.g. "a + 3").
        env: the active scope.

    Returns:
        The Python value resulting from evaluating the expression.

    Raises:
        EvalError: if parsing fails, a disallowed node is present, or the
            evaluation itself raises (TypeError, ZeroDivisionError, ...).
    """
    try:
        tree = ast.parse(expr.strip(), mode="eval")
    except SyntaxError as e:
        raise EvalError("Syntax error in expression", column=e.offset or 1, text=expr) from e

    for node in ast.walk(tree):
        if isinstance(
            node,
            (
                ast.Attribute,
                ast.Lambda,
                ast.DictComp,
                ast.ListComp,
                ast.SetComp,
                ast.GeneratorExp,
                ast.Yield,
                ast.YieldFrom,
                ast.Await,
                ast.NamedExpr,
                ast.Starred,
            ),
        ):
            raise EvalError(f"Unsupported expression element: {type(node).__name__}")
        if isinstance(node, ast.Slice):
            raise EvalError("Slicing is not supported")
        if isinstance(node, ast.Call):
            if not isinstance(node.func, ast.Name):
                raise EvalError("Unsupported call target")
            if node.func.id not in _SAFE_CALLS and not isinstance(env.get(node.func.id), FunctionRef):
                raise EvalError("Unsupported function call")
        if isinstance(node, ast.Name) and node.id in ("__import__", "eval", "exec", "open", "os", "sys"):
            raise EvalError(f"Unsupported name in expression: {node.id}")

    evaluator = SafeEvaluator(env)
    try:
        return evaluator.visit(tree)
    except EvalError:
        raise
    except Exception as e:
        raise EvalError(str(e)) from e


def _closes_at_end(expr: str, start: int) -> bool:
    """True when the bracket opened at `start` is closed by the last character."""
    depth = 0
    quote: Optional[str] = None
    i = start
    while i < len(expr):
        ch = expr[i]
        if quote:
            if ch == "\\":
                i += 2
                continue
            if ch == quote:
                quote = None
        elif ch in "'\"":
            quote = ch
        elif ch in "([{":
            depth += 1
        elif ch in ")]}":
            depth -= 1
            if depth == 0:
                return i == len(expr) - 1
        i += 1
    return False


def _single_quoted(inner: str, quote: str) -> bool:
    """True when `inner` contains no unescaped `quote` character."""
    i = 0
    while i < len(inner):
        if inner[i] == "\\":
            i += 2
            continue
        if inner[i] == quote:
            return False
        i += 1
    return True


def string_literal(expr: str) -> Optional[str]:
    """Return the text of a single quoted string literal, or None."""
    if len(expr) < 2 or expr[0] not in "'\"" or expr[-1] != expr[0]:
        return None
    inner = expr[1:-1]
    if not _single_quoted(inner, expr[0]):
        return None
    if "\\" in inner:
        try:
            return ast.literal_eval(expr)
        except (SyntaxError, ValueError):
            return inner
    return inner


def fstring_template(expr: str) -> Optional[str]:
    """Return the body of an f-string literal (without prefix and quotes), or None."""
    match = _FSTRING_RE.match(expr)
    if not match or not _single_quoted(match.group(2), match.group(1)):
        return None
    return match.group(2)


def materialize_range(args: List[Any]) -> List[int]:
    """Eagerly build the list a `range(...)` call would iterate over."""
    if not 1 <= len(args) <= 3:
        raise InterpreterError(f"range expected 1 to 3 arguments, got {len(args)}")
    for arg in args:
        if isinstance(arg, bool) or not isinstance(arg, int):
            raise InterpreterError(
                f"'{type_of(arg).value}' object cannot be interpreted as an integer"
            )
    if len(args) == 3 and args[2] == 0:
        raise InterpreterError("range() arg 3 must not be zero")
    return list(range(*args))


def split_print_args(text: str) -> List[str]:
    """Split an argument list on top-level commas.

    Commas nested in (), [] or {} or inside single/double-quoted strings do
    not split. A quote preceded by a backslash does not open or close a
    string. A trailing empty segment is dropped.
    """
    parts: List[str] = []
    current: List[str] = []
    depth = 0
    quote: Optional[str] = None
    prev = ""
    for ch in text:
        if ch in "'\"" and prev != "\\":
            if quote is None:
                quote = ch
            elif ch == quote:
                quote = None
        elif quote is None:
            if ch in "([{":
                depth += 1
            elif ch in ")]}":
                depth -= 1
            elif ch == "," and depth == 0:
                parts.append("".join(current))
                current = []
                prev = ch
                continue
        current.append(ch)
        prev = ch
    tail = "".join(current)
    if tail.strip():
        parts.append(tail)
    return parts


def _split_list_items(content: str) -> List[str]:
    # naive on purpose: nested brackets and quoted commas are not respected
    return [item.strip() for item in content.split(",") if item.strip()]


def evaluate_expression(expr: str, scope: Scope) -> Evaluated:
    """Evaluate source-level expression text against `scope`.

    Steps, in order: string literal, True/False/None, bound name,
    range(...), list literal, then the whitelisted AST evaluator. Only the
    last step may fail; it then yields the original text with
    `fallback=True`.
    """
    expr = expr.strip()
    literal = string_literal(expr)
    if literal is not None:
        return Evaluated(literal)
    if expr in _KEYWORD_LITERALS:
        return Evaluated(_KEYWORD_LITERALS[expr])
    if expr in scope:
        return Evaluated(scope[expr])
    if expr.startswith("range(") and _closes_at_end(expr, len("range")):
        args = [evaluate_expression(arg, scope).value for arg in split_print_args(expr[len("range("):-1])]
        return Evaluated(materialize_range(args))
    if expr.startswith("[") and _closes_at_end(expr, 0):
        items = _split_list_items(expr[1:-1])
        return Evaluated([evaluate_expression(item, scope).value for item in items])
    try:
        return Evaluated(eval_expr(expr, scope))
    except EvalError as e:
        logger.debug("Keeping raw text for %r: %s", expr, e)
        return Evaluated(expr, fallback=True)


def evaluate_condition(condition: str, scope: Scope) -> bool:
    """Evaluate an if/elif/while condition; a condition that fails is false."""
    try:
        return bool(eval_expr(condition, scope))
    except EvalError as e:
        logger.debug("Condition %r treated as false: %s", condition, e)
        return False


def _render_placeholder(body: str, raw: str, scope: Scope) -> str:
    expr, _, spec = body.partition(":")
    expr = expr.strip()
    conversion = None
    if len(expr) > 2 and expr[-2] == "!" and expr[-1] in _CONVERSIONS:
        conversion = _CONVERSIONS[expr[-1]]
        expr = expr[:-2].strip()
    if not expr:
        return raw
    if expr in scope:
        value = scope[expr]
    else:
        try:
            value = eval_expr(expr, scope)
        except EvalError as e:
            logger.debug("Leaving placeholder %s unresolved: %s", raw, e)
            return raw
    if conversion is not None:
        value = conversion(value)
    if not spec:
        return to_text(value)
    try:
        return format(value, spec)
    except (TypeError, ValueError):
        return raw


def interpolate_fstring(template: str, scope: Scope) -> str:
    """Replace each `{name}` placeholder in an f-string body with its value."""

    def replace(match):
        token = match.group(0)
        if token == "{{":
            return "{"
        if token == "}}":
            return "}"
        return _render_placeholder(match.group(1), token, scope)

    return _PLACEHOLDER_RE.sub(replace, template)


def _render_argument(arg: str, scope: Scope) -> str:
    template = fstring_template(arg)
    if template is not None:
        return interpolate_fstring(template, scope)
    return to_text(evaluate_expression(arg, scope).value)


def render_print_call(args_text: str, scope: Scope) -> Tuple[str, str]:
    """Render the argument list of a print call.

    Arguments are split on top-level commas, each rendered on its own and
    joined with a single space (or the value of a `sep=` keyword).

    Returns:
        (text, end) where `end` is the value of an `end=` keyword, "\\n" by
        default.
    """
    keywords = {"sep": " ", "end": "\n"}
    rendered: List[str] = []
    for arg in split_print_args(args_text.strip()):
        arg = arg.strip()
        keyword = _PRINT_KEYWORD_RE.match(arg)
        if keyword:
            keywords[keyword.group(1)] = _render_argument(keyword.group(2).strip(), scope)
            continue
        rendered.append(_render_argument(arg, scope))
    return keywords["sep"].join(rendered), keywords["end"]
