"""PySim interpreter module.

This module simulates running a restricted subset of Python entirely in
process, for the playground's "run" action. It works on raw source lines
instead of a parse tree:

- a line scanner with an explicit cursor classifies every physical line and
  hands it to a statement handler;
- block structure comes only from indentation (`skip_block`), which is used
  to skip untaken branches and to collect loop and function bodies;
- bodies are executed by the same scanner, with the right scope active.

Runtime state (scope, function registry, output buffer) lives on an
`Interpreter` instance and is rebuilt on every run, so one instance can be
reused and separate instances never share anything.

Safety: expressions go through the whitelisted evaluator in
`expressions.py`, `while` loops stop after 1,000 iterations, and call depth
and output size are capped by per-instance tunables. Programs that are slow
for other reasons (a `for` over a huge range) can be run in a subprocess with
a wall-clock timeout via the `use_subprocess` setting.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from . import subprocess_runner
from .expressions import (
    InterpreterError,
    evaluate_condition,
    evaluate_expression,
    render_print_call,
)
from .values import (
    FunctionDefinition,
    FunctionRef,
    Scope,
    describe_scope,
    snapshot,
    type_of,
)

logger = logging.getLogger(__name__)

WHILE_ITERATION_CAP = 1000
WHILE_CAP_WARNING = (
    "[Warning: While loop iteration limit reached (1000 iterations). "
    "Loop execution halted.]"
)

_PRINT_RE = re.compile(r"^print\((.*)\)$")
_DEF_RE = re.compile(r"^def\s+([A-Za-z_]\w*)\s*\((.*)\)\s*:$")
_PARAM_RE = re.compile(r"^\s*([A-Za-z_]\w*)")
_ASSIGN_RE = re.compile(r"^([A-Za-z_]\w*)\s*=(?!=)(.*)$")
_ELSE_RE = re.compile(r"^else\s*:$")
_FOR_RE = re.compile(r"^([A-Za-z_]\w*)\s+in\s+(.+)$")
_RETURN_RE = re.compile(r"^return\b")
_CALL_RE = re.compile(r"^([A-Za-z_]\w*)\((.*)\)$")


def get_indentation(line: str) -> int:
    """Number of leading whitespace characters on `line`."""
    return len(line) - len(line.lstrip())


def strip_comment(line: str) -> str:
    """Drop a trailing `# comment` that is not inside a string literal."""
    quote: Optional[str] = None
    prev = ""
    for index, ch in enumerate(line):
        if quote:
            if ch == quote and prev != "\\":
                quote = None
        elif ch in "'\"":
            quote = ch
        elif ch == "#":
            return line[:index]
        prev = ch
    return line


def skip_block(lines: List[str], header_index: int, header_indent: int) -> int:
    """Return the index of the last line of the block opened at `header_index`.

    The block ends before the next non-blank, non-comment line indented no
    deeper than the header. Blank lines inside the block do not end it. For
    an empty block the header index itself is returned.
    """
    index = header_index + 1
    while index < len(lines):
        line = lines[index]
        if strip_comment(line).strip() and get_indentation(line) <= header_indent:
            return index - 1
        index += 1
    return len(lines) - 1


def _block_header(line: str, keyword: str) -> Optional[str]:
    """Return the text between `keyword` and the trailing colon of a block header.

    Returns None for a compound one-liner (`if x: print(x)`), which is not
    supported and is ignored by the caller.
    """
    if not line.endswith(":"):
        if ":" in line:
            return None
        raise InterpreterError(f"Expected ':' at end of '{keyword}' statement", code="SYNTAX_ERROR")
    return line[len(keyword):-1].strip()


class Interpreter:
    """Top-level PySim interpreter.

    Responsibilities:
    - execute source text line by line and collect what print() would emit,
    - keep the global scope and the user function registry for one run,
    - enforce runtime limits (while iterations, call depth, output size).

    Tunable attributes (defaults set in __init__, overridable per run via
    `settings`):
    - max_call_depth: nested user function calls allowed before CALL_DEPTH
    - max_output_chars: total printed characters allowed before OUTPUT_LIMIT
    - timeout_s: wall-clock limit for runs executed in a subprocess
    """

    def __init__(self):
        self.max_call_depth = 100
        self.max_output_chars = 100_000
        self.timeout_s = 2.0
        self._reset()

    def _reset(self) -> None:
        self.scope: Scope = {}
        self.functions: Dict[str, FunctionDefinition] = {}
        self.output: List[str] = []
        self.warnings: List[str] = []
        self._call_depth = 0
        self._output_chars = 0
        # text written by print(..., end=...) that has not ended its line yet
        self._pending = ""

    # --- Public API ------------------------------------------------------
    def run(self, code: str) -> str:
        """Run `code` and return its output, or `"Error: <message>"` on failure."""
        result = self.execute(code)
        if result["errors"]:
            return f"Error: {result['errors']['message']}"
        return result["output"]

    def execute(self, code: str, settings: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Run `code` and return a structured result.

        Shape: {"output", "warnings", "variables", "errors"}. `errors` is None
        on success, otherwise {"code", "message"}; output produced before a
        failure is discarded.
        """
        settings_local: Dict[str, Any] = settings or {}
        if settings_local.get("use_subprocess"):
            return self._maybe_run_in_subprocess(settings_local, code)

        self._apply_settings(settings_local)
        self._reset()
        try:
            self._execute_block(code.splitlines(), self.scope)
            if self._pending:
                self._emit(self._pending)
            # rendering the scope can fail too (e.g. ints too long for str())
            return {
                "output": "\n".join(self.output),
                "warnings": list(self.warnings),
                "variables": describe_scope(self.scope),
                "errors": None,
            }
        except InterpreterError as e:
            logger.warning("Program failed (%s): %s", e.code, e)
            return self._failure(e.code, str(e))
        except RecursionError:
            logger.warning("Program exceeded the host recursion limit")
            return self._failure("CALL_DEPTH", "Maximum recursion depth exceeded")
        except Exception as e:
            logger.warning("Program failed unexpectedly: %s", e, exc_info=True)
            return self._failure("RUNTIME_ERROR", str(e))

    # --- Run helpers -----------------------------------------------------
    def _apply_settings(self, settings: Dict[str, Any]) -> None:
        self.max_call_depth = int(settings.get("max_call_depth", self.max_call_depth))
        self.max_output_chars = int(settings.get("max_output_chars", self.max_output_chars))
        self.timeout_s = float(settings.get("timeout_s", self.timeout_s))

    def _failure(self, code: str, message: str) -> Dict[str, Any]:
        return {
            "output": "",
            "warnings": list(self.warnings),
            "variables": {},
            "errors": {"code": code, "message": message},
        }

    def _maybe_run_in_subprocess(self, settings: Dict[str, Any], code: str) -> Dict[str, Any]:
        # Forward everything but the subprocess switch so the worker runs in-process.
        forwarded = {k: v for k, v in settings.items() if k != "use_subprocess"}
        timeout_s = float(forwarded.get("timeout_s", self.timeout_s))
        try:
            rc, out, err = subprocess_runner.run_code_in_subprocess(
                code, timeout_s=timeout_s, settings=forwarded
            )
        except Exception as e:
            return self._failure("SUBPROCESS_ERROR", str(e))
        if rc == -1:
            return self._failure("TIMEOUT", "Time limit exceeded")
        if rc != 0:
            return self._failure("SUBPROCESS_FAILED", err.strip() or f"worker exited with {rc}")
        try:
            return json.loads(out)
        except json.JSONDecodeError:
            return self._failure("SUBPROCESS_FAILED", "Malformed worker response")

    def _emit(self, text: str) -> None:
        self._output_chars += len(text)
        if self._output_chars > self.max_output_chars:
            raise InterpreterError("Output length limit reached", code="OUTPUT_LIMIT")
        self.output.append(text)

    def _write(self, text: str) -> None:
        """Write `text` the way print does: every newline completes an output line."""
        *lines, self._pending = (self._pending + text).split("\n")
        for line in lines:
            self._emit(line)

    # --- Scanner ---------------------------------------------------------
    def _execute_block(self, lines: List[str], scope: Scope) -> bool:
        """Execute `lines` with `scope` active.

        Returns True when a `return` statement halted the block.
        """
        # indentation level -> whether a branch of the open if/elif/else chain ran
        branches: Dict[int, bool] = {}
        i = 0
        while i < len(lines):
            line = strip_comment(lines[i]).strip()
            if not line:
                i += 1
                continue
            indent = get_indentation(lines[i])
            i, halted = self._dispatch_statement(lines, i, line, indent, scope, branches)
            if halted:
                return True
            i += 1
        return False

    def _dispatch_statement(
        self,
        lines: List[str],
        i: int,
        line: str,
        indent: int,
        scope: Scope,
        branches: Dict[int, bool],
    ) -> Tuple[int, bool]:
        """Dispatch the statement at index `i`.

        Returns (index_of_last_consumed_line, halted_by_return).
        """
        is_else = bool(_ELSE_RE.match(line))
        is_elif = line.startswith("elif ")
        for level in [lvl for lvl in branches if lvl > indent or (lvl == indent and not (is_else or is_elif))]:
            del branches[level]

        if line.startswith("print("):
            self._handle_print(line, scope)
            return i, False
        if line.startswith("def "):
            return self._handle_def(lines, i, line, indent, scope), False
        match = _ASSIGN_RE.match(line)
        if match:
            self._handle_assignment(match.group(1), match.group(2), scope)
            return i, False
        if line.startswith("if "):
            return self._handle_if(lines, i, line, indent, scope, branches), False
        if is_else:
            return self._handle_else(lines, i, indent, branches), False
        if is_elif:
            return self._handle_elif(lines, i, line, indent, scope, branches), False
        if line.startswith("for "):
            return self._handle_for(lines, i, line, indent, scope)
        if line.startswith("while "):
            return self._handle_while(lines, i, line, indent, scope)
        if _RETURN_RE.match(line):
            if self._call_depth == 0:
                raise InterpreterError("'return' outside function", code="SYNTAX_ERROR")
            return i, True
        match = _CALL_RE.match(line)
        if match:
            self._handle_call(match.group(1), match.group(2), scope)
            return i, False
        logger.debug("Ignoring unsupported statement: %s", line)
        return i, False

    # --- Statement handlers ----------------------------------------------
    def _handle_print(self, line: str, scope: Scope) -> None:
        match = _PRINT_RE.match(line)
        if not match:
            raise InterpreterError("Expected ')' to close print(", code="SYNTAX_ERROR")
        text, end = render_print_call(match.group(1), scope)
        self._write(text + end)

    def _handle_assignment(self, name: str, expr: str, scope: Scope) -> None:
        result = evaluate_expression(expr, scope)
        if result.fallback:
            logger.debug("Storing unevaluated text for %s", name)
        scope[name] = result.value

    def _handle_def(self, lines: List[str], i: int, line: str, indent: int, scope: Scope) -> int:
        match = _DEF_RE.match(line)
        if not match:
            raise InterpreterError(f"Invalid function definition: {line}", code="SYNTAX_ERROR")
        name, raw_params = match.groups()
        params = []
        for part in raw_params.split(","):
            param = _PARAM_RE.match(part)
            if param:
                params.append(param.group(1))
        end = skip_block(lines, i, indent)
        body = [raw for raw in lines[i + 1 : end + 1] if strip_comment(raw).strip()]
        self.functions[name] = FunctionDefinition(name, params, body, snapshot(scope))
        scope[name] = FunctionRef(name)
        return end

    def _handle_if(
        self, lines: List[str], i: int, line: str, indent: int, scope: Scope, branches: Dict[int, bool]
    ) -> int:
        condition = _block_header(line, "if")
        if condition is None:
            logger.debug("Ignoring compound statement: %s", line)
            return i
        if evaluate_condition(condition, scope):
            branches[indent] = True
            return i
        branches[indent] = False
        return skip_block(lines, i, indent)

    def _handle_elif(
        self, lines: List[str], i: int, line: str, indent: int, scope: Scope, branches: Dict[int, bool]
    ) -> int:
        condition = _block_header(line, "elif")
        if condition is None:
            logger.debug("Ignoring compound statement: %s", line)
            return i
        taken = branches.get(indent)
        if taken is None:
            raise InterpreterError("'elif' without matching 'if'", code="SYNTAX_ERROR")
        if not taken and evaluate_condition(condition, scope):
            branches[indent] = True
            return i
        return skip_block(lines, i, indent)

    def _handle_else(self, lines: List[str], i: int, indent: int, branches: Dict[int, bool]) -> int:
        taken = branches.get(indent)
        if taken is None:
            raise InterpreterError("'else' without matching 'if'", code="SYNTAX_ERROR")
        if taken:
            return skip_block(lines, i, indent)
        branches[indent] = True
        return i

    def _handle_for(self, lines: List[str], i: int, line: str, indent: int, scope: Scope) -> Tuple[int, bool]:
        header = _block_header(line, "for")
        if header is None:
            logger.debug("Ignoring compound statement: %s", line)
            return i, False
        match = _FOR_RE.match(header)
        if not match:
            raise InterpreterError("Use: for <name> in <iterable>:", code="SYNTAX_ERROR")
        name, iterable_expr = match.groups()
        result = evaluate_expression(iterable_expr, scope)
        if result.fallback:
            raise InterpreterError(f"Cannot iterate over '{iterable_expr}'")
        if not isinstance(result.value, (list, tuple, str)):
            raise InterpreterError(f"'{type_of(result.value).value}' object is not iterable")
        end = skip_block(lines, i, indent)
        body = lines[i + 1 : end + 1]
        for item in list(result.value):
            scope[name] = item
            if self._execute_block(body, scope):
                return end, True
        return end, False

    def _handle_while(self, lines: List[str], i: int, line: str, indent: int, scope: Scope) -> Tuple[int, bool]:
        condition = _block_header(line, "while")
        if condition is None:
            logger.debug("Ignoring compound statement: %s", line)
            return i, False
        end = skip_block(lines, i, indent)
        body = lines[i + 1 : end + 1]
        iterations = 0
        while evaluate_condition(condition, scope):
            if iterations >= WHILE_ITERATION_CAP:
                self.warnings.append(WHILE_CAP_WARNING)
                self._write(WHILE_CAP_WARNING + "\n")
                break
            if self._execute_block(body, scope):
                return end, True
            iterations += 1
        return end, False

    def _handle_call(self, name: str, raw_args: str, scope: Scope) -> None:
        definition = self.functions.get(name)
        if definition is None:
            logger.debug("Ignoring call to unknown function %s", name)
            return
        # arguments are split naively on commas, like list literals
        args = [evaluate_expression(arg, scope).value for arg in raw_args.split(",")] if raw_args.strip() else []
        call_scope = snapshot(definition.scope)
        for index, param in enumerate(definition.params):
            call_scope[param] = args[index] if index < len(args) else None
        if self._call_depth >= self.max_call_depth:
            raise InterpreterError(f"Call depth limit exceeded (max {self.max_call_depth})", code="CALL_DEPTH")
        self._call_depth += 1
        try:
            # the value of a `return` statement is not propagated to the caller
            self._execute_block(definition.body, call_scope)
        finally:
            self._call_depth -= 1


def interpret_python(code: str) -> str:
    """Run `code` with a fresh interpreter and return its printed output."""
    return Interpreter().run(code)
