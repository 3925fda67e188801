"""PySim: a small Python-subset interpreter for the learning playground."""

from .expressions import EvalError, Evaluated, InterpreterError, evaluate_expression
from .interpreter import Interpreter, interpret_python

__all__ = [
    "EvalError",
    "Evaluated",
    "Interpreter",
    "InterpreterError",
    "evaluate_expression",
    "interpret_python",
]
