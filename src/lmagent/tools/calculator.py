"""Calculator tool: safe evaluation of arithmetic expressions."""

import ast
import math
import operator
from typing import (
    Any,
    Callable,
    Dict,
)

from lmagent.tools import (
    ToolRegistry,
    define_tool,
)

_BINARY_OPS: Dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}

_UNARY_OPS: Dict[type, Callable[[Any], Any]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}

_FUNCTIONS: Dict[str, Callable[..., Any]] = {
    "abs": abs,
    "ceil": math.ceil,
    "floor": math.floor,
    "round": round,
    "sqrt": math.sqrt,
    "pow": math.pow,
    "sin": math.sin,
    "cos": math.cos,
    "tan": math.tan,
    "log": math.log,
    "log10": math.log10,
    "exp": math.exp,
    "min": min,
    "max": max,
}

_CONSTANTS: Dict[str, float] = {"PI": math.pi, "E": math.e}

_MAX_EXPONENT = 1000


def _eval_node(node: ast.AST) -> Any:
    if isinstance(node, ast.Expression):
        return _eval_node(node.body)
    if isinstance(node, ast.Constant) and type(node.value) in (int, float):
        return node.value
    if isinstance(node, ast.Name) and node.id in _CONSTANTS:
        return _CONSTANTS[node.id]
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPS:
        left, right = _eval_node(node.left), _eval_node(node.right)
        if isinstance(node.op, ast.Pow) and abs(right) > _MAX_EXPONENT:
            raise ValueError("exponent too large")
        return _BINARY_OPS[type(node.op)](left, right)
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_eval_node(node.operand))
    if (
        isinstance(node, ast.Call)
        and isinstance(node.func, ast.Name)
        and node.func.id in _FUNCTIONS
        and not node.keywords
    ):
        return _FUNCTIONS[node.func.id](*(_eval_node(arg) for arg in node.args))
    raise ValueError("Expression contains disallowed patterns")


def safe_eval(expression: str) -> float | int:
    """
    Evaluate *expression* using only arithmetic operators, a fixed set of math functions and the
    constants ``PI`` and ``E``.  ``^`` is accepted as exponentiation.

    Raises
    ------
    ValueError
        If the expression is not allowed, fails to evaluate, or does not produce a finite number.
    """
    try:
        tree = ast.parse(expression.replace("^", "**"), mode="eval")
        result = _eval_node(tree)
    except (SyntaxError, ValueError, TypeError, ZeroDivisionError, OverflowError) as exc:
        raise ValueError(f"Calculation error: {exc}") from exc

    if isinstance(result, bool) or not isinstance(result, (int, float)):
        raise ValueError("Calculation error: Result is not a valid number")
    if not math.isfinite(result):
        raise ValueError("Calculation error: Result is not a valid number")
    return result


def format_number(value: float | int) -> str:
    """Integers as-is, floats with up to 10 decimals and no trailing zeros."""
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.10f}".rstrip("0").rstrip(".")


def calculate(args: Dict[str, Any]) -> Dict[str, Any]:
    """Handler for the ``calculator`` tool."""
    expression = args.get("expression")
    if not expression or not isinstance(expression, str):
        raise ValueError("Expression is required and must be a string")

    result = safe_eval(expression)
    return {"expression": expression, "result": result, "formatted": format_number(result)}


def register_calculator_tool(registry: ToolRegistry | None = None) -> None:
    """Register the calculator on *registry* (default registry when omitted)."""
    define_tool(
        "calculator",
        "Evaluate mathematical expressions. Supports basic operations (+, -, *, /, %, ^) and "
        "common math functions (sqrt, sin, cos, tan, log, abs, round, floor, ceil, min, max, "
        "pow). Constants PI and E are available.",
        {
            "expression": {
                "type": "string",
                "description": "The mathematical expression to evaluate. "
                "Example: '2 + 2', 'sqrt(16)', 'sin(PI/2)', 'pow(2, 8)'",
                "required": True,
            },
        },
        calculate,
        registry=registry,
        category="utility",
    )
