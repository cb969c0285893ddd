"""
Formula language for computed columns.

    from formula import evaluate_formula

    evaluate_formula("IF(amount > 1000, 'high', 'low')", {"amount": 1500})   # 'high'
    evaluate_formula("income - expense", {"income": 500, "expense": 200})    # 300
"""

from formula import functions  # noqa: F401  (registers the built-in functions)
from formula.evaluator import check_formula, column_references, evaluate_formula
from formula.expr import (
    FUNCTIONS,
    BinOp,
    Call,
    Compare,
    Const,
    EvalContext,
    Expr,
    Field,
    FormulaError,
    FunctionSpec,
    UnaryOp,
    from_json,
    register_function,
)
from formula.parser import FormulaSyntaxError, parse_formula

__all__ = [
    "evaluate_formula",
    "column_references",
    "check_formula",
    "parse_formula",
    "register_function",
    "from_json",
    "FUNCTIONS",
    "FunctionSpec",
    "EvalContext",
    "Expr",
    "Const",
    "Field",
    "BinOp",
    "UnaryOp",
    "Compare",
    "Call",
    "FormulaError",
    "FormulaSyntaxError",
]
