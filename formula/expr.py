"""
Expression tree for user-authored column formulas.

Formulas are parsed once (formula.parser) into these nodes and evaluated
against a row's column values:

- eval(ctx)      → Python value (number, string, datetime, bool or None)
- references()   → column names the formula reads
- to_json()      → JSON-compatible dict (formula editor preview, caching)

Function calls dispatch by name through FUNCTIONS, a registry of
FunctionSpec entries populated by formula.functions.
"""

import json
import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from formula.values import compare, to_number

logger = logging.getLogger(__name__)


class FormulaError(Exception):
    """Raised when a formula (or one function call inside it) cannot be evaluated."""


# ---------------------------------------------------------------------------
# Evaluation context
# ---------------------------------------------------------------------------

@dataclass
class EvalContext:
    """Everything a formula can see while evaluating one row.

    values: the row's column values (stored + already-computed columns)
    lookup: callable(table_name) → list of records, used by LOOKUP()
    now:    clock used by TODAY()/NOW()
    """

    values: dict = field(default_factory=dict)
    lookup: Optional[Callable[[str], list]] = None
    now: Callable[[], datetime] = datetime.now


# ---------------------------------------------------------------------------
# Function registry
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FunctionSpec:
    """A named formula function.

    handler(args, ctx) receives evaluated argument values, or the raw
    argument nodes when lazy=True (IF/SWITCH evaluate only the branch they
    take). When the handler fails, or the call has the wrong number of
    arguments, the call evaluates to `fallback` instead of raising.
    """

    name: str
    handler: Callable
    min_args: int = 0
    max_args: Optional[int] = None
    lazy: bool = False
    fallback: Any = None

    def accepts(self, count: int) -> bool:
        if count < self.min_args:
            return False
        return self.max_args is None or count <= self.max_args


FUNCTIONS: dict = {}


def register_function(name: str, handler: Callable, **kwargs) -> FunctionSpec:
    """Add (or replace) a formula function. Names are case-insensitive."""
    spec = FunctionSpec(name=name.upper(), handler=handler, **kwargs)
    FUNCTIONS[spec.name] = spec
    return spec


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------

class Expr(ABC):
    """Abstract expression node. All concrete nodes subclass this."""

    # Value the whole formula degrades to when this node is the root and
    # evaluation fails unexpectedly.
    fallback = 0

    @abstractmethod
    def eval(self, ctx: EvalContext):
        """Evaluate this expression against a row context."""

    @abstractmethod
    def to_json(self) -> dict:
        """Serialize to a JSON-compatible dict."""

    def children(self) -> list:
        return []

    def references(self) -> list:
        """Column names referenced anywhere in this tree, first-seen order."""
        seen = []
        stack = [self]
        while stack:
            node = stack.pop()
            if isinstance(node, Field) and node.name not in seen:
                seen.append(node.name)
            stack.extend(reversed(node.children()))
        return seen

    def __repr__(self):
        return f"{self.__class__.__name__}({self.to_json()})"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _operand(value):
    """Arithmetic operand: missing or non-numeric values count as 0."""
    n = to_number(value)
    return 0 if n is None else n


_ARITHMETIC = {
    "+": lambda a, b: a + b,
    "-": lambda a, b: a - b,
    "*": lambda a, b: a * b,
    "/": lambda a, b: a / b,
}

COMPARISONS = (">=", "<=", "==", "!=", ">", "<")


# ---------------------------------------------------------------------------
# Leaf nodes
# ---------------------------------------------------------------------------

class Const(Expr):
    """A literal number or string."""

    def __init__(self, value):
        self.value = value

    def eval(self, ctx: EvalContext):
        return self.value

    def to_json(self) -> dict:
        return {"type": "Const", "value": self.value}


class Field(Expr):
    """A bare column name.

    Known columns yield their raw value; unknown names evaluate to 0, the
    same result the arithmetic path gives for an unresolvable token.
    """

    def __init__(self, name: str):
        self.name = name

    def eval(self, ctx: EvalContext):
        if self.name in ctx.values:
            return ctx.values[self.name]
        return 0

    def to_json(self) -> dict:
        return {"type": "Field", "name": self.name}


# ---------------------------------------------------------------------------
# Composite nodes
# ---------------------------------------------------------------------------

class BinOp(Expr):
    """Arithmetic: left op right, with op in + - * /.

    Operands are zero-filled, and division by zero or a non-finite result
    gives 0, so arithmetic never fails.
    """

    def __init__(self, op: str, left: Expr, right: Expr):
        if op not in _ARITHMETIC:
            raise ValueError(f"Unknown binary op: {op}")
        self.op = op
        self.left = left
        self.right = right

    def eval(self, ctx: EvalContext):
        l = _operand(self.left.eval(ctx))
        r = _operand(self.right.eval(ctx))
        if self.op == "/" and r == 0:
            logger.debug("Division by zero in formula; yielding 0")
            return 0
        result = _ARITHMETIC[self.op](l, r)
        if isinstance(result, float) and not math.isfinite(result):
            return 0
        return result

    def children(self) -> list:
        return [self.left, self.right]

    def to_json(self) -> dict:
        return {
            "type": "BinOp",
            "op": self.op,
            "left": self.left.to_json(),
            "right": self.right.to_json(),
        }


class UnaryOp(Expr):
    """Unary sign: neg or pos."""

    def __init__(self, op: str, operand: Expr):
        if op not in ("neg", "pos"):
            raise ValueError(f"Unknown unary op: {op}")
        self.op = op
        self.operand = operand

    def eval(self, ctx: EvalContext):
        v = _operand(self.operand.eval(ctx))
        return -v if self.op == "neg" else v

    def children(self) -> list:
        return [self.operand]

    def to_json(self) -> dict:
        return {
            "type": "UnaryOp",
            "op": self.op,
            "operand": self.operand.to_json(),
        }


class Compare(Expr):
    """Comparison: left op right, with op in > < >= <= == !=."""

    fallback = False

    def __init__(self, op: str, left: Expr, right: Expr):
        if op not in COMPARISONS:
            raise ValueError(f"Unknown comparison: {op}")
        self.op = op
        self.left = left
        self.right = right

    def eval(self, ctx: EvalContext):
        return compare(self.left.eval(ctx), self.op, self.right.eval(ctx))

    def children(self) -> list:
        return [self.left, self.right]

    def to_json(self) -> dict:
        return {
            "type": "Compare",
            "op": self.op,
            "left": self.left.to_json(),
            "right": self.right.to_json(),
        }


class Call(Expr):
    """Named function call, dispatched through FUNCTIONS.

    A failing call degrades to its function's fallback value; errors from
    the record store are not formula errors and propagate.
    """

    def __init__(self, name: str, args: list):
        self.name = name.upper()
        self.args = list(args)

    @property
    def fallback(self):
        spec = FUNCTIONS.get(self.name)
        return spec.fallback if spec is not None else None

    def eval(self, ctx: EvalContext):
        spec = FUNCTIONS.get(self.name)
        if spec is None:
            logger.debug("Unknown formula function %s()", self.name)
            return None
        if not spec.accepts(len(self.args)):
            logger.debug("%s() called with %d arguments", self.name, len(self.args))
            return spec.fallback
        try:
            if spec.lazy:
                return spec.handler(self.args, ctx)
            return spec.handler([a.eval(ctx) for a in self.args], ctx)
        except (FormulaError, ValueError, TypeError, ArithmeticError) as exc:
            logger.debug("%s() failed: %s", self.name, exc)
            return spec.fallback

    def children(self) -> list:
        return list(self.args)

    def to_json(self) -> dict:
        return {
            "type": "Call",
            "name": self.name,
            "args": [a.to_json() for a in self.args],
        }


# ---------------------------------------------------------------------------
# Deserialization
# ---------------------------------------------------------------------------

def from_json(data) -> Expr:
    """Deserialize a JSON dict (or string) back to an Expr tree."""
    if isinstance(data, str):
        data = json.loads(data)

    node_type = data["type"]

    if node_type == "Const":
        return Const(data["value"])

    if node_type == "Field":
        return Field(data["name"])

    if node_type == "BinOp":
        return BinOp(data["op"], from_json(data["left"]), from_json(data["right"]))

    if node_type == "UnaryOp":
        return UnaryOp(data["op"], from_json(data["operand"]))

    if node_type == "Compare":
        return Compare(data["op"], from_json(data["left"]), from_json(data["right"]))

    if node_type == "Call":
        return Call(data["name"], [from_json(a) for a in data["args"]])

    raise ValueError(f"Unknown expression type: {node_type}")
