"""
Formula parsing and evaluation.

A formula is parsed once with a lark LALR grammar into an immutable tree of
frozen dataclasses. The tree is evaluated with numpy, either for a single
binding set (``evaluate``) or for whole arrays of bindings at once
(``evaluate_array``), at either single or double precision. The same parsed
formula serves both widths: literals and constants are converted to the
requested dtype only when evaluated.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import reduce
from typing import Callable, Iterable, Mapping, Optional, Union

import numpy as np
from lark import Lark, Transformer, v_args
from lark.exceptions import UnexpectedCharacters, UnexpectedEOF, UnexpectedInput, UnexpectedToken, VisitError

from lithomesh.errors import EvalError, InvalidParameterError, ParseError
from lithomesh.functions import BINARY_OPERATORS, CONSTANTS, FUNCTIONS, OPERATOR_FAILURES, UNARY_OPERATORS
from lithomesh.precision import Precision

logger = logging.getLogger(__name__)

DEFAULT_VARIABLES = ("x", "y", "w", "h")

FORMULA_GRAMMAR = r"""
?start: sum
?sum: product
    | sum "+" product -> add
    | sum "-" product -> sub
?product: unary
    | product "*" unary -> mul
    | product "/" unary -> div
    | product "%" unary -> mod
?unary: power
    | "-" unary -> neg
    | "+" unary -> pos
?power: atom "^" unary -> pow
    | atom
?atom: NUMBER -> number
    | NAME "(" [arguments] ")" -> call
    | NAME -> name
    | "(" sum ")"
arguments: sum ("," sum)*
%import common.NUMBER
%import common.CNAME -> NAME
%import common.WS
%ignore WS
"""

_PARSER = Lark(FORMULA_GRAMMAR, parser="lalr")


# --- Parse tree ---------------------------------------------------------------

@dataclass(frozen=True)
class Number:
    text: str
    position: int


@dataclass(frozen=True)
class Constant:
    name: str
    position: int


@dataclass(frozen=True)
class Variable:
    name: str
    position: int


@dataclass(frozen=True)
class Unary:
    op: str
    operand: "Node"
    position: int


@dataclass(frozen=True)
class Binary:
    op: str
    left: "Node"
    right: "Node"
    position: int


@dataclass(frozen=True)
class Call:
    name: str
    args: tuple
    position: int


Node = Union[Number, Constant, Variable, Unary, Binary, Call]


@dataclass(frozen=True)
class Formula:
    """A parsed formula. Immutable and safe to share between threads and processes."""
    text: str
    root: Node
    variables: frozenset = field(default_factory=frozenset)

    @property
    def free_variables(self) -> frozenset:
        """Names of the variables the formula actually references."""
        return frozenset(_collect_variables(self.root))

    def __str__(self) -> str:
        return self.text


def _collect_variables(node: Node) -> Iterable[str]:
    if isinstance(node, Variable):
        yield node.name
    elif isinstance(node, Unary):
        yield from _collect_variables(node.operand)
    elif isinstance(node, Binary):
        yield from _collect_variables(node.left)
        yield from _collect_variables(node.right)
    elif isinstance(node, Call):
        for arg in node.args:
            yield from _collect_variables(arg)


@v_args(inline=True)
class _TreeBuilder(Transformer):
    """Turns the lark tree into Formula nodes, resolving every name."""

    def __init__(self, text: str, variables: frozenset) -> None:
        super().__init__()
        self.text = text
        self.variables = variables

    def number(self, token):
        return Number(text=str(token), position=token.start_pos)

    def name(self, token):
        name = str(token)
        if name in self.variables:
            return Variable(name=name, position=token.start_pos)
        if name in CONSTANTS:
            return Constant(name=name, position=token.start_pos)
        if name in FUNCTIONS:
            raise ParseError(self.text, token.start_pos, f"function '{name}' needs arguments")
        allowed = ", ".join(sorted(self.variables))
        raise ParseError(self.text, token.start_pos, f"unknown variable '{name}' (allowed: {allowed})")

    def arguments(self, *items):
        return list(items)

    def call(self, token, args):
        name = str(token)
        spec = FUNCTIONS.get(name)
        if spec is None:
            raise ParseError(self.text, token.start_pos, f"unknown function '{name}'")
        args = args or []
        if not spec.accepts(len(args)):
            raise ParseError(
                self.text,
                token.start_pos,
                f"function '{name}' takes {spec.describe_arity()} argument(s), got {len(args)}",
            )
        return Call(name=name, args=tuple(args), position=token.start_pos)

    def neg(self, operand):
        return Unary(op="-", operand=operand, position=operand.position)

    def pos(self, operand):
        return Unary(op="+", operand=operand, position=operand.position)

    def _binary(op):
        def build(self, left, right):
            return Binary(op=op, left=left, right=right, position=left.position)
        return build

    add = _binary("+")
    sub = _binary("-")
    mul = _binary("*")
    div = _binary("/")
    mod = _binary("%")
    pow = _binary("^")
    del _binary


def _check_parentheses(text: str) -> None:
    open_positions = []
    for i, ch in enumerate(text):
        if ch == "(":
            open_positions.append(i)
        elif ch == ")":
            if not open_positions:
                raise ParseError(text, i, "unmatched ')'")
            open_positions.pop()
    if open_positions:
        raise ParseError(text, open_positions[-1], "unmatched '('")


def _reserved_names() -> set:
    return set(CONSTANTS) | set(FUNCTIONS)


def parse(text: str, variables: Iterable[str] = DEFAULT_VARIABLES) -> Formula:
    """
    Parse ``text`` into a Formula.

    Args:
        text: The formula, e.g. ``"w/2 + sin(x/w*pi)*10"``.
        variables: Names the formula may reference. Defaults to x, y, w, h;
            loaders extend it with per-cell values such as ``s``.

    Raises:
        ParseError: malformed syntax, unknown names or wrong argument counts,
            with the offending position.
        InvalidParameterError: a requested variable name shadows a constant
            or a function.
    """
    variables = frozenset(variables)
    clashes = variables & _reserved_names()
    if clashes:
        raise InvalidParameterError(f"Variable names clash with built-ins: {sorted(clashes)}")

    if not text or not text.strip():
        raise ParseError(text or "", 0, "empty formula")

    _check_parentheses(text)

    try:
        tree = _PARSER.parse(text)
    except UnexpectedCharacters as e:
        raise ParseError(text, e.pos_in_stream, f"unexpected character '{text[e.pos_in_stream]}'") from None
    except UnexpectedToken as e:
        if e.token.type == "$END":
            raise ParseError(text, len(text), "unexpected end of formula") from None
        raise ParseError(text, e.token.start_pos, f"unexpected '{e.token}'") from None
    except UnexpectedEOF:
        raise ParseError(text, len(text), "unexpected end of formula") from None
    except UnexpectedInput as e:
        raise ParseError(text, getattr(e, "pos_in_stream", 0) or 0, "invalid formula") from None

    try:
        root = _TreeBuilder(text, variables).transform(tree)
    except VisitError as e:
        if isinstance(e.orig_exc, ParseError):
            raise e.orig_exc from None
        raise

    logger.debug(f"Parsed formula '{text}'")
    return Formula(text=text, root=root, variables=variables)


# --- Evaluation ---------------------------------------------------------------

class _EvalContext:
    """Per-call evaluation state. Never shared between calls."""

    def __init__(self, bindings: Mapping[str, np.ndarray], dtype, shape: tuple) -> None:
        self.bindings = bindings
        self.dtype = dtype
        self.shape = shape
        self.failures: list[tuple[str, np.ndarray]] = []

    def check(self, result, inputs, reason: str):
        """Record where ``result`` became non-finite although its inputs were finite."""
        bad = ~np.isfinite(result)
        if np.any(bad):
            finite_inputs = reduce(np.logical_and, (np.isfinite(i) for i in inputs), True)
            fresh = np.broadcast_to(bad & finite_inputs, self.shape)
            if np.any(fresh):
                self.failures.append((reason, fresh))
        return result


def _eval_number(node: Number, ctx: _EvalContext):
    value = ctx.dtype(node.text)
    return ctx.check(value, (), f"literal {node.text} out of range")


def _eval_constant(node: Constant, ctx: _EvalContext):
    return ctx.dtype(CONSTANTS[node.name])


def _eval_variable(node: Variable, ctx: _EvalContext):
    return ctx.bindings[node.name]


def _eval_unary(node: Unary, ctx: _EvalContext):
    return UNARY_OPERATORS[node.op](_eval(node.operand, ctx))


def _eval_binary(node: Binary, ctx: _EvalContext):
    left = _eval(node.left, ctx)
    right = _eval(node.right, ctx)
    result = BINARY_OPERATORS[node.op](left, right)
    return ctx.check(result, (left, right), OPERATOR_FAILURES[node.op])


def _eval_call(node: Call, ctx: _EvalContext):
    args = [_eval(arg, ctx) for arg in node.args]
    result = FUNCTIONS[node.name].impl(*args)
    return ctx.check(result, args, f"{node.name} domain error")


_EVALUATORS: dict[type, Callable] = {
    Number: _eval_number,
    Constant: _eval_constant,
    Variable: _eval_variable,
    Unary: _eval_unary,
    Binary: _eval_binary,
    Call: _eval_call,
}


def _eval(node: Node, ctx: _EvalContext):
    return _EVALUATORS[type(node)](node, ctx)


def _prepare_bindings(formula: Formula, bindings: Mapping, dtype) -> dict[str, np.ndarray]:
    prepared = {}
    for name in formula.free_variables:
        if name not in bindings:
            raise InvalidParameterError(f"No value bound for variable '{name}' in '{formula.text}'")
        prepared[name] = np.asarray(bindings[name], dtype=dtype)
    return prepared


def evaluate_array(
    formula: Formula,
    bindings: Mapping[str, "np.typing.ArrayLike"],
    precision: Precision = Precision.DOUBLE,
    shape: Optional[tuple] = None,
) -> np.ndarray:
    """
    Evaluate ``formula`` for arrays of bindings in one pass.

    All bound arrays must broadcast to ``shape`` (inferred from the bindings if
    omitted). The result has that shape and the precision's dtype.

    Raises:
        EvalError: some element produced a non-finite value. ``index`` holds
            the first failing element in row-major order.
    """
    precision = Precision.from_name(precision)
    dtype = precision.dtype
    prepared = _prepare_bindings(formula, bindings, dtype)
    if shape is None:
        shape = np.broadcast_shapes(*(np.shape(v) for v in bindings.values())) if bindings else ()

    ctx = _EvalContext(prepared, dtype, tuple(shape))
    with np.errstate(all="ignore"):
        raw = _eval(formula.root, ctx)
    result = np.array(np.broadcast_to(raw, ctx.shape), dtype=dtype)

    bad = ~np.isfinite(result)
    for _, mask in ctx.failures:
        bad |= mask
    if np.any(bad):
        flat = int(np.flatnonzero(bad)[0])
        index = tuple(int(i) for i in np.unravel_index(flat, ctx.shape)) if ctx.shape else ()
        reason = next(
            (reason for reason, mask in ctx.failures if mask[index]),
            "non-finite input",
        )
        raise EvalError(reason, formula.text, index=index)
    return result


def evaluate(
    formula: Formula,
    bindings: Mapping[str, float],
    precision: Precision = Precision.DOUBLE,
):
    """Evaluate ``formula`` for one binding set; returns a numpy scalar of the precision's dtype."""
    result = evaluate_array(formula, bindings, precision, shape=())
    return result[()]
