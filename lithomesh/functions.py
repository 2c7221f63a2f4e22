"""
Lookup tables for the formula language.

Operators, functions and constants are plain registries keyed by name; the
evaluator never dispatches on node types beyond these tables. All
implementations are numpy ufuncs (or thin wrappers around them) so that the
same table serves float32 and float64 arrays.
"""
from __future__ import annotations

from dataclasses import dataclass
from functools import reduce
from typing import Callable, Optional

import numpy as np


@dataclass(frozen=True)
class FunctionSpec:
    name: str
    impl: Callable[..., np.ndarray]
    min_args: int
    max_args: Optional[int]  # None means variadic

    def accepts(self, count: int) -> bool:
        if count < self.min_args:
            return False
        return self.max_args is None or count <= self.max_args

    def describe_arity(self) -> str:
        if self.max_args is None:
            return f"at least {self.min_args}"
        if self.min_args == self.max_args:
            return str(self.min_args)
        return f"{self.min_args} to {self.max_args}"


BINARY_OPERATORS: dict[str, Callable[[np.ndarray, np.ndarray], np.ndarray]] = {
    "+": np.add,
    "-": np.subtract,
    "*": np.multiply,
    "/": np.divide,
    "%": np.fmod,
    "^": np.power,
}

UNARY_OPERATORS: dict[str, Callable[[np.ndarray], np.ndarray]] = {
    "-": np.negative,
    "+": np.positive,
}

# Failure messages for operations that turn finite inputs into nan/inf.
OPERATOR_FAILURES = {
    "/": "division by zero",
    "%": "modulo by zero",
    "^": "invalid power",
    "+": "overflow",
    "-": "overflow",
    "*": "overflow",
}

FUNCTIONS: dict[str, FunctionSpec] = {}

# Constants are kept as decimal text so they are rounded once, at the width
# requested by the evaluation, never at a fixed width ahead of time.
CONSTANTS: dict[str, str] = {
    "pi": "3.14159265358979323846264338327950288",
    "e": "2.71828182845904523536028747135266250",
}


def register_function(
    name: str,
    impl: Optional[Callable[..., np.ndarray]] = None,
    arity: int | tuple[int, Optional[int]] = 1,
):
    """
    Register a function under ``name``.

    Can be called directly (``register_function("sin", np.sin)``) or used as a
    decorator (``@register_function("clamp", arity=3)``). ``arity`` is either an
    exact argument count or a ``(min, max)`` pair where ``max`` may be None.
    """
    min_args, max_args = (arity, arity) if isinstance(arity, int) else arity

    def _register(fn: Callable[..., np.ndarray]) -> Callable[..., np.ndarray]:
        if name in CONSTANTS:
            raise ValueError(f"'{name}' is already registered as a constant")
        FUNCTIONS[name] = FunctionSpec(name=name, impl=fn, min_args=min_args, max_args=max_args)
        return fn

    if impl is not None:
        return _register(impl)
    return _register


def register_constant(name: str, value: str | float) -> None:
    if name in FUNCTIONS:
        raise ValueError(f"'{name}' is already registered as a function")
    CONSTANTS[name] = value if isinstance(value, str) else repr(float(value))


def _round_half_away(a):
    return np.trunc(a + np.copysign(0.5, a))


def _minimum(*args):
    return reduce(np.minimum, args)


def _maximum(*args):
    return reduce(np.maximum, args)


for _name, _impl in (
    ("sqrt", np.sqrt),
    ("exp", np.exp),
    ("ln", np.log),
    ("log", np.log),
    ("log10", np.log10),
    ("abs", np.abs),
    ("sin", np.sin),
    ("cos", np.cos),
    ("tan", np.tan),
    ("asin", np.arcsin),
    ("acos", np.arccos),
    ("atan", np.arctan),
    ("sinh", np.sinh),
    ("cosh", np.cosh),
    ("tanh", np.tanh),
    ("asinh", np.arcsinh),
    ("acosh", np.arccosh),
    ("atanh", np.arctanh),
    ("floor", np.floor),
    ("ceil", np.ceil),
    ("round", _round_half_away),
    ("signum", np.sign),
):
    register_function(_name, _impl)

register_function("atan2", np.arctan2, arity=2)
register_function("min", _minimum, arity=(1, None))
register_function("max", _maximum, arity=(1, None))
