import dataclasses
import math

import numpy as np
import pytest

from lithomesh.errors import EvalError, InvalidParameterError, ParseError
from lithomesh.expression import evaluate, evaluate_array, parse
from lithomesh.functions import FUNCTIONS, register_function
from lithomesh.precision import Precision


def value(text, **bindings):
    return float(evaluate(parse(text), bindings))


@pytest.mark.parametrize("text, expected", [
    ("1 + 2 * 3", 7.0),
    ("(1 + 2) * 3", 9.0),
    ("10 - 4 - 3", 3.0),
    ("8 / 4 / 2", 1.0),
    ("-2^2", -4.0),
    ("2^3^2", 512.0),
    ("2^-1", 0.5),
    ("--3", 3.0),
    ("+4", 4.0),
    ("7 % 4", 3.0),
    ("1.5e2", 150.0),
    ("atan2(1, 1)", math.pi / 4),
    ("max(1, 5, 3)", 5.0),
    ("min(4)", 4.0),
    ("round(2.5)", 3.0),
    ("round(-2.5)", -3.0),
    ("signum(-3)", -1.0),
    ("ln(e)", 1.0),
    ("cos(pi)", -1.0),
])
def test_arithmetic_and_functions(text, expected):
    assert value(text) == pytest.approx(expected)


def test_variables_are_bound():
    assert value("x * w + y / h", x=2, y=3, w=10, h=6) == pytest.approx(20.5)


def test_sin_x_with_unmatched_parenthesis_reports_its_position():
    with pytest.raises(ParseError) as exc:
        parse("sin(x")
    assert exc.value.position == 3
    assert "unmatched '('" in exc.value.message


@pytest.mark.parametrize("text, position, fragment", [
    ("x )", 2, "unmatched ')'"),
    ("q + x", 0, "unknown variable 'q'"),
    ("x + foo(y)", 4, "unknown function 'foo'"),
    ("atan2(x)", 0, "takes 2 argument"),
    ("sin + 1", 0, "needs arguments"),
    ("x $ y", 2, "unexpected character"),
    ("x y", 2, "unexpected"),
    ("x +", 3, "unexpected end"),
    ("", 0, "empty formula"),
])
def test_parse_errors(text, position, fragment):
    with pytest.raises(ParseError) as exc:
        parse(text)
    assert exc.value.position == position
    assert fragment in exc.value.message


def test_parse_error_renders_caret():
    with pytest.raises(ParseError) as exc:
        parse("x + q")
    assert "\n  x + q\n      ^" in str(exc.value)


def test_extra_variables():
    formula = parse("s * 2 + x", variables=("x", "y", "w", "h", "s"))
    assert formula.free_variables == {"s", "x"}
    assert float(evaluate(formula, {"s": 0.25, "x": 1})) == pytest.approx(1.5)


def test_variables_cannot_shadow_builtins():
    with pytest.raises(InvalidParameterError):
        parse("x", variables=("x", "pi"))


def test_missing_binding():
    with pytest.raises(InvalidParameterError):
        evaluate(parse("x + y"), {"x": 1})


def test_formula_is_immutable():
    formula = parse("x")
    with pytest.raises(dataclasses.FrozenInstanceError):
        formula.text = "y"


def test_constants_follow_requested_precision():
    formula = parse("pi")
    single = evaluate(formula, {}, Precision.SINGLE)
    double = evaluate(formula, {}, Precision.DOUBLE)
    assert isinstance(single, np.float32)
    assert isinstance(double, np.float64)
    assert single == np.float32(np.pi)
    assert double == np.pi


def test_literals_follow_requested_precision():
    assert evaluate(parse("0.1"), {}, Precision.SINGLE) == np.float32("0.1")
    assert evaluate(parse("0.1"), {}, Precision.DOUBLE) == 0.1


def test_single_and_double_agree_within_single_epsilon():
    formula = parse("sin(x/w*pi)*100 + sqrt(y + 1) - cos(x*y)/3")
    x, y = np.meshgrid(np.arange(20), np.arange(15))
    bindings = {"x": x, "y": y, "w": 20}
    single = evaluate_array(formula, bindings, Precision.SINGLE)
    double = evaluate_array(formula, bindings, Precision.DOUBLE)
    eps = np.finfo(np.float32).eps
    assert single.dtype == np.float32
    assert double.dtype == np.float64
    np.testing.assert_allclose(single, double, rtol=64 * eps, atol=64 * eps * 100)


@pytest.mark.parametrize("text, bindings, reason", [
    ("1 / x", {"x": 0}, "division by zero"),
    ("x % 0", {"x": 3}, "modulo by zero"),
    ("acos(x)", {"x": 2}, "acos domain error"),
    ("sqrt(x)", {"x": -1}, "sqrt domain error"),
    ("ln(x)", {"x": 0}, "ln domain error"),
    # the failure is reported even when later operations make the value finite again
    ("atan(1 / x)", {"x": 0}, "division by zero"),
])
def test_domain_errors(text, bindings, reason):
    with pytest.raises(EvalError) as exc:
        evaluate(parse(text), bindings)
    assert exc.value.reason == reason


def test_overflow_at_single_precision_only():
    formula = parse("x * 1e30")
    assert np.isfinite(evaluate(formula, {"x": 1e10}, Precision.DOUBLE))
    with pytest.raises(EvalError):
        evaluate(formula, {"x": 1e10}, Precision.SINGLE)


def test_evaluate_array_reports_first_failing_index():
    formula = parse("1 / (x - 2)")
    with pytest.raises(EvalError) as exc:
        evaluate_array(formula, {"x": np.arange(5)})
    assert exc.value.index == (2,)


def test_evaluate_array_broadcasts_constant_formula():
    result = evaluate_array(parse("2 * pi"), {}, Precision.SINGLE, shape=(2, 3))
    assert result.shape == (2, 3)
    assert result.dtype == np.float32


def test_registered_function_is_usable():
    @register_function("clamp01")
    def clamp01(a):
        return np.clip(a, 0, 1)

    try:
        assert value("clamp01(x)", x=3) == 1.0
    finally:
        FUNCTIONS.pop("clamp01")
    with pytest.raises(ParseError):
        parse("clamp01(x)")
