"""
Error taxonomy for mesh generation.

Every failure carries enough context (formula text span, grid coordinate,
edge identity) for a caller to build a human readable message. The errors
pickle with their context so they survive a worker pool.
"""
from __future__ import annotations

from typing import Optional, Sequence, Tuple


class LithomeshError(Exception):
    """Base class for all errors raised by lithomesh."""

    kind = "error"


class InvalidParameterError(LithomeshError, ValueError):
    """A generation parameter is out of range (w < 1, step < 1, ...)."""

    kind = "invalid_parameter"


class ParseError(LithomeshError):
    """A formula could not be parsed."""

    kind = "parse"

    def __init__(self, text: str, position: int, message: str) -> None:
        self.text = text
        self.position = position
        self.message = message
        super().__init__(self._render())

    def __reduce__(self):
        return self.__class__, (self.text, self.position, self.message)

    def _render(self) -> str:
        caret = " " * self.position + "^"
        return f"{self.message} at position {self.position}\n  {self.text}\n  {caret}"


class EvalError(LithomeshError):
    """A formula produced a non-finite value for some binding."""

    kind = "eval"

    def __init__(
        self,
        reason: str,
        formula: str = "",
        coordinate: Optional[Tuple[int, int]] = None,
        axis: Optional[str] = None,
        index: Optional[Tuple[int, ...]] = None,
    ) -> None:
        self.reason = reason
        self.formula = formula
        self.coordinate = coordinate
        self.axis = axis
        # Position of the failing element in the evaluated array, if any.
        self.index = index
        super().__init__(self._render())

    def __reduce__(self):
        return self.__class__, (self.reason, self.formula, self.coordinate, self.axis, self.index)

    def _render(self) -> str:
        msg = self.reason
        if self.formula:
            msg += f" in '{self.formula}'"
        if self.coordinate is not None:
            msg += f" at x={self.coordinate[0]}, y={self.coordinate[1]}"
        return msg


class GenerationError(LithomeshError):
    """Vertex field generation failed for one coordinate and axis."""

    kind = "generation"

    def __init__(self, axis: str, coordinate: Tuple[int, int], cause: EvalError) -> None:
        self.axis = axis
        self.coordinate = coordinate
        self.cause = cause
        super().__init__(
            f"{axis} formula failed at x={coordinate[0]}, y={coordinate[1]}: {cause.reason}"
        )

    def __reduce__(self):
        return self.__class__, (self.axis, self.coordinate, self.cause)


class TriangulationError(LithomeshError):
    """A boundary edge cannot be triangulated safely."""

    kind = "triangulation"

    def __init__(self, edge: str, offending: Sequence[int], count: int, detail: str = "") -> None:
        self.edge = edge
        self.offending = list(offending)
        self.count = count
        self.detail = detail
        msg = (
            f"{edge} edge is partially collapsed: {len(self.offending)} of {max(count - 1, 0)} "
            f"neighbouring vertex pairs coincide (at positions {self.offending[:10]}"
            f"{'...' if len(self.offending) > 10 else ''}). "
            "Either every vertex along an edge maps to one point or none do; "
            "check the formulas for this edge."
        )
        if detail:
            msg += f" {detail}"
        super().__init__(msg)

    def __reduce__(self):
        return self.__class__, (self.edge, self.offending, self.count, self.detail)
