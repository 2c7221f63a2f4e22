"""
Detection of collapsed grid lines.

A line (boundary edge or interior row/column) is FullyCollapsed when all of
its positions lie within one tolerance-radius ball around their mean, Normal
when no two neighbouring positions coincide, and PartiallyCollapsed otherwise.
Detection is purely numeric; it knows nothing about the formulas.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

import numpy as np

from lithomesh.errors import InvalidParameterError
from lithomesh.field import Edge, VertexField

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)


class EdgeClass(Enum):
    NORMAL = "normal"
    FULLY_COLLAPSED = "fully_collapsed"
    PARTIALLY_COLLAPSED = "partially_collapsed"


@dataclass(frozen=True)
class EdgeReport:
    """
    Classification of one line of vertices.

    Attributes:
        label: Which line this is ("top", "row y=3", ...).
        classification: The EdgeClass.
        count: Number of positions along the line.
        coincident_pairs: Indices i where positions i and i+1 coincide.
        spread: Largest distance of a position from the line's mean.
    """
    label: str
    classification: EdgeClass
    count: int
    coincident_pairs: tuple[int, ...]
    spread: float

    @property
    def is_collapsed(self) -> bool:
        return self.classification is EdgeClass.FULLY_COLLAPSED


def _check_tolerance(tolerance: float) -> None:
    if not tolerance > 0:
        raise InvalidParameterError(f"Tolerance must be positive, got {tolerance}")


def classify_line(points: npt.ArrayLike, tolerance: float, label: str = "line") -> EdgeReport:
    """Classify an (n, 3) sequence of positions."""
    _check_tolerance(tolerance)
    points = np.asarray(points)
    count = len(points)
    if count < 2:
        return EdgeReport(label, EdgeClass.NORMAL, count, (), 0.0)

    gaps = np.linalg.norm(np.diff(points, axis=0), axis=1)
    coincident = tuple(int(i) for i in np.flatnonzero(gaps <= tolerance))
    # The ball test keeps small steps from adding up along a long line.
    spread = float(np.max(np.linalg.norm(points - points.mean(axis=0), axis=1)))

    if spread <= tolerance:
        classification = EdgeClass.FULLY_COLLAPSED
    elif not coincident:
        classification = EdgeClass.NORMAL
    else:
        classification = EdgeClass.PARTIALLY_COLLAPSED
    return EdgeReport(label, classification, count, coincident, spread)


def classify(field: VertexField, tolerance: float) -> dict[Edge, EdgeReport]:
    """Classify the four boundary edges of a finished field."""
    _check_tolerance(tolerance)
    reports = {edge: classify_line(field.edge(edge), tolerance, str(edge)) for edge in Edge}
    for edge, report in reports.items():
        if report.classification is not EdgeClass.NORMAL:
            logger.info(
                f"{edge} edge is {report.classification.value} "
                f"(spread {report.spread:.3g}, {len(report.coincident_pairs)} coincident pairs)"
            )
    return reports


def scan_interior(field: VertexField, tolerance: float) -> list[EdgeReport]:
    """Report interior rows and columns that are not Normal. Diagnostic only."""
    _check_tolerance(tolerance)
    n_rows, n_cols = field.shape
    found = []
    for r in range(1, n_rows - 1):
        report = classify_line(field.positions[r, :, :], tolerance, f"row y={field.rows[r]}")
        if report.classification is not EdgeClass.NORMAL:
            found.append(report)
    for c in range(1, n_cols - 1):
        report = classify_line(field.positions[:, c, :], tolerance, f"column x={field.columns[c]}")
        if report.classification is not EdgeClass.NORMAL:
            found.append(report)
    return found
