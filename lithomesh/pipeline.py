"""
End-to-end generation: formulas in, mesh out.

Every stage finishes before the next one starts, and a failure anywhere
aborts the whole run; no partial mesh is ever returned.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable, Mapping, Optional

import numpy as np

from lithomesh.config import DEFAULT_BLACK_DEPTH, DEFAULT_WHITE_DEPTH, GenerationSettings
from lithomesh.degeneracy import classify, scan_interior
from lithomesh.errors import InvalidParameterError
from lithomesh.expression import DEFAULT_VARIABLES, Formula, parse
from lithomesh.field import generate, sample_indices
from lithomesh.lithophane import build_lithophane, depth_map
from lithomesh.mesh import Mesh, triangulate

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)

# Per-pixel variables available to lithophane formulas
SAMPLE_VARIABLE = "s"
DEPTH_VARIABLE = "d"


def parse_formulas(
    x_text: str, y_text: str, z_text: str, variables: Iterable[str] = DEFAULT_VARIABLES
) -> tuple[Formula, Formula, Formula]:
    """Parse all three formulas up front so syntax errors surface before any grid work."""
    variables = tuple(variables)
    return parse(x_text, variables), parse(y_text, variables), parse(z_text, variables)


def generate_mesh(
    x_text: str,
    y_text: str,
    z_text: str,
    width: int,
    height: int,
    settings: Optional[GenerationSettings] = None,
    extra: Optional[Mapping[str, npt.ArrayLike]] = None,
) -> Mesh:
    """
    Evaluate the formulas over a width x height grid and triangulate the result.

    Args:
        x_text, y_text, z_text: Formulas over x, y, w, h and the ``extra`` names.
        width, height: Grid dimensions.
        settings: Precision, tolerance, step, winding and worker count.
        extra: Additional per-cell variables, arrays of shape (height, width).

    Raises:
        ParseError, InvalidParameterError, GenerationError, TriangulationError
    """
    settings = settings or GenerationSettings()
    extra = dict(extra or {})
    formulas = parse_formulas(x_text, y_text, z_text, DEFAULT_VARIABLES + tuple(extra))

    field = generate(
        *formulas,
        width=width,
        height=height,
        precision=settings.precision,
        step=settings.step,
        extra=extra,
        workers=settings.workers,
    )

    reports = classify(field, settings.tolerance)
    for report in scan_interior(field, settings.tolerance):
        logger.warning(
            f"Interior {report.label} is {report.classification.value}; "
            "interior collapse is not resolved and may leave degenerate triangles"
        )

    mesh = triangulate(field, reports, settings.winding)

    coincident = mesh.find_coincident_vertices(settings.tolerance)
    if len(coincident):
        logger.warning(
            f"{len(coincident)} pairs of distinct vertices coincide (e.g. a seam); "
            "they are kept as separate surface points"
        )
    return mesh


def generate_lithophane(
    x_text: str,
    y_text: str,
    z_text: str,
    samples: npt.ArrayLike,
    settings: Optional[GenerationSettings] = None,
    white_depth: float = DEFAULT_WHITE_DEPTH,
    black_depth: float = DEFAULT_BLACK_DEPTH,
    surface_only: bool = False,
) -> Mesh:
    """
    Generate a lithophane from brightness samples.

    The grid takes the size of ``samples``. Formulas may use ``s`` (brightness,
    1 = white) and ``d`` (depth from white_depth/black_depth) besides x, y, w, h.
    Unless ``surface_only`` is set, the surface is thickened into a solid whose
    front sits ``d`` away from it along the vertex normals.
    """
    settings = settings or GenerationSettings()
    samples = np.asarray(samples, dtype=np.float64)
    if samples.ndim != 2:
        raise InvalidParameterError(f"Samples must be a 2D array, got shape {samples.shape}")
    height, width = samples.shape
    depths = depth_map(samples, white_depth, black_depth)

    mesh = generate_mesh(
        x_text,
        y_text,
        z_text,
        width,
        height,
        settings,
        extra={SAMPLE_VARIABLE: samples, DEPTH_VARIABLE: depths},
    )
    if surface_only:
        return mesh

    rows = sample_indices(height, settings.step)
    columns = sample_indices(width, settings.step)
    return build_lithophane(mesh, depths[np.ix_(rows, columns)])
