"""
Vertex field generation.

Evaluates the X, Y and Z formulas over a w x h grid and stores the result as
an array of shape (rows, cols, 3). Grid coordinates follow the image
convention: x grows to the right, y grows downward, (0, 0) is the top left.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from functools import partial
from multiprocessing import Pool
from typing import TYPE_CHECKING, Mapping, Optional

import numpy as np

from lithomesh.errors import EvalError, GenerationError, InvalidParameterError
from lithomesh.expression import DEFAULT_VARIABLES, Formula, evaluate_array
from lithomesh.precision import Precision

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)

AXES = ("X", "Y", "Z")


class Edge(Enum):
    """The four boundary lines of a grid."""
    TOP = "top"
    BOTTOM = "bottom"
    LEFT = "left"
    RIGHT = "right"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class VertexField:
    """
    A finished grid of vertex positions.

    Attributes:
        positions: Array of shape (rows, cols, 3) in the precision's dtype.
        width: Full grid width w the formulas were bound with.
        height: Full grid height h the formulas were bound with.
        precision: Precision used for evaluation and storage.
        columns: Grid x index of every sampled column.
        rows: Grid y index of every sampled row.
    """
    positions: npt.NDArray[np.floating]
    width: int
    height: int
    precision: Precision
    columns: npt.NDArray[np.int64]
    rows: npt.NDArray[np.int64]

    @property
    def shape(self) -> tuple[int, int]:
        """(rows, cols) of the sampled grid."""
        return self.positions.shape[0], self.positions.shape[1]

    def edge_cells(self, edge: Edge) -> list[tuple[int, int]]:
        """(row, col) array indices along ``edge``, left to right or top to bottom."""
        n_rows, n_cols = self.shape
        if edge is Edge.TOP:
            return [(0, c) for c in range(n_cols)]
        if edge is Edge.BOTTOM:
            return [(n_rows - 1, c) for c in range(n_cols)]
        if edge is Edge.LEFT:
            return [(r, 0) for r in range(n_rows)]
        return [(r, n_cols - 1) for r in range(n_rows)]

    def edge(self, edge: Edge) -> npt.NDArray[np.floating]:
        """Positions along ``edge`` as an (n, 3) array."""
        if edge is Edge.TOP:
            return self.positions[0, :, :]
        if edge is Edge.BOTTOM:
            return self.positions[-1, :, :]
        if edge is Edge.LEFT:
            return self.positions[:, 0, :]
        return self.positions[:, -1, :]

    def grid_coordinate(self, row: int, col: int) -> tuple[int, int]:
        """Grid (x, y) of the sample stored at array index (row, col)."""
        return int(self.columns[col]), int(self.rows[row])


def sample_indices(length: int, step: int) -> npt.NDArray[np.int64]:
    """
    Indices 0, step, 2*step, ... below ``length``, always ending on length - 1.

    For length=15, step=4 this gives 0, 4, 8, 12, 14.
    """
    indices = np.arange(0, length, step, dtype=np.int64)
    if indices[-1] != length - 1:
        indices = np.append(indices, length - 1)
    return indices


def _evaluate_rows(
    formulas: tuple[Formula, Formula, Formula],
    columns: npt.NDArray[np.int64],
    width: int,
    height: int,
    precision: Precision,
    chunk: tuple[npt.NDArray[np.int64], Mapping[str, np.ndarray]],
) -> np.ndarray:
    """Evaluate all three axes for a block of rows. Runs in worker processes too."""
    rows, extra = chunk
    shape = (len(rows), len(columns))
    bindings = {
        "x": columns[np.newaxis, :],
        "y": rows[:, np.newaxis],
        "w": width,
        "h": height,
        **extra,
    }
    block = np.empty(shape + (3,), dtype=precision.dtype)
    for axis_index, (axis, formula) in enumerate(zip(AXES, formulas)):
        try:
            block[:, :, axis_index] = evaluate_array(formula, bindings, precision, shape=shape)
        except EvalError as e:
            r, c = e.index
            coordinate = (int(columns[c]), int(rows[r]))
            raise GenerationError(
                axis, coordinate, EvalError(e.reason, formula.text, coordinate, axis)
            ) from None
    return block


def generate(
    formula_x: Formula,
    formula_y: Formula,
    formula_z: Formula,
    width: int,
    height: int,
    precision: Precision = Precision.DOUBLE,
    step: int = 1,
    extra: Optional[Mapping[str, "npt.ArrayLike"]] = None,
    workers: int = 1,
) -> VertexField:
    """
    Evaluate the three formulas at every grid coordinate.

    Args:
        formula_x, formula_y, formula_z: Parsed formulas for each axis.
        width, height: Grid dimensions, both at least 1.
        precision: Width used for evaluation and for the stored positions.
        step: Sample every ``step``-th column and row (preview resolution).
        extra: Additional per-cell variables as arrays of shape (height, width).
        workers: Number of processes; rows are split into one chunk per worker.

    Raises:
        InvalidParameterError: bad dimensions, step, worker count or extra arrays.
        GenerationError: a formula failed for some coordinate. No partial field
            is ever returned.
    """
    precision = Precision.from_name(precision)
    if width < 1 or height < 1:
        raise InvalidParameterError(f"Grid must be at least 1x1, got {width}x{height}")
    if step < 1:
        raise InvalidParameterError(f"Step must be at least 1, got {step}")
    if workers < 1:
        raise InvalidParameterError(f"Workers must be at least 1, got {workers}")

    columns = sample_indices(width, step)
    rows = sample_indices(height, step)

    shadowed = set(extra or {}) & set(DEFAULT_VARIABLES)
    if shadowed:
        raise InvalidParameterError(f"Extra variables shadow grid variables: {sorted(shadowed)}")

    sampled_extra = {}
    for name, values in (extra or {}).items():
        values = np.asarray(values)
        if values.shape != (height, width):
            raise InvalidParameterError(
                f"Variable '{name}' has shape {values.shape}, expected {(height, width)}"
            )
        sampled_extra[name] = values[np.ix_(rows, columns)]

    formulas = (formula_x, formula_y, formula_z)
    logger.info(
        f"Generating {len(columns)}x{len(rows)} vertex field "
        f"(grid {width}x{height}, step {step}, {precision.value} precision)"
    )

    n_chunks = min(workers, len(rows))
    row_chunks = np.array_split(np.arange(len(rows)), n_chunks)
    chunks = [
        (rows[idx], {name: values[idx, :] for name, values in sampled_extra.items()})
        for idx in row_chunks
    ]
    worker = partial(_evaluate_rows, formulas, columns, width, height, precision)

    if n_chunks == 1:
        blocks = [worker(chunks[0])]
    else:
        logger.debug(f"Evaluating {n_chunks} row chunks in a pool of {workers} workers")
        with Pool(processes=n_chunks) as pool:
            # imap keeps chunk order, so the first error raised is the earliest one
            blocks = list(pool.imap(worker, chunks))

    positions = np.concatenate(blocks, axis=0)
    return VertexField(
        positions=positions,
        width=width,
        height=height,
        precision=precision,
        columns=columns,
        rows=rows,
    )
