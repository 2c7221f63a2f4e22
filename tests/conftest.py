"""Shared fixtures for the lithomesh tests."""
import os
import tempfile

# The web app creates its output folder at import time; keep it out of the repo
os.environ.setdefault("LITHOMESH_PROCESSED_FOLDER", tempfile.mkdtemp(prefix="lithomesh-"))

import numpy as np
import pytest

from lithomesh.field import VertexField
from lithomesh.precision import Precision

# Unit sphere over a longitude/latitude grid: top and bottom rows are poles,
# left and right columns meet at a seam.
SPHERE = (
    "sin(pi*y/(h-1))*cos(2*pi*x/(w-1))",
    "sin(pi*y/(h-1))*sin(2*pi*x/(w-1))",
    "cos(pi*y/(h-1))",
)

# Cone with its apex on the left column.
CONE = (
    "1 + x*cos(2*pi*y/h)",
    "x*sin(2*pi*y/h)",
    "x",
)

PLANE = ("x", "y", "0")


def make_field(positions, precision=Precision.DOUBLE):
    """Wrap an explicit (rows, cols, 3) array as a VertexField."""
    positions = np.asarray(positions, dtype=precision.dtype)
    rows, cols = positions.shape[:2]
    return VertexField(
        positions=positions,
        width=cols,
        height=rows,
        precision=precision,
        columns=np.arange(cols),
        rows=np.arange(rows),
    )


@pytest.fixture
def plane_field():
    ys, xs = np.mgrid[0:4, 0:5]
    return make_field(np.stack([xs, ys, np.zeros_like(xs)], axis=-1))
