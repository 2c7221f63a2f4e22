"""
Lithophane solids.

The surface mesh becomes the back of the solid. A copy of it, pushed out
along the vertex normals by a per-pixel depth (dark pixels are thicker), is
the front. Side walls join the two along every boundary edge that was not
collapsed into a pole.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np

from lithomesh.errors import InvalidParameterError
from lithomesh.field import Edge
from lithomesh.mesh import Mesh

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)


def depth_map(samples: npt.ArrayLike, white_depth: float, black_depth: float) -> npt.NDArray[np.float64]:
    """Map brightness in [0, 1] to depth: 1 (white) -> white_depth, 0 (black) -> black_depth."""
    if white_depth < 0 or black_depth < 0:
        raise InvalidParameterError("Depths must not be negative")
    samples = np.clip(np.asarray(samples, dtype=np.float64), 0.0, 1.0)
    return white_depth + (1.0 - samples) * (black_depth - white_depth)


def vertex_values(mesh: Mesh, values: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """
    Average per-cell ``values`` onto the mesh vertices.

    ``values`` has the shape of ``mesh.cell_index``; a pole gets the mean of
    all the cells merged into it.
    """
    values = np.asarray(values, dtype=np.float64)
    if values.shape != mesh.cell_index.shape:
        raise InvalidParameterError(
            f"Values have shape {values.shape}, expected {mesh.cell_index.shape}"
        )
    idx = mesh.cell_index.ravel()
    n = len(mesh.vertices)
    sums = np.bincount(idx, weights=values.ravel(), minlength=n)
    counts = np.bincount(idx, minlength=n)
    return sums / np.maximum(counts, 1)


def _edge_sequence(cell_index: np.ndarray, edge: Edge) -> np.ndarray:
    if edge is Edge.TOP:
        return cell_index[0, :]
    if edge is Edge.BOTTOM:
        return cell_index[-1, :]
    if edge is Edge.LEFT:
        return cell_index[:, 0]
    return cell_index[:, -1]


def _wall_faces(mesh: Mesh, offset: int) -> list[tuple[int, int, int]]:
    """Two triangles per boundary segment joining back vertex i to front vertex i + offset."""
    directed = set()
    for a, b, c in mesh.faces.tolist():
        directed.update(((a, b), (b, c), (c, a)))

    faces = []
    seen = set()
    for edge in Edge:
        if edge in mesh.poles:
            continue
        seq = _edge_sequence(mesh.cell_index, edge)
        for i, j in zip(seq[:-1], seq[1:]):
            i, j = int(i), int(j)
            if i == j or (i, j) in seen or (j, i) in seen:
                continue
            seen.add((i, j))
            # Walk the wall against the surface so the solid stays consistently wound
            if (j, i) in directed:
                i, j = j, i
            elif (i, j) not in directed:
                continue
            faces.append((j + offset, i + offset, i))
            faces.append((j + offset, i, j))
    return faces


def build_lithophane(mesh: Mesh, depths: npt.ArrayLike) -> Mesh:
    """
    Build a lithophane solid from a surface mesh.

    Args:
        mesh: The triangulated surface (becomes the back).
        depths: Per-cell depth with the shape of ``mesh.cell_index``.
    """
    n = len(mesh.vertices)
    per_vertex = vertex_values(mesh, depths)
    normals = np.asarray(mesh.to_trimesh().vertex_normals, dtype=np.float64)

    back = np.asarray(mesh.vertices, dtype=np.float64)
    front = back + normals * per_vertex[:, np.newaxis]
    vertices = np.vstack([back, front]).astype(mesh.precision.dtype)

    back_faces = mesh.faces[:, [0, 2, 1]]
    front_faces = mesh.faces + n
    walls = np.array(_wall_faces(mesh, n), dtype=np.int64).reshape(-1, 3)
    faces = np.vstack([back_faces, front_faces, walls])

    logger.info(
        f"Lithophane: {len(vertices)} vertices, {len(faces)} triangles "
        f"({len(walls)} wall triangles)"
    )
    return Mesh(
        vertices=vertices,
        faces=faces,
        cell_index=mesh.cell_index + n,
        poles={edge: index + n for edge, index in mesh.poles.items()},
        precision=mesh.precision,
    )
