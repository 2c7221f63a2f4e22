"""
Grid triangulation.

Winding convention: for a grid cell with corners
    a = (x, y)      b = (x + 1, y)
    d = (x, y + 1)  e = (x + 1, y + 1)
(y grows downward, as in the image) the two triangles are (a, d, e) and
(a, e, b). The diagonal always runs from the top-left to the bottom-right
corner of the image, i.e. lower-left to upper-right once the image is shown
upright, and face normals point along dP/dy x dP/dx. ``Winding.OUTWARD``
keeps this order unless the faces point toward the centroid of the mesh,
in which case every face is flipped.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Mapping, Optional

import numpy as np
import trimesh
from scipy.spatial import cKDTree

from lithomesh.degeneracy import EdgeClass, EdgeReport
from lithomesh.errors import InvalidParameterError, TriangulationError
from lithomesh.field import Edge, VertexField
from lithomesh.precision import Precision

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)


class Winding(Enum):
    GRID = "grid"
    REVERSED = "reversed"
    OUTWARD = "outward"

    @classmethod
    def from_name(cls, name: str | Winding) -> Winding:
        if isinstance(name, Winding):
            return name
        try:
            return cls(name.strip().lower())
        except ValueError:
            raise InvalidParameterError(f"Unknown winding '{name}' (expected grid, reversed or outward)") from None


@dataclass
class Mesh:
    """
    Flat vertex and index buffers plus the bookkeeping that produced them.

    Attributes:
        vertices: (n, 3) positions in the run's precision.
        faces: (m, 3) vertex indices, wound as described in this module.
        cell_index: (rows, cols) final vertex index of every sampled grid cell.
        poles: Final vertex index of the pole that replaced each collapsed edge.
        precision: Precision of the vertex buffer.
    """
    vertices: npt.NDArray[np.floating]
    faces: npt.NDArray[np.int64]
    cell_index: npt.NDArray[np.int64]
    poles: dict[Edge, int] = field(default_factory=dict)
    precision: Precision = Precision.DOUBLE

    @property
    def triangle_count(self) -> int:
        return len(self.faces)

    def to_trimesh(self) -> trimesh.Trimesh:
        # process=False keeps our vertex order and never merges vertices behind our back
        return trimesh.Trimesh(vertices=np.asarray(self.vertices), faces=self.faces, process=False)

    def export(self, path: str, file_type: Optional[str] = None) -> None:
        """Write the mesh with trimesh; the format follows the extension unless ``file_type`` is given."""
        self.to_trimesh().export(path, file_type=file_type)
        logger.info(f"Mesh saved to: {path}")

    def face_normals(self) -> npt.NDArray[np.float64]:
        """Unit normals of every face, following the face winding."""
        normals = _cross(self.vertices, self.faces)
        lengths = np.linalg.norm(normals, axis=1, keepdims=True)
        return normals / np.maximum(lengths, np.finfo(np.float64).tiny)

    def find_coincident_vertices(self, tolerance: float) -> npt.NDArray[np.int64]:
        """Pairs (i, j), i < j, of vertices no further apart than ``tolerance``."""
        if len(self.vertices) < 2:
            return np.empty((0, 2), dtype=np.int64)
        pairs = cKDTree(np.asarray(self.vertices, dtype=np.float64)).query_pairs(tolerance, output_type="ndarray")
        pairs = np.sort(np.asarray(pairs, dtype=np.int64).reshape(-1, 2), axis=1)
        return pairs[np.lexsort((pairs[:, 1], pairs[:, 0]))]


def _cross(vertices: np.ndarray, faces: np.ndarray) -> npt.NDArray[np.float64]:
    """Unnormalised face normals (twice the area) in double precision."""
    v = np.asarray(vertices, dtype=np.float64)
    p0, p1, p2 = v[faces[:, 0]], v[faces[:, 1]], v[faces[:, 2]]
    return np.cross(p1 - p0, p2 - p0)


def _pole_groups(field: VertexField, collapsed: list[Edge]) -> list[tuple[list[Edge], set]]:
    """Group collapsed edges that share a grid cell; each group becomes one pole."""
    groups: list[tuple[list[Edge], set]] = []
    for edge in collapsed:
        cells = set(field.edge_cells(edge))
        merged_edges = [edge]
        remaining = []
        for group_edges, group_cells in groups:
            if group_cells & cells:
                merged_edges = group_edges + merged_edges
                cells |= group_cells
            else:
                remaining.append((group_edges, group_cells))
        groups = remaining + [(merged_edges, cells)]
    return groups


def points_outward(vertices: np.ndarray, faces: np.ndarray) -> Optional[bool]:
    """
    Whether the area-weighted face normals point away from the mesh centroid.

    Returns None when the mesh gives no preference (no faces, or a flat sheet).
    """
    if len(faces) == 0:
        return None
    normals = _cross(vertices, faces)
    areas = np.linalg.norm(normals, axis=1)
    if areas.sum() == 0:
        return None
    v = np.asarray(vertices, dtype=np.float64)
    centroids = v[faces].mean(axis=1)
    center = (centroids * areas[:, np.newaxis]).sum(axis=0) / areas.sum()
    score = np.einsum("ij,ij->", normals, centroids - center)
    scale = areas.sum() * np.ptp(v, axis=0).max()
    if abs(score) <= 1e-9 * scale:
        return None
    return bool(score > 0)


def triangulate(
    field: VertexField,
    reports: Mapping[Edge, EdgeReport],
    winding: Winding = Winding.OUTWARD,
) -> Mesh:
    """
    Turn a finished vertex field into a triangle mesh.

    Normal cells give two triangles each. Every FullyCollapsed edge is replaced
    by one pole vertex at the mean of the edge's positions; the quads along it
    then give a single triangle each, which forms the fan around the pole.

    Raises:
        TriangulationError: an edge is PartiallyCollapsed.
    """
    winding = Winding.from_name(winding)
    for edge, report in reports.items():
        if report.classification is EdgeClass.PARTIALLY_COLLAPSED:
            detail = ""
            if len(report.coincident_pairs) == report.count - 1:
                detail = f"The points drift apart along the edge (spread {report.spread:.3g})."
            raise TriangulationError(str(edge), report.coincident_pairs, report.count, detail)

    n_rows, n_cols = field.shape
    dtype = field.precision.dtype
    grid_positions = field.positions.reshape(-1, 3)

    # Vertex arena: one slot per grid cell, pole slots appended after them
    remap = np.arange(n_rows * n_cols, dtype=np.int64).reshape(n_rows, n_cols)
    collapsed = [edge for edge in Edge if edge in reports and reports[edge].is_collapsed]
    pole_positions = []
    pole_slots: dict[Edge, int] = {}
    for group_edges, cells in _pole_groups(field, collapsed):
        slot = n_rows * n_cols + len(pole_positions)
        rows, cols = zip(*sorted(cells))
        pole_positions.append(field.positions[list(rows), list(cols)].mean(axis=0, dtype=dtype))
        remap[list(rows), list(cols)] = slot
        for edge in group_edges:
            pole_slots[edge] = slot
        logger.info(f"Collapsed {', '.join(str(e) for e in group_edges)} edge(s) into one pole vertex")

    a = remap[:-1, :-1]
    b = remap[:-1, 1:]
    d = remap[1:, :-1]
    e = remap[1:, 1:]
    # (rows - 1, cols - 1, 2, 3): cell by cell, (a, d, e) before (a, e, b)
    faces = np.stack([np.stack([a, d, e], axis=-1), np.stack([a, e, b], axis=-1)], axis=-2).reshape(-1, 3)
    # A pole repeats an index; dropping those leaves the fan
    distinct = (faces[:, 0] != faces[:, 1]) & (faces[:, 1] != faces[:, 2]) & (faces[:, 0] != faces[:, 2])
    faces = faces[distinct]

    # Compact the arena: grid cells that were merged into a pole disappear
    arena = np.vstack([grid_positions] + [p[np.newaxis, :] for p in pole_positions]).astype(dtype, copy=False)
    used = np.unique(remap)
    new_index = np.full(len(arena), -1, dtype=np.int64)
    new_index[used] = np.arange(len(used), dtype=np.int64)

    vertices = arena[used]
    faces = new_index[faces]
    cell_index = new_index[remap]
    poles = {edge: int(new_index[slot]) for edge, slot in pole_slots.items()}

    if winding is Winding.REVERSED:
        faces = faces[:, [0, 2, 1]]
    elif winding is Winding.OUTWARD and points_outward(vertices, faces) is False:
        logger.debug("Faces point inward, flipping winding")
        faces = faces[:, [0, 2, 1]]

    logger.info(f"Triangulated {len(vertices)} vertices into {len(faces)} triangles")
    return Mesh(
        vertices=vertices,
        faces=faces,
        cell_index=cell_index,
        poles=poles,
        precision=field.precision,
    )
