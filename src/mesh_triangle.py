"""
Triangle records for the manifold builder.

Each triangle packs three vertices of 8 floats (position xyz, normal xyz,
uv) into a (3, 8) float32 array, carries a material ID and up to three
adjacency links.  Edge ``i`` joins corner ``i`` to corner ``(i + 1) % 3``.

Adjacency links are ``(neighbor_index, neighbor_edge)`` pairs that address
the neighbor by its index in the owning builder's triangle list.  Links are
only ever written through ``edge_connection`` so that they stay symmetric.
"""
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np

VERTEX_STRIDE = 8
POSITION = slice(0, 3)
NORMAL = slice(3, 6)
UV = slice(6, 8)

EdgeLink = Tuple[int, int]
PositionKey = Tuple[float, float, float]


def edge_corners(edge: int) -> Tuple[int, int]:
    """Corner indices joined by *edge*."""
    return edge, (edge + 1) % 3


def normal_from_triangle(
    pos0: Sequence[float],
    pos1: Sequence[float],
    pos2: Sequence[float],
) -> np.ndarray:
    """Flat face normal of a counter-clockwise triangle.

    Returns the zero vector for degenerate triangles.
    """
    p0 = np.asarray(pos0, dtype=np.float64)
    cross = np.cross(np.asarray(pos1, dtype=np.float64) - p0,
                     np.asarray(pos2, dtype=np.float64) - p0)
    length = float(np.linalg.norm(cross))
    if length == 0.0:
        return np.zeros(3)
    return cross / length


def positions_match(a: PositionKey, b: PositionKey, epsilon: float = 0.0) -> bool:
    if epsilon <= 0.0:
        return a == b
    return (abs(a[0] - b[0]) < epsilon
            and abs(a[1] - b[1]) < epsilon
            and abs(a[2] - b[2]) < epsilon)


def _as_vector(values: Sequence[float], length: int, what: str) -> np.ndarray:
    arr = np.asarray(values, dtype=np.float32).reshape(-1)
    if arr.shape[0] != length:
        raise ValueError(f"{what} must have {length} components, got {arr.shape[0]}")
    return arr


@dataclass
class Triangle:
    """One triangle with packed vertex attributes and adjacency links."""
    vertex_data: np.ndarray = field(
        default_factory=lambda: np.zeros((3, VERTEX_STRIDE), dtype=np.float32)
    )
    material_id: int = 0
    edges: List[Optional[EdgeLink]] = field(default_factory=lambda: [None, None, None])

    @classmethod
    def from_vertices(
        cls,
        vert0: Sequence[float],
        vert1: Sequence[float],
        vert2: Sequence[float],
        material_id: int = 0,
    ) -> "Triangle":
        """Build a triangle from three 8-float vertex tuples."""
        data = np.empty((3, VERTEX_STRIDE), dtype=np.float32)
        data[0] = _as_vector(vert0, VERTEX_STRIDE, "Vertex")
        data[1] = _as_vector(vert1, VERTEX_STRIDE, "Vertex")
        data[2] = _as_vector(vert2, VERTEX_STRIDE, "Vertex")
        return cls(vertex_data=data, material_id=material_id)

    # ── Attribute access ─────────────────────────────────────────────────

    def get_vertex(self, corner: int) -> np.ndarray:
        return self.vertex_data[corner].copy()

    def get_position(self, corner: int) -> np.ndarray:
        return self.vertex_data[corner, POSITION].copy()

    def get_normal(self, corner: int) -> np.ndarray:
        return self.vertex_data[corner, NORMAL].copy()

    def get_uv(self, corner: int) -> np.ndarray:
        return self.vertex_data[corner, UV].copy()

    def set_position(self, corner: int, position: Sequence[float]) -> None:
        self.vertex_data[corner, POSITION] = _as_vector(position, 3, "Position")

    def set_normal(self, corner: int, normal: Sequence[float]) -> None:
        self.vertex_data[corner, NORMAL] = _as_vector(normal, 3, "Normal")

    def set_uv(self, corner: int, uv: Sequence[float]) -> None:
        self.vertex_data[corner, UV] = _as_vector(uv, 2, "UV")

    def position_key(self, corner: int) -> PositionKey:
        """Hashable, exactly comparable position of *corner*."""
        x, y, z = self.vertex_data[corner, POSITION].tolist()
        return (x, y, z)

    def has_normals(self, corner: int) -> bool:
        """True if the corner normal has been set (is not the zero vector)."""
        return bool(np.any(self.vertex_data[corner, NORMAL] != 0.0))

    def face_normal(self) -> np.ndarray:
        d = self.vertex_data
        return normal_from_triangle(d[0, POSITION], d[1, POSITION], d[2, POSITION])

    def surface_area(self) -> float:
        p = self.vertex_data[:, POSITION].astype(np.float64)
        return 0.5 * float(np.linalg.norm(np.cross(p[1] - p[0], p[2] - p[0])))

    # ── Adjacency ────────────────────────────────────────────────────────

    def is_edge_connected(self, edge: int) -> bool:
        return self.edges[edge] is not None

    def get_connected_edge(self, edge: int) -> Optional[EdgeLink]:
        return self.edges[edge]

    @property
    def missing_edges(self) -> List[int]:
        return [e for e in range(3) if self.edges[e] is None]

    def get_matching_edge(
        self,
        corner_a: int,
        corner_b: int,
        other: "Triangle",
        epsilon: float = 0.0,
    ) -> Optional[int]:
        """Find an unconnected edge of *other* with the same endpoints.

        The endpoints of this triangle's ``corner_a``-``corner_b`` edge are
        compared as an unordered pair, so both opposite and identical
        winding match.
        """
        pa = self.position_key(corner_a)
        pb = self.position_key(corner_b)

        for other_edge in range(3):
            if other.edges[other_edge] is not None:
                continue
            oa, ob = edge_corners(other_edge)
            qa = other.position_key(oa)
            qb = other.position_key(ob)
            if ((positions_match(pa, qa, epsilon) and positions_match(pb, qb, epsilon))
                    or (positions_match(pa, qb, epsilon) and positions_match(pb, qa, epsilon))):
                return other_edge

        return None

    # ── Transforms ───────────────────────────────────────────────────────

    def translate(self, offset: np.ndarray) -> None:
        self.vertex_data[:, POSITION] += offset

    def transform(self, matrix: np.ndarray, normal_matrix: Optional[np.ndarray] = None) -> None:
        """Apply a 4x4 affine matrix to positions and a 3x3 matrix to normals."""
        positions = self.vertex_data[:, POSITION].astype(np.float64)
        transformed = positions @ matrix[:3, :3].T + matrix[:3, 3]
        self.vertex_data[:, POSITION] = transformed

        if normal_matrix is None:
            return

        normals = self.vertex_data[:, NORMAL].astype(np.float64) @ normal_matrix.T
        lengths = np.linalg.norm(normals, axis=1)
        nonzero = lengths > 0.0
        normals[nonzero] /= lengths[nonzero, None]
        self.vertex_data[:, NORMAL] = normals
