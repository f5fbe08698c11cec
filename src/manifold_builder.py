"""
ManifoldBuilder: accumulates triangles for one solid and finalizes them
into render submeshes plus a welded manifold.

Typical flow:
1. Append triangles (``add_triangle``, ``add_subdiv_quad``, ...).
2. Optionally subdivide, transform, warp, generate UVs.
3. Connect edges (``connect_and_validate`` for whole meshes, or the
   auto-connect helpers for locally generated patches).
4. Optionally generate smooth normals (needs links).
5. ``finalize`` / ``finalize_to_mesh``.

Triangles are addressed by their index in ``builder.triangles``.  Some
operations (``subdivide4``, ``clear``) replace the whole list and bump
``generation``; indices from an older generation are invalid.
"""
import logging
import math
from dataclasses import dataclass
from enum import IntFlag
from typing import Any, Callable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

import edge_connection
from manifold_mesh import DEFAULT_WELD_EPSILON, ManifoldMesh
from mesh_errors import StaleTriangleError
from mesh_finalization import FinalizeResult, finalize
from mesh_subdivision import subdivide4
from mesh_transforms import is_identity_quaternion, normal_matrix, quaternion_matrix, scale_matrix
from mesh_triangle import NORMAL, POSITION, UV, Triangle, normal_from_triangle
from normal_smoothing import SmoothNormalsConfig, smooth_normals
from render_sink import RenderMeshSink

logger = logging.getLogger(__name__)

EdgeList = List[Tuple[int, int]]  # [(triangle index, edge index), ...]

_TAU_INV = 1.0 / (2.0 * math.pi)


class QuadSide(IntFlag):
    """Border sides of a subdivided quad, used as bitmasks."""
    NONE = 0
    BOTTOM = 0b0001
    TOP = 0b0010
    RIGHT = 0b0100
    LEFT = 0b1000


@dataclass
class ManifoldBuilderConfig:
    """Configuration for edge matching and welding."""

    # 0 = exact position equality for auto-connection
    edge_match_epsilon: float = 0.0
    # tolerance when rebuilding a manifold from finished render meshes
    weld_epsilon: float = DEFAULT_WELD_EPSILON


class ManifoldBuilder:
    """Triangle arena for one solid."""

    def __init__(self, config: Optional[ManifoldBuilderConfig] = None):
        if config is None:
            config = ManifoldBuilderConfig()
        self.config = config
        self.triangles: List[Triangle] = []
        self.generation = 0

    def __len__(self) -> int:
        return len(self.triangles)

    @property
    def num_tri(self) -> int:
        return len(self.triangles)

    def get_triangle(self, index: int, generation: Optional[int] = None) -> Triangle:
        """Triangle at *index*, checking that *generation* is current."""
        if generation is not None and generation != self.generation:
            raise StaleTriangleError(
                f"Triangle index {index} is from generation {generation}, "
                f"builder is at generation {self.generation}"
            )
        return self.triangles[index]

    def clear(self) -> None:
        self.triangles = []
        self.generation += 1

    def _replace_triangles(self, triangles: List[Triangle]) -> None:
        self.triangles = triangles
        self.generation += 1

    # ── Appending geometry ───────────────────────────────────────────────

    def _push(self, triangle: Triangle) -> int:
        self.triangles.append(triangle)
        return len(self.triangles) - 1

    def add_triangle(
        self,
        pos0: Sequence[float],
        pos1: Sequence[float],
        pos2: Sequence[float],
        normals: Optional[Sequence[Sequence[float]]] = None,
        uvs: Optional[Sequence[Sequence[float]]] = None,
        material_id: int = 0,
    ) -> int:
        """Append a triangle and return its index.

        When *normals* is omitted, the flat face normal is used for all
        three corners.
        """
        triangle = Triangle(material_id=material_id)
        for corner, pos in enumerate((pos0, pos1, pos2)):
            triangle.set_position(corner, pos)

        if normals is None:
            normal = normal_from_triangle(pos0, pos1, pos2)
            normals = (normal, normal, normal)
        _set_corners(triangle, NORMAL, normals, 3)

        if uvs is not None:
            _set_corners(triangle, UV, uvs, 2)

        return self._push(triangle)

    def add_triangle_no_normals(
        self,
        pos0: Sequence[float],
        pos1: Sequence[float],
        pos2: Sequence[float],
        uvs: Optional[Sequence[Sequence[float]]] = None,
        material_id: int = 0,
    ) -> int:
        """Like ``add_triangle`` but normals stay (0, 0, 0) for smoothing."""
        triangle = Triangle(material_id=material_id)
        for corner, pos in enumerate((pos0, pos1, pos2)):
            triangle.set_position(corner, pos)
        if uvs is not None:
            _set_corners(triangle, UV, uvs, 2)
        return self._push(triangle)

    def add_subdiv_quad(
        self,
        tl_pos: Sequence[float],
        tr_pos: Sequence[float],
        bl_pos: Sequence[float],
        br_pos: Sequence[float],
        material_id: int = 0,
        subdivisions: int = 1,
        uvs: Optional[Sequence[Sequence[float]]] = None,
    ) -> None:
        """Add a quad split into ``subdivisions`` x ``subdivisions`` cells.

        Each cell holds 2 triangles, so 1 subdivision makes 2 triangles and
        2 subdivisions make 8.  Interior edges are connected; border edges
        are left open and nothing is connected to existing triangles.

        Args:
            uvs: Optional (tl, tr, bl, br) UV coordinates.
        """
        if subdivisions < 1:
            raise ValueError(f"subdivisions must be >= 1, got {subdivisions}")

        corners = np.array([tl_pos, tr_pos, bl_pos, br_pos], dtype=np.float64)
        corner_uvs = None if uvs is None else np.array(uvs, dtype=np.float64)

        # bilinear weights, rows top to bottom, columns left to right
        steps = np.arange(subdivisions + 1) / subdivisions
        j1, i1 = np.meshgrid(steps, steps, indexing="ij")
        j0 = 1.0 - j1
        i0 = 1.0 - i1
        weights = np.stack([i0 * j0, i1 * j0, i0 * j1, i1 * j1], axis=-1).reshape(-1, 4)
        positions = weights @ corners
        grid_uvs = None if corner_uvs is None else weights @ corner_uvs

        normal = normal_from_triangle(tl_pos, bl_pos, tr_pos)
        normals = (normal, normal, normal)
        row = subdivisions + 1
        tri_stride = subdivisions * 2
        start = self.num_tri

        for j in range(subdivisions):
            for i in range(subdivisions):
                o00 = j * row + i
                o10 = o00 + 1
                o01 = o00 + row
                o11 = o01 + 1

                tl_uvs = br_uvs = None
                if grid_uvs is not None:
                    tl_uvs = grid_uvs[[o00, o01, o10]]
                    br_uvs = grid_uvs[[o10, o01, o11]]

                tl_tri = self.add_triangle(
                    positions[o00], positions[o01], positions[o10],
                    normals, tl_uvs, material_id,
                )
                br_tri = self.add_triangle(
                    positions[o10], positions[o01], positions[o11],
                    normals, br_uvs, material_id,
                )
                self.connect_edge(tl_tri, 1, br_tri, 0)

        # links across cell borders
        for j in range(subdivisions):
            for i in range(subdivisions):
                tl_tri = start + j * tri_stride + 2 * i
                br_tri = tl_tri + 1
                if j < subdivisions - 1:
                    self.connect_edge(br_tri, 1, tl_tri + tri_stride, 2)
                if i < subdivisions - 1:
                    self.connect_edge(br_tri, 2, br_tri + 1, 0)

    def add_subdiv_quad_with_edges(
        self,
        edge_list: EdgeList,
        connectable_triangles: List[int],
        edge_mask: QuadSide,
        connectable_mask: QuadSide,
        tl_pos: Sequence[float],
        tr_pos: Sequence[float],
        bl_pos: Sequence[float],
        br_pos: Sequence[float],
        material_id: int = 0,
        subdivisions: int = 1,
        uvs: Optional[Sequence[Sequence[float]]] = None,
    ) -> None:
        """``add_subdiv_quad`` that also records border edges and triangles.

        Border edges of the sides in *edge_mask* are appended to
        *edge_list*, and border triangles of the sides in *connectable_mask*
        to *connectable_triangles*, for use with ``auto_connect_edges``.
        """
        if edge_mask & connectable_mask:
            logger.warning(
                "edge_mask and connectable_mask share sides (%s); the lists "
                "are only usable by auto_connect_edges in separate calls",
                QuadSide(edge_mask & connectable_mask),
            )

        offset = self.num_tri
        self.add_subdiv_quad(
            tl_pos, tr_pos, bl_pos, br_pos, material_id, subdivisions, uvs,
        )

        tri_stride = subdivisions * 2
        tri_count = tri_stride * subdivisions
        right_start = offset + tri_stride - 1
        bottom_start = offset + tri_stride * (subdivisions - 1) + 1
        sides = (
            # side, edge index, step, first triangle, end
            (QuadSide.LEFT, 0, tri_stride, offset, offset + tri_count),
            (QuadSide.RIGHT, 2, tri_stride, right_start, right_start + tri_count),
            (QuadSide.TOP, 2, 2, offset, offset + tri_stride),
            (QuadSide.BOTTOM, 1, 2, bottom_start, bottom_start + tri_stride),
        )

        for side, edge, step, first, end in sides:
            needs_edge = bool(edge_mask & side)
            needs_tri = bool(connectable_mask & side)
            if not (needs_edge or needs_tri):
                continue
            for tri in range(first, end, step):
                if needs_edge:
                    edge_list.append((tri, edge))
                if needs_tri:
                    connectable_triangles.append(tri)

    # ── Adjacency ────────────────────────────────────────────────────────

    def connect_edge(self, tri: int, edge: int, other: int, other_edge: int) -> None:
        edge_connection.connect_edge(self.triangles, tri, edge, other, other_edge)

    def disconnect_edge(self, tri: int, edge: int) -> None:
        edge_connection.disconnect_edge(self.triangles, tri, edge)

    def disconnect_all_edges(self) -> None:
        edge_connection.disconnect_all_edges(self.triangles)

    def auto_connect_all_edges(self) -> int:
        """Exhaustively connect unconnected edges of all triangles."""
        return self.auto_connect_all_edges_of_subset(range(self.num_tri))

    def auto_connect_all_edges_of_subset(self, triangles: Sequence[int]) -> int:
        """Exhaustively connect unconnected edges within a triangle subset."""
        return edge_connection.auto_connect_subset(
            self.triangles, list(triangles), self.config.edge_match_epsilon,
        )

    def auto_connect_edges(self, edges: EdgeList, connectable_triangles: Sequence[int]) -> None:
        """Connect listed edges to the candidate triangles or raise."""
        edge_connection.auto_connect_edges(
            self.triangles, edges, connectable_triangles, self.config.edge_match_epsilon,
        )

    def connect_and_validate(self) -> None:
        """Rebuild all links by flood fill and require one connected surface."""
        edge_connection.connect_and_validate(self.triangles)

    @property
    def is_connected(self) -> bool:
        return edge_connection.is_connected(self.triangles)

    def vertex_star(self, tri: int, corner: int) -> List[Tuple[int, int]]:
        return edge_connection.vertex_star(self.triangles, tri, corner)

    # ── Topology changes ─────────────────────────────────────────────────

    def subdivide4(self) -> None:
        """Split every triangle into 4.  Starts a new generation."""
        self._replace_triangles(subdivide4(self.triangles))

    # ── Vertex attribute passes ──────────────────────────────────────────

    def add_smooth_normals(self, max_angle: float, reset_normals: bool = True) -> None:
        """Smooth normals of unset corners.

        Args:
            max_angle: Max angle in radians between two triangles for them
                to share a smoothing group at a vertex.
            reset_normals: Reset all normals to (0, 0, 0) first.
        """
        smooth_normals(self.triangles, max_angle, reset_normals)

    def apply_smooth_normals(self, config: Optional[SmoothNormalsConfig] = None) -> None:
        if config is None:
            config = SmoothNormalsConfig()
        self.add_smooth_normals(config.max_angle_rad, config.reset_normals)

    def make_equirect_uvs(self) -> None:
        """Equirectangular UVs from corner positions (around the origin).

        Triangles straddling the u seam get their high u values pulled back
        by one so they do not stretch across the whole texture.  Mapping is
        distorted near the poles; more subdivisions help.
        """
        for triangle in self.triangles:
            pos = triangle.vertex_data[:, POSITION].astype(np.float64)
            dx, dy, dz = pos[:, 0], pos[:, 1], pos[:, 2]
            u = np.arctan2(dx, dz) * _TAU_INV + 0.5
            v = 1.0 - np.arctan2(np.sqrt(dx * dx + dz * dz), dy) / math.pi

            if u.max() - u.min() > 0.5:
                u[u > 0.5] -= 1.0

            triangle.vertex_data[:, 6] = u
            triangle.vertex_data[:, 7] = v

    def normalize_positions(self) -> None:
        """Project every corner position onto the unit sphere."""
        for triangle in self.triangles:
            pos = triangle.vertex_data[:, POSITION].astype(np.float64)
            lengths = np.linalg.norm(pos, axis=1)
            nonzero = lengths > 0.0
            pos[nonzero] /= lengths[nonzero, None]
            triangle.vertex_data[:, POSITION] = pos

    def warp_positions(self, transformer: Callable[[float, float, float], Sequence[float]]) -> None:
        """Replace every corner position by ``transformer(x, y, z)``."""
        for triangle in self.triangles:
            for corner in range(3):
                x, y, z = triangle.vertex_data[corner, POSITION].tolist()
                triangle.set_position(corner, transformer(x, y, z))

    # ── Transforms ───────────────────────────────────────────────────────

    def translate(self, offset: Sequence[float]) -> None:
        offset = np.asarray(offset, dtype=np.float32)
        if not offset.any():
            return
        for triangle in self.triangles:
            triangle.translate(offset)

    def scale(self, factor: Sequence[float]) -> None:
        factor = np.asarray(factor, dtype=np.float64)
        if np.all(factor == 1.0):
            return
        self.transform(scale_matrix(factor))

    def uniform_scale(self, factor: float) -> None:
        if factor == 1.0:
            return
        self.scale((factor, factor, factor))

    def rotate(self, rotation: Sequence[float]) -> None:
        """Rotate by a quaternion given as (x, y, z, w)."""
        if is_identity_quaternion(rotation):
            return
        self.transform(quaternion_matrix(rotation))

    def transform(self, matrix: np.ndarray) -> None:
        """Apply a 4x4 affine matrix; normals use its inverse transpose (cofactor form)."""
        matrix = np.asarray(matrix, dtype=np.float64)
        if np.array_equal(matrix, np.eye(4)):
            return
        normals = normal_matrix(matrix)
        for triangle in self.triangles:
            triangle.transform(matrix, normals)

    # ── Output ───────────────────────────────────────────────────────────

    def finalize(
        self,
        material_map: Mapping[int, Optional[Any]],
        sink: RenderMeshSink,
    ) -> FinalizeResult:
        """Render submeshes, manifold and submesh map for this snapshot."""
        return finalize(self.triangles, material_map, sink)

    def finalize_to_mesh(
        self,
        material_map: Mapping[int, Optional[Any]],
        sink: RenderMeshSink,
    ) -> ManifoldMesh:
        submeshes, manifold, submesh_map = self.finalize(material_map, sink)
        return ManifoldMesh(submeshes, manifold, submesh_map, self.config.weld_epsilon)


def _set_corners(
    triangle: Triangle,
    channel: slice,
    values: Sequence[Sequence[float]],
    components: int,
) -> None:
    arr = np.asarray(values, dtype=np.float32)
    if arr.shape != (3, components):
        raise ValueError(f"Expected 3 corners of {components} components, got shape {arr.shape}")
    triangle.vertex_data[:, channel] = arr
