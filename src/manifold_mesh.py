"""
Finalized mesh containers: render submeshes plus one welded manifold.

A ``StrippedMesh`` is the watertight form handed to a solid-geometry
kernel: one position per welded vertex and three vertex indices per
triangle.  A ``ManifoldMesh`` pairs it with the material-split render
submeshes and a submesh map that ties manifold triangles back to them.

The submesh map is a flat integer array of length ``2 * triangle_count``:

    [2t]      submesh index of manifold triangle t
    [2t + 1]  triangle index of manifold triangle t inside that submesh
"""
import logging
from dataclasses import dataclass
from typing import Any, List, NamedTuple, Optional, Sequence, Tuple, Union

import numpy as np
import trimesh

from mesh_errors import AttributeAccessorError, CapacityError
from mesh_transforms import normal_matrix as make_normal_matrix
from mesh_transforms import quaternion_matrix, scale_matrix, translation_matrix
from render_sink import IndexType, MeshAttribute, RenderMesh
from vertex_hasher import VertexHasher

logger = logging.getLogger(__name__)

MAX_INDEX = 0xFFFFFFFF
INVALID_INDEX = MAX_INDEX
DEFAULT_WELD_EPSILON = 1e-6


class Submesh(NamedTuple):
    """A render mesh and its material (None = no material assigned)."""
    mesh: RenderMesh
    material: Optional[Any]


@dataclass
class StrippedMesh:
    """Welded positions (flat xyz) and triangle vertex indices (flat)."""
    vert_pos: np.ndarray
    tri_verts: np.ndarray

    @property
    def vertex_count(self) -> int:
        return len(self.vert_pos) // 3

    @property
    def triangle_count(self) -> int:
        return len(self.tri_verts) // 3

    def validate(self) -> List[str]:
        """Check buffer shapes and index ranges.

        Returns list of issue strings (empty = ok).
        """
        issues = []
        if len(self.vert_pos) % 3 != 0:
            issues.append(f"Position buffer length {len(self.vert_pos)} is not a multiple of 3")
        if len(self.tri_verts) % 3 != 0:
            issues.append(f"Index buffer length {len(self.tri_verts)} is not a multiple of 3")
        if len(self.tri_verts) and int(np.max(self.tri_verts)) >= self.vertex_count:
            issues.append("Index buffer references missing vertices")
        return issues

    def to_trimesh(self) -> trimesh.Trimesh:
        return trimesh.Trimesh(
            vertices=np.asarray(self.vert_pos, dtype=np.float64).reshape(-1, 3),
            faces=np.asarray(self.tri_verts, dtype=np.int64).reshape(-1, 3),
            process=False,
        )

    @classmethod
    def from_trimesh(cls, mesh: trimesh.Trimesh) -> "StrippedMesh":
        return cls(
            vert_pos=np.asarray(mesh.vertices, dtype=np.float32).reshape(-1),
            tri_verts=np.asarray(mesh.faces, dtype=np.uint32).reshape(-1),
        )


# ─── Buffer allocation ───────────────────────────────────────────────────────

def index_type_for(max_value: int) -> IndexType:
    """Smallest index type able to hold *max_value*."""
    if max_value <= 0xFF:
        return IndexType.UNSIGNED_BYTE
    if max_value <= 0xFFFF:
        return IndexType.UNSIGNED_SHORT
    if max_value <= MAX_INDEX:
        return IndexType.UNSIGNED_INT
    raise CapacityError(f"Maximum index exceeded ({MAX_INDEX})")


def make_index_buffer(size: int, vertex_count: int) -> Tuple[np.ndarray, IndexType]:
    index_type = index_type_for(vertex_count)
    return np.zeros(size, dtype=index_type.dtype), index_type


def make_submesh_map_buffer(
    tri_count: int,
    max_submesh_tri_count: int,
    max_submesh_idx: int,
) -> np.ndarray:
    index_type = index_type_for(max(max_submesh_tri_count - 1, max_submesh_idx))
    return np.zeros(tri_count * 2, dtype=index_type.dtype)


# ─── Manifold reconstruction from render meshes ──────────────────────────────

def _mesh_corner_count(mesh: RenderMesh) -> int:
    index_data = mesh.index_data
    corner_count = mesh.vertex_count if index_data is None else len(index_data)
    if corner_count % 3 != 0:
        raise ValueError(
            f"Mesh has an invalid index count ({corner_count}). Must be a multiple of 3"
        )
    return corner_count


def manifold_from_meshes(
    meshes: Union[RenderMesh, Sequence[RenderMesh]],
    gen_submesh_map: bool = True,
    epsilon: float = DEFAULT_WELD_EPSILON,
) -> Tuple[Optional[np.ndarray], StrippedMesh]:
    """Weld render meshes into one manifold by approximate position matching.

    Positions closer than *epsilon* on every axis become one manifold
    vertex, which joins submeshes generated by different code paths.

    Returns:
        (submesh_map or None, manifold_mesh)
    """
    if isinstance(meshes, RenderMesh):
        meshes = [meshes]

    total_corners = 0
    max_submesh_tri_count = 0
    for mesh in meshes:
        corner_count = _mesh_corner_count(mesh)
        total_corners += corner_count
        max_submesh_tri_count = max(max_submesh_tri_count, corner_count // 3)

    total_tri_count = total_corners // 3
    hasher = VertexHasher(3, epsilon)
    tri_chunks: List[np.ndarray] = []
    submesh_map = None
    if gen_submesh_map:
        submesh_map = make_submesh_map_buffer(
            total_tri_count, max_submesh_tri_count, len(meshes) - 1,
        )

    tri_offset = 0
    for submesh_idx, mesh in enumerate(meshes):
        positions = mesh.attribute(MeshAttribute.POSITION)
        if positions is None:
            raise AttributeAccessorError(
                f"Could not get position attribute accessor of submesh {submesh_idx}"
            )

        merged = hasher.add_all(positions.get_all())
        index_data = mesh.index_data
        corners = merged if index_data is None else merged[np.asarray(index_data, dtype=np.int64)]
        tri_chunks.append(corners)

        tri_count = len(corners) // 3
        if submesh_map is not None:
            span = submesh_map[2 * tri_offset:2 * (tri_offset + tri_count)]
            span[0::2] = submesh_idx
            span[1::2] = np.arange(tri_count)
        tri_offset += tri_count

    if len(hasher) > MAX_INDEX:
        raise CapacityError(f"Maximum index exceeded ({MAX_INDEX})")

    tri_verts = (np.concatenate(tri_chunks) if tri_chunks else np.zeros(0)).astype(np.uint32)
    manifold = StrippedMesh(vert_pos=hasher.as_array().reshape(-1), tri_verts=tri_verts)
    logger.debug(
        "Welded %d meshes into %d vertices / %d triangles",
        len(meshes), manifold.vertex_count, manifold.triangle_count,
    )
    return submesh_map, manifold


# ─── Container ───────────────────────────────────────────────────────────────

class ManifoldMesh:
    """Render submeshes plus a manifold view of the same surface.

    Ownership of the submeshes and manifold passes to this object; deep copy
    them first if they are modified elsewhere.
    """

    def __init__(
        self,
        submeshes: Optional[List[Submesh]] = None,
        premade_manifold_mesh: Optional[StrippedMesh] = None,
        submesh_map: Optional[np.ndarray] = None,
        weld_epsilon: float = DEFAULT_WELD_EPSILON,
    ):
        self.submeshes: List[Submesh] = list(submeshes) if submeshes else []
        self.premade_manifold_mesh = premade_manifold_mesh
        self.submesh_map = submesh_map
        self.weld_epsilon = weld_epsilon
        # dispose() after a solid-geometry operation consumed this mesh
        self.auto_dispose = False

    @property
    def manifold_mesh(self) -> StrippedMesh:
        """The manifold, rebuilt from the submeshes if none was premade."""
        return self._ensure_manifold()

    def _ensure_manifold(self) -> StrippedMesh:
        if self.premade_manifold_mesh is None:
            meshes = [submesh.mesh for submesh in self.submeshes]
            self.submesh_map, self.premade_manifold_mesh = manifold_from_meshes(
                meshes, epsilon=self.weld_epsilon,
            )
        return self.premade_manifold_mesh

    @property
    def submesh_count(self) -> int:
        return len(self.submeshes)

    def get_submesh(self, submesh_idx: int) -> Submesh:
        if not 0 <= submesh_idx < len(self.submeshes):
            raise IndexError(f"No submesh exists at index {submesh_idx}")
        return self.submeshes[submesh_idx]

    def get_submeshes(self) -> List[Submesh]:
        return list(self.submeshes)

    def get_tri_bary_submesh(self, tri_idx: int) -> Tuple[Submesh, int]:
        """Submesh and local triangle index of manifold triangle *tri_idx*."""
        self._ensure_manifold()
        if self.submesh_map is None:
            raise ValueError("Missing submesh map")

        offset = tri_idx * 2
        return (
            self.get_submesh(int(self.submesh_map[offset])),
            int(self.submesh_map[offset + 1]),
        )

    def dispose(self) -> None:
        """Destroy the render meshes.  Shared meshes are destroyed too."""
        for submesh in self.submeshes:
            submesh.mesh.destroy()
        self.submeshes.clear()
        self.premade_manifold_mesh = None
        self.submesh_map = None

    def mark(self) -> "ManifoldMesh":
        """Set ``auto_dispose``.  Chainable."""
        self.auto_dispose = True
        return self

    def transform(self, matrix: np.ndarray, normal_matrix: Optional[np.ndarray] = None) -> None:
        """Transform all submeshes and the manifold."""
        matrix = np.asarray(matrix, dtype=np.float64)
        if normal_matrix is None:
            normal_matrix = make_normal_matrix(matrix)
        linear = matrix[:3, :3]
        offset = matrix[:3, 3]

        for submesh_idx, (mesh, _material) in enumerate(self.submeshes):
            positions = mesh.attribute(MeshAttribute.POSITION)
            if positions is None:
                raise AttributeAccessorError(
                    f"Could not get position attribute accessor of submesh {submesh_idx}"
                )
            positions.set(0, positions.get_all() @ linear.T + offset)

            normals = mesh.attribute(MeshAttribute.NORMAL)
            if normals is not None:
                values = normals.get_all() @ np.asarray(normal_matrix).T
                lengths = np.linalg.norm(values, axis=1)
                nonzero = lengths > 0.0
                values[nonzero] /= lengths[nonzero, None]
                normals.set(0, values)

        if self.premade_manifold_mesh is not None:
            vert_pos = self.premade_manifold_mesh.vert_pos
            moved = vert_pos.reshape(-1, 3).astype(np.float64) @ linear.T + offset
            vert_pos[:] = moved.reshape(-1)

    def translate(self, translation: Sequence[float]) -> None:
        self.transform(translation_matrix(translation))

    def scale(self, factor: Sequence[float]) -> None:
        self.transform(scale_matrix(factor))

    def uniform_scale(self, factor: float) -> None:
        self.transform(scale_matrix((factor, factor, factor)))

    def rotate(self, rotation: Sequence[float]) -> None:
        """Rotate by a quaternion given as (x, y, z, w)."""
        self.transform(quaternion_matrix(rotation))
