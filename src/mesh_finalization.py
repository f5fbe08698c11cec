"""
Finalization: render submeshes per material plus one global manifold.

Algorithm:
1. Require that the triangle links form a single connected surface.
2. Bucket triangles by material (IDs missing from the material map, or
   mapped to None, share the unassigned bucket).  Buckets are ordered with
   the unassigned bucket first, then by ascending material ID.
3. For each bucket, weld corners whose full 8-float vertex tuples are
   exactly equal and hand the buffers to the render sink.  The submesh map
   records where each triangle ended up.
4. Independently of materials, give every vertex star one manifold vertex
   by walking links, so corners on a material seam share a manifold vertex
   even when their normals or UVs differ.

Finalization is terminal for a geometry snapshot: later builder changes do
not update the returned buffers.
"""
import logging
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Sequence, Tuple

import numpy as np

from edge_connection import is_connected, vertex_star
from manifold_mesh import (
    INVALID_INDEX,
    MAX_INDEX,
    StrippedMesh,
    Submesh,
    make_index_buffer,
    make_submesh_map_buffer,
)
from mesh_errors import AttributeAccessorError, CapacityError, ConnectivityError
from mesh_triangle import NORMAL, POSITION, UV, VERTEX_STRIDE, Triangle
from render_sink import MeshAttribute, RenderMeshSink
from vertex_hasher import VertexHasher

logger = logging.getLogger(__name__)


class FinalizeResult(NamedTuple):
    submeshes: List[Submesh]
    manifold_mesh: StrippedMesh
    submesh_map: np.ndarray


def finalize(
    triangles: Sequence[Triangle],
    material_map: Mapping[int, Optional[Any]],
    sink: RenderMeshSink,
) -> FinalizeResult:
    """Build render submeshes, the manifold and the submesh map.

    Args:
        triangles: Connected triangle list.
        material_map: Material ID -> material object.  Triangles whose
            material ID is missing or maps to None go to a submesh with no
            material, so a fallback can be assigned later.
        sink: Render resource sink that allocates the submeshes.

    Raises:
        ConnectivityError: If the triangles are not a single connected surface.
        AttributeAccessorError: If the sink does not provide positions.
        CapacityError: If an index does not fit in 32 bits.
    """
    if not is_connected(triangles):
        raise ConnectivityError("Mesh is not connected")

    buckets = _group_by_material(triangles, material_map)
    tri_count = len(triangles)
    max_submesh_tri_count = max((len(tris) for _, tris in buckets), default=0)
    submesh_map = make_submesh_map_buffer(
        tri_count, max_submesh_tri_count, max(len(buckets) - 1, 0),
    )

    submeshes = [
        finalize_submesh(triangles, tris, material, submesh_map, submesh_idx, sink)
        for submesh_idx, (material, tris) in enumerate(buckets)
    ]
    manifold = extract_manifold(triangles)

    logger.info(
        "Finalized %d triangles into %d submeshes and a manifold of %d vertices",
        tri_count, len(submeshes), manifold.vertex_count,
    )
    return FinalizeResult(submeshes, manifold, submesh_map)


def _group_by_material(
    triangles: Sequence[Triangle],
    material_map: Mapping[int, Optional[Any]],
) -> List[Tuple[Optional[Any], List[int]]]:
    """Bucket triangle indices by resolved material, sorted for output."""
    # keyed by identity so materials need not be hashable
    groups: Dict[int, Tuple[Optional[Any], List[int]]] = {}
    for t, triangle in enumerate(triangles):
        material = material_map.get(triangle.material_id)
        key = id(material)
        if key in groups:
            groups[key][1].append(t)
        else:
            groups[key] = (material, [t])

    material_ids: Dict[int, int] = {}
    for material_id, material in material_map.items():
        if material is None:
            continue
        key = id(material)
        if key not in material_ids or material_id < material_ids[key]:
            material_ids[key] = material_id

    def sort_key(group: Tuple[Optional[Any], List[int]]):
        material = group[0]
        if material is None:
            return (0, 0)
        return (1, material_ids[id(material)])

    return sorted(groups.values(), key=sort_key)


def finalize_submesh(
    triangles: Sequence[Triangle],
    tri_indices: Sequence[int],
    material: Optional[Any],
    submesh_map: np.ndarray,
    submesh_idx: int,
    sink: RenderMeshSink,
) -> Submesh:
    """Weld one material bucket into a render mesh."""
    hasher = VertexHasher(VERTEX_STRIDE)
    corners = np.empty(len(tri_indices) * 3, dtype=np.int64)

    for local_idx, t in enumerate(tri_indices):
        submesh_map[2 * t] = submesh_idx
        submesh_map[2 * t + 1] = local_idx

        vertex_data = triangles[t].vertex_data
        base = 3 * local_idx
        for corner in range(3):
            corners[base + corner], _ = hasher.add(vertex_data[corner])

    vertex_count = len(hasher)
    vertices = hasher.as_array()
    index_data, index_type = make_index_buffer(len(corners), vertex_count)
    index_data[:] = corners

    mesh = sink.create_mesh(vertex_count, index_data, index_type)

    positions = mesh.attribute(MeshAttribute.POSITION)
    if positions is None:
        raise AttributeAccessorError("Could not get position mesh attribute accessor")
    positions.set(0, vertices[:, POSITION])

    normals = mesh.attribute(MeshAttribute.NORMAL)
    if normals is not None:
        normals.set(0, vertices[:, NORMAL])
    else:
        logger.debug("Render sink declined normals for submesh %d", submesh_idx)

    tex_coords = mesh.attribute(MeshAttribute.TEXTURE_COORDINATE)
    if tex_coords is not None:
        tex_coords.set(0, vertices[:, UV])
    else:
        logger.debug("Render sink declined texture coordinates for submesh %d", submesh_idx)

    return Submesh(mesh, material)


def extract_manifold(triangles: Sequence[Triangle]) -> StrippedMesh:
    """Weld all corners through vertex stars into a single manifold."""
    tri_count = len(triangles)
    indices = np.full(tri_count * 3, INVALID_INDEX, dtype=np.uint32)
    positions: List[np.ndarray] = []

    for t, triangle in enumerate(triangles):
        for corner in range(3):
            if indices[3 * t + corner] != INVALID_INDEX:
                continue  # already shared with an earlier corner

            index = len(positions)
            if index >= MAX_INDEX:
                raise CapacityError(f"Maximum index exceeded ({MAX_INDEX})")
            positions.append(triangle.vertex_data[corner, POSITION])

            for other, other_corner in vertex_star(triangles, t, corner):
                indices[3 * other + other_corner] = index

    if positions:
        vert_pos = np.asarray(positions, dtype=np.float32).reshape(-1)
    else:
        vert_pos = np.zeros(0, dtype=np.float32)
    return StrippedMesh(vert_pos=vert_pos, tri_verts=indices)
