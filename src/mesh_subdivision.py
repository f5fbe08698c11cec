"""
Topology-preserving 1-to-4 triangle subdivision.

Triangle ``t`` with corners (v0, v1, v2) becomes four children at indices
``4t .. 4t + 3`` of the output list, always in this order:

    0: top           (v0,  v01, v20)
    1: bottom-left   (v01, v1,  v12)
    2: bottom-right  (v20, v12, v2)
    3: center        (v12, v20, v01)

Midpoints average all 8 vertex components, so normals and UVs are
interpolated too; re-run normal generation for exact midpoint normals.

Along original edge ``e`` the children ``e`` and ``(e + 1) % 3`` each own
half of the edge through their own edge ``e``.  Links of the input are
carried down to those halves, so a connected input stays connected.
"""
import logging
from typing import List, Sequence

import numpy as np

from edge_connection import connect_edge
from mesh_triangle import POSITION, Triangle

logger = logging.getLogger(__name__)

_HALF = np.float32(0.5)

# (center edge, sibling offset, sibling edge)
_CENTER_LINKS = ((0, 2, 0), (1, 0, 1), (2, 1, 2))


def _vertex_mid(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    return (a + b) * _HALF


def subdivide4(triangles: Sequence[Triangle]) -> List[Triangle]:
    """Split every triangle into four and return the new triangle list.

    The input triangles are not modified; indices into the input are not
    valid for the output.
    """
    tri_count = len(triangles)
    new_triangles: List[Triangle] = []

    for t in range(tri_count):
        triangle = triangles[t]
        vert0, vert1, vert2 = triangle.vertex_data
        vert01 = _vertex_mid(vert0, vert1)
        vert12 = _vertex_mid(vert1, vert2)
        vert20 = _vertex_mid(vert2, vert0)

        material_id = triangle.material_id
        new_triangles.append(Triangle.from_vertices(vert0, vert01, vert20, material_id))
        new_triangles.append(Triangle.from_vertices(vert01, vert1, vert12, material_id))
        new_triangles.append(Triangle.from_vertices(vert20, vert12, vert2, material_id))
        new_triangles.append(Triangle.from_vertices(vert12, vert20, vert01, material_id))

        base = 4 * t
        for center_edge, sibling, sibling_edge in _CENTER_LINKS:
            connect_edge(new_triangles, base + 3, center_edge, base + sibling, sibling_edge)

    inherited = 0
    for t in range(tri_count):
        triangle = triangles[t]
        base = 4 * t

        for edge in range(3):
            link = triangle.edges[edge]
            if link is None:
                continue
            other, other_edge = link
            if (other, other_edge) < (t, edge):
                continue  # handled from the other side

            # pair halves by which endpoints coincide so flipped winding works
            start = triangle.vertex_data[edge, POSITION]
            other_tri = triangles[other]
            d_same = float(np.sum(np.abs(other_tri.vertex_data[other_edge, POSITION] - start)))
            d_flip = float(np.sum(np.abs(
                other_tri.vertex_data[(other_edge + 1) % 3, POSITION] - start)))

            near = base + edge
            far = base + (edge + 1) % 3
            other_base = 4 * other
            if d_same < d_flip:
                other_near = other_base + other_edge
                other_far = other_base + (other_edge + 1) % 3
            else:
                other_near = other_base + (other_edge + 1) % 3
                other_far = other_base + other_edge

            connect_edge(new_triangles, near, edge, other_near, other_edge)
            connect_edge(new_triangles, far, edge, other_far, other_edge)
            inherited += 2

    logger.debug(
        "Subdivided %d triangles into %d (%d inherited links)",
        tri_count, len(new_triangles), inherited,
    )
    return new_triangles
