"""
Angle-threshold smooth normals.

For every corner whose normal is unset (the zero vector), the triangles
around that vertex are partitioned into smoothing groups: a triangle joins
every existing group holding at least one triangle whose face normal is
within the angle threshold of its own (groups it bridges are merged), or
starts a new group.  Each group gets the area-weighted average of its face
normals.  Weighting by area and not by corner angle leaves small artifacts
on low-poly curved surfaces.
"""
import logging
import math
from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np

from edge_connection import vertex_star
from mesh_triangle import NORMAL, Triangle

logger = logging.getLogger(__name__)

Corner = Tuple[int, int]


@dataclass
class SmoothNormalsConfig:
    """Configuration for smooth normal generation."""

    max_angle_deg: float = 35.0
    reset_normals: bool = True

    @property
    def max_angle_rad(self) -> float:
        return math.radians(self.max_angle_deg)


def smooth_normals(
    triangles: Sequence[Triangle],
    max_angle: float,
    reset_normals: bool = True,
) -> int:
    """Write smooth normals to every corner that has no normal yet.

    Args:
        triangles: Connected triangle list (links are used to find the
            triangles around each vertex).
        max_angle: Maximum angle in radians between two face normals for
            them to share a smoothing group.  Clamped to [0, pi].
        reset_normals: Zero all normals first, forcing full recomputation.

    Returns:
        Number of smoothing groups created.
    """
    dot_threshold = math.cos(min(max(max_angle, 0.0), math.pi))

    if reset_normals:
        for triangle in triangles:
            triangle.vertex_data[:, NORMAL] = 0.0

    tri_count = len(triangles)
    hard_normals = np.zeros((tri_count, 3))
    surface_areas = np.zeros(tri_count)
    for t, triangle in enumerate(triangles):
        hard_normals[t] = triangle.face_normal()
        surface_areas[t] = triangle.surface_area()

    group_count = 0
    for t, triangle in enumerate(triangles):
        for corner in range(3):
            if triangle.has_normals(corner):
                continue
            group_count += _smooth_vertex(
                triangles, hard_normals, surface_areas, dot_threshold, t, corner,
            )

    logger.debug("Smoothed %d triangles into %d vertex groups", tri_count, group_count)
    return group_count


def _smooth_vertex(
    triangles: Sequence[Triangle],
    hard_normals: np.ndarray,
    surface_areas: np.ndarray,
    dot_threshold: float,
    tri: int,
    corner: int,
) -> int:
    # corners that already carry a normal keep it
    star = [
        (t, c) for t, c in vertex_star(triangles, tri, corner)
        if not triangles[t].has_normals(c)
    ]

    groups: List[List[Corner]] = []
    for pair in star:
        normal = hard_normals[pair[0]]
        belongs_to = [
            g for g, group in enumerate(groups)
            if any(float(np.dot(hard_normals[member], normal)) >= dot_threshold
                   for member, _ in group)
        ]

        if not belongs_to:
            groups.append([pair])
        elif len(belongs_to) == 1:
            groups[belongs_to[0]].append(pair)
        else:
            merged = [member for g in belongs_to for member in groups[g]]
            merged.append(pair)
            groups = [group for g, group in enumerate(groups) if g not in belongs_to]
            groups.append(merged)

    for group in groups:
        members = [t for t, _ in group]
        smooth = np.sum(hard_normals[members] * surface_areas[members, None], axis=0)
        length = float(np.linalg.norm(smooth))
        if length == 0.0:
            # zero-area members only
            smooth = np.sum(hard_normals[members], axis=0)
            length = float(np.linalg.norm(smooth))
            if length == 0.0:
                continue
        smooth /= length

        for t, c in group:
            triangles[t].vertex_data[c, NORMAL] = smooth

    return len(groups)
