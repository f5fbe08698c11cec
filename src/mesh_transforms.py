"""4x4 affine helpers shared by the builder and finalized meshes."""
from typing import Sequence

import numpy as np
import trimesh
from scipy.spatial.transform import Rotation


def translation_matrix(offset: Sequence[float]) -> np.ndarray:
    return trimesh.transformations.translation_matrix(np.asarray(offset, dtype=np.float64))


def scale_matrix(factor: Sequence[float]) -> np.ndarray:
    """Per-axis scaling matrix."""
    fx, fy, fz = (float(f) for f in factor)
    return np.diag([fx, fy, fz, 1.0])


def quaternion_matrix(rotation: Sequence[float]) -> np.ndarray:
    """Rotation matrix for a quaternion given as (x, y, z, w)."""
    matrix = np.eye(4)
    matrix[:3, :3] = Rotation.from_quat(np.asarray(rotation, dtype=np.float64)).as_matrix()
    return matrix


def normal_matrix(matrix: np.ndarray) -> np.ndarray:
    """Normal transform for the linear part of *matrix*.

    This is the cofactor matrix, i.e. the inverse transpose scaled by
    ``|det|``.  It points normals the same way as the inverse transpose but
    stays defined when the linear part is singular (e.g. a zero scale axis);
    normals are re-normalized after use, so the scale does not matter.
    """
    linear = np.asarray(matrix, dtype=np.float64)[:3, :3]
    c0, c1, c2 = linear.T
    cofactor = np.column_stack([np.cross(c1, c2), np.cross(c2, c0), np.cross(c0, c1)])
    if np.linalg.det(linear) < 0.0:
        cofactor = -cofactor
    return cofactor


def is_identity_quaternion(rotation: Sequence[float]) -> bool:
    x, y, z, w = (float(c) for c in rotation)
    return x == 0.0 and y == 0.0 and z == 0.0 and w == 1.0
