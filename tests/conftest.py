"""
Shared test fixtures for manifold construction tests.
"""
import sys
from pathlib import Path

import numpy as np
import pytest
import trimesh

# Add src/ to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from manifold_builder import ManifoldBuilder
from render_sink import ArrayMeshSink


def add_trimesh_faces(builder: ManifoldBuilder, mesh: trimesh.Trimesh) -> None:
    for face in mesh.faces:
        builder.add_triangle(*mesh.vertices[face])


@pytest.fixture
def square_builder():
    """Unit square in the XY plane: two CCW triangles sharing the diagonal."""
    builder = ManifoldBuilder()
    builder.add_triangle([0, 0, 0], [1, 0, 0], [1, 1, 0])
    builder.add_triangle([0, 0, 0], [1, 1, 0], [0, 1, 0])
    return builder


@pytest.fixture
def box_mesh():
    """A closed 2x2x2 box centred at the origin (12 triangles)."""
    return trimesh.creation.box(extents=[2, 2, 2])


@pytest.fixture
def cube_builder(box_mesh):
    """Builder holding the box triangles, not yet connected."""
    builder = ManifoldBuilder()
    add_trimesh_faces(builder, box_mesh)
    return builder


@pytest.fixture
def connected_cube(cube_builder):
    cube_builder.connect_and_validate()
    return cube_builder


@pytest.fixture
def tetrahedron_builder():
    """A closed, outward-facing tetrahedron with normals left unset."""
    p = np.array([
        [1.0, 1.0, 1.0],
        [1.0, -1.0, -1.0],
        [-1.0, 1.0, -1.0],
        [-1.0, -1.0, 1.0],
    ])
    builder = ManifoldBuilder()
    for a, b, c in [(0, 1, 2), (0, 3, 1), (0, 2, 3), (1, 3, 2)]:
        builder.add_triangle_no_normals(p[a], p[b], p[c])
    return builder


@pytest.fixture
def sink():
    return ArrayMeshSink()


@pytest.fixture
def box_mesh_file(box_mesh, tmp_path):
    path = tmp_path / "box.stl"
    box_mesh.export(str(path))
    return str(path)
