"""Tests for mesh_finalization module."""
import numpy as np
import pytest

from manifold_builder import ManifoldBuilder
from mesh_errors import AttributeAccessorError, ConnectivityError
from mesh_finalization import extract_manifold, finalize
from render_sink import ArrayMeshSink, IndexType, MeshAttribute


class _Material:
    """Unhashable stand-in for a renderer material."""
    __hash__ = None

    def __init__(self, name):
        self.name = name


@pytest.fixture
def eight_tri_quad():
    """2x2 subdivided quad (8 triangles) with mixed material IDs."""
    builder = ManifoldBuilder()
    builder.add_subdiv_quad([0, 1, 0], [1, 1, 0], [0, 0, 0], [1, 0, 0], subdivisions=2)
    for triangle, material_id in zip(builder.triangles, [3, 0, 1, 3, 0, 1, 3, 5]):
        triangle.material_id = material_id
    return builder


class TestUnitSquare:

    def test_single_submesh(self, square_builder, sink):
        square_builder.connect_and_validate()
        result = finalize(square_builder.triangles, {}, sink)

        assert len(result.submeshes) == 1
        mesh, material = result.submeshes[0]
        assert material is None
        assert mesh.vertex_count == 4
        assert mesh.index_data.dtype == IndexType.UNSIGNED_BYTE.dtype
        np.testing.assert_array_equal(mesh.index_data, [0, 1, 2, 0, 2, 3])
        np.testing.assert_array_equal(
            mesh.attribute(MeshAttribute.POSITION).get_all(),
            [[0, 0, 0], [1, 0, 0], [1, 1, 0], [0, 1, 0]],
        )
        np.testing.assert_array_equal(
            mesh.attribute(MeshAttribute.NORMAL).get_all(), [[0, 0, 1]] * 4,
        )

    def test_manifold(self, square_builder, sink):
        square_builder.connect_and_validate()
        result = finalize(square_builder.triangles, {}, sink)

        manifold = result.manifold_mesh
        assert manifold.vertex_count == 4
        np.testing.assert_array_equal(manifold.tri_verts, [0, 1, 2, 0, 2, 3])
        np.testing.assert_array_equal(
            manifold.vert_pos, [0, 0, 0, 1, 0, 0, 1, 1, 0, 0, 1, 0],
        )
        np.testing.assert_array_equal(result.submesh_map, [0, 0, 0, 1])

    def test_material_seam_shares_manifold_vertices(self, square_builder, sink):
        square_builder.triangles[1].material_id = 1
        square_builder.connect_and_validate()
        result = finalize(square_builder.triangles, {1: _Material("red")}, sink)

        assert [m is None for _, m in result.submeshes] == [True, False]
        assert sum(s.mesh.vertex_count for s in result.submeshes) == 6
        assert result.manifold_mesh.vertex_count == 4
        np.testing.assert_array_equal(result.submesh_map, [0, 0, 1, 0])


class TestMaterialBuckets:

    def test_bucket_order_and_map(self, eight_tri_quad, sink):
        mat_a, mat_b = _Material("a"), _Material("b")
        result = finalize(eight_tri_quad.triangles, {1: mat_a, 3: mat_b}, sink)

        assert [m for _, m in result.submeshes] == [None, mat_a, mat_b]
        assert [s.mesh.triangle_count for s in result.submeshes] == [3, 2, 3]
        expected = [(2, 0), (0, 0), (1, 0), (2, 1), (0, 1), (1, 1), (2, 2), (0, 2)]
        np.testing.assert_array_equal(result.submesh_map.reshape(-1, 2), expected)
        assert result.submesh_map.dtype == np.uint8

    def test_none_entry_joins_unassigned(self, eight_tri_quad, sink):
        mat = _Material("a")
        result = finalize(eight_tri_quad.triangles, {1: mat, 3: None}, sink)
        assert [m for _, m in result.submeshes] == [None, mat]
        assert result.submeshes[0].mesh.triangle_count == 6

    def test_shared_material_object(self, eight_tri_quad, sink):
        mat = _Material("shared")
        result = finalize(eight_tri_quad.triangles, {0: mat, 1: mat, 3: mat, 5: mat}, sink)
        assert len(result.submeshes) == 1
        assert result.submeshes[0].material is mat

    def test_manifold_ignores_materials(self, eight_tri_quad, sink):
        result = finalize(eight_tri_quad.triangles, {1: _Material("a")}, sink)
        assert result.manifold_mesh.vertex_count == 9
        assert result.manifold_mesh.triangle_count == 8


class TestCube:

    def test_render_vertices_split_at_creases(self, connected_cube, sink):
        result = connected_cube.finalize({}, sink)
        assert sum(s.mesh.vertex_count for s in result.submeshes) == 24

    def test_manifold_is_watertight(self, connected_cube, sink):
        manifold = connected_cube.finalize({}, sink).manifold_mesh
        assert manifold.vertex_count == 8
        assert manifold.triangle_count == 12
        assert manifold.validate() == []
        assert manifold.tri_verts.dtype == np.uint32
        assert manifold.to_trimesh().is_watertight

    def test_render_mesh_converts(self, connected_cube, sink):
        result = connected_cube.finalize({}, sink)
        mesh = result.submeshes[0].mesh.to_trimesh()
        assert len(mesh.faces) == 12
        assert mesh.area == pytest.approx(24.0)


class TestFailures:

    def test_not_connected(self, square_builder, sink):
        with pytest.raises(ConnectivityError):
            finalize(square_builder.triangles, {}, sink)

    def test_sink_without_positions(self, square_builder):
        square_builder.connect_and_validate()
        with pytest.raises(AttributeAccessorError):
            finalize(square_builder.triangles, {}, ArrayMeshSink([MeshAttribute.NORMAL]))

    def test_sink_without_normals(self, square_builder):
        square_builder.connect_and_validate()
        sink = ArrayMeshSink([MeshAttribute.POSITION, MeshAttribute.TEXTURE_COORDINATE])
        result = finalize(square_builder.triangles, {}, sink)
        mesh = result.submeshes[0].mesh
        assert mesh.attribute(MeshAttribute.NORMAL) is None
        assert mesh.attribute(MeshAttribute.POSITION).get_all().shape == (4, 3)


class TestEmpty:

    def test_empty_builder(self, sink):
        result = ManifoldBuilder().finalize({}, sink)
        assert result.submeshes == []
        assert result.manifold_mesh.vertex_count == 0
        assert len(result.submesh_map) == 0

    def test_extract_manifold_empty(self):
        assert extract_manifold([]).triangle_count == 0
