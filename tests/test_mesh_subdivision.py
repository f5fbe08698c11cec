"""Tests for mesh_subdivision module."""
import numpy as np
import pytest

from edge_connection import connect_and_validate, is_connected, is_symmetric
from manifold_builder import ManifoldBuilder
from mesh_errors import StaleTriangleError
from mesh_subdivision import subdivide4


class TestSingleTriangle:
    """Child layout and internal links of one split triangle."""

    @pytest.fixture
    def children(self):
        builder = ManifoldBuilder()
        builder.add_triangle([0, 0, 0], [4, 0, 0], [0, 4, 0], uvs=[[0, 0], [1, 0], [0, 1]])
        return subdivide4(builder.triangles)

    def test_four_children(self, children):
        assert len(children) == 4

    def test_child_corners(self, children):
        top, bottom_left, bottom_right, center = children
        np.testing.assert_array_equal(top.vertex_data[:, :3], [[0, 0, 0], [2, 0, 0], [0, 2, 0]])
        np.testing.assert_array_equal(bottom_left.vertex_data[:, :3], [[2, 0, 0], [4, 0, 0], [2, 2, 0]])
        np.testing.assert_array_equal(bottom_right.vertex_data[:, :3], [[0, 2, 0], [2, 2, 0], [0, 4, 0]])
        np.testing.assert_array_equal(center.vertex_data[:, :3], [[2, 2, 0], [0, 2, 0], [2, 0, 0]])

    def test_internal_links(self, children):
        assert children[0].edges == [None, (3, 1), None]
        assert children[1].edges == [None, None, (3, 2)]
        assert children[2].edges == [(3, 0), None, None]
        assert children[3].edges == [(2, 0), (0, 1), (1, 2)]

    def test_attributes_interpolated(self, children):
        np.testing.assert_allclose(children[3].get_uv(0), [0.5, 0.5])
        np.testing.assert_allclose(children[0].get_normal(1), [0, 0, 1])

    def test_input_untouched(self):
        builder = ManifoldBuilder()
        builder.add_triangle([0, 0, 0], [1, 0, 0], [0, 1, 0])
        before = builder.triangles[0].vertex_data.copy()
        subdivide4(builder.triangles)
        np.testing.assert_array_equal(builder.triangles[0].vertex_data, before)


class TestConnectedSubdivision:

    def test_cube_stays_connected(self, connected_cube):
        children = subdivide4(connected_cube.triangles)
        assert len(children) == 48
        assert is_symmetric(children)
        assert is_connected(children)
        assert all(not t.missing_edges for t in children)

    def test_matches_rebuilt_graph(self, connected_cube):
        children = subdivide4(connected_cube.triangles)
        inherited = [list(t.edges) for t in children]
        connect_and_validate(children)
        assert [list(t.edges) for t in children] == inherited

    def test_flipped_winding_neighbour(self):
        """Halves are paired by position when neighbours disagree on winding."""
        builder = ManifoldBuilder()
        builder.add_triangle([0, 0, 0], [2, 0, 0], [0, 2, 0])
        builder.add_triangle([0, 0, 0], [2, 0, 0], [0, -2, 0])
        builder.connect_and_validate()
        children = subdivide4(builder.triangles)

        assert is_symmetric(children)
        for t, triangle in enumerate(children):
            for e, link in enumerate(triangle.edges):
                if link is None:
                    continue
                other, other_edge = link
                mine = {triangle.position_key(e), triangle.position_key((e + 1) % 3)}
                theirs = {
                    children[other].position_key(other_edge),
                    children[other].position_key((other_edge + 1) % 3),
                }
                assert mine == theirs, f"child {t} edge {e}"

    def test_material_inherited(self):
        builder = ManifoldBuilder()
        builder.add_triangle([0, 0, 0], [1, 0, 0], [0, 1, 0], material_id=7)
        children = subdivide4(builder.triangles)
        assert [c.material_id for c in children] == [7, 7, 7, 7]


class TestBuilderSubdivide:

    def test_generation_bump(self, connected_cube):
        generation = connected_cube.generation
        connected_cube.subdivide4()
        assert connected_cube.num_tri == 48
        assert connected_cube.generation == generation + 1
        assert connected_cube.is_connected

    def test_stale_index(self, connected_cube):
        generation = connected_cube.generation
        connected_cube.subdivide4()
        with pytest.raises(StaleTriangleError):
            connected_cube.get_triangle(0, generation)
        with pytest.raises(LookupError):
            connected_cube.get_triangle(0, generation)
        assert connected_cube.get_triangle(0, connected_cube.generation) is connected_cube.triangles[0]

    def test_twice(self, connected_cube):
        connected_cube.subdivide4()
        connected_cube.subdivide4()
        assert connected_cube.num_tri == 192
        connected_cube.connect_and_validate()
