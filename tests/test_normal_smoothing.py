"""Tests for normal_smoothing module."""
import math

import numpy as np
import pytest

from normal_smoothing import SmoothNormalsConfig, smooth_normals


def _all_corner_normals(triangles):
    return [
        (triangle, corner, triangle.get_normal(corner))
        for triangle in triangles for corner in range(3)
    ]


class TestSmoothNormalsConfig:

    def test_defaults(self):
        config = SmoothNormalsConfig()
        assert config.max_angle_deg == 35.0
        assert config.reset_normals is True

    def test_radians(self):
        assert SmoothNormalsConfig(max_angle_deg=90).max_angle_rad == pytest.approx(math.pi / 2)


class TestCube:
    """Box corners are 90 degree creases."""

    def test_hard_edges_below_threshold(self, connected_cube):
        groups = smooth_normals(connected_cube.triangles, math.radians(30))
        # 8 corners x 3 faces
        assert groups == 24
        for triangle, _, normal in _all_corner_normals(connected_cube.triangles):
            np.testing.assert_allclose(normal, triangle.face_normal(), atol=1e-6)

    def test_everything_merges_at_pi(self, connected_cube):
        groups = smooth_normals(connected_cube.triangles, math.pi)
        assert groups == 8
        for triangle, corner, normal in _all_corner_normals(connected_cube.triangles):
            position = triangle.get_position(corner)
            assert np.linalg.norm(normal) == pytest.approx(1.0, abs=1e-6)
            np.testing.assert_array_equal(np.sign(normal), np.sign(position))

    def test_shared_corners_agree(self, connected_cube):
        smooth_normals(connected_cube.triangles, math.pi)
        by_position = {}
        for triangle, corner, normal in _all_corner_normals(connected_cube.triangles):
            by_position.setdefault(triangle.position_key(corner), []).append(normal)
        for normals in by_position.values():
            for normal in normals[1:]:
                np.testing.assert_array_equal(normal, normals[0])

    def test_angle_is_clamped(self, connected_cube):
        assert smooth_normals(connected_cube.triangles, 10.0) == 8
        assert smooth_normals(connected_cube.triangles, -1.0) == 24

    def test_preset_normals_kept(self, connected_cube):
        tris = connected_cube.triangles
        kept = tris[1].get_normal(0)
        tris[0].vertex_data[:, 3:6] = 0.0

        smooth_normals(tris, math.pi, reset_normals=False)

        np.testing.assert_array_equal(tris[1].get_normal(0), kept)
        for corner in range(3):
            np.testing.assert_allclose(tris[0].get_normal(corner), tris[0].face_normal(), atol=1e-6)

    def test_nothing_to_do(self, connected_cube):
        assert smooth_normals(connected_cube.triangles, math.pi, reset_normals=False) == 0


class TestTetrahedron:

    def test_vertex_normals_point_outward(self, tetrahedron_builder):
        tetrahedron_builder.connect_and_validate()
        tetrahedron_builder.add_smooth_normals(math.pi)

        for triangle in tetrahedron_builder.triangles:
            for corner in range(3):
                position = triangle.get_position(corner)
                expected = position / np.linalg.norm(position)
                np.testing.assert_allclose(triangle.get_normal(corner), expected, atol=1e-6)

    def test_flat_below_threshold(self, tetrahedron_builder):
        tetrahedron_builder.connect_and_validate()
        tetrahedron_builder.apply_smooth_normals(SmoothNormalsConfig(max_angle_deg=60))

        for triangle in tetrahedron_builder.triangles:
            for corner in range(3):
                np.testing.assert_allclose(
                    triangle.get_normal(corner), triangle.face_normal(), atol=1e-6,
                )


class TestUnconnected:

    def test_each_triangle_alone(self, cube_builder):
        """Without links every corner is its own star."""
        groups = smooth_normals(cube_builder.triangles, math.pi)
        assert groups == 36
        for triangle, _, normal in _all_corner_normals(cube_builder.triangles):
            np.testing.assert_allclose(normal, triangle.face_normal(), atol=1e-6)
