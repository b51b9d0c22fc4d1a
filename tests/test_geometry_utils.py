import unittest

import numpy as np

from anamorph.core.geometry_utils import (
    angle_between,
    line_line_intersection,
    line_plane_intersection,
    mirror_vectors,
    mirrored_relative_rotation,
    reflect,
    rotation_matrix_align_vectors,
    signed_angle_2d,
    transform_directions,
    transform_points,
)


class TestLineIntersections(unittest.TestCase):
    def test_line_line_intersection_crossing(self):
        point, ok = line_line_intersection([0.0, 0.0], [1.0, 0.0], [1.0, -1.0], [0.0, 1.0])
        self.assertTrue(ok)
        np.testing.assert_allclose(point, [1.0, 0.0], atol=1e-12, rtol=0.0)

    def test_line_line_intersection_parallel_fails(self):
        _, ok = line_line_intersection([0.0, 0.0], [1.0, 0.0], [0.0, 1.0], [2.0, 0.0])
        self.assertFalse(ok)

    def test_line_line_intersection_near_parallel_only_fails_with_eps(self):
        args = ([0.0, 0.0], [1.0, 0.0], [0.0, 1.0], [1.0, 1e-12])
        point, ok = line_line_intersection(*args)
        self.assertTrue(ok)
        self.assertGreater(abs(point[0]), 1e6)

        _, ok = line_line_intersection(*args, eps=1e-9)
        self.assertFalse(ok)

    def test_line_plane_intersection(self):
        point, ok = line_plane_intersection([0.0, 0.0, 0.0], [0.0, 0.0, 2.0], [0.0, 0.0, 1.0], [3.0, -1.0, 5.0])
        self.assertTrue(ok)
        np.testing.assert_allclose(point, [0.0, 0.0, 5.0], atol=1e-12, rtol=0.0)

    def test_line_plane_intersection_parallel_fails(self):
        _, ok = line_plane_intersection([0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 0.0, 1.0], [0.0, 0.0, 5.0])
        self.assertFalse(ok)


class TestAnglesAndReflection(unittest.TestCase):
    def test_reflect_law(self):
        d = np.array([1.0, -1.0, 0.0]) / np.sqrt(2.0)
        n = np.array([0.0, 1.0, 0.0])
        r = reflect(d, n)

        np.testing.assert_allclose(r, np.array([1.0, 1.0, 0.0]) / np.sqrt(2.0), atol=1e-12, rtol=0.0)
        self.assertAlmostEqual(angle_between(-d, n), angle_between(r, n), places=10)

    def test_reflect_rows(self):
        d = np.array([[0.0, 0.0, 1.0], [0.6, 0.0, 0.8]])
        n = np.array([[0.0, 0.0, -1.0], [0.0, 0.0, -1.0]])
        r = reflect(d, n)
        np.testing.assert_allclose(r, [[0.0, 0.0, -1.0], [0.6, 0.0, -0.8]], atol=1e-12, rtol=0.0)

    def test_angle_between(self):
        self.assertAlmostEqual(angle_between([1, 0, 0], [0, 1, 0]), 90.0)
        self.assertAlmostEqual(angle_between([1, 0, 0], [-1, 0, 0]), 180.0)
        self.assertEqual(angle_between([0, 0, 0], [0, 1, 0]), 0.0)
        self.assertEqual(angle_between([0.3, -8.0], [0.6, -16.0]), 0.0)

    def test_signed_angle_2d(self):
        self.assertAlmostEqual(signed_angle_2d([1, 0], [0, 1]), 90.0)
        self.assertAlmostEqual(signed_angle_2d([1, 0], [0, -1]), -90.0)
        self.assertAlmostEqual(signed_angle_2d([1, 0], [-1, 0]), 180.0)


class TestRotations(unittest.TestCase):
    def test_rotation_matrix_align_vectors_antiparallel(self):
        src = np.array([0.0, 0.0, -1.0])
        dst = np.array([0.0, 0.0, 1.0])
        rot = rotation_matrix_align_vectors(src, dst)
        np.testing.assert_allclose(rot @ src, dst, atol=1e-8, rtol=0.0)

    def test_rotation_matrix_align_vectors_general(self):
        rot = rotation_matrix_align_vectors([2.0, 0.0, 0.0], [0.0, 0.0, 3.0])
        np.testing.assert_allclose(rot @ np.array([1.0, 0.0, 0.0]), [0.0, 0.0, 1.0], atol=1e-12, rtol=0.0)
        # The rotation axis is left untouched.
        np.testing.assert_allclose(rot @ np.array([0.0, 1.0, 0.0]), [0.0, 1.0, 0.0], atol=1e-12, rtol=0.0)
        np.testing.assert_allclose(np.linalg.det(rot), 1.0)

        np.testing.assert_array_equal(rotation_matrix_align_vectors([0.0, 0.0, 0.0], [1.0, 0.0, 0.0]), np.eye(3))

    def test_mirrored_relative_rotation_identity(self):
        rot = mirrored_relative_rotation([0.0, 0.0, 1.0], [0.0, 0.0, 1.0])
        np.testing.assert_allclose(rot, np.eye(3), atol=1e-12, rtol=0.0)

    def test_mirrored_relative_rotation_reverses_sense(self):
        rot = mirrored_relative_rotation([1.0, 0.0, 0.0], [0.0, 1.0, 0.0])
        np.testing.assert_allclose(rot @ np.array([1.0, 0.0, 0.0]), [0.0, -1.0, 0.0], atol=1e-10, rtol=0.0)

    def test_mirror_vectors(self):
        out = mirror_vectors(np.array([[1.0, 2.0, 3.0]]), [0.0, 0.0, 1.0])
        np.testing.assert_allclose(out, [[1.0, 2.0, -3.0]], atol=1e-12, rtol=0.0)
        with self.assertRaises(ValueError):
            mirror_vectors(np.array([[1.0, 0.0, 0.0]]), [0.0, 0.0, 0.0])

    def test_transform_points_and_directions(self):
        m = np.diag([2.0, 1.0, 1.0, 1.0])
        m[:3, 3] = [1.0, 2.0, 3.0]
        np.testing.assert_allclose(transform_points([[1.0, 1.0, 1.0]], m), [[3.0, 3.0, 4.0]])

        n = np.array([[1.0, 1.0, 0.0]]) / np.sqrt(2.0)
        expected = np.array([0.5, 1.0, 0.0]) / np.linalg.norm([0.5, 1.0, 0.0])
        np.testing.assert_allclose(transform_directions(n, m)[0], expected, atol=1e-12, rtol=0.0)


if __name__ == "__main__":
    unittest.main()
