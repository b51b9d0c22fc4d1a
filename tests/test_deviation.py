import unittest

import numpy as np

from anamorph.core.deviation import angular_deviation, ideal_normals, total_deviation
from anamorph.core.errors import ConfigError, DeviationLengthError


class TestAngularDeviation(unittest.TestCase):
    def test_identical_fields_have_zero_deviation(self):
        normals = np.array([[0.0, 0.0, 1.0], [0.6, 0.8, 0.0], [0.0, -1.0, 0.0]])
        np.testing.assert_array_equal(angular_deviation(normals, normals), [0.0, 0.0, 0.0])
        self.assertEqual(total_deviation(normals, normals), 0.0)

    def test_known_angles(self):
        target = np.array([[0.0, 0.0, 1.0], [0.0, 0.0, 1.0], [1.0, 0.0, 0.0]])
        current = np.array([[0.0, 0.0, -1.0], [0.0, 1.0, 0.0], [1.0, 1.0, 0.0]])
        np.testing.assert_allclose(angular_deviation(target, current), [180.0, 90.0, 45.0], atol=1e-12, rtol=0.0)
        self.assertAlmostEqual(total_deviation(target, current), 315.0)

    def test_unnormalized_and_zero_rows(self):
        target = np.array([[0.0, 0.0, 5.0], [0.0, 0.0, 0.0]])
        current = np.array([[0.0, 0.0, 0.1], [1.0, 0.0, 0.0]])
        np.testing.assert_array_equal(angular_deviation(target, current), [0.0, 0.0])

    def test_length_mismatch(self):
        with self.assertRaises(DeviationLengthError):
            angular_deviation(np.zeros((3, 3)), np.zeros((2, 3)))
        with self.assertRaises(ValueError):
            total_deviation(np.zeros((1, 3)), np.zeros((2, 3)))


class TestIdealNormals(unittest.TestCase):
    def test_mirror_axis(self):
        normals = np.array([[0.0, 0.6, 0.8], [1.0, 0.0, 0.0]])
        np.testing.assert_allclose(ideal_normals(normals), [[0.0, 0.6, -0.8], [1.0, 0.0, 0.0]], atol=1e-12, rtol=0.0)
        np.testing.assert_allclose(ideal_normals(normals, "x"), [[0.0, 0.6, 0.8], [-1.0, 0.0, 0.0]], atol=1e-12, rtol=0.0)

    def test_unknown_axis(self):
        with self.assertRaises(ConfigError):
            ideal_normals(np.zeros((1, 3)), "w")


if __name__ == "__main__":
    unittest.main()
