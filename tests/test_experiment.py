import unittest

import numpy as np

from anamorph.core.errors import ConfigError, LifecycleError
from anamorph.core.experiment import (
    ExperimentStatus,
    NormalDeviationExperiment,
    group_adjacency,
    laplacian_smooth,
)
from anamorph.core.mirrors import translation_matrix
from anamorph.core.primitives import cube_sphere, grid_plane
from anamorph.core.settings import ExperimentSettings, OptimizerSettings
from anamorph.core.vertex_identity import VertexIdentityIndex


def _experiment(source=None, *, method="greedy", max_iterations=200, **settings):
    if source is None:
        source = grid_plane(4, 4, transform=translation_matrix((0.0, 0.0, 8.0)))
    settings.setdefault("deform_index", 5)
    return NormalDeviationExperiment(
        source,
        [0.0, 0.0, 0.0],
        settings=ExperimentSettings(**settings),
        optimizer_settings=OptimizerSettings(method=method, max_iterations=max_iterations, sampling_rate=1),
    )


class TestExperimentLifecycle(unittest.TestCase):
    def test_full_run(self):
        exp = _experiment()
        self.assertEqual(exp.status, ExperimentStatus.NONE)

        exp.initialize()
        self.assertEqual(exp.status, ExperimentStatus.INITIALIZED)
        np.testing.assert_allclose(exp.original_normals, np.tile([0.0, 0.0, 1.0], (16, 1)), atol=1e-12, rtol=0.0)

        exp.deform()
        self.assertEqual(exp.status, ExperimentStatus.DEFORMED)
        deformed_deviation = exp.deviation(exp.deformed_normals)
        self.assertGreater(deformed_deviation, 0.0)

        result = exp.optimize("all")
        self.assertEqual(exp.status, ExperimentStatus.OPTIMIZED)
        self.assertAlmostEqual(result.initial_deviation, deformed_deviation)
        self.assertLessEqual(result.final_deviation, result.initial_deviation)

        exp.smooth(passes=2, weight=0.5)
        self.assertEqual(exp.status, ExperimentStatus.SMOOTHED)
        self.assertIs(exp.current_vertices, exp.smoothed_vertices)

        report = exp.report()
        self.assertEqual(report.method, "greedy")
        self.assertEqual(report.deformation, "single")
        self.assertEqual(len(report.vertices), 16)
        self.assertEqual(len(report.trials), result.metadata["accepted"] + result.metadata["rejected"])
        self.assertTrue(report.trials)
        self.assertIn("smoothed_deviation", report.metadata)

        exp.reset()
        self.assertEqual(exp.status, ExperimentStatus.NONE)
        self.assertIsNone(exp.current_vertices)
        exp.initialize()

    def test_out_of_order_operations(self):
        exp = _experiment()
        with self.assertRaises(LifecycleError):
            exp.deform()
        with self.assertRaises(LifecycleError):
            exp.optimize("all")
        with self.assertRaises(LifecycleError):
            exp.report()
        exp.reset()

        exp.initialize()
        with self.assertRaises(LifecycleError):
            exp.initialize()
        with self.assertRaises(LifecycleError):
            exp.smooth()

    def test_manual_steps_then_finish(self):
        exp = _experiment(method="annealing", max_iterations=20)
        exp.initialize()
        exp.deform()

        step = exp.optimize("manual")
        self.assertFalse(step.done)
        self.assertEqual(exp.status, ExperimentStatus.OPTIMIZING_MANUAL)
        self.assertEqual(exp.run.iteration, 1)
        self.assertEqual(len(exp.report().trials), 1)

        exp.optimize("manual")
        self.assertEqual(exp.run.iteration, 2)

        result = exp.optimize("all")
        self.assertEqual(exp.status, ExperimentStatus.OPTIMIZED)
        self.assertEqual(result.iterations, 20)
        self.assertEqual(len(result.trials), 20)

        with self.assertRaises(LifecycleError):
            exp.optimize("manual")

    def test_manual_steps_until_done(self):
        exp = _experiment(method="annealing", max_iterations=3)
        exp.initialize()
        exp.deform()
        steps = [exp.optimize("manual") for _ in range(4)]
        self.assertTrue(steps[-1].done)
        self.assertEqual(exp.status, ExperimentStatus.OPTIMIZED)

    def test_invalid_configuration(self):
        with self.assertRaises(ConfigError):
            _experiment(method="planar")

        exp = _experiment(deform_index=99)
        exp.initialize()
        with self.assertRaises(ConfigError):
            exp.deform()
        self.assertEqual(exp.status, ExperimentStatus.INITIALIZED)

        exp = _experiment()
        exp.initialize()
        exp.deform()
        with self.assertRaises(ConfigError):
            exp.optimize("sometimes")


class TestDeformation(unittest.TestCase):
    def test_single_deformation_moves_one_group(self):
        source = cube_sphere(2, transform=translation_matrix((0.0, 0.0, 8.0)))
        exp = _experiment(source, deform_index=0, deform_factor=1.2)
        exp.initialize()
        exp.deform()

        ratio = exp.deformed_distances / exp.original_distances
        group = exp.identity.groups[0]
        np.testing.assert_allclose(ratio[group], 1.2)
        others = np.setdiff1d(np.arange(source.n_vertices), group)
        np.testing.assert_allclose(ratio[others], 1.0)
        self.assertTrue(exp.identity.is_consistent(exp.deformed_vertices))

    def test_random_deformation_is_seeded_and_bounded(self):
        source = cube_sphere(2, transform=translation_matrix((0.0, 0.0, 8.0)))
        runs = []
        for _ in range(2):
            exp = _experiment(source, deformation="random", deform_amount=0.1)
            exp.initialize()
            exp.deform()
            runs.append(exp)

        ratio = runs[0].deformed_distances / runs[0].original_distances
        self.assertTrue(np.all((ratio >= 0.9) & (ratio <= 1.1)))
        np.testing.assert_array_equal(runs[0].deformed_distances, runs[1].deformed_distances)
        self.assertTrue(runs[0].identity.is_consistent(runs[0].deformed_vertices))


class TestSmoothing(unittest.TestCase):
    def test_group_adjacency(self):
        mesh = grid_plane(2, 2)
        adj = group_adjacency(mesh.faces, VertexIdentityIndex(mesh.vertices))
        dense = adj.toarray()
        np.testing.assert_array_equal(dense, dense.T)
        self.assertEqual(set(np.unique(dense).tolist()), {0.0, 1.0})
        np.testing.assert_array_equal(np.diag(dense), np.zeros(4))
        # Diagonal a-d is shared by both triangles; b-c are not connected.
        self.assertEqual(dense[0, 3], 1.0)
        self.assertEqual(dense[1, 2], 0.0)

    def test_laplacian_smooth(self):
        mesh = grid_plane(3, 3)
        adj = group_adjacency(mesh.faces, VertexIdentityIndex(mesh.vertices))

        constant = np.full(9, 4.0)
        np.testing.assert_allclose(laplacian_smooth(constant, adj, passes=3), constant)

        spike = np.zeros(9)
        spike[4] = 1.0
        smoothed = laplacian_smooth(spike, adj, passes=1, weight=0.5)
        self.assertAlmostEqual(smoothed[4], 0.5)
        self.assertLess(smoothed.max(), 1.0)

        np.testing.assert_array_equal(laplacian_smooth(spike, adj, passes=0), spike)


if __name__ == "__main__":
    unittest.main()
