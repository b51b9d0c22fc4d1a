import unittest

import numpy as np

from anamorph.core.annealing_optimizer import SimulatedAnnealing, offset_grid, temperature, TEMPERATURE_CURVES
from anamorph.core.errors import ConfigError, DeviationLengthError
from anamorph.core.greedy_optimizer import GreedySearch
from anamorph.core.mirrors import translation_matrix
from anamorph.core.optimizer_base import RayFamily
from anamorph.core.optimizers import create_optimizer
from anamorph.core.primitives import cube_sphere, grid_plane
from anamorph.core.settings import OptimizerSettings
from anamorph.core.vertex_identity import VertexIdentityIndex


def _view_family(mesh, viewpoint=(0.0, 0.0, 0.0), *, deform_group=None, factor=1.1, identity_eps=0.0):
    """Ray family through the mesh vertices as seen from `viewpoint`; returns (family, target normals)."""
    eye = np.asarray(viewpoint, dtype=np.float64)
    vertices = mesh.global_vertices()
    rays = vertices - eye
    distances = np.linalg.norm(rays, axis=1)
    identity = VertexIdentityIndex(mesh.vertices, eps=identity_eps)
    family = RayFamily(
        origins=np.tile(eye, (vertices.shape[0], 1)),
        directions=rays / distances[:, None],
        distances=distances,
        scale=1.0,
        valid=np.ones(vertices.shape[0], dtype=bool),
        identity=identity,
        faces=mesh.faces,
        continuous=mesh.continuous,
    )
    target = family.normals(vertices)
    if deform_group is not None:
        deformed = distances.copy()
        deformed[identity.groups[deform_group]] *= factor
        family = family.with_distances(deformed)
    return family, target


def _grid(nx=4, ny=4):
    return grid_plane(nx, ny, transform=translation_matrix((0.0, 0.0, 8.0)))


def _nudged_sphere():
    """cube_sphere(2) with one seam duplicate moved off its group by 1e-7."""
    mesh = cube_sphere(2, transform=translation_matrix((0.0, 0.0, 8.0)))
    group = VertexIdentityIndex(mesh.vertices).groups[0]
    mesh.vertices[group[1]] += 1e-7
    return mesh, group


class TestRayFamily(unittest.TestCase):
    def test_positions_follow_rays(self):
        family, _ = _view_family(_grid())
        np.testing.assert_allclose(family.positions(), _grid().global_vertices(), atol=1e-12, rtol=0.0)

    def test_invalid_vertices_use_fallback_and_floor(self):
        family, _ = _view_family(_grid(2, 2))
        family.valid[0] = False
        family.fallback = np.full((4, 3), 7.0)
        family.min_distance = 100.0

        positions = family.positions()
        np.testing.assert_array_equal(positions[0], [7.0, 7.0, 7.0])
        np.testing.assert_allclose(np.linalg.norm(positions[1:], axis=1), 100.0, atol=1e-9, rtol=0.0)

    def test_merged_near_duplicates_share_one_ray(self):
        mesh, group = _nudged_sphere()
        family, _ = _view_family(mesh, identity_eps=1e-4)
        self.assertEqual(family.identity.identity_of(group[1]).tolist(), group.tolist())
        np.testing.assert_array_equal(family.directions[group[1]], family.directions[group[0]])
        np.testing.assert_array_equal(family.distances[group[1]], family.distances[group[0]])
        self.assertTrue(family.identity.is_consistent(family.positions()))

    def test_row_count_mismatch(self):
        with self.assertRaises(ValueError):
            RayFamily(
                origins=np.zeros((2, 3)),
                directions=np.zeros((3, 3)),
                distances=np.zeros(2),
                scale=1.0,
                valid=np.ones(2, dtype=bool),
                identity=VertexIdentityIndex(np.zeros((2, 3))),
                faces=np.zeros((0, 3)),
            )


class TestGreedySearch(unittest.TestCase):
    def test_total_deviation_never_increases(self):
        family, target = _view_family(_grid(), deform_group=5)
        run = GreedySearch(family, target, OptimizerSettings(method="greedy", max_iterations=300))
        self.assertGreater(run.initial_deviation, 0.0)

        previous = run.total_deviation
        for step in run.iter_steps():
            self.assertLessEqual(step.total_deviation, previous)
            previous = step.total_deviation
        result = run.result()
        self.assertLessEqual(result.final_deviation, result.initial_deviation)
        self.assertEqual(result.method, "greedy")

    def test_some_seed_recovers_the_deformation(self):
        improved = []
        for seed in range(5):
            family, target = _view_family(_grid(), deform_group=5)
            result = GreedySearch(family, target, OptimizerSettings(method="greedy", seed=seed, max_iterations=300)).run()
            improved.append(result.final_deviation < result.initial_deviation)
        self.assertTrue(any(improved))

    def test_optimal_mesh_stops_after_one_pass(self):
        family, target = _view_family(_grid())
        result = GreedySearch(family, target, OptimizerSettings(method="greedy")).run()
        self.assertEqual(result.iterations, 16)
        self.assertEqual(result.metadata["angle_too_small"], 16)
        self.assertEqual(result.metadata["stop_reason"], "no vertex left to change")
        np.testing.assert_array_equal(result.positions, family.positions())

    def test_iteration_cap(self):
        family, target = _view_family(_grid(), deform_group=5)
        run = GreedySearch(family, target, OptimizerSettings(method="greedy", max_iterations=3))
        result = run.run()
        self.assertEqual(result.iterations, 3)
        self.assertEqual(run.stop_reason, "iteration cap reached")
        self.assertTrue(run.step().done)

    def test_identity_groups_move_together(self):
        mesh = cube_sphere(2, transform=translation_matrix((0.0, 0.0, 8.0)))
        family, target = _view_family(mesh, deform_group=0)
        self.assertEqual(family.identity.groups[0].size, 3)

        run = GreedySearch(family, target, OptimizerSettings(method="greedy", max_iterations=60))
        for _ in run.iter_steps():
            self.assertTrue(family.identity.is_consistent(run.positions))
            self.assertTrue(np.all(run.normals[family.identity.groups[0]] == run.normals[family.identity.groups[0][0]]))

    def test_merged_near_duplicates_move_together(self):
        mesh, _ = _nudged_sphere()
        family, target = _view_family(mesh, identity_eps=1e-4)
        run = GreedySearch(family, target, OptimizerSettings(method="greedy", max_iterations=50))
        result = run.run()
        self.assertTrue(family.identity.is_consistent(result.positions))

    def test_proposals_are_recorded_as_trials(self):
        family, target = _view_family(_grid(), deform_group=5)
        result = GreedySearch(family, target, OptimizerSettings(method="greedy", max_iterations=300)).run()

        self.assertEqual(len(result.trials), result.metadata["accepted"] + result.metadata["rejected"])
        self.assertTrue(result.trials)
        for trial in result.trials:
            self.assertEqual(trial.temperature, 0.0)
            self.assertNotEqual(trial.offset, 0.0)
            if trial.accepted:
                self.assertLessEqual(trial.deviation_after, trial.deviation_before)
            else:
                self.assertGreater(trial.deviation_after, trial.deviation_before)
        iterations = [t.iteration for t in result.trials]
        self.assertEqual(iterations, sorted(set(iterations)))

    def test_trial_sampling_rate(self):
        family, target = _view_family(_grid(), deform_group=5)
        settings = OptimizerSettings(method="greedy", max_iterations=300, sampling_rate=3)
        result = GreedySearch(family, target, settings).run()
        self.assertTrue(result.trials)
        self.assertTrue(all(t.iteration % 3 == 0 for t in result.trials))

    def test_same_seed_same_result(self):
        results = []
        for _ in range(2):
            family, target = _view_family(_grid(), deform_group=5)
            results.append(GreedySearch(family, target, OptimizerSettings(method="greedy", seed=3, max_iterations=100)).run())
        np.testing.assert_array_equal(results[0].positions, results[1].positions)
        self.assertEqual(results[0].final_deviation, results[1].final_deviation)

    def test_target_length_mismatch(self):
        family, target = _view_family(_grid())
        with self.assertRaises(DeviationLengthError):
            GreedySearch(family, target[:-1])


class TestAnnealingSchedule(unittest.TestCase):
    def test_temperature_endpoints_and_monotonic(self):
        for curve in TEMPERATURE_CURVES:
            self.assertAlmostEqual(temperature(0.0, 0.01, 10.0, curve), 10.0)
            self.assertAlmostEqual(temperature(1.0, 0.01, 10.0, curve), 0.01)
            values = [temperature(f, 0.01, 10.0, curve) for f in np.linspace(0.0, 1.0, 21)]
            self.assertTrue(all(b <= a for a, b in zip(values, values[1:])), curve)

    def test_offset_grid(self):
        grid = offset_grid(0.1, 0.01)
        self.assertEqual(grid.size, 20)
        self.assertNotIn(0.0, grid.tolist())
        np.testing.assert_allclose(grid, -grid[::-1])
        self.assertAlmostEqual(float(grid.max()), 0.1)


class TestSimulatedAnnealing(unittest.TestCase):
    def _settings(self, **kwargs):
        kwargs.setdefault("max_iterations", 40)
        return OptimizerSettings(method="annealing", **kwargs)

    def test_trials_form_a_chain(self):
        family, target = _view_family(_grid(), deform_group=5)
        result = SimulatedAnnealing(family, target, self._settings(sampling_rate=1)).run()

        self.assertEqual(result.iterations, 40)
        self.assertEqual(len(result.trials), 40)
        self.assertEqual(result.trials[0].deviation_before, result.initial_deviation)
        for prev, cur in zip(result.trials, result.trials[1:]):
            expected = prev.deviation_after if prev.accepted else prev.deviation_before
            self.assertEqual(cur.deviation_before, expected)
            self.assertEqual(cur.iteration, prev.iteration + 1)
            self.assertGreaterEqual(prev.temperature, cur.temperature)

        last = result.trials[-1]
        final = last.deviation_after if last.accepted else last.deviation_before
        self.assertEqual(result.final_deviation, final)
        self.assertLessEqual(result.metadata["best_deviation"], result.initial_deviation)

    def test_sampling_rate(self):
        family, target = _view_family(_grid(), deform_group=5)
        result = SimulatedAnnealing(family, target, self._settings(sampling_rate=5)).run()

        self.assertEqual([t.iteration for t in result.trials], [0, 5, 10, 15, 20, 25, 30, 35])
        allowed = set(np.round(offset_grid(0.1, 0.01), 12).tolist())
        for trial in result.trials:
            self.assertIn(round(trial.offset, 12), allowed)
            self.assertEqual(set(trial.to_dict()), {
                "iteration", "vertex", "offset", "temperature", "deviation_before", "deviation_after", "accepted",
            })

    def test_largest_vertex_selection_is_deterministic(self):
        results = []
        for _ in range(2):
            family, target = _view_family(_grid(), deform_group=5)
            results.append(SimulatedAnnealing(family, target, self._settings(vertex_selection="largest")).run())
        self.assertEqual([t.vertex for t in results[0].trials], [t.vertex for t in results[1].trials])
        np.testing.assert_array_equal(results[0].distances, results[1].distances)

    def test_identity_groups_move_together(self):
        mesh = cube_sphere(2, transform=translation_matrix((0.0, 0.0, 8.0)))
        family, target = _view_family(mesh, deform_group=0)
        run = SimulatedAnnealing(family, target, self._settings())
        for _ in run.iter_steps():
            self.assertTrue(family.identity.is_consistent(run.positions))

    def test_resume_after_manual_steps(self):
        family, target = _view_family(_grid(), deform_group=5)
        run = SimulatedAnnealing(family, target, self._settings())
        for _ in range(10):
            run.step()
        self.assertEqual(run.iteration, 10)
        self.assertFalse(run.done)
        result = run.run()
        self.assertEqual(result.iterations, 40)

        family, target = _view_family(_grid(), deform_group=5)
        uninterrupted = SimulatedAnnealing(family, target, self._settings()).run()
        np.testing.assert_array_equal(result.distances, uninterrupted.distances)


class TestOptimizerRegistry(unittest.TestCase):
    def test_search_needs_a_family(self):
        family, target = _view_family(_grid())
        self.assertIsInstance(create_optimizer(OptimizerSettings(method="greedy"), target, family=family), GreedySearch)
        with self.assertRaises(ConfigError):
            create_optimizer(OptimizerSettings(method="annealing"), target)

    def test_placement_needs_a_context(self):
        family, target = _view_family(_grid())
        with self.assertRaises(ConfigError):
            create_optimizer(OptimizerSettings(method="offset"), target, family=family)


if __name__ == "__main__":
    unittest.main()
