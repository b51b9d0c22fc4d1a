"""
Simulated annealing over along-ray distances.
"""

from __future__ import annotations

import logging
import math
from typing import Callable, Optional

import numpy as np

from .optimizer_base import RayFamily, RayFamilySearch, StepResult, Trial
from .settings import OptimizerSettings


_LOGGER = logging.getLogger(__name__)

_EXPONENTIAL_RATE = 5.0

TEMPERATURE_CURVES: dict[str, Callable[[float], float]] = {
    "linear": lambda x: x,
    "quadratic": lambda x: x * x,
    "cubic": lambda x: x * x * x,
    "cosine": lambda x: 0.5 * (1.0 - math.cos(math.pi * x)),
    "exponential": lambda x: math.expm1(_EXPONENTIAL_RATE * x) / math.expm1(_EXPONENTIAL_RATE),
}


def temperature(fraction: float, t_min: float, t_max: float, curve: str = "linear") -> float:
    """
    Cooling schedule: `t_max` at fraction 0, `t_min` at fraction 1.

    Every curve maps [0, 1] onto [0, 1] monotonically, so the schedule never
    heats up.
    """
    f = min(max(float(fraction), 0.0), 1.0)
    shape = TEMPERATURE_CURVES[curve](1.0 - f)
    return float(t_min) + (float(t_max) - float(t_min)) * shape


def offset_grid(offset_range: float, offset_step: float) -> np.ndarray:
    """Offsets `k * step` within `[-range, range]`, zero excluded."""
    count = int(math.floor(float(offset_range) / float(offset_step) + 1e-9))
    positive = float(offset_step) * np.arange(1, count + 1, dtype=np.float64)
    return np.concatenate([-positive[::-1], positive])


class SimulatedAnnealing(RayFamilySearch):
    """
    Metropolis search: a worse proposal (delta > 0) is accepted with
    probability `exp(-delta / T)`. Trials are recorded every `sampling_rate`
    iterations.
    """

    method = "annealing"

    def __init__(
        self,
        family: RayFamily,
        target_normals: np.ndarray,
        settings: Optional[OptimizerSettings] = None,
    ):
        super().__init__(family, target_normals, settings)
        s = self.settings
        self.offsets = offset_grid(s.offset_range, s.offset_step)
        self.trials: list[Trial] = []
        self.best_deviation = self.total_deviation
        self.best_distances = self.distances.copy()

    def _pick_vertex(self) -> int:
        if self.settings.vertex_selection == "largest":
            dev = self.deviations[self.candidates]
            return int(self.candidates[int(np.argmax(dev))])
        return int(self.candidates[int(self.rng.integers(0, self.candidates.size))])

    def _step(self) -> StepResult:
        s = self.settings
        if self.candidates.size == 0:
            self._finish("no vertex has a ray")
            return StepResult(iteration=self.iteration, done=True, total_deviation=self.total_deviation)
        if self.iteration >= int(s.max_iterations):
            self.metadata["best_deviation"] = float(self.best_deviation)
            self._finish("iteration cap reached")
            return StepResult(iteration=self.iteration, done=True, total_deviation=self.total_deviation)

        t = temperature(self.iteration / float(s.max_iterations), s.t_min, s.t_max, s.temperature_curve)
        v = self._pick_vertex()
        offset = float(self.offsets[int(self.rng.integers(0, self.offsets.size))])
        new_distance = max(float(self.distances[v]) + offset, self.family.distance_floor)

        before = self.total_deviation
        proposal = self._propose(v, new_distance)
        after = proposal[-1]
        delta = after - before
        if delta <= 0.0:
            accepted = True
        else:
            accepted = bool(self.rng.random() < math.exp(-delta / t))

        if accepted:
            self._commit(*proposal)
            if self.total_deviation < self.best_deviation:
                self.best_deviation = self.total_deviation
                self.best_distances = self.distances.copy()
        else:
            self.rejected_count += 1

        if self.iteration % int(s.sampling_rate) == 0:
            self.trials.append(
                Trial(
                    iteration=self.iteration,
                    vertex=v,
                    offset=offset,
                    temperature=t,
                    deviation_before=before,
                    deviation_after=after,
                    accepted=accepted,
                )
            )
        self.iteration += 1
        return StepResult(
            iteration=self.iteration,
            done=False,
            accepted=accepted,
            vertex=v,
            total_deviation=self.total_deviation,
        )
