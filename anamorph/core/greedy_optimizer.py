"""
Greedy iterative local search over along-ray distances.
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from .optimizer_base import RayFamily, RayFamilySearch, StepResult, Trial
from .settings import OptimizerSettings


_LOGGER = logging.getLogger(__name__)


class GreedySearch(RayFamilySearch):
    """
    Works through the vertices ranked by deviation (largest first).

    The vertex at `stuck_offset` in the ranking gets its distance scaled by
    `1 + mutation` or `1 - mutation` (sign drawn from the seeded RNG). The move
    is kept when the total deviation does not increase; the ranking is then
    rebuilt and `stuck_offset` goes back to 0. Vertices already below
    `min_deviation` and rejected moves advance `stuck_offset`; the run stops
    once it passes the last ranked vertex or at `max_iterations`. Every
    `sampling_rate`-th iteration that evaluates a move is kept in `trials`.
    """

    method = "greedy"

    def __init__(
        self,
        family: RayFamily,
        target_normals: np.ndarray,
        settings: Optional[OptimizerSettings] = None,
    ):
        super().__init__(family, target_normals, settings)
        self.stuck_offset = 0
        self.angle_too_small = 0
        self.trials: list[Trial] = []
        self.ranking = self._rank()

    def _rank(self) -> np.ndarray:
        dev = self.deviations[self.candidates]
        order = np.argsort(-dev, kind="stable")
        return self.candidates[order]

    def _step(self) -> StepResult:
        s = self.settings
        if self.stuck_offset >= self.ranking.size:
            _LOGGER.info("No more vertices to be changed. Stopping at iteration %d", self.iteration)
            self._finish("no vertex left to change")
            return self._summary()
        if self.iteration >= int(s.max_iterations):
            self._finish("iteration cap reached")
            return self._summary()

        self.iteration += 1
        v = int(self.ranking[self.stuck_offset])
        angle = float(self.deviations[v])
        if angle < float(s.min_deviation):
            self.angle_too_small += 1
            self.stuck_offset += 1
            return StepResult(iteration=self.iteration, done=False, vertex=v, total_deviation=self.total_deviation)

        add = int(self.rng.integers(0, 2)) == 0
        factor = 1.0 + float(s.mutation) if add else 1.0 - float(s.mutation)
        new_distance = float(self.distances[v]) * factor
        offset = new_distance - float(self.distances[v])

        proposal = self._propose(v, new_distance)
        total = proposal[-1]
        _LOGGER.debug("Vertex %d (%.4f) gives new total angular deviation: %.6f", v, angle, total)
        if total > self.total_deviation:
            self._record(v, offset, total, accepted=False)
            self.stuck_offset += 1
            self.rejected_count += 1
            return StepResult(iteration=self.iteration, done=False, vertex=v, total_deviation=self.total_deviation)

        self._record(v, offset, total, accepted=True)
        self._commit(*proposal)
        self.stuck_offset = 0
        self.ranking = self._rank()
        return StepResult(
            iteration=self.iteration,
            done=False,
            accepted=True,
            vertex=v,
            total_deviation=self.total_deviation,
        )

    def _record(self, vertex: int, offset: float, after: float, *, accepted: bool) -> None:
        index = self.iteration - 1
        if index % int(self.settings.sampling_rate) == 0:
            self.trials.append(
                Trial(
                    iteration=index,
                    vertex=vertex,
                    offset=offset,
                    temperature=0.0,
                    deviation_before=self.total_deviation,
                    deviation_after=after,
                    accepted=accepted,
                )
            )

    def _summary(self) -> StepResult:
        self.metadata["angle_too_small"] = int(self.angle_too_small)
        if self.initial_deviation:
            change = (self.total_deviation - self.initial_deviation) / self.initial_deviation * 100.0
        else:
            change = 0.0
        _LOGGER.info(
            "Greedy search: %d accepted, %d rejected, %d below threshold; deviation change %.3f%%",
            self.accepted_count,
            self.rejected_count,
            self.angle_too_small,
            change,
        )
        return StepResult(
            iteration=self.iteration,
            done=True,
            total_deviation=self.total_deviation,
            message=self.stop_reason,
        )
