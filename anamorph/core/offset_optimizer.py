"""
Depth offset placement: each vertex is pushed further along its final ray by
how far it sits behind the shallowest source vertex.
"""

from __future__ import annotations

import numpy as np

from .optimizer_base import PlacementRun, StepResult
from .settings import axis_index


class DepthOffset(PlacementRun):
    method = "offset"

    def _step(self) -> StepResult:
        axis = axis_index(self.settings.mirror_axis)
        depth = np.asarray(self.context.source_vertices, dtype=np.float64)[:, axis]
        offsets = depth - float(depth.min()) if depth.size else depth
        self.positions = self.family.positions(self.family.distances + offsets)
        self.iteration += 1
        self.metadata["depth_axis"] = self.settings.mirror_axis
        self._finalize("offsets applied")
        return StepResult(iteration=self.iteration, done=True, accepted=True, total_deviation=self.total_deviation)
