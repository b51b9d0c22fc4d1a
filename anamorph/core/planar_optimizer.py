"""
Closed-form planar correction.

Works in a single reference plane (x/z by default). The central vertex is the
one whose last reflection coincides with the mirror normal in that plane; it
keeps its mapped position. Every other vertex is slid along its reflection ray
onto the line that leaves the central mapped point at the mirrored version of
the vertex's angle around the central source vertex.

Only meaningful for flat-ish objects seen through a mirror that curves in the
other direction.
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from .errors import NoPlanarSolution
from .geometry_utils import angle_between, line_line_intersection, signed_angle_2d
from .logging_utils import log_once, suppressed_count
from .optimizer_base import MappingContext, PlacementRun, StepResult
from .settings import OptimizerSettings, axis_index


_LOGGER = logging.getLogger(__name__)

GAMMA_RANGE = (0.4, 3.0)


class PlanarCorrection(PlacementRun):
    """One step places one vertex."""

    method = "planar"

    def __init__(
        self,
        context: MappingContext,
        target_normals: np.ndarray,
        settings: Optional[OptimizerSettings] = None,
    ):
        super().__init__(context, target_normals, settings)
        a, b = (axis_index(v) for v in self.settings.planar_axes)
        self.axes = (a, b)

        family = self.family
        self.hits2 = family.origins[:, [a, b]]
        self.refl2 = family.directions[:, [a, b]]
        normals2 = np.asarray(context.mirror_normals, dtype=np.float64)[:, [a, b]]

        min_angle = np.inf
        central = -1
        for i in np.flatnonzero(family.valid):
            angle = angle_between(self.refl2[i], normals2[i])
            if angle < min_angle:
                min_angle = angle
                central = int(i)
        _LOGGER.info("Planar correction: minimum angle %.6f degrees at index %d", min_angle, central)
        if central < 0 or min_angle != 0.0:
            raise NoPlanarSolution(
                f"No last reflection is aligned with its mirror normal in the "
                f"{self.settings.planar_axes[0]}{self.settings.planar_axes[1]} plane "
                f"(minimum angle {min_angle} degrees)"
            )
        self.central = central

        source2 = np.asarray(context.source_vertices, dtype=np.float64)[:, [a, b]]
        self.source2 = source2
        self.central_source = source2[central]
        self.central_mapped = self.mapped[central, [a, b]]

        # The source yaw is measured against the second plane axis: an object
        # yawed by theta gives the reference (cos theta, sin theta).
        axis = np.asarray(context.reference_axis, dtype=np.float64).reshape(3)
        ref = np.array([axis[a], -axis[b]])
        nrm = float(np.linalg.norm(ref))
        self.reference = ref / nrm if nrm > 0.0 else np.array([1.0, 0.0])

        self.order = [int(i) for i in range(family.n_vertices) if i != central]
        self.nan_fallbacks = 0
        self._nan_key = f"planar-nan-gamma-{id(self)}"
        self.missed_intersections = 0
        self.abnormal_gammas = 0

    def _place(self, i: int) -> None:
        angle = signed_angle_2d(self.reference, self.source2[i] - self.central_source)
        angle_rad = np.radians(angle)
        rotated = np.array([np.cos(-angle_rad), np.sin(-angle_rad)])

        point, ok = line_line_intersection(self.hits2[i], self.refl2[i], self.central_mapped, rotated)
        if not ok:
            self.missed_intersections += 1
            _LOGGER.error("Planar correction: vertex %d does not intersect its target line", i)
            return

        with np.errstate(divide="ignore", invalid="ignore"):
            gamma = np.float64(point[0] - self.hits2[i][0]) / np.float64(self.refl2[i][0])
        if not np.isfinite(gamma):
            self.nan_fallbacks += 1
            log_once(
                _LOGGER,
                self._nan_key,
                logging.WARNING,
                "Planar correction: non-finite gamma at vertex %d, keeping mapped position",
                i,
            )
            return

        gamma = float(gamma)
        self.positions[i] = self.family.origins[i] + gamma * self.family.directions[i]
        if gamma < GAMMA_RANGE[0] or gamma > GAMMA_RANGE[1]:
            self.abnormal_gammas += 1
            _LOGGER.debug("Planar correction: vertex %d has abnormal gamma %.6f", i, gamma)

    def _step(self) -> StepResult:
        if self.iteration >= len(self.order):
            self.metadata.update(
                central_vertex=self.central,
                nan_fallbacks=self.nan_fallbacks,
                missed_intersections=self.missed_intersections,
                abnormal_gammas=self.abnormal_gammas,
            )
            if self.abnormal_gammas:
                _LOGGER.error(
                    "Planar correction: %d vertices have a gamma outside [%.1f, %.1f]",
                    self.abnormal_gammas,
                    GAMMA_RANGE[0],
                    GAMMA_RANGE[1],
                )
            repeats = suppressed_count(self._nan_key)
            if repeats:
                _LOGGER.warning("Planar correction: non-finite gamma repeated at %d more vertices", repeats)
            self._finalize("all vertices placed")
            return StepResult(iteration=self.iteration, done=True, total_deviation=self.total_deviation)

        i = self.order[self.iteration]
        self.iteration += 1
        if self.family.valid[i]:
            self._place(i)
        return StepResult(iteration=self.iteration, done=False, accepted=True, vertex=i)
