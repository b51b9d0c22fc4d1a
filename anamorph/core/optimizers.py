"""
Optimizer registry.
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from .annealing_optimizer import SimulatedAnnealing
from .errors import ConfigError
from .greedy_optimizer import GreedySearch
from .offset_optimizer import DepthOffset
from .optimizer_base import MappingContext, OptimizerRun, RayFamily
from .planar_optimizer import PlanarCorrection
from .propagation_optimizer import TrianglePropagation
from .settings import OptimizerSettings


SEARCH_STRATEGIES = {
    "greedy": GreedySearch,
    "annealing": SimulatedAnnealing,
}

PLACEMENT_STRATEGIES = {
    "planar": PlanarCorrection,
    "propagation": TrianglePropagation,
    "offset": DepthOffset,
}


def create_optimizer(
    settings: OptimizerSettings,
    target_normals: np.ndarray,
    *,
    family: Optional[RayFamily] = None,
    context: Optional[MappingContext] = None,
) -> OptimizerRun:
    """
    Build a run for `settings.method`.

    Search strategies need a ray family (taken from `context` when only that
    is given); placement strategies need the full mapping context.
    """
    method = settings.method
    if method in SEARCH_STRATEGIES:
        if family is None:
            if context is None:
                raise ConfigError(f"Optimizer {method!r} needs a ray family")
            family = context.family
        return SEARCH_STRATEGIES[method](family, target_normals, settings)
    if method in PLACEMENT_STRATEGIES:
        if context is None:
            raise ConfigError(f"Optimizer {method!r} needs a mapped mesh")
        return PLACEMENT_STRATEGIES[method](context, target_normals, settings)
    raise ConfigError(f"Unknown optimizer method: {method!r}")
