"""
Core processing modules for Anamorph
"""

from .mesh_loader import MeshLoader, MeshData, MeshProcessor
from .raycaster import SceneRaycaster, RayHit
from .ray_tracer import ReflectionTracer, ReflectionChains
from .mapper import AnamorphicMapper, MappedMesh, MappingStatus
from .optimizer_base import RayFamily, OptimizationResult, StepResult
from .optimizers import create_optimizer
from .experiment import NormalDeviationExperiment, ExperimentStatus
from .settings import MappingSettings, OptimizerSettings, ExperimentSettings
from .run_report import RunReport, save_run_report, load_run_report

__all__ = [
    # Mesh loading
    'MeshLoader',
    'MeshData',
    'MeshProcessor',
    # Ray casting
    'SceneRaycaster',
    'RayHit',
    'ReflectionTracer',
    'ReflectionChains',
    # Mapping
    'AnamorphicMapper',
    'MappedMesh',
    'MappingStatus',
    # Optimization
    'RayFamily',
    'OptimizationResult',
    'StepResult',
    'create_optimizer',
    # Normal-deviation experiment
    'NormalDeviationExperiment',
    'ExperimentStatus',
    # Settings
    'MappingSettings',
    'OptimizerSettings',
    'ExperimentSettings',
    # Run reports
    'RunReport',
    'save_run_report',
    'load_run_report',
]
