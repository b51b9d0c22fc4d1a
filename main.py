"""
Anamorph - anamorphic mirror mapping of 3D meshes

Main entry point
"""

import sys
import logging
from pathlib import Path

# Ensure repository root is on sys.path so "anamorph" is importable.
ROOT_DIR = Path(__file__).resolve().parent
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from anamorph.core.output_paths import (
    mapped_output_path,
    optimized_output_path,
    report_output_path,
)

_LOGGER = logging.getLogger(__name__)


def run_cli(argv=None) -> int:
    """Run the command line interface; returns a process exit code."""
    args = list(sys.argv[1:] if argv is None else argv)

    try:
        from anamorph.core.logging_utils import setup_logging

        setup_logging(console=True)
    except Exception as e:
        _LOGGER.debug("Failed to initialize logging: %s", e, exc_info=True)

    if len(args) < 1:
        print_help()
        return 0

    cmd = args[0]

    if cmd == '--help' or cmd == '-h':
        print_help()
        return 0

    if cmd == '--info' and len(args) > 1:
        return show_file_info(args[1])

    if cmd == '--map' and len(args) > 1:
        return map_scene(args[1], args[2] if len(args) > 2 else None)

    if cmd == '--optimize' and len(args) > 1:
        return optimize_scene(args[1], args[2] if len(args) > 2 else None)

    if cmd == '--experiment' and len(args) > 1:
        return run_experiment(args[1], args[2] if len(args) > 2 else None)

    print(f"Error: Unknown command: {cmd}")
    print("Use --help for usage information")
    return 2


def print_help():
    from anamorph.core.mesh_loader import MeshLoader
    from anamorph.core.settings import OPTIMIZER_METHODS

    print("=" * 60)
    print("Anamorph - anamorphic mirror mapping")
    print("=" * 60)
    print()
    print("Usage:")
    print("  python main.py --info <mesh_file>                  # Show file info")
    print("  python main.py --map <scene.json> [output]         # Map the scene object")
    print("  python main.py --optimize <scene.json> [output]    # Map, then optimize")
    print("  python main.py --experiment <scene.json> [report]  # Normal-deviation experiment")
    print()
    print(f"Supported formats: {list(MeshLoader.SUPPORTED_FORMATS.keys())}")
    print(f"Optimizer methods: {list(OPTIMIZER_METHODS)}")
    print()
    print("Examples:")
    print("  python main.py --map scenes/curved.json")
    print("  python main.py --optimize scenes/curved.json bunny_optimized.ply")


def show_file_info(filepath: str) -> int:
    from anamorph.core.mesh_loader import MeshLoader

    print(f"\nFile Info: {filepath}")
    print("-" * 40)

    try:
        info = MeshLoader().get_file_info(filepath)
        for key, value in info.items():
            print(f"  {key}: {value}")
    except Exception as e:
        print(f"  Error: {e}")
        return 1
    return 0


def _map(scene):
    from anamorph.core.mapper import AnamorphicMapper

    mapper = AnamorphicMapper(
        scene.build_raycaster(),
        scene.viewpoint,
        scene.source,
        settings=scene.mapping,
        optimizer_settings=scene.optimizer,
    )
    mapped = mapper.map()
    missed = int((~mapped.valid).sum())
    print(f"  Mapped: {mapped.n_vertices:,} vertices ({missed:,} without reflection)")
    print(f"  Total angular deviation: {mapper.current_deviation():.4f}")
    return mapper


def map_scene(scene_path: str, output_path: str | None = None) -> int:
    from anamorph.core.scene_file import load_scene

    print(f"\nMapping: {scene_path}")
    print("-" * 40)

    try:
        scene = load_scene(scene_path)
        print(f"  Object: {scene.source.name} ({scene.source.n_vertices:,} vertices, {scene.source.n_faces:,} faces)")
        mapper = _map(scene)

        save_path = mapped_output_path(scene_path, output_path)
        mapper.save(save_path)
        print(f"  Saved: {save_path}")
    except Exception as e:
        print(f"Error: {e}")
        import traceback
        traceback.print_exc()
        return 1
    return 0


def optimize_scene(scene_path: str, output_path: str | None = None) -> int:
    from anamorph.core.scene_file import load_scene

    print(f"\nOptimizing: {scene_path}")
    print("-" * 40)

    try:
        scene = load_scene(scene_path)
        mapper = _map(scene)

        print(f"  Optimizer: {scene.optimizer.method}")
        result = mapper.optimize()
        print(f"  Iterations: {result.iterations:,}")
        print(f"  Deviation: {result.initial_deviation:.4f} -> {result.final_deviation:.4f} ({result.improvement:+.2%})")
        for key in ("conflicts", "forced_termination", "nan_fallbacks", "stop_reason"):
            if key in result.metadata:
                print(f"  {key}: {result.metadata[key]}")

        save_path = optimized_output_path(scene_path, output_path)
        mapper.save(save_path)
        print(f"  Saved: {save_path}")
    except Exception as e:
        print(f"Error: {e}")
        import traceback
        traceback.print_exc()
        return 1
    return 0


def run_experiment(scene_path: str, report_path: str | None = None) -> int:
    from anamorph.core.experiment import NormalDeviationExperiment
    from anamorph.core.run_report import save_run_report
    from anamorph.core.scene_file import load_scene

    print(f"\nExperiment: {scene_path}")
    print("-" * 40)

    try:
        scene = load_scene(scene_path)
        experiment = NormalDeviationExperiment(
            scene.source,
            scene.viewpoint,
            settings=scene.experiment,
            optimizer_settings=scene.optimizer,
            identity_eps=scene.mapping.identity_eps,
        )

        print("\n[1/4] Initializing...")
        experiment.initialize()

        print("\n[2/4] Deforming...")
        experiment.deform()
        print(f"      Deviation after deformation: {experiment.deviation(experiment.deformed_normals):.4f}")

        print(f"\n[3/4] Optimizing ({scene.optimizer.method})...")
        result = experiment.optimize("all")
        print(f"      Iterations: {result.iterations:,}")
        print(f"      Deviation: {result.initial_deviation:.4f} -> {result.final_deviation:.4f}")

        if scene.experiment.smoothing_passes > 0:
            experiment.smooth()
            print(f"      Deviation after smoothing: {experiment.deviation(experiment.smoothed_normals):.4f}")

        print("\n[4/4] Saving report...")
        opt = scene.optimizer
        save_path = report_output_path(
            scene.experiment.deformation,
            opt.method,
            opt.sampling_rate,
            opt.offset_range,
            directory=Path(scene_path).parent,
            output_path=report_path,
        )
        save_run_report(save_path, experiment.report())
        print(f"      Saved: {save_path}")
    except Exception as e:
        print(f"\nError: {e}")
        import traceback
        traceback.print_exc()
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(run_cli())
