"""
Output path helpers for common exports.

Centralizes naming conventions so the CLI and scripted runs stay in sync.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union

PathLike = Union[str, Path]

MAPPED_SUFFIX = ".mapped.ply"
OPTIMIZED_SUFFIX = ".optimized.ply"
REPORT_SUFFIX = ".anrun"


def _as_path(value: PathLike) -> Path:
    return value if isinstance(value, Path) else Path(value)


def _resolve_output_path(input_path: PathLike, output_path: Optional[PathLike], suffix: str) -> Path:
    if output_path:
        return _as_path(output_path)
    return _as_path(input_path).with_suffix(suffix)


def mapped_output_path(input_path: PathLike, output_path: Optional[PathLike] = None) -> Path:
    return _resolve_output_path(input_path, output_path, MAPPED_SUFFIX)


def optimized_output_path(input_path: PathLike, output_path: Optional[PathLike] = None) -> Path:
    return _resolve_output_path(input_path, output_path, OPTIMIZED_SUFFIX)


def _format_number(value: float) -> str:
    text = f"{float(value):g}"
    return text.replace("-", "m").replace(".", "p")


def report_file_name(deformation: str, method: str, sampling_rate: int, offset_range: float) -> str:
    """e.g. `single_annealing_s10_r0p1.anrun`"""
    return (
        f"{str(deformation).strip().lower()}_{str(method).strip().lower()}"
        f"_s{int(sampling_rate)}_r{_format_number(offset_range)}{REPORT_SUFFIX}"
    )


def report_output_path(
    deformation: str,
    method: str,
    sampling_rate: int,
    offset_range: float,
    *,
    directory: Optional[PathLike] = None,
    output_path: Optional[PathLike] = None,
) -> Path:
    if output_path:
        return _as_path(output_path)
    name = report_file_name(deformation, method, sampling_rate, offset_range)
    return _as_path(directory) / name if directory else Path(name)
