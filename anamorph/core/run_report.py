"""
Optimization run reports (.anrun)

A report is a zip container with a JSON manifest, so long trial logs and the
final vertex buffer stay compact. Plain JSON is accepted on load.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import json
from pathlib import Path
from typing import Any
import zipfile

from .errors import AnamorphError


REPORT_FORMAT = "anamorph_run_report"
REPORT_VERSION = 1
MANIFEST_NAME = "report.json"


class ReportFormatError(AnamorphError):
    pass


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


@dataclass
class RunReport:
    """
    Attributes:
        object_name: name of the optimized object
        seed: RNG seed of the run
        deformation: deformation method ("single", "random", or "" for mapping runs)
        method: optimizer method
        sampling_rate: trial recording interval
        offset_range: annealing offset range
        iterations: iterations executed
        initial_deviation / final_deviation: total angular deviation (degrees)
        trials: per-iteration records (iteration, vertex, offset, temperature,
            deviations before/after, accepted)
        vertices: final vertex buffer, (V, 3) as nested lists
        metadata: free-form run metadata (conflicts, stop reason, ...)
    """
    object_name: str
    seed: int
    method: str
    deformation: str = ""
    sampling_rate: int = 1
    offset_range: float = 0.0
    iterations: int = 0
    initial_deviation: float = 0.0
    final_deviation: float = 0.0
    trials: list[dict[str, Any]] = field(default_factory=list)
    vertices: list[list[float]] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "object_name": str(self.object_name),
            "seed": int(self.seed),
            "method": str(self.method),
            "deformation": str(self.deformation),
            "sampling_rate": int(self.sampling_rate),
            "offset_range": float(self.offset_range),
            "iterations": int(self.iterations),
            "initial_deviation": float(self.initial_deviation),
            "final_deviation": float(self.final_deviation),
            "trials": [dict(t) for t in self.trials],
            "vertices": [[float(c) for c in v] for v in self.vertices],
            "metadata": _jsonable(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RunReport":
        if not isinstance(data, dict):
            raise ReportFormatError("Invalid report body (expected JSON object)")
        try:
            return cls(
                object_name=str(data["object_name"]),
                seed=int(data["seed"]),
                method=str(data["method"]),
                deformation=str(data.get("deformation", "")),
                sampling_rate=int(data.get("sampling_rate", 1)),
                offset_range=float(data.get("offset_range", 0.0)),
                iterations=int(data.get("iterations", 0)),
                initial_deviation=float(data.get("initial_deviation", 0.0)),
                final_deviation=float(data.get("final_deviation", 0.0)),
                trials=list(data.get("trials", [])),
                vertices=[list(v) for v in data.get("vertices", [])],
                metadata=dict(data.get("metadata", {}) or {}),
            )
        except KeyError as e:
            raise ReportFormatError(f"Missing report field: {e.args[0]}") from e
        except (TypeError, ValueError) as e:
            raise ReportFormatError(f"Invalid report field: {e}") from e


def _jsonable(value: Any) -> Any:
    """Convert numpy scalars/arrays nested in metadata to plain JSON types."""
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if hasattr(value, "tolist"):
        return value.tolist()
    return value


def save_run_report(path: str | Path, report: RunReport, *, meta: dict[str, Any] | None = None) -> str:
    """
    Save a run report.

    Args:
        path: destination path (usually ends with .anrun)
        report: report to write
        meta: optional metadata (e.g., package version)
    """
    out_path = Path(path)
    doc: dict[str, Any] = {
        "format": REPORT_FORMAT,
        "version": REPORT_VERSION,
        "saved_at": _utc_now_iso(),
        "meta": dict(meta or {}),
        "report": report.to_dict(),
    }

    data = json.dumps(doc, ensure_ascii=False, indent=2)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(out_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr(MANIFEST_NAME, data.encode("utf-8"))
    return str(out_path)


def load_run_report_document(path: str | Path) -> dict[str, Any]:
    """
    Load the full report document (format/version/saved_at/meta/report).
    """
    in_path = Path(path)
    if not in_path.exists():
        raise FileNotFoundError(str(in_path))

    raw: str
    if zipfile.is_zipfile(in_path):
        with zipfile.ZipFile(in_path, "r") as zf:
            try:
                raw_bytes = zf.read(MANIFEST_NAME)
            except KeyError as e:
                raise ReportFormatError(f"Missing {MANIFEST_NAME} in report file") from e
        raw = raw_bytes.decode("utf-8", errors="replace")
    else:
        raw = in_path.read_text(encoding="utf-8", errors="replace")

    try:
        doc = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ReportFormatError(f"Invalid JSON: {e}") from e

    if not isinstance(doc, dict):
        raise ReportFormatError("Invalid report document (expected JSON object)")

    fmt = str(doc.get("format", "")).strip()
    ver = doc.get("version", None)
    if fmt != REPORT_FORMAT:
        raise ReportFormatError(f"Unsupported report format: {fmt!r}")
    if ver != REPORT_VERSION:
        raise ReportFormatError(f"Unsupported report version: {ver!r}")

    if not isinstance(doc.get("report", None), dict):
        raise ReportFormatError("Invalid report document: missing 'report' object")

    meta = doc.get("meta", {})
    if meta is None:
        doc["meta"] = {}
    elif not isinstance(meta, dict):
        doc["meta"] = {"_raw": meta}

    return doc


def load_run_report(path: str | Path) -> RunReport:
    return RunReport.from_dict(load_run_report_document(path)["report"])
