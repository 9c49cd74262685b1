"""
Run records for chronophoto.

Produces:
- A JSON manifest: machine-readable complete record of a run
- A Markdown summary for humans
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import numpy as np

from .config import ChronoConfig, ChronoResult
from .utils import get_platform_info, get_timestamp_iso, get_version

logger = logging.getLogger(__name__)


def _to_native(obj: Any) -> Any:
    """Convert numpy types to native Python types for JSON serialization."""
    if isinstance(obj, np.floating):
        return float(obj)
    elif isinstance(obj, np.integer):
        return int(obj)
    elif isinstance(obj, np.ndarray):
        return obj.tolist()
    elif isinstance(obj, dict):
        return {k: _to_native(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [_to_native(v) for v in obj]
    return obj


def serialize_config(config: ChronoConfig) -> dict[str, Any]:
    """Serialize ChronoConfig to a JSON-compatible dict."""
    return {
        "mode": config.mode.value,
        "background": {
            "kind": config.background.kind.value,
            "frame_index": config.background.frame_index,
        },
        "outlier": {
            "kind": config.outlier.kind.value,
            "threshold": config.outlier.threshold,
            "select": config.outlier.select.value,
        },
        "compression": config.compression.value,
        "slicing": {
            "budget_mb": config.slicing.budget_mb,
            "chunks": config.slicing.chunks,
            "rows": config.slicing.rows,
        },
        "workers": config.workers,
    }


def build_manifest(result: ChronoResult) -> dict[str, Any]:
    """Assemble the manifest of a run as a JSON-compatible dict."""
    manifest = {
        "chronophoto_version": result.version or get_version(),
        "timestamp": result.timestamp or get_timestamp_iso(),
        "platform": result.platform or get_platform_info(),
        "pattern": result.pattern,
        "config": serialize_config(result.config) if result.config else {},
        "frames": {
            "matched": len(result.inputs),
            "consumed": result.frame_count,
            "layout": result.layout,
        },
        "staging": {
            "temp_dir": result.temp_dir,
            "slices": result.n_slices,
        },
        "inputs": result.inputs,
        "outputs": result.outputs,
        "statistics": result.stats,
    }
    return _to_native(manifest)


def write_manifest(result: ChronoResult, path: str | Path) -> Path:
    """
    Write complete run manifest as JSON.

    Parameters
    ----------
    result : ChronoResult
        Complete run record.
    path : str or Path
        Manifest file path. Parent directories are created.

    Returns
    -------
    Path
        Path to written manifest file.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(build_manifest(result), f, indent=2)

    logger.info("Wrote manifest: %s", path)
    return path


def write_report_markdown(result: ChronoResult, path: str | Path) -> Path:
    """
    Write human-readable Markdown summary of a run.

    Parameters
    ----------
    result : ChronoResult
        Run record.
    path : str or Path
        Report file path.

    Returns
    -------
    Path
        Path to written report file.
    """
    lines = [
        f"# Chronophoto Report: `{result.pattern}`",
        "",
        f"**Generated:** {result.timestamp or get_timestamp_iso()}",
        f"**chronophoto version:** {result.version or get_version()}",
        f"**Platform:** {result.platform or get_platform_info()}",
        "",
        "## Summary",
        "",
        "| Metric | Value |",
        "|--------|-------|",
        f"| Frames matched | {len(result.inputs)} |",
        f"| Frames consumed | {result.frame_count} |",
        f"| Layout | {result.layout or 'N/A'} |",
        f"| Time slices | {result.n_slices} |",
        "",
    ]

    if result.config:
        config = result.config
        lines.extend([
            "## Configuration",
            "",
            "| Parameter | Value |",
            "|-----------|-------|",
            f"| mode | {config.mode.value} |",
            f"| background | {config.background.kind.value} |",
            f"| outlier | {config.outlier.kind.value} |",
            f"| threshold | {config.outlier.threshold} |",
            f"| select | {config.outlier.select.value} |",
            f"| compression | {config.compression.value} |",
            "",
        ])

    if result.stats:
        lines.extend([
            "## Statistics",
            "",
            "| Metric | Value |",
            "|--------|-------|",
        ])
        for key, value in result.stats.items():
            if isinstance(value, float):
                lines.append(f"| {key} | {value:.4f} |")
            else:
                lines.append(f"| {key} | {value} |")
        lines.append("")

    if result.outputs:
        lines.extend([
            "## Outputs",
            "",
        ])
        for name, out_path in result.outputs.items():
            lines.append(f"- **{name}:** `{out_path}`")
        lines.append("")

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        f.write("\n".join(lines))

    logger.info("Wrote Markdown report: %s", path)
    return path


def write_report(result: ChronoResult, path: str | Path) -> Path:
    """Write a run record, Markdown for a ``.md`` path and JSON otherwise."""
    path = Path(path)
    if path.suffix.lower() == ".md":
        return write_report_markdown(result, path)
    return write_manifest(result, path)
