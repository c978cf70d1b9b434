"""
Report generation for lightcal batch runs.

Produces:
- calibration_report.json: Machine-readable per-frame record
- calibration_report.md: Human-readable Markdown report

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Any

import numpy as np

from .config import STAGE_ORDER, BatchResult, CalibrationSettings, FrameOutcome, FrameStatus
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


def _serialize_settings(settings: CalibrationSettings) -> dict[str, Any]:
    """Serialize CalibrationSettings to JSON-compatible dict."""
    return _to_native(asdict(settings))


def serialize_outcome(outcome: FrameOutcome) -> dict[str, Any]:
    """Serialize one FrameOutcome."""
    record = {
        "frame_id": outcome.frame_id,
        "status": outcome.status.value,
        "stages": {stage.value: outcome.stages[stage].value for stage in STAGE_ORDER},
        "notes": {stage.value: note for stage, note in outcome.notes.items()},
        "masters": dict(outcome.masters),
        "dark_scale": outcome.dark_scale,
        "defective_pixels": outcome.defective.count if outcome.defective else 0,
        "hot_pixels": outcome.hot_pixels,
        "protected_pixels": outcome.protected_pixels,
        "error": str(outcome.error) if outcome.error else None,
    }
    return _to_native(record)


def _summary(result: BatchResult) -> dict[str, int]:
    return {
        "frames": len(result.outcomes),
        **{status.value: result.count(status) for status in FrameStatus},
    }


def write_report_json(result: BatchResult, output_dir: Path) -> Path:
    """
    Write the batch report as JSON.

    Parameters
    ----------
    result : BatchResult
        Batch calibration result.
    output_dir : Path
        Output directory.

    Returns
    -------
    Path
        Path to written report file.
    """
    report = {
        "lightcal_version": result.version or get_version(),
        "timestamp": result.timestamp or get_timestamp_iso(),
        "platform": result.platform or get_platform_info(),
        "aborted": result.aborted,
        "settings": _serialize_settings(result.settings) if result.settings else {},
        "summary": _summary(result),
        "frames": [serialize_outcome(o) for o in result.outcomes],
        "outputs": {k: str(v) for k, v in result.outputs.items()},
    }

    report_path = output_dir / "calibration_report.json"
    with open(report_path, "w") as f:
        json.dump(_to_native(report), f, indent=2)

    logger.info("Wrote report: %s", report_path)
    return report_path


def write_report_markdown(result: BatchResult, output_dir: Path) -> Path:
    """
    Write human-readable Markdown report.

    Parameters
    ----------
    result : BatchResult
        Batch calibration result.
    output_dir : Path
        Output directory.

    Returns
    -------
    Path
        Path to written report file.
    """
    summary = _summary(result)
    lines = [
        "# Calibration Report",
        "",
        f"**Generated:** {result.timestamp or get_timestamp_iso()}",
        f"**lightcal version:** {result.version or get_version()}",
        f"**Platform:** {result.platform or get_platform_info()}",
        "",
        "## Summary",
        "",
        "| Metric | Value |",
        "|--------|-------|",
        f"| Frames | {summary['frames']} |",
        f"| Calibrated | {summary['calibrated']} |",
        f"| Skipped | {summary['skipped']} |",
        f"| Cancelled | {summary['cancelled']} |",
        f"| Failed | {summary['failed']} |",
        "",
    ]

    if result.aborted:
        lines.extend(["**Batch aborted:** a required master was missing.", ""])

    if result.settings:
        lines.extend([
            "## Settings",
            "",
            "| Parameter | Value |",
            "|-----------|-------|",
            f"| debloom | {result.settings.debloom} |",
            f"| hot_pixels | {result.settings.hot_pixels} |",
            f"| hot_pixel_sigma | {result.settings.hot_pixel_sigma} |",
            f"| flat_min_fraction | {result.settings.flat_min_fraction} |",
            f"| defective_policy | {result.settings.defective_policy} |",
            f"| missing_master_policy | {result.settings.missing_master_policy} |",
            "",
        ])

    if result.outcomes:
        header = "| Frame | Status | " + " | ".join(s.value for s in STAGE_ORDER) + " | Dark scale | Hot pixels |"
        lines.extend([
            "## Frames",
            "",
            header,
            "|" + "---|" * (len(STAGE_ORDER) + 4),
        ])
        for o in result.outcomes:
            stages = " | ".join(o.stages[s].value for s in STAGE_ORDER)
            scale = f"{o.dark_scale:.3f}" if o.dark_scale is not None else "-"
            lines.append(
                f"| `{Path(o.frame_id).name}` | {o.status.value} | {stages} | {scale} | {o.hot_pixels} |"
            )
        lines.append("")

    problems = [o for o in result.outcomes if o.notes or o.error]
    if problems:
        lines.extend(["## Notes", ""])
        for o in problems:
            for stage, note in o.notes.items():
                lines.append(f"- `{Path(o.frame_id).name}` {stage.value}: {note}")
            if o.defective:
                lines.append(f"- `{Path(o.frame_id).name}` flat: {o.defective.count} defective pixel(s)")
        lines.append("")

    if result.outputs:
        lines.extend(["## Outputs", ""])
        for name, path in result.outputs.items():
            lines.append(f"- **{Path(name).name}:** `{path}`")
        lines.append("")

    report_path = output_dir / "calibration_report.md"
    with open(report_path, "w") as f:
        f.write("\n".join(lines))

    logger.info("Wrote Markdown report: %s", report_path)
    return report_path


def write_all_reports(result: BatchResult, output_dir: Path) -> dict[str, Path]:
    """
    Write all report files.

    Returns
    -------
    dict[str, Path]
        Map of report type to path.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    return {
        "json": write_report_json(result, output_dir),
        "markdown": write_report_markdown(result, output_dir),
    }
