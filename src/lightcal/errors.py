"""
Exception hierarchy for the lightcal calibration engine.

Errors fall in two groups:
- frame-level structural violations (DimensionMismatch) that abort the
  remaining stages for one light frame,
- recoverable conditions (NoMatchingMaster, DefectivePixelValue, Cancelled)
  that are recorded per frame and only escalate when the caller asks for it.

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from __future__ import annotations

from typing import Any


class CalibrationError(Exception):
    """Base exception for all calibration errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message


class NoMatchingMaster(CalibrationError):
    """No master of the requested kind matches a light frame."""

    def __init__(self, kind: str, frame_id: str = "", reason: str = "") -> None:
        message = f"No matching master {kind}"
        if frame_id:
            message += f" for {frame_id}"
        if reason:
            message += f": {reason}"
        super().__init__(message, {"kind": kind, "frame_id": frame_id})
        self.kind = kind
        self.frame_id = frame_id
        self.reason = reason


class DimensionMismatch(CalibrationError):
    """A master frame does not have the shape of the light frame."""

    def __init__(
        self,
        frame_id: str,
        kind: str,
        light_shape: tuple[int, ...],
        master_shape: tuple[int, ...],
    ) -> None:
        super().__init__(
            f"Master {kind} shape {master_shape} does not match light frame "
            f"{frame_id} shape {light_shape}",
            {"frame_id": frame_id, "kind": kind},
        )
        self.frame_id = frame_id
        self.kind = kind
        self.light_shape = tuple(light_shape)
        self.master_shape = tuple(master_shape)


class DefectivePixelValue(CalibrationError):
    """
    Flat pixels too close to zero to divide by.

    Never raised by the engine: the flat stage marks the affected pixels and
    attaches this record to the frame outcome.
    """

    def __init__(self, frame_id: str, count: int, positions: list[tuple[int, ...]] | None = None) -> None:
        super().__init__(
            f"{count} defective flat pixel(s) in {frame_id}",
            {"frame_id": frame_id, "count": count},
        )
        self.frame_id = frame_id
        self.count = count
        self.positions = positions or []


class Cancelled(CalibrationError):
    """Calibration of a frame was cancelled between two stages."""

    def __init__(self, frame_id: str, next_stage: str) -> None:
        super().__init__(
            f"Calibration of {frame_id} cancelled before stage '{next_stage}'",
            {"frame_id": frame_id, "next_stage": next_stage},
        )
        self.frame_id = frame_id
        self.next_stage = next_stage
