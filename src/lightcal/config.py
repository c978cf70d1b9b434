"""
Configuration and record dataclasses for the lightcal calibration engine.

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Literal

from .errors import CalibrationError, DefectivePixelValue

if TYPE_CHECKING:
    from .frames import PixelBuffer


class MasterKind(Enum):
    """Kinds of calibration master frames."""

    OFFSET = "offset"  # Bias: readout pattern at zero exposure
    DARK = "dark"  # Thermal signal, assumed bias-subtracted
    FLAT = "flat"  # Relative pixel sensitivity


class Stage(Enum):
    """Calibration stages, in the order they are applied."""

    OFFSET = "offset"
    DARK = "dark"
    FLAT = "flat"
    HOT_PIXELS = "hot_pixels"


STAGE_ORDER: tuple[Stage, ...] = (Stage.OFFSET, Stage.DARK, Stage.FLAT, Stage.HOT_PIXELS)


class StageStatus(Enum):
    """What happened to one stage of one frame."""

    APPLIED = "applied"
    SKIPPED = "skipped"  # No master selected, or stage disabled
    FAILED = "failed"  # Fatal precondition violation
    NOT_RUN = "not_run"  # Never reached (cancelled or aborted earlier)


class FrameStatus(Enum):
    """Final status of one light frame."""

    CALIBRATED = "calibrated"
    SKIPPED = "skipped"  # Left uncalibrated by the missing-master policy
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class StackingInfo:
    """
    Acquisition metadata of a light or master frame.

    Immutable once created for a given frame. Unknown values are None.
    """

    frame_id: str = ""
    exposure_s: float | None = None
    gain: float | None = None
    """Gain or ISO setting."""

    temperature_c: float | None = None
    binning: tuple[int, int] = (1, 1)
    filter_name: str = ""
    timestamp: datetime | None = None
    """Capture time (DATE-OBS)."""


@dataclass
class CalibrationSettings:
    """
    Settings of the calibration engine.

    Built once and passed to MasterFrames at construction. Only ``debloom``
    changes the correction contract; the other fields tune numeric policy.
    """

    # --- Flat correction ---
    debloom: bool = False
    """Preserve saturated pixels during flat division to avoid amplifying bloom."""

    saturation_fraction: float = 1.0
    """Fraction of the sensor saturation value at which a pixel counts as saturated."""

    flat_min_fraction: float = 1e-3
    """Flat pixels below this fraction of the flat reference are defective."""

    defective_policy: Literal["keep", "sentinel"] = "keep"
    """Defective flat pixels: 'keep' the unflatted value or write a 'sentinel' (NaN or 0)."""

    # --- Hot pixels ---
    hot_pixels: bool = True
    """Run hot/cold pixel interpolation after flat correction."""

    hot_pixel_sigma: float = 5.0
    """Outlier threshold in units of the local deviation."""

    # --- Master selection ---
    missing_master_policy: Literal["skip_stage", "skip_frame", "abort"] = "skip_stage"
    """What to do when a required master has no match:
    - 'skip_stage': calibrate without that stage.
    - 'skip_frame': leave the frame uncalibrated.
    - 'abort': stop the batch.
    """

    required_masters: tuple[str, ...] = ()
    """Master kinds ('offset', 'dark', 'flat') the missing-master policy applies to.
    Empty means every kind."""

    # --- Parallelism ---
    workers: int | None = None
    """Number of frames calibrated concurrently. None = auto-detect (CPU count - 1)."""

    def validate(self) -> None:
        """Validate configuration parameters."""
        if not 0.0 < self.saturation_fraction <= 1.0:
            raise ValueError(
                f"saturation_fraction must be in (0, 1], got {self.saturation_fraction}"
            )
        if not 0.0 <= self.flat_min_fraction < 1.0:
            raise ValueError(
                f"flat_min_fraction must be in [0, 1), got {self.flat_min_fraction}"
            )
        if self.defective_policy not in ("keep", "sentinel"):
            raise ValueError(f"defective_policy must be 'keep' or 'sentinel', got {self.defective_policy!r}")
        if self.hot_pixel_sigma <= 0:
            raise ValueError(f"hot_pixel_sigma must be positive, got {self.hot_pixel_sigma}")
        if self.missing_master_policy not in ("skip_stage", "skip_frame", "abort"):
            raise ValueError(
                f"missing_master_policy must be 'skip_stage', 'skip_frame' or 'abort', "
                f"got {self.missing_master_policy!r}"
            )
        valid_kinds = {k.value for k in MasterKind}
        for kind in self.required_masters:
            if kind not in valid_kinds:
                raise ValueError(f"Unknown master kind in required_masters: {kind!r}")
        if self.workers is not None and self.workers < 1:
            raise ValueError(f"workers must be >= 1, got {self.workers}")

    def is_required(self, kind: MasterKind) -> bool:
        """Return True if the missing-master policy applies to ``kind``."""
        return not self.required_masters or kind.value in self.required_masters


@dataclass
class FrameOutcome:
    """
    Per-frame record of a calibration run.

    Tells which stages ran, which were skipped and why, and any fatal error.
    """

    frame_id: str
    status: FrameStatus = FrameStatus.CALIBRATED

    stages: dict[Stage, StageStatus] = field(
        default_factory=lambda: {s: StageStatus.NOT_RUN for s in STAGE_ORDER}
    )
    """Status of each stage, in application order."""

    notes: dict[Stage, str] = field(default_factory=dict)
    """Why a stage was skipped or failed."""

    masters: dict[str, str] = field(default_factory=dict)
    """Map of master kind to the frame_id of the master applied."""

    dark_scale: float | None = None
    """Scale factor applied to the master dark."""

    defective: DefectivePixelValue | None = None
    """Defective flat pixels marked by the flat stage."""

    hot_pixels: int = 0
    """Number of pixels replaced by the hot-pixel stage."""

    protected_pixels: int = 0
    """Number of pixels shielded by the star list."""

    error: CalibrationError | None = None
    """Fatal error that stopped the frame."""

    @property
    def applied(self) -> list[Stage]:
        """Stages that were applied, in order."""
        return [s for s in STAGE_ORDER if self.stages[s] is StageStatus.APPLIED]

    @property
    def skipped(self) -> list[Stage]:
        """Stages that were skipped, in order."""
        return [s for s in STAGE_ORDER if self.stages[s] is StageStatus.SKIPPED]

    @property
    def ok(self) -> bool:
        """True when the frame was calibrated and its buffer is a result."""
        return self.status is FrameStatus.CALIBRATED

    def raise_for_status(self) -> None:
        """Re-raise the fatal error of the frame, if any."""
        if self.error is not None:
            raise self.error


@dataclass
class BatchResult:
    """
    Result of a batch calibration run.

    Contains all information needed to understand and reproduce the result.
    """

    outcomes: list[FrameOutcome] = field(default_factory=list)
    """One outcome per light frame, in input order."""

    calibrated: dict[str, PixelBuffer] = field(default_factory=dict)
    """Committed output buffers by frame_id. Skipped, cancelled and failed frames are discarded."""

    outputs: dict[str, str] = field(default_factory=dict)
    """Map of frame_id to written calibrated file (CLI runs only)."""

    settings: CalibrationSettings | None = None
    """Settings used for this run."""

    aborted: bool = False
    """True if the batch stopped early under the 'abort' policy."""

    # --- Metadata ---
    version: str = ""
    timestamp: str = ""
    platform: str = ""

    def count(self, status: FrameStatus) -> int:
        """Number of frames with the given final status."""
        return sum(1 for o in self.outcomes if o.status is status)
