"""
lightcal - Calibration frame engine for astronomical light frames.

Applies master offset (bias), dark and flat frames to light frames,
then interpolates hot and cold pixels while leaving stars untouched.

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com

Example
-------
>>> from lightcal import CalibrationSettings, MasterFrames, read_light, load_catalog
>>> catalog = load_catalog(offsets=["bias.fits"], darks=["dark_60s.fits"], flats=["flat_L.fits"])
>>> buffer, info = read_light("light_0001.fits")
>>> masters = MasterFrames(CalibrationSettings(debloom=True))
>>> masters.load_masters(info, catalog)
>>> outcome = masters.apply_all_masters(buffer)
>>> outcome.raise_for_status()

Example (batch)
---------------
>>> result = calibrate_batch(lights, catalog, CalibrationSettings(workers=4))
>>> print(result.count(FrameStatus.CALIBRATED))
"""

from .config import (
    STAGE_ORDER,
    BatchResult,
    CalibrationSettings,
    FrameOutcome,
    FrameStatus,
    MasterKind,
    StackingInfo,
    Stage,
    StageStatus,
)
from .errors import (
    CalibrationError,
    Cancelled,
    DefectivePixelValue,
    DimensionMismatch,
    NoMatchingMaster,
)
from .utils import __version__, __version_info__

# Pixel buffers and masters
from .frames import MasterFrame, PixelBuffer, check_dimensions, flat_reference

# Master selection
from .catalog import MasterCatalog, MasterSelection, select_masters

# Correction stages
from .offset import apply_master_offset
from .dark import apply_master_dark, dark_scale_factor
from .flat import FlatReport, apply_master_flat, defective_flat_mask
from .hotpixel import HotPixelReport, apply_hot_pixel_interpolation, find_hot_pixels

# Orchestration
from .masters import MasterFrames
from .batch import LightFrame, calibrate_batch, calibrate_frame
from .progress import EventProgress, NullProgress, ProgressSink, TqdmProgress

# Stars
from .stars import Star, detect_stars, star_protection_mask

# I/O and reports
from .io import load_catalog, read_header, read_light, read_master, write_frame
from .report import write_all_reports

__all__ = [
    # Version
    "__version__",
    "__version_info__",
    # Config
    "CalibrationSettings",
    "StackingInfo",
    "MasterKind",
    "Stage",
    "STAGE_ORDER",
    "StageStatus",
    "FrameStatus",
    "FrameOutcome",
    "BatchResult",
    # Errors
    "CalibrationError",
    "NoMatchingMaster",
    "DimensionMismatch",
    "DefectivePixelValue",
    "Cancelled",
    # Frames
    "PixelBuffer",
    "MasterFrame",
    "check_dimensions",
    "flat_reference",
    # Selection
    "MasterCatalog",
    "MasterSelection",
    "select_masters",
    # Stages
    "apply_master_offset",
    "apply_master_dark",
    "dark_scale_factor",
    "apply_master_flat",
    "defective_flat_mask",
    "FlatReport",
    "apply_hot_pixel_interpolation",
    "find_hot_pixels",
    "HotPixelReport",
    # Orchestration
    "MasterFrames",
    "LightFrame",
    "calibrate_frame",
    "calibrate_batch",
    "ProgressSink",
    "NullProgress",
    "EventProgress",
    "TqdmProgress",
    # Stars
    "Star",
    "detect_stars",
    "star_protection_mask",
    # I/O
    "read_light",
    "read_master",
    "read_header",
    "load_catalog",
    "write_frame",
    "write_all_reports",
]
