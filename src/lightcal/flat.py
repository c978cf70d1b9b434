"""
Flat-field correction with defective-pixel marking and optional debloom.

output = input * reference / flat

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from .config import CalibrationSettings, MasterKind
from .errors import DefectivePixelValue
from .frames import MasterFrame, PixelBuffer, check_dimensions, flat_reference

logger = logging.getLogger(__name__)

# Number of defective pixel positions kept for reporting
MAX_REPORTED_POSITIONS = 20

__all__ = ["FlatReport", "apply_master_flat", "defective_flat_mask", "flat_reference"]


@dataclass
class FlatReport:
    """What the flat stage did besides dividing."""

    defective: DefectivePixelValue | None = None
    """Pixels whose flat value was too small to divide by."""

    debloomed: int = 0
    """Saturated samples left uncorrected by debloom."""


def defective_flat_mask(flat: MasterFrame, min_fraction: float = 1e-3) -> np.ndarray:
    """
    Boolean mask of flat samples unusable as divisors.

    A sample is defective when it is not finite, not positive, or below
    ``min_fraction`` times the flat reference.
    """
    values = flat.data.astype(np.float64)
    reference = np.broadcast_to(flat.reference, values.shape)
    with np.errstate(invalid="ignore"):
        return ~np.isfinite(values) | (values <= 0) | (values < min_fraction * reference)


def apply_master_flat(
    buffer: PixelBuffer,
    flat: MasterFrame | None,
    settings: CalibrationSettings | None = None,
    saturated: np.ndarray | None = None,
) -> FlatReport | None:
    """
    Divide a light frame by a normalized master flat.

    Parameters
    ----------
    buffer : PixelBuffer
        Light frame, updated in place on success.
    flat : MasterFrame or None
        Master flat. None skips the stage.
    settings : CalibrationSettings, optional
        Provides debloom, saturation_fraction, flat_min_fraction and
        defective_policy.
    saturated : np.ndarray, optional
        Boolean mask of saturated samples. Defaults to the samples of
        ``buffer`` at or above saturation; the orchestrator passes the mask
        of the raw light frame taken before offset and dark subtraction.

    Returns
    -------
    FlatReport or None
        Defective pixel record and debloom count, or None if skipped.

    Raises
    ------
    DimensionMismatch
        If the flat shape differs from the light frame.

    Notes
    -----
    Defective flat samples never abort the frame: the output keeps the
    unflatted value ('keep') or receives a sentinel ('sentinel': NaN for
    float buffers, 0 for integer buffers).
    """
    if flat is None:
        logger.info("No flat applied to %s", buffer.frame_id)
        return None
    if flat.kind is not MasterKind.FLAT:
        raise ValueError(f"Expected a flat master, got {flat.kind.value}")
    if settings is None:
        settings = CalibrationSettings()

    check_dimensions(buffer, flat)

    data = buffer.as_float()
    flat_values = flat.data.astype(np.float64)
    reference = np.broadcast_to(flat.reference, data.shape)

    defective = defective_flat_mask(flat, settings.flat_min_fraction)
    gain = np.divide(reference, flat_values, out=np.ones_like(data), where=~defective)
    result = data * gain

    report = FlatReport()

    if settings.debloom:
        if saturated is None:
            saturated = buffer.saturation_mask(settings.saturation_fraction)
        result = np.where(saturated, data, result)
        report.debloomed = int(np.count_nonzero(saturated))

    n_defective = int(np.count_nonzero(defective))
    if n_defective:
        if settings.defective_policy == "sentinel":
            fill = np.nan if np.issubdtype(buffer.dtype, np.floating) else 0.0
            result[defective] = fill
        else:
            result[defective] = data[defective]
        positions = [tuple(int(i) for i in p) for p in np.argwhere(defective)[:MAX_REPORTED_POSITIONS]]
        report.defective = DefectivePixelValue(buffer.frame_id, n_defective, positions)
        logger.warning(
            "%d defective flat pixel(s) in %s marked (%s)",
            n_defective, buffer.frame_id, settings.defective_policy,
        )

    buffer.commit(result)
    logger.debug(
        "Flat %s applied to %s (debloom=%s, %d saturated kept)",
        flat.frame_id, buffer.frame_id, settings.debloom, report.debloomed,
    )
    return report
