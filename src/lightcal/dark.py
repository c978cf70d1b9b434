"""
Dark current correction with linear exposure scaling.

Master darks are expected to be bias-subtracted already: no offset is
removed here.

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from __future__ import annotations

import logging

from .catalog import same_exposure
from .config import MasterKind
from .frames import MasterFrame, PixelBuffer, check_dimensions

logger = logging.getLogger(__name__)


def dark_scale_factor(light_exposure_s: float | None, dark_exposure_s: float | None) -> float:
    """
    Scale applied to a master dark for a given light exposure.

    Parameters
    ----------
    light_exposure_s : float or None
        Light frame exposure in seconds.
    dark_exposure_s : float or None
        Master dark exposure in seconds.

    Returns
    -------
    float
        light / dark when the exposures differ, exactly 1.0 when they match.
        Unknown or non-positive exposures also give 1.0.
    """
    if light_exposure_s is None or dark_exposure_s is None:
        logger.warning(
            "Unknown exposure (light=%s, dark=%s): dark applied unscaled",
            light_exposure_s, dark_exposure_s,
        )
        return 1.0
    if light_exposure_s <= 0 or dark_exposure_s <= 0:
        logger.warning(
            "Non-positive exposure (light=%s, dark=%s): dark applied unscaled",
            light_exposure_s, dark_exposure_s,
        )
        return 1.0
    if same_exposure(light_exposure_s, dark_exposure_s):
        return 1.0
    return float(light_exposure_s) / float(dark_exposure_s)


def apply_master_dark(
    buffer: PixelBuffer,
    dark: MasterFrame | None,
    light_exposure_s: float | None = None,
) -> float | None:
    """
    Subtract a (scaled) master dark from a light frame.

    output = input - dark * scale, clamped at 0.

    Parameters
    ----------
    buffer : PixelBuffer
        Light frame, updated in place on success.
    dark : MasterFrame or None
        Master dark. None skips the stage.
    light_exposure_s : float, optional
        Light frame exposure used to scale the dark.

    Returns
    -------
    float or None
        The scale applied, or None if the stage was skipped.

    Raises
    ------
    DimensionMismatch
        If the dark shape differs from the light frame.
    """
    if dark is None:
        logger.info("No dark applied to %s", buffer.frame_id)
        return None
    if dark.kind is not MasterKind.DARK:
        raise ValueError(f"Expected a dark master, got {dark.kind.value}")

    check_dimensions(buffer, dark)

    scale = dark_scale_factor(light_exposure_s, dark.info.exposure_s)
    if scale == 1.0:
        result = buffer.as_float() - dark.data
    else:
        result = buffer.as_float() - dark.data * scale

    buffer.commit(result)
    logger.debug("Dark %s subtracted from %s (scale %.4f)", dark.frame_id, buffer.frame_id, scale)
    return scale
