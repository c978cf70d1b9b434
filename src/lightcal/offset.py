"""
Offset (bias) correction.

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from __future__ import annotations

import logging

from .config import MasterKind
from .frames import MasterFrame, PixelBuffer, check_dimensions

logger = logging.getLogger(__name__)


def apply_master_offset(buffer: PixelBuffer, offset: MasterFrame | None) -> bool:
    """
    Subtract a master offset from a light frame.

    output = input - bias, clamped at 0.

    Parameters
    ----------
    buffer : PixelBuffer
        Light frame, updated in place on success.
    offset : MasterFrame or None
        Master offset. None skips the stage.

    Returns
    -------
    bool
        True if the offset was applied, False if the stage was skipped.

    Raises
    ------
    DimensionMismatch
        If the offset shape differs from the light frame. The buffer is
        left untouched.
    """
    if offset is None:
        logger.info("No offset applied to %s", buffer.frame_id)
        return False
    if offset.kind is not MasterKind.OFFSET:
        raise ValueError(f"Expected an offset master, got {offset.kind.value}")

    check_dimensions(buffer, offset)

    buffer.commit(buffer.as_float() - offset.data)
    logger.debug("Offset %s subtracted from %s", offset.frame_id, buffer.frame_id)
    return True
