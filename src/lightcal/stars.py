"""
Star lists consumed by the hot-pixel stage.

The calibration engine never detects stars itself: it receives a StarList
from a star-detection collaborator and turns it into a protection mask.
detect_stars() is a basic threshold detector used by the command line when
no external star list is available.

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Sequence

import numpy as np
from scipy import ndimage

from .frames import PixelBuffer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Star:
    """A detected star: centroid in pixels (x = column, y = row) and extent radius."""

    x: float
    y: float
    radius: float


StarList = Sequence[Star]


def star_protection_mask(stars: StarList | None, shape: tuple[int, ...]) -> np.ndarray:
    """
    Rasterize a star list into a boolean mask.

    Parameters
    ----------
    stars : sequence of Star or None
        Detected stars. None or empty gives an all-False mask.
    shape : tuple
        Image shape; only the first two axes (H, W) are used.

    Returns
    -------
    np.ndarray
        Boolean (H, W) mask, True for every pixel whose center lies within a
        star's radius. The pixel nearest to each centroid is always included.
    """
    height, width = shape[0], shape[1]
    mask = np.zeros((height, width), dtype=bool)
    if not stars:
        return mask

    for star in stars:
        r = max(float(star.radius), 0.0)
        row_c = int(round(star.y))
        col_c = int(round(star.x))

        r0 = max(int(math.floor(star.y - r)), 0)
        r1 = min(int(math.ceil(star.y + r)) + 1, height)
        c0 = max(int(math.floor(star.x - r)), 0)
        c1 = min(int(math.ceil(star.x + r)) + 1, width)
        if r0 < r1 and c0 < c1:
            yy, xx = np.mgrid[r0:r1, c0:c1]
            inside = (xx - star.x) ** 2 + (yy - star.y) ** 2 <= r * r
            mask[r0:r1, c0:c1] |= inside

        if 0 <= row_c < height and 0 <= col_c < width:
            mask[row_c, col_c] = True

    return mask


def detect_stars(
    buffer: PixelBuffer,
    threshold_sigma: float = 5.0,
    min_area: int = 4,
    margin: float = 2.0,
) -> list[Star]:
    """
    Detect stars with a MAD threshold and connected components.

    This is NOT a rigorous star detector. It provides a protection list
    so that the hot-pixel stage leaves bright extended sources alone.

    Parameters
    ----------
    buffer : PixelBuffer
        Image to analyse. RGB data is averaged over channels.
    threshold_sigma : float, default 5.0
        Detection threshold in sigma above background.
    min_area : int, default 4
        Minimum component area. Single-pixel defects stay below it.
    margin : float, default 2.0
        Pixels added to the equivalent radius of each component.

    Returns
    -------
    list[Star]
        Stars sorted by decreasing flux.
    """
    data = buffer.as_float()
    if data.ndim == 3:
        data = data.mean(axis=2)

    finite = np.isfinite(data)
    bg_median = float(np.median(data[finite])) if finite.any() else 0.0
    bg_mad = float(np.median(np.abs(data[finite] - bg_median))) if finite.any() else 0.0
    bg_sigma = 1.4826 * bg_mad

    binary = finite & (data > bg_median + threshold_sigma * max(bg_sigma, 1e-6))
    labeled, n_features = ndimage.label(binary)
    if n_features == 0:
        logger.debug("No stars detected in %s", buffer.frame_id)
        return []

    index = np.arange(1, n_features + 1)
    signal = np.where(binary, data - bg_median, 0.0)
    areas = ndimage.sum(binary, labeled, index)
    fluxes = ndimage.sum(signal, labeled, index)
    centers = ndimage.center_of_mass(signal, labeled, index)

    stars = []
    for area, flux, (cy, cx) in sorted(zip(areas, fluxes, centers), key=lambda t: -t[1]):
        if area < min_area:
            continue
        radius = math.sqrt(area / math.pi) + margin
        stars.append(Star(x=float(cx), y=float(cy), radius=float(radius)))

    logger.debug(
        "Detected %d stars in %s (%d components, threshold %.1f sigma)",
        len(stars), buffer.frame_id, n_features, threshold_sigma,
    )
    return stars
