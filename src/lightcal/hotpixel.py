"""
Hot and cold pixel interpolation with star protection.

A pixel is an outlier when it deviates from the median of its 8 neighbours
by more than ``sigma`` times the local deviation. The local deviation is
robust: a pair of adjacent hot pixels does not hide either of them.
Outliers are replaced by the median of their non-outlier neighbours. Pixels
inside a star's extent, and pixels excluded by the caller (defective flat
samples), are never classified nor altered.

All decisions are taken on the input image, so the result does not depend
on the order in which pixels are visited.

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
from scipy import ndimage

from .frames import PixelBuffer
from .stars import StarList, star_protection_mask

logger = logging.getLogger(__name__)

# Floor for the local deviation, avoids flagging everything in flat regions
MIN_DEVIATION = 1e-6

# MAD to sigma for Gaussian noise
MAD_TO_SIGMA = 1.4826


@dataclass
class HotPixelReport:
    """Counts from one hot-pixel pass."""

    replaced: int = 0
    protected: int = 0
    """Pixels shielded by the star list (per plane, summed over channels)."""

    excluded: int = 0
    """Pixels left alone because the caller excluded them."""


def neighbour_offsets(step: int = 1) -> list[tuple[int, int]]:
    """
    Offsets of the 8 neighbours of a pixel.

    step=1 gives the adjacent pixels; step=2 gives the same-colour
    neighbours of a Bayer mosaic.
    """
    return [
        (dy * step, dx * step)
        for dy in (-1, 0, 1)
        for dx in (-1, 0, 1)
        if not (dy == 0 and dx == 0)
    ]


def _ring_footprint(step: int) -> np.ndarray:
    size = 2 * step + 1
    footprint = np.zeros((size, size), dtype=bool)
    for dy, dx in neighbour_offsets(step):
        footprint[dy + step, dx + step] = True
    return footprint


def find_hot_pixels(
    plane: np.ndarray,
    sigma: float = 5.0,
    step: int = 1,
    protect: np.ndarray | None = None,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Detect outlier pixels in one image plane.

    Parameters
    ----------
    plane : np.ndarray
        2D image plane (float).
    sigma : float, default 5.0
        Threshold in units of the local deviation.
    step : int, default 1
        Neighbour distance (2 for Bayer mosaics).
    protect : np.ndarray, optional
        Boolean mask of pixels that must never be classified as outliers.

    Returns
    -------
    tuple[np.ndarray, np.ndarray]
        (outliers, neighbour_median)
        outliers: boolean mask of hot/cold pixels.
        neighbour_median: median of the 8 neighbours of every pixel.

    Notes
    -----
    The residual of a pixel is its value minus the median of its ring.
    The local deviation is 1.4826 times the median of the absolute
    residuals over the ring, floored by the global MAD sigma of the
    residuals so that flat regions do not produce false positives. A hot
    neighbour only moves one of the 8 ring samples, so it neither shifts
    the ring median nor inflates the local deviation.
    """
    finite = np.isfinite(plane)
    if not finite.any():
        return np.zeros(plane.shape, dtype=bool), plane.copy()

    work = np.where(finite, plane, np.median(plane[finite]))
    footprint = _ring_footprint(step)

    neighbour_median = ndimage.median_filter(work, footprint=footprint, mode="mirror")
    residual = work - neighbour_median
    local_sigma = MAD_TO_SIGMA * ndimage.median_filter(np.abs(residual), footprint=footprint, mode="mirror")

    global_sigma = MAD_TO_SIGMA * float(np.median(np.abs(residual - np.median(residual))))
    deviation = np.maximum(local_sigma, max(global_sigma, MIN_DEVIATION))

    outliers = finite & (np.abs(residual) > sigma * deviation)
    if protect is not None:
        outliers &= ~protect

    return outliers, neighbour_median


def interpolate_pixels(
    plane: np.ndarray,
    outliers: np.ndarray,
    step: int = 1,
    neighbour_median: np.ndarray | None = None,
    ignore: np.ndarray | None = None,
) -> np.ndarray:
    """
    Replace outliers by the median of their non-outlier neighbours.

    Neighbour values are read from the input plane only. Pixels flagged in
    ``ignore`` are never used as a source. When every neighbour is an
    outlier (or not finite, or ignored), the median of all neighbours is
    used instead.

    Returns
    -------
    np.ndarray
        New plane with outliers replaced.
    """
    out = plane.copy()
    rows, cols = np.nonzero(outliers)
    if rows.size == 0:
        return out

    padded = np.pad(plane, step, mode="reflect")
    unusable = outliers if ignore is None else outliers | ignore
    padded_mask = np.pad(unusable, step, mode="reflect")

    offsets = neighbour_offsets(step)
    values = np.empty((rows.size, len(offsets)), dtype=np.float64)
    usable = np.empty((rows.size, len(offsets)), dtype=bool)
    for k, (dy, dx) in enumerate(offsets):
        values[:, k] = padded[rows + step + dy, cols + step + dx]
        usable[:, k] = ~padded_mask[rows + step + dy, cols + step + dx]
    usable &= np.isfinite(values)

    has_good = usable.any(axis=1)
    replacement = np.empty(rows.size, dtype=np.float64)
    if has_good.any():
        good = np.where(usable[has_good], values[has_good], np.nan)
        replacement[has_good] = np.nanmedian(good, axis=1)
    if (~has_good).any():
        if neighbour_median is None:
            neighbour_median = ndimage.median_filter(
                np.nan_to_num(plane), footprint=_ring_footprint(step), mode="mirror"
            )
        replacement[~has_good] = neighbour_median[rows[~has_good], cols[~has_good]]

    out[rows, cols] = replacement
    return out


def apply_hot_pixel_interpolation(
    buffer: PixelBuffer,
    stars: StarList | None = None,
    sigma: float = 5.0,
    exclude: np.ndarray | None = None,
) -> HotPixelReport:
    """
    Detect and interpolate hot/cold pixels of a light frame.

    Parameters
    ----------
    buffer : PixelBuffer
        Light frame, updated in place when outliers are found.
    stars : sequence of Star, optional
        Detected stars. Pixels within a star's extent are never altered.
        None or empty disables protection.
    sigma : float, default 5.0
        Outlier threshold in units of the local deviation.
    exclude : np.ndarray, optional
        Boolean mask, (height, width) or the buffer shape, of pixels that must keep their value
        and never serve as a replacement source, e.g. the defective flat
        samples marked by the flat stage.

    Returns
    -------
    HotPixelReport
        Number of replaced, protected and excluded pixels.

    Notes
    -----
    RGB channels are processed independently with the same star mask.
    Bayer mosaics use same-colour neighbours (two pixels away).
    """
    data = buffer.as_float()
    protect = star_protection_mask(stars, buffer.shape) if stars else None
    step = 2 if buffer.is_cfa else 1

    if data.ndim == 2:
        planes = [data]
        excluded = [exclude]
    else:
        planes = [data[..., c] for c in range(data.shape[2])]
        if exclude is not None and exclude.ndim == 3:
            excluded = [exclude[..., c] for c in range(data.shape[2])]
        else:
            excluded = [exclude] * len(planes)

    report = HotPixelReport()
    corrected = []

    for plane, skip in zip(planes, excluded):
        keep = protect
        if skip is not None:
            keep = skip if protect is None else protect | skip
            report.excluded += int(np.count_nonzero(skip))
        outliers, neighbour_median = find_hot_pixels(plane, sigma=sigma, step=step, protect=keep)
        n_out = int(np.count_nonzero(outliers))
        report.replaced += n_out
        if protect is not None:
            report.protected += int(np.count_nonzero(protect))
        corrected.append(
            interpolate_pixels(plane, outliers, step=step, neighbour_median=neighbour_median, ignore=skip)
            if n_out else plane
        )

    if report.replaced:
        result = corrected[0] if data.ndim == 2 else np.stack(corrected, axis=2)
        buffer.commit(result)

    logger.debug(
        "Hot pixels in %s: %d replaced, %d protected by %d star(s), %d excluded",
        buffer.frame_id, report.replaced, report.protected, len(stars) if stars else 0, report.excluded,
    )
    return report
