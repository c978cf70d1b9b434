"""
Pytest configuration and fixtures.

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from datetime import datetime

import numpy as np
import pytest

from lightcal.config import MasterKind, StackingInfo
from lightcal.frames import MasterFrame, PixelBuffer


@pytest.fixture
def synthetic_bayer_rggb():
    """Create a synthetic RGGB Bayer pattern image."""
    def _create(height=100, width=100, r_value=1000, g_value=2000, b_value=500, dtype=np.float32):
        """
        Create a synthetic RGGB Bayer mosaic.

        RGGB pattern:
            R  G  R  G  ...  (even rows)
            G  B  G  B  ...  (odd rows)
        """
        bayer = np.zeros((height, width), dtype=dtype)

        # R at (even row, even col)
        bayer[0::2, 0::2] = r_value
        # G at (even row, odd col)
        bayer[0::2, 1::2] = g_value
        # G at (odd row, even col)
        bayer[1::2, 0::2] = g_value
        # B at (odd row, odd col)
        bayer[1::2, 1::2] = b_value

        return bayer

    return _create


@pytest.fixture
def synthetic_star_field():
    """Create a synthetic star field with Gaussian stars."""
    def _create(height=200, width=200, n_stars=20, background=1000, noise=50, seed=42):
        """
        Returns
        -------
        tuple[np.ndarray, list[tuple[float, float, float]]]
            (image, [(x0, y0, sigma), ...])
        """
        rng = np.random.default_rng(seed)

        # Background
        image = np.full((height, width), background, dtype=np.float64)

        # Add Gaussian noise
        image += rng.normal(0, noise, (height, width))

        # Add stars (2D Gaussians)
        yy, xx = np.mgrid[0:height, 0:width]
        stars = []
        for _ in range(n_stars):
            y0 = rng.uniform(10, height - 10)
            x0 = rng.uniform(10, width - 10)
            sigma = rng.uniform(2, 5)
            amplitude = rng.uniform(5000, 50000)

            image += amplitude * np.exp(-((xx - x0)**2 + (yy - y0)**2) / (2 * sigma**2))
            stars.append((x0, y0, sigma))

        return np.clip(image, 0, 65535).astype(np.float32), stars

    return _create


@pytest.fixture
def noisy_light():
    """Create a noisy flat-background light frame."""
    def _create(height=64, width=64, background=1000.0, noise=10.0, dtype=np.float32, seed=0):
        rng = np.random.default_rng(seed)
        data = rng.normal(background, noise, (height, width))
        if np.issubdtype(np.dtype(dtype), np.integer):
            data = np.rint(data)
        return data.astype(dtype)

    return _create


@pytest.fixture
def make_info():
    """Factory for StackingInfo with typical light-frame values."""
    def _create(
        frame_id="light_0001.fits",
        exposure_s=60.0,
        gain=100.0,
        temperature_c=-10.0,
        binning=(1, 1),
        filter_name="L",
        timestamp=datetime(2024, 1, 1, 22, 0, 0),
    ):
        return StackingInfo(
            frame_id=frame_id,
            exposure_s=exposure_s,
            gain=gain,
            temperature_c=temperature_c,
            binning=binning,
            filter_name=filter_name,
            timestamp=timestamp,
        )

    return _create


@pytest.fixture
def make_master():
    """Factory for MasterFrame built from an array."""
    def _create(
        kind,
        data,
        frame_id=None,
        cfa=None,
        reference=None,
        exposure_s=60.0,
        gain=100.0,
        temperature_c=-10.0,
        binning=(1, 1),
        filter_name="L",
        timestamp=datetime(2024, 1, 1, 20, 0, 0),
    ):
        kind = MasterKind(kind)
        frame_id = frame_id or f"master_{kind.value}.fits"
        info = StackingInfo(
            frame_id=frame_id,
            exposure_s=exposure_s,
            gain=gain,
            temperature_c=temperature_c,
            binning=binning,
            filter_name=filter_name,
            timestamp=timestamp,
        )
        buffer = PixelBuffer(np.asarray(data), frame_id, cfa=cfa)
        return MasterFrame(kind, buffer, info, reference=reference)

    return _create

