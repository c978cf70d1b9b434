"""
Tests for the offset, dark and flat correction stages.

Tests cover:
- Identity properties (zero bias, uniform flat at its reference)
- Dark exposure scaling
- Defective flat pixels and debloom
- Dimension mismatches leave the buffer untouched

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

import numpy as np
import pytest

from lightcal.config import CalibrationSettings
from lightcal.dark import apply_master_dark, dark_scale_factor
from lightcal.errors import DefectivePixelValue, DimensionMismatch
from lightcal.flat import apply_master_flat, defective_flat_mask
from lightcal.frames import PixelBuffer
from lightcal.offset import apply_master_offset


class TestOffset:
    """Tests for offset (bias) subtraction."""

    def test_zero_bias_is_identity(self, make_master, noisy_light):
        light = noisy_light(dtype=np.uint16)
        buffer = PixelBuffer(light.copy(), "light")

        applied = apply_master_offset(buffer, make_master("offset", np.zeros_like(light)))

        assert applied
        assert buffer.dtype == np.uint16
        assert np.array_equal(buffer.data, light)

    def test_subtracts_and_clamps(self, make_master):
        buffer = PixelBuffer(np.array([[500, 50]], dtype=np.uint16))
        apply_master_offset(buffer, make_master("offset", np.array([[100, 100]], dtype=np.uint16)))

        assert buffer.data.tolist() == [[400, 0]]

    def test_none_skips(self):
        data = np.full((4, 4), 7, dtype=np.uint16)
        buffer = PixelBuffer(data.copy())

        assert apply_master_offset(buffer, None) is False
        assert np.array_equal(buffer.data, data)

    def test_wrong_kind_rejected(self, make_master):
        buffer = PixelBuffer(np.zeros((4, 4)))
        with pytest.raises(ValueError, match="offset"):
            apply_master_offset(buffer, make_master("dark", np.zeros((4, 4))))

    def test_dimension_mismatch_leaves_buffer(self, make_master, noisy_light):
        light = noisy_light(100, 100, dtype=np.uint16)
        buffer = PixelBuffer(light.copy(), "light")

        with pytest.raises(DimensionMismatch):
            apply_master_offset(buffer, make_master("offset", np.full((99, 100), 100, dtype=np.uint16)))

        assert np.array_equal(buffer.data, light)


class TestDarkScale:
    """Tests for dark exposure scaling."""

    def test_equal_exposure_is_exactly_one(self):
        assert dark_scale_factor(60.0, 60.0) == 1.0
        assert dark_scale_factor(60.0, 60.0004) == 1.0

    def test_half_exposure_dark_doubles(self):
        assert dark_scale_factor(60.0, 30.0) == pytest.approx(2.0)

    def test_longer_dark(self):
        assert dark_scale_factor(30.0, 120.0) == pytest.approx(0.25)

    @pytest.mark.parametrize("light, dark", [(None, 30.0), (60.0, None), (60.0, 0.0), (-1.0, 30.0)])
    def test_unknown_or_invalid_exposure(self, light, dark):
        assert dark_scale_factor(light, dark) == 1.0


class TestDark:
    """Tests for dark subtraction."""

    def test_same_exposure(self, make_master):
        buffer = PixelBuffer(np.full((4, 4), 1000.0))
        scale = apply_master_dark(buffer, make_master("dark", np.full((4, 4), 100.0), exposure_s=60.0), 60.0)

        assert scale == 1.0
        assert np.allclose(buffer.data, 900.0)

    def test_scaled_dark(self, make_master):
        buffer = PixelBuffer(np.full((4, 4), 1000, dtype=np.uint16))
        scale = apply_master_dark(buffer, make_master("dark", np.full((4, 4), 100.0), exposure_s=30.0), 60.0)

        assert scale == pytest.approx(2.0)
        assert np.all(buffer.data == 800)

    def test_clamps_at_zero(self, make_master):
        buffer = PixelBuffer(np.full((2, 2), 50, dtype=np.uint16))
        apply_master_dark(buffer, make_master("dark", np.full((2, 2), 100.0)), 60.0)
        assert np.all(buffer.data == 0)

    def test_none_skips(self):
        buffer = PixelBuffer(np.ones((2, 2)))
        assert apply_master_dark(buffer, None, 60.0) is None

    def test_dimension_mismatch(self, make_master):
        data = np.full((10, 10), 1000.0)
        buffer = PixelBuffer(data.copy())
        with pytest.raises(DimensionMismatch):
            apply_master_dark(buffer, make_master("dark", np.zeros((10, 11))), 60.0)
        assert np.array_equal(buffer.data, data)


class TestFlat:
    """Tests for flat-field division."""

    def test_uniform_flat_at_reference_is_identity(self, make_master, noisy_light):
        light = noisy_light(dtype=np.uint16)
        buffer = PixelBuffer(light.copy())

        report = apply_master_flat(buffer, make_master("flat", np.full(light.shape, 1000.0)))

        assert report is not None
        assert report.defective is None
        assert np.array_equal(buffer.data, light)

    def test_corrects_vignetting(self, make_master):
        yy, xx = np.mgrid[0:50, 0:50]
        vignette = 1.0 - 0.4 * ((xx - 25) ** 2 + (yy - 25) ** 2) / (2 * 25 ** 2)
        flat = 20000.0 * vignette
        light = 1000.0 * vignette

        buffer = PixelBuffer(light.copy())
        master = make_master("flat", flat)
        apply_master_flat(buffer, master)

        expected = 1000.0 * float(master.reference) / 20000.0
        assert np.allclose(buffer.data, expected)

    def test_explicit_reference(self, make_master):
        buffer = PixelBuffer(np.full((4, 4), 1000.0))
        apply_master_flat(buffer, make_master("flat", np.full((4, 4), 500.0), reference=1000.0))
        assert np.allclose(buffer.data, 2000.0)

    def test_bayer_flat_per_phase(self, make_master, synthetic_bayer_rggb):
        flat = synthetic_bayer_rggb(16, 16, r_value=4000, g_value=8000, b_value=2000)
        light = synthetic_bayer_rggb(16, 16, r_value=300, g_value=600, b_value=150)
        buffer = PixelBuffer(light.copy(), cfa="RGGB")

        apply_master_flat(buffer, make_master("flat", flat, cfa="RGGB"))

        # Each colour is normalized by its own median: a uniform-per-colour flat is neutral
        assert np.allclose(buffer.data, light)

    def test_defective_keep(self, make_master):
        flat = np.full((5, 5), 1000.0)
        flat[2, 2] = 0.0
        flat[0, 1] = np.nan
        buffer = PixelBuffer(np.full((5, 5), 700.0), "light")

        report = apply_master_flat(buffer, make_master("flat", flat, reference=500.0))

        assert isinstance(report.defective, DefectivePixelValue)
        assert report.defective.count == 2
        assert (2, 2) in report.defective.positions
        assert buffer.data[2, 2] == 700.0
        assert buffer.data[0, 1] == 700.0
        assert buffer.data[4, 4] == pytest.approx(350.0)

    def test_defective_below_min_fraction(self, make_master):
        flat = np.full((5, 5), 1000.0)
        flat[1, 1] = 0.5
        mask = defective_flat_mask(make_master("flat", flat), min_fraction=1e-3)
        assert mask.sum() == 1
        assert mask[1, 1]

    def test_defective_sentinel_float(self, make_master):
        flat = np.full((3, 3), 1000.0)
        flat[1, 1] = -5.0
        buffer = PixelBuffer(np.full((3, 3), 100.0, dtype=np.float32))
        settings = CalibrationSettings(defective_policy="sentinel")

        apply_master_flat(buffer, make_master("flat", flat), settings)

        assert np.isnan(buffer.data[1, 1])
        assert np.isfinite(buffer.data[0, 0])

    def test_defective_sentinel_integer(self, make_master):
        flat = np.full((3, 3), 1000.0)
        flat[1, 1] = 0.0
        buffer = PixelBuffer(np.full((3, 3), 100, dtype=np.uint16))
        settings = CalibrationSettings(defective_policy="sentinel")

        apply_master_flat(buffer, make_master("flat", flat), settings)

        assert buffer.data[1, 1] == 0
        assert buffer.data[0, 0] == 100

    def test_debloom_keeps_saturated(self, make_master):
        light = np.array([[65535, 1000]], dtype=np.uint16)
        flat = np.array([[2000.0, 2000.0]])

        plain = PixelBuffer(light.copy())
        apply_master_flat(plain, make_master("flat", flat, reference=1000.0))
        assert plain.data.tolist() == [[32768, 500]]

        bloom = PixelBuffer(light.copy())
        report = apply_master_flat(
            bloom, make_master("flat", flat, reference=1000.0), CalibrationSettings(debloom=True)
        )
        assert bloom.data.tolist() == [[65535, 500]]
        assert report.debloomed == 1

    def test_none_skips(self):
        buffer = PixelBuffer(np.ones((2, 2)))
        assert apply_master_flat(buffer, None) is None

    def test_dimension_mismatch(self, make_master):
        data = np.full((10, 10), 1000.0)
        buffer = PixelBuffer(data.copy())
        with pytest.raises(DimensionMismatch):
            apply_master_flat(buffer, make_master("flat", np.ones((10, 10, 3))))
        assert np.array_equal(buffer.data, data)
