"""
Tests for batch calibration.

Tests cover:
- Parallel calibration with shared read-only masters
- Failure isolation between frames
- Missing-master policies (skip_stage, skip_frame, abort)
- Batch-wide cancellation and progress

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

import threading

import numpy as np
import pytest

from lightcal.batch import LightFrame, calibrate_batch, calibrate_frame
from lightcal.catalog import MasterCatalog
from lightcal.config import CalibrationSettings, FrameStatus, MasterKind, Stage, StageStatus
from lightcal.errors import DimensionMismatch, NoMatchingMaster
from lightcal.frames import PixelBuffer
from lightcal.progress import EventProgress, NullProgress, ProgressSink, TqdmProgress


class CountingProgress:
    """Thread-safe progress sink counting updates."""

    def __init__(self):
        self.count = 0
        self._lock = threading.Lock()

    def update(self, stage, fraction):
        with self._lock:
            self.count += 1

    def cancelled(self):
        return False


@pytest.fixture
def lights(make_info):
    def _create(n=4, shape=(16, 16), value=1000.0):
        return [
            LightFrame(
                PixelBuffer(np.full(shape, value), f"light_{i:04d}.fits"),
                make_info(frame_id=f"light_{i:04d}.fits"),
            )
            for i in range(n)
        ]

    return _create


@pytest.fixture
def catalog(make_master):
    return MasterCatalog([
        make_master("offset", np.full((16, 16), 100.0)),
        make_master("dark", np.full((16, 16), 50.0)),
        make_master("flat", np.full((16, 16), 1000.0)),
    ])


class TestCalibrateBatch:
    """Tests for concurrent batch calibration."""

    def test_parallel_all_calibrated(self, lights, catalog):
        frames = lights(6)
        result = calibrate_batch(frames, catalog, workers=3)

        assert result.count(FrameStatus.CALIBRATED) == 6
        assert [o.frame_id for o in result.outcomes] == [f.frame_id for f in frames]
        for frame in frames:
            assert np.allclose(result.calibrated[frame.frame_id].data, 850.0)

    def test_sequential_matches_parallel(self, lights, catalog):
        seq = calibrate_batch(lights(3), catalog, workers=1)
        par = calibrate_batch(lights(3), catalog, workers=3)

        for frame_id, buffer in seq.calibrated.items():
            assert np.array_equal(buffer.data, par.calibrated[frame_id].data)

    def test_masters_untouched(self, lights, catalog):
        calibrate_batch(lights(4), catalog, workers=2)
        for master in catalog:
            assert not master.data.flags.writeable
        assert np.all(catalog.of_kind(MasterKind.OFFSET)[0].data == 100.0)

    def test_failure_isolated(self, lights, catalog):
        frames = lights(3)
        frames[1] = LightFrame(PixelBuffer(np.full((8, 8), 1000.0), "small.fits"), frames[1].info)

        result = calibrate_batch(frames, catalog, workers=2)

        assert result.outcomes[1].status is FrameStatus.FAILED
        assert isinstance(result.outcomes[1].error, DimensionMismatch)
        assert "small.fits" not in result.calibrated
        assert result.count(FrameStatus.CALIBRATED) == 2
        assert not result.aborted

    def test_metadata(self, lights, catalog):
        result = calibrate_batch(lights(1), catalog)
        assert result.version
        assert result.timestamp
        assert result.settings is not None

    def test_progress_counts_every_stage(self, lights, catalog):
        progress = CountingProgress()
        calibrate_batch(lights(5), catalog, progress=progress, workers=2)
        assert progress.count == 5 * 4

    def test_cancelled_batch(self, lights, catalog):
        progress = EventProgress()
        progress.cancel()
        frames = lights(3)

        result = calibrate_batch(frames, catalog, progress=progress, workers=2)

        assert result.count(FrameStatus.CANCELLED) == 3
        assert result.calibrated == {}
        assert np.allclose(frames[0].buffer.data, 1000.0)

    def test_empty_batch(self, catalog):
        result = calibrate_batch([], catalog)
        assert result.outcomes == []


class TestMissingMasterPolicy:
    """Tests for skip_stage, skip_frame and abort."""

    def test_skip_stage(self, lights, make_master):
        catalog = MasterCatalog([make_master("offset", np.full((16, 16), 100.0))])
        result = calibrate_batch(lights(2), catalog, workers=2)

        for outcome in result.outcomes:
            assert outcome.status is FrameStatus.CALIBRATED
            assert outcome.stages[Stage.DARK] is StageStatus.SKIPPED
            assert outcome.stages[Stage.FLAT] is StageStatus.SKIPPED
        assert all(np.allclose(b.data, 900.0) for b in result.calibrated.values())

    def test_skip_frame(self, lights, make_master):
        catalog = MasterCatalog([make_master("offset", np.full((16, 16), 100.0))])
        settings = CalibrationSettings(missing_master_policy="skip_frame")
        frames = lights(2)

        result = calibrate_batch(frames, catalog, settings, workers=2)

        assert result.count(FrameStatus.SKIPPED) == 2
        assert np.allclose(frames[0].buffer.data, 1000.0)
        assert result.calibrated == {}
        assert not result.outcomes[0].ok
        assert "No matching master" in result.outcomes[0].notes[Stage.OFFSET]

    def test_skip_frame_only_for_required_kinds(self, lights, make_master):
        catalog = MasterCatalog([make_master("offset", np.full((16, 16), 100.0))])
        settings = CalibrationSettings(missing_master_policy="skip_frame", required_masters=("offset",))

        result = calibrate_batch(lights(2), catalog, settings)

        assert result.count(FrameStatus.CALIBRATED) == 2

    def test_abort_sequential(self, lights, make_master):
        catalog = MasterCatalog([make_master("offset", np.full((16, 16), 100.0))])
        settings = CalibrationSettings(missing_master_policy="abort", workers=1)

        result = calibrate_batch(lights(3), catalog, settings)

        assert result.aborted
        assert result.outcomes[0].status is FrameStatus.FAILED
        assert isinstance(result.outcomes[0].error, NoMatchingMaster)
        assert result.outcomes[1].status is FrameStatus.CANCELLED
        assert result.outcomes[2].status is FrameStatus.CANCELLED
        assert result.calibrated == {}

    def test_abort_parallel(self, lights, make_master):
        catalog = MasterCatalog([make_master("offset", np.full((16, 16), 100.0))])
        settings = CalibrationSettings(missing_master_policy="abort")

        result = calibrate_batch(lights(4), catalog, settings, workers=2)

        assert result.aborted
        assert result.count(FrameStatus.CALIBRATED) == 0
        assert result.count(FrameStatus.FAILED) >= 1

    def test_calibrate_frame_abort_raises(self, lights):
        settings = CalibrationSettings(missing_master_policy="abort")
        with pytest.raises(NoMatchingMaster):
            calibrate_frame(lights(1)[0], MasterCatalog(), settings)


class TestProgressSinks:
    """Tests for progress sink implementations."""

    def test_protocol(self):
        assert isinstance(NullProgress(), ProgressSink)
        assert isinstance(EventProgress(), ProgressSink)

    def test_event_progress(self):
        progress = EventProgress()
        assert not progress.cancelled()
        progress.cancel()
        assert progress.cancelled()

    def test_tqdm_progress(self):
        with TqdmProgress(2) as progress:
            progress.update("offset", 0.25)
            progress.update("dark", 0.5)
            assert progress.bar.n == 2
            assert progress.bar.total == 8
            assert not progress.cancelled()
