"""
Batch calibration of many light frames.

Frames are calibrated independently, one worker per frame, with
ThreadPoolExecutor. Master frames are shared read-only by all workers; each
light buffer is owned by the worker calibrating it. One frame's failure
never stops the others; only the 'abort' missing-master policy stops the
batch.

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from __future__ import annotations

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Sequence

from .catalog import MasterCatalog
from .config import (
    STAGE_ORDER,
    BatchResult,
    CalibrationSettings,
    FrameOutcome,
    FrameStatus,
    StackingInfo,
    StageStatus,
)
from .errors import CalibrationError, NoMatchingMaster
from .frames import PixelBuffer
from .masters import MasterFrames
from .progress import NullProgress, ProgressSink
from .stars import StarList
from .utils import get_platform_info, get_timestamp_iso, get_version

logger = logging.getLogger(__name__)

# Default number of workers for parallel processing
# Use all available CPUs but leave one free for system
DEFAULT_WORKERS = max(1, os.cpu_count() - 1) if os.cpu_count() else 4


@dataclass
class LightFrame:
    """A light frame to calibrate: pixels, metadata and optional star list."""

    buffer: PixelBuffer
    info: StackingInfo
    stars: StarList | None = None

    @property
    def frame_id(self) -> str:
        return self.buffer.frame_id


class _BatchProgress:
    """Forwards to the caller's sink and adds the batch abort event."""

    def __init__(self, sink: ProgressSink, abort: threading.Event):
        self.sink = sink
        self.abort = abort

    def update(self, stage: str, fraction: float) -> None:
        self.sink.update(stage, fraction)

    def cancelled(self) -> bool:
        return self.abort.is_set() or self.sink.cancelled()


def _skipped_outcome(frame_id: str, reason: str) -> FrameOutcome:
    outcome = FrameOutcome(frame_id=frame_id, status=FrameStatus.SKIPPED)
    for stage in STAGE_ORDER:
        outcome.stages[stage] = StageStatus.SKIPPED
        outcome.notes[stage] = reason
    return outcome


def calibrate_frame(
    light: LightFrame,
    catalog: MasterCatalog,
    settings: CalibrationSettings | None = None,
    progress: ProgressSink | None = None,
) -> FrameOutcome:
    """
    Select masters for one light frame and apply them.

    Parameters
    ----------
    light : LightFrame
        Frame to calibrate; its buffer is updated in place.
    catalog : MasterCatalog
        Available masters.
    settings : CalibrationSettings, optional
        Engine settings.
    progress : ProgressSink, optional
        Progress and cancellation collaborator.

    Returns
    -------
    FrameOutcome
        Per-frame record.

    Raises
    ------
    NoMatchingMaster
        If a required master is missing and the policy is 'abort'.
    """
    if progress is None:
        progress = NullProgress()

    masters = MasterFrames(settings)
    masters.load_masters(light.info, catalog)

    missing = masters.missing_required()
    policy = masters.settings.missing_master_policy
    if missing and policy == "abort":
        raise missing[0]
    if missing and policy == "skip_frame":
        reason = "; ".join(str(m) for m in missing)
        logger.warning("Skipping %s: %s", light.frame_id, reason)
        outcome = _skipped_outcome(light.frame_id, reason)
        for index, stage in enumerate(STAGE_ORDER):
            progress.update(stage.value, (index + 1) / len(STAGE_ORDER))
        return outcome

    return masters.apply_all_masters(light.buffer, light.stars, progress)


def calibrate_batch(
    lights: Sequence[LightFrame],
    catalog: MasterCatalog,
    settings: CalibrationSettings | None = None,
    progress: ProgressSink | None = None,
    workers: int | None = None,
) -> BatchResult:
    """
    Calibrate a batch of light frames concurrently.

    Parameters
    ----------
    lights : sequence of LightFrame
        Frames to calibrate. Buffers are updated in place.
    catalog : MasterCatalog
        Masters shared read-only by all workers.
    settings : CalibrationSettings, optional
        Engine settings.
    progress : ProgressSink, optional
        Shared progress sink (must be thread-safe).
    workers : int or None, default None
        Number of parallel workers. None uses ``settings.workers`` or
        auto-detection (CPU count - 1).

    Returns
    -------
    BatchResult
        One outcome per frame in input order, and the committed buffers of
        the frames that were not cancelled and did not fail.

    Notes
    -----
    Under the 'abort' policy, the first frame missing a required master
    cancels every other frame at its next stage boundary and the result is
    flagged ``aborted``.
    """
    if settings is None:
        settings = CalibrationSettings()
    settings.validate()
    if progress is None:
        progress = NullProgress()
    if workers is None:
        workers = settings.workers or DEFAULT_WORKERS

    n_frames = len(lights)
    abort = threading.Event()
    sink = _BatchProgress(progress, abort)
    outcomes: list[FrameOutcome | None] = [None] * n_frames
    result = BatchResult(settings=settings)

    logger.info(
        "Calibrating %d frames with %d worker(s), masters: %s",
        n_frames, min(workers, max(n_frames, 1)), catalog.summary(),
    )

    def _run(index: int) -> FrameOutcome:
        return calibrate_frame(lights[index], catalog, settings, sink)

    def _collect(index: int, run) -> None:
        light = lights[index]
        try:
            outcomes[index] = run()
        except NoMatchingMaster as e:
            logger.error("Batch aborted: %s", e)
            abort.set()
            result.aborted = True
            outcome = FrameOutcome(frame_id=light.frame_id, status=FrameStatus.FAILED, error=e)
            outcomes[index] = outcome
        except CalibrationError as e:
            logger.error("Calibration failed for %s: %s", light.frame_id, e)
            outcomes[index] = FrameOutcome(frame_id=light.frame_id, status=FrameStatus.FAILED, error=e)
        except Exception as e:
            logger.error("Calibration task failed for %s: %s", light.frame_id, e)
            outcomes[index] = FrameOutcome(
                frame_id=light.frame_id,
                status=FrameStatus.FAILED,
                error=CalibrationError(f"Task error: {e}", {"frame_id": light.frame_id}),
            )

    # Fall back to sequential for a single worker
    if workers <= 1 or n_frames <= 1:
        for index in range(n_frames):
            if abort.is_set():
                break
            _collect(index, lambda i=index: _run(i))
    else:
        with ThreadPoolExecutor(max_workers=workers) as executor:
            future_to_index = {executor.submit(_run, i): i for i in range(n_frames)}
            for future in as_completed(future_to_index):
                if future.cancelled():
                    continue
                index = future_to_index[future]
                _collect(index, future.result)
                if abort.is_set():
                    for pending in future_to_index:
                        pending.cancel()

    for index, light in enumerate(lights):
        outcome = outcomes[index]
        if outcome is None:
            # Never started (batch aborted)
            outcome = FrameOutcome(frame_id=light.frame_id, status=FrameStatus.CANCELLED)
        result.outcomes.append(outcome)
        if outcome.ok:
            result.calibrated[light.frame_id] = light.buffer

    result.version = get_version()
    result.timestamp = get_timestamp_iso()
    result.platform = get_platform_info()

    logger.info(
        "Batch complete: %d calibrated, %d skipped, %d cancelled, %d failed",
        result.count(FrameStatus.CALIBRATED),
        result.count(FrameStatus.SKIPPED),
        result.count(FrameStatus.CANCELLED),
        result.count(FrameStatus.FAILED),
    )
    return result
