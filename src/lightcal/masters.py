"""
Calibration orchestrator for one light frame.

MasterFrames selects the masters matching a light frame, then applies
Offset, Dark, Flat and Hot-Pixel corrections in that order on the same
pixel buffer. Each stage commits atomically; cancellation is checked at
stage boundaries; a dimension mismatch stops the remaining stages.

Example
-------
>>> masters = MasterFrames(CalibrationSettings(debloom=True))
>>> masters.load_masters(light_info, catalog)
>>> outcome = masters.apply_all_masters(light_buffer, stars, progress)
>>> outcome.raise_for_status()

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from __future__ import annotations

import logging

import numpy as np

from .catalog import MasterCatalog, MasterSelection, select_masters
from .config import (
    STAGE_ORDER,
    CalibrationSettings,
    FrameOutcome,
    FrameStatus,
    MasterKind,
    Stage,
    StackingInfo,
    StageStatus,
)
from .dark import apply_master_dark
from .errors import Cancelled, DimensionMismatch, NoMatchingMaster
from .flat import apply_master_flat, defective_flat_mask
from .frames import PixelBuffer
from .hotpixel import apply_hot_pixel_interpolation
from .offset import apply_master_offset
from .progress import NullProgress, ProgressSink
from .stars import StarList

logger = logging.getLogger(__name__)


class MasterFrames:
    """
    Masters selected for one light frame, and the stages that apply them.

    Parameters
    ----------
    settings : CalibrationSettings, optional
        Engine settings, validated at construction and read-only afterwards.
    """

    def __init__(self, settings: CalibrationSettings | None = None):
        self.settings = settings or CalibrationSettings()
        self.settings.validate()
        self.info = StackingInfo()
        self.selection = MasterSelection()

    @property
    def debloom(self) -> bool:
        return self.settings.debloom

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def load_masters(self, info: StackingInfo, catalog: MasterCatalog) -> MasterSelection:
        """
        Select the masters matching a light frame.

        Missing masters are recorded in ``selection.missing``; nothing is raised.
        """
        self.info = info
        self.selection = select_masters(info, catalog)
        for missing in self.selection.missing:
            logger.info("%s", missing)
        return self.selection

    def missing_required(self) -> list[NoMatchingMaster]:
        """Missing masters that the missing-master policy applies to."""
        return [
            m for m in self.selection.missing
            if self.settings.is_required(MasterKind(m.kind))
        ]

    # ------------------------------------------------------------------
    # Individual stages
    # ------------------------------------------------------------------

    def apply_master_offset(self, buffer: PixelBuffer, outcome: FrameOutcome | None = None) -> StageStatus:
        """Subtract the selected offset (no-op if none was selected)."""
        master = self.selection.offset
        applied = apply_master_offset(buffer, master)
        return self._record(outcome, Stage.OFFSET, applied, master, "no offset applied")

    def apply_master_dark(
        self,
        buffer: PixelBuffer,
        stars: StarList | None = None,
        outcome: FrameOutcome | None = None,
    ) -> StageStatus:
        """
        Subtract the selected dark, scaled to the light exposure.

        The star list is not used by dark subtraction; it is accepted so the
        stage has the same inputs as the rest of the pipeline.
        """
        master = self.selection.dark
        scale = apply_master_dark(buffer, master, self.info.exposure_s)
        if outcome is not None and scale is not None:
            outcome.dark_scale = scale
        if scale is not None and stars:
            logger.debug("Dark stage: %d star(s) passed through for %s", len(stars), buffer.frame_id)
        return self._record(outcome, Stage.DARK, scale is not None, master, "no dark applied")

    def apply_master_flat(
        self,
        buffer: PixelBuffer,
        outcome: FrameOutcome | None = None,
        saturated: np.ndarray | None = None,
    ) -> StageStatus:
        """Divide by the selected flat (no-op if none was selected)."""
        master = self.selection.flat
        report = apply_master_flat(buffer, master, self.settings, saturated=saturated)
        if outcome is not None and report is not None:
            outcome.defective = report.defective
        return self._record(outcome, Stage.FLAT, report is not None, master, "no flat applied")

    def apply_hot_pixel_interpolation(
        self,
        buffer: PixelBuffer,
        stars: StarList | None = None,
        outcome: FrameOutcome | None = None,
        exclude: np.ndarray | None = None,
    ) -> StageStatus:
        """
        Interpolate hot/cold pixels, never touching pixels inside a star.

        Pixels in ``exclude`` (defective flat samples) keep the value the
        flat stage gave them. Skipped when disabled in the settings, or when
        no master at all was selected for the frame (the frame is then left
        as captured).
        """
        if not self.settings.hot_pixels:
            return self._record(outcome, Stage.HOT_PIXELS, False, None, "hot pixel interpolation disabled")
        if self.selection.empty:
            return self._record(
                outcome, Stage.HOT_PIXELS, False, None, "no calibration masters, frame left as captured"
            )

        report = apply_hot_pixel_interpolation(
            buffer, stars, sigma=self.settings.hot_pixel_sigma, exclude=exclude
        )
        if outcome is not None:
            outcome.hot_pixels = report.replaced
            outcome.protected_pixels = report.protected
        return self._record(outcome, Stage.HOT_PIXELS, True, None, "")

    def _defective_mask(self) -> np.ndarray | None:
        """Defective samples of the selected flat, None when there are none."""
        mask = defective_flat_mask(self.selection.flat, self.settings.flat_min_fraction)
        return mask if mask.any() else None

    @staticmethod
    def _record(outcome, stage, applied, master, skip_note) -> StageStatus:
        status = StageStatus.APPLIED if applied else StageStatus.SKIPPED
        if outcome is not None:
            outcome.stages[stage] = status
            if applied and master is not None:
                outcome.masters[master.kind.value] = master.frame_id
            if not applied:
                outcome.notes[stage] = skip_note
        return status

    # ------------------------------------------------------------------
    # Orchestration
    # ------------------------------------------------------------------

    def apply_all_masters(
        self,
        buffer: PixelBuffer,
        stars: StarList | None = None,
        progress: ProgressSink | None = None,
    ) -> FrameOutcome:
        """
        Apply Offset, Dark, Flat and Hot-Pixel stages in that order.

        Parameters
        ----------
        buffer : PixelBuffer
            Light frame, updated in place stage by stage.
        stars : sequence of Star, optional
            Detected stars, used by the hot-pixel stage only.
        progress : ProgressSink, optional
            Receives one update per stage and is asked between stages
            whether to stop.

        Returns
        -------
        FrameOutcome
            Stage statuses and final frame status:
            - CALIBRATED when every stage was applied or skipped,
            - CANCELLED when the sink asked to stop (the buffer holds the
              stages completed so far); ``outcome.error`` is a
              Cancelled record,
            - FAILED on a dimension mismatch (``outcome.error`` holds it).
        """
        if progress is None:
            progress = NullProgress()

        outcome = FrameOutcome(frame_id=buffer.frame_id)

        # Saturation is judged on the raw light, before any subtraction
        saturated = (
            buffer.saturation_mask(self.settings.saturation_fraction)
            if self.settings.debloom else None
        )

        defective = None
        n_stages = len(STAGE_ORDER)
        for index, stage in enumerate(STAGE_ORDER):
            if progress.cancelled():
                outcome.status = FrameStatus.CANCELLED
                outcome.notes[stage] = "cancelled"
                outcome.error = Cancelled(buffer.frame_id, stage.value)
                logger.info("Calibration of %s cancelled before stage '%s'", buffer.frame_id, stage.value)
                return outcome

            try:
                if stage is Stage.OFFSET:
                    self.apply_master_offset(buffer, outcome)
                elif stage is Stage.DARK:
                    self.apply_master_dark(buffer, stars, outcome)
                elif stage is Stage.FLAT:
                    if self.apply_master_flat(buffer, outcome, saturated=saturated) is StageStatus.APPLIED:
                        defective = self._defective_mask()
                else:
                    self.apply_hot_pixel_interpolation(buffer, stars, outcome, exclude=defective)
            except DimensionMismatch as e:
                outcome.stages[stage] = StageStatus.FAILED
                outcome.notes[stage] = str(e)
                outcome.status = FrameStatus.FAILED
                outcome.error = e
                logger.error("Calibration of %s failed at stage '%s': %s", buffer.frame_id, stage.value, e)
                return outcome

            progress.update(stage.value, (index + 1) / n_stages)

        outcome.status = FrameStatus.CALIBRATED
        logger.debug(
            "Calibrated %s: applied=%s skipped=%s",
            buffer.frame_id,
            [s.value for s in outcome.applied],
            [s.value for s in outcome.skipped],
        )
        return outcome
