"""
Progress reporting and cooperative cancellation.

The orchestrator reports one increment per stage through a ProgressSink and
asks it, between stages, whether calibration should stop.

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from __future__ import annotations

import threading
from typing import Protocol, runtime_checkable

from .config import STAGE_ORDER


@runtime_checkable
class ProgressSink(Protocol):
    """Collaborator receiving stage progress and answering cancellation queries."""

    def update(self, stage: str, fraction: float) -> None:
        """Stage ``stage`` finished; ``fraction`` of the frame is done (0-1)."""
        ...

    def cancelled(self) -> bool:
        """Return True to stop before the next stage."""
        ...


class NullProgress:
    """Progress sink that reports nothing and never cancels."""

    def update(self, stage: str, fraction: float) -> None:
        pass

    def cancelled(self) -> bool:
        return False


class EventProgress:
    """
    Progress sink backed by a threading.Event.

    Setting the event cancels every frame sharing this sink at its next
    stage boundary.
    """

    def __init__(self, event: threading.Event | None = None):
        self.event = event or threading.Event()

    def cancel(self) -> None:
        self.event.set()

    def update(self, stage: str, fraction: float) -> None:
        pass

    def cancelled(self) -> bool:
        return self.event.is_set()


class TqdmProgress(EventProgress):
    """
    Single progress bar over a whole batch, shared by all worker threads.

    Parameters
    ----------
    total_frames : int
        Number of light frames in the batch.
    desc : str, default "Calibrate"
        Bar description.
    event : threading.Event, optional
        Cancellation event.
    disable : bool, default False
        Disable the bar (quiet mode).
    """

    def __init__(
        self,
        total_frames: int,
        desc: str = "Calibrate",
        event: threading.Event | None = None,
        disable: bool = False,
    ):
        from .cli_output import create_progress_bar

        super().__init__(event)
        self._lock = threading.Lock()
        self.bar = create_progress_bar(
            total=total_frames * len(STAGE_ORDER),
            desc=desc,
            unit="stage",
            disable=disable,
        )

    def update(self, stage: str, fraction: float) -> None:
        with self._lock:
            self.bar.set_postfix(stage=stage)
            self.bar.update(1)

    def close(self) -> None:
        self.bar.close()

    def __enter__(self) -> TqdmProgress:
        return self

    def __exit__(self, *exc) -> None:
        self.close()
