"""
Master frame catalog and selection.

Given the acquisition metadata of a light frame, pick at most one master
offset, dark and flat from the catalog:

- Offset: any master is acceptable; closest capture time wins.
- Dark: exact exposure and temperature match preferred; otherwise the
  closest exposure (then temperature, gain, capture time), flagged for
  exposure scaling.
- Flat: filter and binning must match; closest capture time wins.

A missing match is reported as a NoMatchingMaster record, never raised.

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Iterable

from .config import MasterKind, StackingInfo
from .errors import NoMatchingMaster
from .frames import MasterFrame

logger = logging.getLogger(__name__)

# Exposure values closer than this are the same exposure
EXPOSURE_TOLERANCE_S = 1e-3

# Temperatures closer than this are the same temperature
TEMPERATURE_TOLERANCE_C = 0.1


class MasterCatalog:
    """
    Read-only collection of master frames available to a batch.

    Masters keep their insertion order, which breaks selection ties.
    """

    def __init__(self, masters: Iterable[MasterFrame] = ()):
        self._masters: list[MasterFrame] = []
        for master in masters:
            self.add(master)

    def add(self, master: MasterFrame) -> None:
        """Register a master frame."""
        if not isinstance(master, MasterFrame):
            raise TypeError(f"Expected MasterFrame, got {type(master).__name__}")
        self._masters.append(master)
        logger.debug("Catalog: added %s master %s", master.kind.value, master.frame_id)

    def of_kind(self, kind: MasterKind) -> list[MasterFrame]:
        """Masters of one kind, in insertion order."""
        return [m for m in self._masters if m.kind is kind]

    def __len__(self) -> int:
        return len(self._masters)

    def __iter__(self):
        return iter(self._masters)

    def summary(self) -> dict[str, int]:
        """Number of masters per kind."""
        return {kind.value: len(self.of_kind(kind)) for kind in MasterKind}


@dataclass
class MasterSelection:
    """Masters selected for one light frame."""

    frame_id: str = ""
    offset: MasterFrame | None = None
    dark: MasterFrame | None = None
    flat: MasterFrame | None = None

    dark_needs_scaling: bool = False
    """True when the dark does not match the light exposure exactly."""

    missing: list[NoMatchingMaster] = field(default_factory=list)
    """One record per kind that could not be matched."""

    def get(self, kind: MasterKind) -> MasterFrame | None:
        return {
            MasterKind.OFFSET: self.offset,
            MasterKind.DARK: self.dark,
            MasterKind.FLAT: self.flat,
        }[kind]

    def missing_kinds(self) -> list[MasterKind]:
        return [MasterKind(m.kind) for m in self.missing]

    @property
    def empty(self) -> bool:
        return self.offset is None and self.dark is None and self.flat is None


def _time_distance(master: MasterFrame, light: StackingInfo) -> float:
    """Seconds between master and light capture times (inf if unknown)."""
    if master.info.timestamp is None or light.timestamp is None:
        return math.inf
    try:
        return abs((master.info.timestamp - light.timestamp).total_seconds())
    except TypeError:
        # naive vs aware datetimes
        return abs(
            (master.info.timestamp.replace(tzinfo=None) - light.timestamp.replace(tzinfo=None)).total_seconds()
        )


def _distance(a: float | None, b: float | None) -> float:
    """Absolute difference, inf when either value is unknown."""
    if a is None or b is None:
        return math.inf
    return abs(a - b)


def same_exposure(a: float | None, b: float | None) -> bool:
    """True when both exposures are known and equal within tolerance."""
    if a is None or b is None:
        return False
    return abs(a - b) <= EXPOSURE_TOLERANCE_S


def _same_temperature(a: float | None, b: float | None) -> bool:
    if a is None or b is None:
        # Unknown temperature cannot disqualify an exact match
        return True
    return abs(a - b) <= TEMPERATURE_TOLERANCE_C


def _normalize_filter(name: str | None) -> str:
    return (name or "").strip().upper()


def _closest_in_time(candidates: list[MasterFrame], light: StackingInfo) -> MasterFrame:
    # min() keeps the first of equal keys, so catalog order breaks ties
    return min(candidates, key=lambda m: _time_distance(m, light))


def select_offset(catalog: MasterCatalog, light: StackingInfo) -> MasterFrame | None:
    """Pick the offset master closest in time to the light frame."""
    candidates = catalog.of_kind(MasterKind.OFFSET)
    if not candidates:
        return None
    return _closest_in_time(candidates, light)


def select_dark(catalog: MasterCatalog, light: StackingInfo) -> tuple[MasterFrame | None, bool]:
    """
    Pick the dark master for a light frame.

    Returns
    -------
    tuple[MasterFrame | None, bool]
        (dark, needs_scaling). needs_scaling is False for an exact
        exposure/temperature match.
    """
    candidates = catalog.of_kind(MasterKind.DARK)
    if not candidates:
        return None, False

    exact = [
        m for m in candidates
        if same_exposure(m.info.exposure_s, light.exposure_s)
        and _same_temperature(m.info.temperature_c, light.temperature_c)
    ]
    if exact:
        return _closest_in_time(exact, light), False

    def rank(m: MasterFrame) -> tuple[float, float, float, float]:
        exposure_gap = (
            math.inf if m.info.exposure_s is None or light.exposure_s is None
            else abs(m.info.exposure_s - light.exposure_s)
        )
        return (
            exposure_gap,
            _distance(m.info.temperature_c, light.temperature_c),
            _distance(m.info.gain, light.gain),
            _time_distance(m, light),
        )

    best = min(candidates, key=rank)
    needs_scaling = not same_exposure(best.info.exposure_s, light.exposure_s)
    return best, needs_scaling


def select_flat(catalog: MasterCatalog, light: StackingInfo) -> MasterFrame | None:
    """Pick a flat master with the light's filter and binning."""
    candidates = [
        m for m in catalog.of_kind(MasterKind.FLAT)
        if _normalize_filter(m.info.filter_name) == _normalize_filter(light.filter_name)
        and tuple(m.info.binning) == tuple(light.binning)
    ]
    if not candidates:
        return None
    return _closest_in_time(candidates, light)


def select_masters(light: StackingInfo, catalog: MasterCatalog) -> MasterSelection:
    """
    Select the offset, dark and flat masters for one light frame.

    Parameters
    ----------
    light : StackingInfo
        Acquisition metadata of the light frame.
    catalog : MasterCatalog
        Available masters. Not modified.

    Returns
    -------
    MasterSelection
        Selected masters and one NoMatchingMaster record per unmatched kind.
    """
    selection = MasterSelection(frame_id=light.frame_id)

    selection.offset = select_offset(catalog, light)
    if selection.offset is None:
        selection.missing.append(
            NoMatchingMaster(MasterKind.OFFSET.value, light.frame_id, "catalog has no offset master")
        )

    selection.dark, selection.dark_needs_scaling = select_dark(catalog, light)
    if selection.dark is None:
        selection.missing.append(
            NoMatchingMaster(MasterKind.DARK.value, light.frame_id, "catalog has no dark master")
        )

    selection.flat = select_flat(catalog, light)
    if selection.flat is None:
        selection.missing.append(
            NoMatchingMaster(
                MasterKind.FLAT.value,
                light.frame_id,
                f"no flat with filter {light.filter_name!r} and binning {light.binning}",
            )
        )

    logger.debug(
        "Selected masters for %s: offset=%s dark=%s%s flat=%s",
        light.frame_id or "<light>",
        selection.offset.frame_id if selection.offset else None,
        selection.dark.frame_id if selection.dark else None,
        " (scaled)" if selection.dark_needs_scaling else "",
        selection.flat.frame_id if selection.flat else None,
    )
    return selection
