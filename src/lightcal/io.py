"""
FITS I/O for light and master frames.

Handles:
- Reading frames into PixelBuffer with their StackingInfo
- Master kind inference from IMAGETYP
- Writing calibrated frames with a calibration history

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Iterable

import numpy as np
from astropy.io import fits
from astropy.time import Time

from .catalog import MasterCatalog
from .config import FrameOutcome, MasterKind, StackingInfo
from .frames import MasterFrame, PixelBuffer

logger = logging.getLogger(__name__)

# Sample dtypes kept as read; anything else is converted to float32
NATIVE_DTYPES = (np.uint8, np.uint16, np.float32, np.float64)

# IMAGETYP values (lower case, substring match) per master kind
IMAGETYP_KINDS = {
    MasterKind.OFFSET: ("bias", "offset", "zero"),
    MasterKind.DARK: ("dark",),
    MasterKind.FLAT: ("flat",),
}


def _first(header: fits.Header, *keys: str):
    """Value of the first keyword present in the header."""
    for key in keys:
        value = header.get(key)
        if value is not None and value != "":
            return value
    return None


def _as_float(value) -> float | None:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _parse_timestamp(value) -> datetime | None:
    if not value:
        return None
    try:
        return Time(str(value).strip(), scale="utc").to_datetime()
    except ValueError:
        logger.debug("Unparseable DATE-OBS: %r", value)
        return None


def extract_stacking_info(header: fits.Header, frame_id: str = "") -> StackingInfo:
    """
    Extract acquisition metadata from a FITS header.

    Parameters
    ----------
    header : fits.Header
        FITS header object.
    frame_id : str
        Identity of the frame (typically its path).

    Returns
    -------
    StackingInfo
        Exposure, gain, temperature, binning, filter and capture time.
    """
    return StackingInfo(
        frame_id=frame_id,
        exposure_s=_as_float(_first(header, "EXPTIME", "EXPOSURE")),
        gain=_as_float(_first(header, "GAIN", "ISOSPEED")),
        temperature_c=_as_float(_first(header, "CCD-TEMP", "DET-TEMP", "SET-TEMP")),
        binning=(int(header.get("XBINNING", 1)), int(header.get("YBINNING", 1))),
        filter_name=str(header.get("FILTER", "") or "").strip(),
        timestamp=_parse_timestamp(header.get("DATE-OBS")),
    )


def infer_master_kind(header: fits.Header) -> MasterKind | None:
    """Master kind from the IMAGETYP keyword, or None for light frames."""
    imagetyp = str(header.get("IMAGETYP", "") or "").strip().lower()
    for kind, tokens in IMAGETYP_KINDS.items():
        if any(token in imagetyp for token in tokens):
            return kind
    return None


def _read_hdu(path: str | Path) -> tuple[np.ndarray, fits.Header]:
    """Read primary data as (H, W) or (H, W, C) with its header."""
    with fits.open(path) as hdul:
        hdu = hdul[0]
        if hdu.data is None:
            raise ValueError(f"No image data in {path}")
        data = np.asarray(hdu.data)
        header = hdu.header.copy()

    if data.dtype.type not in NATIVE_DTYPES:
        # astropy returns uint16 for BITPIX=16/BZERO=32768; other integers become float
        data = data.astype(np.float32)
    if data.ndim == 3:
        # FITS cubes are (C, H, W)
        data = np.moveaxis(data, 0, -1)
    elif data.ndim != 2:
        raise ValueError(f"Unsupported image dimensions {data.shape} in {path}")

    return np.ascontiguousarray(data), header


def read_header(path: str | Path) -> fits.Header:
    """
    Read FITS header without loading data.

    Returns
    -------
    fits.Header
        FITS header object.
    """
    with fits.open(path) as hdul:
        return hdul[0].header.copy()


def read_light(path: str | Path) -> tuple[PixelBuffer, StackingInfo]:
    """
    Read a light frame.

    Returns
    -------
    tuple[PixelBuffer, StackingInfo]
        Pixel buffer (identity = path) and acquisition metadata.
    """
    data, header = _read_hdu(path)
    frame_id = str(path)
    cfa = str(header.get("BAYERPAT", "") or "").strip() or None
    if data.ndim == 3:
        cfa = None
    buffer = PixelBuffer(data, frame_id, cfa=cfa, saturation=_as_float(header.get("SATURATE")))
    return buffer, extract_stacking_info(header, frame_id)


def read_master(path: str | Path, kind: MasterKind | str | None = None) -> MasterFrame:
    """
    Read a master offset, dark or flat.

    Parameters
    ----------
    path : str or Path
        FITS file.
    kind : MasterKind or str, optional
        Master kind. Inferred from IMAGETYP when omitted.

    Raises
    ------
    ValueError
        If the kind is neither given nor inferable.
    """
    data, header = _read_hdu(path)
    if kind is None:
        kind = infer_master_kind(header)
        if kind is None:
            raise ValueError(f"Cannot infer master kind of {path} (IMAGETYP={header.get('IMAGETYP')!r})")
    kind = MasterKind(kind)

    frame_id = str(path)
    cfa = str(header.get("BAYERPAT", "") or "").strip() or None
    if data.ndim == 3:
        cfa = None
    buffer = PixelBuffer(data, frame_id, cfa=cfa)
    reference = _as_float(header.get("FLATREF")) if kind is MasterKind.FLAT else None

    master = MasterFrame(kind, buffer, extract_stacking_info(header, frame_id), reference=reference)
    logger.info("Loaded master %s: %s %s", kind.value, Path(path).name, buffer.shape)
    return master


def load_catalog(
    offsets: Iterable[str | Path] = (),
    darks: Iterable[str | Path] = (),
    flats: Iterable[str | Path] = (),
    masters: Iterable[str | Path] = (),
) -> MasterCatalog:
    """
    Build a master catalog from FITS files.

    ``offsets``, ``darks`` and ``flats`` have a known kind; ``masters`` are
    classified from their IMAGETYP keyword.
    """
    catalog = MasterCatalog()
    for kind, paths in ((MasterKind.OFFSET, offsets), (MasterKind.DARK, darks), (MasterKind.FLAT, flats)):
        for path in paths:
            catalog.add(read_master(path, kind))
    for path in masters:
        catalog.add(read_master(path))
    return catalog


def calibration_history(outcome: FrameOutcome) -> list[str]:
    """HISTORY lines describing what was applied to a frame."""
    lines = []
    for stage, status in outcome.stages.items():
        line = f"lightcal {stage.value}: {status.value}"
        master = outcome.masters.get(stage.value)
        if master:
            line += f" ({Path(master).name})"
        if stage.value == "dark" and outcome.dark_scale is not None:
            line += f" scale={outcome.dark_scale:.4f}"
        lines.append(line)
    return lines


def write_frame(
    path: str | Path,
    buffer: PixelBuffer,
    header: fits.Header | None = None,
    history: list[str] | None = None,
    overwrite: bool = False,
) -> None:
    """
    Write a pixel buffer as FITS.

    Parameters
    ----------
    path : str or Path
        Output path.
    buffer : PixelBuffer
        Image to write. RGB data is stored as a (C, H, W) cube.
    header : fits.Header, optional
        Header to include. A minimal header is created if not provided.
    history : list[str], optional
        HISTORY cards to append.
    overwrite : bool, default False
        Whether to overwrite existing file.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    header = header.copy() if header is not None else fits.Header()
    # Stale scaling keywords would corrupt the written data
    for key in ("BZERO", "BSCALE"):
        header.remove(key, ignore_missing=True)
    for line in history or []:
        header.add_history(line)

    data = buffer.data
    if data.ndim == 3:
        data = np.moveaxis(data, -1, 0)

    hdu = fits.PrimaryHDU(data=np.ascontiguousarray(data), header=header)
    hdu.writeto(path, overwrite=overwrite)
    logger.info("Wrote FITS: %s", path)
