"""
Pixel buffers and master frames.

A PixelBuffer holds one image (light or master) as a numpy array of shape
(H, W) for monochrome or Bayer-raw data, or (H, W, C) for RGB. Its sample
dtype is preserved by every calibration stage: stages compute in float64 and
store through PixelBuffer.commit(), which rounds and clips once.

MasterFrame wraps a read-only PixelBuffer with its acquisition metadata.
Masters are shared by every worker of a batch and expose no mutation API.

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np

from .config import MasterKind, StackingInfo
from .errors import DimensionMismatch

logger = logging.getLogger(__name__)

# Typical uint16 max value after BZERO correction
UINT16_MAX = 65535.0

# Valid Bayer patterns for one-channel mosaics
BAYER_PATTERNS = ("RGGB", "BGGR", "GRBG", "GBRG")


def default_saturation(dtype: np.dtype) -> float:
    """
    Return the sensor saturation value implied by a sample dtype.

    Integer dtypes saturate at their maximum; floating point data is assumed
    to carry 16-bit ADU counts.
    """
    dtype = np.dtype(dtype)
    if np.issubdtype(dtype, np.integer):
        return float(np.iinfo(dtype).max)
    return UINT16_MAX


class PixelBuffer:
    """
    In-memory image with an immutable identity.

    Parameters
    ----------
    data : array_like
        2D (H, W) or 3D (H, W, C) sample array.
    frame_id : str
        Identity of the source frame (typically its path).
    cfa : str, optional
        Bayer pattern ('RGGB', ...) when ``data`` is a one-channel mosaic.
    saturation : float, optional
        Sensor saturation value. Defaults to the dtype maximum (65535 for floats).
    """

    def __init__(
        self,
        data: np.ndarray,
        frame_id: str = "",
        cfa: str | None = None,
        saturation: float | None = None,
    ):
        data = np.asarray(data)
        if data.ndim not in (2, 3):
            raise ValueError(f"Pixel data must be 2D or 3D, got shape {data.shape}")
        if cfa:
            cfa = cfa.strip().upper()
            if cfa not in BAYER_PATTERNS:
                raise ValueError(f"Unknown Bayer pattern: {cfa!r}")
            if data.ndim != 2:
                raise ValueError("A Bayer pattern requires one-channel (H, W) data")

        self._data = data
        self._frame_id = str(frame_id)
        self.cfa = cfa or None
        self.saturation = float(saturation) if saturation is not None else default_saturation(data.dtype)

    def __repr__(self) -> str:
        return (
            f"PixelBuffer(frame_id={self._frame_id!r}, shape={self.shape}, "
            f"dtype={self.dtype}, cfa={self.cfa!r})"
        )

    @property
    def frame_id(self) -> str:
        return self._frame_id

    @property
    def data(self) -> np.ndarray:
        return self._data

    @property
    def shape(self) -> tuple[int, ...]:
        return self._data.shape

    @property
    def dtype(self) -> np.dtype:
        return self._data.dtype

    @property
    def height(self) -> int:
        return self._data.shape[0]

    @property
    def width(self) -> int:
        return self._data.shape[1]

    @property
    def channels(self) -> int:
        return 1 if self._data.ndim == 2 else self._data.shape[2]

    @property
    def is_cfa(self) -> bool:
        return self.cfa is not None

    def as_float(self) -> np.ndarray:
        """Return the samples as a new float64 array."""
        return self._data.astype(np.float64)

    def saturation_mask(self, fraction: float = 1.0) -> np.ndarray:
        """Boolean mask of samples at or above ``fraction`` of saturation."""
        return self._data >= fraction * self.saturation

    def commit(self, values: np.ndarray) -> None:
        """
        Store a float result as the new content of the buffer.

        The result replaces the samples in a single assignment, so a stage
        either lands completely or not at all. Values are clipped at the lower
        bound of the valid range (0); integer dtypes are rounded to nearest and
        clipped to the dtype maximum. NaN is preserved for float dtypes.
        """
        values = np.asarray(values)
        if values.shape != self._data.shape:
            raise ValueError(
                f"Cannot commit shape {values.shape} into buffer of shape {self._data.shape}"
            )

        dtype = self._data.dtype
        if np.issubdtype(dtype, np.integer):
            info = np.iinfo(dtype)
            stored = np.clip(np.rint(np.nan_to_num(values, nan=0.0)), 0, info.max).astype(dtype)
        else:
            stored = np.clip(values, 0, None).astype(dtype)

        self._data = stored

    def copy(self) -> PixelBuffer:
        """Return a deep copy with the same identity."""
        return PixelBuffer(self._data.copy(), self._frame_id, cfa=self.cfa, saturation=self.saturation)

    def frozen(self) -> PixelBuffer:
        """Return a buffer sharing the same memory through a read-only view."""
        view = self._data.view()
        view.setflags(write=False)
        return PixelBuffer(view, self._frame_id, cfa=self.cfa, saturation=self.saturation)


def cfa_phase_index(shape: tuple[int, int]) -> np.ndarray:
    """
    Index of the 2x2 Bayer phase (0..3) of every pixel of a mosaic.

    Phase = 2 * (row % 2) + (col % 2), so phase 0 is the top-left site
    of the pattern.
    """
    rows = np.arange(shape[0]) % 2
    cols = np.arange(shape[1]) % 2
    return 2 * rows[:, None] + cols[None, :]


def flat_reference(buffer: PixelBuffer) -> np.ndarray:
    """
    Normalization constant of a flat field.

    Parameters
    ----------
    buffer : PixelBuffer
        Master flat.

    Returns
    -------
    np.ndarray
        Array broadcastable to ``buffer.shape``:
        - 0-d for monochrome data (median of the frame),
        - (C,) for RGB data (median per channel),
        - (H, W) for Bayer mosaics (median per 2x2 phase, expanded).

    Notes
    -----
    Only finite positive samples enter the medians. A channel without any
    usable sample gets a reference of 1.0.
    """
    data = buffer.as_float()

    def _median(values: np.ndarray) -> float:
        usable = values[np.isfinite(values) & (values > 0)]
        if usable.size == 0:
            return 1.0
        return float(np.median(usable))

    if buffer.channels > 1:
        return np.array([_median(data[..., c]) for c in range(buffer.channels)])

    if buffer.is_cfa:
        phases = cfa_phase_index(buffer.shape)
        medians = np.array([_median(data[phases == p]) for p in range(4)])
        return medians[phases]

    return np.array(_median(data))


@dataclass(frozen=True, eq=False)
class MasterFrame:
    """
    Read-only calibration master (offset, dark or flat).

    The pixel buffer is replaced by a write-protected view at construction.
    For flats, ``reference`` is the normalization constant: an explicit value
    (e.g. from the FLATREF header) or the per-channel median of the flat.
    """

    kind: MasterKind
    buffer: PixelBuffer
    info: StackingInfo = field(default_factory=StackingInfo)
    reference: float | np.ndarray | None = None

    def __post_init__(self):
        object.__setattr__(self, "buffer", self.buffer.frozen())

        if self.kind is MasterKind.FLAT:
            if self.reference is None:
                reference = flat_reference(self.buffer)
            else:
                reference = np.asarray(self.reference, dtype=np.float64)
            object.__setattr__(self, "reference", reference)
            logger.debug("Flat %s reference: %s", self.frame_id, np.unique(reference)[:4])
        elif self.reference is not None:
            raise ValueError(f"Only flat masters carry a reference, got kind {self.kind.value}")

    @property
    def frame_id(self) -> str:
        return self.info.frame_id or self.buffer.frame_id

    @property
    def data(self) -> np.ndarray:
        return self.buffer.data

    @property
    def shape(self) -> tuple[int, ...]:
        return self.buffer.shape


def check_dimensions(buffer: PixelBuffer, master: MasterFrame) -> None:
    """
    Reject a master whose shape differs from the light frame.

    Raises
    ------
    DimensionMismatch
        If height, width or channel layout differ. Nothing is cropped or padded.
    """
    if buffer.shape != master.shape:
        raise DimensionMismatch(buffer.frame_id, master.kind.value, buffer.shape, master.shape)
