"""Zero-padding transform between dense and tile-strided row-major layouts.

A padded matrix keeps the logical rows/cols in its top-left corner; its row
stride is ``cols`` rounded up to the tile width and any rows beyond ``rows``
exist only to make the row count a tile multiple too. Both directions are
pure data movement.
"""

from __future__ import annotations

from typing import Any, Optional, Tuple

import numpy as _np

DEFAULT_TILE_WIDTH = 64


def round_up(n: int, tile: int) -> int:
    """Smallest multiple of ``tile`` that is >= ``n``."""
    return (int(n) + tile - 1) // tile * tile


def padded_shape(rows: int, cols: int, tile: int = DEFAULT_TILE_WIDTH) -> Tuple[int, int]:
    return round_up(rows, tile), round_up(cols, tile)


def needs_padding(rows: int, cols: int, tile: int = DEFAULT_TILE_WIDTH) -> bool:
    return (rows, cols) != padded_shape(rows, cols, tile)


def _rows_view(buf: Any, rows: int, stride: int, what: str) -> _np.ndarray:
    # 2-D view of the first rows*stride elements of a contiguous buffer
    arr = buf if isinstance(buf, _np.ndarray) else _np.asarray(buf, dtype=_np.float32)
    if not arr.flags.c_contiguous:
        raise ValueError(f"{what} buffer must be C-contiguous")
    if arr.size < rows * stride:
        raise ValueError(f"{what} buffer holds {arr.size} elements, need {rows * stride}")
    return arr.reshape(-1)[: rows * stride].reshape(rows, stride)


def pad(
    src: Any,
    rows: int,
    cols: int,
    dst: Optional[_np.ndarray] = None,
    *,
    tile: int = DEFAULT_TILE_WIDTH,
) -> _np.ndarray:
    """Copy a dense ``rows x cols`` matrix into a tile-strided buffer.

    Cells of ``dst`` outside the logical region are left untouched, so a
    zero-initialised destination stays zero there. When ``dst`` is None a
    zeroed ``padded_shape(rows, cols, tile)`` array is allocated.
    """
    cols_padded = round_up(cols, tile)
    if dst is None:
        dst = _np.zeros(padded_shape(rows, cols, tile), dtype=_np.float32)
    source = _rows_view(_np.ascontiguousarray(src, dtype=_np.float32), rows, cols, "source")
    _rows_view(dst, rows, cols_padded, "destination")[:, :cols] = source
    return dst


def unpad(
    src: Any,
    rows: int,
    cols: int,
    dst: Optional[_np.ndarray] = None,
    *,
    tile: int = DEFAULT_TILE_WIDTH,
) -> _np.ndarray:
    """Copy the logical ``rows x cols`` region out of a tile-strided buffer."""
    cols_padded = round_up(cols, tile)
    if dst is None:
        dst = _np.empty((rows, cols), dtype=_np.float32)
    source = _rows_view(_np.ascontiguousarray(src, dtype=_np.float32), rows, cols_padded, "source")
    _rows_view(dst, rows, cols, "destination")[...] = source[:, :cols]
    return dst


__all__ = ["DEFAULT_TILE_WIDTH", "round_up", "padded_shape", "needs_padding", "pad", "unpad"]
