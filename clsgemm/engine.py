"""Dispatch engine: one blocking SGEMM call over pre-allocated device resources.

Per call: pad A/B into staging buffers when their dims are not tile
multiples, upload, bind the six kernel arguments, launch the
``(M_padded, N_padded / vector_width)`` grid in
``(tile_width, tile_width / vector_width)`` groups, drain the queue, read C
back and un-pad it into the caller's output.

The module-level ``initialize`` / ``multiply`` / ``finalize`` functions keep
the classic single-engine host API on top of a process-wide default engine.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import numpy as _np

from .device import DeviceResources
from .errors import DimensionError, EngineError, EngineStateError, Outcome
from .geometry import LaunchGeometry, PaddedDims
from .padding import pad, unpad
from .utils.logging import get_logger as _get_logger

_log = _get_logger("clsgemm.engine")


@dataclass
class MatmulResult:
    output: _np.ndarray
    dims: PaddedDims
    padded_a: bool = False
    padded_b: bool = False
    padded_c: bool = False
    ms: float | None = None
    gflops: float | None = None


class SgemmEngine:
    """SGEMM engine bound to the padded triple of the (M, N, K) it was built for.

    Any later call whose dimensions round up to the same padded triple is
    accepted; anything else raises ``DimensionError``. ``resources`` may be
    supplied to reuse or substitute the device side; otherwise a
    ``DeviceResources`` is created from ``device_options``.
    """

    def __init__(
        self,
        M: int,
        N: int,
        K: int,
        *,
        tile_width: Optional[int] = None,
        vector_width: Optional[int] = None,
        geometry: Optional[LaunchGeometry] = None,
        resources: Any = None,
        **device_options: Any,
    ):
        self.geometry = geometry or LaunchGeometry.from_config(tile_width, vector_width)
        self.dims = self.geometry.plan(M, N, K)
        if resources is None:
            resources = DeviceResources(self.dims, self.geometry, **device_options)
        self.resources = resources
        # logical (rows, cols) last padded into each staging buffer
        self._staged: Dict[str, Optional[Tuple[int, int]]] = {"a": None, "b": None}
        _log.debug(
            "engine ready: M=%d N=%d K=%d padded=%s global=%s local=%s",
            self.dims.M,
            self.dims.N,
            self.dims.K,
            self.dims.padded,
            self.geometry.global_size(self.dims),
            self.geometry.local_size,
        )

    # --- Lifecycle ------------------------------------------------------
    @property
    def finalized(self) -> bool:
        return bool(self.resources.released)

    def finalize(self) -> None:
        self.resources.release()

    def __enter__(self) -> "SgemmEngine":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.finalize()

    # --- Argument handling ----------------------------------------------
    def _resolve_dims(
        self, A: _np.ndarray, B: _np.ndarray, M: Optional[int], N: Optional[int], K: Optional[int]
    ) -> PaddedDims:
        if M is None:
            M = A.shape[0] if A.ndim == 2 else self.dims.M
        if K is None:
            K = A.shape[1] if A.ndim == 2 else self.dims.K
        if N is None:
            N = B.shape[1] if B.ndim == 2 else self.dims.N
        dims = self.geometry.plan(M, N, K)
        if dims.padded != self.dims.padded:
            raise DimensionError(
                f"M={dims.M} N={dims.N} K={dims.K} pads to {dims.padded}, "
                f"but this engine was initialized for {self.dims.padded}"
            )
        for name, arr, shape in (("A", A, (dims.M, dims.K)), ("B", B, (dims.K, dims.N))):
            if arr.ndim == 2 and arr.shape != shape:
                raise DimensionError(f"{name} has shape {arr.shape}, expected {shape}")
            if arr.size != shape[0] * shape[1]:
                raise DimensionError(f"{name} holds {arr.size} elements, expected {shape[0] * shape[1]}")
        return dims

    @staticmethod
    def _output(C: Optional[_np.ndarray], dims: PaddedDims) -> _np.ndarray:
        if C is None:
            return _np.empty((dims.M, dims.N), dtype=_np.float32)
        if not isinstance(C, _np.ndarray) or C.dtype != _np.float32 or not C.flags.c_contiguous:
            raise DimensionError("output C must be a C-contiguous float32 numpy array")
        if C.size != dims.M * dims.N:
            raise DimensionError(f"C holds {C.size} elements, expected {dims.M * dims.N}")
        return C

    def _stage(self, which: str, src: _np.ndarray, rows: int, cols: int, staging: _np.ndarray) -> _np.ndarray:
        # a different logical shape leaves stale values in the padding region
        if self._staged[which] != (rows, cols):
            staging.fill(0.0)
            self._staged[which] = (rows, cols)
        return pad(src, rows, cols, staging, tile=self.geometry.tile_width)

    # --- Dispatch -------------------------------------------------------
    def execute(
        self,
        A: Any,
        B: Any,
        C: Optional[_np.ndarray] = None,
        M: Optional[int] = None,
        N: Optional[int] = None,
        K: Optional[int] = None,
    ) -> MatmulResult:
        res = self.resources
        if res.released:
            raise EngineStateError("multiply called after finalize")
        A = _np.ascontiguousarray(A, dtype=_np.float32)
        B = _np.ascontiguousarray(B, dtype=_np.float32)
        dims = self._resolve_dims(A, B, M, N, K)
        out = self._output(C, dims)

        a_src = self._stage("a", A, dims.M, dims.K, res.a_staging) if dims.a_needs_padding else A
        b_src = self._stage("b", B, dims.K, dims.N, res.b_staging) if dims.b_needs_padding else B
        res.upload(res.a_buf, a_src)
        res.upload(res.b_buf, b_src)

        args = (
            res.a_buf,
            res.b_buf,
            res.c_buf,
            _np.int32(dims.m_padded),
            _np.int32(dims.n_padded),
            _np.int32(dims.k_padded),
        )
        gsz = self.geometry.global_size(dims)
        lsz = self.geometry.local_size
        _log.debug("launch sgemm padded=%s global=%s local=%s", dims.padded, gsz, lsz)
        ms = res.launch(args, gsz, lsz)

        if dims.c_needs_padding:
            res.download(res.c_staging, res.c_buf)
            unpad(res.c_staging, dims.M, dims.N, out, tile=self.geometry.tile_width)
        else:
            res.download(out, res.c_buf)

        gflops = dims.flops / (ms * 1e6) if ms else None
        return MatmulResult(
            out,
            dims,
            padded_a=dims.a_needs_padding,
            padded_b=dims.b_needs_padding,
            padded_c=dims.c_needs_padding,
            ms=ms,
            gflops=gflops,
        )

    def multiply(
        self,
        A: Any,
        B: Any,
        C: Optional[_np.ndarray] = None,
        M: Optional[int] = None,
        N: Optional[int] = None,
        K: Optional[int] = None,
    ) -> _np.ndarray:
        """C = A @ B; writes into ``C`` when given and returns the output array."""
        return self.execute(A, B, C, M, N, K).output

    def try_multiply(
        self,
        A: Any,
        B: Any,
        C: Optional[_np.ndarray] = None,
        M: Optional[int] = None,
        N: Optional[int] = None,
        K: Optional[int] = None,
    ) -> Outcome:
        try:
            return Outcome.success(self.execute(A, B, C, M, N, K))
        except EngineError as exc:
            _log.debug("sgemm failed: %s", exc)
            return Outcome.failure(exc)


# --- Process-wide default engine --------------------------------------------
_DEFAULT_LOCK = threading.Lock()
_DEFAULT_ENGINE: Optional[SgemmEngine] = None


def initialize(M: int, N: int, K: int, **options: Any) -> SgemmEngine:
    """Create the default engine for (M, N, K)."""
    global _DEFAULT_ENGINE
    with _DEFAULT_LOCK:
        if _DEFAULT_ENGINE is not None and not _DEFAULT_ENGINE.finalized:
            raise EngineStateError("already initialized; call finalize() first")
        _DEFAULT_ENGINE = SgemmEngine(M, N, K, **options)
        return _DEFAULT_ENGINE


def multiply(
    A: Any,
    B: Any,
    C: Optional[_np.ndarray] = None,
    M: Optional[int] = None,
    N: Optional[int] = None,
    K: Optional[int] = None,
) -> _np.ndarray:
    engine = _DEFAULT_ENGINE
    if engine is None:
        raise EngineStateError("initialize() must be called before multiply()")
    return engine.multiply(A, B, C, M, N, K)


def finalize() -> None:
    with _DEFAULT_LOCK:
        if _DEFAULT_ENGINE is not None:
            _DEFAULT_ENGINE.finalize()


def default_engine() -> Optional[SgemmEngine]:
    return _DEFAULT_ENGINE


__all__ = [
    "MatmulResult",
    "SgemmEngine",
    "initialize",
    "multiply",
    "finalize",
    "default_engine",
]
