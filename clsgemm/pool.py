"""LRU pool of sgemm engines keyed by padded-dimension triple.

An engine's buffers only fit one padded triple; callers with varying shapes
get one engine per triple, built lazily. When the pool is full the least
recently used engine is finalized and dropped.
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from typing import Any, Callable, Dict, Optional, Tuple

import numpy as _np

from . import config as _cfg
from .engine import SgemmEngine
from .errors import ConfigurationError, DimensionError
from .geometry import LaunchGeometry
from .utils.logging import get_logger as _get_logger

_log = _get_logger("clsgemm.pool")

EngineFactory = Callable[..., SgemmEngine]


class EnginePool:
    def __init__(
        self,
        capacity: Optional[int] = None,
        *,
        geometry: Optional[LaunchGeometry] = None,
        factory: Optional[EngineFactory] = None,
        **engine_options: Any,
    ):
        if capacity is None:
            capacity = _cfg.get("CLSGEMM_POOL_CAPACITY")
        if int(capacity) < 1:
            raise ConfigurationError(f"pool capacity must be at least 1, got {capacity}")
        self.capacity = int(capacity)
        self.geometry = geometry or LaunchGeometry.from_config()
        self._factory = factory or SgemmEngine
        self._engine_options = engine_options
        self._pool: "OrderedDict[Tuple[int, int, int], SgemmEngine]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def key(self, M: int, N: int, K: int) -> Tuple[int, int, int]:
        return self.geometry.plan(M, N, K).padded

    def get(self, M: int, N: int, K: int) -> SgemmEngine:
        key = self.key(M, N, K)
        with self._lock:
            engine = self._pool.get(key)
            if engine is not None and not engine.finalized:
                self._hits += 1
                self._pool.move_to_end(key)
                return engine
            self._misses += 1
            engine = self._factory(M, N, K, geometry=self.geometry, **self._engine_options)
            self._pool[key] = engine
            self._pool.move_to_end(key)
            while len(self._pool) > self.capacity:
                old_key, old = self._pool.popitem(last=False)
                self._evictions += 1
                _log.debug("evicting engine for padded %s", old_key)
                old.finalize()
            return engine

    def multiply(self, A: Any, B: Any, C: Optional[_np.ndarray] = None) -> _np.ndarray:
        """C = A @ B for 2-D inputs of any compatible shape."""
        A = _np.ascontiguousarray(A, dtype=_np.float32)
        B = _np.ascontiguousarray(B, dtype=_np.float32)
        if A.ndim != 2 or B.ndim != 2:
            raise DimensionError("EnginePool.multiply expects 2-D matrices")
        (M, K), (K2, N) = A.shape, B.shape
        if K != K2:
            raise DimensionError(f"inner dimensions differ: A is {A.shape}, B is {B.shape}")
        return self.get(M, N, K).multiply(A, B, C, M, N, K)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "entries": len(self._pool),
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
            }

    def clear(self) -> None:
        with self._lock:
            while self._pool:
                _, engine = self._pool.popitem(last=False)
                engine.finalize()

    def __enter__(self) -> "EnginePool":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.clear()


__all__ = ["EnginePool"]
