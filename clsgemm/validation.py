"""
clsgemm/validation.py

Correctness checks for engine output.

 - reference_matmul(A, B): direct triple-loop product, the ground truth the
   engine is compared against.
 - relative_error(out, ref): max abs difference scaled by max |ref|.
 - validate_engine(engine, seed): random inputs at the engine's dims,
   compared against a float64 NumPy product.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import numpy as np

from .errors import DimensionError

DEFAULT_RTOL = 1e-3


def reference_matmul(A: Any, B: Any) -> np.ndarray:
    A = np.asarray(A, dtype=np.float32)
    B = np.asarray(B, dtype=np.float32)
    M, K = A.shape
    K2, N = B.shape
    if K != K2:
        raise DimensionError(f"inner dimensions differ: A is {A.shape}, B is {B.shape}")
    C = np.zeros((M, N), dtype=np.float32)
    for i in range(M):
        for j in range(N):
            acc = 0.0
            for k in range(K):
                acc += float(A[i, k]) * float(B[k, j])
            C[i, j] = acc
    return C


def relative_error(out: Any, ref: Any) -> float:
    out = np.asarray(out, dtype=np.float64)
    ref = np.asarray(ref, dtype=np.float64)
    scale = float(np.max(np.abs(ref))) if ref.size else 0.0
    err = float(np.max(np.abs(out - ref))) if ref.size else 0.0
    return err / scale if scale > 0 else err


@dataclass
class ValidationReport:
    ok: bool
    rel_err: float
    rtol: float
    M: int
    N: int
    K: int


def validate_engine(engine, seed: Optional[int] = 0, rtol: float = DEFAULT_RTOL) -> ValidationReport:
    """Run one multiplication at the engine's logical dims and compare to NumPy."""
    M, N, K = engine.dims.logical
    rng = np.random.default_rng(seed)
    A = rng.standard_normal((M, K), dtype=np.float32)
    B = rng.standard_normal((K, N), dtype=np.float32)
    C = engine.multiply(A, B)
    ref = A.astype(np.float64) @ B.astype(np.float64)
    err = relative_error(C, ref)
    return ValidationReport(ok=bool(err <= rtol), rel_err=err, rtol=rtol, M=M, N=N, K=K)


__all__ = ["reference_matmul", "relative_error", "validate_engine", "ValidationReport", "DEFAULT_RTOL"]
