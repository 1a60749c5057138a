"""Launch geometry shared by the host dispatch math and the device kernel.

The kernel indexes its work items as ``(row, column_group)`` with
``vector_width`` output columns per item and ``tile_width`` rows per
work-group. The host must launch exactly that decomposition, so both
constants live here and are passed to the kernel build as defines.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

from . import config as _cfg
from .errors import ConfigurationError
from .padding import DEFAULT_TILE_WIDTH, needs_padding, round_up

DEFAULT_VECTOR_WIDTH = 16


@dataclass(frozen=True)
class PaddedDims:
    M: int
    N: int
    K: int
    m_padded: int
    n_padded: int
    k_padded: int

    @property
    def logical(self) -> Tuple[int, int, int]:
        return (self.M, self.N, self.K)

    @property
    def padded(self) -> Tuple[int, int, int]:
        return (self.m_padded, self.n_padded, self.k_padded)

    @property
    def a_needs_padding(self) -> bool:
        return (self.M, self.K) != (self.m_padded, self.k_padded)

    @property
    def b_needs_padding(self) -> bool:
        return (self.K, self.N) != (self.k_padded, self.n_padded)

    @property
    def c_needs_padding(self) -> bool:
        return (self.M, self.N) != (self.m_padded, self.n_padded)

    @property
    def flops(self) -> float:
        return 2.0 * self.M * self.N * self.K


@dataclass(frozen=True)
class LaunchGeometry:
    tile_width: int = DEFAULT_TILE_WIDTH
    vector_width: int = DEFAULT_VECTOR_WIDTH

    def __post_init__(self):
        if self.tile_width <= 0 or self.vector_width <= 0:
            raise ConfigurationError(
                f"tile width ({self.tile_width}) and vector width ({self.vector_width}) must be positive"
            )
        # N_padded is a tile multiple, so this keeps N_padded / vector_width exact
        if self.tile_width % self.vector_width:
            raise ConfigurationError(
                f"vector width {self.vector_width} does not divide tile width {self.tile_width}; "
                "the launch grid would drop columns"
            )

    @classmethod
    def from_config(cls, tile_width: Optional[int] = None, vector_width: Optional[int] = None) -> "LaunchGeometry":
        tile = tile_width if tile_width is not None else _cfg.get("CLSGEMM_TILE_WIDTH")
        vec = vector_width if vector_width is not None else _cfg.get("CLSGEMM_VECTOR_WIDTH")
        # an unparseable env value reads as 0 and is rejected like an explicit 0
        return cls(int(tile), int(vec))

    def padded(self, n: int) -> int:
        return round_up(n, self.tile_width)

    def plan(self, M: int, N: int, K: int) -> PaddedDims:
        M, N, K = int(M), int(N), int(K)
        if min(M, N, K) <= 0:
            raise ConfigurationError(f"matrix dimensions must be positive, got M={M} N={N} K={K}")
        return PaddedDims(M, N, K, self.padded(M), self.padded(N), self.padded(K))

    def needs_padding(self, rows: int, cols: int) -> bool:
        return needs_padding(rows, cols, self.tile_width)

    def global_size(self, dims: PaddedDims) -> Tuple[int, int]:
        return (dims.m_padded, dims.n_padded // self.vector_width)

    @property
    def local_size(self) -> Tuple[int, int]:
        return (self.tile_width, self.tile_width // self.vector_width)

    @property
    def work_group_items(self) -> int:
        rows, cols = self.local_size
        return rows * cols

    def build_options(self) -> str:
        return f"-D TILE_WIDTH={self.tile_width} -D VECTOR_WIDTH={self.vector_width}"


__all__ = ["DEFAULT_VECTOR_WIDTH", "PaddedDims", "LaunchGeometry"]
