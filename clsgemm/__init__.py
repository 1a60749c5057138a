"""
Top-level clsgemm package exports (lightweight).

pyopencl and the device layer are imported lazily on first access so that
importing the padding helpers or the config registry stays cheap.
"""
from __future__ import annotations

import importlib
from typing import Any

__all__ = [
  "SgemmEngine",
  "MatmulResult",
  "EnginePool",
  "LaunchGeometry",
  "initialize",
  "multiply",
  "finalize",
  "pad",
  "unpad",
  "is_opencl_available",
]

_LAZY = {
  "SgemmEngine": "engine",
  "MatmulResult": "engine",
  "initialize": "engine",
  "multiply": "engine",
  "finalize": "engine",
  "EnginePool": "pool",
  "LaunchGeometry": "geometry",
  "pad": "padding",
  "unpad": "padding",
  "is_opencl_available": "device",
}


def __getattr__(name: str) -> Any:  # lazy attribute loader
  mod_name = _LAZY.get(name)
  if mod_name is None:
    raise AttributeError(f"module 'clsgemm' has no attribute {name!r}")
  mod = importlib.import_module(__name__ + "." + mod_name)
  value = getattr(mod, name)
  # Cache on the package module to avoid repeated imports
  globals()[name] = value
  return value
