"""Central environment configuration utilities for clsgemm.

Provides typed accessors, a registry of known CLSGEMM_* variables, and helper
functions to introspect current effective configuration. Explicit constructor
arguments always win over values read here.
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional


@dataclass(frozen=True)
class EnvVarMeta:
    name: str
    description: str
    default: Any
    parser: Callable[[str], Any]
    choices: Optional[List[str]] = None
    category: str = "general"


def _parse_bool(val: str) -> bool:
    return str(val).lower() in ("1", "true", "yes", "on")


def _parse_int(val: str) -> int:
    try:
        return int(val)
    except Exception:
        return 0


def _identity(val: str) -> str:
    return val


_REGISTRY: Dict[str, EnvVarMeta] = {
    # Launch geometry
    "CLSGEMM_TILE_WIDTH": EnvVarMeta(
        name="CLSGEMM_TILE_WIDTH",
        description="Tile width matrix dimensions are padded to (kernel work-group rows)",
        default="64",
        parser=_parse_int,
        category="geometry",
    ),
    "CLSGEMM_VECTOR_WIDTH": EnvVarMeta(
        name="CLSGEMM_VECTOR_WIDTH",
        description="Output columns computed per work item; must divide the tile width",
        default="16",
        parser=_parse_int,
        category="geometry",
    ),
    # Kernel program
    "CLSGEMM_KERNEL_PATH": EnvVarMeta(
        name="CLSGEMM_KERNEL_PATH",
        description="OpenCL C source for the sgemm kernel (relative to cwd); empty uses the packaged kernel",
        default="",
        parser=_identity,
        category="kernel",
    ),
    "CLSGEMM_KERNEL_NAME": EnvVarMeta(
        name="CLSGEMM_KERNEL_NAME",
        description="Entry point extracted from the compiled program",
        default="sgemm",
        parser=_identity,
        category="kernel",
    ),
    "CLSGEMM_BUILD_OPTIONS": EnvVarMeta(
        name="CLSGEMM_BUILD_OPTIONS",
        description="Extra compiler options appended to the geometry defines",
        default="",
        parser=_identity,
        category="kernel",
    ),
    "CLSGEMM_VALIDATE_CONTRACT": EnvVarMeta(
        name="CLSGEMM_VALIDATE_CONTRACT",
        description="Check kernel argument count and work-group limits after build",
        default="1",
        parser=_parse_bool,
        category="kernel",
    ),
    # Device
    "CLSGEMM_DEVICE_TYPE": EnvVarMeta(
        name="CLSGEMM_DEVICE_TYPE",
        description="Device class taken from the first platform",
        default="gpu",
        parser=_identity,
        choices=["gpu", "cpu", "accelerator", "all"],
        category="device",
    ),
    "CLSGEMM_PROFILE": EnvVarMeta(
        name="CLSGEMM_PROFILE",
        description="Create the command queue with profiling enabled to time kernels",
        default="1",
        parser=_parse_bool,
        category="device",
    ),
    "CLSGEMM_POOL_CAPACITY": EnvVarMeta(
        name="CLSGEMM_POOL_CAPACITY",
        description="Engines kept alive by EnginePool before LRU eviction",
        default="4",
        parser=_parse_int,
        category="device",
    ),
    # Logging
    "CLSGEMM_LOG_LEVEL": EnvVarMeta(
        name="CLSGEMM_LOG_LEVEL",
        description="Override log verbosity (DEBUG,INFO,WARNING,ERROR)",
        default="INFO",
        parser=_identity,
        category="logging",
    ),
}


def get(name: str) -> Any:
    meta = _REGISTRY.get(name)
    if not meta:
        return os.environ.get(name)
    raw = os.environ.get(name, str(meta.default))
    try:
        return meta.parser(raw)
    except Exception:
        return meta.default


def as_dict(include_unset: bool = False) -> Dict[str, Any]:
    data = {}
    for k in _REGISTRY:
        raw = os.environ.get(k)
        if raw is None and not include_unset:
            continue
        data[k] = get(k)
    return data


def describe() -> List[Dict[str, Any]]:
    info = []
    for meta in _REGISTRY.values():
        info.append(
            {
                "name": meta.name,
                "category": meta.category,
                "default": meta.default,
                "current": get(meta.name),
                "description": meta.description,
                "choices": meta.choices or [],
            }
        )
    return sorted(info, key=lambda x: (x["category"], x["name"]))


__all__ = ["get", "as_dict", "describe", "EnvVarMeta"]

# Runtime overrides registry (set via set()) for introspection.
_OVERRIDES: Dict[str, Any] = {}
_SET_LOCK = threading.Lock()


def set(name: str, value: Any) -> None:
    """Set an environment variable (stringifying value) and record override.

    Lets the CLI pin geometry or kernel options for the engines it builds and
    surface them later via `clsgemm config list`.
    """
    with _SET_LOCK:
        os.environ[name] = str(value)
        _OVERRIDES[name] = value


def overrides() -> Dict[str, Any]:
    return dict(_OVERRIDES)


__all__.extend(["set", "overrides"])
