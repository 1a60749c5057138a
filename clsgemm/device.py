"""OpenCL resource lifecycle for one sgemm engine.

Responsibilities:
  * Pick the first platform and its first device of the configured class.
  * Own the context, command queue, compiled program and kernel handle.
  * Own the three device buffers and three zeroed host staging buffers, all
    sized to the padded dimensions fixed at construction.
  * Blocking transfers and a launch that drains the queue before returning.

Every OpenCL failure surfaces as an ``AcceleratorError``; construction either
returns fully built resources or releases what it created and raises.
"""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as _np

try:
    import pyopencl as cl  # type: ignore
except Exception:  # pragma: no cover - platform without OpenCL
    cl = None  # type: ignore

from . import config as _cfg
from .errors import (
    AcceleratorError,
    ConfigurationError,
    EngineStateError,
    KernelBuildError,
    KernelSourceError,
    OpenCLUnavailable,
)
from .geometry import LaunchGeometry, PaddedDims
from .utils.logging import get_logger as _get_logger

_log = _get_logger("clsgemm.device")

KERNEL_DIR = Path(__file__).resolve().parent / "kernels" / "opencl"
DEFAULT_KERNEL_PATH = KERNEL_DIR / "sgemm.cl"
KERNEL_ARG_COUNT = 6

_DEVICE_TYPES = {"gpu": "GPU", "cpu": "CPU", "accelerator": "ACCELERATOR", "all": "ALL"}


def _error_code(exc: Exception) -> Optional[int]:
    try:
        return int(getattr(exc, "code"))
    except Exception:
        return None


@contextmanager
def _cl_call(operation: str) -> Iterator[None]:
    """Translate pyopencl errors raised inside the block into AcceleratorError."""
    try:
        yield
    except cl.Error as exc:
        raise AcceleratorError(operation, _error_code(exc), str(exc)) from exc


def _device_type_flag(device_type: str) -> int:
    attr = _DEVICE_TYPES.get(str(device_type).lower())
    if attr is None:
        raise ConfigurationError(
            f"unknown device type {device_type!r}; expected one of {', '.join(sorted(_DEVICE_TYPES))}"
        )
    return getattr(cl.device_type, attr)


def is_opencl_available(device_type: Optional[str] = None) -> bool:
    """Return True if pyopencl imports and the first platform has a matching device."""
    if cl is None:
        return False
    try:
        select_device(device_type or _cfg.get("CLSGEMM_DEVICE_TYPE") or "gpu")
        return True
    except Exception:
        return False


def select_device(device_type: str = "gpu") -> Tuple["cl.Platform", "cl.Device"]:  # type: ignore
    """First platform, first device of ``device_type``; no wider search."""
    if cl is None:
        raise OpenCLUnavailable("pyopencl not available")
    flag = _device_type_flag(device_type)
    with _cl_call("clGetPlatformIDs"):
        platforms = cl.get_platforms()
    if not platforms:
        raise OpenCLUnavailable("no OpenCL platforms found")
    platform = platforms[0]
    with _cl_call("clGetDeviceIDs"):
        devices = platform.get_devices(device_type=flag)
    if not devices:
        raise AcceleratorError("clGetDeviceIDs", None, f"no {device_type} device on platform {platform.name}")
    return platform, devices[0]


def list_devices() -> List[Dict[str, Any]]:
    """Flat listing of every platform/device pair, for diagnostics."""
    if cl is None:
        return []
    out = []
    with _cl_call("clGetPlatformIDs"):
        platforms = cl.get_platforms()
    for pi, plat in enumerate(platforms):
        with _cl_call("clGetDeviceIDs"):
            devices = plat.get_devices()
        for di, dev in enumerate(devices):
            if dev.type & cl.device_type.GPU:
                kind = "GPU"
            elif dev.type & cl.device_type.CPU:
                kind = "CPU"
            elif dev.type & cl.device_type.ACCELERATOR:
                kind = "ACCELERATOR"
            else:
                kind = str(dev.type)
            out.append(
                {
                    "platform_index": pi,
                    "platform": plat.name,
                    "device_index": di,
                    "device": dev.name,
                    "kind": kind,
                    "max_work_group_size": dev.max_work_group_size,
                }
            )
    return out


def resolve_kernel_path(path: Union[str, Path, None] = None) -> Path:
    """Explicit path, then CLSGEMM_KERNEL_PATH, then the packaged kernel."""
    chosen = path or _cfg.get("CLSGEMM_KERNEL_PATH")
    if not chosen:
        return DEFAULT_KERNEL_PATH
    return Path(chosen)


def load_kernel_source(path: Union[str, Path]) -> str:
    try:
        return Path(path).read_text()
    except OSError as exc:
        raise KernelSourceError(str(path), exc.strerror or str(exc)) from exc


def _build_log(program: "cl.Program", device: "cl.Device") -> str:  # type: ignore
    try:
        return str(program.get_build_info(device, cl.program_build_info.LOG) or "").strip()
    except cl.Error:
        return ""


def build_program(ctx, device, source: str, options: str, origin: str) -> "cl.Program":  # type: ignore
    """Compile ``source`` for ``device``; a failed build raises KernelBuildError with the log."""
    with _cl_call("clCreateProgramWithSource"):
        program = cl.Program(ctx, source)
    try:
        program.build(options=options, devices=[device])
    except cl.Error as exc:
        log = _build_log(program, device) or str(exc)
        _log.error("Compile error:\n%s", log)
        raise KernelBuildError(origin, log) from exc
    return program


def check_launch_contract(kernel, device, geometry: LaunchGeometry, kernel_name: str = "sgemm") -> None:
    """Check the compiled kernel can run under ``geometry``'s decomposition.

    Argument count and work-group size limits are hard errors. A local size
    that is not a multiple of the kernel's preferred work-group multiple only
    costs occupancy, so it is logged.
    """
    with _cl_call("clGetKernelInfo"):
        num_args = int(kernel.get_info(cl.kernel_info.NUM_ARGS))
        kernel_max = int(kernel.get_work_group_info(cl.kernel_work_group_info.WORK_GROUP_SIZE, device))
        preferred = int(
            kernel.get_work_group_info(cl.kernel_work_group_info.PREFERRED_WORK_GROUP_SIZE_MULTIPLE, device)
        )
    if num_args != KERNEL_ARG_COUNT:
        raise ConfigurationError(
            f"kernel '{kernel_name}' takes {num_args} arguments, expected {KERNEL_ARG_COUNT} "
            "(A, B, C, M_padded, N_padded, K_padded)"
        )
    items = geometry.work_group_items
    limit = min(kernel_max, int(device.max_work_group_size))
    if items > limit:
        raise ConfigurationError(
            f"work-group {geometry.local_size} has {items} items; kernel '{kernel_name}' "
            f"allows at most {limit} on {device.name}"
        )
    if preferred and items % preferred:
        _log.warning(
            "work-group size %d is not a multiple of the preferred %d for kernel '%s'",
            items,
            preferred,
            kernel_name,
        )


class DeviceResources:
    """Context, queue, program, kernel, device buffers and staging buffers for one padded triple."""

    def __init__(
        self,
        dims: PaddedDims,
        geometry: LaunchGeometry,
        *,
        kernel_path: Union[str, Path, None] = None,
        kernel_name: Optional[str] = None,
        device_type: Optional[str] = None,
        build_options: Optional[str] = None,
        profile: Optional[bool] = None,
        validate_contract: Optional[bool] = None,
    ):
        self.dims = dims
        self.geometry = geometry
        self.kernel_path = resolve_kernel_path(kernel_path)
        self.kernel_name = kernel_name or _cfg.get("CLSGEMM_KERNEL_NAME") or "sgemm"
        self.device_type = str(device_type or _cfg.get("CLSGEMM_DEVICE_TYPE") or "gpu").lower()
        self.profiling = bool(_cfg.get("CLSGEMM_PROFILE") if profile is None else profile)
        if validate_contract is None:
            validate_contract = bool(_cfg.get("CLSGEMM_VALIDATE_CONTRACT"))
        extra = build_options if build_options is not None else _cfg.get("CLSGEMM_BUILD_OPTIONS")

        self.platform = None
        self.device = None
        self.context = None
        self.queue = None
        self.program = None
        self.kernel = None
        self.a_buf = self.b_buf = self.c_buf = None
        self.a_staging: Optional[_np.ndarray] = None
        self.b_staging: Optional[_np.ndarray] = None
        self.c_staging: Optional[_np.ndarray] = None
        self._released = False

        source = load_kernel_source(self.kernel_path)
        if cl is None:
            raise OpenCLUnavailable("pyopencl not available")
        try:
            self._create(source, " ".join(filter(None, [geometry.build_options(), extra])), validate_contract)
        except Exception:
            self.release()
            raise

    def _create(self, source: str, options: str, validate_contract: bool) -> None:
        self.platform, self.device = select_device(self.device_type)
        _log.info("Detected OpenCL platform: %s", self.platform.name)
        _log.info("Detected OpenCL device: %s", self.device.name)

        with _cl_call("clCreateContext"):
            self.context = cl.Context(devices=[self.device])
        props = cl.command_queue_properties.PROFILING_ENABLE if self.profiling else 0
        with _cl_call("clCreateCommandQueue"):
            self.queue = cl.CommandQueue(self.context, self.device, properties=props)

        self.program = build_program(self.context, self.device, source, options, str(self.kernel_path))
        with _cl_call("clCreateKernel"):
            self.kernel = cl.Kernel(self.program, self.kernel_name)
        if validate_contract:
            check_launch_contract(self.kernel, self.device, self.geometry, self.kernel_name)

        d = self.dims
        mf = cl.mem_flags
        itemsize = _np.dtype(_np.float32).itemsize
        with _cl_call("clCreateBuffer"):
            self.a_buf = cl.Buffer(self.context, mf.READ_WRITE, size=d.m_padded * d.k_padded * itemsize)
            self.b_buf = cl.Buffer(self.context, mf.READ_WRITE, size=d.k_padded * d.n_padded * itemsize)
            self.c_buf = cl.Buffer(self.context, mf.READ_WRITE, size=d.m_padded * d.n_padded * itemsize)

        self.a_staging = _np.zeros((d.m_padded, d.k_padded), dtype=_np.float32)
        self.b_staging = _np.zeros((d.k_padded, d.n_padded), dtype=_np.float32)
        self.c_staging = _np.zeros((d.m_padded, d.n_padded), dtype=_np.float32)
        _log.debug("allocated buffers for padded M=%d N=%d K=%d", d.m_padded, d.n_padded, d.k_padded)

    # --- Lifecycle ------------------------------------------------------
    @property
    def released(self) -> bool:
        return self._released

    def _ensure_live(self) -> None:
        if self._released:
            raise EngineStateError("device resources used after finalize")

    def release(self) -> None:
        """Release buffers, then kernel, program, queue and context. Safe to call twice."""
        if self._released:
            return
        self._released = True
        buffers = [b for b in (self.a_buf, self.b_buf, self.c_buf) if b is not None]
        self.a_buf = self.b_buf = self.c_buf = None
        failure: Optional[AcceleratorError] = None
        try:
            for buf in buffers:
                try:
                    with _cl_call("clReleaseMemObject"):
                        buf.release()
                except AcceleratorError as exc:
                    _log.warning("buffer release failed: %s", exc)
                    failure = failure or exc
        finally:
            # dropping the last reference releases the underlying cl object
            self.kernel = None
            self.program = None
            self.queue = None
            self.context = None
            self.a_staging = self.b_staging = self.c_staging = None
        _log.debug("released OpenCL resources for padded %s", self.dims.padded)
        if failure is not None:
            raise failure

    finalize = release

    def __enter__(self) -> "DeviceResources":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    # --- Transfers and launch -------------------------------------------
    def upload(self, buf, host: _np.ndarray) -> None:
        self._ensure_live()
        with _cl_call("clEnqueueWriteBuffer"):
            cl.enqueue_copy(self.queue, buf, host, is_blocking=True)

    def download(self, host: _np.ndarray, buf) -> None:
        self._ensure_live()
        with _cl_call("clEnqueueReadBuffer"):
            cl.enqueue_copy(self.queue, host, buf, is_blocking=True)

    def launch(
        self, args: Sequence[Any], global_size: Tuple[int, int], local_size: Tuple[int, int]
    ) -> Optional[float]:
        """Bind ``args`` positionally, run the kernel and drain the queue.

        Returns the kernel time in milliseconds when profiling is enabled.
        """
        self._ensure_live()
        with _cl_call("clSetKernelArg"):
            self.kernel.set_args(*args)
        with _cl_call("clEnqueueNDRangeKernel"):
            evt = cl.enqueue_nd_range_kernel(self.queue, self.kernel, global_size, local_size)
        with _cl_call("clFinish"):
            self.queue.finish()
        if not self.profiling:
            return None
        with _cl_call("clGetEventProfilingInfo"):
            return (evt.profile.end - evt.profile.start) * 1e-6

    def describe(self) -> Dict[str, Any]:
        self._ensure_live()
        dev = self.device
        return {
            "platform": self.platform.name,
            "name": dev.name,
            "vendor": dev.vendor,
            "version": dev.version,
            "max_work_group_size": dev.max_work_group_size,
            "local_mem_size": dev.local_mem_size,
            "global_mem_size": dev.global_mem_size,
            "max_compute_units": dev.max_compute_units,
            "kernel_path": str(self.kernel_path),
            "kernel_name": self.kernel_name,
            "padded": self.dims.padded,
        }


__all__ = [
    "DEFAULT_KERNEL_PATH",
    "DeviceResources",
    "build_program",
    "check_launch_contract",
    "is_opencl_available",
    "list_devices",
    "load_kernel_source",
    "resolve_kernel_path",
    "select_device",
]
