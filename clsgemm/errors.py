"""Exception hierarchy and tagged outcomes for the sgemm engine.

Library code raises; nothing here terminates the process. The CLI is the only
place that turns an ``EngineError`` into an exit status.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


class EngineError(RuntimeError):
    kind = "engine"

    def __init__(self, message: str, *, detail: Optional[str] = None):
        super().__init__(message)
        self.detail = detail

    @property
    def diagnostic(self) -> str:
        """Message plus any attached payload (e.g. a compiler log)."""
        msg = str(self)
        if self.detail:
            return f"{msg}\n{self.detail}"
        return msg


class AcceleratorError(EngineError):
    """An OpenCL call reported a non-success status."""

    kind = "accelerator"

    def __init__(self, operation: str, code: Optional[int] = None, reason: str = ""):
        msg = f"OpenCL error during {operation}"
        if code is not None:
            msg += f" (code {code})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
        self.operation = operation
        self.code = code


class OpenCLUnavailable(AcceleratorError):
    def __init__(self, reason: str):
        super().__init__("platform discovery", None, reason)


class KernelSourceError(EngineError):
    kind = "kernel_source"

    def __init__(self, path: str, reason: str = ""):
        msg = f"Failed to open {path}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
        self.path = path


class KernelBuildError(EngineError):
    kind = "kernel_build"

    def __init__(self, path: str, build_log: str):
        super().__init__(f"Compile error in {path}", detail=build_log)
        self.path = path
        self.build_log = build_log


class ConfigurationError(EngineError):
    kind = "configuration"


class DimensionError(EngineError, ValueError):
    kind = "dimension"


class EngineStateError(EngineError):
    kind = "state"


@dataclass
class Outcome:
    """Tagged success/failure of one engine call."""

    ok: bool
    value: Any = None
    error: Optional[EngineError] = None

    @property
    def kind(self) -> Optional[str]:
        return None if self.error is None else self.error.kind

    @property
    def diagnostic(self) -> Optional[str]:
        return None if self.error is None else self.error.diagnostic

    def unwrap(self) -> Any:
        if not self.ok:
            raise self.error  # type: ignore[misc]
        return self.value

    @classmethod
    def success(cls, value: Any) -> "Outcome":
        return cls(True, value=value)

    @classmethod
    def failure(cls, error: EngineError) -> "Outcome":
        return cls(False, error=error)


__all__ = [
    "EngineError",
    "AcceleratorError",
    "OpenCLUnavailable",
    "KernelSourceError",
    "KernelBuildError",
    "ConfigurationError",
    "DimensionError",
    "EngineStateError",
    "Outcome",
]
