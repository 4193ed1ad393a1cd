"""Exception types shared by the workflow driver and the build reconfigurator."""
from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence


class AmberQSError(Exception):
    """Base class for all amberqs failures."""


class ConfigError(AmberQSError, ValueError):
    """Raised for invalid user input (missing structure, unsupported names, bad numbers)."""


class PrerequisiteError(AmberQSError, RuntimeError):
    """Raised when a required environment piece (Amber env, CUDA, build tree) is missing."""


class ExternalToolError(AmberQSError, RuntimeError):
    """An external command exited non-zero or could not be started."""

    def __init__(
        self,
        message: str,
        cmd: Optional[Sequence[str]] = None,
        returncode: Optional[int] = None,
        log_path: Optional[Path] = None,
    ):
        super().__init__(message)
        self.cmd = list(cmd) if cmd else []
        self.returncode = returncode
        self.log_path = log_path


class StageFailedError(ExternalToolError):
    """A workflow stage failed; earlier stage artifacts are left on disk."""

    def __init__(self, stage_key: str, title: str, message: str, **kwargs):
        super().__init__(message, **kwargs)
        self.stage_key = stage_key
        self.title = title
