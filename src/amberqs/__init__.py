"""
amberqs: Amber/AmberTools automation
- Single-protein MD workflow (tleap -> minimize -> heat -> equilibrate -> produce)
- CUDA rebuild of an existing AmberTools build tree
"""
__version__ = "0.1.0"

from .errors import (
    AmberQSError,
    ConfigError,
    ExternalToolError,
    PrerequisiteError,
    StageFailedError,
)

__all__ = [
    'AmberQSError',
    'ConfigError',
    'ExternalToolError',
    'PrerequisiteError',
    'StageFailedError',
    '__version__',
]
