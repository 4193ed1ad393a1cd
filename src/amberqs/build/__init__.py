"""CUDA rebuild of an existing AmberTools CMake tree."""
from .rebuild import CudaRebuilder, RebuildLayout, RebuildResult

__all__ = ["CudaRebuilder", "RebuildLayout", "RebuildResult"]
