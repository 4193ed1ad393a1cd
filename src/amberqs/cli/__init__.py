"""
amberqs Command Line Interface
------------------------------
Entry points for the MD quick-start driver and the CUDA rebuild tool.
"""

from .main import cli, quick_start, rebuild_with_cuda

__all__ = ['cli', 'quick_start', 'rebuild_with_cuda']
