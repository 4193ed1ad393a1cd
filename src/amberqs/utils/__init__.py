"""
amberqs utilities: console reporting, subprocess wrapper, toolchain probing.
"""
from . import process, reporting, toolchain

__all__ = ['process', 'reporting', 'toolchain']
