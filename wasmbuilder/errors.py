"""Exceptions raised by the wasm build pipeline."""
from __future__ import annotations


class BuildError(RuntimeError):
    """Base class for build failures that are not subprocess exits."""


class PlatformResolutionError(BuildError):
    """The target platform could not be determined."""


class CompileError(BuildError):
    """The compile step cannot run or did not produce an artifact."""


class AssetError(BuildError, FileNotFoundError):
    """A companion asset is missing from the generated library directory."""


__all__ = ["AssetError", "BuildError", "CompileError", "PlatformResolutionError"]
