"""Reproducible wasm reactor builds, locally or inside a builder container."""

from .config import BuildConfig, BuildMode, resolve_config
from .errors import AssetError, BuildError, CompileError, PlatformResolutionError
from .toolchains import MemoryLayout, ToolchainDefinition

__version__ = "0.1.0"

__all__ = [
    "AssetError",
    "BuildConfig",
    "BuildError",
    "BuildMode",
    "CompileError",
    "MemoryLayout",
    "PlatformResolutionError",
    "ToolchainDefinition",
    "resolve_config",
]
