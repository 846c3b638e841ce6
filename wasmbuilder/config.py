"""Build configuration resolution.

A :class:`BuildConfig` is produced once per invocation by :func:`resolve_config`
and passed explicitly to every step. Resolution reads the environment, an
optional configuration file and, only for modes that talk to docker, the
platform reported by ``docker info``.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Tuple
import os

from core.command_runner import CommandRunner
from core.config_loader import load_config_file, normalize_string_list, reject_unknown_keys

from .errors import PlatformResolutionError
from .toolchains import DEFAULT_TOOLCHAIN, MemoryLayout, ToolchainDefinition, ToolchainRegistry

PLATFORM_ENV = "WASM_PLATFORM"
CONFIG_ENV = "WASMBUILDER_CONFIG"
DEFAULT_CONFIG_NAME = "wasmbuilder.toml"

DOCKER_INFO_COMMAND: Tuple[str, ...] = ("docker", "info", "-f", "{{.OSType}}/{{.Architecture}}")


class BuildMode(str, Enum):
    IMAGE = "image"
    SETUP = "setup"
    CONTAINERIZED = "containerized"
    LOCAL = "local"

    @classmethod
    def parse(cls, value: str | None) -> "BuildMode":
        """Map the mode argument to a mode; anything unrecognized builds locally."""

        if value:
            normalized = value.strip().lower()
            for mode in (cls.IMAGE, cls.SETUP, cls.CONTAINERIZED):
                if normalized == mode.value:
                    return mode
        return cls.LOCAL

    @property
    def needs_platform(self) -> bool:
        return self in (BuildMode.IMAGE, BuildMode.CONTAINERIZED)


@dataclass(frozen=True, slots=True)
class BuildSettings:
    """Values that can be overridden from the ``[build]`` config section."""

    toolchain: str = DEFAULT_TOOLCHAIN
    artifact: str = "llhttp.wasm"
    image: str = "llhttp_wasm_builder"
    container_build_dir: str = "/home/node/llhttp/build"
    container_command: Tuple[str, ...] = ("npm", "run", "wasm")
    generate_command: Tuple[str, ...] = ("npm", "run", "build")
    module_type: str = "commonjs"
    assets: Tuple[str, ...] = ("constants", "utils")
    library_dir: str = "lib/llhttp"

    _ALLOWED_KEYS = frozenset(
        {
            "toolchain",
            "artifact",
            "image",
            "container_build_dir",
            "container_command",
            "generate_command",
            "module_type",
            "assets",
            "library_dir",
        }
    )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "BuildSettings":
        reject_unknown_keys(data, set(cls._ALLOWED_KEYS), section="[build]")
        defaults = cls()
        values: dict[str, Any] = {}
        for key in ("toolchain", "artifact", "image", "container_build_dir", "module_type", "library_dir"):
            if key in data:
                text = str(data[key]).strip()
                if not text:
                    raise ValueError(f"build.{key} cannot be empty")
                values[key] = text
        for key in ("container_command", "generate_command", "assets"):
            if key in data:
                items = normalize_string_list(data[key], field_name=f"build.{key}")
                if not items:
                    raise ValueError(f"build.{key} cannot be empty")
                values[key] = tuple(items)
        artifact = values.get("artifact", defaults.artifact)
        if Path(artifact).name != artifact:
            raise ValueError("build.artifact must be a file name, not a path")
        if Path(values.get("library_dir", defaults.library_dir)).is_absolute():
            raise ValueError("build.library_dir must be relative to the source root")
        return cls(**values)


@dataclass(frozen=True, slots=True)
class BuildConfig:
    platform: str | None
    source_root: Path
    output_root: Path
    toolchain_flags: Tuple[str, ...]
    layout: MemoryLayout
    toolchain: ToolchainDefinition
    settings: BuildSettings

    @property
    def flags_string(self) -> str:
        return " ".join(self.toolchain_flags)

    @property
    def build_root(self) -> Path:
        return self.source_root / "build"

    @property
    def generated_dir(self) -> Path:
        return self.build_root / "c"

    @property
    def native_dir(self) -> Path:
        return self.source_root / "src" / "native"

    @property
    def include_dir(self) -> Path:
        return self.build_root

    @property
    def library_dir(self) -> Path:
        return self.source_root / self.settings.library_dir

    @property
    def artifact_path(self) -> Path:
        return self.output_root / self.settings.artifact

    def require_platform(self) -> str:
        if not self.platform:
            raise PlatformResolutionError(
                f"Target platform is not resolved; set {PLATFORM_ENV} or make `docker info` available"
            )
        return self.platform


def parse_platform(text: str, *, source: str) -> str:
    """Validate an ``<os>/<arch>`` pair, e.g. ``linux/amd64``."""

    value = text.strip()
    parts = value.split("/")
    if len(parts) != 2 or not all(part and part == part.strip() and " " not in part for part in parts):
        raise PlatformResolutionError(f"Malformed platform '{value}' from {source}; expected <os>/<arch>")
    return value


def resolve_platform(
    mode: BuildMode,
    *,
    environ: Mapping[str, str],
    query_runner: CommandRunner,
) -> str | None:
    if not mode.needs_platform:
        return None
    override = environ.get(PLATFORM_ENV, "")
    if override.strip():
        return parse_platform(override, source=PLATFORM_ENV)
    # A failing query raises CommandError; the build cannot go on without it.
    result = query_runner.run(list(DOCKER_INFO_COMMAND), check=True, note="Query docker platform")
    return parse_platform(result.stdout, source="docker info")


def _locate_config_file(source_root: Path, config_path: Path | None, environ: Mapping[str, str]) -> Path | None:
    if config_path is not None:
        candidate = config_path if config_path.is_absolute() else source_root / config_path
        if not candidate.is_file():
            raise FileNotFoundError(f"Configuration file '{candidate}' does not exist")
        return candidate
    env_value = environ.get(CONFIG_ENV, "").strip()
    if env_value:
        candidate = Path(env_value)
        if not candidate.is_absolute():
            candidate = source_root / candidate
        if not candidate.is_file():
            raise FileNotFoundError(f"Configuration file '{candidate}' from {CONFIG_ENV} does not exist")
        return candidate
    default = source_root / DEFAULT_CONFIG_NAME
    return default if default.is_file() else None


def load_settings(
    source_root: Path,
    *,
    config_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> tuple[BuildSettings, MemoryLayout, ToolchainDefinition]:
    env = os.environ if environ is None else environ
    data: Mapping[str, Any] = {}
    path = _locate_config_file(source_root, config_path, env)
    if path is not None:
        data = load_config_file(path)
    reject_unknown_keys(data, {"build", "memory", "toolchain", "toolchains"}, section=f"Configuration '{path}'")

    def section(name: str) -> Mapping[str, Any]:
        value = data.get(name, {})
        if not isinstance(value, Mapping):
            raise TypeError(f"[{name}] must be a table")
        return value

    settings = BuildSettings.from_mapping(section("build"))
    layout = MemoryLayout.from_mapping(section("memory"))

    registry = ToolchainRegistry.with_builtins()
    registry.merge_from_mapping(section("toolchains"))
    toolchain = registry.require(settings.toolchain)
    overrides = section("toolchain")
    if overrides:
        toolchain = toolchain.merge_mapping(overrides)
    return settings, layout, toolchain


def resolve_config(
    mode: BuildMode,
    *,
    query_runner: CommandRunner,
    source_root: Path | None = None,
    config_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> BuildConfig:
    env = os.environ if environ is None else environ
    root = (source_root or Path.cwd()).expanduser().resolve()
    settings, layout, toolchain = load_settings(root, config_path=config_path, environ=env)
    platform = resolve_platform(mode, environ=env, query_runner=query_runner)
    return BuildConfig(
        platform=platform,
        source_root=root,
        output_root=root / "build" / "wasm",
        toolchain_flags=toolchain.shared_flags(layout),
        layout=layout,
        toolchain=toolchain,
        settings=settings,
    )


__all__ = [
    "BuildConfig",
    "BuildMode",
    "BuildSettings",
    "CONFIG_ENV",
    "DOCKER_INFO_COMMAND",
    "PLATFORM_ENV",
    "load_settings",
    "parse_platform",
    "resolve_config",
    "resolve_platform",
]
