"""Toolchain and memory layout definitions for the wasm reactor build."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Tuple

from core.config_loader import normalize_string_list, reject_unknown_keys

WASM_PAGE_SIZE = 64 * 1024

WASM_MEMORY_SIZE = 16 * 1024 * 1024
STACK_SIZE = 2 * 1024 * 1024
GLOBAL_BASE = 4 * 1024 * 1024
OPTIMIZATION_LEVEL = 3


@dataclass(frozen=True, slots=True)
class MemoryLayout:
    """Linear memory layout of the produced module.

    The stack occupies ``[0, stack_size)``, linker-assigned globals start at
    ``global_base`` and memory is fixed at ``memory_size`` (initial == max).
    """

    memory_size: int = WASM_MEMORY_SIZE
    stack_size: int = STACK_SIZE
    global_base: int = GLOBAL_BASE

    def __post_init__(self) -> None:
        for name in ("memory_size", "stack_size", "global_base"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                raise ValueError(f"memory.{name} must be a positive integer")
            if value % WASM_PAGE_SIZE:
                raise ValueError(f"memory.{name} must be a multiple of the {WASM_PAGE_SIZE} byte wasm page")
        if self.stack_size > self.global_base:
            raise ValueError("memory.stack_size must not extend past memory.global_base")
        if self.global_base >= self.memory_size:
            raise ValueError("memory.global_base must lie inside memory.memory_size")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "MemoryLayout":
        reject_unknown_keys(data, {"memory_size", "stack_size", "global_base"}, section="[memory]")
        defaults = cls()
        return cls(
            memory_size=data.get("memory_size", defaults.memory_size),
            stack_size=data.get("stack_size", defaults.stack_size),
            global_base=data.get("global_base", defaults.global_base),
        )

    def sizing_flags(self) -> List[str]:
        return [
            f"-Wl,-z,stack-size={self.stack_size}",
            f"-Wl,--initial-memory={self.memory_size}",
            f"-Wl,--max-memory={self.memory_size}",
        ]

    def placement_flags(self) -> List[str]:
        return [
            "-Wl,--import-memory",
            f"-Wl,--global-base={self.global_base}",
            "-Wl,--stack-first",
        ]


_DEFAULT_FEATURES: Tuple[str, ...] = (
    "simd128",
    "bulk-memory",
    "multivalue",
    "nontrapping-fptoint",
    "sign-ext",
    "reference-types",
    "tail-call",
)

_DEFAULT_CFLAGS: Tuple[str, ...] = (
    "-fno-rtti",
    "-fno-exceptions",
    "-flto",
    "-ffast-math",
    "-fomit-frame-pointer",
    "-finline-functions",
    "-finline-hint-functions",
    "-fno-stack-protector",
    "-fforce-emit-vtables",
    "--param=max-inline-insns-single=1000",
    "--param=max-inline-insns-auto=1000",
    "--param=early-inlining-insns=1000",
    "--param=max-early-inliner-iterations=10",
)


@dataclass(slots=True)
class ToolchainDefinition:
    name: str
    compiler: str = "clang"
    sysroot: str = "/usr/share/wasi-sysroot"
    target: str = "wasm32-unknown-wasi"
    optimization_level: int = OPTIMIZATION_LEVEL
    features: Tuple[str, ...] = _DEFAULT_FEATURES
    exports: Tuple[str, ...] = ("malloc", "free")
    cflags: Tuple[str, ...] = _DEFAULT_CFLAGS
    ldflags: Tuple[str, ...] = ()
    description: str | None = None

    _ALLOWED_KEYS = frozenset(
        {
            "description",
            "compiler",
            "sysroot",
            "target",
            "optimization_level",
            "features",
            "exports",
            "cflags",
            "ldflags",
        }
    )

    @classmethod
    def from_mapping(cls, name: str, data: Mapping[str, Any]) -> "ToolchainDefinition":
        if not isinstance(data, Mapping):
            raise TypeError(f"Toolchain '{name}' definition must be a mapping")
        reject_unknown_keys(data, set(cls._ALLOWED_KEYS), section=f"Toolchain '{name}'")
        return cls(name=name).merge_mapping(data)

    def merge_mapping(self, data: Mapping[str, Any]) -> "ToolchainDefinition":
        """Return a copy with the keys present in ``data`` replaced."""

        reject_unknown_keys(data, set(self._ALLOWED_KEYS), section=f"Toolchain '{self.name}'")
        merged = self.clone()
        for key in ("compiler", "sysroot", "target"):
            value = data.get(key)
            if value is not None:
                text = str(value).strip()
                if not text:
                    raise ValueError(f"Toolchain '{self.name}' {key} cannot be empty")
                setattr(merged, key, text)
        if "optimization_level" in data:
            level = data["optimization_level"]
            if not isinstance(level, int) or isinstance(level, bool) or not 0 <= level <= 3:
                raise ValueError(f"Toolchain '{self.name}' optimization_level must be an integer between 0 and 3")
            merged.optimization_level = level
        for key in ("features", "exports", "cflags", "ldflags"):
            if key in data:
                values = normalize_string_list(data[key], field_name=f"toolchain.{key}")
                setattr(merged, key, tuple(values))
        if data.get("description") is not None:
            merged.description = str(data["description"])
        return merged

    def clone(self) -> "ToolchainDefinition":
        return ToolchainDefinition(
            name=self.name,
            compiler=self.compiler,
            sysroot=self.sysroot,
            target=self.target,
            optimization_level=self.optimization_level,
            features=self.features,
            exports=self.exports,
            cflags=self.cflags,
            ldflags=self.ldflags,
            description=self.description,
        )

    def shared_flags(self, layout: MemoryLayout) -> Tuple[str, ...]:
        """Flags shared by every compilation of the module.

        Built once per invocation; the compile command embeds them verbatim.
        """

        level = self.optimization_level
        flags: List[str] = [f"-O{level}"]
        flags.extend(self.cflags)
        flags.extend(
            [
                "-Wl,--no-entry",
                f"-Wl,-O{level}",
                f"-Wl,--lto-O{level}",
            ]
        )
        flags.extend(layout.sizing_flags())
        flags.extend(self.ldflags)
        return tuple(flags)

    def target_flags(self) -> List[str]:
        flags = [
            f"--sysroot={self.sysroot}",
            "-target",
            self.target,
            "-Ofast",
            "-fno-exceptions",
            "-fvisibility=hidden",
            "-mexec-model=reactor",
        ]
        flags.extend(f"-m{feature}" for feature in self.features)
        return flags

    def link_flags(self) -> List[str]:
        level = self.optimization_level
        flags = [
            "-Wl,-error-limit=0",
            f"-Wl,-O{level}",
            f"-Wl,--lto-O{level}",
            "-Wl,--allow-undefined",
            "-Wl,--export-dynamic",
            "-Wl,--export-table",
        ]
        flags.extend(f"-Wl,--export={symbol}" for symbol in self.exports)
        flags.append("-Wl,--no-entry")
        return flags


def _build_builtin_definitions() -> Dict[str, ToolchainDefinition]:
    return {
        "wasi-clang": ToolchainDefinition(
            name="wasi-clang",
            description="Clang targeting WASI with the wasi-sysroot",
        ),
    }


class ToolchainRegistry:
    def __init__(self, definitions: Mapping[str, ToolchainDefinition] | None = None) -> None:
        self._definitions: Dict[str, ToolchainDefinition] = {}
        if definitions:
            for name, definition in definitions.items():
                self._definitions[name] = definition.clone()

    @classmethod
    def with_builtins(cls) -> "ToolchainRegistry":
        return cls(_build_builtin_definitions())

    def merge_from_mapping(self, mapping: Mapping[str, Any]) -> None:
        """Merge ``[toolchains.<name>]`` sections; known names are overridden key by key."""

        for raw_name, raw_value in mapping.items():
            name = str(raw_name).strip().lower()
            if not name:
                continue
            if not isinstance(raw_value, Mapping):
                raise TypeError(f"Toolchain '{name}' definition must be a mapping")
            existing = self._definitions.get(name)
            if existing is not None:
                self._definitions[name] = existing.merge_mapping(raw_value)
            else:
                self._definitions[name] = ToolchainDefinition.from_mapping(name, raw_value)

    def get(self, name: str) -> ToolchainDefinition | None:
        definition = self._definitions.get(name.lower())
        return definition.clone() if definition else None

    def require(self, name: str) -> ToolchainDefinition:
        definition = self.get(name)
        if definition is None:
            available = ", ".join(sorted(self.available())) or "<none>"
            raise ValueError(f"Unknown toolchain '{name}'. Available toolchains: {available}")
        return definition

    def available(self) -> Iterable[str]:
        return self._definitions.keys()


DEFAULT_TOOLCHAIN = "wasi-clang"

__all__ = [
    "DEFAULT_TOOLCHAIN",
    "GLOBAL_BASE",
    "MemoryLayout",
    "OPTIMIZATION_LEVEL",
    "STACK_SIZE",
    "ToolchainDefinition",
    "ToolchainRegistry",
    "WASM_MEMORY_SIZE",
    "WASM_PAGE_SIZE",
]
